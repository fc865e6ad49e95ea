# domains/shipments/filters.py
import django_filters as df

from .models import Shipment, ShipmentStatus, TrackingType


class ShipmentFilter(df.FilterSet):
    status = df.ChoiceFilter(choices=ShipmentStatus.choices)
    tracking_type = df.ChoiceFilter(choices=TrackingType.choices)
    carrier_code = df.CharFilter(field_name="carrier_code", lookup_expr="iexact")
    active = df.BooleanFilter()
    # 운송장/참조번호 부분 검색
    q = df.CharFilter(method="filter_q")

    class Meta:
        model = Shipment
        fields = ["status", "tracking_type", "carrier_code", "active"]

    def filter_q(self, qs, name, value):
        value = (value or "").strip()
        if not value:
            return qs
        return qs.filter(tracking_number__icontains=value) | qs.filter(reference_number__icontains=value)
