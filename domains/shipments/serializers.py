from __future__ import annotations

from rest_framework import serializers

from .carriers import canonical_tracking_number
from .models import EventType, Shipment, TrackingEvent, TrackingType
from .status_map import display_label


# ---------------------------
# 출력용
# ---------------------------
class TrackingEventSerializer(serializers.ModelSerializer):
    class Meta:
        model = TrackingEvent
        fields = (
            "id",
            "event_date",
            "event_type",
            "event_code",
            "location_name",
            "location_code",
            "description",
            "vessel_name",
            "vessel_imo",
            "voyage_number",
            "data_source",
            "confidence_score",
            "created_at",
        )


class ShipmentSerializer(serializers.ModelSerializer):
    status_label = serializers.SerializerMethodField()

    class Meta:
        model = Shipment
        fields = (
            "id",
            "tracking_number",
            "tracking_type",
            "carrier_code",
            "carrier_name",
            "reference_number",
            "status",
            "status_label",
            "active",
            "origin_port",
            "origin_name",
            "destination_port",
            "destination_name",
            "vessel_name",
            "vessel_imo",
            "voyage_number",
            "flight_number",
            "last_event_date",
            "last_event_location",
            "last_event_description",
            "eta",
            "ata",
            "metadata",
            "created_at",
            "updated_at",
        )

    def get_status_label(self, obj) -> str:
        return display_label(obj.status)


class ShipmentDetailSerializer(ShipmentSerializer):
    events = TrackingEventSerializer(many=True, read_only=True)

    class Meta(ShipmentSerializer.Meta):
        fields = ShipmentSerializer.Meta.fields + ("events",)


# ---------------------------
# 입력용
# ---------------------------
class RegisterShipmentSerializer(serializers.Serializer):
    tracking_number = serializers.CharField(max_length=64)
    tracking_type = serializers.ChoiceField(choices=TrackingType.choices, required=False, allow_blank=True)
    carrier_code = serializers.CharField(max_length=40, required=False, allow_blank=True, default="")
    reference_number = serializers.CharField(max_length=120, required=False, allow_blank=True, default="")

    def validate_tracking_number(self, value):
        number = canonical_tracking_number(value)
        if not number:
            raise serializers.ValidationError("필수 값입니다.")
        return number


class RefreshSerializer(serializers.Serializer):
    force = serializers.BooleanField(required=False, default=False)


class ManualEventSerializer(serializers.Serializer):
    event_type = serializers.ChoiceField(choices=EventType.choices)
    event_date = serializers.DateTimeField()
    event_code = serializers.CharField(max_length=20, required=False, allow_blank=True)
    location_name = serializers.CharField(max_length=200, required=False, allow_blank=True)
    location_code = serializers.CharField(max_length=16, required=False, allow_blank=True)
    description = serializers.CharField(required=False, allow_blank=True)
    vessel_name = serializers.CharField(max_length=120, required=False, allow_blank=True)
    vessel_imo = serializers.CharField(max_length=20, required=False, allow_blank=True)
    voyage_number = serializers.CharField(max_length=40, required=False, allow_blank=True)

    def validate_event_type(self, value):
        # DELETED 는 시스템 전용
        if value == EventType.DELETED:
            raise serializers.ValidationError("DELETED 이벤트는 직접 만들 수 없습니다.")
        return value


class ManualEventsInSerializer(serializers.Serializer):
    events = ManualEventSerializer(many=True, allow_empty=False)
    update_tracking = serializers.BooleanField(required=False, default=False)


class ImportOptionsSerializer(serializers.Serializer):
    skip_duplicates = serializers.BooleanField(required=False, default=True)
    update_existing = serializers.BooleanField(required=False, default=False)
    import_events = serializers.BooleanField(required=False, default=True)
    batch_size = serializers.IntegerField(required=False, default=50, min_value=1, max_value=500)


class ImportInSerializer(serializers.Serializer):
    rows = serializers.ListField(child=serializers.DictField(), allow_empty=False)
    options = ImportOptionsSerializer(required=False)


# ---------------------------
# (웹훅) 입력용 - 넉넉히 받는다
# ---------------------------
class WebhookInSerializer(serializers.Serializer):
    containerId = serializers.CharField(required=False, allow_blank=True)
    trackingNumber = serializers.CharField(required=False, allow_blank=True)
    eventType = serializers.CharField(required=False, allow_blank=True)
    eventDate = serializers.CharField(required=False, allow_blank=True)
    status = serializers.CharField(required=False, allow_blank=True)
    description = serializers.CharField(required=False, allow_blank=True)
    location = serializers.JSONField(required=False)
    vessel = serializers.DictField(required=False)

    def validate(self, attrs):
        if not (attrs.get("containerId") or attrs.get("trackingNumber")):
            raise serializers.ValidationError("containerId 또는 trackingNumber 중 하나는 필수입니다.")
        return attrs
