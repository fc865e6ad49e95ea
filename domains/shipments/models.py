from __future__ import annotations

import uuid

from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.db.models import Q


class ShipmentStatus(models.TextChoices):
    REGISTERED = "registered", "Registered"
    IN_TRANSIT = "in_transit", "In Transit"
    OUT_FOR_DELIVERY = "out_for_delivery", "Out For Delivery"
    DELIVERED = "delivered", "Delivered"
    DELAYED = "delayed", "Delayed"
    EXCEPTION = "exception", "Exception"
    CANCELLED = "cancelled", "Cancelled"


# 자동 동기화로는 더 이상 바뀌지 않는 상태 (force 요청만 변경 가능)
TERMINAL_STATUSES = frozenset({ShipmentStatus.DELIVERED, ShipmentStatus.CANCELLED})


class TrackingType(models.TextChoices):
    CONTAINER = "container", "Container"
    BL = "bl", "Bill of Lading"
    AWB = "awb", "Air Waybill"
    PARCEL = "parcel", "Parcel"


MARITIME_TYPES = frozenset({TrackingType.CONTAINER, TrackingType.BL})


class EventType(models.TextChoices):
    REGISTERED = "REGISTERED", "Registered"
    GATE_IN = "GATE_IN", "Gate In"
    GATE_OUT = "GATE_OUT", "Gate Out"
    LOADED_ON_VESSEL = "LOADED_ON_VESSEL", "Loaded On Vessel"
    DISCHARGED_FROM_VESSEL = "DISCHARGED_FROM_VESSEL", "Discharged From Vessel"
    DEPARTED = "DEPARTED", "Departed"
    ARRIVED = "ARRIVED", "Arrived"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY", "Out For Delivery"
    DELIVERED = "DELIVERED", "Delivered"
    EMPTY_RETURNED = "EMPTY_RETURNED", "Empty Returned"
    DELETED = "DELETED", "Deleted"
    EXCEPTION = "EXCEPTION", "Exception"
    DELAYED = "DELAYED", "Delayed"
    CANCELLED = "CANCELLED", "Cancelled"
    OTHER = "OTHER", "Other"


class Shipment(models.Model):
    """
    추적 대상 1건 (컨테이너 / B/L / AWB / 택배).

    metadata 에 쓰는 키:
      - last_api_update      : 마지막 외부 조회 성공 시각 (ISO8601, staleness 판단)
      - last_api_error       : {"at", "error", "type"} 마지막 조회 실패
      - <provider>_data      : 마지막 원본 응답 (shipsgo_data, dhl_data ...)
      - shipsgo_container_id : ShipsGo v1.2 컨테이너 id
      - shipsgo_tracking_id  : ShipsGo v2 (항공) tracking id
      - provider_warning     : 등록 시 외부 등록 실패 메시지
      - transit_time_days, loading_date, discharge_date
      - added_by/added_at, deleted_by/deleted_at, reactivated_at/reactivated_from
      - last_webhook_at      : 마지막 웹훅 반영 시각
      - source, import_date, import_user, last_csv_update (대량 import)
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    organization = models.ForeignKey(
        "accounts.Organization", on_delete=models.CASCADE, related_name="shipments"
    )

    tracking_number = models.CharField(max_length=64)
    tracking_type = models.CharField(
        max_length=16, choices=TrackingType.choices, default=TrackingType.CONTAINER
    )
    carrier_code = models.CharField(max_length=40, blank=True)
    carrier_name = models.CharField(max_length=120, blank=True)
    reference_number = models.CharField(max_length=120, blank=True)

    status = models.CharField(
        max_length=24,
        choices=ShipmentStatus.choices,
        default=ShipmentStatus.REGISTERED,
    )
    active = models.BooleanField(default=True)

    origin_port = models.CharField(max_length=16, blank=True)
    origin_name = models.CharField(max_length=120, blank=True)
    destination_port = models.CharField(max_length=16, blank=True)
    destination_name = models.CharField(max_length=120, blank=True)

    vessel_name = models.CharField(max_length=120, blank=True)
    vessel_imo = models.CharField(max_length=20, blank=True)
    voyage_number = models.CharField(max_length=40, blank=True)
    flight_number = models.CharField(max_length=40, blank=True)

    last_event_date = models.DateTimeField(null=True, blank=True)
    last_event_location = models.CharField(max_length=200, blank=True)
    last_event_description = models.CharField(max_length=255, blank=True)

    eta = models.DateTimeField(null=True, blank=True)
    ata = models.DateTimeField(null=True, blank=True)

    metadata = models.JSONField(default=dict, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "shipments"
        indexes = [
            models.Index(
                fields=["organization", "tracking_number"],
                name="shipments_org_tn_idx",
            ),
            models.Index(
                fields=["organization", "active", "status"],
                name="shipments_org_active_idx",
            ),
            models.Index(fields=["status", "updated_at"], name="shipments_status_idx"),
        ]
        constraints = [
            # 같은 조직에 활성 운송장은 하나만 (soft delete 된 행은 여러 개 허용)
            models.UniqueConstraint(
                fields=("tracking_number", "organization"),
                condition=Q(active=True),
                name="uq_active_tracking_per_org",
            )
        ]

    def __str__(self) -> str:
        return f"{self.carrier_code or '-'}:{self.tracking_number}"

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class TrackingEvent(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    shipment = models.ForeignKey(
        Shipment, on_delete=models.CASCADE, related_name="events"
    )
    event_date = models.DateTimeField()
    event_type = models.CharField(
        max_length=32, choices=EventType.choices, default=EventType.OTHER
    )
    event_code = models.CharField(max_length=20, blank=True)
    location_name = models.CharField(max_length=200, blank=True)
    location_code = models.CharField(max_length=20, blank=True)
    description = models.TextField(blank=True)

    vessel_name = models.CharField(max_length=120, blank=True)
    vessel_imo = models.CharField(max_length=20, blank=True)
    voyage_number = models.CharField(max_length=40, blank=True)

    data_source = models.CharField(max_length=40, blank=True)
    confidence_score = models.FloatField(
        default=1.0,
        validators=[MinValueValidator(0.0), MaxValueValidator(1.0)],
    )
    raw_data = models.JSONField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "tracking_events"
        ordering = ("event_date",)
        indexes = [
            models.Index(
                fields=["shipment", "event_date"],
                name="tracking_ev_ship_date_idx",
            ),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=("shipment", "event_type", "event_date"),
                name="uq_event_per_type_and_date",
            )
        ]

    def __str__(self) -> str:
        return f"{self.shipment_id}:{self.event_type}@{self.event_date}"
