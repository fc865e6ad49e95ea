# domains/shipments/webhooks.py
"""
ShipsGo 웹훅 수신.

payload 예:
{
  "containerId": "12345",            # 또는 "trackingNumber"
  "trackingNumber": "MSCU1234567",
  "eventType": "DELIVERED",
  "eventDate": "2024-03-25T10:00:00Z",
  "location": {"name": "Genova", "code": "ITGOA"},
  "vessel": {"name": "MSC AURORA", "imo": "9876543", "voyage": "AB123"},
  "status": "Delivered",
  "description": "Container delivered"
}

전체 재조회(reconcile)가 아니라 이벤트 1건 삽입 + 필드 갱신만 한다.
같은 번호를 추적하는 조직이 여럿이면 모든 활성 shipment 에 반영한다.
staleness / terminal 가드는 적용하지 않는다 (웹훅 자체가 권위 있는 이벤트).
"""
from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from .carriers import canonical_tracking_number
from .dates import parse_dt_safe
from .events import EventRecord
from .exceptions import ShipmentNotFoundError, TrackingError, WebhookSignatureError
from .models import EventType, Shipment, ShipmentStatus, TrackingEvent
from .services import insert_events, refresh_last_event
from .status_map import classify

logger = logging.getLogger(__name__)

WEBHOOK_DATA_SOURCE = "shipsgo_webhook"

# eventType → 상태 (payload 에 status 가 없을 때)
EVENT_TYPE_STATUS = {
    EventType.DELIVERED: ShipmentStatus.DELIVERED,
    EventType.EMPTY_RETURNED: ShipmentStatus.DELIVERED,
    EventType.OUT_FOR_DELIVERY: ShipmentStatus.OUT_FOR_DELIVERY,
    EventType.EXCEPTION: ShipmentStatus.EXCEPTION,
    EventType.DELAYED: ShipmentStatus.DELAYED,
    EventType.CANCELLED: ShipmentStatus.CANCELLED,
    EventType.LOADED_ON_VESSEL: ShipmentStatus.IN_TRANSIT,
    EventType.DISCHARGED_FROM_VESSEL: ShipmentStatus.IN_TRANSIT,
    EventType.DEPARTED: ShipmentStatus.IN_TRANSIT,
    EventType.ARRIVED: ShipmentStatus.IN_TRANSIT,
    EventType.GATE_IN: ShipmentStatus.IN_TRANSIT,
    EventType.GATE_OUT: ShipmentStatus.IN_TRANSIT,
}


@dataclass
class WebhookOutcome:
    shipment: Shipment
    event: Optional[TrackingEvent]
    status_changed: bool = False


def compute_signature(raw_body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(raw_body: Union[bytes, str], signature: Optional[str], secret: Optional[str]) -> bool:
    """HMAC-SHA256(hex) 상수 시간 비교. secret 미설정이면 검증 생략(True)."""
    if not secret:
        return True
    if not signature:
        return False
    if isinstance(raw_body, str):
        raw_body = raw_body.encode("utf-8")
    expected = compute_signature(raw_body, secret)
    # "sha256=<hex>" 형태도 허용
    provided = signature.strip()
    if provided.lower().startswith("sha256="):
        provided = provided[7:]
    return hmac.compare_digest(expected, provided.lower())


def require_valid_signature(raw_body, signature, secret) -> None:
    if not verify_signature(raw_body, signature, secret):
        raise WebhookSignatureError("Invalid webhook signature")


def _find_shipments(payload: Dict[str, Any]) -> List[Shipment]:
    """
    containerId / trackingNumber 에 걸리는 활성 shipment 전부.
    같은 번호를 여러 조직이 추적할 수 있으므로 조직으로 거르지 않는다.
    """
    container_id = payload.get("containerId")
    number = canonical_tracking_number(payload.get("trackingNumber"))
    if not (container_id or number):
        raise TrackingError("Missing containerId or trackingNumber")

    cond = Q()
    if container_id:
        # 등록 응답에 따라 숫자/문자열 어느 쪽으로도 저장돼 있을 수 있음
        candidates = {str(container_id)}
        if str(container_id).isdigit():
            candidates.add(int(container_id))
        for value in candidates:
            cond |= Q(metadata__shipsgo_container_id=value)
    if number:
        cond |= Q(tracking_number=number)
    shipments = list(Shipment.objects.select_for_update().filter(cond, active=True).order_by("created_at", "id"))
    if not shipments:
        raise ShipmentNotFoundError(f"No active tracking for {container_id or number}")
    return shipments


def _event_type(raw: Optional[str]) -> str:
    value = str(raw or "").strip().upper().replace(" ", "_")
    return value if value in EventType.values else EventType.OTHER


def _build_record(payload: Dict[str, Any], event_type: str, when) -> EventRecord:
    location = payload.get("location") or {}
    if isinstance(location, str):
        location = {"name": location}
    vessel = payload.get("vessel") or {}
    return EventRecord(
        event_type=event_type,
        event_date=when,
        event_code=str(payload.get("eventCode") or payload.get("eventType") or "")[:20],
        location_name=location.get("name") or "",
        location_code=location.get("code") or "",
        description=payload.get("description") or payload.get("status") or "",
        vessel_name=vessel.get("name") or "",
        vessel_imo=str(vessel.get("imo") or ""),
        voyage_number=vessel.get("voyage") or "",
        data_source=WEBHOOK_DATA_SOURCE,
        confidence_score=1.0,
        raw_data=payload,
    )


def _apply_event(shipment: Shipment, record: EventRecord, payload: Dict[str, Any]) -> WebhookOutcome:
    created = insert_events(shipment, [record])

    old_status = shipment.status
    if payload.get("status"):
        shipment.status = classify(payload["status"], shipment.tracking_type)
    elif record.event_type in EVENT_TYPE_STATUS:
        shipment.status = EVENT_TYPE_STATUS[record.event_type]

    if record.vessel_name:
        shipment.vessel_name = record.vessel_name
    if record.vessel_imo:
        shipment.vessel_imo = record.vessel_imo
    if record.voyage_number:
        shipment.voyage_number = record.voyage_number
    if record.event_type == EventType.DELIVERED and shipment.ata is None:
        shipment.ata = record.event_date

    refresh_last_event(shipment)
    meta = dict(shipment.metadata or {})
    meta["last_webhook_at"] = timezone.now().isoformat()
    shipment.metadata = meta
    shipment.save()

    logger.info(
        "webhook %s for shipment %s (org %s): status %s -> %s (%s)",
        record.event_type, shipment.id, shipment.organization_id, old_status, shipment.status,
        "new event" if created else "duplicate",
    )
    return WebhookOutcome(shipment, created[0] if created else None, status_changed=shipment.status != old_status)


@transaction.atomic
def ingest_webhook_event(payload: Dict[str, Any]) -> List[WebhookOutcome]:
    """매칭된 활성 shipment 마다 이벤트를 반영하고 건별 결과를 돌려준다."""
    payload = payload or {}
    shipments = _find_shipments(payload)
    event_type = _event_type(payload.get("eventType"))
    when = parse_dt_safe(payload.get("eventDate")) or timezone.now()
    record = _build_record(payload, event_type, when)
    return [_apply_event(shipment, record, payload) for shipment in shipments]
