# domains/shipments/services.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from django.conf import settings
from django.db import DatabaseError, IntegrityError, transaction
from django.utils import timezone

from .adapters import adapter_for_shipment
from .adapters.base import ADAPTER_FAILURES, CarrierAdapter, ProviderTrackingResult, as_provider_error
from .carriers import (
    canonical_tracking_number,
    carrier_display_name,
    detect_parcel_carrier,
    detect_tracking_type,
    resolve_carrier_code,
)
from .dates import isoformat, parse_dt_safe
from .events import EventRecord, dedupe_events, status_change_event, synthesize
from .exceptions import (
    DuplicateTrackingError,
    ProviderError,
    ReconciliationError,
    TrackingAlreadyDeletedError,
    TrackingError,
)
from .models import MARITIME_TYPES, EventType, Shipment, ShipmentStatus, TrackingEvent, TrackingType
from .status_map import classify

logger = logging.getLogger(__name__)

SYSTEM_LOCATION = "System"
REGISTRATION_WARNING = "Tracking saved but provider registration failed"

# 수동 이벤트 → 상태 승격
_MANUAL_STATUS_BUMP = {
    EventType.DELIVERED: ShipmentStatus.DELIVERED,
    EventType.EMPTY_RETURNED: ShipmentStatus.DELIVERED,
    EventType.LOADED_ON_VESSEL: ShipmentStatus.IN_TRANSIT,
    EventType.DISCHARGED_FROM_VESSEL: ShipmentStatus.IN_TRANSIT,
    EventType.DEPARTED: ShipmentStatus.IN_TRANSIT,
    EventType.ARRIVED: ShipmentStatus.IN_TRANSIT,
}

_PROVIDER_FIELDS = (
    "vessel_name",
    "vessel_imo",
    "voyage_number",
    "flight_number",
    "origin_port",
    "origin_name",
    "destination_port",
    "destination_name",
)


@dataclass
class ReconcileOutcome:
    shipment: Shipment
    events: List[TrackingEvent] = field(default_factory=list)
    skipped: Optional[str] = None  # "fresh" | "terminal" | "provider_error"
    warning: str = ""

    @property
    def updated(self) -> bool:
        return self.skipped is None


@dataclass
class RegisterOutcome:
    shipment: Shipment
    reactivated: bool = False
    warning: str = ""


# ─────────────────────────────────────────────────────────────────────────────
# 이벤트 저장 / 캐시
# ─────────────────────────────────────────────────────────────────────────────
def insert_events(shipment: Shipment, records: Iterable[EventRecord]) -> List[TrackingEvent]:
    """
    (event_type, event_date) 가 이미 있으면 건너뜀.
    동시 삽입으로 인한 IntegrityError 는 '이미 있음' 으로 취급 (건별 savepoint).
    """
    existing = set(
        TrackingEvent.objects.filter(shipment=shipment).values_list("event_type", "event_date")
    )
    created: List[TrackingEvent] = []
    for record in dedupe_events(records):
        if record.key in existing:
            continue
        try:
            with transaction.atomic():
                ev = TrackingEvent.objects.create(shipment=shipment, **record.as_model_fields())
        except IntegrityError:
            logger.debug("event %s already stored for shipment %s", record.key, shipment.id)
            continue
        existing.add(record.key)
        created.append(ev)
    return created


def refresh_last_event(shipment: Shipment) -> Optional[TrackingEvent]:
    """last_event_* 캐시를 이벤트 저장소의 최신(DELETED 제외) 이벤트로 맞춘다. 저장은 호출부."""
    latest = (
        TrackingEvent.objects.filter(shipment=shipment)
        .exclude(event_type=EventType.DELETED)
        .order_by("-event_date", "-created_at")
        .first()
    )
    shipment.last_event_date = latest.event_date if latest else None
    shipment.last_event_location = (latest.location_name or "") if latest else ""
    shipment.last_event_description = (latest.description or "") if latest else ""
    return latest


def _system_event(event_type: str, code: str, description: str, when: datetime) -> EventRecord:
    return EventRecord(
        event_type=event_type,
        event_date=when,
        event_code=code,
        location_name=SYSTEM_LOCATION,
        description=description,
        data_source="system",
        confidence_score=1.0,
    )


def _notify_on_commit(shipment: Shipment, kind: str, meta: Dict[str, Any]) -> None:
    from .tasks import notify_shipment

    shipment_id = str(shipment.id)
    transaction.on_commit(lambda: notify_shipment.delay(shipment_id, kind, meta))


def _record_api_error(shipment: Shipment, exc: Exception, kind: str, now: datetime) -> None:
    meta = dict(shipment.metadata or {})
    meta["last_api_error"] = {"at": now.isoformat(), "error": str(exc), "type": kind}
    shipment.metadata = meta
    Shipment.objects.filter(pk=shipment.pk).update(metadata=meta, updated_at=now)


# ─────────────────────────────────────────────────────────────────────────────
# 동기화 (수동 새로고침 / 주기 폴링)
# ─────────────────────────────────────────────────────────────────────────────
def is_fresh(shipment: Shipment, now: Optional[datetime] = None) -> bool:
    last = parse_dt_safe((shipment.metadata or {}).get("last_api_update"))
    if last is None:
        return False
    minutes = getattr(settings, "TRACKING_STALENESS_MINUTES", 15)
    return (now or timezone.now()) - last < timedelta(minutes=minutes)


def compute_status(shipment: Shipment, result: ProviderTrackingResult, now: datetime) -> str:
    status = classify(result.status, shipment.tracking_type)
    eta = result.eta or shipment.eta
    # ETA 가 지났는데 아직 운송 중이면 지연
    if status == ShipmentStatus.IN_TRANSIT and eta and eta < now and not result.ata:
        return ShipmentStatus.DELAYED
    return status


def reconcile_shipment(
    shipment: Shipment,
    *,
    force_update: bool = False,
    adapter: Optional[CarrierAdapter] = None,
    now: Optional[datetime] = None,
) -> ReconcileOutcome:
    """
    외부 조회 결과를 shipment 에 병합.

    - 마지막 조회 후 15분 이내면 건너뜀 (force 제외)
    - delivered / cancelled 는 건너뜀 (force 제외)
    - 조회 실패/빈 결과: metadata.last_api_error 만 기록, 나머지는 그대로
    - 이벤트 저장 → shipment 갱신 순서, 한 트랜잭션
    - 저장 실패는 last_api_error(type=persistence) 기록 후 ReconciliationError
    """
    now = now or timezone.now()
    if not force_update:
        if is_fresh(shipment, now):
            return ReconcileOutcome(shipment, skipped="fresh")
        if shipment.is_terminal:
            return ReconcileOutcome(shipment, skipped="terminal")

    try:
        adapter = adapter or adapter_for_shipment(shipment)
        result = adapter.track(shipment.tracking_number, metadata=dict(shipment.metadata or {}))
        if result is None or result.is_empty:
            raise ProviderError(f"{adapter.code} returned no tracking data")
    except ADAPTER_FAILURES as exc:
        err = as_provider_error(exc, getattr(adapter, "code", "") or "provider")
        logger.warning("tracking update failed for shipment %s (%s): %s", shipment.id, shipment.tracking_number, err)
        _record_api_error(shipment, err, "provider", now)
        return ReconcileOutcome(shipment, skipped="provider_error", warning=str(err))

    if not result.data_source:
        result.data_source = adapter.data_source or f"{adapter.code}_api"
    old_status = shipment.status

    try:
        with transaction.atomic():
            created = _apply_result(shipment, result, now)
    except DatabaseError as exc:
        logger.exception("reconciliation failed for shipment %s", shipment.id)
        shipment.refresh_from_db()
        _record_api_error(shipment, exc, "persistence", now)
        raise ReconciliationError(f"Failed to update tracking {shipment.tracking_number}: {exc}") from exc

    if created:
        _notify_on_commit(shipment, "events_appended", {"created": len(created)})
    if shipment.status != old_status:
        _notify_on_commit(shipment, "status_changed", {"prev": old_status, "curr": shipment.status})

    logger.info(
        "shipment %s reconciled via %s: status %s -> %s, %d new events",
        shipment.id, adapter.code, old_status, shipment.status, len(created),
    )
    return ReconcileOutcome(shipment, events=created)


def _apply_result(shipment: Shipment, result: ProviderTrackingResult, now: datetime) -> List[TrackingEvent]:
    old_status = shipment.status
    new_status = compute_status(shipment, result, now)

    records = synthesize(shipment, result, now=now)
    change = status_change_event(
        old_status, new_status, result.status_date or now, data_source=result.data_source,
    )
    if change is not None and not any(r.event_type == change.event_type for r in records):
        records.append(change)

    # 이벤트 먼저
    created = insert_events(shipment, records)

    shipment.status = new_status
    refresh_last_event(shipment)
    if result.eta:
        shipment.eta = result.eta
    if result.ata:
        shipment.ata = result.ata
    for name in _PROVIDER_FIELDS:
        value = getattr(result, name)
        if value:
            setattr(shipment, name, value)

    meta = dict(shipment.metadata or {})
    meta.update({k: v for k, v in (result.metadata or {}).items() if v is not None})
    meta.pop("last_api_error", None)
    meta["last_api_update"] = now.isoformat()
    meta[f"{result.provider}_data"] = result.raw
    if result.loading_date:
        meta["loading_date"] = isoformat(result.loading_date)
    if result.discharge_date:
        meta["discharge_date"] = isoformat(result.discharge_date)
    shipment.metadata = meta
    shipment.save()
    return created


# ─────────────────────────────────────────────────────────────────────────────
# 등록 / 삭제 / 수동 이벤트
# ─────────────────────────────────────────────────────────────────────────────
def _normalize_carrier(tracking_type: str, tracking_number: str, carrier_code: str) -> str:
    if tracking_type in MARITIME_TYPES:
        return resolve_carrier_code(carrier_code)
    carrier_code = (carrier_code or "").strip()
    if tracking_type == TrackingType.AWB:
        return carrier_code.upper()
    # 택배: 어댑터 코드(dhl/fedex/ups) 그대로, 없으면 번호로 판별
    return (carrier_code or detect_parcel_carrier(tracking_number) or "").lower()


def locked_shipments(organization, tracking_number: str):
    """같은 조직/번호의 shipment 행을 잠근 queryset (트랜잭션 안에서 사용)"""
    return Shipment.objects.select_for_update().filter(organization=organization, tracking_number=tracking_number)


def _claim_tracking(organization, number, tracking_type, carrier, reference_number, actor, now):
    existing = locked_shipments(organization, number)
    active = existing.filter(active=True).first()
    if active is not None:
        raise DuplicateTrackingError(active)

    shipment = existing.filter(active=False).order_by("-updated_at").first()
    reactivated = shipment is not None
    if reactivated:
        purged, _ = shipment.events.filter(event_type=EventType.DELETED).delete()
        logger.info("reactivating shipment %s (%d deleted markers purged)", shipment.id, purged)
        meta = dict(shipment.metadata or {})
        meta.update({"reactivated_at": now.isoformat(), "reactivated_from": "registration"})
        for key in ("shipsgo_container_id", "shipsgo_tracking_id", "shipsgo_deleted", "shipsgo_delete_error"):
            meta.pop(key, None)
        shipment.metadata = meta
        shipment.active = True
        shipment.status = ShipmentStatus.REGISTERED
    else:
        shipment = Shipment(organization=organization, tracking_number=number, metadata={})

    shipment.tracking_type = tracking_type
    shipment.carrier_code = carrier
    shipment.carrier_name = carrier_display_name(carrier) if carrier else ""
    shipment.reference_number = reference_number or shipment.reference_number or ""
    shipment.metadata.update({"added_by": actor, "added_at": now.isoformat(), "source": "manual"})

    try:
        with transaction.atomic():
            shipment.save()
    except IntegrityError:
        # 잠금 조회 이후 다른 요청이 같은 번호를 먼저 활성화한 경우
        winner = Shipment.objects.filter(organization=organization, tracking_number=number, active=True).first()
        if winner is None:
            raise
        logger.info("concurrent registration of %s lost to shipment %s", number, winner.id)
        raise DuplicateTrackingError(winner)

    insert_events(shipment, [
        _system_event(EventType.REGISTERED, "REG", "Tracking registered in system", now),
    ])
    refresh_last_event(shipment)
    shipment.save(update_fields=["last_event_date", "last_event_location", "last_event_description", "updated_at"])
    return shipment, reactivated


def register_tracking(
    organization,
    tracking_number: str,
    tracking_type: Optional[str] = None,
    carrier_code: str = "",
    reference_number: str = "",
    actor: str = "",
    adapter: Optional[CarrierAdapter] = None,
) -> RegisterOutcome:
    """
    운송장 등록. 같은 조직에 활성 건이 있으면 DuplicateTrackingError,
    비활성(삭제된) 건이 있으면 재활성화 + DELETED 이벤트 정리.
    외부 등록은 커밋 이후 best-effort (실패 시 warning 만 남김).
    """
    number = canonical_tracking_number(tracking_number)
    if not number:
        raise TrackingError("tracking_number is required")
    tracking_type = (tracking_type or "").strip().lower() or detect_tracking_type(number)
    carrier = _normalize_carrier(tracking_type, number, carrier_code)
    now = timezone.now()

    with transaction.atomic():
        shipment, reactivated = _claim_tracking(organization, number, tracking_type, carrier, reference_number, actor, now)

    # 외부 API 호출 동안에는 행 잠금을 잡지 않는다
    warning = ""
    try:
        adapter = adapter or adapter_for_shipment(shipment)
        registered = adapter.register(number, carrier_code=carrier, metadata=dict(shipment.metadata)) or {}
    except ADAPTER_FAILURES as exc:
        err = as_provider_error(exc, getattr(adapter, "code", "") or "provider")
        logger.warning("provider registration failed for %s: %s", number, err)
        warning = REGISTRATION_WARNING
        shipment.metadata["provider_warning"] = str(err)
    else:
        shipment.metadata.update(registered)
        shipment.metadata.pop("provider_warning", None)

    shipment.save(update_fields=["metadata", "updated_at"])
    return RegisterOutcome(shipment, reactivated=reactivated, warning=warning)


@transaction.atomic
def delete_tracking(shipment: Shipment, actor: str = "", adapter: Optional[CarrierAdapter] = None) -> str:
    """
    소프트 삭제. ShipsGo 에 등록된 건은 외부 삭제도 시도 (실패해도 계속).
    반환: 외부 삭제 실패 메시지 (없으면 "")
    """
    if not shipment.active:
        raise TrackingAlreadyDeletedError(f"Tracking {shipment.tracking_number} already deleted")

    now = timezone.now()
    meta = dict(shipment.metadata or {})
    warning = ""
    if meta.get("shipsgo_container_id") or meta.get("shipsgo_tracking_id"):
        try:
            adapter = adapter or adapter_for_shipment(shipment)
            adapter.deregister(shipment.tracking_number, metadata=meta)
            meta["shipsgo_deleted"] = True
        except ADAPTER_FAILURES as exc:
            warning = str(as_provider_error(exc, getattr(adapter, "code", "") or "provider"))
            logger.warning("provider deregistration failed for %s: %s", shipment.tracking_number, warning)
            meta["shipsgo_deleted"] = False
            meta["shipsgo_delete_error"] = warning

    meta.update({"deleted_by": actor, "deleted_at": now.isoformat()})
    shipment.metadata = meta
    shipment.active = False
    shipment.save(update_fields=["active", "metadata", "updated_at"])
    insert_events(shipment, [_system_event(EventType.DELETED, "DEL", "Tracking deleted", now)])
    logger.info("shipment %s soft-deleted by %s", shipment.id, actor or "-")
    return warning


@transaction.atomic
def add_manual_events(shipment: Shipment, events: Iterable[Dict[str, Any]], *, update_tracking: bool = False) -> List[TrackingEvent]:
    """
    감사(audit)용 수동 이벤트. 중복은 조용히 건너뜀.
    update_tracking=True 면 가장 최근 이벤트 기준으로 상태 승격 + last_event 캐시 갱신.
    """
    records = []
    for e in events:
        when = parse_dt_safe(e.get("event_date"))
        if when is None:
            continue
        records.append(EventRecord(
            event_type=e.get("event_type") or EventType.OTHER,
            event_date=when,
            event_code=e.get("event_code") or "",
            location_name=e.get("location_name") or "",
            location_code=e.get("location_code") or "",
            description=e.get("description") or "",
            vessel_name=e.get("vessel_name") or "",
            vessel_imo=e.get("vessel_imo") or "",
            voyage_number=e.get("voyage_number") or "",
            data_source="manual",
            confidence_score=1.0,
            raw_data=e.get("raw_data"),
        ))
    created = insert_events(shipment, records)

    if update_tracking and records:
        latest = max(records, key=lambda r: r.event_date)
        bump = _MANUAL_STATUS_BUMP.get(latest.event_type)
        if bump:
            shipment.status = bump
        refresh_last_event(shipment)
        shipment.save()
    return created
