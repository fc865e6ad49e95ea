"""
이벤트 합성기: ProviderTrackingResult(또는 import 행) → 표준 TrackingEvent 레코드.

- 운송사가 보고한 이벤트를 그대로 먼저 싣고
- 원문 상태에 대응하는 마일스톤 이벤트 (날짜가 있을 때만)
- 해상 건은 선적/양하 날짜가 과거면 LOADED / DISCHARGED 를 보충(backfill)
- 양하가 과거이고 인도 신호가 없으면 추정 DELIVERED (양하 + N일, confidence 0.7)
- (event_type, event_date) 기준 중복 제거, 먼저 나온 것이 유지됨
"""
from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Tuple

from django.conf import settings
from django.utils import timezone

from .models import MARITIME_TYPES, EventType, ShipmentStatus

if TYPE_CHECKING:
    from .adapters.base import ProviderTrackingResult

STATUS_EVENT_CONFIDENCE = 0.9
BACKFILL_CONFIDENCE = 0.95
ESTIMATED_DELIVERY_CONFIDENCE = 0.7


@dataclass
class EventRecord:
    event_type: str
    event_date: datetime
    event_code: str = ""
    location_name: str = ""
    location_code: str = ""
    description: str = ""
    vessel_name: str = ""
    vessel_imo: str = ""
    voyage_number: str = ""
    data_source: str = ""
    confidence_score: float = 1.0
    raw_data: Any = None

    @property
    def key(self) -> Tuple[str, datetime]:
        return (str(self.event_type), self.event_date)

    def as_model_fields(self) -> Dict[str, Any]:
        out = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if f.type == "str" and value is None:
                value = ""
            out[f.name] = value
        out["event_type"] = str(self.event_type)
        return out


# 원문 상태 → (이벤트 타입, 코드, 설명)
STATUS_TO_EVENT = {
    "gate in": (EventType.GATE_IN, "GIN", "Container entered terminal"),
    "gate out": (EventType.GATE_OUT, "GOUT", "Container left terminal"),
    "loaded": (EventType.LOADED_ON_VESSEL, "LOD", "Container loaded on vessel"),
    "discharged": (EventType.DISCHARGED_FROM_VESSEL, "DIS", "Container discharged from vessel"),
    "delivered": (EventType.DELIVERED, "DEL", "Container delivered to consignee"),
    "empty": (EventType.EMPTY_RETURNED, "ERT", "Empty container returned"),
    "in transit": (EventType.DEPARTED, "DEP", "Vessel departed"),
}

# 상태 변경 → 이벤트 타입 (registered / in_transit 로의 변경은 이벤트 없음)
STATUS_CHANGE_EVENTS = {
    ShipmentStatus.OUT_FOR_DELIVERY: EventType.OUT_FOR_DELIVERY,
    ShipmentStatus.DELIVERED: EventType.DELIVERED,
    ShipmentStatus.EXCEPTION: EventType.EXCEPTION,
    ShipmentStatus.DELAYED: EventType.DELAYED,
    ShipmentStatus.CANCELLED: EventType.CANCELLED,
}

_ORIGIN_SIDE = {EventType.LOADED_ON_VESSEL, EventType.DEPARTED, EventType.GATE_IN}


def event_type_for_status(status: str) -> str:
    return STATUS_CHANGE_EVENTS.get(status, EventType.OTHER)


def dedupe_events(records: Iterable[EventRecord]) -> List[EventRecord]:
    seen = set()
    out: List[EventRecord] = []
    for r in records:
        if r.event_date is None or r.key in seen:
            continue
        seen.add(r.key)
        out.append(r)
    return out


def latest_event(records: Iterable[EventRecord]) -> Optional[EventRecord]:
    candidates = [r for r in records if r.event_type != EventType.DELETED]
    if not candidates:
        return None
    return max(candidates, key=lambda r: r.event_date)


def _milestone_date(event_type: str, result: "ProviderTrackingResult") -> Optional[datetime]:
    if event_type in (EventType.LOADED_ON_VESSEL, EventType.DEPARTED):
        return result.loading_date or result.status_date
    if event_type == EventType.DISCHARGED_FROM_VESSEL:
        return result.discharge_date or result.status_date
    if event_type in (EventType.DELIVERED, EventType.EMPTY_RETURNED):
        return result.ata or result.status_date
    return result.status_date


def _location(event_type: str, result: "ProviderTrackingResult") -> Tuple[str, str]:
    if event_type in _ORIGIN_SIDE:
        return result.origin_name, result.origin_port
    return result.destination_name, result.destination_port


def _milestone(
    event_type: str,
    code: str,
    description: str,
    when: datetime,
    result: "ProviderTrackingResult",
    confidence: float,
) -> EventRecord:
    location_name, location_code = _location(event_type, result)
    return EventRecord(
        event_type=event_type,
        event_date=when,
        event_code=code,
        description=description,
        location_name=location_name or "",
        location_code=location_code or "",
        vessel_name=result.vessel_name or "",
        vessel_imo=result.vessel_imo or "",
        voyage_number=result.voyage_number or "",
        data_source=result.data_source,
        confidence_score=confidence,
    )


def status_event(result: "ProviderTrackingResult") -> Optional[EventRecord]:
    """원문 상태가 마일스톤에 대응하고 해당 날짜가 있으면 이벤트 1건."""
    mapped = STATUS_TO_EVENT.get(str(result.status or "").strip().lower())
    if not mapped:
        return None
    event_type, code, description = mapped
    when = _milestone_date(event_type, result)
    if when is None:
        return None
    record = _milestone(event_type, code, description, when, result, STATUS_EVENT_CONFIDENCE)
    record.raw_data = {"status": result.status}
    return record


def synthesize(
    shipment,
    result: "ProviderTrackingResult",
    *,
    now: Optional[datetime] = None,
    sort: bool = True,
) -> List[EventRecord]:
    """
    shipment 는 tracking_type 만 참조 (저장 전 행이어도 무방).
    transit_time_days 는 result.metadata 에 기록된다.
    """
    now = now or timezone.now()
    records: List[EventRecord] = list(result.events or [])

    ev = status_event(result)
    if ev is not None:
        records.append(ev)

    loading, discharge = result.loading_date, result.discharge_date
    if getattr(shipment, "tracking_type", None) in MARITIME_TYPES:
        if loading and loading <= now:
            records.append(_milestone(
                EventType.LOADED_ON_VESSEL, "LOD", "Container loaded on vessel",
                loading, result, BACKFILL_CONFIDENCE,
            ))
        if discharge and discharge <= now:
            records.append(_milestone(
                EventType.DISCHARGED_FROM_VESSEL, "DIS", "Container discharged from vessel",
                discharge, result, BACKFILL_CONFIDENCE,
            ))

    delivered_seen = result.ata is not None or any(
        r.event_type == EventType.DELIVERED for r in records
    )
    if discharge and discharge <= now and not delivered_seen:
        days = getattr(settings, "TRACKING_ESTIMATED_DELIVERY_DAYS", 3)
        estimated = _milestone(
            EventType.DELIVERED, "DEL", "Estimated delivery to consignee",
            discharge + timedelta(days=days), result, ESTIMATED_DELIVERY_CONFIDENCE,
        )
        estimated.raw_data = {"estimated": True, "discharge_date": discharge.isoformat()}
        records.append(estimated)

    if loading and discharge:
        result.metadata["transit_time_days"] = (discharge - loading).days

    out = dedupe_events(records)
    if sort:
        out.sort(key=lambda r: r.event_date)
    return out


def status_change_event(
    old_status: str,
    new_status: str,
    when: datetime,
    *,
    data_source: str = "system",
    description: str = "",
) -> Optional[EventRecord]:
    if not new_status or old_status == new_status:
        return None
    event_type = STATUS_CHANGE_EVENTS.get(new_status)
    if event_type is None:
        return None
    return EventRecord(
        event_type=event_type,
        event_date=when,
        event_code=str(event_type)[:20],
        description=description or f"Status changed from {old_status} to {new_status}",
        data_source=data_source,
        confidence_score=1.0,
        raw_data={"from": old_status, "to": new_status},
    )
