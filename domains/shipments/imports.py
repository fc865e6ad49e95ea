# domains/shipments/imports.py
"""
대량 import (ShipsGo export CSV/XLSX 의 행 → Shipment + 이벤트).

파일 디코딩은 호출부 몫이고 여기서는 "헤더 → 값" dict 목록만 받는다.
행 단위 실패는 배치를 멈추지 않고 errors 에 누적 (예시는 최대 10건).
"""
from __future__ import annotations

import logging
import re
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

from django.conf import settings
from django.db import IntegrityError, close_old_connections, connection, transaction
from django.utils import timezone

from .adapters.base import ProviderTrackingResult
from .carriers import canonical_tracking_number, detect_import_type, resolve_carrier_code
from .dates import isoformat, parse_day_first
from .events import synthesize
from .models import EventType, Shipment, ShipmentStatus
from .services import insert_events, locked_shipments, refresh_last_event
from .status_map import classify

logger = logging.getLogger(__name__)

CSV_DATA_SOURCE = "shipsgo_csv"
MAX_REPORTED_ERRORS = 10

_PLACEHOLDERS = {"", "-"}

# 헤더 후보 (대소문자 무시)
CONTAINER_COLUMNS = ("container", "container number", "tracking number", "tracking_number")
CARRIER_COLUMNS = ("carrier", "shipping line")
_PORT_CODE_RE = re.compile(r"^[A-Z]{5}$")


@dataclass
class ImportOptions:
    skip_duplicates: bool = True
    update_existing: bool = False
    import_events: bool = True
    batch_size: int = 50

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "ImportOptions":
        data = data or {}
        return cls(
            skip_duplicates=bool(data.get("skip_duplicates", True)),
            update_existing=bool(data.get("update_existing", False)),
            import_events=bool(data.get("import_events", True)),
            batch_size=max(int(data.get("batch_size") or 50), 1),
        )


@dataclass
class ImportStats:
    total: int = 0
    imported: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0
    events_created: int = 0


@dataclass
class ImportResult:
    stats: ImportStats = field(default_factory=ImportStats)
    errors: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def message(self) -> str:
        s = self.stats
        msg = (
            f"Import completato: {s.imported} nuovi, {s.updated} aggiornati, "
            f"{s.skipped} saltati, {s.errors} errori"
        )
        if s.events_created:
            msg += f", {s.events_created} eventi creati"
        return msg

    def as_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "stats": asdict(self.stats),
            "message": self.message,
            "errors": self.errors[:MAX_REPORTED_ERRORS],
        }


@dataclass
class _RowOutcome:
    kind: str  # imported | updated | skipped | blank | error
    events_created: int = 0
    error: Optional[Dict[str, Any]] = None


# ---- 행 파싱 ----------------------------------------------------------------
class _Row:
    """대소문자/공백 무시 헤더 조회 + '-' 플레이스홀더 제거."""

    def __init__(self, raw: Mapping[str, Any]):
        self.raw = dict(raw)
        self._lower = {str(k).strip().lower(): v for k, v in raw.items()}

    def get(self, *names: str) -> Optional[str]:
        for name in names:
            value = self._lower.get(name.lower())
            if value is None:
                continue
            s = str(value).strip()
            if s not in _PLACEHOLDERS:
                return s
        return None


def extract_port_code(port: Optional[str]) -> Optional[str]:
    if not port:
        return None
    if _PORT_CODE_RE.match(port):
        return port
    return re.sub(r"[^A-Za-z]", "", port)[:5].upper() or None


def extract_port_name(port: Optional[str]) -> Optional[str]:
    if not port:
        return None
    return port.split(",")[0].strip() or None


def _to_float(value: Optional[str]) -> Optional[float]:
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None


def _to_int(value: Optional[str], default: int) -> int:
    try:
        return int(value) if value is not None else default
    except ValueError:
        return default


def infer_status(raw_status: Optional[str], tracking_type: str, loading: Optional[datetime],
                 discharge: Optional[datetime], now: datetime) -> str:
    # 행에 상태 문자열이 있으면 항상 그것이 우선 (날짜 추론은 상태가 없을 때만)
    if raw_status:
        return classify(raw_status, tracking_type)
    if discharge and discharge < now:
        return ShipmentStatus.DELIVERED
    if loading and loading < now:
        return ShipmentStatus.IN_TRANSIT
    return ShipmentStatus.REGISTERED


# ---- 본체 -------------------------------------------------------------------
class BulkImporter:
    def __init__(self, organization, options: Optional[ImportOptions] = None, *, actor: str = ""):
        self.organization = organization
        self.options = options or ImportOptions()
        self.actor = actor

    def run(self, rows: Iterable[Mapping[str, Any]]) -> ImportResult:
        rows = list(rows)
        result = ImportResult()
        size = self.options.batch_size
        workers = int(getattr(settings, "TRACKING_IMPORT_MAX_WORKERS", 4) or 1)
        pause = float(getattr(settings, "TRACKING_IMPORT_CHUNK_PAUSE", 0.1) or 0)

        for start in range(0, len(rows), size):
            chunk = list(enumerate(rows[start:start + size], start=start))
            if workers <= 1 or len(chunk) == 1:
                outcomes = [self._process(i, row) for i, row in chunk]
            else:
                with ThreadPoolExecutor(max_workers=min(workers, len(chunk))) as pool:
                    outcomes = list(pool.map(lambda item: self._process_in_thread(*item), chunk))
            for outcome in outcomes:
                self._accumulate(result, outcome)
            if pause and start + size < len(rows):
                time.sleep(pause)

        logger.info("import finished for org %s: %s", self.organization.pk, asdict(result.stats))
        return result

    @staticmethod
    def _accumulate(result: ImportResult, outcome: _RowOutcome) -> None:
        s = result.stats
        if outcome.kind == "blank":
            s.skipped += 1
            return
        s.total += 1
        if outcome.kind == "imported":
            s.imported += 1
        elif outcome.kind == "updated":
            s.updated += 1
        elif outcome.kind == "skipped":
            s.skipped += 1
        elif outcome.kind == "error":
            s.errors += 1
            if len(result.errors) < MAX_REPORTED_ERRORS:
                result.errors.append(outcome.error)
        s.events_created += outcome.events_created

    def _process_in_thread(self, index: int, raw: Mapping[str, Any]) -> _RowOutcome:
        # 워커 스레드는 자기 DB 커넥션을 쓰고 끝나면 닫는다
        close_old_connections()
        try:
            return self._process(index, raw)
        finally:
            connection.close()

    def _process(self, index: int, raw: Mapping[str, Any]) -> _RowOutcome:
        row_number = index + 2  # 헤더 + 1-based
        row = _Row(raw)
        number = canonical_tracking_number(row.get(*CONTAINER_COLUMNS))
        if not number:
            return _RowOutcome("blank")
        try:
            return self._import_row(row, number)
        except Exception as exc:  # 행 단위 실패는 배치를 멈추지 않음
            logger.exception("import row %d (%s) failed", row_number, number)
            return _RowOutcome("error", error={"row": row_number, "container": number, "error": str(exc)})

    @transaction.atomic
    def _import_row(self, row: _Row, number: str) -> _RowOutcome:
        now = timezone.now()
        opts = self.options
        tracking_type = detect_import_type(number)
        carrier_name = row.get(*CARRIER_COLUMNS) or ""
        carrier_code = resolve_carrier_code(carrier_name)
        loading = parse_day_first(row.get("Date Of Loading"))
        discharge = parse_day_first(row.get("Date Of Discharge"))
        raw_status = row.get("Status")
        status = infer_status(raw_status, tracking_type, loading, discharge, now)
        pol, pod = row.get("Port Of Loading"), row.get("Port Of Discharge")

        metadata = {
            "source": "shipsgo_csv_import",
            "import_date": now.isoformat(),
            "import_user": self.actor,
            "shipsgo_status": raw_status,
            "booking_number": row.get("Booking"),
            "co2_emissions_tons": _to_float(row.get("CO₂ Emission (Tons)", "CO2 Emission (Tons)")),
            "pol_full": pol,
            "pod_full": pod,
            "pol_country": row.get("POL Country"),
            "pod_country": row.get("POD Country"),
            "loading_date": isoformat(loading),
            "discharge_date": isoformat(discharge),
            "transit_time_days": (discharge - loading).days if (loading and discharge) else None,
            "tags": row.get("Tags"),
            "container_count": _to_int(row.get("Container Count"), 1),
            "container_size": row.get("Container Size"),
            "container_type": row.get("Container Type"),
        }
        fields = {
            "tracking_type": tracking_type,
            "reference_number": row.get("Reference") or "",
            "carrier_code": carrier_code,
            "carrier_name": carrier_name,
            "origin_port": extract_port_code(pol) or "",
            "origin_name": extract_port_name(pol) or "",
            "destination_port": extract_port_code(pod) or "",
            "destination_name": extract_port_name(pod) or "",
            "status": status,
            "eta": discharge if (discharge and discharge > now) else None,
        }

        base = locked_shipments(self.organization, number)
        existing_active = base.filter(active=True).first()
        existing_inactive = None if existing_active else base.filter(active=False).order_by("-updated_at").first()

        if existing_active and opts.skip_duplicates and not opts.update_existing:
            logger.debug("skipped duplicate %s", number)
            return _RowOutcome("skipped")

        if existing_active and opts.update_existing:
            shipment = existing_active
            for name, value in fields.items():
                setattr(shipment, name, value)
            shipment.metadata = {**(shipment.metadata or {}), **metadata, "last_csv_update": now.isoformat()}
            shipment.save()
            kind = "updated"
        elif existing_active:
            # skip_duplicates=False, update_existing=False: 기존 행 유지
            shipment = existing_active
            kind = "skipped"
        elif existing_inactive:
            shipment = existing_inactive
            for name, value in fields.items():
                setattr(shipment, name, value)
            shipment.active = True
            shipment.metadata = {**metadata, "reactivated_at": now.isoformat(), "reactivated_from": "csv_import"}
            if not self._claim(shipment, number):
                return _RowOutcome("skipped")
            purged, _ = shipment.events.filter(event_type=EventType.DELETED).delete()
            logger.info("reactivated %s (%d deleted markers purged)", number, purged)
            kind = "imported"
        else:
            shipment = Shipment(organization=self.organization, tracking_number=number, metadata=metadata, **fields)
            if not self._claim(shipment, number):
                return _RowOutcome("skipped")
            kind = "imported"

        created = 0
        if opts.import_events and raw_status and kind != "skipped":
            result = ProviderTrackingResult(
                provider="shipsgo",
                status=raw_status,
                loading_date=loading,
                discharge_date=discharge,
                status_date=None,
                origin_port=fields["origin_port"],
                origin_name=fields["origin_name"],
                destination_port=fields["destination_port"],
                destination_name=fields["destination_name"],
                data_source=CSV_DATA_SOURCE,
            )
            records = synthesize(shipment, result, now=now)
            for r in records:
                r.raw_data = {**(r.raw_data or {}), "csv_row": row.raw}
            created = len(insert_events(shipment, records))
            refresh_last_event(shipment)
            shipment.save(update_fields=["last_event_date", "last_event_location", "last_event_description", "updated_at"])
        return _RowOutcome(kind, events_created=created)

    @staticmethod
    def _claim(shipment: Shipment, number: str) -> bool:
        """활성 행 저장. 다른 import/등록이 먼저 활성화했으면 False (중복으로 건너뜀)"""
        try:
            with transaction.atomic():
                shipment.save()
        except IntegrityError:
            logger.info("skipped %s: activated concurrently by another request", number)
            return False
        return True


def import_batch(rows: Iterable[Mapping[str, Any]], organization, options: Optional[ImportOptions] = None, *,
                 actor: str = "") -> ImportResult:
    return BulkImporter(organization, options, actor=actor).run(rows)
