# domains/shipments/adapters/dhl.py
import logging
from typing import Any, Dict, List

from django.conf import settings

from ..dates import parse_dt_safe
from ..events import EventRecord, event_type_for_status
from ..exceptions import ProviderError
from ..models import EventType
from ..status_map import classify
from .base import CarrierAdapter, ProviderTrackingResult

logger = logging.getLogger(__name__)

PUBLIC_URL = "https://www.dhl.com/shipmentTracking"

# DHL checkpoint 코드 → 표준 이벤트
DHL_EVENT_TYPES = {
    "PU": EventType.DEPARTED,
    "PL": EventType.OTHER,
    "DF": EventType.DEPARTED,
    "AF": EventType.ARRIVED,
    "OD": EventType.OUT_FOR_DELIVERY,
    "DD": EventType.DELIVERED,
    "RD": EventType.DELIVERED,
    "OK": EventType.DELIVERED,
    "RT": EventType.EXCEPTION,
    "OH": EventType.DELAYED,
    "MC": EventType.EXCEPTION,
}


def _event_type(code: str, description: str) -> str:
    mapped = DHL_EVENT_TYPES.get((code or "").upper())
    if mapped:
        return mapped
    return event_type_for_status(classify(description or code))


class DHLAdapter(CarrierAdapter):
    """DHL Shipment Tracking - Unified API (DHL-API-Key 헤더)."""

    code = "dhl"
    data_source = "dhl_api"
    public_fallback = True

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.api_key = settings.DHL_API_KEY
        self.base_url = settings.DHL_API_URL

    def track_authenticated(self, tracking_number, *, metadata):
        if not self.api_key:
            raise ProviderError("DHL API key not configured")
        resp = self._request(
            "GET",
            self.base_url,
            params={
                "trackingNumber": tracking_number,
                "requesterCountryCode": "IT",
                "language": "en",
            },
            headers={"DHL-API-Key": self.api_key, "Accept": "application/json"},
        )
        return self.normalize(self._json(resp))

    def track_public(self, tracking_number):
        resp = self._request(
            "GET",
            PUBLIC_URL,
            params={"AWB": tracking_number, "countryCode": "g0"},
            headers={"Accept": "application/json", "User-Agent": "Mozilla/5.0 (compatible; CargoTracker/1.0)"},
        )
        return self.normalize_public(self._json(resp), tracking_number)

    # ---- normalizers -------------------------------------------------------
    def normalize(self, data: Dict[str, Any]) -> ProviderTrackingResult:
        shipments = (data or {}).get("shipments") or []
        if not shipments:
            raise ProviderError("DHL: no shipment found")
        shipment = shipments[0]

        events: List[EventRecord] = []
        for e in shipment.get("events") or []:
            when = parse_dt_safe(e.get("timestamp"))
            if when is None:
                continue
            address = (e.get("location") or {}).get("address") or {}
            code = e.get("statusCode") or ""
            description = e.get("description") or e.get("status") or ""
            events.append(EventRecord(
                event_type=_event_type(code, description),
                event_date=when,
                event_code=str(code)[:20],
                location_name=address.get("addressLocality") or "",
                location_code=address.get("countryCode") or "",
                description=description,
                data_source=self.data_source,
                confidence_score=1.0,
                raw_data=e,
            ))

        status = shipment.get("status") or {}
        raw_status = status.get("statusCode") or status.get("status") or (events[0].event_code if events else "")
        status_date = parse_dt_safe(status.get("timestamp"))
        delivered = str(raw_status).lower() == "delivered"
        return ProviderTrackingResult(
            provider=self.code,
            status=raw_status,
            events=events,
            eta=parse_dt_safe(shipment.get("estimatedTimeOfDelivery") or shipment.get("estimatedDeliveryDate")),
            ata=status_date if delivered else None,
            status_date=status_date,
            metadata={
                "service_type": shipment.get("service"),
                "piece_ids": [p.get("id") for p in shipment.get("pieces") or [] if isinstance(p, dict)],
                "origin": ((shipment.get("origin") or {}).get("address") or {}).get("addressLocality"),
                "destination": ((shipment.get("destination") or {}).get("address") or {}).get("addressLocality"),
            },
            raw=data,
            data_source=self.data_source,
        )

    def normalize_public(self, data: Dict[str, Any], tracking_number: str) -> ProviderTrackingResult:
        tracking = ((data or {}).get("results") or [data or {}])[0]
        events: List[EventRecord] = []
        for cp in tracking.get("checkpoints") or []:
            when = parse_dt_safe(f"{cp.get('date', '')} {cp.get('time', '')}".strip())
            if when is None:
                continue
            description = cp.get("description") or ""
            events.append(EventRecord(
                event_type=event_type_for_status(classify(description)),
                event_date=when,
                event_code=str(cp.get("counter") or "")[:20],
                location_name=cp.get("location") or "",
                description=description,
                confidence_score=1.0,
                raw_data=cp,
            ))
        if not events and not tracking.get("delivery"):
            raise ProviderError("DHL public: no tracking data")

        latest = max(events, key=lambda e: e.event_date) if events else None
        delivered = (tracking.get("delivery") or {}).get("status") == "delivered" or (
            latest is not None and "delivered" in latest.description.lower()
        )
        return ProviderTrackingResult(
            provider=self.code,
            status="Delivered" if delivered else "In Transit",
            events=events,
            eta=parse_dt_safe(tracking.get("edd")),
            status_date=latest.event_date if latest else None,
            ata=latest.event_date if (delivered and latest) else None,
            metadata={"tracking_number": tracking.get("id") or tracking_number},
            raw=data,
        )
