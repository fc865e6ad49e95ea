# domains/shipments/adapters/ups.py
import logging
from datetime import datetime, timezone as dt_timezone
from typing import Any, Dict, List, Optional

from django.conf import settings

from ..dates import parse_dt_safe
from ..events import EventRecord, event_type_for_status
from ..exceptions import ProviderError
from ..models import EventType
from ..status_map import classify
from .base import CarrierAdapter, ClientCredentialsToken, ProviderTrackingResult

logger = logging.getLogger(__name__)

PUBLIC_URL = "https://www.ups.com/track/api/Track/GetStatus"

# activity.status.type
UPS_EVENT_TYPES = {
    "D": EventType.DELIVERED,
    "X": EventType.EXCEPTION,
    "P": EventType.DEPARTED,
    "M": EventType.REGISTERED,
    "O": EventType.OUT_FOR_DELIVERY,
}


def parse_ups_datetime(date_str: Optional[str], time_str: Optional[str] = None) -> Optional[datetime]:
    """UPS 는 date=YYYYMMDD, time=HHMMSS 로 분리해서 준다."""
    d = (date_str or "").strip()
    if len(d) != 8 or not d.isdigit():
        return None
    t = (time_str or "").strip().ljust(6, "0")[:6]
    if not t.isdigit():
        t = "000000"
    try:
        return datetime(
            int(d[:4]), int(d[4:6]), int(d[6:8]),
            int(t[:2]), int(t[2:4]), int(t[4:6]),
            tzinfo=dt_timezone.utc,
        )
    except ValueError:
        return None


class UPSAdapter(CarrierAdapter):
    """UPS Tracking API (OAuth2, Basic 인증으로 토큰 발급)."""

    code = "ups"
    data_source = "ups_api"
    public_fallback = True

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.client_id = settings.UPS_CLIENT_ID
        self.client_secret = settings.UPS_CLIENT_SECRET
        self.base_url = settings.UPS_API_URL.rstrip("/")
        self.token = ClientCredentialsToken(self._fetch_token)

    def _fetch_token(self) -> Dict[str, Any]:
        if not (self.client_id and self.client_secret):
            raise ProviderError("UPS credentials not configured")
        resp = self._request(
            "POST",
            f"{self.base_url}/security/v1/oauth/token",
            data={"grant_type": "client_credentials"},
            auth=(self.client_id, self.client_secret),
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        return self._json(resp)

    def track_authenticated(self, tracking_number, *, metadata):
        try:
            resp = self._request(
                "GET",
                f"{self.base_url}/track/v1/details/{tracking_number}",
                params={"locale": "en_US", "returnSignature": "false"},
                headers={
                    "Authorization": f"Bearer {self.token.get()}",
                    "transId": f"track-{tracking_number}",
                    "transactionSrc": "cargo-tracking",
                },
            )
        except ProviderError as exc:
            if exc.status_code == 401:
                self.token.invalidate()
            raise
        return self.normalize(self._json(resp))

    def track_public(self, tracking_number):
        resp = self._request(
            "POST",
            PUBLIC_URL,
            params={"loc": "en_US"},
            json={"Locale": "en_US", "TrackingNumber": [tracking_number]},
            headers={"Content-Type": "application/json"},
        )
        return self.normalize_public(self._json(resp))

    # ---- normalizers -------------------------------------------------------
    def normalize(self, data: Dict[str, Any]) -> ProviderTrackingResult:
        try:
            pkg = data["trackResponse"]["shipment"][0]["package"][0]
        except (KeyError, IndexError, TypeError) as exc:
            raise ProviderError("UPS: unexpected response shape") from exc

        events: List[EventRecord] = []
        for act in pkg.get("activity") or []:
            when = parse_ups_datetime(act.get("date"), act.get("time"))
            if when is None:
                continue
            status = act.get("status") or {}
            address = (act.get("location") or {}).get("address") or {}
            description = status.get("description") or ""
            mapped = UPS_EVENT_TYPES.get((status.get("type") or "").upper())
            events.append(EventRecord(
                event_type=mapped or event_type_for_status(classify(description)),
                event_date=when,
                event_code=(status.get("code") or "")[:20],
                location_name=address.get("city") or "",
                location_code=address.get("country") or address.get("countryCode") or "",
                description=description,
                data_source=self.data_source,
                confidence_score=1.0,
                raw_data=act,
            ))

        current = pkg.get("currentStatus") or {}
        eta = None
        delivered_at = None
        for d in pkg.get("deliveryDate") or []:
            when = parse_ups_datetime(d.get("date"), (pkg.get("deliveryTime") or {}).get("endTime"))
            if d.get("type") == "DEL":
                delivered_at = when
            elif d.get("type") in ("SDD", "RDD"):
                eta = when
        return ProviderTrackingResult(
            provider=self.code,
            status=current.get("description") or "",
            events=events,
            eta=eta,
            ata=delivered_at,
            status_date=delivered_at or max((e.event_date for e in events), default=None),
            metadata={"status_code": current.get("code")},
            raw=data,
            data_source=self.data_source,
        )

    def normalize_public(self, data: Dict[str, Any]) -> ProviderTrackingResult:
        details = (data or {}).get("trackDetails") or []
        if not details:
            raise ProviderError("UPS public: no tracking details")
        detail = details[0]
        events: List[EventRecord] = []
        for act in detail.get("shipmentProgressActivities") or []:
            when = parse_dt_safe(f"{act.get('date', '')} {act.get('time', '')}".strip())
            if when is None:
                continue
            description = act.get("activityScan") or ""
            events.append(EventRecord(
                event_type=event_type_for_status(classify(description)),
                event_date=when,
                location_name=act.get("location") or "",
                description=description,
                confidence_score=1.0,
                raw_data=act,
            ))
        return ProviderTrackingResult(
            provider=self.code,
            status=detail.get("packageStatus") or "",
            events=events,
            eta=parse_dt_safe(detail.get("scheduledDeliveryDate")),
            status_date=max((e.event_date for e in events), default=None),
            raw=data,
        )
