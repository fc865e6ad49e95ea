# domains/shipments/adapters/fedex.py
import json
import logging
from typing import Any, Dict, List

from django.conf import settings

from ..dates import parse_dt_safe
from ..events import EventRecord, event_type_for_status
from ..exceptions import ProviderError
from ..models import EventType
from ..status_map import classify
from .base import CarrierAdapter, ClientCredentialsToken, ProviderTrackingResult

logger = logging.getLogger(__name__)

PUBLIC_URL = "https://www.fedex.com/trackingCal/track"

# scanEvents[].eventType → 표준 이벤트
FEDEX_EVENT_TYPES = {
    "PU": EventType.DEPARTED,
    "DP": EventType.DEPARTED,
    "AR": EventType.ARRIVED,
    "OD": EventType.OUT_FOR_DELIVERY,
    "DL": EventType.DELIVERED,
    "DE": EventType.EXCEPTION,
    "RS": EventType.EXCEPTION,
    "HL": EventType.DELAYED,
    "CA": EventType.CANCELLED,
}


def _event_type(code: str, description: str) -> str:
    mapped = FEDEX_EVENT_TYPES.get((code or "").upper())
    if mapped:
        return mapped
    return event_type_for_status(classify(description))


def _date_of(date_and_times: List[Dict[str, Any]], kind: str):
    for item in date_and_times or []:
        if item.get("type") == kind:
            return parse_dt_safe(item.get("dateTime"))
    return None


class FedExAdapter(CarrierAdapter):
    """FedEx Track API v1 (OAuth2 client credentials)."""

    code = "fedex"
    data_source = "fedex_api"
    public_fallback = True

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.client_id = settings.FEDEX_CLIENT_ID
        self.client_secret = settings.FEDEX_CLIENT_SECRET
        self.base_url = settings.FEDEX_API_URL.rstrip("/")
        self.token = ClientCredentialsToken(self._fetch_token)

    def _fetch_token(self) -> Dict[str, Any]:
        if not (self.client_id and self.client_secret):
            raise ProviderError("FedEx credentials not configured")
        resp = self._request(
            "POST",
            f"{self.base_url}/oauth/token",
            data={
                "grant_type": "client_credentials",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
            },
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        return self._json(resp)

    def track_authenticated(self, tracking_number, *, metadata):
        try:
            resp = self._request(
                "POST",
                f"{self.base_url}/track/v1/trackingnumbers",
                json={
                    "includeDetailedScans": True,
                    "trackingInfo": [{"trackingNumberInfo": {"trackingNumber": tracking_number}}],
                },
                headers={
                    "Authorization": f"Bearer {self.token.get()}",
                    "Content-Type": "application/json",
                    "X-locale": "en_US",
                },
            )
        except ProviderError as exc:
            # 만료 전 폐기된 토큰
            if exc.status_code == 401:
                self.token.invalidate()
            raise
        return self.normalize(self._json(resp))

    def track_public(self, tracking_number):
        resp = self._request(
            "POST",
            PUBLIC_URL,
            data={
                "action": "trackpackages",
                "format": "json",
                "locale": "en_US",
                "version": "1",
                "data": json.dumps({
                    "TrackPackagesRequest": {
                        "trackingInfoList": [{"trackNumberInfo": {"trackingNumber": tracking_number}}],
                    }
                }),
            },
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        return self.normalize_public(self._json(resp))

    # ---- normalizers -------------------------------------------------------
    def normalize(self, data: Dict[str, Any]) -> ProviderTrackingResult:
        try:
            track = data["output"]["completeTrackResults"][0]["trackResults"][0]
        except (KeyError, IndexError, TypeError) as exc:
            raise ProviderError("FedEx: unexpected response shape") from exc
        if track.get("error"):
            raise ProviderError(f"FedEx: {track['error'].get('message') or track['error']}")

        events: List[EventRecord] = []
        for scan in track.get("scanEvents") or []:
            when = parse_dt_safe(scan.get("date"))
            if when is None:
                continue
            location = scan.get("scanLocation") or {}
            description = scan.get("eventDescription") or ""
            code = scan.get("eventType") or ""
            events.append(EventRecord(
                event_type=_event_type(code, description),
                event_date=when,
                event_code=code[:20],
                location_name=location.get("city") or "",
                location_code=location.get("countryCode") or "",
                description=description,
                data_source=self.data_source,
                confidence_score=1.0,
                raw_data=scan,
            ))

        latest = track.get("latestStatusDetail") or {}
        dates = track.get("dateAndTimes") or []
        delivered_at = _date_of(dates, "ACTUAL_DELIVERY")
        eta = _date_of(dates, "ESTIMATED_DELIVERY") or parse_dt_safe(
            (track.get("estimatedDeliveryTimeWindow") or {}).get("window", {}).get("ends")
        )
        status_date = max((e.event_date for e in events), default=None)
        return ProviderTrackingResult(
            provider=self.code,
            status=latest.get("description") or latest.get("statusByLocale") or "",
            events=events,
            eta=eta,
            ata=delivered_at,
            status_date=delivered_at or status_date,
            metadata={
                "service_type": (track.get("serviceDetail") or {}).get("description"),
                "status_code": latest.get("code"),
            },
            raw=data,
            data_source=self.data_source,
        )

    def normalize_public(self, data: Dict[str, Any]) -> ProviderTrackingResult:
        packages = ((data or {}).get("TrackPackagesResponse") or {}).get("packageList") or []
        if not packages:
            raise ProviderError("FedEx public: no package found")
        pkg = packages[0]
        events: List[EventRecord] = []
        for scan in pkg.get("scanEventList") or []:
            when = parse_dt_safe(f"{scan.get('date', '')}T{scan.get('time', '00:00:00')}")
            if when is None:
                continue
            description = scan.get("status") or ""
            events.append(EventRecord(
                event_type=_event_type(scan.get("statusCD") or "", description),
                event_date=when,
                event_code=(scan.get("statusCD") or "")[:20],
                location_name=scan.get("scanLocation") or "",
                description=description,
                confidence_score=1.0,
                raw_data=scan,
            ))
        delivered_at = parse_dt_safe(pkg.get("actDeliveryDt"))
        return ProviderTrackingResult(
            provider=self.code,
            status=pkg.get("keyStatus") or "",
            events=events,
            eta=parse_dt_safe(pkg.get("estDeliveryDt")),
            ata=delivered_at,
            status_date=delivered_at or max((e.event_date for e in events), default=None),
            raw=data,
        )
