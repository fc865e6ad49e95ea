# domains/shipments/adapters/shipsgo.py
"""
ShipsGo 어댑터.

- 해상(container / bl): v1.2
    GET  /tracking/{containerId}          (등록된 건, metadata.shipsgo_container_id)
    GET  /ContainerService/GetContainerInfo/  (미등록 건, 컨테이너 번호로 조회)
    POST /tracking                        (등록 → containerId)
    DELETE /tracking/{containerId}
- 항공(awb): v2
    GET  /trackings/{id}, POST /trackings, DELETE /trackings/{id}

둘 다 Bearer 토큰. 429 는 base 의 재시도 규칙을 따른다.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from django.conf import settings

from ..carriers import airline_code_for, scac_for
from ..dates import parse_day_first, parse_dt_safe
from ..events import EventRecord
from ..exceptions import ProviderError
from ..models import EventType
from .base import CarrierAdapter, ProviderTrackingResult

logger = logging.getLogger(__name__)

SHIPSGO_EVENT_CONFIDENCE = 0.95

# 이벤트 설명 부분 일치 → 표준 이벤트 (순서대로)
MARITIME_EVENT_TYPES = (
    ("gate in", EventType.GATE_IN),
    ("gate out", EventType.GATE_OUT),
    ("loaded", EventType.LOADED_ON_VESSEL),
    ("discharged", EventType.DISCHARGED_FROM_VESSEL),
    ("delivered", EventType.DELIVERED),
    ("empty", EventType.EMPTY_RETURNED),
    ("departed", EventType.DEPARTED),
    ("arrived", EventType.ARRIVED),
)

AIR_EVENT_TYPES = {
    "DEP": EventType.DEPARTED,
    "ARR": EventType.ARRIVED,
    "DLV": EventType.DELIVERED,
    "RCS": EventType.REGISTERED,
}


def maritime_event_type(description: Optional[str]) -> str:
    s = (description or "").lower()
    for keyword, event_type in MARITIME_EVENT_TYPES:
        if keyword in s:
            return event_type
    return EventType.OTHER


def _date_field(value) -> Optional[datetime]:
    # GetContainerInfo 는 {"Date": "21/03/2024", "IsActual": true} 형태
    if isinstance(value, dict):
        value = value.get("Date")
    return parse_dt_safe(value) or parse_day_first(value)


class _ShipsGoBase(CarrierAdapter):
    def _headers(self) -> Dict[str, str]:
        if not self.token:
            raise ProviderError(f"{self.code} token not configured")
        return {"Authorization": f"Bearer {self.token}", "Content-Type": "application/json"}


class ShipsGoMaritimeAdapter(_ShipsGoBase):
    code = "shipsgo"
    data_source = "shipsgo_api"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.base_url = settings.SHIPSGO_API_URL.rstrip("/")
        self.token = settings.SHIPSGO_API_KEY

    def track_authenticated(self, tracking_number, *, metadata):
        container_id = (metadata or {}).get("shipsgo_container_id")
        if container_id:
            resp = self._request("GET", f"{self.base_url}/tracking/{container_id}", headers=self._headers())
            return self.normalize(self._json(resp))

        # 미등록: 컨테이너 번호로 직접 조회
        resp = self._request(
            "GET",
            f"{self.base_url}/ContainerService/GetContainerInfo/",
            params={
                "authCode": self.token,
                "requestId": tracking_number,
                "mapPoint": "false",
            },
            headers=self._headers(),
        )
        return self.normalize_container_info(self._json(resp))

    def register(self, tracking_number, *, carrier_code="", metadata=None):
        resp = self._request(
            "POST",
            f"{self.base_url}/tracking",
            json={"containerNumber": tracking_number, "shippingLine": scac_for(carrier_code)},
            headers=self._headers(),
        )
        data = self._json(resp) or {}
        out = {}
        if data.get("containerId"):
            out["shipsgo_container_id"] = data["containerId"]
        if data.get("trackingId"):
            out["shipsgo_tracking_id"] = data["trackingId"]
        return out

    def deregister(self, tracking_number, *, metadata=None):
        container_id = (metadata or {}).get("shipsgo_container_id")
        if not container_id:
            return None
        self._request("DELETE", f"{self.base_url}/tracking/{container_id}", headers=self._headers())
        return None

    # ---- normalizers -------------------------------------------------------
    def normalize(self, data: Dict[str, Any]) -> ProviderTrackingResult:
        containers = (data or {}).get("containers") or ([data] if data else [])
        if not containers:
            raise ProviderError("ShipsGo: empty response")

        events: List[EventRecord] = []
        for container in containers:
            vessel = container.get("vessel") or {}
            for e in container.get("events") or []:
                when = parse_dt_safe(e.get("date"))
                if when is None:
                    continue
                description = e.get("description") or ""
                events.append(EventRecord(
                    event_type=maritime_event_type(description),
                    event_date=when,
                    event_code=description[:3].upper(),
                    location_name=e.get("location") or "",
                    location_code=e.get("unlocode") or "",
                    description=description,
                    vessel_name=vessel.get("name") or "",
                    vessel_imo=str(vessel.get("imo") or ""),
                    voyage_number=container.get("voyage") or "",
                    data_source=self.data_source,
                    confidence_score=SHIPSGO_EVENT_CONFIDENCE,
                    raw_data=e,
                ))

        latest = containers[-1]
        vessel = latest.get("vessel") or {}
        loaded = [e.event_date for e in events if e.event_type == EventType.LOADED_ON_VESSEL]
        discharged = [e.event_date for e in events if e.event_type == EventType.DISCHARGED_FROM_VESSEL]
        last_event = latest.get("lastEvent") or {}
        return ProviderTrackingResult(
            provider=self.code,
            status=last_event.get("description") or latest.get("status") or "",
            events=events,
            eta=parse_dt_safe(latest.get("eta")),
            ata=parse_dt_safe(latest.get("ata")),
            loading_date=_date_field(latest.get("loadingDate")) or (min(loaded) if loaded else None),
            discharge_date=_date_field(latest.get("dischargeDate")) or (max(discharged) if discharged else None),
            status_date=parse_dt_safe(last_event.get("date")),
            vessel_name=vessel.get("name") or "",
            vessel_imo=str(vessel.get("imo") or ""),
            voyage_number=latest.get("voyage") or "",
            origin_port=latest.get("pol") or "",
            destination_port=latest.get("pod") or "",
            metadata={
                k: v for k, v in {
                    "shipsgo_container_id": latest.get("containerId"),
                    "container_size": latest.get("containerSize"),
                    "container_type": latest.get("containerType"),
                }.items() if v
            },
            raw=data,
            data_source=self.data_source,
        )

    def normalize_container_info(self, data: Any) -> ProviderTrackingResult:
        info = data[0] if isinstance(data, list) and data else data
        if not isinstance(info, dict) or not info:
            raise ProviderError("ShipsGo: container not found")
        if str(info.get("Message") or "").lower().startswith("error"):
            raise ProviderError(f"ShipsGo: {info['Message']}")

        loading = _date_field(info.get("LoadingDate"))
        discharge = _date_field(info.get("DischargeDate"))
        status = info.get("Status") or ""
        raw_discharge = info.get("DischargeDate")
        # IsActual=false 이면 아직 예정일 (ETA 로 취급)
        actual = raw_discharge.get("IsActual", True) if isinstance(raw_discharge, dict) else True
        return ProviderTrackingResult(
            provider=self.code,
            status=status,
            eta=_date_field(info.get("ETA")) or (None if actual else discharge),
            loading_date=loading,
            discharge_date=discharge if actual else None,
            status_date=discharge if status.lower() in ("discharged", "arrived") else loading,
            vessel_name=info.get("Vessel") or "",
            vessel_imo=str(info.get("VesselIMO") or ""),
            voyage_number=info.get("VesselVoyage") or "",
            origin_port=info.get("Pol") or "",
            origin_name=info.get("FromCountry") or "",
            destination_port=info.get("Pod") or "",
            destination_name=info.get("ToCountry") or "",
            metadata={
                k: v for k, v in {
                    "container_type": info.get("ContainerType"),
                    "container_teu": info.get("ContainerTEU"),
                    "bl_container_count": info.get("BLContainerCount"),
                    "live_map_url": info.get("LiveMapUrl"),
                }.items() if v
            },
            raw=data,
            data_source=self.data_source,
        )


class ShipsGoAirAdapter(_ShipsGoBase):
    code = "shipsgo_air"
    data_source = "shipsgo_air_api"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.base_url = settings.SHIPSGO_V2_API_URL.rstrip("/")
        self.token = settings.SHIPSGO_V2_TOKEN

    def track_authenticated(self, tracking_number, *, metadata):
        tracking_id = (metadata or {}).get("shipsgo_tracking_id")
        if not tracking_id:
            raise ProviderError("No ShipsGo tracking ID found")
        resp = self._request("GET", f"{self.base_url}/trackings/{tracking_id}", headers=self._headers())
        return self.normalize(self._json(resp))

    def register(self, tracking_number, *, carrier_code="", metadata=None):
        resp = self._request(
            "POST",
            f"{self.base_url}/trackings",
            json={"awbNumber": tracking_number, "airline": airline_code_for(carrier_code)},
            headers=self._headers(),
        )
        data = self._json(resp) or {}
        return {"shipsgo_tracking_id": data["id"]} if data.get("id") else {}

    def deregister(self, tracking_number, *, metadata=None):
        tracking_id = (metadata or {}).get("shipsgo_tracking_id")
        if not tracking_id:
            return None
        self._request("DELETE", f"{self.base_url}/trackings/{tracking_id}", headers=self._headers())
        return None

    def normalize(self, data: Dict[str, Any]) -> ProviderTrackingResult:
        if not isinstance(data, dict) or not data:
            raise ProviderError("ShipsGo air: empty response")
        events: List[EventRecord] = []
        for e in data.get("events") or []:
            when = parse_dt_safe(e.get("eventDate"))
            if when is None:
                continue
            code = (e.get("eventCode") or "").upper()
            events.append(EventRecord(
                event_type=AIR_EVENT_TYPES.get(code, EventType.OTHER),
                event_date=when,
                event_code=code[:20],
                location_name=e.get("location") or "",
                location_code=e.get("airport") or "",
                description=e.get("description") or code,
                data_source=self.data_source,
                confidence_score=SHIPSGO_EVENT_CONFIDENCE,
                raw_data=e,
            ))
        last_event = data.get("lastEvent") or {}
        departures = [ev.event_date for ev in events if ev.event_type == EventType.DEPARTED]
        return ProviderTrackingResult(
            provider=self.code,
            status=last_event.get("eventCode") or "",
            events=events,
            eta=parse_dt_safe(data.get("estimatedDelivery")),
            ata=parse_dt_safe(data.get("actualDelivery")),
            status_date=parse_dt_safe(last_event.get("eventDate")),
            loading_date=min(departures) if departures else None,
            flight_number=data.get("flightNumber") or "",
            origin_port=data.get("origin") or "",
            destination_port=data.get("destination") or "",
            metadata={"airline": data.get("airline")} if data.get("airline") else {},
            raw=data,
            data_source=self.data_source,
        )
