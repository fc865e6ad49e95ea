"""
운송사 어댑터 테스트 (HTTP 는 가짜 세션으로 대체)
"""
from datetime import datetime, timedelta, timezone as dt_timezone
from types import SimpleNamespace

import pytest
import requests
from django.utils import timezone

from domains.shipments.adapters import (
    DHLAdapter,
    FedExAdapter,
    ParcelAdapter,
    ShipsGoAirAdapter,
    ShipsGoMaritimeAdapter,
    UPSAdapter,
    adapter_for_shipment,
    get_adapter,
)
from domains.shipments.adapters import base as adapter_base
from domains.shipments.adapters.base import ClientCredentialsToken, ProviderTrackingResult
from domains.shipments.adapters.shipsgo import SHIPSGO_EVENT_CONFIDENCE, maritime_event_type
from domains.shipments.adapters.ups import parse_ups_datetime
from domains.shipments.exceptions import ProviderError
from domains.shipments.models import EventType


def dt(y, m, d, h=0, mi=0):
    return datetime(y, m, d, h, mi, tzinfo=dt_timezone.utc)


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text or ("" if payload is None else str(payload))

    @property
    def ok(self):
        return 200 <= self.status_code < 400

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class FakeSession:
    """
    routes: [(method, url 부분 문자열, 응답 또는 응답 리스트)]
    리스트면 호출마다 하나씩 소비 (마지막 것은 계속 사용). 예외 인스턴스는 raise.
    """

    def __init__(self, routes):
        self.routes = [(m, frag, list(r) if isinstance(r, list) else [r]) for m, frag, r in routes]
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append(SimpleNamespace(method=method, url=url, kwargs=kwargs))
        for m, frag, responses in self.routes:
            if m == method and frag in url:
                resp = responses.pop(0) if len(responses) > 1 else responses[0]
                if isinstance(resp, Exception):
                    raise resp
                return resp
        return FakeResponse(404, text="not found")

    def urls(self, fragment):
        return [c for c in self.calls if fragment in c.url]


@pytest.fixture
def no_sleep(monkeypatch):
    slept = []
    monkeypatch.setattr(adapter_base.time, "sleep", slept.append)
    return slept


# ─────────────────────────────────────────────────────────────
# 공통 HTTP / 토큰
# ─────────────────────────────────────────────────────────────
class TestRateLimitRetry:
    def test_retries_429_with_backoff(self, settings, no_sleep):
        settings.SHIPSGO_API_KEY = "key"
        session = FakeSession([
            ("GET", "/tracking/42", [FakeResponse(429), FakeResponse(429), FakeResponse(200, {"status": "Sailing"})]),
        ])
        adapter = ShipsGoMaritimeAdapter(session=session)

        result = adapter.track("MSCU1234567", metadata={"shipsgo_container_id": 42})

        assert result.status == "Sailing"
        assert no_sleep == [1.0, 2.0]
        assert len(session.calls) == 3

    def test_gives_up_after_three_retries(self, settings, no_sleep):
        settings.SHIPSGO_API_KEY = "key"
        session = FakeSession([("GET", "/tracking/42", FakeResponse(429, text="slow down"))])
        adapter = ShipsGoMaritimeAdapter(session=session)

        with pytest.raises(ProviderError) as exc_info:
            adapter.track("MSCU1234567", metadata={"shipsgo_container_id": 42})

        assert exc_info.value.status_code == 429
        assert no_sleep == [1.0, 2.0, 4.0]
        assert len(session.calls) == 4

    def test_malformed_body_is_provider_error(self, settings):
        settings.SHIPSGO_API_KEY = "key"
        session = FakeSession([("GET", "/tracking/42", FakeResponse(200, None, text="<html>"))])
        with pytest.raises(ProviderError):
            ShipsGoMaritimeAdapter(session=session).track("MSCU1234567", metadata={"shipsgo_container_id": 42})

    def test_retries_connection_errors_with_backoff(self, settings, no_sleep):
        settings.SHIPSGO_API_KEY = "key"
        session = FakeSession([
            ("GET", "/tracking/42", [
                requests.ConnectionError("connection reset"),
                requests.Timeout("read timed out"),
                FakeResponse(200, {"status": "Sailing"}),
            ]),
        ])

        result = ShipsGoMaritimeAdapter(session=session).track("MSCU1234567", metadata={"shipsgo_container_id": 42})

        assert result.status == "Sailing"
        assert no_sleep == [1.0, 2.0]
        assert len(session.calls) == 3

    def test_connection_error_gives_up_as_provider_error(self, settings, no_sleep):
        settings.SHIPSGO_API_KEY = "key"
        session = FakeSession([("GET", "/tracking/42", requests.ConnectionError("no route to host"))])

        with pytest.raises(ProviderError) as exc_info:
            ShipsGoMaritimeAdapter(session=session).track("MSCU1234567", metadata={"shipsgo_container_id": 42})

        assert isinstance(exc_info.value.__cause__, requests.ConnectionError)
        assert no_sleep == [1.0, 2.0, 4.0]
        assert len(session.calls) == 4

    def test_unexpected_body_shape_is_provider_error(self, settings):
        """JSON 은 맞지만 구조가 다르면 normalize 예외 대신 ProviderError"""
        settings.SHIPSGO_API_KEY = "key"
        session = FakeSession([("GET", "/tracking/42", FakeResponse(200, ["not", "an", "object"]))])

        with pytest.raises(ProviderError, match="malformed body"):
            ShipsGoMaritimeAdapter(session=session).track("MSCU1234567", metadata={"shipsgo_container_id": 42})


class TestClientCredentialsToken:
    def test_cached_until_expiry_margin(self):
        calls = []

        def fetch():
            calls.append(1)
            return {"access_token": f"tok{len(calls)}", "expires_in": 3600}

        token = ClientCredentialsToken(fetch)
        before = timezone.now()
        assert token.get() == "tok1"
        assert token.get() == "tok1"
        assert len(calls) == 1
        # 만료 60초 전으로 잡힌다
        assert before + timedelta(seconds=3530) <= token.expires_at <= timezone.now() + timedelta(seconds=3540)

        token.expires_at = timezone.now() - timedelta(seconds=1)
        assert token.get() == "tok2"

    def test_missing_access_token(self):
        token = ClientCredentialsToken(lambda: {"expires_in": 10})
        with pytest.raises(ProviderError):
            token.get()

    def test_invalidate(self):
        token = ClientCredentialsToken(lambda: {"access_token": "t", "expires_in": 3600})
        token.get()
        token.invalidate()
        assert token.access_token is None and token.expires_at is None


# ─────────────────────────────────────────────────────────────
# FedEx
# ─────────────────────────────────────────────────────────────
FEDEX_TRACK = {
    "output": {
        "completeTrackResults": [{
            "trackResults": [{
                "latestStatusDetail": {"code": "DL", "description": "Delivered"},
                "dateAndTimes": [
                    {"type": "ACTUAL_DELIVERY", "dateTime": "2024-03-05T14:00:00+00:00"},
                ],
                "serviceDetail": {"description": "FedEx International Priority"},
                "scanEvents": [
                    {
                        "date": "2024-03-01T09:00:00+00:00",
                        "eventType": "PU",
                        "eventDescription": "Picked up",
                        "scanLocation": {"city": "MEMPHIS", "countryCode": "US"},
                    },
                    {
                        "date": "2024-03-05T14:00:00+00:00",
                        "eventType": "DL",
                        "eventDescription": "Delivered",
                        "scanLocation": {"city": "MILANO", "countryCode": "IT"},
                    },
                ],
            }],
        }],
    },
}


@pytest.fixture
def fedex_settings(settings):
    settings.FEDEX_CLIENT_ID = "cid"
    settings.FEDEX_CLIENT_SECRET = "secret"
    settings.FEDEX_API_URL = "https://fedex.test"
    return settings


class TestFedExAdapter:
    def test_track_reuses_token(self, fedex_settings):
        session = FakeSession([
            ("POST", "/oauth/token", FakeResponse(200, {"access_token": "abc", "expires_in": 3600})),
            ("POST", "/track/v1/trackingnumbers", FakeResponse(200, FEDEX_TRACK)),
        ])
        adapter = FedExAdapter(session=session)

        first = adapter.track("123456789012")
        adapter.track("123456789012")

        assert len(session.urls("/oauth/token")) == 1
        track_call = session.urls("/track/v1/trackingnumbers")[0]
        assert track_call.kwargs["headers"]["Authorization"] == "Bearer abc"

        assert first.status == "Delivered"
        assert first.ata == dt(2024, 3, 5, 14)
        assert [e.event_type for e in first.events] == [EventType.DEPARTED, EventType.DELIVERED]
        assert first.data_source == "fedex_api"
        assert first.metadata["service_type"] == "FedEx International Priority"

    def test_401_invalidates_token_then_public_fallback(self, fedex_settings):
        public = {
            "TrackPackagesResponse": {
                "packageList": [{
                    "keyStatus": "In transit",
                    "scanEventList": [
                        {"date": "2024-03-02", "time": "08:30:00", "status": "Departed FedEx hub",
                         "statusCD": "DP", "scanLocation": "PARIS"},
                    ],
                }],
            },
        }
        session = FakeSession([
            ("POST", "/oauth/token", FakeResponse(200, {"access_token": "abc", "expires_in": 3600})),
            ("POST", "/track/v1/trackingnumbers", FakeResponse(401, text="expired")),
            ("POST", "trackingCal/track", FakeResponse(200, public)),
        ])
        adapter = FedExAdapter(session=session)

        result = adapter.track("123456789012")

        assert adapter.token.access_token is None
        assert result.data_source == "fedex_public"
        assert result.events[0].data_source == "fedex_public"
        assert result.events[0].confidence_score == 0.8
        assert result.events[0].event_type == EventType.DEPARTED

    def test_both_paths_fail(self, fedex_settings):
        session = FakeSession([
            ("POST", "/oauth/token", FakeResponse(500, text="boom")),
            ("POST", "trackingCal/track", FakeResponse(200, {"TrackPackagesResponse": {"packageList": []}})),
        ])
        with pytest.raises(ProviderError, match="Unable to track fedex"):
            FedExAdapter(session=session).track("123456789012")

    def test_error_in_track_result(self):
        data = {"output": {"completeTrackResults": [{"trackResults": [{"error": {"message": "not found"}}]}]}}
        with pytest.raises(ProviderError, match="not found"):
            FedExAdapter(session=FakeSession([])).normalize(data)


# ─────────────────────────────────────────────────────────────
# DHL
# ─────────────────────────────────────────────────────────────
class TestDHLAdapter:
    def test_normalize_unified_api(self, settings):
        settings.DHL_API_KEY = "dhl-key"
        data = {
            "shipments": [{
                "id": "1234567890",
                "service": "express",
                "status": {"statusCode": "delivered", "timestamp": "2024-03-05T10:00:00Z"},
                "events": [
                    {
                        "timestamp": "2024-03-01T08:00:00Z",
                        "statusCode": "PU",
                        "description": "Shipment picked up",
                        "location": {"address": {"addressLocality": "MILANO", "countryCode": "IT"}},
                    },
                    {"timestamp": "2024-03-05T10:00:00Z", "statusCode": "OK", "description": "Delivered"},
                    {"timestamp": None, "statusCode": "XX"},
                ],
            }],
        }
        session = FakeSession([("GET", "api-eu.dhl.com", FakeResponse(200, data))])
        result = DHLAdapter(session=session).track("1234567890")

        call = session.calls[0]
        assert call.kwargs["headers"]["DHL-API-Key"] == "dhl-key"
        assert call.kwargs["params"]["trackingNumber"] == "1234567890"
        assert [e.event_type for e in result.events] == [EventType.DEPARTED, EventType.DELIVERED]
        assert result.events[0].location_name == "MILANO"
        assert result.ata == dt(2024, 3, 5, 10)
        assert result.data_source == "dhl_api"

    def test_missing_key_uses_public_tracking(self, settings):
        settings.DHL_API_KEY = ""
        public = {
            "results": [{
                "id": "1234567890",
                "checkpoints": [
                    {"counter": 1, "description": "Shipment picked up", "date": "2024-03-01", "time": "10:00",
                     "location": "MILANO"},
                    {"counter": 2, "description": "Delivered - Signed for by: ROSSI", "date": "2024-03-04",
                     "time": "12:30", "location": "ROMA"},
                ],
            }],
        }
        session = FakeSession([("GET", "dhl.com/shipmentTracking", FakeResponse(200, public))])
        result = DHLAdapter(session=session).track("1234567890")

        assert len(session.calls) == 1
        assert result.status == "Delivered"
        assert result.ata == dt(2024, 3, 4, 12, 30)
        assert result.data_source == "dhl_public"
        assert {e.confidence_score for e in result.events} == {0.8}
        assert result.events[1].event_type == EventType.DELIVERED

    def test_garbage_body_falls_back_to_public_tracking(self, settings):
        settings.DHL_API_KEY = "dhl-key"
        public = {"results": [{"id": "1234567890", "checkpoints": [
            {"counter": 1, "description": "Shipment picked up", "date": "2024-03-01", "time": "10:00"},
        ]}]}
        session = FakeSession([
            ("GET", "api-eu.dhl.com", FakeResponse(200, {"shipments": ["garbage"]})),
            ("GET", "dhl.com/shipmentTracking", FakeResponse(200, public)),
        ])

        result = DHLAdapter(session=session).track("1234567890")

        assert len(session.calls) == 2
        assert result.data_source == "dhl_public"
        assert len(result.events) == 1

    def test_garbage_body_without_public_result_is_provider_error(self, settings):
        settings.DHL_API_KEY = "dhl-key"
        session = FakeSession([("GET", "api-eu.dhl.com", FakeResponse(200, {"shipments": ["garbage"]}))])

        with pytest.raises(ProviderError, match="Unable to track dhl shipment"):
            DHLAdapter(session=session).track("1234567890")


# ─────────────────────────────────────────────────────────────
# UPS
# ─────────────────────────────────────────────────────────────
class TestUPSAdapter:
    def test_parse_ups_datetime(self):
        assert parse_ups_datetime("20240305", "143000") == dt(2024, 3, 5, 14, 30)
        assert parse_ups_datetime("20240305") == dt(2024, 3, 5)
        assert parse_ups_datetime("2024-03-05") is None
        assert parse_ups_datetime("20241305", "000000") is None

    def test_track_with_basic_auth_token(self, settings):
        settings.UPS_CLIENT_ID = "uid"
        settings.UPS_CLIENT_SECRET = "usecret"
        settings.UPS_API_URL = "https://ups.test/api"
        data = {
            "trackResponse": {"shipment": [{"package": [{
                "currentStatus": {"code": "011", "description": "Delivered"},
                "deliveryDate": [{"type": "DEL", "date": "20240305"}],
                "deliveryTime": {"endTime": "101500"},
                "activity": [
                    {"date": "20240303", "time": "080000",
                     "status": {"type": "I", "code": "OR", "description": "Order Processed"},
                     "location": {"address": {"city": "LOUISVILLE", "country": "US"}}},
                    {"date": "20240305", "time": "101500",
                     "status": {"type": "D", "code": "FS", "description": "DELIVERED"}},
                ],
            }]}]},
        }
        session = FakeSession([
            ("POST", "/security/v1/oauth/token", FakeResponse(200, {"access_token": "u-tok", "expires_in": "14399"})),
            ("GET", "/track/v1/details/1Z999AA10123456784", FakeResponse(200, data)),
        ])
        result = UPSAdapter(session=session).track("1Z999AA10123456784")

        token_call = session.urls("/oauth/token")[0]
        assert token_call.kwargs["auth"] == ("uid", "usecret")
        assert result.ata == dt(2024, 3, 5, 10, 15)
        assert result.status == "Delivered"
        # type 코드가 없으면 설명 분류로 (Order Processed → registered → OTHER 이벤트)
        assert [e.event_type for e in result.events] == [EventType.OTHER, EventType.DELIVERED]


# ─────────────────────────────────────────────────────────────
# ShipsGo
# ─────────────────────────────────────────────────────────────
class TestShipsGoMaritime:
    def test_registered_container_uses_v12_tracking(self, settings):
        settings.SHIPSGO_API_KEY = "sg-key"
        data = {
            "containerId": 42,
            "status": "Sailing",
            "pol": "CNSHA",
            "pod": "ITGOA",
            "eta": "2024-04-10T00:00:00Z",
            "voyage": "FA412W",
            "vessel": {"name": "MSC AURORA", "imo": 9876543},
            "lastEvent": {"description": "Loaded on vessel", "date": "2024-03-01T06:00:00Z"},
            "events": [
                {"description": "Gate in full", "date": "2024-02-28T10:00:00Z", "location": "Shanghai"},
                {"description": "Loaded on vessel", "date": "2024-03-01T06:00:00Z", "location": "Shanghai",
                 "unlocode": "CNSHA"},
            ],
        }
        session = FakeSession([("GET", "/tracking/42", FakeResponse(200, data))])
        result = ShipsGoMaritimeAdapter(session=session).track(
            "MSCU1234567", metadata={"shipsgo_container_id": 42}
        )

        assert session.calls[0].kwargs["headers"]["Authorization"] == "Bearer sg-key"
        assert [e.event_type for e in result.events] == [EventType.GATE_IN, EventType.LOADED_ON_VESSEL]
        assert {e.confidence_score for e in result.events} == {SHIPSGO_EVENT_CONFIDENCE}
        assert result.loading_date == dt(2024, 3, 1, 6)
        assert result.vessel_imo == "9876543"
        assert result.eta == dt(2024, 4, 10)
        assert result.metadata["shipsgo_container_id"] == 42

    def test_unregistered_container_uses_container_info(self, settings):
        settings.SHIPSGO_API_KEY = "sg-key"
        info = [{
            "Status": "Sailing",
            "LoadingDate": {"Date": "01/03/2024", "IsActual": True},
            "DischargeDate": {"Date": "10/04/2024", "IsActual": False},
            "Vessel": "MSC AURORA",
            "Pol": "CNSHA",
            "Pod": "ITGOA",
            "LiveMapUrl": "https://shipsgo.test/map/1",
        }]
        session = FakeSession([("GET", "ContainerService/GetContainerInfo", FakeResponse(200, info))])
        result = ShipsGoMaritimeAdapter(session=session).track("MSCU1234567", metadata={})

        assert session.calls[0].kwargs["params"]["requestId"] == "MSCU1234567"
        assert result.loading_date == dt(2024, 3, 1)
        # IsActual=false → 예정일(ETA)
        assert result.discharge_date is None
        assert result.eta == dt(2024, 4, 10)
        assert result.metadata["live_map_url"] == "https://shipsgo.test/map/1"

    def test_container_info_error_message(self):
        adapter = ShipsGoMaritimeAdapter(session=FakeSession([]))
        with pytest.raises(ProviderError):
            adapter.normalize_container_info({"Message": "Error: container not found"})

    def test_register_sends_scac(self, settings):
        settings.SHIPSGO_API_KEY = "sg-key"
        session = FakeSession([("POST", "/tracking", FakeResponse(200, {"containerId": 7, "trackingId": "t-7"}))])
        out = ShipsGoMaritimeAdapter(session=session).register("MSCU1234567", carrier_code="MSC")

        assert session.calls[0].kwargs["json"] == {"containerNumber": "MSCU1234567", "shippingLine": "MSCU"}
        assert out == {"shipsgo_container_id": 7, "shipsgo_tracking_id": "t-7"}

    def test_missing_token(self, settings):
        settings.SHIPSGO_API_KEY = ""
        with pytest.raises(ProviderError, match="token not configured"):
            ShipsGoMaritimeAdapter(session=FakeSession([])).track("MSCU1234567", metadata={})

    @pytest.mark.parametrize(
        "description, expected",
        [
            ("Gate out empty", EventType.GATE_OUT),
            ("Discharged at POD", EventType.DISCHARGED_FROM_VESSEL),
            ("Empty container returned", EventType.EMPTY_RETURNED),
            ("Vessel arrived", EventType.ARRIVED),
            ("Customs release", EventType.OTHER),
        ],
    )
    def test_maritime_event_type(self, description, expected):
        assert maritime_event_type(description) == expected


class TestShipsGoAir:
    def test_requires_tracking_id(self, settings):
        settings.SHIPSGO_V2_TOKEN = "v2"
        with pytest.raises(ProviderError, match="No ShipsGo tracking ID"):
            ShipsGoAirAdapter(session=FakeSession([])).track("176-12345675", metadata={})

    def test_track_and_register(self, settings):
        settings.SHIPSGO_V2_TOKEN = "v2"
        data = {
            "id": "air-1",
            "flightNumber": "CV7312",
            "origin": "HKG",
            "destination": "MXP",
            "airline": "CV",
            "lastEvent": {"eventCode": "ARR", "eventDate": "2024-03-03T05:00:00Z"},
            "events": [
                {"eventCode": "RCS", "eventDate": "2024-03-01T10:00:00Z", "airport": "HKG"},
                {"eventCode": "DEP", "eventDate": "2024-03-02T01:00:00Z", "airport": "HKG"},
                {"eventCode": "ARR", "eventDate": "2024-03-03T05:00:00Z", "airport": "MXP"},
            ],
        }
        session = FakeSession([
            ("GET", "/trackings/air-1", FakeResponse(200, data)),
            ("POST", "/trackings", FakeResponse(201, {"id": "air-1"})),
        ])
        adapter = ShipsGoAirAdapter(session=session)

        assert adapter.register("176-12345675", carrier_code="cargolux") == {"shipsgo_tracking_id": "air-1"}
        assert session.urls("/trackings")[0].kwargs["json"] == {"awbNumber": "176-12345675", "airline": "CV"}

        result = adapter.track("176-12345675", metadata={"shipsgo_tracking_id": "air-1"})
        assert result.status == "ARR"
        assert result.flight_number == "CV7312"
        assert result.loading_date == dt(2024, 3, 2, 1)
        assert [e.event_type for e in result.events] == [
            EventType.REGISTERED, EventType.DEPARTED, EventType.ARRIVED,
        ]


# ─────────────────────────────────────────────────────────────
# 택배 라우팅 / 레지스트리
# ─────────────────────────────────────────────────────────────
class _Stub:
    def __init__(self, code):
        self.code = code
        self.tracked = []

    def track(self, tracking_number, *, metadata=None):
        self.tracked.append(tracking_number)
        return ProviderTrackingResult(provider=self.code, status="transit")


class TestParcelAdapter:
    def test_routes_by_number_pattern(self):
        stubs = {code: _Stub(code) for code in ("dhl", "fedex", "ups")}
        adapter = ParcelAdapter(session=FakeSession([]), resolver=stubs.__getitem__)

        result = adapter.track("1Z999AA10123456784")

        assert stubs["ups"].tracked == ["1Z999AA10123456784"]
        assert result.metadata["parcel_carrier"] == "ups"

    def test_metadata_hint_wins(self):
        stubs = {code: _Stub(code) for code in ("dhl", "fedex", "ups")}
        adapter = ParcelAdapter(session=FakeSession([]), resolver=stubs.__getitem__)
        adapter.track("123456789012", metadata={"parcel_carrier": "FedEx"})
        assert stubs["fedex"].tracked == ["123456789012"]
        assert stubs["dhl"].tracked == []

    def test_unknown_pattern(self):
        adapter = ParcelAdapter(session=FakeSession([]), resolver=lambda code: None)
        with pytest.raises(ProviderError, match="Unable to detect parcel carrier"):
            adapter.track("NOT-A-PARCEL")


class TestRegistry:
    def test_aliases_and_instance_cache(self):
        assert isinstance(get_adapter("DHL Express"), DHLAdapter)
        assert get_adapter("fx") is get_adapter("fedex")
        assert isinstance(get_adapter("shipsgo-v2"), ShipsGoAirAdapter)

    def test_unknown_code(self):
        with pytest.raises(ProviderError):
            get_adapter("pony-express")

    @pytest.mark.parametrize(
        "tracking_type, carrier_code, expected",
        [
            ("container", "MSC", ShipsGoMaritimeAdapter),
            ("bl", "", ShipsGoMaritimeAdapter),
            ("awb", "CV", ShipsGoAirAdapter),
            ("parcel", "ups", UPSAdapter),
            ("parcel", "GLS", ParcelAdapter),
            ("parcel", "", ParcelAdapter),
        ],
    )
    def test_adapter_for_shipment(self, tracking_type, carrier_code, expected):
        shipment = SimpleNamespace(tracking_type=tracking_type, carrier_code=carrier_code)
        assert isinstance(adapter_for_shipment(shipment), expected)
