from __future__ import annotations

import threading
from typing import Dict, Type

from ..exceptions import ProviderError
from ..models import TrackingType
from .base import CarrierAdapter

# 어댑터 레지스트리
_REGISTRY: Dict[str, Type[CarrierAdapter]] = {}
# 토큰 캐시 유지를 위해 인스턴스를 재사용
_INSTANCES: Dict[str, CarrierAdapter] = {}
_LOCK = threading.Lock()


def _norm(code: str) -> str:
    return (code or "").strip().lower().replace("-", "_").replace(" ", "")


# 흔한 별칭 → 표준 코드
_ALIASES = {
    "dhl_express": "dhl",
    "dhlexpress": "dhl",
    "fedex_express": "fedex",
    "fx": "fedex",
    "ups_airlines": "ups",
    "5x": "ups",
    "shipsgo_v1": "shipsgo",
    "shipsgo_maritime": "shipsgo",
    "shipsgo_v2": "shipsgo_air",
}

# tracking_type → 기본 어댑터
_TYPE_DEFAULTS = {
    TrackingType.CONTAINER: "shipsgo",
    TrackingType.BL: "shipsgo",
    TrackingType.AWB: "shipsgo_air",
    TrackingType.PARCEL: "parcel",
}


def register_adapter(code: str, adapter_cls: Type[CarrierAdapter]) -> None:
    """캐리어 코드(별칭 포함)에 어댑터 클래스를 등록."""
    key = _norm(code)
    _REGISTRY[key] = adapter_cls
    _INSTANCES.pop(key, None)


def get_adapter(code: str) -> CarrierAdapter:
    """캐리어 코드/별칭으로 어댑터 인스턴스를 반환."""
    key = _norm(_ALIASES.get(_norm(code), code))
    cls = _REGISTRY.get(key)
    if not cls:
        raise ProviderError(f"No adapter registered for carrier '{code}' (key='{key}')")
    with _LOCK:
        inst = _INSTANCES.get(key)
        if inst is None:
            inst = _INSTANCES[key] = cls()
    return inst


def adapter_for_shipment(shipment) -> CarrierAdapter:
    """
    택배는 carrier_code 에 맞는 어댑터가 있으면 그것을, 없으면 번호 패턴 판별(parcel).
    해상/항공은 tracking_type 기준 (ShipsGo v1.2 / v2).
    """
    tracking_type = shipment.tracking_type
    if tracking_type == TrackingType.PARCEL:
        key = _norm(_ALIASES.get(_norm(shipment.carrier_code), shipment.carrier_code))
        if key in _REGISTRY and key != "parcel":
            return get_adapter(key)
    default = _TYPE_DEFAULTS.get(tracking_type)
    if not default:
        raise ProviderError(f"No adapter for tracking type '{tracking_type}'")
    return get_adapter(default)


def reset_adapters() -> None:
    """캐시된 인스턴스 폐기 (설정 변경 후, 테스트용)."""
    with _LOCK:
        _INSTANCES.clear()
