"""
운송사 원문 상태 문자열 → 표준 상태(ShipmentStatus) 분류기.

우선순위 (먼저 맞는 것이 이김):
  1. STATUS_TABLE 대소문자 무시 완전 일치
  2. 키워드 패밀리 (delivered → in_transit → registered → delayed → exception)
  3. tracking_type 기본값 (container/bl → in_transit, awb/parcel → registered)
  4. 최종 기본값 in_transit
"""
from __future__ import annotations

from types import MappingProxyType
from typing import Optional

from .models import TERMINAL_STATUSES, ShipmentStatus, TrackingType

S = ShipmentStatus

# 운송사별 관측된 원문 상태 (영어/이탈리아어)
STATUS_TABLE = MappingProxyType({
    # 해상 (ShipsGo)
    "Sailing": S.IN_TRANSIT,
    "Arrived": S.IN_TRANSIT,
    "Delivered": S.DELIVERED,
    "Discharged": S.DELIVERED,
    "Gate In": S.IN_TRANSIT,
    "Gate Out": S.IN_TRANSIT,
    "Loaded": S.IN_TRANSIT,
    "Loaded on Vessel": S.IN_TRANSIT,
    "Vessel Departed": S.IN_TRANSIT,
    "Vessel Arrived": S.IN_TRANSIT,
    "Empty": S.DELIVERED,
    "Empty Returned": S.DELIVERED,
    "Empty Container Returned": S.DELIVERED,
    "Registered": S.REGISTERED,
    "Pending": S.REGISTERED,
    "In Transit": S.IN_TRANSIT,
    "Transhipment": S.IN_TRANSIT,
    "Rail Departed": S.IN_TRANSIT,
    "Customs Hold": S.DELAYED,
    "Rolled": S.DELAYED,
    "Cancelled": S.CANCELLED,

    # 항공 (ShipsGo v2 이벤트 코드)
    "DEP": S.IN_TRANSIT,
    "ARR": S.IN_TRANSIT,
    "RCS": S.IN_TRANSIT,
    "RCF": S.IN_TRANSIT,
    "NFD": S.IN_TRANSIT,
    "DLV": S.DELIVERED,

    # FedEx
    "On FedEx vehicle for delivery": S.OUT_FOR_DELIVERY,
    "At local FedEx facility": S.IN_TRANSIT,
    "Departed FedEx hub": S.IN_TRANSIT,
    "On the way": S.IN_TRANSIT,
    "Arrived at FedEx hub": S.IN_TRANSIT,
    "International shipment release - Import": S.IN_TRANSIT,
    "At destination sort facility": S.IN_TRANSIT,
    "Left FedEx origin facility": S.IN_TRANSIT,
    "Picked up": S.IN_TRANSIT,
    "Shipment information sent to FedEx": S.REGISTERED,

    # GLS
    "Consegnata.": S.DELIVERED,
    "Consegna prevista nel corso della giornata odierna.": S.OUT_FOR_DELIVERY,
    "Arrivata nella Sede GLS locale.": S.IN_TRANSIT,
    "In transito.": S.IN_TRANSIT,
    "Partita dalla sede mittente. In transito.": S.IN_TRANSIT,
    "La spedizione e' stata creata dal mittente, attendiamo che ci venga "
    "affidata per l'invio a destinazione.": S.REGISTERED,

    # 이탈리아어 공통
    "La spedizione è stata consegnata": S.DELIVERED,
    "La spedizione è in consegna": S.OUT_FOR_DELIVERY,
    "La spedizione è in transito": S.IN_TRANSIT,

    # 배송 출발
    "Out for Delivery": S.OUT_FOR_DELIVERY,
    "With delivery courier": S.OUT_FOR_DELIVERY,
    "On UPS vehicle for delivery": S.OUT_FOR_DELIVERY,
    "On DHL vehicle for delivery": S.OUT_FOR_DELIVERY,

    # DHL (문구 + unified API statusCode)
    "Shipment information received": S.REGISTERED,
    "Shipment picked up": S.IN_TRANSIT,
    "Processed": S.IN_TRANSIT,
    "Departed Facility": S.IN_TRANSIT,
    "Arrived Facility": S.IN_TRANSIT,
    "Signed": S.DELIVERED,
    "pre-transit": S.REGISTERED,
    "transit": S.IN_TRANSIT,
    "failure": S.EXCEPTION,

    # UPS
    "Order Processed": S.REGISTERED,
    "Exception": S.EXCEPTION,
    "Returned to Sender": S.EXCEPTION,
    "Delivery Attempted": S.DELAYED,
    "Customer not Available": S.DELAYED,
    "Incorrect Address": S.EXCEPTION,
})

_EXACT = {k.strip().lower(): v for k, v in STATUS_TABLE.items()}

# 순서가 곧 우선순위
KEYWORD_FAMILIES = (
    (S.DELIVERED, ("delivered", "consegnat", "empty", "discharged", "scaricato")),
    (S.IN_TRANSIT, ("transit", "sailing", "departed", "loaded", "arrived",
                    "consegna", "on the way", "sdoganat")),
    (S.REGISTERED, ("creata", "created", "information sent", "registered", "booked")),
    (S.DELAYED, ("delay", "ritardo", "hold", "customs")),
    (S.EXCEPTION, ("exception", "error", "problem", "returned")),
)

TYPE_DEFAULTS = MappingProxyType({
    TrackingType.CONTAINER: S.IN_TRANSIT,
    TrackingType.BL: S.IN_TRANSIT,
    TrackingType.AWB: S.REGISTERED,
    TrackingType.PARCEL: S.REGISTERED,
})

# UI 표시용 (이탈리아어)
STATUS_DISPLAY = MappingProxyType({
    S.REGISTERED: "Spedizione Creata",
    S.IN_TRANSIT: "In Transito",
    S.OUT_FOR_DELIVERY: "In Consegna",
    S.DELIVERED: "Consegnato",
    S.DELAYED: "In Ritardo",
    S.EXCEPTION: "Eccezione",
    S.CANCELLED: "Cancellato",
})


def lookup_exact(raw_status: Optional[str]) -> Optional[str]:
    """테이블 완전 일치만 확인. 없으면 None."""
    if not raw_status:
        return None
    return _EXACT.get(str(raw_status).strip().lower())


def classify_keywords(raw_status: Optional[str]) -> Optional[str]:
    s = str(raw_status or "").lower()
    if not s:
        return None
    for status, keywords in KEYWORD_FAMILIES:
        if any(k in s for k in keywords):
            return status
    return None


def classify(raw_status: Optional[str], tracking_type: Optional[str] = None) -> str:
    """모든 입력에 대해 표준 상태 하나를 반환 (예외 없음)."""
    status = lookup_exact(raw_status) or classify_keywords(raw_status)
    if status:
        return status
    if tracking_type:
        default = TYPE_DEFAULTS.get(str(tracking_type).strip().lower())
        if default:
            return default
    return S.IN_TRANSIT


def display_label(status: str) -> str:
    return STATUS_DISPLAY.get(status, status)


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES
