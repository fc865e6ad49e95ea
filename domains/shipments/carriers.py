"""
운송사 기준 데이터: 별칭 → 표준 코드, SCAC, 운송장 번호 패턴, 항공사 코드.
"""
from __future__ import annotations

import re
from types import MappingProxyType
from typing import Optional

from .models import TrackingType

# ShipsGo export 의 "Carrier"/"Shipping Line" 표기 → 표준 carrier_code
CARRIER_ALIASES = MappingProxyType({
    "MAERSK LINE": "MAERSK",
    "MAERSK": "MAERSK",
    "MSC": "MSC",
    "CMA CGM": "CMA-CGM",
    "COSCO": "COSCO",
    "HAPAG-LLOYD": "HAPAG-LLOYD",
    "HAPAG LLOYD": "HAPAG-LLOYD",
    "ONE": "ONE",
    "EVERGREEN": "EVERGREEN",
    "YANG MING": "YANG-MING",
    "ZIM": "ZIM",
    "HMM": "HMM",
    "OOCL": "OOCL",
    "APL": "APL",
    "NYK": "NYK",
    "MOL": "MOL",
    "K LINE": "K-LINE",
})

# 표준 carrier_code → (ShipsGo 표기, SCAC)
CARRIER_INFO = MappingProxyType({
    "MSC": ("MSC", "MSCU"),
    "MAERSK": ("MAERSK", "MAEU"),
    "CMA-CGM": ("CMA CGM", "CMDU"),
    "COSCO": ("COSCO", "COSU"),
    "HAPAG-LLOYD": ("HAPAG-LLOYD", "HLCU"),
    "ONE": ("ONE", "ONEY"),
    "EVERGREEN": ("EVERGREEN", "EGLV"),
    "YANG-MING": ("YANG MING", "YMLU"),
    "ZIM": ("ZIM", "ZIMU"),
    "HMM": ("HMM", "HDMU"),
})

AIRLINE_CODES = MappingProxyType({
    "FEDEX": "FX", "FX": "FX",
    "UPS": "5X", "5X": "5X",
    "DHL": "D0",
    "CARGOLUX": "CV", "CV": "CV",
    "CATHAY": "CX", "CX": "CX",
    "EMIRATES": "EK", "EK": "EK",
    "LUFTHANSA": "LH", "LH": "LH",
    "KOREAN": "KE", "KE": "KE",
    "SINGAPORE": "SQ", "SQ": "SQ",
})

AIRLINE_NAMES = MappingProxyType({
    "FX": "FedEx",
    "5X": "UPS Airlines",
    "D0": "DHL Aviation",
    "CV": "Cargolux",
    "CX": "Cathay Pacific Cargo",
    "EK": "Emirates SkyCargo",
    "LH": "Lufthansa Cargo",
    "KE": "Korean Air Cargo",
    "SQ": "Singapore Airlines Cargo",
})

# 등록 시 tracking_type 자동 판별 (순서대로 검사)
TRACKING_PATTERNS = (
    (TrackingType.CONTAINER, re.compile(r"^[A-Z]{4}\d{7}$")),
    (TrackingType.BL, re.compile(r"^[A-Z]{4}\d{8,12}$")),
    (TrackingType.AWB, re.compile(r"^\d{3}-?\d{8}$")),
    (TrackingType.PARCEL, re.compile(r"^[A-Z0-9]{10,30}$")),
)

# 택배 번호 → 운송사 (12자리는 DHL 이 먼저)
PARCEL_CARRIER_PATTERNS = (
    ("DHL", (
        re.compile(r"^\d{10}$"),
        re.compile(r"^\d{12}$"),
        re.compile(r"^JD\d{18}$"),
        re.compile(r"^[A-Z]{3}\d{7}$"),
    )),
    ("FEDEX", (
        re.compile(r"^\d{12}$"),
        re.compile(r"^\d{15}$"),
        re.compile(r"^DT\d{12}$"),
        re.compile(r"^\d{20}$"),
    )),
    ("UPS", (
        re.compile(r"^1Z[A-Z0-9]{16}$"),
        re.compile(r"^T\d{10}$"),
        re.compile(r"^\d{9}$"),
        re.compile(r"^\d{26}$"),
    )),
)

_BL_RE = re.compile(r"^[A-Z]{4}\d{8,}$")

# 부분 일치는 긴 별칭부터 ("MAERSK LINE" 이 "ONE" 보다 먼저)
_ALIASES_BY_LENGTH = sorted(CARRIER_ALIASES, key=len, reverse=True)


def canonical_tracking_number(value) -> str:
    return str(value or "").strip().upper()


def resolve_carrier_code(raw_name: Optional[str]) -> str:
    """
    별칭 테이블 완전 일치 → 부분 일치 → 원문 앞 10자.
    """
    name = str(raw_name or "").strip()
    if not name:
        return ""
    upper = name.upper()
    if upper in CARRIER_ALIASES:
        return CARRIER_ALIASES[upper]
    for alias in _ALIASES_BY_LENGTH:
        if re.search(rf"(?<![A-Z]){re.escape(alias)}(?![A-Z])", upper):
            return CARRIER_ALIASES[alias]
    return name[:10]


def carrier_display_name(carrier_code: str) -> str:
    info = CARRIER_INFO.get(carrier_code)
    if info:
        return info[0]
    return AIRLINE_NAMES.get(carrier_code, carrier_code)


def scac_for(carrier_code: str) -> str:
    info = CARRIER_INFO.get((carrier_code or "").upper())
    return info[1] if info else carrier_code


def airline_code_for(carrier_code: str) -> str:
    code = (carrier_code or "").strip().upper()
    return AIRLINE_CODES.get(code, code)


def detect_tracking_type(tracking_number: str) -> str:
    number = canonical_tracking_number(tracking_number)
    for tracking_type, pattern in TRACKING_PATTERNS:
        if pattern.match(number):
            return tracking_type
    return TrackingType.PARCEL


def detect_import_type(tracking_number: str) -> str:
    """대량 import 행: 11자 초과 + 영문4+숫자8 이상이면 B/L, 아니면 컨테이너."""
    number = canonical_tracking_number(tracking_number)
    if len(number) > 11 and _BL_RE.match(number):
        return TrackingType.BL
    return TrackingType.CONTAINER


def detect_parcel_carrier(tracking_number: str) -> Optional[str]:
    number = canonical_tracking_number(tracking_number)
    for carrier, patterns in PARCEL_CARRIER_PATTERNS:
        if any(p.match(number) for p in patterns):
            return carrier
    return None
