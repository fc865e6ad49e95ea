# domains/shipments/notifications.py
from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

import requests
from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder

logger = logging.getLogger(__name__)


@dataclass
class ShipmentSnapshot:
    id: str
    organization_id: str
    tracking_number: str
    tracking_type: str
    carrier_code: str
    status: str
    active: bool
    last_event_date: Optional[str]
    last_event_location: str
    last_event_description: str
    eta: Optional[str]
    ata: Optional[str]


def _iso(v) -> Optional[str]:
    return v.isoformat() if v else None


def dump_shipment(shipment) -> Dict[str, Any]:
    return asdict(ShipmentSnapshot(
        id=str(shipment.id),
        organization_id=str(shipment.organization_id),
        tracking_number=shipment.tracking_number,
        tracking_type=shipment.tracking_type,
        carrier_code=shipment.carrier_code or "",
        status=shipment.status,
        active=shipment.active,
        last_event_date=_iso(shipment.last_event_date),
        last_event_location=shipment.last_event_location or "",
        last_event_description=shipment.last_event_description or "",
        eta=_iso(shipment.eta),
        ata=_iso(shipment.ata),
    ))


def send_notification(kind: str, shipment, meta: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    kind: "events_appended" | "status_changed"
    meta: 자유 필드 (예: {"created": 3} / {"prev": "in_transit", "curr": "delivered"})
    SHIPMENTS_NOTIFY_WEBHOOK 이 없으면 로그로만 남긴다.
    """
    payload = {
        "type": kind,
        "shipment": dump_shipment(shipment),
        "meta": meta or {},
    }

    url = getattr(settings, "SHIPMENTS_NOTIFY_WEBHOOK", None)
    if url:
        resp = requests.post(
            url,
            data=json.dumps(payload, ensure_ascii=False, cls=DjangoJSONEncoder).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            timeout=5,
        )
        resp.raise_for_status()
    else:
        # 웹훅 미설정 시 로그로 남김 (워커 로그에서 grep 가능)
        logger.info("[NOTIFY] %s", json.dumps(payload, ensure_ascii=False, cls=DjangoJSONEncoder))
    return payload
