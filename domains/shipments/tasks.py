# domains/shipments/tasks.py
from __future__ import annotations

import logging

import requests
from celery import shared_task

logger = logging.getLogger(__name__)


@shared_task(bind=True, max_retries=3, retry_backoff=True, retry_jitter=True, acks_late=True,
             name="domains.shipments.tasks.poll_shipment")
def poll_shipment(self, shipment_id: str, force: bool = False) -> int:
    """
    단일 운송장 동기화 → 외부 조회 → 이벤트/필드 반영
    반환: 생성된 이벤트 수
    조회 실패는 metadata.last_api_error 로 남고 재시도하지 않는다 (다음 주기에 다시 시도).
    저장 실패(ReconciliationError)만 재시도.
    """
    from .exceptions import ReconciliationError
    from .models import Shipment
    from .services import reconcile_shipment

    shipment = Shipment.objects.filter(id=shipment_id, active=True).first()
    if shipment is None:
        logger.info("poll_shipment: %s not found or inactive", shipment_id)
        return 0
    try:
        outcome = reconcile_shipment(shipment, force_update=force)
    except ReconciliationError as e:
        raise self.retry(exc=e)
    return len(outcome.events)


@shared_task(name="domains.shipments.tasks.poll_open_shipments")
def poll_open_shipments() -> int:
    """
    진행중(비종결) 활성 건만 순회 폴링
    """
    from .models import TERMINAL_STATUSES, Shipment

    qs = Shipment.objects.filter(active=True).exclude(status__in=list(TERMINAL_STATUSES))
    count = 0
    for shipment_id in qs.values_list("id", flat=True).iterator():
        poll_shipment.delay(str(shipment_id))
        count += 1
    logger.info("poll_open_shipments: %d shipments queued", count)
    return count


@shared_task(bind=True, max_retries=3, retry_backoff=True, name="domains.shipments.tasks.notify_shipment")
def notify_shipment(self, shipment_id: str, event_type: str, payload: dict):
    # 지연 임포트로 순환참조 회피
    from .models import Shipment
    from .notifications import send_notification

    shipment = Shipment.objects.filter(id=shipment_id).first()
    if shipment is None:
        logger.warning("notify_shipment: shipment %s not found", shipment_id)
        return None
    try:
        return send_notification(event_type, shipment, payload)
    except requests.RequestException as e:
        logger.warning("notify_shipment: webhook delivery failed for %s: %s", shipment_id, e)
        raise self.retry(exc=e)
