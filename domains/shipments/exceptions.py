from __future__ import annotations

from typing import Optional


class TrackingError(Exception):
    """shipments 도메인 예외의 공통 부모."""


class ProviderError(TrackingError):
    """외부 추적 API 실패 (타임아웃, non-2xx, 잘못된 본문, 자격 증명 없음)."""

    def __init__(self, message: str, *, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ReconciliationError(TrackingError):
    """저장 단계 실패. shipment.metadata.last_api_error 에도 기록됨."""


class DuplicateTrackingError(TrackingError):
    def __init__(self, shipment):
        super().__init__(f"Tracking number {shipment.tracking_number} already exists")
        self.shipment = shipment


class TrackingAlreadyDeletedError(TrackingError):
    pass


class ShipmentNotFoundError(TrackingError):
    pass


class WebhookSignatureError(TrackingError):
    pass
