# domains/shipments/adapters/base.py
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

import requests
from django.conf import settings
from django.utils import timezone

from ..events import EventRecord
from ..exceptions import ProviderError

logger = logging.getLogger(__name__)

PUBLIC_CONFIDENCE = 0.8

# 응답 구조가 예상과 다를 때 normalize 단계에서 나는 예외
MALFORMED_BODY_ERRORS = (KeyError, IndexError, TypeError, AttributeError, ValueError)
# 어댑터 호출부가 ProviderError 로 다루는 예외 전체
ADAPTER_FAILURES = (ProviderError, requests.RequestException) + MALFORMED_BODY_ERRORS

# 연결 단계 실패는 429 와 같은 백오프로 재시도
RETRYABLE_NETWORK_ERRORS = (requests.ConnectionError, requests.Timeout)


def as_provider_error(exc: Exception, code: str = "provider") -> ProviderError:
    """ADAPTER_FAILURES 중 하나를 ProviderError 로 통일 (원인은 __cause__ 로 보존)"""
    if isinstance(exc, ProviderError):
        return exc
    if isinstance(exc, requests.RequestException):
        err = ProviderError(f"{code} request failed: {exc}")
    else:
        err = ProviderError(f"{code} returned malformed body: {exc.__class__.__name__}: {exc}")
    err.__cause__ = exc
    return err


@dataclass
class ProviderTrackingResult:
    """
    어댑터 공통 출력. status 는 운송사 원문 (분류는 status_map 에서).
    """
    provider: str
    status: str = ""
    events: List[EventRecord] = field(default_factory=list)
    eta: Optional[datetime] = None
    ata: Optional[datetime] = None
    loading_date: Optional[datetime] = None
    discharge_date: Optional[datetime] = None
    status_date: Optional[datetime] = None
    vessel_name: str = ""
    vessel_imo: str = ""
    voyage_number: str = ""
    flight_number: str = ""
    origin_port: str = ""
    origin_name: str = ""
    destination_port: str = ""
    destination_name: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)
    raw: Any = None
    data_source: str = ""

    @property
    def is_empty(self) -> bool:
        return not (self.status or self.events)

    def retag(self, data_source: str, confidence: float) -> "ProviderTrackingResult":
        """공개(비인증) 경로 결과: 출처/신뢰도 재지정."""
        self.data_source = data_source
        for ev in self.events:
            ev.data_source = data_source
            ev.confidence_score = min(ev.confidence_score, confidence)
        return self


class ClientCredentialsToken:
    """
    client-credentials 토큰 캐시. 만료 60초 전부터 재발급.
    fetch() 는 {"access_token", "expires_in"} 형태의 dict 를 반환해야 함.
    """

    EXPIRY_MARGIN = 60

    def __init__(self, fetch: Callable[[], Dict[str, Any]]):
        self._fetch = fetch
        self.access_token: Optional[str] = None
        self.expires_at: Optional[datetime] = None

    def get(self) -> str:
        if self.access_token and self.expires_at and timezone.now() < self.expires_at:
            return self.access_token
        data = self._fetch() or {}
        token = data.get("access_token")
        if not token:
            raise ProviderError("token endpoint returned no access_token")
        ttl = max(int(data.get("expires_in") or 0) - self.EXPIRY_MARGIN, 0)
        self.access_token = token
        self.expires_at = timezone.now() + timedelta(seconds=ttl)
        return token

    def invalidate(self) -> None:
        self.access_token = None
        self.expires_at = None


class CarrierAdapter:
    """
    각 운송사 어댑터의 최소 공통 인터페이스.

    track() 은 인증 경로를 먼저 시도하고, 실패하면 공개 조회 경로로 내려간다
    (confidence 0.8, data_source "<code>_public"). 둘 다 실패하면 ProviderError.
    """

    code = ""
    data_source = ""
    public_fallback = False

    # 429 / 연결 실패 재시도 (1s → 2s → 4s)
    max_retries = 3
    retry_delay = 1.0
    backoff_multiplier = 2

    def __init__(self, session: Optional[requests.Session] = None, timeout: Optional[float] = None):
        self.session = session or requests.Session()
        self.timeout = timeout or getattr(settings, "PROVIDER_HTTP_TIMEOUT", 15)

    # ---- public API --------------------------------------------------------
    def track(self, tracking_number: str, *, metadata: Optional[Dict[str, Any]] = None) -> ProviderTrackingResult:
        try:
            return self.track_authenticated(tracking_number, metadata=metadata or {})
        except ADAPTER_FAILURES as exc:
            if not self.public_fallback:
                raise self._wrap(exc)
            logger.warning("%s tracking failed for %s, trying public lookup: %s", self.code, tracking_number, exc)
            try:
                result = self.track_public(tracking_number)
            except ADAPTER_FAILURES as pub_exc:
                raise ProviderError(f"Unable to track {self.code} shipment: {exc}") from pub_exc
            return result.retag(f"{self.code}_public", PUBLIC_CONFIDENCE)

    def track_authenticated(self, tracking_number: str, *, metadata: Dict[str, Any]) -> ProviderTrackingResult:
        raise NotImplementedError

    def track_public(self, tracking_number: str) -> ProviderTrackingResult:
        raise ProviderError(f"{self.code} has no public tracking")

    def register(self, tracking_number: str, *, carrier_code: str = "", metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        (옵션) 외부 서비스에 운송장 등록. 반환 dict 는 shipment.metadata 에 병합.
        기본 구현은 no-op.
        """
        return {}

    def deregister(self, tracking_number: str, *, metadata: Optional[Dict[str, Any]] = None) -> None:
        """(옵션) 외부 서비스에서 운송장 삭제. 기본 구현은 no-op."""
        return None

    # ---- HTTP helpers ------------------------------------------------------
    def _wrap(self, exc: Exception) -> ProviderError:
        return as_provider_error(exc, self.code)

    def _backoff(self, attempt: int, reason: str) -> None:
        delay = self.retry_delay * (self.backoff_multiplier ** attempt)
        logger.info("%s %s, retrying in %.1fs", self.code, reason, delay)
        time.sleep(delay)

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        kwargs.setdefault("timeout", self.timeout)
        attempt = 0
        while True:
            try:
                resp = self.session.request(method, url, **kwargs)
            except RETRYABLE_NETWORK_ERRORS as exc:
                if attempt >= self.max_retries:
                    raise
                self._backoff(attempt, f"connection failed ({exc.__class__.__name__})")
                attempt += 1
                continue
            if resp.status_code == 429 and attempt < self.max_retries:
                self._backoff(attempt, "rate limited")
                attempt += 1
                continue
            break
        if not resp.ok:
            raise ProviderError(
                f"{self.code} API error: {resp.status_code} - {resp.text[:300]}",
                status_code=resp.status_code,
            )
        return resp

    def _json(self, resp: requests.Response) -> Any:
        try:
            return resp.json()
        except ValueError as exc:
            raise ProviderError(f"{self.code} returned malformed body") from exc
