# tests/conftest.py
from datetime import timedelta
from uuid import uuid4

from django.conf import settings
from django.contrib.auth import get_user_model
from django.utils import timezone

import pytest
from rest_framework.test import APIClient

from domains.accounts.models import Organization
from domains.shipments.adapters import reset_adapters
from domains.shipments.adapters.base import CarrierAdapter, ProviderTrackingResult
from domains.shipments.exceptions import ProviderError
from domains.shipments.models import Shipment

User = get_user_model()


# ─────────────────────────────────────────────────────────────
# 전역 테스트 환경 최적화(해싱/메일)
# ─────────────────────────────────────────────────────────────
@pytest.fixture(autouse=True, scope="session")
def _fast_password_hasher(django_db_setup, django_db_blocker):
    """
    해시 느린 기본 해셔 대신 MD5 해셔 사용, 이메일은 메모리 백엔드 사용
    """
    with django_db_blocker.unblock():
        settings.PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]
        settings.EMAIL_BACKEND = "django.core.mail.backends.locmem.EmailBackend"


@pytest.fixture(autouse=True)
def _tracking_settings(settings):
    """외부 호출/지연 없이 돌도록 엔진 설정 고정"""
    settings.TRACKING_IMPORT_MAX_WORKERS = 1
    settings.TRACKING_IMPORT_CHUNK_PAUSE = 0
    settings.TRACKING_STALENESS_MINUTES = 15
    settings.TRACKING_ESTIMATED_DELIVERY_DAYS = 3
    settings.SHIPSGO_WEBHOOK_SECRET = ""
    settings.SHIPMENTS_NOTIFY_WEBHOOK = None
    settings.CELERY_TASK_ALWAYS_EAGER = False


@pytest.fixture(autouse=True)
def _fresh_adapters():
    # 캐시된 어댑터 인스턴스(토큰 포함)를 테스트마다 비움
    reset_adapters()
    yield
    reset_adapters()


@pytest.fixture(autouse=True)
def notified(monkeypatch):
    """notify_shipment.delay 호출 기록 (브로커 없이)"""
    calls = []
    from domains.shipments import tasks

    monkeypatch.setattr(tasks.notify_shipment, "delay", lambda *a, **kw: calls.append(a))
    return calls


# ─────────────────────────────────────────────────────────────
# 조직 / 사용자 / 클라이언트
# ─────────────────────────────────────────────────────────────
@pytest.fixture
def organization(db):
    return Organization.objects.create(name="Acme Logistics")


@pytest.fixture
def other_organization(db):
    return Organization.objects.create(name="Other Forwarding")


@pytest.fixture
def user_factory(db):
    def _make(**kw):
        email = kw.pop("email", f"user{uuid4().hex[:6]}@example.com")
        password = kw.pop("password", "Test1234!A")
        kw.setdefault("username", f"{email.split('@')[0]}_{uuid4().hex[:6]}")
        kw.setdefault("role", "user")
        kw.setdefault("status", "active")

        u = User.objects.create_user(email=email, password=password, **kw)
        # ✅ 로그인 테스트용 원문 비밀번호 보관
        u.raw_password = password
        return u

    return _make


@pytest.fixture
def user(user_factory, organization):
    return user_factory(email="user@example.com", organization=organization)


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def auth_client(user):
    """
    SimpleJWT 토큰을 받아 Authorization 헤더 세팅된 APIClient 반환
    """
    c = APIClient()
    resp = c.post(
        "/api/v1/auth/token/",
        {"email": user.email, "password": user.raw_password},
        format="json",
    )
    assert resp.status_code == 200, getattr(resp, "data", resp.content)
    c.credentials(HTTP_AUTHORIZATION=f"Bearer {resp.data['access']}")
    return c


# ─────────────────────────────────────────────────────────────
# 운송장 / 가짜 어댑터
# ─────────────────────────────────────────────────────────────
@pytest.fixture
def shipment_factory(organization):
    def _make(**kw):
        kw.setdefault("organization", organization)
        kw.setdefault("tracking_number", f"MSCU{uuid4().int % 10_000_000:07d}")
        kw.setdefault("tracking_type", "container")
        kw.setdefault("carrier_code", "MSC")
        return Shipment.objects.create(**kw)

    return _make


class FakeAdapter(CarrierAdapter):
    """정해진 결과(또는 예외)를 돌려주는 어댑터. 호출 기록을 남긴다."""

    code = "fake"
    data_source = "fake_api"

    def __init__(self, result=None, error=None, register_result=None, register_error=None):
        super().__init__(session=object())
        self.result = result
        self.error = error
        self.register_result = register_result or {}
        self.register_error = register_error
        self.calls = []
        self.deregistered = []

    def track(self, tracking_number, *, metadata=None):
        self.calls.append((tracking_number, dict(metadata or {})))
        if self.error:
            raise self.error
        if callable(self.result):
            return self.result()
        return self.result

    def register(self, tracking_number, *, carrier_code="", metadata=None):
        if self.register_error:
            raise self.register_error
        return dict(self.register_result)

    def deregister(self, tracking_number, *, metadata=None):
        if self.register_error:
            raise self.register_error
        self.deregistered.append(tracking_number)


@pytest.fixture
def fake_adapter():
    def _make(**kw):
        return FakeAdapter(**kw)

    return _make


@pytest.fixture
def provider_result():
    """ProviderTrackingResult 빌더 (매번 새 객체)"""

    def _make(**kw):
        kw.setdefault("provider", "shipsgo")
        kw.setdefault("data_source", "shipsgo_api")
        return ProviderTrackingResult(**kw)

    return _make


@pytest.fixture
def now():
    return timezone.now().replace(microsecond=0)


@pytest.fixture
def days_ago(now):
    return lambda n: now - timedelta(days=n)


@pytest.fixture
def provider_down():
    return ProviderError("ShipsGo API error: 503 - unavailable", status_code=503)
