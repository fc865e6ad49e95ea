from django.conf import settings
from django.conf.urls.static import static
from django.contrib import admin
from django.urls import path, include, re_path
from django.views.generic import RedirectView
from django.http import JsonResponse
from drf_spectacular.views import SpectacularAPIView, SpectacularSwaggerView

from domains.shipments.views import ShipmentWebhookAPI


def healthz(_):
    return JsonResponse({"ok": True})


urlpatterns = [
    # Admin
    path("admin/", admin.site.urls),

    # OpenAPI / Swagger
    path("api/v1/schema/", SpectacularAPIView.as_view(), name="v1-schema"),
    path("api/v1/docs/",   SpectacularSwaggerView.as_view(url_name="v1-schema"), name="v1-docs"),
    path("api/schema/",    SpectacularAPIView.as_view(), name="api-schema"),
    path("api/docs/",      SpectacularSwaggerView.as_view(url_name="v1-schema"), name="docs"),

    # 슬래시 없는 접근 → 슬래시 있는 경로로 301 정규화
    re_path(r"^api/v1/schema$", RedirectView.as_view(url="/api/v1/schema/", permanent=True)),
    re_path(r"^api/v1/docs$",   RedirectView.as_view(url="/api/v1/docs/",   permanent=True)),

    # 웹훅 (인증 없음, 서명 검증) - api/v1/ include 보다 먼저
    path("api/v1/webhooks/shipments/<str:provider>/",
         ShipmentWebhookAPI.as_view(), name="shipment-webhook"),

    # API v1 엔드포인트
    path("api/v1/", include("api.v1.urls")),

    # 루트 → 문서
    path("", RedirectView.as_view(url="/api/docs/", permanent=False)),

    # 헬스체크
    path("healthz/", healthz, name="healthz"),
]

if settings.DEBUG:
    # 개발 환경에서만 정적 파일 서빙
    urlpatterns += static(settings.STATIC_URL, document_root=settings.STATIC_ROOT)
