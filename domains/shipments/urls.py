from django.urls import path

from .views import (
    ShipmentDetailAPI,
    ShipmentEventsAPI,
    ShipmentImportAPI,
    ShipmentRefreshAPI,
    ShipmentsListAPI,
)

app_name = "shipments"

urlpatterns = [
    # 목록 / 등록
    path("", ShipmentsListAPI.as_view(), name="shipment-list"),
    # 정적(POST) 엔드포인트: <uuid> 라우트보다 먼저, 트레일링 슬래시 필수!
    path("import/", ShipmentImportAPI.as_view(), name="shipment-import"),
    # 상세 / 삭제
    path("<uuid:id>/", ShipmentDetailAPI.as_view(), name="shipment-detail"),
    path("<uuid:id>/refresh/", ShipmentRefreshAPI.as_view(), name="shipment-refresh"),
    path("<uuid:id>/events/", ShipmentEventsAPI.as_view(), name="shipment-events"),
]
