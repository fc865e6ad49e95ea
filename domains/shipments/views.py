# domains/shipments/views.py
import logging

from django.conf import settings
from django.shortcuts import get_object_or_404
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import parsers, permissions, status
from rest_framework.response import Response
from rest_framework.views import APIView

from shared.permissions import HasOrganization

from .exceptions import (
    DuplicateTrackingError,
    ReconciliationError,
    ShipmentNotFoundError,
    TrackingAlreadyDeletedError,
    TrackingError,
    WebhookSignatureError,
)
from .filters import ShipmentFilter
from .imports import ImportOptions, import_batch
from .models import Shipment
from .serializers import (
    ImportInSerializer,
    ManualEventsInSerializer,
    RefreshSerializer,
    RegisterShipmentSerializer,
    ShipmentDetailSerializer,
    ShipmentSerializer,
    TrackingEventSerializer,
    WebhookInSerializer,
)
from .services import add_manual_events, delete_tracking, reconcile_shipment, register_tracking
from .webhooks import ingest_webhook_event, require_valid_signature

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "HTTP_X_SHIPSGO_SIGNATURE"
WEBHOOK_PROVIDERS = ("shipsgo", "shipsgo_air")


# --------------------------------------------------------------------
# 공통: 조직 스코프
# --------------------------------------------------------------------
def _org_shipments(request):
    return Shipment.objects.filter(organization_id=request.user.organization_id)


def _actor(request) -> str:
    return getattr(request.user, "email", "") or str(request.user.pk)


def _page_params(request):
    try:
        page = int(request.query_params.get("page") or 1)
        size = int(request.query_params.get("size") or 10)
    except ValueError:
        page, size = 1, 10
    return max(page, 1), max(min(size, 100), 1)


# --------------------------------------------------------------------
# GET  /api/v1/shipments/   (목록) page, size + 필터
# POST /api/v1/shipments/   (등록)
# 목록 응답 형태: { "total": n, "page": p, "size": s, "results": [...] }
# --------------------------------------------------------------------
class ShipmentsListAPI(APIView):
    parser_classes = [parsers.JSONParser]
    permission_classes = [HasOrganization]

    @extend_schema(
        parameters=[
            OpenApiParameter(name="page", required=False, type=int, description="page number (1-base)"),
            OpenApiParameter(name="size", required=False, type=int, description="page size"),
            OpenApiParameter(name="status", required=False, type=str),
            OpenApiParameter(name="tracking_type", required=False, type=str),
            OpenApiParameter(name="carrier_code", required=False, type=str),
            OpenApiParameter(name="active", required=False, type=bool, description="기본값 true"),
            OpenApiParameter(name="q", required=False, type=str, description="운송장/참조번호 검색"),
        ],
        responses={200: ShipmentSerializer(many=True)},
    )
    def get(self, request):
        page, size = _page_params(request)

        qs = _org_shipments(request).order_by("-created_at")
        # active 파라미터가 없으면 삭제되지 않은 건만
        if "active" not in request.query_params:
            qs = qs.filter(active=True)
        qs = ShipmentFilter(request.query_params, queryset=qs).qs

        total = qs.count()
        start = (page - 1) * size
        rows = qs[start:start + size]

        data = ShipmentSerializer(rows, many=True).data
        return Response(
            {"total": total, "page": page, "size": size, "results": data},
            status=status.HTTP_200_OK,
        )

    @extend_schema(request=RegisterShipmentSerializer, responses={201: ShipmentSerializer})
    def post(self, request):
        ser = RegisterShipmentSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        v = ser.validated_data

        try:
            outcome = register_tracking(
                request.user.organization,
                v["tracking_number"],
                tracking_type=v.get("tracking_type") or None,
                carrier_code=v.get("carrier_code", ""),
                reference_number=v.get("reference_number", ""),
                actor=_actor(request),
            )
        except DuplicateTrackingError as e:
            return Response(
                {"detail": str(e), "id": str(e.shipment.id)},
                status=status.HTTP_409_CONFLICT,
            )

        body = dict(ShipmentSerializer(outcome.shipment).data)
        body["reactivated"] = outcome.reactivated
        body["warning"] = outcome.warning or None
        return Response(body, status=status.HTTP_201_CREATED)


# --------------------------------------------------------------------
# GET    /api/v1/shipments/{id}/  (상세 + 이벤트)
# DELETE /api/v1/shipments/{id}/  (soft delete)
# --------------------------------------------------------------------
class ShipmentDetailAPI(APIView):
    permission_classes = [HasOrganization]

    @extend_schema(responses={200: ShipmentDetailSerializer})
    def get(self, request, id):
        obj = get_object_or_404(_org_shipments(request).prefetch_related("events"), id=id)
        return Response(ShipmentDetailSerializer(obj).data, status=status.HTTP_200_OK)

    @extend_schema(responses={200: dict})
    def delete(self, request, id):
        obj = get_object_or_404(_org_shipments(request), id=id)
        try:
            warning = delete_tracking(obj, actor=_actor(request))
        except TrackingAlreadyDeletedError as e:
            return Response({"detail": str(e)}, status=status.HTTP_409_CONFLICT)
        return Response({"success": True, "warning": warning or None}, status=status.HTTP_200_OK)


# --------------------------------------------------------------------
# POST /api/v1/shipments/{id}/refresh/   body: {force}
# 외부 조회 실패는 200 + success:false (기존 데이터 유지)
# --------------------------------------------------------------------
class ShipmentRefreshAPI(APIView):
    parser_classes = [parsers.JSONParser]
    permission_classes = [HasOrganization]

    @extend_schema(request=RefreshSerializer, responses={200: dict})
    def post(self, request, id):
        obj = get_object_or_404(_org_shipments(request), id=id, active=True)
        ser = RefreshSerializer(data=request.data or {})
        ser.is_valid(raise_exception=True)

        try:
            outcome = reconcile_shipment(obj, force_update=ser.validated_data["force"])
        except ReconciliationError:
            logger.exception("refresh failed for shipment %s", obj.id)
            return Response({"detail": "internal error"}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

        return Response(
            {
                "success": outcome.skipped != "provider_error",
                "updated": outcome.updated,
                "skipped": outcome.skipped,
                "events_created": len(outcome.events),
                "warning": outcome.warning or None,
                "shipment": ShipmentSerializer(outcome.shipment).data,
            },
            status=status.HTTP_200_OK,
        )


# --------------------------------------------------------------------
# GET  /api/v1/shipments/{id}/events/
# POST /api/v1/shipments/{id}/events/   (수동 이벤트)
# --------------------------------------------------------------------
class ShipmentEventsAPI(APIView):
    parser_classes = [parsers.JSONParser]
    permission_classes = [HasOrganization]

    @extend_schema(responses={200: TrackingEventSerializer(many=True)})
    def get(self, request, id):
        obj = get_object_or_404(_org_shipments(request), id=id)
        events = obj.events.order_by("event_date")
        return Response(TrackingEventSerializer(events, many=True).data, status=status.HTTP_200_OK)

    @extend_schema(request=ManualEventsInSerializer, responses={201: TrackingEventSerializer(many=True)})
    def post(self, request, id):
        obj = get_object_or_404(_org_shipments(request), id=id, active=True)
        ser = ManualEventsInSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        created = add_manual_events(
            obj,
            ser.validated_data["events"],
            update_tracking=ser.validated_data["update_tracking"],
        )
        return Response(
            {
                "created": len(created),
                "skipped": len(ser.validated_data["events"]) - len(created),
                "results": TrackingEventSerializer(created, many=True).data,
            },
            status=status.HTTP_201_CREATED,
        )


# --------------------------------------------------------------------
# POST /api/v1/shipments/import/   body: {rows: [...], options: {...}}
# 행 단위 실패가 있어도 200 (stats/errors 로 보고)
# --------------------------------------------------------------------
class ShipmentImportAPI(APIView):
    parser_classes = [parsers.JSONParser]
    permission_classes = [HasOrganization]

    @extend_schema(request=ImportInSerializer, responses={200: dict})
    def post(self, request):
        ser = ImportInSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        result = import_batch(
            ser.validated_data["rows"],
            request.user.organization,
            ImportOptions.from_dict(ser.validated_data.get("options")),
            actor=_actor(request),
        )
        return Response(result.as_dict(), status=status.HTTP_200_OK)


# --------------------------------------------------------------------
# POST /api/v1/webhooks/shipments/{provider}/
#  -> X-Shipsgo-Signature (HMAC-SHA256) 검증 후 매칭된 모든 shipment 에 이벤트 반영
# --------------------------------------------------------------------
class ShipmentWebhookAPI(APIView):
    authentication_classes = []
    permission_classes = [permissions.AllowAny]
    parser_classes = [parsers.JSONParser]

    @extend_schema(request=WebhookInSerializer, responses={200: dict})
    def post(self, request, provider: str):
        if provider.lower() not in WEBHOOK_PROVIDERS:
            return Response({"detail": f"unsupported provider: {provider}"}, status=status.HTTP_404_NOT_FOUND)

        # 서명은 원문 바이트 기준 (request.data 보다 먼저 읽어야 함)
        raw_body = request.body
        try:
            require_valid_signature(
                raw_body,
                request.META.get(SIGNATURE_HEADER),
                getattr(settings, "SHIPSGO_WEBHOOK_SECRET", ""),
            )
        except WebhookSignatureError as e:
            logger.warning("rejected %s webhook: %s", provider, e)
            return Response({"detail": str(e)}, status=status.HTTP_401_UNAUTHORIZED)

        ser = WebhookInSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        try:
            outcomes = ingest_webhook_event(dict(request.data))
        except ShipmentNotFoundError as e:
            return Response({"detail": str(e)}, status=status.HTTP_404_NOT_FOUND)
        except TrackingError as e:
            return Response({"detail": str(e)}, status=status.HTTP_400_BAD_REQUEST)

        results = [
            {
                "shipment_id": str(o.shipment.id),
                "created": 1 if o.event is not None else 0,
                "status": o.shipment.status,
                "status_changed": o.status_changed,
            }
            for o in outcomes
        ]
        return Response(
            {
                "success": True,
                "matched": len(results),
                "created": sum(r["created"] for r in results),
                "results": results,
            },
            status=status.HTTP_200_OK,
        )
