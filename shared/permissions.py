# shared/permissions.py
from __future__ import annotations

from rest_framework.permissions import BasePermission

# ---- helpers ---------------------------------------------------------------


def _is_schema_generation(view) -> bool:
    """drf-spectacular 스키마 생성 시 True (권한을 널널하게 통과시켜 문서 생성 편의)."""
    return bool(getattr(view, "swagger_fake_view", False))


# ---- organization scoping --------------------------------------------------


class HasOrganization(BasePermission):
    """로그인 + 조직 소속. 추적 데이터는 모두 조직 단위로 격리된다."""

    message = "organization not configured"

    def has_permission(self, request, view):
        if _is_schema_generation(view):
            return True
        user = request.user
        return bool(
            getattr(user, "is_authenticated", False)
            and getattr(user, "organization_id", None)
        )


__all__ = [
    "HasOrganization",
]
