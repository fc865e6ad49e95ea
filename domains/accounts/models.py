# domains/accounts/models.py
from __future__ import annotations

import uuid
from django.db import models
from django.contrib.auth.models import AbstractUser


# ----- Enums -------------------------------------------------
class UserStatus(models.TextChoices):
    ACTIVE = "active", "Active"
    INACTIVE = "inactive", "Inactive"


class UserRole(models.TextChoices):
    USER    = "user", "User"
    MANAGER = "manager", "Manager"
    ADMIN   = "admin", "Admin"


# ----- Models ------------------------------------------------
class Organization(models.Model):
    """
    운송장 데이터의 테넌트 단위.
    모든 Shipment 조회/유니크 제약은 organization 기준으로 스코프된다.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=200)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "organizations"
        ordering = ("name",)

    def __str__(self) -> str:
        return self.name


class User(AbstractUser):
    """
    커스텀 유저 모델
    - PK: UUID (db_column='user_id')
    - email: unique (JWT 로그인 키)
    - organization: 소속 조직 (없으면 추적 API 사용 불가)
    - role 'admin' 이면 장고 어드민 접근(is_staff=True) 자동 허용
    """
    Role = UserRole

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        db_column="user_id",
    )
    email = models.EmailField(max_length=254, unique=True)

    organization = models.ForeignKey(
        Organization,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="members",
    )
    status = models.CharField(
        max_length=20,
        choices=UserStatus.choices,
        default=UserStatus.ACTIVE,
    )
    role = models.CharField(
        max_length=16,
        choices=UserRole.choices,
        default=UserRole.USER,
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "users"
        indexes = [
            models.Index(fields=["email"], name="users_email_idx"),
            models.Index(fields=["organization", "role"], name="users_org_role_idx"),
        ]

    @property
    def is_admin_role(self) -> bool:
        return self.role == UserRole.ADMIN

    def __str__(self) -> str:
        return self.email or self.username

    # ---- 역할 ↔ 장고 관리자 플래그 동기화 ----
    def save(self, *args, **kwargs):
        should_staff = self.is_superuser or self.role == UserRole.ADMIN
        if self.is_staff != should_staff:
            self.is_staff = should_staff
        super().save(*args, **kwargs)
