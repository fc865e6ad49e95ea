# domains/accounts/admin.py
from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from .models import Organization, User


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    list_display = ("email", "username", "organization", "role", "status", "is_staff", "created_at")
    list_filter = ("role", "status", "is_staff", "is_superuser")
    search_fields = ("email", "username", "organization__name")
    ordering = ("-created_at",)

    readonly_fields = ("created_at", "updated_at", "is_staff")

    fieldsets = (
        ("기본 정보", {"fields": ("email", "username", "password")}),
        ("소속", {"fields": ("organization", "first_name", "last_name")}),
        ("권한", {
            "fields": ("role", "status", "is_active", "is_superuser", "groups", "user_permissions"),
            "description": "role을 바꾸면 저장 시 is_staff가 자동 동기화됩니다.",
        }),
        ("중요 일시", {"fields": ("last_login", "created_at", "updated_at")}),
    )

    add_fieldsets = (
        (None, {
            "classes": ("wide",),
            "fields": ("email", "username", "organization", "password1", "password2", "role", "is_active"),
        }),
    )


@admin.register(Organization)
class OrganizationAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "created_at")
    search_fields = ("name",)
