from __future__ import annotations

import json

from django.contrib import admin
from django.utils.html import format_html

from . import models
from .status_map import display_label


def _pretty_json(value):
    if value in (None, "", {}):
        return "-"
    return format_html(
        "<pre style='white-space:pre-wrap'>{}</pre>",
        json.dumps(value, ensure_ascii=False, indent=2, default=str),
    )


# ---------- TrackingEvent Inline ----------
class TrackingEventInline(admin.TabularInline):
    model = models.TrackingEvent
    extra = 0
    can_delete = False
    fields = ("event_date", "event_type", "event_code", "location_name", "description", "data_source", "confidence_score")
    readonly_fields = fields
    ordering = ("-event_date",)


# ---------- Shipment Admin ----------
@admin.register(models.Shipment)
class ShipmentAdmin(admin.ModelAdmin):
    inlines = [TrackingEventInline]

    list_display = (
        "tracking_number",
        "tracking_type",
        "carrier_code",
        "status_display",
        "active",
        "organization",
        "last_event_date",
        "eta",
        "updated_at",
    )
    list_filter = ("status", "tracking_type", "active", "carrier_code")
    search_fields = ("id", "tracking_number", "reference_number", "carrier_name")
    readonly_fields = ("id", "created_at", "updated_at", "metadata_display")
    exclude = ("metadata",)
    list_select_related = ("organization",)
    ordering = ("-updated_at",)

    def status_display(self, obj):
        return display_label(obj.status)
    status_display.short_description = "Status"

    def metadata_display(self, obj):
        return _pretty_json(obj.metadata)
    metadata_display.short_description = "Metadata"


# ---------- TrackingEvent Admin ----------
@admin.register(models.TrackingEvent)
class TrackingEventAdmin(admin.ModelAdmin):
    list_display = ("shipment", "event_date", "event_type", "location_name", "data_source", "confidence_score")
    list_filter = ("event_type", "data_source")
    search_fields = ("shipment__tracking_number", "description", "event_code")
    readonly_fields = ("raw_payload",)
    exclude = ("raw_data",)
    list_select_related = ("shipment",)
    ordering = ("-event_date",)

    def raw_payload(self, obj):
        return _pretty_json(obj.raw_data)
