import uuid

import django.core.validators
import django.db.models.deletion
from django.db import migrations, models


STATUS_CHOICES = [
    ("registered", "Registered"),
    ("in_transit", "In Transit"),
    ("out_for_delivery", "Out For Delivery"),
    ("delivered", "Delivered"),
    ("delayed", "Delayed"),
    ("exception", "Exception"),
    ("cancelled", "Cancelled"),
]

TRACKING_TYPE_CHOICES = [
    ("container", "Container"),
    ("bl", "Bill of Lading"),
    ("awb", "Air Waybill"),
    ("parcel", "Parcel"),
]

EVENT_TYPE_CHOICES = [
    ("REGISTERED", "Registered"),
    ("GATE_IN", "Gate In"),
    ("GATE_OUT", "Gate Out"),
    ("LOADED_ON_VESSEL", "Loaded On Vessel"),
    ("DISCHARGED_FROM_VESSEL", "Discharged From Vessel"),
    ("DEPARTED", "Departed"),
    ("ARRIVED", "Arrived"),
    ("OUT_FOR_DELIVERY", "Out For Delivery"),
    ("DELIVERED", "Delivered"),
    ("EMPTY_RETURNED", "Empty Returned"),
    ("DELETED", "Deleted"),
    ("EXCEPTION", "Exception"),
    ("DELAYED", "Delayed"),
    ("CANCELLED", "Cancelled"),
    ("OTHER", "Other"),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("accounts", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Shipment",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("tracking_number", models.CharField(max_length=64)),
                (
                    "tracking_type",
                    models.CharField(choices=TRACKING_TYPE_CHOICES, default="container", max_length=16),
                ),
                ("carrier_code", models.CharField(blank=True, max_length=40)),
                ("carrier_name", models.CharField(blank=True, max_length=120)),
                ("reference_number", models.CharField(blank=True, max_length=120)),
                ("status", models.CharField(choices=STATUS_CHOICES, default="registered", max_length=24)),
                ("active", models.BooleanField(default=True)),
                ("origin_port", models.CharField(blank=True, max_length=16)),
                ("origin_name", models.CharField(blank=True, max_length=120)),
                ("destination_port", models.CharField(blank=True, max_length=16)),
                ("destination_name", models.CharField(blank=True, max_length=120)),
                ("vessel_name", models.CharField(blank=True, max_length=120)),
                ("vessel_imo", models.CharField(blank=True, max_length=20)),
                ("voyage_number", models.CharField(blank=True, max_length=40)),
                ("flight_number", models.CharField(blank=True, max_length=40)),
                ("last_event_date", models.DateTimeField(blank=True, null=True)),
                ("last_event_location", models.CharField(blank=True, max_length=200)),
                ("last_event_description", models.CharField(blank=True, max_length=255)),
                ("eta", models.DateTimeField(blank=True, null=True)),
                ("ata", models.DateTimeField(blank=True, null=True)),
                ("metadata", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "organization",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="shipments",
                        to="accounts.organization",
                    ),
                ),
            ],
            options={
                "db_table": "shipments",
                "indexes": [
                    models.Index(fields=["organization", "tracking_number"], name="shipments_org_tn_idx"),
                    models.Index(fields=["organization", "active", "status"], name="shipments_org_active_idx"),
                    models.Index(fields=["status", "updated_at"], name="shipments_status_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("active", True)),
                        fields=("tracking_number", "organization"),
                        name="uq_active_tracking_per_org",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="TrackingEvent",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("event_date", models.DateTimeField()),
                ("event_type", models.CharField(choices=EVENT_TYPE_CHOICES, default="OTHER", max_length=32)),
                ("event_code", models.CharField(blank=True, max_length=20)),
                ("location_name", models.CharField(blank=True, max_length=200)),
                ("location_code", models.CharField(blank=True, max_length=20)),
                ("description", models.TextField(blank=True)),
                ("vessel_name", models.CharField(blank=True, max_length=120)),
                ("vessel_imo", models.CharField(blank=True, max_length=20)),
                ("voyage_number", models.CharField(blank=True, max_length=40)),
                ("data_source", models.CharField(blank=True, max_length=40)),
                (
                    "confidence_score",
                    models.FloatField(
                        default=1.0,
                        validators=[
                            django.core.validators.MinValueValidator(0.0),
                            django.core.validators.MaxValueValidator(1.0),
                        ],
                    ),
                ),
                ("raw_data", models.JSONField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "shipment",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="events",
                        to="shipments.shipment",
                    ),
                ),
            ],
            options={
                "db_table": "tracking_events",
                "ordering": ("event_date",),
                "indexes": [
                    models.Index(fields=["shipment", "event_date"], name="tracking_ev_ship_date_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("shipment", "event_type", "event_date"),
                        name="uq_event_per_type_and_date",
                    )
                ],
            },
        ),
    ]
