"""
domains/shipments/imports.py (대량 import) 테스트
"""
import threading
from datetime import datetime, timedelta, timezone as dt_timezone
from types import SimpleNamespace

import pytest
from django.utils import timezone

from domains.shipments import imports
from domains.shipments.imports import (
    MAX_REPORTED_ERRORS,
    ImportOptions,
    extract_port_code,
    extract_port_name,
    import_batch,
    infer_status,
)
from domains.shipments.models import EventType, Shipment, ShipmentStatus, TrackingEvent


def dt(y, m, d):
    return datetime(y, m, d, tzinfo=dt_timezone.utc)


def scenario_row(**overrides):
    row = {
        "Container": "MSCU1234567",
        "Carrier": "MSC",
        "Status": "Discharged",
        "Date Of Loading": "01/03/2024",
        "Date Of Discharge": "20/03/2024",
        "Port Of Loading": "Shanghai, China",
        "Port Of Discharge": "ITGOA",
    }
    row.update(overrides)
    return row


@pytest.mark.django_db
class TestImportScenarios:
    def test_fresh_row_creates_shipment_and_milestones(self, organization):
        result = import_batch([scenario_row()], organization, actor="ops@example.com")

        assert result.stats.total == 1
        assert result.stats.imported == 1
        assert result.stats.events_created == 3
        assert result.errors == []

        shipment = Shipment.objects.get(organization=organization, tracking_number="MSCU1234567")
        assert shipment.status == ShipmentStatus.DELIVERED
        assert shipment.carrier_code == "MSC"
        assert shipment.tracking_type == "container"
        assert shipment.origin_name == "Shanghai"
        assert shipment.destination_port == "ITGOA"
        assert shipment.eta is None
        assert shipment.metadata["transit_time_days"] == 19
        assert shipment.metadata["import_user"] == "ops@example.com"
        assert shipment.metadata["source"] == "shipsgo_csv_import"

        events = {e.event_type: e for e in shipment.events.all()}
        assert events[EventType.LOADED_ON_VESSEL].event_date == dt(2024, 3, 1)
        assert events[EventType.DISCHARGED_FROM_VESSEL].event_date == dt(2024, 3, 20)
        delivered = events[EventType.DELIVERED]
        assert delivered.event_date == dt(2024, 3, 23)
        assert delivered.confidence_score == 0.7
        assert delivered.raw_data["estimated"] is True
        assert delivered.raw_data["csv_row"]["Container"] == "MSCU1234567"
        assert {e.data_source for e in events.values()} == {"shipsgo_csv"}
        assert shipment.last_event_date == dt(2024, 3, 23)

    def test_same_row_again_is_skipped(self, organization):
        import_batch([scenario_row()], organization)

        result = import_batch([scenario_row()], organization, ImportOptions(skip_duplicates=True, update_existing=False))

        assert result.stats.skipped == 1
        assert result.stats.imported == 0
        assert result.stats.events_created == 0
        assert Shipment.objects.filter(tracking_number="MSCU1234567").count() == 1
        assert TrackingEvent.objects.count() == 3

    def test_update_existing_merges_row(self, organization):
        import_batch([scenario_row()], organization)

        result = import_batch(
            [scenario_row(Carrier="Maersk Line", Reference="PO-778")],
            organization,
            ImportOptions(update_existing=True),
        )

        assert result.stats.updated == 1
        shipment = Shipment.objects.get(tracking_number="MSCU1234567")
        assert shipment.carrier_code == "MAERSK"
        assert shipment.reference_number == "PO-778"
        assert "last_csv_update" in shipment.metadata
        assert shipment.metadata["transit_time_days"] == 19

    def test_no_skip_no_update_keeps_existing(self, organization):
        import_batch([scenario_row()], organization)
        result = import_batch(
            [scenario_row(Carrier="ZIM")], organization, ImportOptions(skip_duplicates=False, update_existing=False)
        )
        assert result.stats.skipped == 1
        assert Shipment.objects.get(tracking_number="MSCU1234567").carrier_code == "MSC"

    def test_reactivates_deleted_shipment(self, organization, shipment_factory):
        old = shipment_factory(tracking_number="MSCU1234567", active=False, metadata={"deleted_by": "x"})
        TrackingEvent.objects.create(
            shipment=old, event_type=EventType.DELETED, event_date=timezone.now(), data_source="system",
        )

        result = import_batch([scenario_row()], organization)

        assert result.stats.imported == 1
        old.refresh_from_db()
        assert old.active
        assert old.metadata["reactivated_from"] == "csv_import"
        assert not old.events.filter(event_type=EventType.DELETED).exists()
        assert Shipment.objects.filter(tracking_number="MSCU1234567").count() == 1

    def test_organizations_are_isolated(self, organization, other_organization):
        import_batch([scenario_row()], organization)
        result = import_batch([scenario_row()], other_organization)
        assert result.stats.imported == 1
        assert Shipment.objects.filter(tracking_number="MSCU1234567").count() == 2

    def test_import_events_disabled(self, organization):
        result = import_batch([scenario_row()], organization, ImportOptions(import_events=False))
        assert result.stats.events_created == 0
        assert TrackingEvent.objects.count() == 0


@pytest.mark.django_db
class TestImportRows:
    def test_blank_rows_are_skipped_but_not_counted(self, organization):
        rows = [{"Container": "-"}, {}, {"container number": "  "}, scenario_row()]

        result = import_batch(rows, organization, ImportOptions(batch_size=2))

        assert result.stats.total == 1
        assert result.stats.skipped == 3
        assert result.stats.imported == 1

    def test_header_lookup_is_case_insensitive(self, organization):
        row = {"CONTAINER NUMBER": "msku7654321", "shipping line": "Hapag Lloyd", "status": "-"}
        result = import_batch([row], organization)

        assert result.stats.imported == 1
        shipment = Shipment.objects.get(tracking_number="MSKU7654321")
        assert shipment.carrier_code == "HAPAG-LLOYD"
        assert shipment.status == ShipmentStatus.REGISTERED
        assert result.stats.events_created == 0

    def test_bill_of_lading_row(self, organization):
        import_batch([scenario_row(Container="MEDU123456789")], organization)
        assert Shipment.objects.get(tracking_number="MEDU123456789").tracking_type == "bl"

    def test_row_errors_are_capped(self, monkeypatch, organization):
        def explode(number):
            raise ValueError(f"bad number {number}")

        monkeypatch.setattr(imports, "detect_import_type", explode)
        rows = [scenario_row(Container=f"MSCU{i:07d}") for i in range(12)]

        result = import_batch(rows, organization)
        payload = result.as_dict()

        assert result.stats.errors == 12
        assert result.stats.total == 12
        assert len(payload["errors"]) == MAX_REPORTED_ERRORS
        assert payload["errors"][0] == {"row": 2, "container": "MSCU0000000", "error": "bad number MSCU0000000"}
        assert payload["success"] is True
        assert "12 errori" in payload["message"]
        assert Shipment.objects.count() == 0

    def test_one_bad_row_does_not_stop_batch(self, monkeypatch, organization):
        real = imports.detect_import_type

        def picky(number):
            if number == "MSCU0000001":
                raise ValueError("boom")
            return real(number)

        monkeypatch.setattr(imports, "detect_import_type", picky)
        rows = [scenario_row(Container=f"MSCU{i:07d}") for i in range(3)]

        result = import_batch(rows, organization, ImportOptions(batch_size=1))

        assert result.stats.imported == 2
        assert result.stats.errors == 1
        assert result.errors[0]["row"] == 3


class TestImportHelpers:
    def test_infer_status_prefers_raw_status(self):
        now = dt(2024, 4, 1)
        assert infer_status("Sailing", "container", None, dt(2024, 3, 1), now) == ShipmentStatus.IN_TRANSIT

    @pytest.mark.parametrize(
        "loading, discharge, expected",
        [
            (dt(2024, 3, 1), dt(2024, 3, 20), ShipmentStatus.DELIVERED),
            (dt(2024, 3, 1), dt(2024, 5, 1), ShipmentStatus.IN_TRANSIT),
            (dt(2024, 5, 1), dt(2024, 6, 1), ShipmentStatus.REGISTERED),
            (None, None, ShipmentStatus.REGISTERED),
        ],
    )
    def test_infer_status_from_dates(self, loading, discharge, expected):
        assert infer_status(None, "container", loading, discharge, dt(2024, 4, 1)) == expected

    def test_port_helpers(self):
        assert extract_port_code("ITGOA") == "ITGOA"
        assert extract_port_code("Genova, Italy") == "GENOV"
        assert extract_port_code(None) is None
        assert extract_port_name("Genova, Italy") == "Genova"
        assert extract_port_name("") is None

    def test_options_from_dict(self):
        opts = ImportOptions.from_dict({"update_existing": True, "batch_size": 0})
        assert opts.skip_duplicates is True
        assert opts.update_existing is True
        assert opts.batch_size == 50
        assert ImportOptions.from_dict(None) == ImportOptions()

    def test_infer_status_with_future_discharge(self):
        future = timezone.now() + timedelta(days=10)
        assert infer_status(None, "container", timezone.now() - timedelta(days=1), future, timezone.now()) \
            == ShipmentStatus.IN_TRANSIT


@pytest.mark.django_db
class TestConcurrentImport:
    def test_row_activated_concurrently_is_skipped(self, monkeypatch, organization, shipment_factory):
        """잠금 조회 뒤 다른 요청이 같은 번호를 먼저 만든 경우: 오류가 아니라 건너뜀"""
        shipment_factory(tracking_number="MSCU1234567")
        monkeypatch.setattr(imports, "locked_shipments", lambda organization, number: Shipment.objects.none())

        result = import_batch([scenario_row()], organization)

        assert result.stats.skipped == 1
        assert result.stats.errors == 0
        assert result.stats.imported == 0
        assert result.errors == []
        assert Shipment.objects.filter(tracking_number="MSCU1234567").count() == 1
        assert TrackingEvent.objects.count() == 0

    def test_worker_threads_accumulate_stats(self, monkeypatch, settings, organization):
        """workers > 1 이면 청크를 스레드 풀로 처리하고 결과는 행 순서대로 합산"""
        settings.TRACKING_IMPORT_MAX_WORKERS = 4
        seen = []
        closed = []

        def fake_import_row(self, row, number):
            seen.append((number, threading.current_thread() is threading.main_thread()))
            n = int(number[-2:])
            if n % 5 == 0:
                raise ValueError(f"bad {number}")
            if n % 3 == 0:
                return imports._RowOutcome("skipped")
            return imports._RowOutcome("imported", events_created=2)

        monkeypatch.setattr(imports.BulkImporter, "_import_row", fake_import_row)
        monkeypatch.setattr(imports, "close_old_connections", lambda: None)
        monkeypatch.setattr(imports, "connection", SimpleNamespace(close=lambda: closed.append(1)))
        rows = [scenario_row(Container=f"MSCU00000{i:02d}") for i in range(1, 21)] + [{"Container": "-"}]

        result = import_batch(rows, organization, ImportOptions(batch_size=8))

        assert len(seen) == 20
        assert not any(on_main for _, on_main in seen)
        assert len(closed) == 21
        assert result.stats.total == 20
        assert result.stats.imported == 11
        assert result.stats.skipped == 6
        assert result.stats.errors == 4
        assert result.stats.events_created == 22
        assert [e["container"] for e in result.errors] == [
            "MSCU0000005", "MSCU0000010", "MSCU0000015", "MSCU0000020",
        ]
        assert result.errors[0] == {"row": 6, "container": "MSCU0000005", "error": "bad MSCU0000005"}
