"""Tests for ReservationStore: create, list, update with verification, delete."""

import pytest

from reservations.models.results import INVALID, NOT_FOUND, UNAUTHENTICATED
from reservations.store import MANUAL_UPDATE_COLUMN, ReservationStore, redact_phone

from conftest import FakeBackend, make_row

BOOKING = {"name": "Bob", "phone": "0698765432", "date": "12/07/2025", "timeSlot": "8h00-11h00"}


# ── Create ────────────────────────────────────────────────────────


class TestCreate:
    async def test_inserts_pending(self, store, backend):
        result = await store.create(BOOKING)
        assert result.success
        assert result.message == "Reservation created successfully"
        row = backend.rows[result.id]
        assert row["status"] == "Pending"
        assert row["time_slot"] == "8h00-11h00"

    async def test_nine_digit_phone_booking(self, store, backend):
        result = await store.create(
            {"name": "Alice", "phone": "612345678", "date": "01/06/2025", "timeSlot": "8h00-11h00"}
        )
        assert result.success
        assert result.id is not None
        assert backend.rows[result.id]["status"] == "Pending"

    async def test_caller_status_ignored(self, store, backend):
        result = await store.create({**BOOKING, "status": "Confirmed"})
        assert backend.rows[result.id]["status"] == "Pending"

    async def test_no_session_needed(self):
        backend = FakeBackend(signed_in=False)
        result = await ReservationStore(backend).create(BOOKING)
        assert result.success

    async def test_missing_fields(self, store):
        result = await store.create({"name": "Bob"})
        assert not result.success
        assert result.error == INVALID

    async def test_backend_error(self, store, backend):
        backend.fail_insert = "duplicate key"
        result = await store.create(BOOKING)
        assert not result.success
        assert result.message == "Error: duplicate key"


# ── List ──────────────────────────────────────────────────────────


class TestList:
    async def test_newest_first(self, backend, store):
        backend.rows["2"] = make_row(id=2, name="Newer", created_at="2025-05-21T10:00:00+00:00")
        result = await store.list()
        assert result.success
        assert [r.name for r in result.data] == ["Newer", "Alice"]

    async def test_requires_session(self):
        store = ReservationStore(FakeBackend(rows=[make_row()], signed_in=False))
        result = await store.list()
        assert not result.success
        assert result.message == "Not authenticated"
        assert result.error == UNAUTHENTICATED

    async def test_session_error_counts_as_unauthenticated(self, backend, store):
        backend.fail_session = "network down"
        result = await store.list()
        assert result.error == UNAUTHENTICATED

    async def test_malformed_rows_skipped(self, backend, store):
        backend.rows["9"] = make_row(id=9, status="Bogus")
        result = await store.list()
        assert [r.id for r in result.data] == ["1"]

    async def test_backend_error(self, backend, store):
        backend.fail_select = "timeout"
        result = await store.list()
        assert not result.success
        assert result.message == "timeout"


# ── Update ────────────────────────────────────────────────────────


class TestUpdate:
    async def test_status_sets_marker_in_same_write(self, backend, store):
        result = await store.update("1", {"status": "Confirmed"})
        assert result.success
        assert result.message == "Reservation updated successfully"
        assert backend.updates == [("1", {"status": "Confirmed", MANUAL_UPDATE_COLUMN: True})]
        assert backend.rows["1"]["status"] == "Confirmed"

    async def test_non_status_edit_has_no_marker(self, backend, store):
        result = await store.update("1", {"name": "Alicia", "timeSlot": "14h00-16h00"})
        assert result.success
        assert backend.updates == [("1", {"name": "Alicia", "time_slot": "14h00-16h00"})]

    async def test_invalid_never_reaches_backend(self, backend, store):
        for fields, message in [
            ({"status": "Maybe"}, "Invalid status value"),
            ({"phone": "123"}, "Invalid phone number format"),
            ({"date": "2025-06-01"}, "Invalid date format. Use DD/MM/YYYY"),
            ({"timeSlot": "20h00-22h00"}, "Invalid time slot"),
        ]:
            result = await store.update("1", fields)
            assert not result.success
            assert result.error == INVALID
            assert result.message == message
        assert backend.updates == []

    @pytest.mark.parametrize("status", [["Confirmed"], {"a": 1}])
    async def test_non_string_status_is_rejected_not_raised(self, backend, store, status):
        result = await store.update("1", {"status": status})
        assert not result.success
        assert result.error == INVALID
        assert result.message == "Invalid status value"
        assert backend.updates == []

    async def test_empty_update(self, backend, store):
        result = await store.update("1", {"name": ""})
        assert result.message == "No updates provided"
        assert result.error == INVALID
        assert backend.updates == []

    async def test_not_found(self, store):
        result = await store.update("404", {"status": "Canceled"})
        assert not result.success
        assert result.error == NOT_FOUND
        assert result.message == "Reservation not found"

    async def test_requires_session(self):
        backend = FakeBackend(rows=[make_row()], signed_in=False)
        result = await ReservationStore(backend).update("1", {"status": "Confirmed"})
        assert result.error == UNAUTHENTICATED
        assert backend.updates == []

    async def test_verified_write_sends_once(self, backend, store):
        await store.update("1", {"status": "Canceled"})
        assert len(backend.updates) == 1

    async def test_mismatched_read_back_retries_once(self, backend, store):
        backend.stale_reads = 5
        result = await store.update("1", {"status": "Not Responding"})
        assert result.success
        assert len(backend.updates) == 2
        retry_id, retry_fields = backend.updates[1]
        assert retry_id == "1"
        assert retry_fields == {"status": "Not Responding", MANUAL_UPDATE_COLUMN: True}

    async def test_retry_failure_still_reports_success(self, backend, store):
        backend.stale_reads = 1
        original = backend.update_reservation
        calls = 0

        async def flaky(reservation_id, fields):
            nonlocal calls
            calls += 1
            if calls == 2:
                backend.updates.append((reservation_id, dict(fields)))
                raise RuntimeError("connection reset")
            return await original(reservation_id, fields)

        backend.update_reservation = flaky
        result = await store.update("1", {"status": "Confirmed"})
        assert result.success
        assert len(backend.updates) == 2

    async def test_backend_error(self, backend, store):
        backend.fail_update = "permission denied"
        result = await store.update("1", {"status": "Confirmed"})
        assert not result.success
        assert result.message == "permission denied"


# ── Get / Delete ──────────────────────────────────────────────────


class TestGetAndDelete:
    async def test_get(self, store):
        result = await store.get("1")
        assert result.success
        assert result.data[0].name == "Alice"

    async def test_get_missing(self, store):
        result = await store.get("2")
        assert result.error == NOT_FOUND

    async def test_delete(self, backend, store):
        assert await store.delete("1") is True
        assert "1" not in backend.rows

    async def test_delete_failure(self, backend, store):
        backend.fail_delete = "nope"
        assert await store.delete("1") is False

    async def test_delete_requires_session(self):
        backend = FakeBackend(rows=[make_row()], signed_in=False)
        assert await ReservationStore(backend).delete("1") is False
        assert "1" in backend.rows


class TestRedactPhone:
    @pytest.mark.parametrize("value,expected", [("0612345678", "***78"), ("", "***"), ("1234", "***")])
    def test_redact(self, value, expected):
        assert redact_phone(value) == expected
