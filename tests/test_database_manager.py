"""Tests for the database manager module (integration tests with temp SQLite)."""

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import patch

import pytest

from enrollmentcapacity.core.exceptions import (
    AlreadyEnrolledError,
    ClassFullError,
    ClassNotFoundError,
    DuplicateEntryError,
    NotFoundError,
    StoreError,
    WaitlistFullError,
)
from enrollmentcapacity.data.database_manager import WAITLIST_SYSTEM, DatabaseManager
from enrollmentcapacity.models import (
    ClassRecord,
    EnrollmentRequestStatus,
    EnrollmentStatus,
    NotificationType,
    WaitlistResponse,
)
from enrollmentcapacity.utils import is_contiguous

FIXED_NOW = datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)

DEADLINE = FIXED_NOW + timedelta(hours=48)


def _positions(store: DatabaseManager, class_id: str = "C1") -> dict:
    return {entry.student_id: entry.position for entry in store.list_waitlist(class_id)}


class TestDatabaseManagerInit:
    """Tests for DatabaseManager initialization."""

    def test_creates_database_file(self, tmp_path: Path):
        db_path = tmp_path / "nested" / "new.db"
        DatabaseManager(db_path=str(db_path))
        assert db_path.exists()

    def test_creates_tables(self, store: DatabaseManager):
        with store.get_connection() as conn:
            tables = {
                row[0]
                for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
            }
        for table in (
            "classes",
            "waitlist_entries",
            "waitlist_notifications",
            "enrollments",
            "enrollment_requests",
            "class_invitations",
            "enrollment_audit_log",
        ):
            assert table in tables

    def test_default_path_from_settings(self, tmp_path: Path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        store = DatabaseManager()
        assert store.db_path == Path("./data") / "enrollment_capacity.db"
        assert (tmp_path / "data" / "enrollment_capacity.db").exists()

    def test_sqlite_errors_become_store_errors(self, store: DatabaseManager):
        with pytest.raises(StoreError):
            with store.get_connection() as conn:
                conn.execute("SELECT * FROM no_such_table")

    def test_transaction_rolls_back(self, store: DatabaseManager, make_class):
        make_class("C1")
        with pytest.raises(RuntimeError):
            with store.transaction() as conn:
                conn.execute("UPDATE classes SET capacity = 99 WHERE class_id = 'C1'")
                raise RuntimeError("boom")
        assert store.get_class("C1").capacity == 30


class TestClasses:
    """Tests for class storage."""

    def test_upsert_keeps_current_enrollment(self, store: DatabaseManager, make_class):
        make_class("C1", capacity=30, current_enrollment=12)
        store.upsert_class(ClassRecord(class_id="C1", name="Renamed", capacity=40))

        record = store.get_class("C1")
        assert record.name == "Renamed"
        assert record.capacity == 40
        assert record.current_enrollment == 12

    def test_get_class_capacity(self, store: DatabaseManager, make_class):
        make_class("C1", capacity=25, current_enrollment=20, waitlist_capacity=5)
        capacity = store.get_class_capacity("C1")
        assert (capacity.capacity, capacity.current_enrollment) == (25, 20)
        assert capacity.waitlist_capacity == 5
        assert store.get_class_capacity("missing") is None

    def test_list_classes_by_department(self, store: DatabaseManager, make_class):
        make_class("C1", department_id="CS")
        make_class("C2", department_id="MATH")
        assert [c.class_id for c in store.list_classes("CS")] == ["C1"]
        assert len(store.list_classes()) == 2

    def test_list_classes_with_open_seats(self, store: DatabaseManager, make_class):
        make_class("FULL", capacity=1, current_enrollment=1)
        make_class("OPEN", capacity=2, current_enrollment=1)
        make_class("EMPTY", capacity=2)
        store.insert_waitlist_entry("S1", "FULL", 0, FIXED_NOW)
        store.insert_waitlist_entry("S1", "OPEN", 0, FIXED_NOW)

        assert store.list_classes_with_open_seats() == ["OPEN"]

    def test_waitlist_count_in_class_record(self, store: DatabaseManager, make_class):
        make_class("C1")
        store.insert_waitlist_entry("S1", "C1", 0, FIXED_NOW)
        assert store.get_class("C1").waitlist_count == 1


class TestWaitlistEntries:
    """Tests for waitlist insert, removal and reordering."""

    def test_priority_insert_order(self, store: DatabaseManager, make_class):
        make_class("C1")
        store.insert_waitlist_entry("S1", "C1", 0, FIXED_NOW)
        store.insert_waitlist_entry("S2", "C1", 5, FIXED_NOW)
        store.insert_waitlist_entry("S3", "C1", 0, FIXED_NOW)
        store.insert_waitlist_entry("S4", "C1", 2, FIXED_NOW)

        assert _positions(store) == {"S2": 1, "S4": 2, "S1": 3, "S3": 4}

    def test_probabilities_refreshed_on_insert(self, store: DatabaseManager, make_class):
        make_class("C1")
        for index in range(4):
            store.insert_waitlist_entry(f"S{index}", "C1", 0, FIXED_NOW)
        store.insert_waitlist_entry("VIP", "C1", 9, FIXED_NOW)

        entries = store.list_waitlist("C1")
        assert entries[0].student_id == "VIP"
        assert entries[0].estimated_probability == 0.8
        assert entries[-1].position == 5
        assert entries[-1].estimated_probability == 0.6

    def test_duplicate_entry(self, store: DatabaseManager, make_class):
        make_class("C1")
        store.insert_waitlist_entry("S1", "C1", 0, FIXED_NOW)
        with pytest.raises(DuplicateEntryError):
            store.insert_waitlist_entry("S1", "C1", 3, FIXED_NOW)
        assert store.count_waitlist("C1") == 1

    def test_waitlist_full(self, store: DatabaseManager, make_class):
        make_class("C1", waitlist_capacity=2)
        store.insert_waitlist_entry("S1", "C1", 0, FIXED_NOW)
        store.insert_waitlist_entry("S2", "C1", 0, FIXED_NOW)
        with pytest.raises(WaitlistFullError):
            store.insert_waitlist_entry("S3", "C1", 10, FIXED_NOW)

    def test_unknown_class(self, store: DatabaseManager):
        with pytest.raises(ClassNotFoundError):
            store.insert_waitlist_entry("S1", "missing", 0, FIXED_NOW)

    def test_remove_closes_gap(self, store: DatabaseManager, make_class):
        make_class("C1")
        for student in ("S1", "S2", "S3"):
            store.insert_waitlist_entry(student, "C1", 0, FIXED_NOW)

        store.remove_waitlist_entry("S2", "C1", FIXED_NOW, "S2")

        assert _positions(store) == {"S1": 1, "S3": 2}
        assert store.list_audit_log("C1")[0]["action"] == "removed"

    def test_remove_last_entry_leaves_queue_untouched(
        self, store: DatabaseManager, make_class
    ):
        make_class("C1")
        for student in ("S1", "S2", "S3"):
            store.insert_waitlist_entry(student, "C1", 0, FIXED_NOW)

        with patch.object(store.logger, "debug") as debug:
            store.remove_waitlist_entry("S3", "C1", FIXED_NOW)
            assert debug.call_count == 0
            store.remove_waitlist_entry("S1", "C1", FIXED_NOW)
            debug.assert_called_once_with("Closing position gaps in waitlist of C1")

        assert _positions(store) == {"S2": 1}

    def test_remove_missing_entry(self, store: DatabaseManager, make_class):
        make_class("C1")
        with pytest.raises(NotFoundError):
            store.remove_waitlist_entry("S1", "C1", FIXED_NOW)

    def test_update_priority_reorders(self, store: DatabaseManager, make_class):
        make_class("C1")
        for minute, student in enumerate(("S1", "S2", "S3")):
            store.insert_waitlist_entry(
                student, "C1", 0, FIXED_NOW + timedelta(minutes=minute)
            )

        updated = store.update_waitlist_priority("S3", "C1", 4, FIXED_NOW)

        assert updated.position == 1
        assert _positions(store) == {"S3": 1, "S1": 2, "S2": 3}

    def test_concurrent_inserts_keep_positions_contiguous(
        self, store: DatabaseManager, make_class
    ):
        make_class("C1", waitlist_capacity=50)

        def insert(index: int):
            return store.insert_waitlist_entry(f"S{index}", "C1", index % 3, FIXED_NOW)

        with ThreadPoolExecutor(max_workers=8) as executor:
            list(executor.map(insert, range(20)))

        entries = store.list_waitlist("C1")
        assert len(entries) == 20
        assert is_contiguous([entry.position for entry in entries])
        priorities = [entry.priority for entry in entries]
        assert priorities == sorted(priorities, reverse=True)


class TestOffers:
    """Tests for offer recording and closing."""

    def test_record_offer_is_atomic(self, store: DatabaseManager, make_class):
        make_class("C1", name="Algorithms", code="CS-201")
        entry = store.insert_waitlist_entry("S1", "C1", 0, FIXED_NOW)

        notification = store.record_waitlist_offer(entry.id, FIXED_NOW, DEADLINE)

        stored = store.get_waitlist_entry("S1", "C1")
        assert stored.notified_at == FIXED_NOW
        assert stored.notification_expires_at == DEADLINE
        assert notification.waitlist_entry_id == entry.id
        assert notification.notification_type == NotificationType.ENROLLMENT_AVAILABLE
        assert notification.class_name == "Algorithms"
        assert notification.class_code == "CS-201"
        assert store.get_open_notification(entry.id).id == notification.id

    def test_second_offer_rejected(self, store: DatabaseManager, make_class):
        make_class("C1")
        entry = store.insert_waitlist_entry("S1", "C1", 0, FIXED_NOW)
        store.record_waitlist_offer(entry.id, FIXED_NOW, DEADLINE)

        with pytest.raises(DuplicateEntryError):
            store.record_waitlist_offer(entry.id, FIXED_NOW, DEADLINE)
        assert len(store.list_notifications(entry_id=entry.id)) == 1

    def test_count_open_offers_ignores_expired(self, store: DatabaseManager, make_class):
        make_class("C1")
        first = store.insert_waitlist_entry("S1", "C1", 0, FIXED_NOW)
        second = store.insert_waitlist_entry("S2", "C1", 0, FIXED_NOW)
        store.record_waitlist_offer(first.id, FIXED_NOW, FIXED_NOW + timedelta(hours=1))
        store.record_waitlist_offer(second.id, FIXED_NOW, DEADLINE)

        later = FIXED_NOW + timedelta(hours=2)
        assert store.count_open_offers("C1", FIXED_NOW) == 2
        assert store.count_open_offers("C1", later) == 1
        assert [e.student_id for e in store.list_expired_offers(later)] == ["S1"]

    def test_accept_offer_enrolls_and_removes_entry(self, store: DatabaseManager, make_class):
        make_class("C1", capacity=30, current_enrollment=29)
        entry = store.insert_waitlist_entry("S1", "C1", 0, FIXED_NOW)
        store.insert_waitlist_entry("S2", "C1", 0, FIXED_NOW)
        store.record_waitlist_offer(entry.id, FIXED_NOW, DEADLINE)

        enrollment = store.accept_waitlist_offer(entry.id, FIXED_NOW)

        assert enrollment.status == EnrollmentStatus.ENROLLED
        assert enrollment.enrolled_by == WAITLIST_SYSTEM
        assert store.get_waitlist_entry("S1", "C1") is None
        assert _positions(store) == {"S2": 1}
        assert store.get_class("C1").current_enrollment == 30
        notification = store.list_notifications(entry_id=entry.id)[0]
        assert notification.responded
        assert notification.response == WaitlistResponse.ACCEPT

    def test_accept_offer_when_full_keeps_entry(self, store: DatabaseManager, make_class):
        make_class("C1", capacity=1, current_enrollment=1)
        entry = store.insert_waitlist_entry("S1", "C1", 0, FIXED_NOW)
        store.record_waitlist_offer(entry.id, FIXED_NOW, DEADLINE)

        with pytest.raises(ClassFullError):
            store.accept_waitlist_offer(entry.id, FIXED_NOW)

        stored = store.get_waitlist_entry("S1", "C1")
        assert stored is not None and stored.is_notified
        assert store.get_open_notification(entry.id) is not None

    def test_close_offer_respects_deadline(self, store: DatabaseManager, make_class):
        make_class("C1")
        entry = store.insert_waitlist_entry("S1", "C1", 0, FIXED_NOW)
        store.record_waitlist_offer(entry.id, FIXED_NOW, DEADLINE)

        assert not store.close_waitlist_offer(
            entry.id, WaitlistResponse.NO_RESPONSE, FIXED_NOW, expired_before=FIXED_NOW
        )
        after = DEADLINE + timedelta(seconds=1)
        assert store.close_waitlist_offer(
            entry.id, WaitlistResponse.NO_RESPONSE, after, expired_before=after
        )
        assert store.get_waitlist_entry("S1", "C1") is None
        assert not store.close_waitlist_offer(entry.id, WaitlistResponse.NO_RESPONSE, after)

    def test_reminder_listing_skips_reminded_offers(self, store: DatabaseManager, make_class):
        make_class("C1")
        entry = store.insert_waitlist_entry("S1", "C1", 0, FIXED_NOW)
        store.record_waitlist_offer(entry.id, FIXED_NOW, FIXED_NOW + timedelta(hours=2))

        window_end = FIXED_NOW + timedelta(hours=4)
        assert len(store.list_offers_needing_reminder(FIXED_NOW, window_end)) == 1

        stored = store.get_waitlist_entry_by_id(entry.id)
        store.add_notification(
            stored, NotificationType.DEADLINE_REMINDER, FIXED_NOW + timedelta(minutes=5)
        )
        assert store.list_offers_needing_reminder(FIXED_NOW, window_end) == []


class TestEnrollments:
    """Tests for direct enrollments and drops."""

    def test_create_and_drop(self, store: DatabaseManager, make_class):
        make_class("C1", capacity=2)
        store.create_enrollment("S1", "C1", "admin", FIXED_NOW)
        assert store.get_class("C1").current_enrollment == 1

        dropped = store.drop_enrollment("S1", "C1", FIXED_NOW, "schedule conflict", "S1")

        assert dropped.status == EnrollmentStatus.DROPPED
        assert dropped.drop_reason == "schedule conflict"
        assert store.get_class("C1").current_enrollment == 0
        assert store.get_active_enrollment("S1", "C1") is None
        assert len(store.list_enrollments("C1", include_dropped=True)) == 1

    def test_duplicate_enrollment(self, store: DatabaseManager, make_class):
        make_class("C1")
        store.create_enrollment("S1", "C1", "admin", FIXED_NOW)
        with pytest.raises(AlreadyEnrolledError):
            store.create_enrollment("S1", "C1", "admin", FIXED_NOW)

    def test_reenroll_after_drop(self, store: DatabaseManager, make_class):
        make_class("C1")
        store.create_enrollment("S1", "C1", "admin", FIXED_NOW)
        store.drop_enrollment("S1", "C1", FIXED_NOW)
        store.create_enrollment("S1", "C1", "admin", FIXED_NOW)
        assert store.get_active_enrollment("S1", "C1") is not None

    def test_full_class(self, store: DatabaseManager, make_class):
        make_class("C1", capacity=1, current_enrollment=1)
        with pytest.raises(ClassFullError):
            store.create_enrollment("S1", "C1", "admin", FIXED_NOW)

    def test_drop_without_enrollment(self, store: DatabaseManager, make_class):
        make_class("C1")
        with pytest.raises(NotFoundError):
            store.drop_enrollment("S1", "C1", FIXED_NOW)


class TestRequestsAndInvitations:
    """Tests for approval requests and invitations."""

    def test_duplicate_pending_request(self, store: DatabaseManager, make_class):
        make_class("C1")
        store.create_enrollment_request("S1", "C1", FIXED_NOW, DEADLINE)
        with pytest.raises(DuplicateEntryError):
            store.create_enrollment_request("S1", "C1", FIXED_NOW, DEADLINE)

    def test_review_only_once(self, store: DatabaseManager, make_class):
        make_class("C1")
        request = store.create_enrollment_request("S1", "C1", FIXED_NOW, DEADLINE)

        reviewed = store.review_enrollment_request(
            request.id, EnrollmentRequestStatus.DENIED, "I1", FIXED_NOW, "No seats"
        )
        assert reviewed.status == EnrollmentRequestStatus.DENIED
        assert reviewed.review_notes == "No seats"

        with pytest.raises(NotFoundError):
            store.review_enrollment_request(
                request.id, EnrollmentRequestStatus.APPROVED, "I1", FIXED_NOW
            )

    def test_expire_requests(self, store: DatabaseManager, make_class):
        make_class("C1")
        old = store.create_enrollment_request(
            "S1", "C1", FIXED_NOW, FIXED_NOW + timedelta(days=1)
        )
        store.create_enrollment_request("S2", "C1", FIXED_NOW, FIXED_NOW + timedelta(days=9))

        assert store.expire_enrollment_requests(FIXED_NOW + timedelta(days=2)) == 1
        assert store.get_enrollment_request(old.id).status == EnrollmentRequestStatus.EXPIRED
        pending = store.list_enrollment_requests("C1", EnrollmentRequestStatus.PENDING)
        assert [r.student_id for r in pending] == ["S2"]

    def test_invitation_lifecycle(self, store: DatabaseManager, make_class):
        make_class("C1")
        invitation = store.create_invitation(
            "C1", "S1", "I1", FIXED_NOW, FIXED_NOW + timedelta(days=14)
        )

        assert store.find_valid_invitation("S1", "C1", FIXED_NOW).id == invitation.id
        assert store.find_valid_invitation("S1", "C1", FIXED_NOW + timedelta(days=15)) is None

        assert store.mark_invitation_accepted(invitation.id, FIXED_NOW)
        assert not store.mark_invitation_accepted(invitation.id, FIXED_NOW)
        assert store.find_valid_invitation("S1", "C1", FIXED_NOW) is None

    def test_invitation_for_unknown_class(self, store: DatabaseManager):
        with pytest.raises(ClassNotFoundError):
            store.create_invitation("missing", "S1", "I1", FIXED_NOW, DEADLINE)


class TestStatsAndFrames:
    """Tests for statistics and planning frames."""

    def test_database_stats(self, store: DatabaseManager, make_class):
        make_class("C1")
        store.insert_waitlist_entry("S1", "C1", 0, FIXED_NOW)

        stats = store.get_database_stats()

        assert stats["classes"] == 1
        assert stats["waitlist_entries"] == 1
        assert stats["enrollment_audit_log"] == 1
        assert stats["db_size_mb"] >= 0

    def test_department_sections_frame(self, store: DatabaseManager, make_class):
        make_class("C1", department_id="CS", course_code="CS101", current_enrollment=10)
        make_class("C2", department_id="CS", course_code="CS101")
        store.insert_waitlist_entry("S1", "C1", 0, FIXED_NOW)

        frame = store.get_department_sections_frame("CS")

        assert list(frame["class_id"]) == ["C1", "C2"]
        assert list(frame["waitlist_count"]) == [1, 0]
        assert set(frame["course_code"]) == {"CS101"}

    def test_instructor_loads_frame(self, store: DatabaseManager, make_class):
        store.upsert_instructor("I1", "Dr. Ada", "CS")
        store.upsert_instructor("I2", "Dr. Bob", "CS")
        make_class("C1", department_id="CS", instructor_id="I1")
        make_class("C2", department_id="CS", instructor_id="I1")

        frame = store.get_instructor_loads_frame("CS").set_index("instructor_id")

        assert frame.loc["I1", "class_count"] == 2
        assert frame.loc["I2", "class_count"] == 0

    def test_enrollment_history_frame(self, store: DatabaseManager, make_class):
        make_class("C1", department_id="CS", course_code="CS101")
        store.create_enrollment("S1", "C1", "admin", FIXED_NOW - timedelta(days=30))
        store.create_enrollment("S2", "C1", "admin", FIXED_NOW - timedelta(days=1000))

        frame = store.get_enrollment_history_frame(
            "CS101", "CS", FIXED_NOW - timedelta(days=730)
        )

        assert len(frame) == 1
        assert str(frame["enrolled_at"].dt.tz) == "UTC"
