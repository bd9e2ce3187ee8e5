"""Tests for the models module."""

from datetime import datetime, timedelta, timezone

from enrollmentcapacity.models import (
    ClassCapacity,
    ClassInvitation,
    ClassRecord,
    EnrollmentError,
    EnrollmentResult,
    EnrollmentStatus,
    FactorImpact,
    ItemOutcome,
    NotificationType,
    PlanPriority,
    PromotionReport,
    WaitlistEntry,
    WaitlistNotification,
)

NOW = datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)


class TestPlanPriority:
    """Tests for PlanPriority enum."""

    def test_labels_and_ranks(self):
        assert PlanPriority.HIGH.label == "high"
        assert PlanPriority.HIGH.rank > PlanPriority.MEDIUM.rank > PlanPriority.LOW.rank


class TestFactorImpact:
    """Tests for FactorImpact enum."""

    def test_scores(self):
        assert FactorImpact.POSITIVE.score == 1.0
        assert FactorImpact.NEUTRAL.score == 0.5
        assert FactorImpact.NEGATIVE.score == 0.0


class TestClassCapacity:
    """Tests for ClassCapacity dataclass."""

    def test_full_class(self):
        capacity = ClassCapacity(
            class_id="C1", capacity=10, current_enrollment=10, waitlist_capacity=5
        )
        assert capacity.is_full
        assert capacity.available_spots == 0

    def test_open_seats(self):
        capacity = ClassCapacity(
            class_id="C1", capacity=10, current_enrollment=7, waitlist_capacity=5
        )
        assert not capacity.is_full
        assert capacity.available_spots == 3


class TestClassRecord:
    """Tests for ClassRecord dataclass."""

    def test_available_spots_never_negative(self):
        record = ClassRecord(class_id="C1", name="Intro", capacity=10, current_enrollment=12)
        assert record.available_spots == 0

    def test_waitlist_availability(self):
        record = ClassRecord(
            class_id="C1", name="Intro", capacity=10, waitlist_capacity=2, waitlist_count=2
        )
        assert not record.is_waitlist_available


class TestWaitlistEntry:
    """Tests for WaitlistEntry dataclass."""

    def _entry(self, expires_at=None) -> WaitlistEntry:
        return WaitlistEntry(
            id="e1",
            student_id="S1",
            class_id="C1",
            position=1,
            priority=0,
            added_at=NOW,
            notified_at=NOW if expires_at else None,
            notification_expires_at=expires_at,
        )

    def test_unnotified_entry_never_expires(self):
        entry = self._entry()
        assert not entry.is_notified
        assert not entry.is_offer_expired(NOW + timedelta(days=365))

    def test_deadline_is_inclusive(self):
        deadline = NOW + timedelta(hours=48)
        entry = self._entry(deadline)
        assert not entry.is_offer_expired(deadline)
        assert entry.is_offer_expired(deadline + timedelta(microseconds=1))

    def test_to_dict(self):
        data = self._entry().to_dict()
        assert data["added_at"] == NOW.isoformat()
        assert data["notified_at"] is None


class TestWaitlistNotification:
    """Tests for WaitlistNotification dataclass."""

    def test_open_until_answered_or_expired(self):
        notification = WaitlistNotification(
            id="n1",
            waitlist_entry_id="e1",
            student_id="S1",
            class_id="C1",
            notification_type=NotificationType.ENROLLMENT_AVAILABLE,
            sent_at=NOW,
            response_deadline=NOW + timedelta(hours=1),
        )
        assert notification.is_open(NOW)
        assert not notification.is_open(NOW + timedelta(hours=2))

        notification.responded = True
        assert not notification.is_open(NOW)


class TestClassInvitation:
    """Tests for ClassInvitation dataclass."""

    def test_validity(self):
        invitation = ClassInvitation(
            id="i1",
            class_id="C1",
            student_id="S1",
            invited_by="I1",
            expires_at=NOW + timedelta(days=1),
        )
        assert invitation.is_valid(NOW)
        assert not invitation.is_valid(NOW + timedelta(days=2))

        invitation.accepted_at = NOW
        assert not invitation.is_valid(NOW)


class TestResults:
    """Tests for operation result types."""

    def test_promotion_report_counts(self):
        report = PromotionReport(
            class_id="C1",
            available_spots=2,
            outcomes=[
                ItemOutcome(key="S1", value="n1"),
                ItemOutcome(key="S2", error="disk I/O error"),
            ],
        )
        assert report.notified_count == 1
        assert report.failed_count == 1
        assert [failure.key for failure in report.failures] == ["S2"]

    def test_enrollment_result_to_dict(self):
        result = EnrollmentResult(
            success=False,
            status=EnrollmentStatus.DROPPED,
            message="Class not found",
            errors=[EnrollmentError(field="classId", message="Class not found", code="CLASS_NOT_FOUND")],
        )
        data = result.to_dict()
        assert data["status"] == "dropped"
        assert data["errors"] == [
            {"field": "classId", "message": "Class not found", "code": "CLASS_NOT_FOUND"}
        ]
