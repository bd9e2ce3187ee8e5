"""Tests for the report formatter module."""

from datetime import datetime, timezone

import pytest

from enrollmentcapacity.models import (
    ClassRecord,
    EnrollmentError,
    EnrollmentResult,
    EnrollmentStatus,
    FactorImpact,
    FeasibilityFactor,
    ImplementationTimeline,
    PlanPriority,
    SectionOptimizationResult,
    SectionPlan,
    TimelineBucket,
    WaitlistEntry,
    WaitlistInfo,
)
from enrollmentcapacity.reporting.report_formatter import NEAR_THRESHOLD, ReportFormatter

DEADLINE = datetime(2025, 1, 8, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def formatter() -> ReportFormatter:
    """Create a ReportFormatter instance."""
    return ReportFormatter()


@pytest.fixture
def class_record() -> ClassRecord:
    return ClassRecord(
        class_id="C1",
        name="Intro to Programming",
        code="CS101-A",
        capacity=30,
        current_enrollment=30,
        waitlist_capacity=10,
        waitlist_count=2,
    )


def _info(student_id: str, position: int, notified: bool = False) -> WaitlistInfo:
    entry = WaitlistEntry(
        id=f"e-{student_id}",
        student_id=student_id,
        class_id="C1",
        position=position,
        priority=0,
        added_at=datetime(2025, 1, 6, tzinfo=timezone.utc),
        notified_at=DEADLINE if notified else None,
        notification_expires_at=DEADLINE if notified else None,
        estimated_probability=0.8,
    )
    return WaitlistInfo(
        entry=entry,
        position=position,
        estimated_probability=0.8,
        is_notified=notified,
        estimated_wait_time="3 days",
        estimated_wait_days=3,
        response_deadline=entry.notification_expires_at,
    )


def _plan(priority: PlanPriority = PlanPriority.HIGH) -> SectionPlan:
    return SectionPlan(
        course_code="CS101",
        course_name="Intro",
        recommended_sections=3,
        current_sections=2,
        capacity_per_section=30,
        total_recommended_capacity=90,
        priority=priority,
        estimated_cost=15000,
        reasoning=["Increase from 2 to 3 sections to meet demand"],
        feasibility_factors=[
            FeasibilityFactor(
                factor="Instructor Availability",
                impact=FactorImpact.NEGATIVE,
                description="10% of instructors have available capacity",
                weight=0.4,
            )
        ],
    )


class TestGetStatusEmoji:
    """Tests for _get_status_emoji method."""

    def test_full_class_red(self, formatter: ReportFormatter):
        assert formatter._get_status_emoji(1.0) == "🔴"
        assert formatter._get_status_emoji(1.15) == "🔴"

    def test_near_full_orange(self, formatter: ReportFormatter):
        assert formatter._get_status_emoji(0.80) == "🟠"
        assert formatter._get_status_emoji(NEAR_THRESHOLD) == "🟠"

    def test_open_class_green(self, formatter: ReportFormatter):
        assert formatter._get_status_emoji(0.74) == "🟢"


class TestWaitlistFormatting:
    """Tests for waitlist rendering."""

    def test_class_header(self, formatter, class_record):
        header = formatter.format_class_header(class_record)
        assert header == "🔴 CS101-A Intro to Programming 30/30 | ⏳ 2/10"

    def test_class_header_full_waitlist(self, formatter, class_record):
        class_record.waitlist_count = 10
        header = formatter.format_class_header(class_record)
        assert header.endswith("⏳ 10/10 (waitlist full)")

    def test_empty_waitlist(self, formatter, class_record):
        report = formatter.format_class_waitlist(class_record, [])
        assert report.endswith("Waitlist is empty.")

    def test_waitlist_lines(self, formatter, class_record):
        report = formatter.format_class_waitlist(
            class_record, [_info("S1", 1, notified=True), _info("S2", 2)]
        )
        lines = report.splitlines()

        assert len(lines) == 4
        assert lines[2].startswith("📨")
        assert "S1" in lines[2]
        assert "respond by 2025-01-08 09:00" in lines[2]
        assert "S2" in lines[3]
        assert "respond by" not in lines[3]

    def test_student_info(self, formatter):
        text = formatter.format_waitlist_info(_info("S1", 1, notified=True), "C1")
        assert "position 1" in text
        assert "80%" in text
        assert "Offer open until 2025-01-08 09:00 UTC" in text

    def test_student_not_waitlisted(self, formatter):
        info = WaitlistInfo(
            entry=None,
            position=0,
            estimated_probability=0.0,
            is_notified=False,
            estimated_wait_time="Not on waitlist",
        )
        assert formatter.format_waitlist_info(info, "C1") == "Not on the waitlist for C1."


class TestEnrollmentResultFormatting:
    """Tests for format_enrollment_result."""

    def test_waitlisted_result(self, formatter):
        result = EnrollmentResult(
            success=True,
            status=EnrollmentStatus.WAITLISTED,
            message="Added to waitlist",
            waitlist_position=4,
            estimated_probability=0.6,
            estimated_wait_time="10 days",
            next_steps=["You will be notified when a spot becomes available"],
        )
        text = formatter.format_enrollment_result(result)

        assert text.startswith("✅ Added to waitlist [waitlisted]")
        assert "Waitlist position 4, probability 60%, wait 10 days" in text
        assert "• You will be notified" in text

    def test_failed_result(self, formatter):
        result = EnrollmentResult(
            success=False,
            status=EnrollmentStatus.DROPPED,
            message="This class requires a valid invitation",
            errors=[
                EnrollmentError(
                    field="invitation",
                    message="Valid invitation required",
                    code="INVITATION_REQUIRED",
                )
            ],
        )
        text = formatter.format_enrollment_result(result)

        assert text.startswith("❌")
        assert "INVITATION_REQUIRED: Valid invitation required" in text


class TestPlanFormatting:
    """Tests for plan, optimization and timeline rendering."""

    def test_section_plans(self, formatter):
        text = formatter.format_section_plans("CS", [_plan()], feasibility=lambda plan: 0.25)

        assert text.splitlines()[0] == "🏫 Section plan for CS"
        assert "🔴 CS101 2 → 3 sections (+1) 💰 15,000 | feasibility 0.25" in text
        assert "⚠️ Instructor Availability" in text

    def test_no_plans(self, formatter):
        assert formatter.format_section_plans("BIO", []).endswith("No classes found.")

    def test_optimization(self, formatter):
        plan = _plan()
        result = SectionOptimizationResult(
            original_plan=plan,
            optimized_plan=plan,
            feasibility_score=0.4,
            improvements=["Reduced section increase to improve feasibility"],
            tradeoffs=["May not fully meet demand in the short term"],
            implementation_steps=["Recruit qualified adjunct instructors"],
        )
        text = formatter.format_optimization(result)

        assert text.startswith("🔧 CS101: 3 → 3 sections (feasibility 0.40)")
        assert "⚖️ May not fully meet demand" in text

    def test_timeline(self, formatter):
        timeline = ImplementationTimeline(
            immediate=TimelineBucket("Next semester", [_plan()]),
            short_term=TimelineBucket("2-3 semesters"),
            long_term=TimelineBucket("1-2 years"),
        )
        text = formatter.format_timeline(timeline)

        assert "Immediate (Next semester): CS101 💰 15,000" in text
        assert "Short term (2-3 semesters): - 💰 0" in text

    def test_sweep_record(self, formatter):
        text = formatter.format_sweep(
            {"started_at": "2025-01-06T09:00:00", "offers_sent": 2, "failures": 1}
        )
        assert text.startswith("⚠️ 2025-01-06T09:00:00")
        assert "offers 2" in text
