"""Formats waitlists, enrollment results and section plans into text reports."""

from typing import Optional, Sequence

from ..models import (
    ClassRecord,
    EnrollmentResult,
    FactorImpact,
    ImplementationTimeline,
    PlanPriority,
    SectionOptimizationResult,
    SectionPlan,
    WaitlistInfo,
)
from ..utils import format_percentage

# Status thresholds
NEAR_THRESHOLD = 0.75  # 75%

PRIORITY_EMOJI = {
    PlanPriority.HIGH: "🔴",
    PlanPriority.MEDIUM: "🟠",
    PlanPriority.LOW: "🟢",
}

IMPACT_EMOJI = {
    FactorImpact.POSITIVE: "➕",
    FactorImpact.NEUTRAL: "➖",
    FactorImpact.NEGATIVE: "⚠️",
}


class ReportFormatter:
    """Formats enrollment capacity data into human-readable reports."""

    def _get_status_emoji(self, fill: float) -> str:
        """Get status emoji based on fill percentage."""
        if fill >= 1.0:
            return "🔴"
        if fill >= NEAR_THRESHOLD:
            return "🟠"
        return "🟢"

    def format_class_header(self, class_record: ClassRecord) -> str:
        fill = (
            class_record.current_enrollment / class_record.capacity
            if class_record.capacity
            else 1.0
        )
        label = class_record.code or class_record.class_id
        header = (
            f"{self._get_status_emoji(fill)} {label} {class_record.name} "
            f"{class_record.current_enrollment}/{class_record.capacity} "
            f"| ⏳ {class_record.waitlist_count}/{class_record.waitlist_capacity}"
        )
        if not class_record.is_waitlist_available:
            header += " (waitlist full)"
        return header

    def format_class_waitlist(
        self, class_record: ClassRecord, waitlist: Sequence[WaitlistInfo]
    ) -> str:
        """One line per waitlisted student in position order."""
        lines = [self.format_class_header(class_record), ""]
        if not waitlist:
            lines.append("Waitlist is empty.")
            return "\n".join(lines)

        for info in waitlist:
            entry = info.entry
            marker = "📨" if info.is_notified else "  "
            line = (
                f"{marker} {info.position:>3}. {entry.student_id:<12} "
                f"p{entry.priority:<3} {format_percentage(info.estimated_probability):>4} "
                f"~{info.estimated_wait_time}"
            )
            if info.response_deadline:
                line += f" (respond by {info.response_deadline:%Y-%m-%d %H:%M})"
            lines.append(line)
        return "\n".join(lines)

    def format_waitlist_info(self, info: WaitlistInfo, class_id: str) -> str:
        if info.entry is None:
            return f"Not on the waitlist for {class_id}."
        lines = [
            f"📋 {class_id}: position {info.position}",
            f"   Probability: {format_percentage(info.estimated_probability)}",
            f"   Estimated wait: {info.estimated_wait_time}",
        ]
        if info.is_notified and info.response_deadline:
            lines.append(f"   📨 Offer open until {info.response_deadline:%Y-%m-%d %H:%M} UTC")
        return "\n".join(lines)

    def format_enrollment_result(self, result: EnrollmentResult) -> str:
        emoji = "✅" if result.success else "❌"
        lines = [f"{emoji} {result.message} [{result.status.value}]"]
        if result.enrollment_id:
            lines.append(f"   Enrollment: {result.enrollment_id}")
        if result.request_id:
            lines.append(f"   Request: {result.request_id}")
        if result.waitlist_position is not None:
            lines.append(
                f"   Waitlist position {result.waitlist_position}, "
                f"probability {format_percentage(result.estimated_probability or 0.0)}, "
                f"wait {result.estimated_wait_time}"
            )
        for error in result.errors:
            lines.append(f"   {error.code}: {error.message}")
        for step in result.next_steps:
            lines.append(f"   • {step}")
        return "\n".join(lines)

    def format_section_plans(
        self, department_id: str, plans: Sequence[SectionPlan], feasibility=None
    ) -> str:
        """
        Compact plan report, one block per course.

        ``feasibility`` optionally maps a plan to its feasibility score.
        """
        lines = [f"🏫 Section plan for {department_id}", ""]
        if not plans:
            lines.append("No classes found.")
            return "\n".join(lines)

        for plan in plans:
            change = plan.section_change
            header = (
                f"{PRIORITY_EMOJI[plan.priority]} {plan.course_code} "
                f"{plan.current_sections} → {plan.recommended_sections} sections ({change:+d})"
            )
            if plan.estimated_cost:
                header += f" 💰 {plan.estimated_cost:,.0f}"
            if feasibility is not None:
                header += f" | feasibility {feasibility(plan):.2f}"
            lines.append(header)
            for reason in plan.reasoning:
                lines.append(f"   {reason}")
            for factor in plan.feasibility_factors:
                lines.append(
                    f"   {IMPACT_EMOJI[factor.impact]} {factor.factor}: {factor.description}"
                )
            lines.append("")

        return "\n".join(lines).rstrip()

    def format_optimization(self, result: SectionOptimizationResult) -> str:
        original = result.original_plan
        optimized = result.optimized_plan
        lines = [
            f"🔧 {original.course_code}: {original.recommended_sections} → "
            f"{optimized.recommended_sections} sections "
            f"(feasibility {result.feasibility_score:.2f})"
        ]
        for improvement in result.improvements:
            lines.append(f"   ✅ {improvement}")
        for tradeoff in result.tradeoffs:
            lines.append(f"   ⚖️ {tradeoff}")
        for step in result.implementation_steps:
            lines.append(f"   • {step}")
        return "\n".join(lines)

    def format_timeline(self, timeline: ImplementationTimeline) -> str:
        lines = ["🗓️ Implementation timeline"]
        for name, bucket in (
            ("Immediate", timeline.immediate),
            ("Short term", timeline.short_term),
            ("Long term", timeline.long_term),
        ):
            courses = ", ".join(plan.course_code for plan in bucket.plans) or "-"
            lines.append(
                f"   {name} ({bucket.timeframe}): {courses} 💰 {bucket.total_cost:,.0f}"
            )
        return "\n".join(lines)

    def format_sweep(self, sweep: dict, title: Optional[str] = None) -> str:
        """Render one sweep history record."""
        status = "✅" if not sweep.get("failures") else "⚠️"
        return (
            f"{status} {title or sweep.get('started_at', '')} | "
            f"expired {sweep.get('expired_offers', 0)} | "
            f"offers {sweep.get('offers_sent', 0)} | "
            f"reminders {sweep.get('reminders_sent', 0)} | "
            f"requests expired {sweep.get('requests_expired', 0)} | "
            f"failures {sweep.get('failures', 0)}"
        )
