"""Command implementations for the enrollcap CLI."""

import asyncio
from datetime import timedelta
from pathlib import Path
from typing import List, Optional

from ..core import get_logger
from ..core.exceptions import EnrollmentCapacityError
from ..models import ClassRecord, EnrollmentType
from ..reporting.report_formatter import ReportFormatter
from ..reporting.telegram_notifier import TelegramNotifier
from ..validation import validate_capacity, validate_identifier
from .utils import Services, build_services


class _ServiceCommand:
    """Shared wiring for commands that need the service graph."""

    def __init__(
        self,
        debug: bool = False,
        db_path: Optional[str] = None,
        no_telegram: bool = False,
        services: Optional[Services] = None,
    ):
        self.debug = debug
        self.db_path = db_path
        self.no_telegram = no_telegram
        self._services = services
        self.formatter = ReportFormatter()
        self.logger = get_logger(__name__)

    @property
    def services(self) -> Services:
        if self._services is None:
            self._services = build_services(
                self.db_path, no_telegram=self.no_telegram, debug=self.debug
            )
        return self._services


class ClassCommands(_ServiceCommand):
    """Class catalogue, instructors and invitations."""

    async def add(
        self,
        class_id: str,
        name: str,
        capacity: int,
        waitlist_capacity: int = 10,
        enrollment_type: str = "open",
        current_enrollment: int = 0,
        code: Optional[str] = None,
        course_code: Optional[str] = None,
        department_id: Optional[str] = None,
        instructor_id: Optional[str] = None,
    ) -> bool:
        """Create a class or update its limits and descriptive fields."""
        try:
            record = ClassRecord(
                class_id=validate_identifier(class_id, "classId"),
                name=validate_identifier(name, "name"),
                capacity=validate_capacity(capacity),
                waitlist_capacity=validate_capacity(waitlist_capacity, "waitlistCapacity"),
                current_enrollment=validate_capacity(current_enrollment, "currentEnrollment"),
                enrollment_type=EnrollmentType(enrollment_type),
                code=code,
                course_code=course_code,
                department_id=department_id,
                instructor_id=instructor_id,
            )
            await asyncio.to_thread(self.services.store.upsert_class, record)
            stored = await asyncio.to_thread(self.services.store.get_class, record.class_id)
            print(f"✅ Class saved: {self.formatter.format_class_header(stored)}")
            return True
        except EnrollmentCapacityError as e:
            print(f"❌ {e.message} [{e.code}]")
            self.logger.warning(f"Saving class {class_id} failed: {e}")
            return False
        except Exception as e:
            print(f"❌ Error saving class: {e}")
            self.logger.error(f"Class save error: {e}")
            return False

    async def list_classes(self, department_id: Optional[str] = None) -> bool:
        try:
            classes = await asyncio.to_thread(
                self.services.store.list_classes, department_id
            )
            if not classes:
                print("⚠️  No classes found")
                return True
            for class_record in classes:
                print(self.formatter.format_class_header(class_record))
            return True
        except Exception as e:
            print(f"❌ Error listing classes: {e}")
            self.logger.error(f"Class list error: {e}")
            return False

    async def add_instructor(
        self, instructor_id: str, name: str, department_id: Optional[str] = None
    ) -> bool:
        try:
            await asyncio.to_thread(
                self.services.store.upsert_instructor,
                validate_identifier(instructor_id, "instructorId"),
                validate_identifier(name, "name"),
                department_id,
            )
            print(f"✅ Instructor saved: {instructor_id} {name}")
            return True
        except EnrollmentCapacityError as e:
            print(f"❌ {e.message} [{e.code}]")
            return False
        except Exception as e:
            print(f"❌ Error saving instructor: {e}")
            self.logger.error(f"Instructor save error: {e}")
            return False

    async def invite(
        self, class_id: str, student_id: str, invited_by: str, valid_days: int = 14
    ) -> bool:
        try:
            invitation = await self.services.coordinator.create_invitation(
                class_id,
                student_id,
                invited_by,
                valid_for=timedelta(days=valid_days),
            )
            print(f"✅ Invitation {invitation.id} for {student_id} in {class_id}")
            print(f"   Valid until {invitation.expires_at:%Y-%m-%d %H:%M} UTC")
            return True
        except EnrollmentCapacityError as e:
            print(f"❌ {e.message} [{e.code}]")
            self.logger.warning(f"Invitation for {student_id} in {class_id} failed: {e}")
            return False
        except Exception as e:
            print(f"❌ Error creating invitation: {e}")
            self.logger.error(f"Invitation error: {e}")
            return False

    async def accept_invitation(self, invitation_id: str, student_id: str) -> bool:
        try:
            result = await self.services.coordinator.accept_invitation(
                invitation_id, student_id
            )
            print(self.formatter.format_enrollment_result(result))
            return result.success
        except Exception as e:
            print(f"❌ Error accepting invitation: {e}")
            self.logger.error(f"Invitation accept error: {e}")
            return False


class WaitlistCommands(_ServiceCommand):
    """Commands for joining, leaving and inspecting waitlists."""

    async def join(self, student_id: str, class_id: str, priority: int = 0) -> bool:
        try:
            entry = await self.services.waitlist_manager.add_to_waitlist(
                student_id, class_id, priority=priority
            )
            print(f"✅ {student_id} added to the waitlist for {class_id}")
            print(f"   📋 Position: {entry.position}")
            print(f"   🎯 Probability: {entry.estimated_probability:.0%}")
            return True
        except EnrollmentCapacityError as e:
            print(f"❌ {e.message} [{e.code}]")
            self.logger.warning(f"Join failed for {student_id} in {class_id}: {e}")
            return False
        except Exception as e:
            print(f"❌ Error joining waitlist: {e}")
            self.logger.error(f"Join error: {e}")
            return False

    async def leave(self, student_id: str, class_id: str) -> bool:
        try:
            await self.services.waitlist_manager.remove_from_waitlist(
                student_id, class_id, performed_by=student_id
            )
            print(f"✅ {student_id} removed from the waitlist for {class_id}")
            return True
        except EnrollmentCapacityError as e:
            print(f"❌ {e.message} [{e.code}]")
            self.logger.warning(f"Leave failed for {student_id} in {class_id}: {e}")
            return False
        except Exception as e:
            print(f"❌ Error leaving waitlist: {e}")
            self.logger.error(f"Leave error: {e}")
            return False

    async def respond(self, student_id: str, class_id: str, response: str) -> bool:
        """Accept or decline an open offer."""
        try:
            enrollment = await self.services.waitlist_manager.handle_waitlist_response(
                student_id, class_id, response
            )
            if enrollment is not None:
                print(f"🎉 {student_id} is now enrolled in {class_id}")
                print(f"   Enrollment: {enrollment.id}")
            else:
                print(f"👋 {student_id} declined the offer for {class_id}")
            return True
        except EnrollmentCapacityError as e:
            print(f"❌ {e.message} [{e.code}]")
            self.logger.warning(f"Response failed for {student_id} in {class_id}: {e}")
            return False
        except Exception as e:
            print(f"❌ Error handling response: {e}")
            self.logger.error(f"Response error: {e}")
            return False

    async def status(self, student_id: str, class_ids: List[str]) -> bool:
        if self.debug:
            print(f"🔍 DEBUG MODE: Checking waitlist status for {student_id}")

        try:
            manager = self.services.waitlist_manager
            if not class_ids:
                entries = await asyncio.to_thread(
                    self.services.store.list_student_waitlists, student_id
                )
                class_ids = [entry.class_id for entry in entries]
                if not class_ids:
                    print(f"⚠️  {student_id} is not on any waitlist")
                    return True

            for class_id in class_ids:
                info = await manager.get_student_waitlist_info(student_id, class_id)
                print(self.formatter.format_waitlist_info(info, class_id))
            return True
        except Exception as e:
            print(f"❌ Error checking status: {e}")
            self.logger.error(f"Status error: {e}")
            return False

    async def show(self, class_id: str, notify: bool = False) -> bool:
        """Print a class waitlist, optionally telling the front of the queue."""
        try:
            class_record = await asyncio.to_thread(self.services.store.get_class, class_id)
            if class_record is None:
                print(f"❌ Class not found: {class_id}")
                return False

            manager = self.services.waitlist_manager
            waitlist = await manager.get_class_waitlist(class_id)
            print(self.formatter.format_class_waitlist(class_record, waitlist))

            stats = await manager.get_waitlist_stats(class_id)
            if stats.total_waitlisted:
                print(
                    f"\n📊 {stats.total_waitlisted} waiting, "
                    f"{stats.notified_count} with open offers, "
                    f"average wait {stats.average_wait_days:.1f} days"
                )

            if notify:
                sent = await manager.notify_position_changes(class_id)
                print(f"📨 Sent {sent} position updates")
            return True
        except Exception as e:
            print(f"❌ Error showing waitlist: {e}")
            self.logger.error(f"Show error: {e}")
            return False


class RequestCommands(_ServiceCommand):
    """Enrollment attempts and instructor review of restricted requests."""

    async def request(
        self, student_id: str, class_id: str, justification: Optional[str] = None
    ) -> bool:
        try:
            result = await self.services.coordinator.request_enrollment(
                student_id, class_id, justification=justification
            )
            print(self.formatter.format_enrollment_result(result))
            return result.success
        except Exception as e:
            print(f"❌ Error requesting enrollment: {e}")
            self.logger.error(f"Enrollment request error: {e}")
            return False

    async def approve(self, request_id: str, approver_id: str) -> bool:
        try:
            reviewed = await self.services.coordinator.approve_enrollment(
                request_id, approver_id
            )
            print(f"✅ Request {request_id} approved")
            if reviewed.review_notes:
                print(f"   {reviewed.review_notes}")
            return True
        except EnrollmentCapacityError as e:
            print(f"❌ {e.message} [{e.code}]")
            self.logger.warning(f"Approval of {request_id} failed: {e}")
            return False
        except Exception as e:
            print(f"❌ Error approving request: {e}")
            self.logger.error(f"Approval error: {e}")
            return False

    async def deny(self, request_id: str, approver_id: str, reason: str) -> bool:
        try:
            await self.services.coordinator.deny_enrollment(
                request_id, approver_id, reason
            )
            print(f"✅ Request {request_id} denied")
            return True
        except EnrollmentCapacityError as e:
            print(f"❌ {e.message} [{e.code}]")
            self.logger.warning(f"Denial of {request_id} failed: {e}")
            return False
        except Exception as e:
            print(f"❌ Error denying request: {e}")
            self.logger.error(f"Denial error: {e}")
            return False

    async def pending(self, class_id: Optional[str] = None) -> bool:
        try:
            requests = await self.services.coordinator.list_pending_requests(class_id)
            if not requests:
                print("✅ No pending requests")
                return True
            print(f"📥 {len(requests)} pending request(s)")
            for request in requests:
                line = (
                    f"   {request.id} {request.student_id} → {request.class_id} "
                    f"(expires {request.expires_at:%Y-%m-%d})"
                )
                if request.justification:
                    line += f": {request.justification}"
                print(line)
            return True
        except Exception as e:
            print(f"❌ Error listing requests: {e}")
            self.logger.error(f"Pending requests error: {e}")
            return False


class DropCommand(_ServiceCommand):
    """Drop an enrollment and offer the freed seat."""

    async def run(
        self,
        student_id: str,
        class_id: str,
        reason: Optional[str] = None,
        performed_by: Optional[str] = None,
        promote: bool = True,
    ) -> bool:
        try:
            await self.services.coordinator.drop_student(
                student_id, class_id, reason=reason, performed_by=performed_by
            )
            print(f"✅ {student_id} dropped from {class_id}")

            if promote:
                report = await self.services.sweeper.handle_capacity_freed(class_id)
                print(f"   📨 Offers sent: {report.notified_count}")
                for failure in report.failures:
                    print(f"   ⚠️  {failure.key}: {failure.error}")
            elif self.debug:
                print("🔍 DEBUG: Skipping waitlist promotion")
            return True
        except EnrollmentCapacityError as e:
            print(f"❌ {e.message} [{e.code}]")
            self.logger.warning(f"Drop failed for {student_id} in {class_id}: {e}")
            return False
        except Exception as e:
            print(f"❌ Error dropping enrollment: {e}")
            self.logger.error(f"Drop error: {e}")
            return False


class BulkCommand(_ServiceCommand):
    """Enroll many students into one class."""

    @staticmethod
    def read_student_file(file_path: str) -> List[str]:
        """One student id per line; blank lines and # comments are skipped."""
        lines = Path(file_path).read_text(encoding="utf-8").splitlines()
        return [
            line.strip()
            for line in lines
            if line.strip() and not line.strip().startswith("#")
        ]

    async def run(
        self,
        class_id: str,
        student_ids: List[str],
        performed_by: str,
        file_path: Optional[str] = None,
    ) -> bool:
        try:
            if file_path:
                student_ids = list(student_ids) + self.read_student_file(file_path)
            if not student_ids:
                print("❌ No students given")
                return False

            print(f"📥 Enrolling {len(student_ids)} student(s) into {class_id}...")
            result = await self.services.coordinator.bulk_enroll(
                student_ids, class_id, performed_by
            )

            for item in result.results:
                emoji = "✅" if item.result.success else "❌"
                print(f"   {emoji} {item.student_id}: {item.result.message}")

            summary = result.summary
            print(
                f"\n📊 Processed {result.total_processed}: "
                f"{summary.enrolled} enrolled, {summary.waitlisted} waitlisted, "
                f"{summary.pending} pending, {summary.rejected} rejected"
            )
            return result.failed == 0
        except Exception as e:
            print(f"❌ Error in bulk enrollment: {e}")
            self.logger.error(f"Bulk enrollment error: {e}")
            return False


class SweepCommand(_ServiceCommand):
    """Run waitlist maintenance once or on an interval."""

    async def run(self, once: bool = False, max_cycles: Optional[int] = None) -> bool:
        try:
            sweeper = self.services.sweeper
            if once:
                result = await sweeper.run_once()
                print(self.formatter.format_sweep(result.to_dict(), title="Sweep"))
                return result.failures == 0

            print(f"🚀 Sweeping every {sweeper.interval_seconds}s (Ctrl+C to stop)")
            await sweeper.start(max_cycles=max_cycles)
            return True
        except Exception as e:
            print(f"❌ Error running sweep: {e}")
            self.logger.error(f"Sweep error: {e}")
            return False

    async def history(self, count: int = 10) -> bool:
        sweeps = self.services.sweeper.history.get_recent(count)
        if not sweeps:
            print("⚠️  No sweeps recorded yet")
            return True
        print(f"🕒 Last {len(sweeps)} sweep(s)")
        for sweep in sweeps:
            print(self.formatter.format_sweep(sweep))
        return True


class PlanCommand(_ServiceCommand):
    """Section planning for a department."""

    async def run(
        self,
        department_id: str,
        optimize: bool = False,
        export_path: Optional[str] = None,
        send: bool = False,
    ) -> bool:
        if self.debug:
            print(f"🔍 DEBUG MODE: Planning sections for {department_id}")

        try:
            planner = self.services.planner
            plans = await asyncio.to_thread(planner.generate_section_plans, department_id)

            sections = [
                self.formatter.format_section_plans(
                    department_id,
                    plans,
                    feasibility=lambda p: planner.calculate_feasibility_score(
                        p.feasibility_factors
                    ),
                )
            ]

            if optimize:
                for plan in plans:
                    if plan.section_change == 0:
                        continue
                    result = planner.optimize_section_plan(plan)
                    sections.append(self.formatter.format_optimization(result))

            if plans:
                timeline = planner.generate_implementation_timeline(plans)
                sections.append(self.formatter.format_timeline(timeline))

            report = "\n\n".join(sections)
            print(report)

            if export_path:
                planner.plans_to_frame(plans).to_csv(export_path, index=False)
                print(f"\n💾 Plans exported to {export_path}")

            if send:
                await self._send_report(report)
            return True
        except Exception as e:
            print(f"❌ Error generating section plans: {e}")
            self.logger.error(f"Section planning error: {e}")
            return False

    async def _send_report(self, report: str):
        gateway = self.services.gateway
        if not isinstance(gateway, TelegramNotifier):
            print("⚠️  Telegram is not configured, report not sent")
            return
        if await gateway.send_report(report):
            print("📤 Report sent to Telegram")
        else:
            print("❌ Failed to send report to Telegram")


class DatabaseCommands(_ServiceCommand):
    """Commands for database operations."""

    async def stats(self) -> bool:
        """Show database statistics."""
        try:
            stats = await asyncio.to_thread(self.services.store.get_database_stats)
            print("\n📊 Database Statistics:")
            print(f"   Classes: {stats.get('classes', 0)}")
            print(f"   Enrollments: {stats.get('enrollments', 0)}")
            print(f"   Waitlist entries: {stats.get('waitlist_entries', 0)}")
            print(f"   Notifications: {stats.get('waitlist_notifications', 0)}")
            print(f"   Enrollment requests: {stats.get('enrollment_requests', 0)}")
            print(f"   Invitations: {stats.get('class_invitations', 0)}")
            print(f"   Size: {stats.get('db_size_mb', 0.0):.2f} MB")

            if self.debug:
                print(f"🔍 DEBUG: Database file {self.services.store.db_path}")
            return True
        except Exception as e:
            print(f"❌ Error getting database stats: {e}")
            self.logger.error(f"Database stats error: {e}")
            return False
