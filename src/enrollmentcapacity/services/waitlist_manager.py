"""
Waitlist management service.

Keeps per-class waitlists ordered by priority and arrival, offers freed seats
to the head of the queue with a bounded response window, and turns accepted
offers into enrollments.

All store calls run in worker threads through ``asyncio.to_thread``; a
per-class ``asyncio.Lock`` serializes read-modify-write sequences on one
class inside the process, and the store's immediate transactions cover
other processes.
"""

import asyncio
import weakref
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Union

from ..config import get_setting
from ..core import get_logger
from ..core.exceptions import (
    ClassNotFoundError,
    EnrollmentCapacityError,
    NotFoundError,
    OfferExpiredError,
)
from ..data.database_manager import DatabaseManager
from ..models import (
    BulkProcessResult,
    Enrollment,
    ExpiryReport,
    ItemOutcome,
    NotificationRequest,
    NotificationType,
    PromotionReport,
    WaitlistEntry,
    WaitlistInfo,
    WaitlistNotification,
    WaitlistResponse,
    WaitlistStats,
)
from ..reporting.notification_gateway import NotificationGateway, deliver_notification
from ..utils import (
    calculate_enrollment_probability,
    estimate_wait_days,
    format_wait_time,
    utc_now,
)
from ..validation import validate_identifier, validate_priority, validate_response

NOT_ON_WAITLIST = "Not on waitlist"


class WaitlistManager:
    """
    Service for ordered waitlists and seat offers.

    Dependencies are injected so tests can swap the store, the gateway and
    the clock.
    """

    def __init__(
        self,
        store: DatabaseManager,
        gateway: NotificationGateway,
        response_window: Optional[timedelta] = None,
        days_per_position: Optional[float] = None,
        max_promotions_per_run: Optional[int] = None,
        reminder_window: Optional[timedelta] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the waitlist manager.

        Args:
            store: Persistent store for classes, entries and notifications
            gateway: Notification delivery
            response_window: How long a student has to answer an offer
            days_per_position: Wait-time estimate per waitlist position
            max_promotions_per_run: Cap on offers per process_waitlist call, 0 for none
            reminder_window: How close to the deadline reminders go out
            clock: Returns the current aware UTC time
        """
        self.store = store
        self.gateway = gateway
        self.response_window = response_window or timedelta(
            hours=get_setting("waitlist", "response_window_hours", 48)
        )
        self.days_per_position = (
            days_per_position
            if days_per_position is not None
            else get_setting("waitlist", "days_per_position", 2.5)
        )
        self.max_promotions_per_run = (
            max_promotions_per_run
            if max_promotions_per_run is not None
            else get_setting("waitlist", "max_promotions_per_run", 0)
        )
        self.reminder_window = reminder_window or timedelta(
            hours=get_setting("waitlist", "reminder_window_hours", 4)
        )
        self.clock = clock or utc_now
        self.logger = get_logger(__name__)
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    def class_lock(self, class_id: str) -> asyncio.Lock:
        """
        The lock guarding one class's waitlist.

        A lock stays registered only while some caller holds it.
        """
        lock = self._locks.get(class_id)
        if lock is None:
            lock = self._locks[class_id] = asyncio.Lock()
        return lock

    # =========================================================================
    # Queue membership
    # =========================================================================

    async def add_to_waitlist(
        self,
        student_id: str,
        class_id: str,
        priority: int = 0,
        performed_by: Optional[str] = None,
    ) -> WaitlistEntry:
        """
        Add a student to a class waitlist.

        The entry lands in front of the first entry with a strictly lower
        priority, or at the end. No notification is sent.

        Raises:
            ClassNotFoundError: The class does not exist
            DuplicateEntryError: The student is already waitlisted
            WaitlistFullError: The waitlist is at capacity
        """
        student_id = validate_identifier(student_id, "studentId")
        class_id = validate_identifier(class_id, "classId")
        priority = validate_priority(priority)

        async with self.class_lock(class_id):
            entry = await asyncio.to_thread(
                self.store.insert_waitlist_entry,
                student_id,
                class_id,
                priority,
                self.clock(),
                performed_by,
            )
        return entry

    async def remove_from_waitlist(
        self, student_id: str, class_id: str, performed_by: Optional[str] = None
    ) -> WaitlistEntry:
        """
        Withdraw a student from a waitlist and close the gap they leave.

        Raises:
            NotFoundError: The student is not on the waitlist
        """
        student_id = validate_identifier(student_id, "studentId")
        class_id = validate_identifier(class_id, "classId")

        async with self.class_lock(class_id):
            return await asyncio.to_thread(
                self.store.remove_waitlist_entry,
                student_id,
                class_id,
                self.clock(),
                performed_by,
            )

    async def _require_entry(self, student_id: str, class_id: str) -> WaitlistEntry:
        entry = await asyncio.to_thread(
            self.store.get_waitlist_entry, student_id, class_id
        )
        if entry is None:
            raise NotFoundError(
                f"Student {student_id} is not on the waitlist for class {class_id}",
                field="studentId",
            )
        return entry

    async def get_waitlist_position(self, student_id: str, class_id: str) -> int:
        """
        Current 1-based position of a student.

        Raises:
            NotFoundError: The student is not on the waitlist
        """
        entry = await self._require_entry(student_id, class_id)
        return entry.position

    async def estimate_enrollment_probability(
        self, student_id: str, class_id: str
    ) -> float:
        """
        Chance in [0, 1] that the student eventually gets a seat.

        Raises:
            NotFoundError: The student is not on the waitlist
        """
        position = await self.get_waitlist_position(student_id, class_id)
        return calculate_enrollment_probability(position)

    def _build_info(self, entry: WaitlistEntry) -> WaitlistInfo:
        days = estimate_wait_days(entry.position, self.days_per_position)
        return WaitlistInfo(
            entry=entry,
            position=entry.position,
            estimated_probability=entry.estimated_probability,
            is_notified=entry.is_notified,
            estimated_wait_time=format_wait_time(days),
            estimated_wait_days=days,
            response_deadline=entry.notification_expires_at,
        )

    async def get_student_waitlist_info(
        self, student_id: str, class_id: str
    ) -> WaitlistInfo:
        """Summary of a student's waitlist standing; position 0 when absent."""
        entry = await asyncio.to_thread(
            self.store.get_waitlist_entry, student_id, class_id
        )
        if entry is None:
            return WaitlistInfo(
                entry=None,
                position=0,
                estimated_probability=0.0,
                is_notified=False,
                estimated_wait_time=NOT_ON_WAITLIST,
            )
        return self._build_info(entry)

    async def get_class_waitlist(self, class_id: str) -> List[WaitlistInfo]:
        """Every entry of a class waitlist in position order."""
        entries = await asyncio.to_thread(self.store.list_waitlist, class_id)
        return [self._build_info(entry) for entry in entries]

    async def update_waitlist_priority(
        self,
        student_id: str,
        class_id: str,
        new_priority: int,
        performed_by: str = "admin",
    ) -> WaitlistEntry:
        """
        Change a student's priority and reorder the whole waitlist.

        Raises:
            NotFoundError: The student is not on the waitlist
        """
        new_priority = validate_priority(new_priority)
        async with self.class_lock(class_id):
            entry = await asyncio.to_thread(
                self.store.update_waitlist_priority,
                student_id,
                class_id,
                new_priority,
                self.clock(),
                performed_by,
            )
        self.logger.info(
            f"Priority of {student_id} in {class_id} set to {new_priority}, "
            f"now at position {entry.position}"
        )
        return entry

    async def get_waitlist_stats(self, class_id: str) -> WaitlistStats:
        entries = await asyncio.to_thread(self.store.list_waitlist, class_id)
        now = self.clock()

        average_wait_days = 0.0
        if entries:
            waited = sum((now - entry.added_at).total_seconds() for entry in entries)
            average_wait_days = round(waited / len(entries) / 86400, 2)

        distribution: Dict[int, int] = {}
        for entry in entries:
            distribution[entry.position] = distribution.get(entry.position, 0) + 1

        return WaitlistStats(
            class_id=class_id,
            total_waitlisted=len(entries),
            average_wait_days=average_wait_days,
            position_distribution=distribution,
            notified_count=sum(1 for entry in entries if entry.is_notified),
        )

    # =========================================================================
    # Offers
    # =========================================================================

    def _offer_request(
        self, entry: WaitlistEntry, notification: WaitlistNotification
    ) -> NotificationRequest:
        class_label = notification.class_name or entry.class_id
        if notification.class_code:
            class_label = f"{class_label} ({notification.class_code})"
        deadline = notification.response_deadline
        return NotificationRequest(
            user_id=entry.student_id,
            notification_type=NotificationType.ENROLLMENT_AVAILABLE,
            title="Enrollment spot available",
            message=(
                f"A spot opened in {class_label}. "
                f"Respond by {deadline:%Y-%m-%d %H:%M} UTC to claim it."
            ),
            data={
                "class_id": entry.class_id,
                "waitlist_entry_id": entry.id,
                "notification_id": notification.id,
                "response_deadline": deadline.isoformat(),
            },
        )

    async def process_waitlist(self, class_id: str) -> PromotionReport:
        """
        Offer free seats of a class to the head of its waitlist.

        Returns without touching the waitlist when the class has no free
        seat. Seats already held by open offers are not offered again. Each
        offer is recorded atomically; a failing entry is reported and the
        remaining candidates are still processed. Entries are never removed
        and no enrollment is created here.

        Raises:
            ClassNotFoundError: The class does not exist
        """
        capacity = await asyncio.to_thread(self.store.get_class_capacity, class_id)
        if capacity is None:
            raise ClassNotFoundError(class_id)

        if capacity.is_full:
            return PromotionReport(class_id=class_id, available_spots=0)

        available = capacity.available_spots
        report = PromotionReport(class_id=class_id, available_spots=available)
        deliveries: List[NotificationRequest] = []

        async with self.class_lock(class_id):
            now = self.clock()
            open_offers = await asyncio.to_thread(
                self.store.count_open_offers, class_id, now
            )
            slots = available - open_offers
            if self.max_promotions_per_run:
                slots = min(slots, self.max_promotions_per_run)
            if slots <= 0:
                return report

            candidates = await asyncio.to_thread(
                self.store.list_unnotified_entries, class_id, slots
            )
            deadline = now + self.response_window

            for entry in candidates:
                try:
                    notification = await asyncio.to_thread(
                        self.store.record_waitlist_offer, entry.id, now, deadline
                    )
                except EnrollmentCapacityError as e:
                    self.logger.warning(
                        f"Could not offer a seat in {class_id} to {entry.student_id}: {e}"
                    )
                    report.outcomes.append(ItemOutcome(key=entry.student_id, error=str(e)))
                    continue

                report.outcomes.append(ItemOutcome(key=entry.student_id, value=notification))
                deliveries.append(self._offer_request(entry, notification))

        for request in deliveries:
            await deliver_notification(self.gateway, request)

        self.logger.info(
            f"Processed waitlist for {class_id}: {report.notified_count} offers, "
            f"{report.failed_count} failures"
        )
        return report

    async def bulk_process_waitlists(self, class_ids: Iterable[str]) -> BulkProcessResult:
        """Run process_waitlist per class, collecting per-class failures."""
        result = BulkProcessResult()
        for class_id in class_ids:
            try:
                report = await self.process_waitlist(class_id)
            except EnrollmentCapacityError as e:
                self.logger.error(f"Failed to process waitlist for {class_id}: {e}")
                result.errors.append(ItemOutcome(key=class_id, error=str(e)))
                continue
            result.processed += 1
            result.reports.append(report)
        return result

    async def handle_waitlist_response(
        self,
        student_id: str,
        class_id: str,
        response: Union[str, WaitlistResponse],
    ) -> Optional[Enrollment]:
        """
        Apply a student's answer to their open offer.

        Accepting creates the enrollment and removes the entry in one
        transaction. Declining removes the entry; the seat goes to the next
        student on the following process_waitlist run.

        Returns:
            The new Enrollment on accept, None on decline

        Raises:
            DataValidationError: The response is not accept or decline
            NotFoundError: No entry, or the entry holds no offer
            OfferExpiredError: The response window has closed
        """
        parsed = validate_response(response)

        async with self.class_lock(class_id):
            entry = await asyncio.to_thread(
                self.store.get_waitlist_entry, student_id, class_id
            )
            if entry is None or not entry.is_notified:
                raise NotFoundError(
                    f"No waitlist offer for student {student_id} in class {class_id}",
                    field="studentId",
                )

            now = self.clock()
            if entry.is_offer_expired(now):
                raise OfferExpiredError(
                    f"The offer for class {class_id} expired at "
                    f"{entry.notification_expires_at.isoformat()}",
                    field="response",
                )

            if parsed == WaitlistResponse.ACCEPT:
                enrollment = await asyncio.to_thread(
                    self.store.accept_waitlist_offer, entry.id, now
                )
                self.logger.info(f"{student_id} accepted a seat in {class_id}")
                return enrollment

            closed = await asyncio.to_thread(
                self.store.close_waitlist_offer, entry.id, WaitlistResponse.DECLINE, now
            )
            if not closed:
                raise NotFoundError(
                    f"No waitlist offer for student {student_id} in class {class_id}",
                    field="studentId",
                )
            self.logger.info(f"{student_id} declined a seat in {class_id}")
            return None

    async def process_expired_notifications(self) -> ExpiryReport:
        """
        Close every offer whose response window has passed.

        Expired entries are marked ``no_response`` and removed. Running this
        twice in a row is safe: the second call finds nothing to do.
        """
        now = self.clock()
        expired = await asyncio.to_thread(self.store.list_expired_offers, now)
        report = ExpiryReport()

        for entry in expired:
            async with self.class_lock(entry.class_id):
                try:
                    closed = await asyncio.to_thread(
                        self.store.close_waitlist_offer,
                        entry.id,
                        WaitlistResponse.NO_RESPONSE,
                        now,
                        now,
                    )
                except EnrollmentCapacityError as e:
                    self.logger.error(
                        f"Failed to expire offer for {entry.student_id} in {entry.class_id}: {e}"
                    )
                    report.outcomes.append(ItemOutcome(key=entry.id, error=str(e)))
                    continue
            if closed:
                report.outcomes.append(ItemOutcome(key=entry.id, value=entry.class_id))

        if expired:
            self.logger.info(
                f"Expired {report.expired_count} waitlist offers, {report.failed_count} failures"
            )
        return report

    # =========================================================================
    # Informational notifications
    # =========================================================================

    async def send_deadline_reminders(self, within: Optional[timedelta] = None) -> int:
        """
        Remind students whose offer expires soon.

        Each open offer gets at most one reminder.

        Returns:
            int: Number of reminders recorded
        """
        now = self.clock()
        until = now + (within or self.reminder_window)
        offers = await asyncio.to_thread(
            self.store.list_offers_needing_reminder, now, until
        )

        sent = 0
        for offer in offers:
            entry = await asyncio.to_thread(
                self.store.get_waitlist_entry_by_id, offer.waitlist_entry_id
            )
            if entry is None:
                continue
            await asyncio.to_thread(
                self.store.add_notification,
                entry,
                NotificationType.DEADLINE_REMINDER,
                now,
                offer.response_deadline,
            )
            sent += 1
            await deliver_notification(
                self.gateway,
                NotificationRequest(
                    user_id=entry.student_id,
                    notification_type=NotificationType.DEADLINE_REMINDER,
                    title="Waitlist offer expiring soon",
                    message=(
                        f"Your seat offer for {offer.class_name or entry.class_id} "
                        f"expires at {offer.response_deadline:%Y-%m-%d %H:%M} UTC."
                    ),
                    data={
                        "class_id": entry.class_id,
                        "waitlist_entry_id": entry.id,
                        "response_deadline": offer.response_deadline.isoformat(),
                    },
                ),
            )
        return sent

    async def notify_position_changes(self, class_id: str, top_n: int = 5) -> int:
        """
        Tell the first ``top_n`` students of a waitlist where they stand.

        Returns:
            int: Number of students notified
        """
        entries = await asyncio.to_thread(self.store.list_waitlist, class_id)
        now = self.clock()

        notified = 0
        for entry in entries[:top_n]:
            await asyncio.to_thread(
                self.store.add_notification, entry, NotificationType.POSITION_CHANGE, now
            )
            notified += 1
            info = self._build_info(entry)
            await deliver_notification(
                self.gateway,
                NotificationRequest(
                    user_id=entry.student_id,
                    notification_type=NotificationType.POSITION_CHANGE,
                    title="Waitlist position update",
                    message=(
                        f"You are number {entry.position} on the waitlist for {class_id}. "
                        f"Estimated wait: {info.estimated_wait_time}."
                    ),
                    data={"class_id": class_id, "position": entry.position},
                ),
            )
        return notified
