"""
Enrollment request coordination.

Decides for each enrollment attempt whether the student is enrolled
directly, placed on the waitlist, or needs instructor approval, and runs the
approve, deny, drop and bulk flows around that decision.

Business refusals come back as EnrollmentResult objects with error codes;
only unexpected failures (such as a broken store) raise.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional

from ..config import get_setting
from ..core import get_logger
from ..core.exceptions import (
    AlreadyEnrolledError,
    ClassFullError,
    ClassNotFoundError,
    DataValidationError,
    DuplicateEntryError,
    InvitationRequiredError,
    NotFoundError,
    WaitlistFullError,
)
from ..data.database_manager import DatabaseManager
from ..models import (
    BulkEnrollmentItem,
    BulkEnrollmentResult,
    BulkEnrollmentSummary,
    ClassInvitation,
    ClassRecord,
    Enrollment,
    EnrollmentError,
    EnrollmentRequest,
    EnrollmentRequestStatus,
    EnrollmentResult,
    EnrollmentStatus,
    EnrollmentType,
    NotificationRequest,
    NotificationType,
)
from ..reporting.notification_gateway import NotificationGateway, deliver_notification
from ..utils import estimate_wait_days, format_wait_time, utc_now
from ..validation import validate_identifier
from .waitlist_manager import WaitlistManager

APPROVED_AND_ENROLLED = "Approved and enrolled"
APPROVED_AND_WAITLISTED = "Approved but added to waitlist due to capacity"
APPROVED_ALREADY_ENROLLED = "Approved; student was already enrolled"


def _failure(
    message: str,
    code: str,
    field: str,
    error_message: str,
    next_steps: Optional[List[str]] = None,
    status: EnrollmentStatus = EnrollmentStatus.DROPPED,
) -> EnrollmentResult:
    return EnrollmentResult(
        success=False,
        status=status,
        message=message,
        next_steps=list(next_steps or []),
        errors=[EnrollmentError(field=field, message=error_message, code=code)],
    )


class EnrollmentCoordinator:
    """Service that routes enrollment attempts and reviews requests."""

    def __init__(
        self,
        store: DatabaseManager,
        waitlist_manager: WaitlistManager,
        gateway: NotificationGateway,
        request_ttl: Optional[timedelta] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the coordinator.

        Args:
            store: Persistent store for classes, enrollments and requests
            waitlist_manager: Used whenever a student has to queue
            gateway: Notification delivery
            request_ttl: Lifetime of a pending approval request
            clock: Returns the current aware UTC time
        """
        self.store = store
        self.waitlist_manager = waitlist_manager
        self.gateway = gateway
        self.request_ttl = request_ttl or timedelta(
            days=get_setting("enrollment", "request_ttl_days", 7)
        )
        self.clock = clock or utc_now
        self.logger = get_logger(__name__)

    # =========================================================================
    # Enrollment attempts
    # =========================================================================

    async def request_enrollment(
        self,
        student_id: str,
        class_id: str,
        justification: Optional[str] = None,
    ) -> EnrollmentResult:
        """
        Evaluate one enrollment attempt.

        Checks run in a fixed order: the class must exist, the student must
        not already be enrolled, then the class enrollment type decides
        between the invitation, approval and open paths.
        """
        student_id = validate_identifier(student_id, "studentId")
        class_id = validate_identifier(class_id, "classId")

        class_record = await asyncio.to_thread(self.store.get_class, class_id)
        if class_record is None:
            return _failure(
                "Class not found",
                ClassNotFoundError.code,
                "classId",
                "Class not found",
                ["Please verify the class ID and try again"],
            )

        existing = await asyncio.to_thread(
            self.store.get_active_enrollment, student_id, class_id
        )
        if existing is not None:
            return self._already_enrolled(existing)

        if class_record.enrollment_type == EnrollmentType.INVITATION_ONLY:
            return await self._invitation_only_enrollment(student_id, class_id)
        if class_record.enrollment_type == EnrollmentType.RESTRICTED:
            return await self._restricted_enrollment(
                student_id, class_record, justification
            )
        return await self._open_enrollment(student_id, class_record, student_id)

    @staticmethod
    def _already_enrolled(existing: Enrollment) -> EnrollmentResult:
        return _failure(
            f"Already {existing.status.value} in this class",
            AlreadyEnrolledError.code,
            "enrollment",
            "Duplicate enrollment",
            ["Check your enrollment status in your dashboard"],
            status=existing.status,
        )

    async def _has_free_seat(self, class_record: ClassRecord) -> bool:
        """A seat is free when it is neither taken nor held by an open offer."""
        if class_record.available_spots <= 0:
            return False
        open_offers = await asyncio.to_thread(
            self.store.count_open_offers, class_record.class_id, self.clock()
        )
        return class_record.available_spots - open_offers > 0

    async def _open_enrollment(
        self, student_id: str, class_record: ClassRecord, performed_by: Optional[str]
    ) -> EnrollmentResult:
        class_id = class_record.class_id

        if await self._has_free_seat(class_record):
            try:
                enrollment = await asyncio.to_thread(
                    self.store.create_enrollment,
                    student_id,
                    class_id,
                    performed_by,
                    self.clock(),
                )
            except ClassFullError:
                self.logger.debug(f"Last seat in {class_id} taken, waitlisting {student_id}")
            except AlreadyEnrolledError:
                existing = await asyncio.to_thread(
                    self.store.get_active_enrollment, student_id, class_id
                )
                return self._already_enrolled(existing)
            else:
                return EnrollmentResult(
                    success=True,
                    status=EnrollmentStatus.ENROLLED,
                    message="Successfully enrolled in class",
                    enrollment_id=enrollment.id,
                    next_steps=[
                        "Check your class schedule",
                        "Review course materials",
                        "Note important deadlines",
                    ],
                )

        try:
            entry = await self.waitlist_manager.add_to_waitlist(
                student_id, class_id, priority=0, performed_by=performed_by
            )
        except WaitlistFullError:
            return _failure(
                "Class is full and waitlist is not available",
                WaitlistFullError.code,
                "capacity",
                "No spots available",
                ["Look for alternative sections or classes"],
            )
        except DuplicateEntryError:
            return _failure(
                "Already on the waitlist for this class",
                DuplicateEntryError.code,
                "waitlist",
                "Duplicate waitlist entry",
                ["Check your waitlist position in your dashboard"],
                status=EnrollmentStatus.WAITLISTED,
            )

        wait_days = estimate_wait_days(
            entry.position, self.waitlist_manager.days_per_position
        )
        return EnrollmentResult(
            success=True,
            status=EnrollmentStatus.WAITLISTED,
            message="Added to waitlist",
            waitlist_position=entry.position,
            estimated_probability=entry.estimated_probability,
            estimated_wait_time=format_wait_time(wait_days),
            next_steps=[
                "You will be notified when a spot becomes available",
                "Check your waitlist position in your dashboard",
            ],
        )

    async def _invitation_only_enrollment(
        self, student_id: str, class_id: str
    ) -> EnrollmentResult:
        invitation = await asyncio.to_thread(
            self.store.find_valid_invitation, student_id, class_id, self.clock()
        )
        if invitation is None:
            return _failure(
                "This class requires a valid invitation",
                InvitationRequiredError.code,
                "invitation",
                "Valid invitation required",
                [
                    "Contact the instructor for an invitation",
                    "Check your email for invitation links",
                ],
            )

        return _failure(
            "Please use your invitation link to enroll in this class",
            "USE_INVITATION_LINK",
            "enrollment",
            "Use invitation link",
            [
                "Check your email for the invitation link",
                "Click the invitation link to accept and enroll",
            ],
        )

    async def _restricted_enrollment(
        self,
        student_id: str,
        class_record: ClassRecord,
        justification: Optional[str],
    ) -> EnrollmentResult:
        now = self.clock()
        try:
            request = await asyncio.to_thread(
                self.store.create_enrollment_request,
                student_id,
                class_record.class_id,
                now,
                now + self.request_ttl,
                justification,
            )
        except DuplicateEntryError:
            return _failure(
                "An enrollment request for this class is already pending",
                DuplicateEntryError.code,
                "request",
                "Duplicate enrollment request",
                ["Review your pending requests in your dashboard"],
                status=EnrollmentStatus.PENDING,
            )

        if class_record.instructor_id:
            await deliver_notification(
                self.gateway,
                NotificationRequest(
                    user_id=class_record.instructor_id,
                    notification_type=NotificationType.ENROLLMENT_REQUEST_RECEIVED,
                    title="New enrollment request",
                    message=(
                        f"Student {student_id} requested enrollment in {class_record.name}."
                    ),
                    data={"class_id": class_record.class_id, "request_id": request.id},
                ),
            )

        return EnrollmentResult(
            success=True,
            status=EnrollmentStatus.PENDING,
            message="Enrollment request submitted for approval",
            request_id=request.id,
            next_steps=[
                "Wait for instructor approval",
                "Check your email for updates",
                "Review your pending requests in your dashboard",
            ],
        )

    # =========================================================================
    # Invitations
    # =========================================================================

    async def create_invitation(
        self,
        class_id: str,
        student_id: str,
        invited_by: str,
        valid_for: timedelta = timedelta(days=14),
    ) -> ClassInvitation:
        now = self.clock()
        return await asyncio.to_thread(
            self.store.create_invitation,
            class_id,
            student_id,
            invited_by,
            now,
            now + valid_for,
        )

    async def accept_invitation(
        self, invitation_id: str, student_id: str
    ) -> EnrollmentResult:
        """Accept an invitation and enroll through the open path."""
        invitation = await asyncio.to_thread(self.store.get_invitation, invitation_id)
        if (
            invitation is None
            or invitation.student_id != student_id
            or not invitation.is_valid(self.clock())
        ):
            return _failure(
                "Invitation is invalid or has expired",
                InvitationRequiredError.code,
                "invitation",
                "Valid invitation required",
                ["Contact the instructor for a new invitation"],
            )

        class_record = await asyncio.to_thread(self.store.get_class, invitation.class_id)
        if class_record is None:
            return _failure(
                "Class not found",
                ClassNotFoundError.code,
                "classId",
                "Class not found",
                ["Please verify the class ID and try again"],
            )

        existing = await asyncio.to_thread(
            self.store.get_active_enrollment, student_id, class_record.class_id
        )
        if existing is not None:
            return self._already_enrolled(existing)

        await asyncio.to_thread(
            self.store.mark_invitation_accepted, invitation_id, self.clock()
        )
        return await self._open_enrollment(student_id, class_record, invitation.invited_by)

    # =========================================================================
    # Request review
    # =========================================================================

    async def _pending_request(self, request_id: str) -> EnrollmentRequest:
        request = await asyncio.to_thread(self.store.get_enrollment_request, request_id)
        if request is None or request.status != EnrollmentRequestStatus.PENDING:
            raise NotFoundError(
                "Enrollment request not found or already processed", field="requestId"
            )
        return request

    async def approve_enrollment(
        self, request_id: str, approver_id: str
    ) -> EnrollmentRequest:
        """
        Approve a pending request.

        The student is enrolled when a seat is free and waitlisted with the
        request's priority otherwise. A student who was enrolled by another
        path in the meantime has the request closed as approved without a
        second enrollment. When the waitlist refuses, the error propagates
        and the request stays pending.

        Raises:
            NotFoundError: The request is missing or no longer pending
            WaitlistFullError: No seat and no room on the waitlist
        """
        request = await self._pending_request(request_id)
        class_record = await asyncio.to_thread(self.store.get_class, request.class_id)
        if class_record is None:
            raise ClassNotFoundError(request.class_id)

        notes: Optional[str] = None
        existing = await asyncio.to_thread(
            self.store.get_active_enrollment, request.student_id, request.class_id
        )
        if existing is not None:
            notes = APPROVED_ALREADY_ENROLLED
        elif await self._has_free_seat(class_record):
            try:
                await asyncio.to_thread(
                    self.store.create_enrollment,
                    request.student_id,
                    request.class_id,
                    approver_id,
                    self.clock(),
                )
                notes = APPROVED_AND_ENROLLED
            except ClassFullError:
                self.logger.debug(
                    f"Class {request.class_id} filled before approval of {request_id}"
                )
            except AlreadyEnrolledError:
                notes = APPROVED_ALREADY_ENROLLED

        if notes is None:
            notes = APPROVED_AND_WAITLISTED
            try:
                await self.waitlist_manager.add_to_waitlist(
                    request.student_id,
                    request.class_id,
                    priority=request.priority,
                    performed_by=approver_id,
                )
            except DuplicateEntryError:
                self.logger.info(
                    f"{request.student_id} already waitlisted for {request.class_id}"
                )

        reviewed = await asyncio.to_thread(
            self.store.review_enrollment_request,
            request_id,
            EnrollmentRequestStatus.APPROVED,
            approver_id,
            self.clock(),
            notes,
        )

        await deliver_notification(
            self.gateway,
            NotificationRequest(
                user_id=request.student_id,
                notification_type=NotificationType.ENROLLMENT_APPROVED,
                title="Enrollment request approved",
                message=f"Your request for {class_record.name} was approved. {notes}.",
                data={"class_id": request.class_id, "request_id": request_id},
            ),
        )
        self.logger.info(f"Request {request_id} approved by {approver_id}: {notes}")
        return reviewed

    async def deny_enrollment(
        self, request_id: str, approver_id: str, reason: str
    ) -> EnrollmentRequest:
        """
        Deny a pending request with a reason.

        Raises:
            NotFoundError: The request is missing or no longer pending
        """
        request = await self._pending_request(request_id)
        reviewed = await asyncio.to_thread(
            self.store.review_enrollment_request,
            request_id,
            EnrollmentRequestStatus.DENIED,
            approver_id,
            self.clock(),
            reason,
        )

        await deliver_notification(
            self.gateway,
            NotificationRequest(
                user_id=request.student_id,
                notification_type=NotificationType.ENROLLMENT_DENIED,
                title="Enrollment request denied",
                message=f"Your request for class {request.class_id} was denied: {reason}",
                data={"class_id": request.class_id, "request_id": request_id},
            ),
        )
        self.logger.info(f"Request {request_id} denied by {approver_id}")
        return reviewed

    async def list_pending_requests(
        self, class_id: Optional[str] = None
    ) -> List[EnrollmentRequest]:
        return await asyncio.to_thread(
            self.store.list_enrollment_requests,
            class_id,
            EnrollmentRequestStatus.PENDING,
        )

    async def expire_stale_requests(self) -> int:
        """Expire pending requests older than their time to live."""
        return await asyncio.to_thread(
            self.store.expire_enrollment_requests, self.clock()
        )

    # =========================================================================
    # Drops and bulk enrollment
    # =========================================================================

    async def drop_student(
        self,
        student_id: str,
        class_id: str,
        reason: Optional[str] = None,
        performed_by: Optional[str] = None,
    ) -> Enrollment:
        """
        Drop an active enrollment and free its seat.

        Waitlist promotion is left to the caller.

        Raises:
            NotFoundError: The student has no active enrollment in the class
        """
        return await asyncio.to_thread(
            self.store.drop_enrollment,
            student_id,
            class_id,
            self.clock(),
            reason,
            performed_by,
        )

    async def bulk_enroll(
        self, student_ids: Iterable[str], class_id: str, performed_by: str
    ) -> BulkEnrollmentResult:
        """
        Run request_enrollment for each student in input order.

        A malformed student ID becomes a VALIDATION_ERROR result and any
        other unexpected error an INTERNAL_ERROR result; neither stops the
        batch.
        """
        class_id = validate_identifier(class_id, "classId")
        items: List[BulkEnrollmentItem] = []
        summary = BulkEnrollmentSummary()

        for student_id in student_ids:
            try:
                result = await self.request_enrollment(student_id, class_id)
            except DataValidationError as e:
                self.logger.warning(
                    f"Bulk enrollment into {class_id} skipped {student_id!r}: {e}"
                )
                result = _failure(
                    "Invalid student ID",
                    e.code,
                    e.field or "studentId",
                    e.message,
                )
            except Exception as e:
                self.logger.error(
                    f"Bulk enrollment of {student_id} into {class_id} failed: {e}"
                )
                result = _failure(
                    "Failed to process enrollment",
                    "INTERNAL_ERROR",
                    "system",
                    "Internal error",
                )
            items.append(BulkEnrollmentItem(student_id=student_id, result=result))

            if not result.success:
                summary.rejected += 1
            elif result.status == EnrollmentStatus.ENROLLED:
                summary.enrolled += 1
            elif result.status == EnrollmentStatus.WAITLISTED:
                summary.waitlisted += 1
            elif result.status == EnrollmentStatus.PENDING:
                summary.pending += 1

        successful = sum(1 for item in items if item.result.success)
        self.logger.info(
            f"Bulk enrollment into {class_id} by {performed_by}: "
            f"{successful}/{len(items)} successful"
        )
        return BulkEnrollmentResult(
            total_processed=len(items),
            successful=successful,
            failed=len(items) - successful,
            results=items,
            summary=summary,
        )
