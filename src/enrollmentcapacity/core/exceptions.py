"""
Custom exceptions for the enrollment capacity core.

Every exception carries a machine-readable ``code`` so callers can turn
business refusals into structured results without string matching.
"""


class EnrollmentCapacityError(Exception):
    """Base class for exceptions in this application."""

    code = "INTERNAL_ERROR"

    def __init__(self, message: str = "", field: str = "system"):
        super().__init__(message)
        self.message = message
        self.field = field


class ConfigurationError(EnrollmentCapacityError):
    """Raised for configuration-related errors."""

    code = "CONFIGURATION_ERROR"


class DataValidationError(EnrollmentCapacityError):
    """Raised when caller input fails validation."""

    code = "VALIDATION_ERROR"


class NotificationError(EnrollmentCapacityError):
    """Raised for errors related to sending notifications."""

    code = "NOTIFICATION_ERROR"


class StoreError(EnrollmentCapacityError):
    """Raised when the persistent store fails."""

    code = "STORE_ERROR"


class NotFoundError(EnrollmentCapacityError):
    """A referenced class, entry or request does not exist."""

    code = "NOT_FOUND"


class ClassNotFoundError(NotFoundError):
    code = "CLASS_NOT_FOUND"

    def __init__(self, class_id: str):
        super().__init__(f"Class {class_id} not found", field="classId")
        self.class_id = class_id


class DuplicateEntryError(EnrollmentCapacityError):
    """An active record already exists for this student and class."""

    code = "DUPLICATE_ENTRY"


class AlreadyEnrolledError(DuplicateEntryError):
    code = "ALREADY_ENROLLED"


class WaitlistFullError(EnrollmentCapacityError):
    code = "WAITLIST_FULL"


class ClassFullError(EnrollmentCapacityError):
    code = "CAPACITY_FULL"


class InvitationRequiredError(EnrollmentCapacityError):
    code = "INVITATION_REQUIRED"


class OfferExpiredError(EnrollmentCapacityError):
    """The response window of a waitlist offer has already closed."""

    code = "OFFER_EXPIRED"
