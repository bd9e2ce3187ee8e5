from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class EnrollmentStatus(str, Enum):
    ENROLLED = "enrolled"
    PENDING = "pending"
    WAITLISTED = "waitlisted"
    DROPPED = "dropped"


class EnrollmentRequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class EnrollmentType(str, Enum):
    OPEN = "open"
    RESTRICTED = "restricted"
    INVITATION_ONLY = "invitation_only"


class NotificationType(str, Enum):
    ENROLLMENT_AVAILABLE = "enrollment_available"
    POSITION_CHANGE = "position_change"
    DEADLINE_REMINDER = "deadline_reminder"
    ENROLLMENT_APPROVED = "enrollment_approved"
    ENROLLMENT_DENIED = "enrollment_denied"
    ENROLLMENT_REQUEST_RECEIVED = "enrollment_request_received"


class WaitlistResponse(str, Enum):
    ACCEPT = "accept"
    DECLINE = "decline"
    NO_RESPONSE = "no_response"


class AuditAction(str, Enum):
    ENROLLED = "enrolled"
    DROPPED = "dropped"
    WAITLISTED = "waitlisted"
    APPROVED = "approved"
    DENIED = "denied"
    REMOVED = "removed"


class PlanPriority(Enum):
    """Section plan priority. Each level carries its label and sort rank."""

    HIGH = ("high", 3)
    MEDIUM = ("medium", 2)
    LOW = ("low", 1)

    def __init__(self, label: str, rank: int):
        self._label = label
        self._rank = rank

    @property
    def label(self) -> str:
        return self._label

    @property
    def rank(self) -> int:
        return self._rank


class FactorImpact(Enum):
    """Impact of a feasibility factor and the score it contributes."""

    POSITIVE = ("positive", 1.0)
    NEUTRAL = ("neutral", 0.5)
    NEGATIVE = ("negative", 0.0)

    def __init__(self, label: str, score: float):
        self._label = label
        self._score = score

    @property
    def label(self) -> str:
        return self._label

    @property
    def score(self) -> float:
        return self._score


# =============================================================================
# Store records
# =============================================================================


@dataclass
class ClassCapacity:
    class_id: str
    capacity: int
    current_enrollment: int
    waitlist_capacity: int

    @property
    def available_spots(self) -> int:
        return max(0, self.capacity - self.current_enrollment)

    @property
    def is_full(self) -> bool:
        return self.current_enrollment >= self.capacity


@dataclass
class ClassRecord:
    class_id: str
    name: str
    capacity: int
    code: Optional[str] = None
    course_code: Optional[str] = None
    department_id: Optional[str] = None
    current_enrollment: int = 0
    waitlist_capacity: int = 10
    enrollment_type: EnrollmentType = EnrollmentType.OPEN
    instructor_id: Optional[str] = None
    waitlist_count: int = 0

    @property
    def available_spots(self) -> int:
        return max(0, self.capacity - self.current_enrollment)

    @property
    def is_waitlist_available(self) -> bool:
        return self.waitlist_count < self.waitlist_capacity


@dataclass
class WaitlistEntry:
    id: str
    student_id: str
    class_id: str
    position: int
    priority: int
    added_at: datetime
    notified_at: Optional[datetime] = None
    notification_expires_at: Optional[datetime] = None
    estimated_probability: float = 0.0

    @property
    def is_notified(self) -> bool:
        return self.notified_at is not None

    def is_offer_expired(self, now: datetime) -> bool:
        """True once a sent offer has passed its response deadline."""
        return (
            self.notification_expires_at is not None
            and self.notification_expires_at < now
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "student_id": self.student_id,
            "class_id": self.class_id,
            "position": self.position,
            "priority": self.priority,
            "added_at": self.added_at.isoformat(),
            "notified_at": self.notified_at.isoformat() if self.notified_at else None,
            "notification_expires_at": (
                self.notification_expires_at.isoformat()
                if self.notification_expires_at
                else None
            ),
            "estimated_probability": self.estimated_probability,
        }


@dataclass
class WaitlistNotification:
    id: str
    waitlist_entry_id: str
    student_id: str
    class_id: str
    notification_type: NotificationType
    sent_at: datetime
    response_deadline: Optional[datetime] = None
    responded: bool = False
    response: Optional[WaitlistResponse] = None
    response_at: Optional[datetime] = None
    class_name: Optional[str] = None
    class_code: Optional[str] = None

    def is_open(self, now: datetime) -> bool:
        """An offer is open while unanswered and inside its response window."""
        if self.responded:
            return False
        return self.response_deadline is None or self.response_deadline >= now


@dataclass
class Enrollment:
    id: str
    student_id: str
    class_id: str
    status: EnrollmentStatus
    enrolled_at: datetime
    updated_at: datetime
    enrolled_by: Optional[str] = None
    drop_reason: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status != EnrollmentStatus.DROPPED


@dataclass
class EnrollmentRequest:
    id: str
    student_id: str
    class_id: str
    status: EnrollmentRequestStatus
    requested_at: datetime
    expires_at: datetime
    justification: Optional[str] = None
    priority: int = 0
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    review_notes: Optional[str] = None


@dataclass
class ClassInvitation:
    id: str
    class_id: str
    student_id: str
    invited_by: str
    expires_at: datetime
    accepted_at: Optional[datetime] = None
    declined_at: Optional[datetime] = None

    def is_valid(self, now: datetime) -> bool:
        return (
            self.accepted_at is None
            and self.declined_at is None
            and self.expires_at > now
        )


@dataclass
class NotificationRequest:
    """A message handed to the notification gateway for delivery."""

    user_id: str
    notification_type: NotificationType
    title: str
    message: str
    channel: str = "telegram"
    data: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Operation results
# =============================================================================


@dataclass
class EnrollmentError:
    field: str
    message: str
    code: str

    def to_dict(self) -> dict:
        return {"field": self.field, "message": self.message, "code": self.code}


@dataclass
class EnrollmentResult:
    success: bool
    status: EnrollmentStatus
    message: str
    enrollment_id: Optional[str] = None
    request_id: Optional[str] = None
    waitlist_position: Optional[int] = None
    estimated_probability: Optional[float] = None
    estimated_wait_time: Optional[str] = None
    next_steps: list[str] = field(default_factory=list)
    errors: list[EnrollmentError] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "status": self.status.value,
            "message": self.message,
            "enrollment_id": self.enrollment_id,
            "request_id": self.request_id,
            "waitlist_position": self.waitlist_position,
            "estimated_probability": self.estimated_probability,
            "estimated_wait_time": self.estimated_wait_time,
            "next_steps": list(self.next_steps),
            "errors": [error.to_dict() for error in self.errors],
        }


@dataclass
class BulkEnrollmentItem:
    student_id: str
    result: EnrollmentResult


@dataclass
class BulkEnrollmentSummary:
    enrolled: int = 0
    waitlisted: int = 0
    pending: int = 0
    rejected: int = 0


@dataclass
class BulkEnrollmentResult:
    total_processed: int
    successful: int
    failed: int
    results: list[BulkEnrollmentItem] = field(default_factory=list)
    summary: BulkEnrollmentSummary = field(default_factory=BulkEnrollmentSummary)


@dataclass
class WaitlistInfo:
    entry: Optional[WaitlistEntry]
    position: int
    estimated_probability: float
    is_notified: bool
    estimated_wait_time: str
    estimated_wait_days: int = 0
    response_deadline: Optional[datetime] = None


@dataclass
class ItemOutcome:
    """Outcome of one item inside a batch operation."""

    key: str
    value: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class PromotionReport:
    class_id: str
    available_spots: int
    outcomes: list[ItemOutcome] = field(default_factory=list)

    @property
    def notified_count(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.ok)

    @property
    def failed_count(self) -> int:
        return sum(1 for outcome in self.outcomes if not outcome.ok)

    @property
    def failures(self) -> list[ItemOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.ok]


@dataclass
class ExpiryReport:
    outcomes: list[ItemOutcome] = field(default_factory=list)

    @property
    def expired_count(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.ok)

    @property
    def failed_count(self) -> int:
        return sum(1 for outcome in self.outcomes if not outcome.ok)


@dataclass
class BulkProcessResult:
    processed: int = 0
    reports: list[PromotionReport] = field(default_factory=list)
    errors: list[ItemOutcome] = field(default_factory=list)


@dataclass
class WaitlistStats:
    class_id: str
    total_waitlisted: int
    average_wait_days: float
    position_distribution: dict[int, int] = field(default_factory=dict)
    notified_count: int = 0


# =============================================================================
# Section planning
# =============================================================================


@dataclass
class SectionPlanningData:
    course_code: str
    course_name: str
    current_sections: int
    total_capacity: int
    total_enrollment: int
    total_waitlist: int
    utilization: float
    demand_score: float

    @property
    def total_demand(self) -> int:
        return self.total_enrollment + self.total_waitlist


@dataclass
class FeasibilityFactor:
    factor: str
    impact: FactorImpact
    description: str
    weight: float


@dataclass
class SectionPlan:
    course_code: str
    course_name: str
    recommended_sections: int
    current_sections: int
    capacity_per_section: int
    total_recommended_capacity: int
    priority: PlanPriority
    estimated_cost: float
    reasoning: list[str] = field(default_factory=list)
    feasibility_factors: list[FeasibilityFactor] = field(default_factory=list)

    @property
    def section_change(self) -> int:
        return self.recommended_sections - self.current_sections


@dataclass
class SectionOptimizationResult:
    original_plan: SectionPlan
    optimized_plan: SectionPlan
    feasibility_score: float
    improvements: list[str] = field(default_factory=list)
    tradeoffs: list[str] = field(default_factory=list)
    implementation_steps: list[str] = field(default_factory=list)


@dataclass
class ResourceRequirement:
    type: str
    description: str
    quantity: float
    availability: str
    alternative_solutions: list[str] = field(default_factory=list)


@dataclass
class TimelineBucket:
    timeframe: str
    plans: list[SectionPlan] = field(default_factory=list)

    @property
    def total_cost(self) -> float:
        return sum(plan.estimated_cost for plan in self.plans)


@dataclass
class ImplementationTimeline:
    immediate: TimelineBucket
    short_term: TimelineBucket
    long_term: TimelineBucket
