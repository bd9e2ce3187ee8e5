import math
from datetime import datetime, timezone
from typing import Optional, Sequence, Tuple

from .models import WaitlistEntry

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

# Upper position bound and probability for each band, checked in order
PROBABILITY_BANDS: Tuple[Tuple[int, float], ...] = (
    (3, 0.8),
    (5, 0.6),
    (10, 0.4),
    (15, 0.2),
)
TAIL_PROBABILITY = 0.1

DEFAULT_DAYS_PER_POSITION = 2.5


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC. Naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """
    Serialize a datetime for storage.

    The fixed-width format keeps string ordering identical to chronological
    ordering, which the store relies on for deadline queries.
    """
    if value is None:
        return None
    return to_utc(value).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored timestamp back into an aware UTC datetime."""
    if not value:
        return None
    try:
        return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        return to_utc(datetime.fromisoformat(value))


def get_waitlist_sort_key(entry: WaitlistEntry) -> Tuple[int, datetime, int]:
    """
    Sort key for waitlist ordering.

    Higher priority first, then earlier arrival. The current position breaks
    exact timestamp ties so reordering is stable.
    """
    return (-entry.priority, entry.added_at, entry.position)


def calculate_insert_position(entries: Sequence[WaitlistEntry], priority: int) -> int:
    """
    Return the 1-based position a new entry with ``priority`` takes.

    ``entries`` must be the active entries of one class in position order.
    The new entry goes in front of the first entry whose priority is strictly
    lower, so equal priorities keep arrival order.
    """
    for index, entry in enumerate(entries):
        if priority > entry.priority:
            return index + 1
    return len(entries) + 1


def is_contiguous(positions: Sequence[int]) -> bool:
    """True when ``positions`` is exactly 1..N with no gaps or duplicates."""
    return sorted(positions) == list(range(1, len(positions) + 1))


def calculate_enrollment_probability(position: int) -> float:
    """
    Estimate the chance that a waitlisted student eventually enrolls.

    A monotonically non-increasing step function of the waitlist position.
    Positions below 1 mean "not on the waitlist" and return 0.
    """
    if position < 1:
        return 0.0
    for upper_bound, probability in PROBABILITY_BANDS:
        if position <= upper_bound:
            return probability
    return TAIL_PROBABILITY


def estimate_wait_days(
    position: int, days_per_position: float = DEFAULT_DAYS_PER_POSITION
) -> int:
    """Estimated days until a spot opens for ``position``."""
    if position < 1:
        return 0
    return math.ceil(position * days_per_position)


def format_wait_time(days: int) -> str:
    """Render a wait estimate in days as a human-readable duration."""
    if days <= 1:
        return "Less than 1 day"
    if days <= 7:
        return f"{days} days"
    if days <= 30:
        weeks = math.ceil(days / 7)
        return f"{weeks} week{'s' if weeks > 1 else ''}"
    months = math.ceil(days / 30)
    return f"{months} month{'s' if months > 1 else ''}"


def format_percentage(value: float) -> str:
    """Format a 0..1 ratio as a whole percentage."""
    return f"{value:.0%}"
