"""
Common validation utilities for the enrollment capacity core.

Services call these before touching the store so malformed input fails fast
with a DataValidationError instead of a database error.
"""

from pathlib import Path

from .core.exceptions import DataValidationError
from .models import WaitlistResponse


def validate_identifier(value: str, name: str = "identifier") -> str:
    """
    Validate that an identifier is a non-empty string.

    Args:
        value: The identifier to validate
        name: Field name used in error messages

    Returns:
        The identifier with surrounding whitespace removed

    Raises:
        DataValidationError: If the identifier is empty or not a string
    """
    if not isinstance(value, str) or not value.strip():
        raise DataValidationError(f"{name} must be a non-empty string", field=name)
    return value.strip()


def validate_priority(priority: int) -> int:
    """
    Validate a waitlist priority.

    Raises:
        DataValidationError: If the priority is not an integer
    """
    if isinstance(priority, bool) or not isinstance(priority, int):
        raise DataValidationError("priority must be an integer", field="priority")
    return priority


def validate_capacity(value: int, name: str = "capacity") -> int:
    """Validate a seat or waitlist limit: an integer of zero or more."""
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise DataValidationError(f"{name} must be a non-negative integer", field=name)
    return value


def validate_response(response: str) -> WaitlistResponse:
    """
    Validate a student's answer to a waitlist offer.

    Only ``accept`` and ``decline`` may come from a student; ``no_response``
    is reserved for expiry.

    Raises:
        DataValidationError: If the response is anything else
    """
    try:
        parsed = WaitlistResponse(response)
    except ValueError:
        parsed = None
    if parsed not in (WaitlistResponse.ACCEPT, WaitlistResponse.DECLINE):
        raise DataValidationError(
            f"Invalid waitlist response '{response}'; expected 'accept' or 'decline'",
            field="response",
        )
    return parsed


def validate_directory_exists(dir_path: str, create_if_missing: bool = False) -> Path:
    """
    Validate that a directory exists, optionally creating it.

    Args:
        dir_path: Path to the directory to validate
        create_if_missing: Whether to create the directory if it doesn't exist

    Returns:
        Path object for the directory

    Raises:
        DataValidationError: If the directory doesn't exist and create_if_missing is False
        DataValidationError: If the path is not a directory
    """
    path = Path(dir_path)

    if not path.exists():
        if create_if_missing:
            path.mkdir(parents=True, exist_ok=True)
        else:
            raise DataValidationError(f"Directory '{dir_path}' does not exist.")

    if not path.is_dir():
        raise DataValidationError(f"'{dir_path}' is not a directory.")

    return path
