"""
Core utilities for the enrollment capacity application.

This module provides centralized logging configuration and the error taxonomy.
"""

from .exceptions import (
    AlreadyEnrolledError,
    ClassFullError,
    ClassNotFoundError,
    ConfigurationError,
    DataValidationError,
    DuplicateEntryError,
    EnrollmentCapacityError,
    InvitationRequiredError,
    NotFoundError,
    NotificationError,
    OfferExpiredError,
    StoreError,
    WaitlistFullError,
)
from .logging_config import get_logger, log_performance, setup_logging

__all__ = [
    "setup_logging",
    "get_logger",
    "log_performance",
    "EnrollmentCapacityError",
    "AlreadyEnrolledError",
    "ClassFullError",
    "ClassNotFoundError",
    "ConfigurationError",
    "DataValidationError",
    "DuplicateEntryError",
    "InvitationRequiredError",
    "NotFoundError",
    "NotificationError",
    "OfferExpiredError",
    "StoreError",
    "WaitlistFullError",
]
