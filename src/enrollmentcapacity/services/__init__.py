"""
Service layer for the enrollment capacity application.

Each service takes its store, gateway and clock through the constructor so
callers decide which instances are shared.
"""

from .enrollment_coordinator import EnrollmentCoordinator
from .section_planner import SectionPlanner
from .waitlist_manager import WaitlistManager

__all__ = [
    "EnrollmentCoordinator",
    "SectionPlanner",
    "WaitlistManager",
]
