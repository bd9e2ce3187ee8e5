"""
Shared pytest fixtures for enrollmentcapacity tests.

This module provides reusable test fixtures including:
- A controllable clock
- Temporary SQLite store with seeded classes
- A mock notification gateway
- Fully wired services
"""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

from enrollmentcapacity.config import Config
from enrollmentcapacity.data.database_manager import DatabaseManager
from enrollmentcapacity.models import ClassRecord, EnrollmentType
from enrollmentcapacity.reporting.notification_gateway import NotificationGateway
from enrollmentcapacity.services import (
    EnrollmentCoordinator,
    SectionPlanner,
    WaitlistManager,
)

FIXED_NOW = datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


# =============================================================================
# Configuration Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path: Path, monkeypatch):
    """Point the settings loader at a missing file so built-in defaults apply."""
    monkeypatch.setenv("ENROLLMENT_CAPACITY_SETTINGS", str(tmp_path / "missing.toml"))
    monkeypatch.delenv("TELEGRAM_BOT_TOKEN", raising=False)
    monkeypatch.delenv("TELEGRAM_CHAT_ID", raising=False)
    Config._instance = None
    yield
    Config._instance = None


@pytest.fixture
def settings_file(tmp_path: Path, monkeypatch) -> Path:
    """Write a settings.toml and make it the active configuration."""
    path = tmp_path / "settings.toml"
    path.write_text(
        """
[waitlist]
response_window_hours = 24
days_per_position = 3.0

[telegram]
chat_id = "default-chat"

[telegram.recipients]
S1 = "chat-s1"

[notifications]
dry_run = true
""",
        encoding="utf-8",
    )
    monkeypatch.setenv("ENROLLMENT_CAPACITY_SETTINGS", str(path))
    Config._instance = None
    return path


# =============================================================================
# Core Fixtures
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def temp_db_path(tmp_path: Path) -> str:
    """Create a temporary database path."""
    return str(tmp_path / "test_enrollment.db")


@pytest.fixture
def store(temp_db_path: str) -> DatabaseManager:
    return DatabaseManager(db_path=temp_db_path)


@pytest.fixture
def gateway() -> MagicMock:
    """Notification gateway double recording every send."""
    mock = MagicMock(spec=NotificationGateway)
    mock.name = "mock"
    mock.send = AsyncMock(return_value="message-1")
    return mock


@pytest.fixture
def make_class(store: DatabaseManager) -> Callable[..., ClassRecord]:
    """Factory that stores a class and returns its record."""

    def _make_class(
        class_id: str = "C1",
        capacity: int = 30,
        current_enrollment: int = 0,
        waitlist_capacity: int = 10,
        enrollment_type: EnrollmentType = EnrollmentType.OPEN,
        **kwargs,
    ) -> ClassRecord:
        record = ClassRecord(
            class_id=class_id,
            name=kwargs.pop("name", f"Class {class_id}"),
            capacity=capacity,
            current_enrollment=current_enrollment,
            waitlist_capacity=waitlist_capacity,
            enrollment_type=enrollment_type,
            **kwargs,
        )
        store.upsert_class(record)
        return store.get_class(class_id)

    return _make_class


# =============================================================================
# Service Fixtures
# =============================================================================


@pytest.fixture
def manager(store: DatabaseManager, gateway: MagicMock, clock: FakeClock) -> WaitlistManager:
    return WaitlistManager(
        store,
        gateway,
        response_window=timedelta(hours=48),
        days_per_position=2.5,
        max_promotions_per_run=0,
        reminder_window=timedelta(hours=4),
        clock=clock,
    )


@pytest.fixture
def coordinator(
    store: DatabaseManager,
    manager: WaitlistManager,
    gateway: MagicMock,
    clock: FakeClock,
) -> EnrollmentCoordinator:
    return EnrollmentCoordinator(
        store, manager, gateway, request_ttl=timedelta(days=7), clock=clock
    )


@pytest.fixture
def planner(store: DatabaseManager, clock: FakeClock) -> SectionPlanner:
    return SectionPlanner(
        store,
        optimal_utilization=0.85,
        cost_per_section=15000,
        classroom_availability=0.6,
        clock=clock,
    )
