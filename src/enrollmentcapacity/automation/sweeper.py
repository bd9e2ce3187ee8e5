"""
Periodic waitlist maintenance.

Each sweep closes expired offers, sends deadline reminders, expires stale
approval requests and offers free seats in every class that has a waitlist.
Sweep results are appended to a JSON-lines history file for later
inspection.
"""

import asyncio
import datetime
import json
from pathlib import Path
from typing import Optional

from ..config import get_setting
from ..core import get_logger
from ..core.exceptions import EnrollmentCapacityError
from ..models import BulkProcessResult, ExpiryReport, PromotionReport
from ..services.enrollment_coordinator import EnrollmentCoordinator
from ..services.waitlist_manager import WaitlistManager


class SweepResult:
    """Outcome of one sweep cycle."""

    def __init__(
        self,
        started_at: datetime.datetime,
        expiry: ExpiryReport,
        reminders_sent: int,
        requests_expired: int,
        promotions: BulkProcessResult,
        duration_seconds: float,
    ):
        self.started_at = started_at
        self.expiry = expiry
        self.reminders_sent = reminders_sent
        self.requests_expired = requests_expired
        self.promotions = promotions
        self.duration_seconds = duration_seconds

    @property
    def offers_sent(self) -> int:
        return sum(report.notified_count for report in self.promotions.reports)

    @property
    def failures(self) -> int:
        return (
            self.expiry.failed_count
            + len(self.promotions.errors)
            + sum(report.failed_count for report in self.promotions.reports)
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON logging."""
        return {
            "started_at": self.started_at.isoformat(),
            "expired_offers": self.expiry.expired_count,
            "reminders_sent": self.reminders_sent,
            "requests_expired": self.requests_expired,
            "classes_processed": self.promotions.processed,
            "offers_sent": self.offers_sent,
            "failures": self.failures,
            "duration_seconds": round(self.duration_seconds, 3),
        }


class SweepHistory:
    """Appends sweep results to a JSON-lines file."""

    def __init__(self, log_file: str = "waitlist_sweeps.log"):
        self.log_file = Path(log_file)
        self.logger = get_logger(__name__)
        self.ensure_log_file_exists()

    def ensure_log_file_exists(self):
        """Create log file if it doesn't exist."""
        self.log_file.parent.mkdir(parents=True, exist_ok=True)
        if not self.log_file.exists():
            self.log_file.touch()

    def record(self, result: SweepResult):
        try:
            with open(self.log_file, "a", encoding="utf-8") as f:
                json.dump(result.to_dict(), f)
                f.write("\n")
        except OSError as e:
            self.logger.warning(f"Failed to record sweep: {e}")

    def get_recent(self, count: int = 10) -> list[dict]:
        """Get the most recent sweep results."""
        sweeps = []
        try:
            with open(self.log_file, "r", encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if line:
                        sweeps.append(json.loads(line))
        except (OSError, json.JSONDecodeError) as e:
            self.logger.warning(f"Failed to read sweep history: {e}")
            return []
        return sweeps[-count:]


class WaitlistSweeper:
    """
    Drives waitlist maintenance on a fixed interval.

    ``handle_capacity_freed`` is the hook to call right after a seat is
    released, so promotion does not wait for the next cycle.
    """

    def __init__(
        self,
        waitlist_manager: WaitlistManager,
        coordinator: Optional[EnrollmentCoordinator] = None,
        interval_seconds: Optional[float] = None,
        history: Optional[SweepHistory] = None,
    ):
        self.waitlist_manager = waitlist_manager
        self.coordinator = coordinator
        self.interval_seconds = (
            interval_seconds
            if interval_seconds is not None
            else get_setting("sweeper", "interval_seconds", 300)
        )
        self.history = history or SweepHistory(
            get_setting("sweeper", "history_file", "./logs/waitlist_sweeps.log")
        )
        self.logger = get_logger(__name__)
        self.cycles_run = 0

    async def run_once(self) -> SweepResult:
        """Run one full maintenance cycle."""
        manager = self.waitlist_manager
        started_at = manager.clock()
        loop = asyncio.get_running_loop()
        start = loop.time()

        expiry = await manager.process_expired_notifications()
        reminders = await manager.send_deadline_reminders()

        requests_expired = 0
        if self.coordinator is not None:
            requests_expired = await self.coordinator.expire_stale_requests()

        class_ids = await asyncio.to_thread(manager.store.list_classes_with_open_seats)
        promotions = await manager.bulk_process_waitlists(class_ids)

        result = SweepResult(
            started_at=started_at,
            expiry=expiry,
            reminders_sent=reminders,
            requests_expired=requests_expired,
            promotions=promotions,
            duration_seconds=loop.time() - start,
        )
        self.history.record(result)
        self.cycles_run += 1
        self.logger.info(
            f"Sweep done: {expiry.expired_count} expired, {result.offers_sent} offers, "
            f"{reminders} reminders, {result.failures} failures"
        )
        return result

    async def handle_capacity_freed(self, class_id: str) -> PromotionReport:
        """Offer a freed seat immediately."""
        self.logger.info(f"Capacity freed in {class_id}, processing waitlist")
        return await self.waitlist_manager.process_waitlist(class_id)

    async def start(self, max_cycles: Optional[int] = None):
        """
        Run sweeps until cancelled or ``max_cycles`` is reached.

        A failing cycle is logged and the loop keeps going.
        """
        self.logger.info(
            f"🚀 Starting waitlist sweeper (every {self.interval_seconds}s)"
        )
        cycles = 0
        while max_cycles is None or cycles < max_cycles:
            try:
                await self.run_once()
            except EnrollmentCapacityError as e:
                self.logger.error(f"❌ Sweep failed: {e}")
            cycles += 1
            if max_cycles is not None and cycles >= max_cycles:
                break
            await asyncio.sleep(self.interval_seconds)
        self.logger.info(f"Sweeper stopped after {cycles} cycles")
