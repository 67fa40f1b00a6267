"""
Scheduler module for the JMA Warning Checker.

Runs two periodic jobs:
- Warning check (every few minutes)
- Retention cleanup (daily at 01:00)
"""

import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from .checker import CheckResult, WarningChecker
from .cleanup import Cleanup
from .notifier import NotifyError

logger = logging.getLogger(__name__)

CHECK_INTERVAL_MINUTES = 10
FAILURE_WARNING_THRESHOLD = 3
DEFAULT_HEARTBEAT_PATH = Path("data") / "heartbeat"


class WarningScheduler:
    """
    Manages periodic warning checks and cleanup.

    Jobs never overlap; the consecutive failure count is kept here and
    reset by the first successful check.
    """

    def __init__(
        self,
        checker: WarningChecker,
        cleanup: Cleanup,
        notifier=None,
        check_interval: int = CHECK_INTERVAL_MINUTES,
        heartbeat_path: Optional[str] = None
    ):
        self.checker = checker
        self.cleanup = cleanup
        self.notifier = notifier
        self.check_interval = check_interval
        self.heartbeat_path = Path(heartbeat_path) if heartbeat_path else DEFAULT_HEARTBEAT_PATH
        self.scheduler = BackgroundScheduler()
        self.consecutive_failures = 0
        self._is_running = False
        self._check_lock = threading.Lock()

    def run_check(self) -> CheckResult:
        """Run one check and update the failure count."""
        with self._check_lock:
            return self._run_check()

    def _run_check(self) -> CheckResult:
        try:
            result = self.checker.run_check()
        except Exception as e:
            logger.exception(f"Weather check crashed: {e}")
            result = CheckResult(
                success=False,
                started_at=datetime.utcnow().isoformat(),
                error_message=str(e),
            )

        if result.success:
            if self.consecutive_failures >= FAILURE_WARNING_THRESHOLD:
                logger.info(
                    f"Weather check recovered after {self.consecutive_failures} consecutive failures"
                )
            self.consecutive_failures = 0
            self.write_heartbeat()
        else:
            self.consecutive_failures += 1
            if self.consecutive_failures >= FAILURE_WARNING_THRESHOLD:
                logger.warning(
                    f"Weather check has failed {self.consecutive_failures} consecutive times"
                )
        return result

    def run_cleanup(self) -> None:
        try:
            self.cleanup.run_cleanup()
        except Exception as e:
            logger.error(f"Cleanup failed: {e}")

    def write_heartbeat(self) -> None:
        try:
            self.heartbeat_path.parent.mkdir(parents=True, exist_ok=True)
            self.heartbeat_path.write_text(datetime.now(timezone.utc).isoformat())
        except OSError as e:
            logger.warning(f"Failed to write heartbeat file: {e}")

    def start(self) -> None:
        """Start the scheduler."""
        if self._is_running:
            logger.warning("Scheduler already running")
            return

        if self.notifier is not None:
            try:
                self.notifier.send_system_notification("started", "Service started successfully")
            except NotifyError as e:
                logger.warning(f"Failed to send startup notification: {e}")

        self.scheduler.add_job(
            self.run_check,
            trigger=IntervalTrigger(minutes=self.check_interval),
            id='check_job',
            name='JMA Warning Check',
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )

        self.scheduler.add_job(
            self.run_cleanup,
            trigger=CronTrigger(hour=1, minute=0),
            id='cleanup_job',
            name='Bulletin Retention Cleanup',
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )

        self.scheduler.start()
        self._is_running = True

        logger.info(f"Scheduler started: checks every {self.check_interval}min, cleanup daily at 01:00")

    def stop(self) -> None:
        """Stop the scheduler."""
        if not self._is_running:
            return
        self.scheduler.shutdown(wait=True)
        self._is_running = False
        logger.info("Scheduler stopped")

    def trigger_immediate_check(self) -> CheckResult:
        return self.run_check()

    def get_scheduler_status(self) -> dict:
        """Get scheduler status information."""
        check_job = self.scheduler.get_job('check_job')
        cleanup_job = self.scheduler.get_job('cleanup_job')

        return {
            "is_running": self._is_running,
            "check_interval_minutes": self.check_interval,
            "consecutive_failures": self.consecutive_failures,
            "next_check_run": check_job.next_run_time.isoformat() if check_job and check_job.next_run_time else None,
            "next_cleanup_run": cleanup_job.next_run_time.isoformat() if cleanup_job and cleanup_job.next_run_time else None,
        }

    @property
    def is_running(self) -> bool:
        return self._is_running
