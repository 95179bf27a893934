"""Background default monitor that pushes overdue plans into DEFAULTED."""

import asyncio
import logging
from datetime import datetime
from typing import List, Optional

from paymentplan.core.config import AppSettings
from paymentplan.models.exceptions import PlanEngineError

from .plan_engine import PlanLifecycleEngine


logger = logging.getLogger(__name__)


class DefaultMonitor:
    """Periodically scan ACTIVE plans and mark those past due as defaulted."""

    def __init__(self, engine: PlanLifecycleEngine, settings: AppSettings) -> None:
        """Create a monitor bound to one engine."""
        self._engine = engine
        self._settings = settings
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    def _is_enabled(self) -> bool:
        """Return whether the monitor feature is enabled."""
        return self._settings.default_monitor_enabled

    @property
    def running(self) -> bool:
        """Return whether the background task is alive."""
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the scan loop in a background task if enabled."""
        if not self._is_enabled():
            logger.info("Default monitor disabled by default_monitor.enabled=false")
            return
        if self.running:
            logger.info("Default monitor already running.")
            return

        try:
            self._stop_event.clear()
            self._task = asyncio.create_task(self._run_loop(), name="default-monitor")
            logger.info(
                "Default monitor started poll_interval_sec=%s",
                self._settings.default_monitor_poll_interval_sec,
            )
        except Exception:
            logger.exception("Failed to start default monitor.")

    async def stop(self) -> None:
        """Gracefully stop the background task."""
        if not self._task:
            return
        self._stop_event.set()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            logger.info("Default monitor task cancelled.")
        except Exception:
            logger.exception("Unexpected error while stopping default monitor.")
        finally:
            self._task = None

    async def _run_loop(self) -> None:
        """Main scan loop."""
        logger.info("Default monitor loop running.")
        while not self._stop_event.is_set():
            try:
                self.scan_once()
            except Exception:
                logger.exception("Unhandled error during default scan cycle.")

            try:
                await asyncio.wait_for(
                    self._stop_event.wait(),
                    timeout=float(self._settings.default_monitor_poll_interval_sec),
                )
            except asyncio.TimeoutError:
                continue

    def scan_once(self, now: Optional[datetime] = None) -> List[int]:
        """Mark every overdue ACTIVE plan as defaulted and return their ids.

        A plan paid or already moved by another caller between the scan and
        the transition is skipped.
        """
        overdue = self._engine.find_overdue_plans(now=now)
        if not overdue:
            logger.debug("No overdue plans found.")
            return []

        defaulted: List[int] = []
        for plan_id in overdue:
            try:
                self._engine.mark_defaulted(plan_id, now=now)
                defaulted.append(plan_id)
            except PlanEngineError as exc:
                logger.info("Skipped default plan_id=%s reason=%s", plan_id, exc)
        logger.info("Default scan completed overdue=%d defaulted=%d", len(overdue), len(defaulted))
        return defaulted
