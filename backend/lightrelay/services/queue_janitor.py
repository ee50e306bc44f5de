"""
Queue Janitor Service

Background task that periodically deletes resolved and stale light
commands from both queues so neither grows without bound.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Dict, Optional

from ..core.errors import PartialCleanupFailure, StoreError
from .command_queue import CleanupReport, CommandQueue

logger = logging.getLogger(__name__)


class QueueJanitor:
    """
    Sweeps the buffered and low-latency command queues.

    Sweeps are best effort: a failure is logged and reported, and whatever
    was left behind is picked up by the next run. Errors never escape a
    sweep.
    """

    def __init__(
        self,
        buffered: CommandQueue,
        realtime: Optional[CommandQueue] = None,
        interval_seconds: float = 300,
        retention_hours: float = 24,
        realtime_max_age_seconds: float = 60
    ):
        """
        Args:
            buffered: Document-store queue
            realtime: Low-latency queue, if configured
            interval_seconds: Time between scheduled sweeps
            retention_hours: Age after which completed/failed buffered commands go
            realtime_max_age_seconds: Age after which any realtime command goes
        """
        self.buffered = buffered
        self.realtime = realtime
        self.interval_seconds = interval_seconds
        self.retention_hours = retention_hours
        self.realtime_max_age_seconds = realtime_max_age_seconds
        self.running = False
        self.task: Optional[asyncio.Task] = None
        self.last_reports: Dict[str, CleanupReport] = {}

    async def start(self):
        """Start the periodic sweep"""
        if self.running:
            logger.warning("Queue janitor already running")
            return

        self.running = True
        self.task = asyncio.create_task(self._sweep_loop())
        logger.info(
            f"Queue janitor started "
            f"(interval: {self.interval_seconds}s, "
            f"retention: {self.retention_hours}h, "
            f"realtime max age: {self.realtime_max_age_seconds}s)"
        )

    async def stop(self):
        """Stop the periodic sweep"""
        if not self.running:
            return

        self.running = False
        if self.task:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass
            self.task = None

        logger.info("Queue janitor stopped")

    async def _sweep_loop(self):
        while self.running:
            try:
                await asyncio.sleep(self.interval_seconds)
                await self.sweep_now()
            except asyncio.CancelledError:
                logger.info("Queue janitor loop cancelled")
                break
            except Exception as e:
                logger.error(f"Error in queue janitor loop: {e}", exc_info=True)

    async def _sweep(self, queue: CommandQueue, max_age: timedelta, now: Optional[datetime]) -> CleanupReport:
        report = CleanupReport(store=queue.name)
        try:
            report.deleted = await queue.sweep(max_age, now=now)
        except PartialCleanupFailure as e:
            report.deleted = e.deleted
            report.failed = e.remaining
            report.complete = False
            report.error = e.message
            logger.warning(
                f"Partial {queue.name} cleanup: {e.deleted} deleted, "
                f"{e.remaining} left for next sweep ({e.message})"
            )
        except StoreError as e:
            report.complete = False
            report.error = e.message
            logger.error(f"Error cleaning up {queue.name} commands: {e}", exc_info=True)
        except Exception as e:
            report.complete = False
            report.error = f"{type(e).__name__}: {e}"
            logger.error(f"Unexpected error cleaning up {queue.name} commands: {e}", exc_info=True)
        else:
            logger.info(f"Cleaned up {report.deleted} old {queue.name} commands")

        self.last_reports[queue.name] = report
        return report

    async def cleanup_old_commands(
        self,
        older_than_hours: Optional[float] = None,
        now: Optional[datetime] = None
    ) -> CleanupReport:
        """
        Delete completed/failed buffered commands older than the threshold.
        Pending and processing commands are never touched.
        """
        hours = self.retention_hours if older_than_hours is None else older_than_hours
        return await self._sweep(self.buffered, timedelta(hours=hours), now)

    async def cleanup_realtime_commands(
        self,
        max_age_seconds: Optional[float] = None,
        now: Optional[datetime] = None
    ) -> CleanupReport:
        """
        Delete realtime commands that are completed, stuck in processing,
        or older than max_age_seconds regardless of status.
        """
        if self.realtime is None:
            logger.debug("No realtime command store configured, skipping cleanup")
            return CleanupReport(store="realtime")

        seconds = self.realtime_max_age_seconds if max_age_seconds is None else max_age_seconds
        return await self._sweep(self.realtime, timedelta(seconds=seconds), now)

    async def sweep_now(self, now: Optional[datetime] = None) -> Dict[str, CleanupReport]:
        """Run one sweep of both queues"""
        return {
            "buffered": await self.cleanup_old_commands(now=now),
            "realtime": await self.cleanup_realtime_commands(now=now),
        }
