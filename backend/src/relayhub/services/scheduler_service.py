"""
Scheduler service for periodic background tasks.
Chạy ConnectionMonitor và StateSyncEngine theo chu kỳ.
"""

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..core.logger import get_logger

logger = get_logger(__name__)

# Suppress verbose APScheduler logs
logging.getLogger("apscheduler").setLevel(logging.WARNING)

MONITOR_JOB_ID = "connection_monitor"
SYNC_JOB_ID = "state_sync"


class SchedulerService:
    """Service for managing scheduled background tasks."""

    def __init__(self, device_service, monitor_interval: int = 30, sync_interval: int = 5):
        self.device_service = device_service
        self.monitor_interval = monitor_interval
        self.sync_interval = sync_interval
        self.scheduler: Optional[AsyncIOScheduler] = None
        self._is_running = False

    @property
    def is_running(self) -> bool:
        return self._is_running

    async def start(self) -> None:
        """Start the scheduler and register jobs."""
        if self._is_running:
            logger.warning("Scheduler đã chạy rồi")
            return

        try:
            self.scheduler = AsyncIOScheduler()

            self.scheduler.add_job(
                self._run_monitor_job,
                trigger=IntervalTrigger(seconds=self.monitor_interval),
                id=MONITOR_JOB_ID,
                name="Connection Monitor",
                replace_existing=True,
                max_instances=1,  # Prevent concurrent runs
                coalesce=True,
            )
            self.scheduler.add_job(
                self._run_sync_job,
                trigger=IntervalTrigger(seconds=self.sync_interval),
                id=SYNC_JOB_ID,
                name="State Sync",
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )

            self.scheduler.start()
            self._is_running = True
            logger.info(
                f"Scheduler đã khởi động (monitor mỗi {self.monitor_interval}s, "
                f"sync mỗi {self.sync_interval}s)"
            )

        except Exception as e:
            logger.error(f"Không thể khởi động scheduler: {str(e)}")
            raise

    async def _run_monitor_job(self) -> None:
        """Wrapper to run monitor job with proper error handling."""
        try:
            statuses = await self.device_service.run_monitor()
            logger.debug(f"Monitor job hoàn thành: {len(statuses)} thiết bị")
        except Exception as e:
            logger.error(f"Monitor job thất bại: {str(e)}")

    async def _run_sync_job(self) -> None:
        try:
            synced = await self.device_service.run_sync()
            logger.debug(f"Sync job hoàn thành: {synced} thiết bị")
        except Exception as e:
            logger.error(f"Sync job thất bại: {str(e)}")

    async def shutdown(self) -> None:
        """Shutdown the scheduler gracefully."""
        if not self._is_running:
            logger.warning("Scheduler chưa được khởi động")
            return

        try:
            if self.scheduler:
                self.scheduler.shutdown(wait=False)
                self._is_running = False
                logger.info("Scheduler đã shutdown")
        except Exception as e:
            logger.error(f"Lỗi khi shutdown scheduler: {str(e)}")
