"""
FastVerify Booth - Sync Scheduler

Drives the sync engine from three sources:
- a periodic timer (every `sync_interval_seconds`)
- connectivity regained
- manual "sync now" from the operator

Each timer tick also purges OTP records past their expiry and grace window.

The engine's own single-flight guard decides whether a trigger runs; a
trigger that lands mid-cycle comes back as ALREADY_RUNNING.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from fastverify.schemas.sync import SyncReport
from fastverify.services.otp_service import OTPService
from fastverify.services.sync_engine import SyncEngine
from fastverify.utils.errors import StorageError

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class SyncScheduler:
    """Cancellable periodic driver owned by the application."""

    def __init__(
        self,
        engine: SyncEngine,
        interval_seconds: float,
        sleep: Sleep = asyncio.sleep,
        otp: Optional[OTPService] = None,
    ):
        self.engine = engine
        self.otp = otp
        self.interval_seconds = interval_seconds
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="fastverify-sync-scheduler")
        logger.info(f"Sync scheduler started (interval {self.interval_seconds}s)")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Sync scheduler stopped")

    async def _run(self) -> None:
        while True:
            await self._purge_otp()
            try:
                await self.trigger("timer")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Scheduled sync failed: {e}", exc_info=True)
            await self._sleep(self.interval_seconds)

    async def _purge_otp(self) -> None:
        if self.otp is None:
            return
        try:
            await self.otp.purge_expired()
        except StorageError as e:
            logger.warning(f"OTP purge failed: {e.message}")

    async def trigger(self, reason: str) -> SyncReport:
        logger.debug(f"Sync triggered by {reason}")
        return await self.engine.run_cycle()

    async def force_sync(self) -> SyncReport:
        """Manual sync requested by the operator."""
        return await self.trigger("manual")

    async def connectivity_changed(self, online: bool) -> Optional[SyncReport]:
        """Run a cycle when the network comes back; going offline does nothing."""
        if not online:
            logger.info("Connectivity lost; sync deferred")
            return None
        return await self.trigger("connectivity")
