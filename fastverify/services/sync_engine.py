"""
FastVerify Booth - Sync Engine

Reconciles the local store with the remote authority.

One cycle runs, in order:
    reachability check  ->  push pending audit logs  ->  pull voter updates  ->  report

Push sends fixed-size batches independently; a failed batch is reported
and stays queued while the others proceed. Delivered batches are flagged
only after the pull phase ends without an auth failure. Pull applies the whole
response in one transaction and only then advances the cursor to the
server-reported watermark. Only one cycle runs at a time; a trigger that
arrives mid-cycle is dropped.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Tuple

from fastverify.config import Settings
from fastverify.models import SyncStatusEntry
from fastverify.schemas.sync import (
    EngineState,
    PullResult,
    PushResult,
    SyncOutcome,
    SyncReport,
    SyncStatusSnapshot,
)
from fastverify.services.api_client import BoothApiClient
from fastverify.services.audit_service import AuditLogService
from fastverify.services.session_service import SessionManager
from fastverify.services.store import Collection, LocalStore
from fastverify.services.voter_service import VoterService
from fastverify.utils.clock import SystemClock
from fastverify.utils.errors import AuthError, NetworkError, StorageError, ValidationError

logger = logging.getLogger(__name__)


def _watermark_key(value: str) -> Tuple[int, object]:
    """Sort key for an opaque watermark: numeric, then ISO timestamp, then text."""
    try:
        return (0, Decimal(value))
    except InvalidOperation:
        pass
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return (1, parsed)
    except ValueError:
        return (2, value)


def is_newer_watermark(candidate: str, current: Optional[str]) -> bool:
    """True only if `candidate` is strictly ahead of `current`."""
    if current is None:
        return True
    new_kind, new_value = _watermark_key(candidate)
    old_kind, old_value = _watermark_key(current)
    if new_kind != old_kind:
        return False
    return new_value > old_value


class SyncEngine:
    """
    Orchestrates push/pull reconciliation for one booth.

    State machine: IDLE -> SYNCING -> IDLE. The SYNCING latch is set before
    the first await of a cycle and cleared after its report exists.
    """

    def __init__(
        self,
        store: LocalStore,
        api: BoothApiClient,
        session: SessionManager,
        audit: AuditLogService,
        voters: VoterService,
        settings: Settings,
        clock: Optional[SystemClock] = None,
    ):
        self.store = store
        self.api = api
        self.session = session
        self.audit = audit
        self.voters = voters
        self.settings = settings
        self.clock = clock or SystemClock()

        self._state = EngineState.IDLE
        self._last_report: Optional[SyncReport] = None
        self._last_success_at: Optional[datetime] = None

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def last_report(self) -> Optional[SyncReport]:
        return self._last_report

    async def cursor(self) -> Optional[str]:
        return await self.store.get_value(Collection.SYNC_STATUS, SyncStatusEntry.LAST_SYNC)

    async def status(self) -> SyncStatusSnapshot:
        return SyncStatusSnapshot(
            state=self._state,
            pending_logs=await self.audit.pending_count(),
            last_successful_sync=self._last_success_at,
            cursor=await self.cursor(),
            last_report=self._last_report,
        )

    async def run_cycle(self) -> SyncReport:
        """
        Run one sync cycle and return its report.

        Partial failures are folded into the report; only unexpected errors
        propagate.
        """
        started_at = self.clock.now()
        if self._state is EngineState.SYNCING:
            logger.info("Sync already in progress; trigger dropped")
            return SyncReport(status=SyncOutcome.ALREADY_RUNNING, started_at=started_at, finished_at=started_at)

        self._state = EngineState.SYNCING
        try:
            report = await self._run(started_at)
            report.finished_at = self.clock.now()
            self._last_report = report
            if report.status is SyncOutcome.SUCCESS:
                self._last_success_at = report.finished_at
        finally:
            self._state = EngineState.IDLE

        log = logger.info if report.status in (SyncOutcome.SUCCESS, SyncOutcome.NOT_READY) else logger.warning
        log(
            f"Sync cycle finished: {report.status.value} "
            f"(batches={report.batches_sent}, synced={report.entries_synced}, "
            f"voters={report.voters_updated}, errors={len(report.errors)})"
        )
        return report

    async def _run(self, started_at: datetime) -> SyncReport:
        await self.session.refresh_if_needed()

        try:
            ready = await self.session.is_ready()
            booth = await self.session.booth_config() if ready else None
        except StorageError as e:
            return SyncReport(status=SyncOutcome.NOT_READY, errors=[e.message], started_at=started_at)
        if booth is None:
            logger.debug("Booth not ready (no valid token or booth config); skipping sync")
            return SyncReport(status=SyncOutcome.NOT_READY, started_at=started_at)

        if not await self.api.check_reachable():
            return SyncReport(status=SyncOutcome.OFFLINE, started_at=started_at)

        push = PushResult()
        pull = PullResult()
        try:
            delivered = await self._push(booth.booth_id, push)
            pull = await self._pull(booth.booth_id)
        except AuthError as e:
            return SyncReport(
                status=SyncOutcome.AUTH_FAILED,
                batches_sent=push.batches_sent,
                errors=push.errors + [f"Authentication failed: {e.message}"],
                cursor=await self._safe_cursor(),
                started_at=started_at,
            )

        await self._flag_delivered(push, delivered)
        errors: List[str] = list(push.errors)
        if pull.error:
            errors.append(pull.error)

        return SyncReport(
            status=SyncOutcome.PARTIAL_SUCCESS if errors else SyncOutcome.SUCCESS,
            batches_sent=push.batches_sent,
            entries_synced=push.entries_synced,
            voters_updated=pull.voters_updated,
            cursor=pull.watermark if pull.cursor_advanced else await self._safe_cursor(),
            errors=errors,
            started_at=started_at,
        )

    async def _safe_cursor(self) -> Optional[str]:
        try:
            return await self.cursor()
        except StorageError:
            return None

    # =========================================================================
    # PUSH
    # =========================================================================

    async def _push(self, booth_id: str, result: PushResult) -> List[List[int]]:
        """
        Send pending audit entries in batches, filling `result` as it goes.

        Returns the local ids of every delivered batch. Nothing is flagged
        here; the cycle flags them once the pull has finished without an
        AuthError.
        """
        try:
            pending = await self.audit.pending_entries()
        except StorageError as e:
            result.errors.append(f"Push: could not read pending audit logs: {e.message}")
            return []
        if not pending:
            return []

        size = max(1, self.settings.sync_batch_size)
        batches = [pending[i:i + size] for i in range(0, len(pending), size)]
        delivered: List[List[int]] = []

        for index, batch in enumerate(batches):
            try:
                response = await self.api.push_audit_logs(batch, booth_id)
            except (NetworkError, ValidationError) as e:
                message = f"Batch {index}: {e.message}"
                logger.warning(f"Audit push failed - {message}")
                result.errors.append(message)
                continue

            if response.errors:
                message = f"Batch {index}: rejected by server: {'; '.join(response.errors)}"
                logger.warning(f"Audit push failed - {message}")
                result.errors.append(message)
                continue

            if response.successful < len(batch):
                message = f"Batch {index}: server accepted {response.successful} of {len(batch)} entries"
                logger.warning(f"Audit push failed - {message}")
                result.errors.append(message)
                continue

            result.batches_sent += 1
            delivered.append([entry.local_id for entry in batch])

        return delivered

    async def _flag_delivered(self, result: PushResult, delivered: List[List[int]]) -> None:
        if not delivered:
            return
        try:
            result.entries_synced = await self.audit.mark_synced(delivered, self.clock.now())
        except StorageError as e:
            result.errors.append(f"Push: delivered batches could not be flagged: {e.message}")

    # =========================================================================
    # PULL
    # =========================================================================

    async def _pull(self, booth_id: str) -> PullResult:
        result = PullResult()
        try:
            current = await self.cursor()
        except StorageError as e:
            result.error = f"Pull: could not read sync cursor: {e.message}"
            return result

        try:
            updates = await self.api.get_voter_updates(booth_id, since=current)
        except (NetworkError, ValidationError) as e:
            result.error = f"Pull: {e.message}"
            logger.warning(f"Voter pull failed - {e.message}")
            return result

        result.voters_received = len(updates.voters)
        watermark = str(updates.watermark) if updates.watermark is not None else None

        try:
            async with self.store.transaction() as tx:
                result.voters_updated = await self.voters.apply_updates(tx, updates.voters, self.clock.now())
                if watermark is None:
                    logger.warning("Voter pull returned no watermark; cursor left unchanged")
                elif is_newer_watermark(watermark, current):
                    await tx.put(Collection.SYNC_STATUS, {"key": SyncStatusEntry.LAST_SYNC, "value": watermark})
                    result.cursor_advanced = True
                    result.watermark = watermark
                elif watermark != current:
                    logger.warning(f"Ignoring non-advancing watermark {watermark!r} (cursor {current!r})")
        except (StorageError, ValidationError) as e:
            result.voters_updated = 0
            result.cursor_advanced = False
            result.watermark = None
            result.error = f"Pull: voter updates could not be applied: {e.message}"
            logger.warning(result.error)
        return result
