"""
FastVerify Booth - Audit Log Service

Records signed verification events and answers queries over them.

Every event is HMAC-signed before it is written and lands with
is_synced=False; the sync engine delivers it to the remote authority
later. Retention cleanup only ever removes rows that were delivered.
"""

import csv
import io
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import ColumnElement

from fastverify.config import Settings
from fastverify.models import (
    AuditLogEntry,
    ConfigKey,
    OTPVerification,
    VerificationResult,
)
from fastverify.schemas.audit import (
    AuditEventCreate,
    AuditLogFilters,
    AuditStats,
    CleanupResult,
    IntegrityReport,
)
from fastverify.services.audit_signer import AuditSigner
from fastverify.services.store import Collection, LocalStore, StoreTransaction
from fastverify.utils.clock import SystemClock, format_timestamp, truncate_to_millis
from fastverify.utils.errors import ValidationError

logger = logging.getLogger(__name__)


# Export limit (matches the UI's "download audit log" action)
EXPORT_LIMIT = 10000

# Days of per-day counters kept in the stats row
STATS_DAYS_KEPT = 31

CSV_HEADERS = [
    "ID", "Voter ID", "Booth ID", "Method", "Result",
    "Failure Reason", "Timestamp", "Is Synced",
]


class AuditLogService:
    """Service for recording and querying verification audit events."""

    def __init__(
        self,
        store: LocalStore,
        signer: AuditSigner,
        settings: Settings,
        clock: Optional[SystemClock] = None,
    ):
        self.store = store
        self.signer = signer
        self.settings = settings
        self.clock = clock or SystemClock()

    # =========================================================================
    # RECORDING
    # =========================================================================

    async def record_verification(self, event: AuditEventCreate) -> AuditLogEntry:
        """
        Sign and persist a verification event.

        The entry and the day's counters are written in one transaction so
        a failure leaves neither behind.
        """
        booth_id = event.booth_id or await self._configured_booth_id()
        if not booth_id:
            raise ValidationError("No booth configured for audit event", field="booth_id")

        timestamp = event.timestamp or self.clock.now()
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        timestamp = truncate_to_millis(timestamp.astimezone(timezone.utc))

        signature = await self.signer.sign(
            event.voter_id,
            timestamp,
            event.verification_method,
            event.verification_result,
            booth_id,
        )

        async with self.store.transaction() as tx:
            entry = await tx.put(Collection.AUDIT_LOGS, {
                "voter_id": event.voter_id,
                "booth_id": booth_id,
                "verification_method": event.verification_method,
                "verification_result": event.verification_result,
                "failure_reason": event.failure_reason,
                "timestamp": timestamp,
                "hmac_signature": signature,
                "is_synced": False,
                "created_at": self.clock.now(),
            })
            await self._bump_stats(tx, timestamp.date(), event.verification_result)

        logger.info(
            f"Recorded {event.verification_result.value} {event.verification_method} "
            f"verification #{entry.local_id} at booth {booth_id}"
        )
        return entry

    async def _configured_booth_id(self) -> Optional[str]:
        config = await self.store.get_value(Collection.CONFIG, ConfigKey.BOOTH_CONFIG)
        return config.get("booth_id") if config else None

    async def _bump_stats(
        self,
        tx: StoreTransaction,
        day: date,
        result: VerificationResult,
    ) -> None:
        stats: Dict[str, Dict[str, int]] = dict(
            await tx.get_value(Collection.CONFIG, ConfigKey.VERIFICATION_STATS, {}) or {}
        )
        key = day.isoformat()
        counters = dict(stats.get(key, {}))
        counters["total"] = counters.get("total", 0) + 1
        counters[result.value] = counters.get(result.value, 0) + 1
        stats[key] = counters

        # ISO dates sort chronologically
        for stale in sorted(stats)[:-STATS_DAYS_KEPT]:
            del stats[stale]

        await tx.put(Collection.CONFIG, {"key": ConfigKey.VERIFICATION_STATS, "value": stats})

    # =========================================================================
    # SYNC SUPPORT
    # =========================================================================

    async def pending_count(self) -> int:
        return await self.store.count(Collection.AUDIT_LOGS, AuditLogEntry.is_synced.is_(False))

    async def pending_entries(self, limit: Optional[int] = None) -> List[AuditLogEntry]:
        """Undelivered entries, oldest first."""
        return await self.store.query(
            Collection.AUDIT_LOGS,
            AuditLogEntry.is_synced.is_(False),
            limit=limit or self.settings.max_query_limit,
        )

    async def mark_synced(self, batches: Iterable[List[int]], synced_at: datetime) -> int:
        """Flag delivered entries, one UPDATE per delivered batch."""
        marked = 0
        async with self.store.transaction() as tx:
            for local_ids in batches:
                if not local_ids:
                    continue
                marked += await tx.update_where(
                    Collection.AUDIT_LOGS,
                    {"is_synced": True, "synced_at": synced_at},
                    AuditLogEntry.local_id.in_(local_ids),
                    AuditLogEntry.is_synced.is_(False),
                )
        return marked

    # =========================================================================
    # QUERIES
    # =========================================================================

    @staticmethod
    def _filter_clauses(filters: Optional[AuditLogFilters]) -> List[ColumnElement[bool]]:
        def aware(value: datetime) -> datetime:
            return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

        if filters is None:
            return []
        clauses = []
        if filters.voter_id:
            clauses.append(AuditLogEntry.voter_id == filters.voter_id)
        if filters.result:
            clauses.append(AuditLogEntry.verification_result == filters.result)
        if filters.method:
            clauses.append(AuditLogEntry.verification_method == filters.method)
        if filters.start:
            clauses.append(AuditLogEntry.timestamp >= aware(filters.start))
        if filters.end:
            clauses.append(AuditLogEntry.timestamp <= aware(filters.end))
        return clauses

    async def list_logs(
        self,
        filters: Optional[AuditLogFilters] = None,
        limit: int = 100,
    ) -> List[AuditLogEntry]:
        """Most recent entries first."""
        return await self.store.query(
            Collection.AUDIT_LOGS,
            *self._filter_clauses(filters),
            limit=limit,
            order_by="timestamp",
            descending=True,
        )

    async def verify_integrity(self, limit: int = 1000) -> IntegrityReport:
        """Recompute HMAC tags for the most recent entries and report mismatches."""
        entries = await self.list_logs(limit=limit)
        tampered = []
        for entry in entries:
            if not await self.signer.verify(entry):
                tampered.append(entry.local_id)

        if tampered:
            logger.warning(f"Audit integrity check found {len(tampered)} tampered entries: {tampered}")
        return IntegrityReport(checked=len(entries), tampered_ids=sorted(tampered))

    async def export_csv(self, filters: Optional[AuditLogFilters] = None) -> str:
        """Export audit entries as CSV text."""
        entries = await self.list_logs(filters, limit=EXPORT_LIMIT)

        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(CSV_HEADERS)
        for entry in entries:
            writer.writerow([
                entry.local_id,
                entry.voter_id,
                entry.booth_id,
                entry.verification_method,
                entry.verification_result.value,
                entry.failure_reason or "",
                format_timestamp(entry.timestamp),
                "Yes" if entry.is_synced else "No",
            ])
        return buffer.getvalue()

    async def today_stats(self, day: Optional[date] = None) -> AuditStats:
        day = day or self.clock.now().date()
        stats: Dict[str, Any] = await self.store.get_value(
            Collection.CONFIG, ConfigKey.VERIFICATION_STATS, {}
        ) or {}
        counters = stats.get(day.isoformat(), {})

        total = counters.get("total", 0)
        successful = counters.get(VerificationResult.SUCCESS.value, 0)
        return AuditStats(
            day=day,
            total=total,
            successful=successful,
            failed=counters.get(VerificationResult.FAILED.value, 0),
            pending=counters.get(VerificationResult.PENDING.value, 0),
            success_rate=round(successful / total * 100, 1) if total else 0.0,
        )

    # =========================================================================
    # RETENTION
    # =========================================================================

    async def cleanup(self, days_to_keep: Optional[int] = None) -> CleanupResult:
        """
        Delete delivered audit entries older than the retention horizon and
        OTP records created before it. Undelivered entries are never removed.
        """
        days = days_to_keep if days_to_keep is not None else self.settings.audit_retention_days
        if days < 0:
            raise ValidationError("days_to_keep must not be negative", field="days_to_keep")
        cutoff = self.clock.now() - timedelta(days=days)

        async with self.store.transaction() as tx:
            otp_deleted = await tx.delete_where(
                Collection.OTP_VERIFICATIONS,
                OTPVerification.created_at < cutoff,
            )
            logs_deleted = await tx.delete_where(
                Collection.AUDIT_LOGS,
                AuditLogEntry.timestamp < cutoff,
                AuditLogEntry.is_synced.is_(True),
            )

        logger.info(f"Retention cleanup removed {logs_deleted} audit logs and {otp_deleted} OTP records")
        return CleanupResult(
            audit_logs_deleted=logs_deleted,
            otp_records_deleted=otp_deleted,
            cutoff=cutoff,
        )
