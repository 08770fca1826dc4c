"""
FastVerify Booth - Audit Log Model

Append-only record of every verification attempt made at the booth.

Once written, only the sync flags (is_synced, synced_at) may change. Every
row carries an HMAC tag over its identifying fields so later tampering is
detectable.
"""

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, Enum, Integer, String, Text, event, inspect
from sqlalchemy.orm import Mapped, mapped_column

from fastverify.database import Base, UTCDateTime
from fastverify.models.base import utcnow
from fastverify.utils.errors import ErrorCode, ValidationError


class VerificationResult(str, enum.Enum):
    """Outcome of a verification attempt."""
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    PENDING = "PENDING"


class AuditLogEntry(Base):
    """
    Immutable audit log entry.
    
    Rows are removed only by retention cleanup, and only after they
    have been delivered to the remote authority.
    """
    
    __tablename__ = "audit_logs"
    __key__ = "local_id"
    
    MUTABLE_FIELDS = frozenset({"is_synced", "synced_at"})
    
    local_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    voter_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    booth_id: Mapped[str] = mapped_column(String(50), nullable=False)
    verification_method: Mapped[str] = mapped_column(String(50), nullable=False)
    verification_result: Mapped[VerificationResult] = mapped_column(
        Enum(VerificationResult, native_enum=False, length=20),
        nullable=False,
    )
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, index=True)
    hmac_signature: Mapped[str] = mapped_column(String(64), nullable=False)
    
    # Sync flags (the only mutable columns)
    is_synced: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    synced_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
    
    def __repr__(self) -> str:
        return f"<AuditLogEntry(local_id={self.local_id}, voter_id={self.voter_id})>"


@event.listens_for(AuditLogEntry, "before_update")
def _reject_immutable_changes(mapper, connection, target: AuditLogEntry) -> None:
    state = inspect(target)
    changed = [
        attr.key
        for attr in state.attrs
        if attr.key not in AuditLogEntry.MUTABLE_FIELDS and attr.history.has_changes()
    ]
    if changed:
        raise ValidationError(
            f"Audit log entries are append-only; refused change to {', '.join(changed)}",
            code=ErrorCode.APPEND_ONLY_VIOLATION,
        )
