"""
FastVerify Booth - Audit Schemas

Pydantic schemas for recording and querying verification audit events.
"""

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from fastverify.models import VerificationResult


class AuditEventCreate(BaseModel):
    """A verification event handed over by the UI layer."""
    voter_id: str = Field(..., min_length=1, max_length=50)
    verification_method: str = Field(..., min_length=1, max_length=50, description="otp, face, document, ...")
    verification_result: VerificationResult
    failure_reason: Optional[str] = None
    booth_id: Optional[str] = Field(None, description="Defaults to the configured booth")
    timestamp: Optional[datetime] = Field(None, description="Defaults to now")


class AuditLogRead(BaseModel):
    """Stored audit log entry."""
    model_config = ConfigDict(from_attributes=True)
    
    local_id: int
    voter_id: str
    booth_id: str
    verification_method: str
    verification_result: VerificationResult
    failure_reason: Optional[str] = None
    timestamp: datetime
    hmac_signature: str
    is_synced: bool
    synced_at: Optional[datetime] = None


class AuditLogFilters(BaseModel):
    """Filters accepted by audit log listing and export."""
    voter_id: Optional[str] = None
    result: Optional[VerificationResult] = None
    method: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None


class AuditStats(BaseModel):
    """Verification counters for a single day."""
    day: date
    total: int = 0
    successful: int = 0
    failed: int = 0
    pending: int = 0
    success_rate: float = 0.0


class IntegrityReport(BaseModel):
    """Outcome of re-checking stored HMAC tags."""
    checked: int
    tampered_ids: List[int] = Field(default_factory=list)
    
    @property
    def is_intact(self) -> bool:
        return not self.tampered_ids


class CleanupResult(BaseModel):
    """Rows removed by retention cleanup."""
    audit_logs_deleted: int
    otp_records_deleted: int
    cutoff: datetime
