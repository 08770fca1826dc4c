"""
FastVerify Booth - Sync Schemas

Tagged result types for sync cycles, plus the remote authority wire format
for pushes and pulls.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from fastverify.schemas.voter import VoterPayload
from fastverify.utils.errors import SyncPartialFailure


class SyncOutcome(str, Enum):
    """How a sync cycle ended."""
    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"
    OFFLINE = "offline"
    AUTH_FAILED = "auth_failed"
    NOT_READY = "not_ready"
    ALREADY_RUNNING = "already_running"


class EngineState(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"


# =============================================================================
# WIRE FORMAT
# =============================================================================

class AuditPushResponse(BaseModel):
    """Response of POST /sync/audit-logs."""
    model_config = ConfigDict(extra="ignore")
    
    successful: int = 0
    errors: List[str] = Field(default_factory=list)


class VoterUpdatesResponse(BaseModel):
    """Response of GET /sync/voters."""
    model_config = ConfigDict(extra="ignore")
    
    voters: List[VoterPayload] = Field(default_factory=list)
    watermark: Optional[Union[str, int]] = None


# =============================================================================
# RESULTS
# =============================================================================

class PushResult(BaseModel):
    batches_sent: int = 0
    entries_synced: int = 0
    errors: List[str] = Field(default_factory=list)


class PullResult(BaseModel):
    voters_received: int = 0
    voters_updated: int = 0
    watermark: Optional[str] = None
    cursor_advanced: bool = False
    error: Optional[str] = None


class SyncReport(BaseModel):
    """Structured result of one sync cycle."""
    status: SyncOutcome
    batches_sent: int = 0
    entries_synced: int = 0
    voters_updated: int = 0
    cursor: Optional[str] = None
    errors: List[str] = Field(default_factory=list)
    started_at: datetime
    finished_at: Optional[datetime] = None
    
    @property
    def ok(self) -> bool:
        return self.status == SyncOutcome.SUCCESS
    
    def raise_for_errors(self) -> None:
        """Raise SyncPartialFailure if any batch or phase failed."""
        if self.errors:
            raise SyncPartialFailure(self.errors, entries_synced=self.entries_synced)


class SyncStatusSnapshot(BaseModel):
    """What the UI polls: pending count and last successful sync."""
    state: EngineState
    pending_logs: int
    last_successful_sync: Optional[datetime] = None
    cursor: Optional[str] = None
    last_report: Optional[SyncReport] = None


class ConnectivityUpdate(BaseModel):
    online: bool
