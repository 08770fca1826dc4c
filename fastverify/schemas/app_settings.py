"""
FastVerify Booth - App Settings Schemas

Operator-editable booth preferences and the local store summary shown on
the settings screen.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class AppSettings(BaseModel):
    """Preferences saved from the settings screen."""
    model_config = ConfigDict(extra="allow")

    sync_interval_seconds: int = Field(300, ge=30, description="Preferred periodic sync interval")
    max_retries: int = Field(3, ge=0)
    auto_sync: bool = True
    offline_mode: bool = False
    debug_mode: bool = False
    encryption_enabled: bool = True
    max_audit_logs: int = Field(10000, ge=1)


class StoreInfo(BaseModel):
    """Row counts and schema version of the local store."""
    voter_count: int
    active_voter_count: int
    audit_count: int
    pending_count: int
    schema_version: Optional[str] = None
