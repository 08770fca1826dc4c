"""
FastVerify Booth - Voter Schemas
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class VoterSearchType(str, Enum):
    """Which field a voter search matches against."""
    ID = "id"
    NAME = "name"
    MOBILE = "mobile"


class VoterPayload(BaseModel):
    """Voter record as delivered by GET /sync/voters."""
    model_config = ConfigDict(extra="ignore")
    
    voter_id: str = Field(..., min_length=1, max_length=50)
    full_name: str = Field(..., min_length=1, max_length=255)
    registered_mobile: Optional[str] = Field(None, max_length=20)
    district: Optional[str] = None
    polling_booth: Optional[str] = None
    is_active: bool = True


class VoterRead(VoterPayload):
    """Cached voter record."""
    model_config = ConfigDict(from_attributes=True)
    
    last_synced_at: Optional[datetime] = None
