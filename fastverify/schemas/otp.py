"""
FastVerify Booth - OTP Schemas
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from fastverify.models import OTPStatus


class OTPCreate(BaseModel):
    voter_id: str = Field(..., min_length=1, max_length=50)


class OTPRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    
    verification_id: str
    voter_id: str
    status: OTPStatus
    attempts: int
    expires_at: datetime
    created_at: datetime
