"""
FastVerify Booth - Session Schemas

Login/refresh wire format and booth configuration.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class LoginRequest(BaseModel):
    """Operator credentials forwarded to POST /auth/login."""
    identifier: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class TokenBundle(BaseModel):
    """Response of POST /auth/login and POST /auth/refresh."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")
    
    access_token: str = Field(..., alias="accessToken")
    refresh_token: Optional[str] = Field(None, alias="refreshToken")
    exp: Optional[int] = Field(None, description="Access token expiry, epoch seconds")


class BoothConfig(BaseModel):
    """Booth identity configured at setup."""
    model_config = ConfigDict(extra="allow")
    
    booth_id: str = Field(..., min_length=1, max_length=50)
    booth_name: Optional[str] = None
    district: Optional[str] = None


class SessionInfo(BaseModel):
    """Externally visible session state (never includes token values)."""
    authenticated: bool
    ready: bool
    booth_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    seconds_remaining: int = 0
