"""
FastVerify Booth - OTP Verification Model

Ephemeral record of a one-time-password challenge sent to a voter.
"""

import enum
from datetime import datetime

from sqlalchemy import Enum, String
from sqlalchemy.orm import Mapped, mapped_column

from fastverify.database import Base, UTCDateTime
from fastverify.models.base import utcnow


class OTPStatus(str, enum.Enum):
    """OTP challenge status."""
    PENDING = "PENDING"
    FAILED = "FAILED"


class OTPVerification(Base):
    """OTP challenge, removed on success or after expiry plus a grace window."""
    
    __tablename__ = "otp_verifications"
    __key__ = "verification_id"
    
    verification_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    voter_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    status: Mapped[OTPStatus] = mapped_column(
        Enum(OTPStatus, native_enum=False, length=20),
        default=OTPStatus.PENDING,
        nullable=False,
    )
    attempts: Mapped[int] = mapped_column(default=0, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False, index=True)
