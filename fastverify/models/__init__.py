"""
FastVerify Booth - SQLAlchemy Models Package

This package contains all local store models.
"""

from fastverify.models.base import TimestampMixin, utcnow
from fastverify.models.voter import VoterRecord
from fastverify.models.audit import AuditLogEntry, VerificationResult
from fastverify.models.otp import OTPVerification, OTPStatus
from fastverify.models.config import ConfigEntry, ConfigKey, SyncStatusEntry

__all__ = [
    "TimestampMixin",
    "utcnow",
    "VoterRecord",
    "AuditLogEntry",
    "VerificationResult",
    "OTPVerification",
    "OTPStatus",
    "ConfigEntry",
    "ConfigKey",
    "SyncStatusEntry",
]
