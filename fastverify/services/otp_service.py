"""
FastVerify Booth - OTP Verification Records

Tracks OTP challenges while they are live. Dispatching the SMS itself is
done by the remote authority; this only keeps the booth's local view.
"""

import logging
import uuid
from datetime import timedelta
from typing import Optional

from fastverify.config import Settings
from fastverify.models import OTPStatus, OTPVerification
from fastverify.services.store import Collection, LocalStore
from fastverify.utils.clock import SystemClock
from fastverify.utils.errors import NotFoundError

logger = logging.getLogger(__name__)


class OTPService:
    """Local lifecycle of OTP verification records."""

    def __init__(self, store: LocalStore, settings: Settings, clock: Optional[SystemClock] = None):
        self.store = store
        self.settings = settings
        self.clock = clock or SystemClock()

    async def create(self, voter_id: str) -> OTPVerification:
        now = self.clock.now()
        return await self.store.put(Collection.OTP_VERIFICATIONS, {
            "verification_id": str(uuid.uuid4()),
            "voter_id": voter_id,
            "status": OTPStatus.PENDING,
            "attempts": 0,
            "expires_at": now + timedelta(seconds=self.settings.otp_ttl_seconds),
            "created_at": now,
        })

    async def get(self, verification_id: str) -> Optional[OTPVerification]:
        return await self.store.get(Collection.OTP_VERIFICATIONS, verification_id)

    def is_expired(self, record: OTPVerification) -> bool:
        return self.clock.now() >= record.expires_at

    async def mark_failed(self, verification_id: str) -> OTPVerification:
        """Record a wrong code; the record stays until it expires."""
        async with self.store.transaction() as tx:
            record = await tx.get(Collection.OTP_VERIFICATIONS, verification_id)
            if record is None:
                raise NotFoundError("OTP verification", verification_id)
            return await tx.put(Collection.OTP_VERIFICATIONS, {
                "verification_id": verification_id,
                "status": OTPStatus.FAILED,
                "attempts": record.attempts + 1,
            })

    async def complete(self, verification_id: str) -> bool:
        """Remove a record once the OTP was verified."""
        deleted = await self.store.delete_where(
            Collection.OTP_VERIFICATIONS,
            OTPVerification.verification_id == verification_id,
        )
        if not deleted:
            raise NotFoundError("OTP verification", verification_id)
        return True

    async def purge_expired(self) -> int:
        """Remove records whose expiry plus grace window has passed."""
        horizon = self.clock.now() - timedelta(seconds=self.settings.otp_grace_seconds)
        removed = await self.store.delete_where(
            Collection.OTP_VERIFICATIONS,
            OTPVerification.expires_at < horizon,
        )
        if removed:
            logger.info(f"Purged {removed} expired OTP records")
        return removed
