"""
FastVerify Booth - Audit Integrity Signer

Computes the tamper-evidence tag stored with every audit log entry.

    canonical = voter_id|timestamp|verification_method|verification_result|booth_id
    hmac_signature = HMAC-SHA256(secret, canonical)

The secret is generated once per install from a CSPRNG and never leaves
the device. This is a local tamper-evidence control; it does not protect
against an attacker who can read the secret.
"""

import asyncio
import hashlib
import hmac
import logging
import secrets
from datetime import datetime
from typing import Optional, Protocol

from fastverify.models import AuditLogEntry, ConfigKey, VerificationResult
from fastverify.services.store import Collection, LocalStore
from fastverify.utils.clock import format_timestamp

logger = logging.getLogger(__name__)

CANONICAL_DELIMITER = "|"
SECRET_BYTES = 32  # 256-bit key


class SecretStore(Protocol):
    """Where the HMAC key lives. Swap for a platform keystore when one exists."""

    async def load(self) -> Optional[str]:
        ...

    async def save(self, secret: str) -> None:
        ...


class ConfigSecretStore:
    """Keeps the HMAC key in the `hmac_secret` config row of the local store."""

    def __init__(self, store: LocalStore):
        self.store = store

    async def load(self) -> Optional[str]:
        return await self.store.get_value(Collection.CONFIG, ConfigKey.HMAC_SECRET)

    async def save(self, secret: str) -> None:
        async with self.store.transaction() as tx:
            # First writer wins; never overwrite an existing key
            if await tx.get(Collection.CONFIG, ConfigKey.HMAC_SECRET) is None:
                await tx.put(Collection.CONFIG, {"key": ConfigKey.HMAC_SECRET, "value": secret})


def canonical_string(
    voter_id: str,
    timestamp: datetime,
    verification_method: str,
    verification_result: VerificationResult,
    booth_id: str,
) -> str:
    """Join the signed fields in their fixed order."""
    result = verification_result.value if isinstance(verification_result, VerificationResult) else str(verification_result)
    return CANONICAL_DELIMITER.join([
        voter_id,
        format_timestamp(timestamp),
        verification_method,
        result,
        booth_id,
    ])


class AuditSigner:
    """Signs and verifies audit log entries."""

    def __init__(self, secret_store: SecretStore):
        self.secret_store = secret_store
        self._secret: Optional[str] = None
        self._lock = asyncio.Lock()

    async def get_secret(self) -> str:
        """Load the install secret, generating and persisting it on first use."""
        if self._secret is not None:
            return self._secret

        async with self._lock:
            if self._secret is None:
                secret = await self.secret_store.load()
                if secret is None:
                    await self.secret_store.save(secrets.token_hex(SECRET_BYTES))
                    # Re-read so a concurrent first writer's key is the one used
                    secret = await self.secret_store.load()
                    logger.info("Generated audit signing secret")
                self._secret = secret
        return self._secret

    @staticmethod
    def compute(secret: str, canonical: str) -> str:
        return hmac.new(
            secret.encode("utf-8"),
            canonical.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    async def sign(
        self,
        voter_id: str,
        timestamp: datetime,
        verification_method: str,
        verification_result: VerificationResult,
        booth_id: str,
    ) -> str:
        """Return the hex HMAC tag for an audit event."""
        secret = await self.get_secret()
        canonical = canonical_string(voter_id, timestamp, verification_method, verification_result, booth_id)
        return self.compute(secret, canonical)

    async def verify(self, entry: AuditLogEntry) -> bool:
        """Recompute the tag from the stored fields and compare in constant time."""
        expected = await self.sign(
            entry.voter_id,
            entry.timestamp,
            entry.verification_method,
            entry.verification_result,
            entry.booth_id,
        )
        return hmac.compare_digest(expected, entry.hmac_signature or "")
