"""
FastVerify Booth - App Settings Service

Persists operator preferences in the `app_settings` config row and
summarizes what the local store holds.
"""

import logging
from typing import Optional

from fastverify.config import Settings
from fastverify.models import ConfigKey
from fastverify.schemas.app_settings import AppSettings, StoreInfo
from fastverify.services.audit_service import AuditLogService
from fastverify.services.store import Collection, LocalStore
from fastverify.services.voter_service import VoterService

logger = logging.getLogger(__name__)


class AppSettingsService:
    """Operator preferences and store summary."""

    def __init__(
        self,
        store: LocalStore,
        audit: AuditLogService,
        voters: VoterService,
        settings: Settings,
    ):
        self.store = store
        self.audit = audit
        self.voters = voters
        self.settings = settings

    async def get_settings(self) -> AppSettings:
        """Saved preferences, or the defaults when none were saved yet."""
        value = await self.store.get_value(Collection.CONFIG, ConfigKey.APP_SETTINGS)
        return AppSettings.model_validate(value) if value else AppSettings()

    async def save_settings(self, app_settings: AppSettings) -> AppSettings:
        await self.store.put(Collection.CONFIG, {
            "key": ConfigKey.APP_SETTINGS,
            "value": app_settings.model_dump(),
        })
        logger.info("App settings saved")
        return app_settings

    async def store_info(self) -> StoreInfo:
        marker = await self.store.get_value(Collection.CONFIG, ConfigKey.INITIALIZED)
        version: Optional[str] = marker.get("version") if marker else None
        return StoreInfo(
            voter_count=await self.store.count(Collection.VOTERS),
            active_voter_count=await self.voters.active_count(),
            audit_count=await self.store.count(Collection.AUDIT_LOGS),
            pending_count=await self.audit.pending_count(),
            schema_version=version,
        )
