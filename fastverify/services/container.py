"""
FastVerify Booth - Service Container

Builds the process-wide service graph once at startup. Everything that
talks to the remote authority shares one httpx.AsyncClient.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from fastverify.config import Settings
from fastverify.services.api_client import BoothApiClient
from fastverify.services.audit_service import AuditLogService
from fastverify.services.audit_signer import AuditSigner, ConfigSecretStore, SecretStore
from fastverify.services.otp_service import OTPService
from fastverify.services.scheduler import SyncScheduler
from fastverify.services.session_service import SessionManager
from fastverify.services.settings_service import AppSettingsService
from fastverify.services.store import LocalStore
from fastverify.services.sync_engine import SyncEngine
from fastverify.services.voter_service import VoterService
from fastverify.utils.clock import SystemClock

logger = logging.getLogger(__name__)


@dataclass
class BoothServices:
    settings: Settings
    store: LocalStore
    http: httpx.AsyncClient
    signer: AuditSigner
    session: SessionManager
    api: BoothApiClient
    audit: AuditLogService
    voters: VoterService
    otp: OTPService
    app_settings: AppSettingsService
    engine: SyncEngine
    scheduler: SyncScheduler

    @classmethod
    def build(
        cls,
        settings: Settings,
        clock: Optional[SystemClock] = None,
        http: Optional[httpx.AsyncClient] = None,
        secret_store: Optional[SecretStore] = None,
    ) -> "BoothServices":
        clock = clock or SystemClock()
        store = LocalStore(settings, clock)
        http = http or httpx.AsyncClient(
            base_url=settings.api_base_url,
            timeout=settings.request_timeout_seconds,
        )
        signer = AuditSigner(secret_store or ConfigSecretStore(store))
        session = SessionManager(store, http, settings, clock)
        api = BoothApiClient(http, session, settings)
        audit = AuditLogService(store, signer, settings, clock)
        voters = VoterService(store)
        otp = OTPService(store, settings, clock)
        engine = SyncEngine(store, api, session, audit, voters, settings, clock)
        return cls(
            settings=settings,
            store=store,
            http=http,
            signer=signer,
            session=session,
            api=api,
            audit=audit,
            voters=voters,
            otp=otp,
            app_settings=AppSettingsService(store, audit, voters, settings),
            engine=engine,
            scheduler=SyncScheduler(engine, settings.sync_interval_seconds, otp=otp),
        )

    async def start(self, run_scheduler: bool = True) -> None:
        await self.store.initialize()
        await self.otp.purge_expired()
        if run_scheduler:
            self.scheduler.start()

    async def close(self) -> None:
        await self.scheduler.stop()
        await self.http.aclose()
        await self.store.close()
        logger.info("Booth services closed")
