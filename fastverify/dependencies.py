"""
FastVerify Booth - FastAPI Dependencies

Hands the per-process service container (built in the app lifespan) to
route handlers.
"""

from fastapi import Depends, Request

from fastverify.services.audit_service import AuditLogService
from fastverify.services.container import BoothServices
from fastverify.services.otp_service import OTPService
from fastverify.services.scheduler import SyncScheduler
from fastverify.services.session_service import SessionManager
from fastverify.services.settings_service import AppSettingsService
from fastverify.services.sync_engine import SyncEngine
from fastverify.services.voter_service import VoterService


def get_services(request: Request) -> BoothServices:
    return request.app.state.services


def get_session_manager(services: BoothServices = Depends(get_services)) -> SessionManager:
    return services.session


def get_audit_service(services: BoothServices = Depends(get_services)) -> AuditLogService:
    return services.audit


def get_voter_service(services: BoothServices = Depends(get_services)) -> VoterService:
    return services.voters


def get_otp_service(services: BoothServices = Depends(get_services)) -> OTPService:
    return services.otp


def get_app_settings_service(services: BoothServices = Depends(get_services)) -> AppSettingsService:
    return services.app_settings


def get_sync_engine(services: BoothServices = Depends(get_services)) -> SyncEngine:
    return services.engine


def get_scheduler(services: BoothServices = Depends(get_services)) -> SyncScheduler:
    return services.scheduler
