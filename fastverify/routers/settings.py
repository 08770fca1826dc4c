"""
FastVerify Booth - Settings Router
"""

from fastapi import APIRouter, Depends

from fastverify.dependencies import get_app_settings_service
from fastverify.schemas.app_settings import AppSettings, StoreInfo
from fastverify.services.settings_service import AppSettingsService

router = APIRouter(prefix="/settings", tags=["Settings"])


@router.get("", response_model=AppSettings)
async def get_app_settings(service: AppSettingsService = Depends(get_app_settings_service)):
    return await service.get_settings()


@router.put("", response_model=AppSettings)
async def save_app_settings(
    app_settings: AppSettings,
    service: AppSettingsService = Depends(get_app_settings_service),
):
    return await service.save_settings(app_settings)


@router.get("/store-info", response_model=StoreInfo)
async def store_info(service: AppSettingsService = Depends(get_app_settings_service)):
    """Local store counts and schema version."""
    return await service.store_info()
