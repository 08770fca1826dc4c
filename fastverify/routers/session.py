"""
FastVerify Booth - Session Router

Operator login/logout and booth configuration.
"""

from fastapi import APIRouter, Depends, status

from fastverify.dependencies import get_session_manager
from fastverify.schemas.session import BoothConfig, LoginRequest, SessionInfo
from fastverify.services.session_service import SessionManager

router = APIRouter(prefix="/session", tags=["Session"])


@router.get("", response_model=SessionInfo)
async def get_session(session: SessionManager = Depends(get_session_manager)):
    return await session.session_info()


@router.post("/login", response_model=SessionInfo)
async def login(
    credentials: LoginRequest,
    session: SessionManager = Depends(get_session_manager),
):
    """Authenticate the booth operator against the remote authority."""
    return await session.login(credentials.identifier, credentials.password)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(session: SessionManager = Depends(get_session_manager)):
    await session.logout()


@router.put("/booth-config", response_model=BoothConfig)
async def save_booth_config(
    config: BoothConfig,
    session: SessionManager = Depends(get_session_manager),
):
    return await session.save_booth_config(config)
