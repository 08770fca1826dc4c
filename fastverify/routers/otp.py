"""
FastVerify Booth - OTP Router
"""

from fastapi import APIRouter, Depends, status

from fastverify.dependencies import get_otp_service
from fastverify.schemas.otp import OTPCreate, OTPRead
from fastverify.services.otp_service import OTPService

router = APIRouter(prefix="/otp", tags=["OTP Verification"])


@router.post("", response_model=OTPRead, status_code=status.HTTP_201_CREATED)
async def create_otp(payload: OTPCreate, otp: OTPService = Depends(get_otp_service)):
    return await otp.create(payload.voter_id)


@router.post("/{verification_id}/fail", response_model=OTPRead)
async def fail_otp(verification_id: str, otp: OTPService = Depends(get_otp_service)):
    return await otp.mark_failed(verification_id)


@router.post("/{verification_id}/complete", status_code=status.HTTP_204_NO_CONTENT)
async def complete_otp(verification_id: str, otp: OTPService = Depends(get_otp_service)):
    await otp.complete(verification_id)
