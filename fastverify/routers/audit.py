"""
FastVerify Booth - Audit Router

Records verification events and serves audit queries:
- list / export recent entries
- integrity check over stored HMAC tags
- per-day counters
- retention cleanup
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import Response

from fastverify.dependencies import get_audit_service
from fastverify.models import VerificationResult
from fastverify.schemas.audit import (
    AuditEventCreate,
    AuditLogFilters,
    AuditLogRead,
    AuditStats,
    CleanupResult,
    IntegrityReport,
)
from fastverify.services.audit_service import AuditLogService

router = APIRouter(prefix="/audit", tags=["Audit Log"])


def get_filters(
    voter_id: Optional[str] = Query(None),
    result: Optional[VerificationResult] = Query(None),
    method: Optional[str] = Query(None),
    start: Optional[datetime] = Query(None, description="Inclusive lower bound (ISO-8601)"),
    end: Optional[datetime] = Query(None, description="Inclusive upper bound (ISO-8601)"),
) -> AuditLogFilters:
    return AuditLogFilters(voter_id=voter_id, result=result, method=method, start=start, end=end)


@router.post("/logs", response_model=AuditLogRead, status_code=status.HTTP_201_CREATED)
async def record_verification(
    event: AuditEventCreate,
    audit: AuditLogService = Depends(get_audit_service),
):
    return await audit.record_verification(event)


@router.get("/logs", response_model=List[AuditLogRead])
async def list_logs(
    filters: AuditLogFilters = Depends(get_filters),
    limit: int = Query(100, ge=1, le=1000),
    audit: AuditLogService = Depends(get_audit_service),
):
    return await audit.list_logs(filters, limit=limit)


@router.get("/export")
async def export_logs(
    filters: AuditLogFilters = Depends(get_filters),
    audit: AuditLogService = Depends(get_audit_service),
):
    """Download audit entries as CSV."""
    content = await audit.export_csv(filters)
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=audit_logs.csv"},
    )


@router.get("/integrity", response_model=IntegrityReport)
async def check_integrity(
    limit: int = Query(1000, ge=1, le=10000),
    audit: AuditLogService = Depends(get_audit_service),
):
    return await audit.verify_integrity(limit=limit)


@router.get("/stats", response_model=AuditStats)
async def today_stats(audit: AuditLogService = Depends(get_audit_service)):
    return await audit.today_stats()


@router.post("/cleanup", response_model=CleanupResult)
async def cleanup(
    days_to_keep: Optional[int] = Query(None, ge=0),
    audit: AuditLogService = Depends(get_audit_service),
):
    return await audit.cleanup(days_to_keep)
