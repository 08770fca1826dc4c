"""
FastVerify Booth - Remote Authority Client

HTTP client for the booth authority API consumed by the sync engine.

Endpoints:
- GET  /health             reachability check
- POST /sync/audit-logs    push a batch of audit entries
- GET  /sync/voters        pull voter changes since a watermark

Every authorized call carries the bearer token and the booth header.
A 401 triggers exactly one refresh-and-retry; a second 401 clears the
session and raises AuthError.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from fastverify.config import Settings
from fastverify.models import AuditLogEntry
from fastverify.schemas.sync import AuditPushResponse, VoterUpdatesResponse
from fastverify.services.session_service import SessionManager
from fastverify.utils.clock import format_timestamp
from fastverify.utils.errors import AuthError, ErrorCode, NetworkError, ValidationError

logger = logging.getLogger(__name__)


def serialize_audit_entry(entry: AuditLogEntry) -> Dict[str, Any]:
    """Wire form of an audit entry. Local ids and sync flags stay on the device."""
    return {
        "voter_id": entry.voter_id,
        "booth_id": entry.booth_id,
        "verification_method": entry.verification_method,
        "verification_result": entry.verification_result.value,
        "failure_reason": entry.failure_reason,
        "timestamp": format_timestamp(entry.timestamp),
        "hmac_signature": entry.hmac_signature,
    }


class BoothApiClient:
    """
    Client for the remote booth authority.

    Handles:
    - Reachability probing with a short timeout
    - Bearer token attachment with proactive and reactive refresh
    - Audit log push and voter pull
    """

    ENDPOINTS = {
        "audit_push": "/sync/audit-logs",
        "voter_updates": "/sync/voters",
    }

    def __init__(self, http: httpx.AsyncClient, session: SessionManager, settings: Settings):
        self.http = http
        self.session = session
        self.settings = settings

    def _get_headers(self, token: str, booth_id: str) -> Dict[str, str]:
        return {
            "Accept": "application/json",
            "Authorization": f"Bearer {token}",
            self.settings.booth_header_name: booth_id,
        }

    async def check_reachable(self) -> bool:
        """Lightweight reachability check; any 2xx counts as reachable."""
        try:
            response = await self.http.get(
                self.settings.health_url,
                timeout=self.settings.reachability_timeout_seconds,
            )
        except httpx.HTTPError as e:
            logger.info(f"Remote authority unreachable: {e.__class__.__name__}")
            return False
        return response.is_success

    async def _send(
        self,
        method: str,
        endpoint: str,
        token: str,
        booth_id: str,
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            return await self.http.request(
                method,
                endpoint,
                headers=self._get_headers(token, booth_id),
                timeout=self.settings.request_timeout_seconds,
                **kwargs,
            )
        except httpx.TimeoutException as e:
            raise NetworkError(
                f"Request timeout - {method} {endpoint} did not respond in time",
                code=ErrorCode.NETWORK_TIMEOUT,
                original_error=e,
            ) from e
        except httpx.RequestError as e:
            raise NetworkError(f"Network error on {method} {endpoint}: {e}", original_error=e) from e

    async def authorized_request(
        self,
        method: str,
        endpoint: str,
        booth_id: str,
        **kwargs: Any,
    ) -> Any:
        """
        Send an authorized request and return the decoded JSON body.

        Raises:
            AuthError: credentials missing or rejected twice
            NetworkError: unreachable, timed out, or non-2xx server reply
            ValidationError: the server rejected the payload or sent malformed JSON
        """
        token = await self.session.ensure_token()
        response = await self._send(method, endpoint, token, booth_id, **kwargs)

        if response.status_code == 401:
            logger.info(f"{method} {endpoint} unauthorized; refreshing token and retrying once")
            try:
                token = await self.session.refresh()
            except AuthError:
                await self.session.logout(notify_remote=False)
                raise
            response = await self._send(method, endpoint, token, booth_id, **kwargs)
            if response.status_code == 401:
                await self.session.logout(notify_remote=False)
                raise AuthError(
                    f"Remote authority rejected refreshed credentials for {endpoint}",
                    code=ErrorCode.TOKEN_EXPIRED,
                )

        return self._parse(response, endpoint)

    @staticmethod
    def _parse(response: httpx.Response, endpoint: str) -> Any:
        if response.status_code in (400, 422):
            raise ValidationError(
                f"Remote authority rejected payload for {endpoint}",
                details={"remote_status": response.status_code, "body": response.text[:500]},
            )
        if not response.is_success:
            raise NetworkError(
                f"Remote authority returned {response.status_code} for {endpoint}",
                code=ErrorCode.REMOTE_ERROR,
                status_code_received=response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise ValidationError(f"Invalid JSON response from {endpoint}") from e

    # ===========================================
    # SYNC OPERATIONS
    # ===========================================

    async def push_audit_logs(self, entries: List[AuditLogEntry], booth_id: str) -> AuditPushResponse:
        payload = {
            "logs": [serialize_audit_entry(entry) for entry in entries],
            "boothId": booth_id,
        }
        data = await self.authorized_request("POST", self.ENDPOINTS["audit_push"], booth_id, json=payload)
        if isinstance(data, dict) and "sync_results" in data:
            data = data["sync_results"]
        try:
            return AuditPushResponse.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(
                "Malformed audit push response",
                details={"errors": [err["msg"] for err in e.errors()]},
            ) from e

    async def get_voter_updates(self, booth_id: str, since: Optional[str] = None) -> VoterUpdatesResponse:
        params = {"booth_id": booth_id}
        if since:
            params["since"] = since
        data = await self.authorized_request("GET", self.ENDPOINTS["voter_updates"], booth_id, params=params)
        try:
            return VoterUpdatesResponse.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(
                "Malformed voter update response",
                details={"errors": [err["msg"] for err in e.errors()]},
            ) from e
