"""
FastVerify Booth - Session Lifecycle

Tracks bearer-token validity, refreshes tokens before and after they lapse,
and decides whether the booth is ready to sync.

Token state (access token, refresh token, expiry) and the booth
configuration are persisted as config rows so a restarted booth keeps its
session. Logging out removes both.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx
from jose import JWTError, jwt

from fastverify.config import Settings
from fastverify.models import ConfigEntry, ConfigKey
from fastverify.schemas.session import BoothConfig, SessionInfo, TokenBundle
from fastverify.services.store import Collection, LocalStore
from fastverify.utils.clock import SystemClock
from fastverify.utils.errors import AuthError, ErrorCode, NetworkError

logger = logging.getLogger(__name__)


def token_expiry(token: Optional[str]) -> Optional[datetime]:
    """
    Read the `exp` claim of a bearer token without verifying its signature.
    Signature checks are the remote authority's job.
    """
    if not token:
        return None
    try:
        claims = jwt.get_unverified_claims(token)
    except JWTError:
        return None
    exp = claims.get("exp")
    if exp is None:
        return None
    return datetime.fromtimestamp(int(exp), tz=timezone.utc)


class SessionManager:
    """
    Bearer-token lifecycle for the booth.

    One instance per process; shared by the API client and the sync engine.
    """

    def __init__(
        self,
        store: LocalStore,
        http: httpx.AsyncClient,
        settings: Settings,
        clock: Optional[SystemClock] = None,
    ):
        self.store = store
        self.http = http
        self.settings = settings
        self.clock = clock or SystemClock()
        self._tokens: Optional[Dict[str, Any]] = None
        self._loaded = False
        self._refresh_lock = asyncio.Lock()

    # =========================================================================
    # TOKEN STATE
    # =========================================================================

    async def _load(self) -> Optional[Dict[str, Any]]:
        if not self._loaded:
            self._tokens = await self.store.get_value(Collection.CONFIG, ConfigKey.AUTH_TOKENS)
            self._loaded = True
        return self._tokens

    async def _save(self, bundle: TokenBundle) -> None:
        previous = await self._load() or {}
        tokens = {
            "access_token": bundle.access_token,
            # Refresh responses may omit the refresh token; keep the one we have
            "refresh_token": bundle.refresh_token or previous.get("refresh_token"),
            "exp": bundle.exp,
        }
        await self.store.put(Collection.CONFIG, {"key": ConfigKey.AUTH_TOKENS, "value": tokens})
        self._tokens = tokens
        self._loaded = True

    async def current_token(self) -> Optional[str]:
        tokens = await self._load()
        return tokens.get("access_token") if tokens else None

    async def refresh_token(self) -> Optional[str]:
        tokens = await self._load()
        return tokens.get("refresh_token") if tokens else None

    def expiry_of(self, token: Optional[str]) -> Optional[datetime]:
        """Expiry from the token's claims, falling back to the server-reported exp."""
        expiry = token_expiry(token)
        if expiry is None and token and self._tokens and self._tokens.get("access_token") == token:
            exp = self._tokens.get("exp")
            if exp is not None:
                expiry = datetime.fromtimestamp(int(exp), tz=timezone.utc)
        return expiry

    def is_valid(self, token: Optional[str], margin_seconds: Optional[int] = None) -> bool:
        """False once now >= exp - margin (and for unreadable tokens)."""
        margin = self.settings.token_refresh_margin_seconds if margin_seconds is None else margin_seconds
        expiry = self.expiry_of(token)
        if expiry is None:
            return False
        return self.clock.now().timestamp() < expiry.timestamp() - margin

    def is_expired(self, token: Optional[str]) -> bool:
        """Strict expiry, no margin."""
        expiry = self.expiry_of(token)
        if expiry is None:
            return True
        return self.clock.now() >= expiry

    async def time_remaining(self) -> int:
        """Whole seconds until the current token expires (0 if none)."""
        token = await self.current_token()
        expiry = self.expiry_of(token)
        if expiry is None:
            return 0
        return max(0, int((expiry - self.clock.now()).total_seconds()))

    # =========================================================================
    # REMOTE AUTH CALLS
    # =========================================================================

    async def _post_auth(self, path: str, payload: Dict[str, Any]) -> TokenBundle:
        try:
            response = await self.http.post(
                path,
                json=payload,
                timeout=self.settings.request_timeout_seconds,
            )
        except httpx.TimeoutException as e:
            raise NetworkError(f"Timed out calling {path}", code=ErrorCode.NETWORK_TIMEOUT, original_error=e) from e
        except httpx.RequestError as e:
            raise NetworkError(f"Network error calling {path}: {e}", original_error=e) from e

        if response.status_code in (400, 401, 403):
            raise AuthError(
                f"Remote authority rejected {path} ({response.status_code})",
                code=ErrorCode.REFRESH_FAILED if path.endswith("refresh") else ErrorCode.UNAUTHORIZED,
            )
        if not response.is_success:
            raise NetworkError(
                f"Remote authority returned {response.status_code} for {path}",
                code=ErrorCode.REMOTE_ERROR,
                status_code_received=response.status_code,
            )
        try:
            return TokenBundle.model_validate(response.json())
        except ValueError as e:
            raise AuthError(f"Malformed token response from {path}", original_error=e) from e

    async def login(self, identifier: str, password: str) -> SessionInfo:
        """Authenticate the operator and persist the issued tokens."""
        bundle = await self._post_auth("/auth/login", {"identifier": identifier, "password": password})
        await self._save(bundle)
        logger.info("Booth operator logged in")
        return await self.session_info()

    async def refresh(self) -> str:
        """
        Exchange the refresh token for a new access token.

        Concurrent callers share one refresh: whoever waits on the lock gets
        the token the first caller obtained.

        Raises:
            AuthError: no refresh token, or the remote authority refused it
            NetworkError: the refresh call could not be completed
        """
        stale = await self.current_token()
        async with self._refresh_lock:
            current = await self.current_token()
            if current and current != stale and not self.is_expired(current):
                return current

            refresh_token = await self.refresh_token()
            if not refresh_token:
                raise AuthError("No refresh token available", code=ErrorCode.REFRESH_FAILED)

            bundle = await self._post_auth("/auth/refresh", {"refreshToken": refresh_token})
            await self._save(bundle)
            logger.info("Access token refreshed")
            return bundle.access_token

    async def refresh_if_needed(self) -> bool:
        """
        Proactive refresh: when the token is still alive but inside the
        margin, try to refresh it. Failures are logged and the current
        token stays in use until it actually expires.

        Returns False only if a needed refresh failed.
        """
        token = await self.current_token()
        if not token or self.is_valid(token) or self.is_expired(token):
            return True
        if not await self.refresh_token():
            return False
        try:
            await self.refresh()
            return True
        except (AuthError, NetworkError) as e:
            logger.warning(f"Proactive token refresh failed: {e.message}")
            return False

    async def ensure_token(self) -> str:
        """
        Return a token usable for an authorized call.

        Raises:
            AuthError: no token, or the token is dead and cannot be refreshed
        """
        token = await self.current_token()
        if not token:
            raise AuthError("Not logged in")

        if self.is_expired(token):
            try:
                return await self.refresh()
            except AuthError:
                await self.logout(notify_remote=False)
                raise

        if not self.is_valid(token):
            await self.refresh_if_needed()
            token = await self.current_token() or token
        return token

    async def logout(self, notify_remote: bool = True) -> None:
        """Clear every locally held credential and the booth configuration."""
        token = await self.current_token()
        if notify_remote and token:
            try:
                await self.http.post(
                    "/auth/logout",
                    headers={"Authorization": f"Bearer {token}"},
                    timeout=self.settings.reachability_timeout_seconds,
                )
            except httpx.HTTPError as e:
                logger.info(f"Remote logout not acknowledged: {e.__class__.__name__}")

        async with self.store.transaction() as tx:
            await tx.delete_where(
                Collection.CONFIG,
                ConfigEntry.key.in_([ConfigKey.AUTH_TOKENS, ConfigKey.BOOTH_CONFIG]),
            )
        self._tokens = None
        self._loaded = True
        logger.info("Session cleared; re-authentication required")

    # =========================================================================
    # BOOTH CONFIGURATION / READINESS
    # =========================================================================

    async def save_booth_config(self, config: BoothConfig) -> BoothConfig:
        await self.store.put(Collection.CONFIG, {
            "key": ConfigKey.BOOTH_CONFIG,
            "value": config.model_dump(exclude_none=True),
        })
        logger.info(f"Booth configured: {config.booth_id}")
        return config

    async def booth_config(self) -> Optional[BoothConfig]:
        value = await self.store.get_value(Collection.CONFIG, ConfigKey.BOOTH_CONFIG)
        return BoothConfig.model_validate(value) if value else None

    async def is_ready(self) -> bool:
        """A sync cycle may run only with a valid token and a booth configuration."""
        token = await self.current_token()
        if not self.is_valid(token):
            return False
        return await self.booth_config() is not None

    async def session_info(self) -> SessionInfo:
        token = await self.current_token()
        booth = await self.booth_config()
        expiry = self.expiry_of(token)
        return SessionInfo(
            authenticated=bool(token) and not self.is_expired(token),
            ready=self.is_valid(token) and booth is not None,
            booth_id=booth.booth_id if booth else None,
            expires_at=expiry,
            seconds_remaining=await self.time_remaining(),
        )
