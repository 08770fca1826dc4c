"""
FastVerify Booth - Session Lifecycle Tests

Tests cover:
1. Token validity and expiry boundaries
2. Login / logout and persisted credential state
3. Proactive and on-demand refresh, single-flight refresh
4. Readiness gate
"""

import asyncio
import json
from datetime import timedelta

import httpx
import pytest
from jose import jwt

from fastverify.models import ConfigKey
from fastverify.schemas.session import BoothConfig
from fastverify.services.session_service import SessionManager, token_expiry
from fastverify.services.store import Collection
from fastverify.utils.errors import AuthError, ErrorCode, NetworkError
from tests.fixtures.authority_mock import TOKEN_SIGNING_KEY
from tests.fixtures.booth import BOOTH_ID


# ===========================================
# VALIDITY BOUNDARIES
# ===========================================

class TestTokenValidity:
    """Tests for is_valid / is_expired"""

    def test_token_expiry_reads_exp_claim(self, authority, clock):
        token = authority.issue_token(ttl_seconds=600)
        assert token_expiry(token) == clock.now() + timedelta(seconds=600)

    def test_unreadable_token_has_no_expiry(self):
        assert token_expiry("not-a-jwt") is None
        assert token_expiry(None) is None

    @pytest.mark.asyncio
    async def test_token_without_exp_is_invalid(self, services):
        token = jwt.encode({"sub": "operator"}, TOKEN_SIGNING_KEY, algorithm="HS256")
        assert services.session.is_valid(token) is False
        assert services.session.is_expired(token) is True

    @pytest.mark.asyncio
    async def test_exactly_margin_remaining_is_invalid(self, services, authority):
        token = authority.issue_token(ttl_seconds=300)
        assert services.session.is_valid(token, margin_seconds=300) is False
        assert services.session.is_expired(token) is False

    @pytest.mark.asyncio
    async def test_one_second_past_margin_is_valid(self, services, authority):
        token = authority.issue_token(ttl_seconds=301)
        assert services.session.is_valid(token, margin_seconds=300) is True
        assert services.session.is_expired(token) is False

    @pytest.mark.asyncio
    async def test_default_margin_from_settings(self, services, authority):
        assert services.settings.token_refresh_margin_seconds == 300
        assert services.session.is_valid(authority.issue_token(ttl_seconds=300)) is False
        assert services.session.is_valid(authority.issue_token(ttl_seconds=301)) is True

    @pytest.mark.asyncio
    async def test_expired_at_exp(self, services, authority, clock):
        token = authority.issue_token(ttl_seconds=10)
        clock.advance(10)
        assert services.session.is_expired(token) is True


# ===========================================
# LOGIN / LOGOUT
# ===========================================

class TestLoginLogout:
    """Tests for establishing and clearing a session"""

    @pytest.mark.asyncio
    async def test_login_persists_tokens(self, services, authority):
        info = await services.session.login("operator", "secret")

        assert info.authenticated is True
        assert info.ready is False  # no booth config yet
        stored = await services.store.get_value(Collection.CONFIG, ConfigKey.AUTH_TOKENS)
        assert stored["access_token"] in authority.valid_tokens
        assert stored["refresh_token"].startswith("rt_")

    @pytest.mark.asyncio
    async def test_login_sends_identifier_and_password(self, services, authority):
        await services.session.login("operator", "secret")
        request = authority.router.routes["login"].calls.last.request
        assert json.loads(request.content) == {"identifier": "operator", "password": "secret"}

    @pytest.mark.asyncio
    async def test_rejected_login_raises_auth_error(self, services, authority):
        authority.reject_credentials = True
        with pytest.raises(AuthError):
            await services.session.login("operator", "wrong")
        assert await services.session.current_token() is None

    @pytest.mark.asyncio
    async def test_login_while_offline_raises_network_error(self, services, authority):
        authority.router.routes["login"].mock(side_effect=httpx.ConnectError)
        with pytest.raises(NetworkError):
            await services.session.login("operator", "secret")

    @pytest.mark.asyncio
    async def test_logout_clears_tokens_and_booth_config(self, ready_booth, authority):
        await ready_booth.session.logout()

        assert authority.call_count("logout") == 1
        assert await ready_booth.store.get(Collection.CONFIG, ConfigKey.AUTH_TOKENS) is None
        assert await ready_booth.store.get(Collection.CONFIG, ConfigKey.BOOTH_CONFIG) is None
        assert await ready_booth.session.current_token() is None

    @pytest.mark.asyncio
    async def test_session_survives_restart(self, ready_booth, settings, clock):
        fresh = SessionManager(ready_booth.store, ready_booth.http, settings, clock)
        assert await fresh.current_token() == await ready_booth.session.current_token()
        assert await fresh.is_ready() is True


# ===========================================
# REFRESH
# ===========================================

class TestRefresh:
    """Tests for token refresh"""

    @pytest.mark.asyncio
    async def test_refresh_replaces_access_token_and_keeps_refresh_token(self, ready_booth, authority):
        old_refresh = await ready_booth.session.refresh_token()
        old_access = await ready_booth.session.current_token()

        new_access = await ready_booth.session.refresh()

        assert new_access != old_access
        assert await ready_booth.session.current_token() == new_access
        assert await ready_booth.session.refresh_token() == old_refresh

    @pytest.mark.asyncio
    async def test_refresh_without_refresh_token(self, services):
        with pytest.raises(AuthError) as exc_info:
            await services.session.refresh()
        assert exc_info.value.code == ErrorCode.REFRESH_FAILED

    @pytest.mark.asyncio
    async def test_rejected_refresh(self, ready_booth, authority):
        authority.reject_refresh = True
        with pytest.raises(AuthError) as exc_info:
            await ready_booth.session.refresh()
        assert exc_info.value.code == ErrorCode.REFRESH_FAILED

    @pytest.mark.asyncio
    async def test_concurrent_refreshes_share_one_call(self, ready_booth, authority):
        tokens = await asyncio.gather(*[ready_booth.session.refresh() for _ in range(5)])

        assert len(set(tokens)) == 1
        assert authority.call_count("refresh") == 1

    @pytest.mark.asyncio
    async def test_refresh_if_needed_noop_for_fresh_token(self, ready_booth, authority):
        assert await ready_booth.session.refresh_if_needed() is True
        assert authority.call_count("refresh") == 0

    @pytest.mark.asyncio
    async def test_refresh_if_needed_inside_margin(self, ready_booth, authority, clock):
        clock.advance(authority.token_ttl_seconds - 200)
        assert await ready_booth.session.refresh_if_needed() is True
        assert authority.call_count("refresh") == 1
        assert ready_booth.session.is_valid(await ready_booth.session.current_token())

    @pytest.mark.asyncio
    async def test_refresh_if_needed_failure_keeps_current_token(self, ready_booth, authority, clock):
        token = await ready_booth.session.current_token()
        authority.reject_refresh = True
        clock.advance(authority.token_ttl_seconds - 200)

        assert await ready_booth.session.refresh_if_needed() is False
        assert await ready_booth.session.current_token() == token

    @pytest.mark.asyncio
    async def test_ensure_token_refreshes_expired_token(self, ready_booth, authority, clock):
        old = await ready_booth.session.current_token()
        clock.advance(authority.token_ttl_seconds + 1)

        token = await ready_booth.session.ensure_token()
        assert token != old
        assert authority.call_count("refresh") == 1

    @pytest.mark.asyncio
    async def test_ensure_token_logs_out_when_refresh_rejected(self, ready_booth, authority, clock):
        authority.reject_refresh = True
        clock.advance(authority.token_ttl_seconds + 1)

        with pytest.raises(AuthError):
            await ready_booth.session.ensure_token()
        assert await ready_booth.session.current_token() is None
        assert await ready_booth.session.booth_config() is None

    @pytest.mark.asyncio
    async def test_ensure_token_without_login(self, services):
        with pytest.raises(AuthError):
            await services.session.ensure_token()


# ===========================================
# READINESS
# ===========================================

class TestReadiness:
    """Tests for the sync readiness gate"""

    @pytest.mark.asyncio
    async def test_ready_needs_token_and_booth_config(self, services, authority):
        assert await services.session.is_ready() is False

        await services.session.login("operator", "secret")
        assert await services.session.is_ready() is False

        await services.session.save_booth_config(BoothConfig(booth_id=BOOTH_ID))
        assert await services.session.is_ready() is True

    @pytest.mark.asyncio
    async def test_not_ready_inside_margin(self, ready_booth, authority, clock):
        clock.advance(authority.token_ttl_seconds - 300)
        assert await ready_booth.session.is_ready() is False

    @pytest.mark.asyncio
    async def test_session_info_never_exposes_tokens(self, ready_booth, authority):
        info = await ready_booth.session.session_info()
        dumped = info.model_dump_json()

        assert info.ready is True
        assert info.booth_id == BOOTH_ID
        assert info.seconds_remaining == authority.token_ttl_seconds
        for token in authority.valid_tokens:
            assert token not in dumped
