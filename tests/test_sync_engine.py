"""
FastVerify Booth - Sync Engine Tests

Tests cover:
1. Partial push (independent batches, failed batch stays queued)
2. Pull with cursor monotonicity and atomic apply
3. Single-flight cycles
4. Idempotent no-op cycle
5. Readiness gate, offline and auth-failed outcomes
"""

import asyncio
import hashlib

import pytest
from sqlalchemy import text

from fastverify.models import SyncStatusEntry, VerificationResult
from fastverify.schemas.audit import AuditEventCreate
from fastverify.schemas.sync import EngineState, SyncOutcome
from fastverify.services.store import Collection
from fastverify.services.sync_engine import is_newer_watermark
from fastverify.utils.errors import SyncPartialFailure
from tests.fixtures.authority_mock import MockVoter
from tests.fixtures.booth import BOOTH_ID, record_events


async def snapshot(store) -> str:
    """Digest of every row in every table."""
    digest = hashlib.sha256()
    async with store.transaction() as tx:
        for table in ("voters", "audit_logs", "otp_verifications", "config", "sync_status"):
            result = await tx.session.execute(text(f"SELECT * FROM {table} ORDER BY 1"))
            for row in result.all():
                digest.update(repr(tuple(row)).encode())
    return digest.hexdigest()


async def cursor(services):
    return await services.store.get_value(Collection.SYNC_STATUS, SyncStatusEntry.LAST_SYNC)


# ===========================================
# PUSH
# ===========================================

class TestPush:
    """Tests for the audit push phase"""

    @pytest.mark.asyncio
    async def test_all_pending_entries_delivered(self, ready_booth, authority):
        await record_events(ready_booth, 7)

        report = await ready_booth.engine.run_cycle()

        assert report.status == SyncOutcome.SUCCESS
        assert report.batches_sent == 1
        assert report.entries_synced == 7
        assert await ready_booth.audit.pending_count() == 0
        assert len(authority.pushed_logs) == 7

    @pytest.mark.asyncio
    async def test_partial_push_keeps_failed_batch_pending(self, ready_booth, authority):
        ids = await record_events(ready_booth, 120)
        authority.fail_push_calls = {2}

        report = await ready_booth.engine.run_cycle()

        assert report.status == SyncOutcome.PARTIAL_SUCCESS
        assert report.batches_sent == 2
        assert report.entries_synced == 100
        assert len(report.errors) == 1
        assert report.errors[0].startswith("Batch 2:")
        assert await ready_booth.audit.pending_count() == 20

        pending = {e.local_id for e in await ready_booth.audit.pending_entries()}
        assert pending == set(ids[100:])

    @pytest.mark.asyncio
    async def test_failed_batch_retried_next_cycle(self, ready_booth, authority):
        await record_events(ready_booth, 120)
        authority.fail_push_calls = {2}
        await ready_booth.engine.run_cycle()

        report = await ready_booth.engine.run_cycle()

        assert report.status == SyncOutcome.SUCCESS
        assert report.entries_synced == 20
        assert await ready_booth.audit.pending_count() == 0
        assert len(authority.pushed_logs) == 120

    @pytest.mark.asyncio
    async def test_middle_batch_failure_does_not_block_later_batches(self, ready_booth, authority):
        ids = await record_events(ready_booth, 120)
        authority.fail_push_calls = {1}

        report = await ready_booth.engine.run_cycle()

        assert report.entries_synced == 70
        pending = {e.local_id for e in await ready_booth.audit.pending_entries()}
        assert pending == set(ids[50:100])

    @pytest.mark.asyncio
    async def test_server_reported_errors_keep_batch_pending(self, ready_booth, authority):
        await record_events(ready_booth, 3)
        authority.reject_push_calls = {0}

        report = await ready_booth.engine.run_cycle()

        assert report.status == SyncOutcome.PARTIAL_SUCCESS
        assert report.entries_synced == 0
        assert "rejected by server" in report.errors[0]
        assert await ready_booth.audit.pending_count() == 3

    @pytest.mark.asyncio
    async def test_short_accepted_count_keeps_batch_pending(self, ready_booth, authority):
        await record_events(ready_booth, 7)
        authority.short_push_calls = {0}

        report = await ready_booth.engine.run_cycle()

        assert report.status == SyncOutcome.PARTIAL_SUCCESS
        assert report.entries_synced == 0
        assert report.errors == ["Batch 0: server accepted 6 of 7 entries"]
        assert await ready_booth.audit.pending_count() == 7

        retry = await ready_booth.engine.run_cycle()
        assert retry.entries_synced == 7
        assert await ready_booth.audit.pending_count() == 0

    @pytest.mark.asyncio
    async def test_raise_for_errors_aggregates(self, ready_booth, authority):
        await record_events(ready_booth, 120)
        authority.fail_push_calls = {0, 2}

        report = await ready_booth.engine.run_cycle()

        with pytest.raises(SyncPartialFailure) as exc_info:
            report.raise_for_errors()
        assert len(exc_info.value.errors) == 2
        assert exc_info.value.details["entries_synced"] == 50

    @pytest.mark.asyncio
    async def test_synced_entries_still_verify(self, ready_booth, authority):
        await record_events(ready_booth, 3)
        await ready_booth.engine.run_cycle()

        report = await ready_booth.audit.verify_integrity()
        assert report.is_intact
        assert report.checked == 3


# ===========================================
# PULL
# ===========================================

class TestPull:
    """Tests for the voter pull phase and the sync cursor"""

    @pytest.mark.asyncio
    async def test_pull_applies_voters_and_advances_cursor(self, ready_booth, authority, clock):
        authority.set_voter_updates(
            [MockVoter("V1", "Ada"), MockVoter("V2", "Grace", is_active=False)],
            watermark="100",
        )

        report = await ready_booth.engine.run_cycle()

        assert report.status == SyncOutcome.SUCCESS
        assert report.voters_updated == 2
        assert report.cursor == "100"
        assert await cursor(ready_booth) == "100"
        voter = await ready_booth.voters.get_voter("V1")
        assert voter.full_name == "Ada"
        assert voter.last_synced_at == clock.now()

    @pytest.mark.asyncio
    async def test_cursor_sent_as_since(self, ready_booth, authority):
        authority.set_voter_updates([], watermark="100")
        await ready_booth.engine.run_cycle()
        await ready_booth.engine.run_cycle()

        assert "since" not in authority.pull_requests[0].url.params
        assert authority.pull_requests[1].url.params["since"] == "100"

    @pytest.mark.asyncio
    async def test_failed_pull_leaves_cursor_unchanged(self, ready_booth, authority):
        authority.set_voter_updates([MockVoter("V1", "Ada")], watermark="100")
        await ready_booth.engine.run_cycle()

        authority.set_voter_updates([MockVoter("V1", "Ada Lovelace")], watermark="200")
        authority.pull_status = 500
        report = await ready_booth.engine.run_cycle()

        assert report.status == SyncOutcome.PARTIAL_SUCCESS
        assert report.errors[0].startswith("Pull:")
        assert await cursor(ready_booth) == "100"
        assert (await ready_booth.voters.get_voter("V1")).full_name == "Ada"

    @pytest.mark.asyncio
    async def test_cursor_never_moves_backwards(self, ready_booth, authority):
        seen = []
        for watermark in ["100", "250", "90", "250", "300"]:
            authority.set_voter_updates([], watermark=watermark)
            await ready_booth.engine.run_cycle()
            seen.append(await cursor(ready_booth))

        assert seen == ["100", "250", "250", "250", "300"]

    @pytest.mark.asyncio
    async def test_missing_watermark_leaves_cursor(self, ready_booth, authority):
        authority.set_voter_updates([], watermark="100")
        await ready_booth.engine.run_cycle()

        authority.set_voter_updates([MockVoter("V9", "Late")], watermark=None)
        report = await ready_booth.engine.run_cycle()

        assert report.voters_updated == 1
        assert await cursor(ready_booth) == "100"

    @pytest.mark.asyncio
    async def test_pull_runs_even_when_push_fails(self, ready_booth, authority):
        await record_events(ready_booth, 1)
        authority.fail_push_calls = {0}
        authority.set_voter_updates([MockVoter("V1", "Ada")], watermark="5")

        report = await ready_booth.engine.run_cycle()

        assert report.status == SyncOutcome.PARTIAL_SUCCESS
        assert report.voters_updated == 1
        assert await cursor(ready_booth) == "5"

    @pytest.mark.parametrize("candidate,current,expected", [
        ("100", None, True),
        ("101", "100", True),
        ("100", "100", False),
        ("99", "100", False),
        ("1000", "999", True),
        ("2026-03-01T08:00:01Z", "2026-03-01T08:00:00Z", True),
        ("2026-03-01T07:00:00Z", "2026-03-01T08:00:00Z", False),
        ("abc", "abd", False),
        ("2026-03-01T08:00:00Z", "100", False),
    ])
    def test_watermark_ordering(self, candidate, current, expected):
        assert is_newer_watermark(candidate, current) is expected


# ===========================================
# SINGLE-FLIGHT
# ===========================================

class TestSingleFlight:
    """Only one cycle runs at a time"""

    @pytest.mark.asyncio
    async def test_concurrent_cycles_run_once(self, ready_booth, authority):
        await record_events(ready_booth, 3)
        authority.set_voter_updates([], watermark="1")

        first, second = await asyncio.gather(
            ready_booth.engine.run_cycle(),
            ready_booth.engine.run_cycle(),
        )

        assert first.status == SyncOutcome.SUCCESS
        assert second.status == SyncOutcome.ALREADY_RUNNING
        assert authority.call_count("health") == 1
        assert authority.call_count("push") == 1
        assert authority.call_count("pull") == 1
        assert ready_booth.engine.state == EngineState.IDLE

    @pytest.mark.asyncio
    async def test_latch_released_after_unexpected_error(self, ready_booth, authority, monkeypatch):
        async def boom(*args, **kwargs):
            raise RuntimeError("unexpected")

        monkeypatch.setattr(ready_booth.api, "check_reachable", boom)
        with pytest.raises(RuntimeError):
            await ready_booth.engine.run_cycle()
        assert ready_booth.engine.state == EngineState.IDLE

        monkeypatch.undo()
        report = await ready_booth.engine.run_cycle()
        assert report.status == SyncOutcome.SUCCESS


# ===========================================
# NO-OP CYCLE
# ===========================================

class TestIdempotentCycle:
    """A cycle with nothing to do changes nothing"""

    @pytest.mark.asyncio
    async def test_noop_cycle_leaves_store_identical(self, ready_booth, authority, clock):
        authority.set_voter_updates([MockVoter("V1", "Ada"), MockVoter("V2", "Grace")], watermark="42")
        await ready_booth.engine.run_cycle()
        before = await snapshot(ready_booth.store)

        clock.advance(60)
        report = await ready_booth.engine.run_cycle()

        assert report.status == SyncOutcome.SUCCESS
        assert report.batches_sent == 0
        assert report.voters_updated == 0
        assert report.cursor == "42"
        assert await snapshot(ready_booth.store) == before

    @pytest.mark.asyncio
    async def test_changed_voter_is_rewritten(self, ready_booth, authority, clock):
        authority.set_voter_updates([MockVoter("V1", "Ada"), MockVoter("V2", "Grace")], watermark="42")
        await ready_booth.engine.run_cycle()

        clock.advance(60)
        authority.set_voter_updates([MockVoter("V1", "Ada"), MockVoter("V2", "Grace Hopper")], watermark="43")
        report = await ready_booth.engine.run_cycle()

        assert report.voters_updated == 1
        assert (await ready_booth.voters.get_voter("V2")).last_synced_at == clock.now()


# ===========================================
# GATES AND OUTCOMES
# ===========================================

class TestOutcomes:
    """Readiness, connectivity and auth outcomes"""

    @pytest.mark.asyncio
    async def test_not_ready_without_token_makes_no_call(self, services, authority):
        await record_events_without_booth_guard(services)

        report = await services.engine.run_cycle()

        assert report.status == SyncOutcome.NOT_READY
        assert authority.total_calls() == 0

    @pytest.mark.asyncio
    async def test_not_ready_without_booth_config(self, services, authority):
        await services.session.login("operator", "secret")
        calls = authority.total_calls()

        report = await services.engine.run_cycle()

        assert report.status == SyncOutcome.NOT_READY
        assert authority.total_calls() == calls

    @pytest.mark.asyncio
    async def test_offline_cycle(self, ready_booth, authority):
        await record_events(ready_booth, 2)
        authority.offline = True

        report = await ready_booth.engine.run_cycle()

        assert report.status == SyncOutcome.OFFLINE
        assert authority.call_count("push") == 0
        assert await ready_booth.audit.pending_count() == 2

    @pytest.mark.asyncio
    async def test_auth_failure_aborts_cycle_and_flags_nothing(self, ready_booth, authority):
        await record_events(ready_booth, 60)
        authority.set_voter_updates([MockVoter("V1", "Ada")], watermark="9")
        authority.reject_all_tokens = True

        report = await ready_booth.engine.run_cycle()

        assert report.status == SyncOutcome.AUTH_FAILED
        assert await ready_booth.audit.pending_count() == 60
        assert authority.call_count("pull") == 0
        assert await cursor(ready_booth) is None
        assert await ready_booth.session.is_ready() is False

        follow_up = await ready_booth.engine.run_cycle()
        assert follow_up.status == SyncOutcome.NOT_READY

    @pytest.mark.asyncio
    async def test_auth_failure_during_pull_leaves_pushed_entries_pending(self, ready_booth, authority):
        await record_events(ready_booth, 120)
        authority.fail_push_calls = {1}
        authority.reject_pull_tokens = True
        authority.reject_refresh = True

        report = await ready_booth.engine.run_cycle()

        assert report.status == SyncOutcome.AUTH_FAILED
        assert report.entries_synced == 0
        assert await ready_booth.audit.pending_count() == 120
        assert await cursor(ready_booth) is None

        batch_errors = [e for e in report.errors if e.startswith("Batch")]
        assert len(batch_errors) == 1
        assert batch_errors[0].startswith("Batch 1:")
        assert report.errors[-1].startswith("Authentication failed")

    @pytest.mark.asyncio
    async def test_auth_failure_mid_push_keeps_earlier_batch_errors(self, ready_booth, authority):
        await record_events(ready_booth, 120)
        authority.fail_push_calls = {0}
        authority.unauthorized_from_push_call = 1
        authority.reject_refresh = True

        report = await ready_booth.engine.run_cycle()

        assert report.status == SyncOutcome.AUTH_FAILED
        assert len(report.errors) == 2
        assert report.errors[0].startswith("Batch 0:")
        assert "500" in report.errors[0]
        assert report.errors[1].startswith("Authentication failed")
        assert authority.call_count("pull") == 0
        assert await ready_booth.audit.pending_count() == 120

    @pytest.mark.asyncio
    async def test_status_snapshot(self, ready_booth, authority):
        await record_events(ready_booth, 2)
        status = await ready_booth.engine.status()
        assert status.pending_logs == 2
        assert status.last_successful_sync is None

        report = await ready_booth.engine.run_cycle()
        status = await ready_booth.engine.status()
        assert status.state == EngineState.IDLE
        assert status.pending_logs == 0
        assert status.last_successful_sync == report.finished_at
        assert status.last_report.status == SyncOutcome.SUCCESS

    @pytest.mark.asyncio
    async def test_partial_cycle_does_not_move_last_success(self, ready_booth, authority, clock):
        await ready_booth.engine.run_cycle()
        first_success = (await ready_booth.engine.status()).last_successful_sync
        clock.advance(60)

        await record_events(ready_booth, 1)
        authority.fail_push_calls = {0}
        await ready_booth.engine.run_cycle()

        assert (await ready_booth.engine.status()).last_successful_sync == first_success

    @pytest.mark.asyncio
    async def test_report_uses_booth_id(self, ready_booth, authority):
        await record_events(ready_booth, 1)
        await ready_booth.engine.run_cycle()
        assert authority.received_batches[0].booth_header == BOOTH_ID


async def record_events_without_booth_guard(services):
    """Pending entries exist but nobody is logged in."""
    await services.audit.record_verification(AuditEventCreate(
        voter_id="V1",
        verification_method="otp",
        verification_result=VerificationResult.SUCCESS,
        booth_id=BOOTH_ID,
    ))
