"""Tests for cooldown and quota gates."""

from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from roomio.clients import LocalStateStore
from roomio.services.gates import CooldownGate, FreeQuotaGate, OpenGate, build_gate


class TestCooldownGate:
    """Tests for the fixed cooldown policy."""

    @pytest.mark.asyncio
    async def test_first_request_allowed(self, local_state, identity, clock):
        gate = CooldownGate(local_state, identity, clock, cooldown_seconds=3600)

        decision = await gate.check("laundry")

        assert decision.allowed
        assert decision.charge == 0

    @pytest.mark.asyncio
    async def test_blocks_until_window_elapses(self, local_state, identity, clock):
        gate = CooldownGate(local_state, identity, clock, cooldown_seconds=3600)
        await gate.record("laundry")

        clock.advance(minutes=55, seconds=48)
        decision = await gate.check("laundry")
        assert not decision.allowed
        assert decision.remaining_ms == 252_000
        assert decision.message == "⏳ Available in 4m 12s"

        clock.advance(minutes=4, seconds=12)
        assert (await gate.check("laundry")).allowed

    @pytest.mark.asyncio
    async def test_services_are_independent(self, local_state, identity, clock):
        gate = CooldownGate(local_state, identity, clock, cooldown_seconds=3600)
        await gate.record("laundry")

        assert not (await gate.check("laundry")).allowed
        assert (await gate.check("housekeeping")).allowed

    @pytest.mark.asyncio
    async def test_timestamp_stored_under_service_key(self, local_state, identity, clock, redis_client):
        gate = CooldownGate(local_state, identity, clock)
        await gate.record("laundry")

        assert "roomio:requests:admin-1:9876543210:204:laundry" in redis_client.data

    @pytest.mark.asyncio
    async def test_unreadable_state_resets_gate(self, identity, clock):
        redis_client = AsyncMock()
        redis_client.get.side_effect = RedisConnectionError("down")
        gate = CooldownGate(LocalStateStore(redis_client=redis_client), identity, clock)

        assert (await gate.check("laundry")).allowed


class TestFreeQuotaGate:
    """Tests for the free-then-paid policy."""

    @pytest.mark.asyncio
    async def test_first_requests_are_free(self, local_state, identity, clock):
        gate = FreeQuotaGate(local_state, identity, clock, free_requests=2, charge=150)

        for _ in range(2):
            decision = await gate.check("housekeeping")
            assert decision.allowed
            assert decision.charge == 0
            await gate.record("housekeeping")

        assert await gate.used("housekeeping") == 2

    @pytest.mark.asyncio
    async def test_request_after_quota_needs_confirmation(self, local_state, identity, clock):
        gate = FreeQuotaGate(local_state, identity, clock, free_requests=2, charge=150)
        await gate.record("housekeeping")
        await gate.record("housekeeping")

        decision = await gate.check("housekeeping")
        assert not decision.allowed
        assert decision.requires_confirmation
        assert decision.charge == 150

        confirmed = await gate.check("housekeeping", confirmed=True)
        assert confirmed.allowed
        assert confirmed.charge == 150


class TestBuildGate:
    def test_policies(self, local_state, identity, clock):
        assert isinstance(build_gate("cooldown", local_state, identity, clock), CooldownGate)
        assert isinstance(build_gate("quota", local_state, identity, clock), FreeQuotaGate)
        assert isinstance(build_gate("none", local_state, identity, clock), OpenGate)
