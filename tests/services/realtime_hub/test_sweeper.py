# tests/services/realtime_hub/test_sweeper.py
"""
Тесты фоновой очистки устаревших участников.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from speed_tracker.config.loader import TrackerSettings
from speed_tracker.services.realtime_hub.connection_manager import ConnectionManager
from speed_tracker.services.realtime_hub.rate_limiter import HornRateLimiter
from speed_tracker.services.realtime_hub.registry import GroupRegistry
from speed_tracker.services.realtime_hub.sweeper import StaleSweeper
from speed_tracker.shared.models.member import MemberRecord


def _record(user_id: str, timestamp: int) -> MemberRecord:
    return MemberRecord(user_id=user_id, user_name=user_id, speed=1.0, max_speed=1.0, timestamp=timestamp)


@pytest.fixture
def sweeper(
    registry: GroupRegistry,
    manager: ConnectionManager,
    rate_limiter: HornRateLimiter,
    tracker_settings: TrackerSettings,
    clock,
) -> StaleSweeper:
    return StaleSweeper(registry, manager, rate_limiter, tracker_settings, clock=clock)


class TestSweepOnce:
    """Тесты для sweep_once."""

    @pytest.mark.asyncio
    async def test_evicts_stale_members(
        self, sweeper: StaleSweeper, registry: GroupRegistry, connect, drain
    ) -> None:
        await registry.upsert_member("team", _record("old", 1_000))
        await registry.upsert_member("team", _record("fresh", 15_000))
        viewer = connect()
        viewer.group_name = "team"

        evicted = await sweeper.sweep_once(now_ms=20_000)

        assert evicted == {"team": ["old"]}
        (message,) = drain(viewer)
        assert [u["userId"] for u in message["users"]] == ["fresh"]

    @pytest.mark.asyncio
    async def test_one_broadcast_per_group(
        self, sweeper: StaleSweeper, registry: GroupRegistry, connect, drain
    ) -> None:
        for user_id in ("a", "b", "c"):
            await registry.upsert_member("team", _record(user_id, 1_000))
        await registry.upsert_member("team", _record("alive", 19_000))
        viewer = connect()
        viewer.group_name = "team"

        await sweeper.sweep_once(now_ms=20_000)

        assert len(drain(viewer)) == 1

    @pytest.mark.asyncio
    async def test_emptied_group_deleted_silently(
        self, sweeper: StaleSweeper, registry: GroupRegistry, connect, drain
    ) -> None:
        await registry.upsert_member("team", _record("old", 1_000))
        viewer = connect()
        viewer.group_name = "team"

        evicted = await sweeper.sweep_once(now_ms=20_000)

        assert evicted == {"team": ["old"]}
        assert not registry.has_group("team")
        assert drain(viewer) == []

    @pytest.mark.asyncio
    async def test_untouched_groups_not_broadcast(
        self, sweeper: StaleSweeper, registry: GroupRegistry, connect, drain
    ) -> None:
        await registry.upsert_member("team", _record("fresh", 15_000))
        viewer = connect()
        viewer.group_name = "team"

        evicted = await sweeper.sweep_once(now_ms=20_000)

        assert evicted == {}
        assert drain(viewer) == []

    @pytest.mark.asyncio
    async def test_uses_clock_by_default(
        self, sweeper: StaleSweeper, registry: GroupRegistry, clock
    ) -> None:
        await registry.upsert_member("team", _record("u1", clock.millis))

        clock.advance(11)
        evicted = await sweeper.sweep_once()

        assert evicted == {"team": ["u1"]}

    @pytest.mark.asyncio
    async def test_prunes_expired_rate_limits(
        self, sweeper: StaleSweeper, rate_limiter: HornRateLimiter, clock
    ) -> None:
        rate_limiter.try_consume("u1", clock(), 10.0)

        clock.advance(11)
        await sweeper.sweep_once()

        assert "u1" not in rate_limiter


class TestSweeperLifecycle:
    """Запуск и остановка цикла очистки."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, sweeper: StaleSweeper) -> None:
        await sweeper.start()
        assert sweeper.is_running is True

        await sweeper.stop()
        assert sweeper.is_running is False
        assert sweeper._task is None

    @pytest.mark.asyncio
    async def test_double_start_is_noop(self, sweeper: StaleSweeper) -> None:
        await sweeper.start()
        task = sweeper._task

        await sweeper.start()

        assert sweeper._task is task
        await sweeper.stop()

    @pytest.mark.asyncio
    async def test_stop_when_not_running(self, sweeper: StaleSweeper) -> None:
        await sweeper.stop()
        assert sweeper.is_running is False

    @pytest.mark.asyncio
    async def test_loop_survives_errors(
        self, registry: GroupRegistry, manager: ConnectionManager, rate_limiter: HornRateLimiter, clock
    ) -> None:
        tracker = TrackerSettings(SWEEP_INTERVAL_MS=1, STALE_THRESHOLD_MS=10_000)
        sweeper = StaleSweeper(registry, manager, rate_limiter, tracker, clock=clock)
        calls: list[int] = []

        async def flaky_sweep() -> dict:
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("boom")
            return {}

        sweeper.sweep_once = flaky_sweep

        with patch("speed_tracker.services.realtime_hub.sweeper.log_error", new_callable=AsyncMock) as log_error:
            await sweeper.start()
            await asyncio.sleep(0.05)
            await sweeper.stop()

        log_error.assert_awaited()
        assert len(calls) >= 2
