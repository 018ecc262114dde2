"""TriggerRegistry tests driven by a virtual clock."""
import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch
from zoneinfo import ZoneInfo

import pytest

from psnl_agent.errors import ConfigLoadError, MalformedScheduleError
from psnl_agent.scheduler import TimeOfDay, TriggerRegistry, _seconds_until_next_minute, parse_time_of_day


def simulate(registry, start, minutes):
    """Tick once per minute, returning the UTC instants at which anything fired."""
    fired = []
    for i in range(minutes):
        now = start + timedelta(minutes=i)
        if registry.tick(now):
            fired.append(now)
    return fired


class TestParseTimeOfDay:
    @pytest.mark.parametrize("raw, expected", [
        ("07:00", TimeOfDay(7, 0)),
        ("7:05", TimeOfDay(7, 5)),
        ("23:59", TimeOfDay(23, 59)),
        ("00:00", TimeOfDay(0, 0)),
    ])
    def test_valid(self, raw, expected):
        assert parse_time_of_day(raw) == expected

    @pytest.mark.parametrize("raw", ["24:00", "12:60", "7", "07:0", "ab:cd", "", "07:00:00", "-1:30"])
    def test_invalid(self, raw):
        with pytest.raises(MalformedScheduleError):
            parse_time_of_day(raw)

    def test_str_is_zero_padded(self):
        assert str(TimeOfDay(7, 5)) == "07:05"


class TestRegisterAction:
    def test_rejects_malformed_time(self):
        registry = TriggerRegistry()
        with pytest.raises(MalformedScheduleError):
            registry.register_action("7h30", "UTC", AsyncMock())
        assert registry.triggers == []

    def test_rejects_unknown_zone(self):
        registry = TriggerRegistry()
        with pytest.raises(ConfigLoadError):
            registry.register_action("07:30", "Nowhere/Land", AsyncMock())

    def test_accepts_zone_name(self):
        trigger = TriggerRegistry().register_action("07:30", "Asia/Seoul", AsyncMock(), label="x")
        assert trigger.zone == ZoneInfo("Asia/Seoul")
        assert trigger.time == TimeOfDay(7, 30)


class TestTick:
    async def test_seoul_fires_once_at_local_seven(self):
        registry = TriggerRegistry()
        action = AsyncMock(return_value=True)
        registry.register_action("07:00", "Asia/Seoul", action)

        start = datetime(2024, 5, 1, 0, 0, tzinfo=timezone.utc)
        fired = simulate(registry, start, 24 * 60)
        await registry.drain()

        # 07:00 KST == 22:00 UTC the previous day
        assert fired == [datetime(2024, 5, 1, 22, 0, tzinfo=timezone.utc)]
        assert action.await_count == 1

    async def test_not_at_utc_seven(self):
        registry = TriggerRegistry()
        action = AsyncMock()
        registry.register_action("07:00", "Asia/Seoul", action)
        assert registry.tick(datetime(2024, 5, 1, 7, 0, tzinfo=timezone.utc)) == []
        action.assert_not_called()

    async def test_fires_again_next_day(self):
        registry = TriggerRegistry()
        action = AsyncMock()
        registry.register_action("12:00", "UTC", action)
        fired = simulate(registry, datetime(2024, 5, 1, 0, 0, tzinfo=timezone.utc), 3 * 24 * 60)
        await registry.drain()
        assert [f.day for f in fired] == [1, 2, 3]
        assert action.await_count == 3

    async def test_multiple_ticks_in_same_minute_fire_once(self):
        registry = TriggerRegistry()
        action = AsyncMock()
        registry.register_action("12:00", "UTC", action)
        base = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        registry.tick(base)
        registry.tick(base + timedelta(seconds=20))
        registry.tick(base + timedelta(seconds=59))
        await registry.drain()
        assert action.await_count == 1

    async def test_dst_fall_back_fires_once(self):
        # 2024-11-03 01:30 happens twice in New York
        registry = TriggerRegistry()
        action = AsyncMock()
        registry.register_action("01:30", "America/New_York", action)
        fired = simulate(registry, datetime(2024, 11, 3, 4, 0, tzinfo=timezone.utc), 4 * 60)
        await registry.drain()
        assert len(fired) == 1

    async def test_uses_clock_when_now_omitted(self, clock):
        registry = TriggerRegistry(clock=clock)
        action = AsyncMock()
        registry.register_action("00:05", "UTC", action)
        assert registry.tick() == []
        clock.advance(minutes=5)
        assert len(registry.tick()) == 1
        await registry.drain()
        action.assert_awaited_once()

    async def test_same_minute_triggers_all_run(self):
        registry = TriggerRegistry()
        first, second = AsyncMock(), AsyncMock()
        registry.register_action("09:00", "UTC", first)
        registry.register_action("09:00", "UTC", second)
        tasks = registry.tick(datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc))
        assert len(tasks) == 2
        await registry.drain()
        first.assert_awaited_once()
        second.assert_awaited_once()

    async def test_slow_action_does_not_block_others(self):
        registry = TriggerRegistry()
        release = asyncio.Event()
        done = []

        async def slow():
            await release.wait()
            done.append("slow")

        async def fast():
            done.append("fast")

        registry.register_action("09:00", "UTC", slow)
        registry.register_action("09:00", "UTC", fast)
        registry.tick(datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        assert done == ["fast"]
        assert registry.in_flight == 1

        release.set()
        await registry.drain()
        assert sorted(done) == ["fast", "slow"]

    async def test_failing_action_is_isolated(self, caplog):
        registry = TriggerRegistry()
        ok = AsyncMock()

        async def boom():
            raise RuntimeError("kaboom")

        registry.register_action("09:00", "UTC", boom, label="broken")
        registry.register_action("09:00", "UTC", ok)
        registry.tick(datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc))
        await registry.drain()
        await asyncio.sleep(0)

        ok.assert_awaited_once()
        assert "kaboom" in caplog.text
        # the failing trigger still fires the next day
        assert len(registry.tick(datetime(2024, 5, 2, 9, 0, tzinfo=timezone.utc))) == 2
        await registry.drain()

    async def test_action_that_raises_on_call(self):
        registry = TriggerRegistry()
        ok = AsyncMock()

        def broken():
            raise TypeError("not callable like that")

        registry.register_action("09:00", "UTC", broken)
        registry.register_action("09:00", "UTC", ok)
        tasks = registry.tick(datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc))
        assert len(tasks) == 1
        await registry.drain()
        ok.assert_awaited_once()


class TestNextFireTime:
    def test_later_today(self):
        trigger = TriggerRegistry().register_action("07:00", "Asia/Seoul", AsyncMock())
        nxt = trigger.next_fire_time(datetime(2024, 5, 1, 0, 0, tzinfo=timezone.utc))  # 09:00 KST
        assert (nxt.day, nxt.hour, nxt.minute) == (2, 7, 0)
        assert nxt.utcoffset() == timedelta(hours=9)

    def test_earlier_today(self):
        trigger = TriggerRegistry().register_action("12:00", "UTC", AsyncMock())
        nxt = trigger.next_fire_time(datetime(2024, 5, 1, 8, 30, tzinfo=timezone.utc))
        assert (nxt.day, nxt.hour) == (1, 12)


class TestLifecycle:
    def test_seconds_until_next_minute(self):
        now = datetime(2024, 5, 1, 6, 59, 45, 500000, tzinfo=timezone.utc)
        assert _seconds_until_next_minute(now) == pytest.approx(14.55)

    async def test_start_and_stop(self, clock):
        clock.now = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)
        registry = TriggerRegistry(clock=clock)
        action = AsyncMock()
        registry.register_action("09:00", "UTC", action)

        registry.start()
        assert registry.running
        # starting twice keeps the same loop
        assert registry.start() is registry.start()
        await asyncio.sleep(0.01)
        await registry.stop()

        assert not registry.running
        action.assert_awaited_once()

    async def test_stop_waits_for_in_flight_actions(self):
        registry = TriggerRegistry()
        finished = []

        async def slow():
            await asyncio.sleep(0.01)
            finished.append(True)

        registry.register_action("09:00", "UTC", slow)
        registry.tick(datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc))
        await registry.stop()
        assert finished == [True]
        assert registry.in_flight == 0

    async def test_failing_tick_keeps_loop_alive(self, clock, caplog):
        registry = TriggerRegistry(clock=clock)
        with patch.object(registry, "tick", side_effect=RuntimeError("bad tick")):
            registry.start()
            await asyncio.sleep(0.01)
            assert registry.running
            await registry.stop()

        assert not registry.running
        assert "Trigger tick failed" in caplog.text
        assert "bad tick" in caplog.text
