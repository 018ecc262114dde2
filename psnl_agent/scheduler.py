"""
Time-of-day trigger registry.

Each trigger is a local wall-clock time (HH:MM) in an IANA time zone plus an
async action. A single clock loop ticks once per minute, aligned to the
minute boundary, and dispatches every due action as its own asyncio task so
a slow API call never delays another trigger. A trigger fires at most once
per local calendar day.
"""
import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, List, Optional, Set, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from psnl_agent.errors import ConfigLoadError, MalformedScheduleError

logger = logging.getLogger(__name__)

_TIME_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*$")

Action = Callable[[], Awaitable[Any]]
Clock = Callable[[], datetime]


@dataclass(frozen=True, order=True)
class TimeOfDay:
    hour: int
    minute: int

    def __str__(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}"

    def matches(self, local: datetime) -> bool:
        return local.hour == self.hour and local.minute == self.minute


def parse_time_of_day(value: str) -> TimeOfDay:
    """Parse ``HH:MM`` (24h). Raises MalformedScheduleError on anything else."""
    m = _TIME_RE.match(value) if isinstance(value, str) else None
    if not m:
        raise MalformedScheduleError(f"Invalid schedule time {value!r}, expected HH:MM")
    hour, minute = int(m.group(1)), int(m.group(2))
    if hour > 23 or minute > 59:
        raise MalformedScheduleError(f"Invalid schedule time {value!r}, hour must be 0-23 and minute 0-59")
    return TimeOfDay(hour, minute)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _seconds_until_next_minute(now: datetime) -> float:
    elapsed = now.second + now.microsecond / 1_000_000
    # land just past the boundary, never on the previous minute
    return max(60.0 - elapsed, 0.0) + 0.05


@dataclass(eq=False)
class Trigger:
    """A daily action bound to a local time of day."""
    time: TimeOfDay
    zone: ZoneInfo
    action: Action
    label: str = ""
    last_fired: Optional[date] = None

    def local(self, now: datetime) -> datetime:
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now.astimezone(self.zone)

    def is_due(self, now: datetime) -> bool:
        local = self.local(now)
        return self.time.matches(local) and self.last_fired != local.date()

    def next_fire_time(self, now: datetime) -> datetime:
        """Next local datetime at which this trigger will fire."""
        local = self.local(now).replace(second=0, microsecond=0)
        candidate = local.replace(hour=self.time.hour, minute=self.time.minute)
        if candidate < local or (candidate == local and self.last_fired == local.date()):
            candidate += timedelta(days=1)
        return candidate

    def __repr__(self) -> str:
        return f"Trigger({self.time} {self.zone.key} {self.label})"


class TriggerRegistry:
    """Owns the triggers and the clock loop that fires them.

    The clock is injectable so tests can drive ``tick`` with a virtual time
    instead of waiting for the wall clock.
    """

    def __init__(self, clock: Optional[Clock] = None):
        self._clock: Clock = clock or utc_now
        self._triggers: List[Trigger] = []
        self._tasks: Set[asyncio.Task] = set()
        self._loop_task: Optional[asyncio.Task] = None

    @property
    def triggers(self) -> List[Trigger]:
        return list(self._triggers)

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def now(self) -> datetime:
        return self._clock()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def register_action(
        self,
        time_of_day: Union[str, TimeOfDay],
        tz: Union[str, ZoneInfo],
        action: Action,
        label: str = "",
    ) -> Trigger:
        """Register ``action`` to run every day at ``time_of_day`` in ``tz``.

        Raises:
            MalformedScheduleError: ``time_of_day`` is not a valid HH:MM.
            ConfigLoadError: ``tz`` is not a known IANA zone.
        """
        if not isinstance(time_of_day, TimeOfDay):
            time_of_day = parse_time_of_day(time_of_day)
        if not isinstance(tz, ZoneInfo):
            try:
                tz = ZoneInfo(tz)
            except (ZoneInfoNotFoundError, ValueError) as e:
                raise ConfigLoadError(f"Unknown timezone: {tz!r}", detail=str(e)) from e

        trigger = Trigger(time=time_of_day, zone=tz, action=action, label=label)
        self._triggers.append(trigger)
        logger.debug("Registered trigger %r", trigger)
        return trigger

    def tick(self, now: Optional[datetime] = None) -> List[asyncio.Task]:
        """Fire every due trigger. Returns the dispatched tasks without awaiting them."""
        now = now or self._clock()
        dispatched = []
        for trigger in self._triggers:
            if not trigger.is_due(now):
                continue
            trigger.last_fired = trigger.local(now).date()
            task = self._dispatch(trigger)
            if task is not None:
                dispatched.append(task)
        return dispatched

    def _dispatch(self, trigger: Trigger) -> Optional[asyncio.Task]:
        try:
            task = asyncio.ensure_future(trigger.action())
        except Exception:
            logger.exception("Trigger %s %s could not start", trigger.time, trigger.label)
            return None
        task.set_name(f"trigger {trigger.time} {trigger.label}")
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("%s raised %s: %s", task.get_name(), type(exc).__name__, exc, exc_info=exc)

    async def _run(self) -> None:
        logger.info("Trigger loop started with %d trigger(s)", len(self._triggers))
        while True:
            try:
                self.tick()
            except Exception:
                logger.exception("Trigger tick failed")
            await asyncio.sleep(_seconds_until_next_minute(self._clock()))

    def start(self) -> asyncio.Task:
        """Start the clock loop on the running event loop."""
        if self.running:
            return self._loop_task
        self._loop_task = asyncio.get_running_loop().create_task(self._run(), name="trigger-loop")
        return self._loop_task

    async def drain(self) -> None:
        """Wait for every in-flight action to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def stop(self) -> None:
        """Stop the clock loop. Actions already fired run to completion."""
        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None
            logger.info("Trigger loop stopped")
        await self.drain()
