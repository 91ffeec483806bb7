"""Wall-clock trigger that starts the scheduled flow at configured times of day.

Each tick fires when a configured ``HH:MM`` falls in ``(last_tick, now]`` in the
schedule timezone. A tick that finds a run already active is a no-op; missed
slots are never queued.
"""

from __future__ import annotations

import logging
import threading
from datetime import UTC, datetime, time, timedelta
from typing import Callable
from zoneinfo import ZoneInfo

from maa_flow.coordinator import FlowCoordinator, RunHandle
from maa_flow.models import ScheduleConfig
from maa_flow.storage.recovery import RecoveryStore

logger = logging.getLogger(__name__)


class SchedulerTrigger:
    def __init__(
        self,
        coordinator: FlowCoordinator,
        store: RecoveryStore,
        *,
        timezone: str = "Asia/Shanghai",
        tick_s: float = 20.0,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self.coordinator = coordinator
        self.store = store
        self.tz = ZoneInfo(timezone)
        self.tick_s = tick_s
        self._now = now or (lambda: datetime.now(UTC))
        self._lock = threading.Lock()
        self._schedule: ScheduleConfig | None = store.load_schedule()
        self._last_tick: datetime | None = None
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def get_schedule(self) -> ScheduleConfig | None:
        with self._lock:
            return self._schedule.model_copy(deep=True) if self._schedule else None

    def set_schedule(self, schedule: ScheduleConfig) -> ScheduleConfig:
        with self._lock:
            self.store.save_schedule(schedule)
            self._schedule = schedule
        logger.info(
            "scheduler event=schedule_set enabled=%s times=%s tasks=%s",
            schedule.enabled,
            ",".join(schedule.times),
            len(schedule.flow.tasks),
        )
        return schedule

    def clear_schedule(self) -> None:
        with self._lock:
            self.store.save_schedule(None)
            self._schedule = None
        logger.info("scheduler event=schedule_cleared")

    def next_fire_time(self, now: datetime | None = None) -> datetime | None:
        schedule = self.get_schedule()
        if schedule is None or not schedule.enabled or not schedule.times:
            return None
        local_now = (now or self._now()).astimezone(self.tz)
        for day_offset in (0, 1):
            day = local_now.date() + timedelta(days=day_offset)
            for slot in schedule.times:
                candidate = datetime.combine(day, _parse_slot(slot), tzinfo=self.tz)
                if candidate > local_now:
                    return candidate
        return None

    def tick(self, now: datetime | None = None) -> RunHandle | None:
        """Evaluate the schedule once; returns the handle of a run it started."""
        current = (now or self._now()).astimezone(self.tz)
        with self._lock:
            previous, self._last_tick = self._last_tick, current
            schedule = self._schedule.model_copy(deep=True) if self._schedule else None

        if previous is None or schedule is None or not schedule.enabled:
            return None
        due = _due_slots(schedule.times, previous, current, self.tz)
        if not due:
            return None

        logger.info("scheduler event=due slots=%s", ",".join(due))
        handle = self.coordinator.try_submit_scheduled(schedule.flow)
        if handle is not None:
            logger.info("scheduler event=triggered run_id=%s slot=%s", handle.run_id, due[-1])
        return handle

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self.tick()
        self._thread = threading.Thread(target=self._loop, name="flow-scheduler", daemon=True)
        self._thread.start()
        logger.info("scheduler event=started tick_s=%s timezone=%s", self.tick_s, self.tz.key)

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop_event.set()
        thread = self._thread
        if thread is not None:
            thread.join(timeout)
        self._thread = None
        logger.info("scheduler event=stopped")

    def _loop(self) -> None:
        while not self._stop_event.wait(self.tick_s):
            try:
                self.tick()
            except Exception as exc:  # noqa: BLE001
                logger.exception("scheduler event=tick_failed error=%s", exc)


def _parse_slot(slot: str) -> time:
    hour, minute = slot.split(":")
    return time(int(hour), int(minute))


def _due_slots(times: list[str], previous: datetime, current: datetime, tz: ZoneInfo) -> list[str]:
    if current <= previous:
        return []
    due: list[str] = []
    day = previous.date()
    while day <= current.date():
        for slot in times:
            candidate = datetime.combine(day, _parse_slot(slot), tzinfo=tz)
            if previous < candidate <= current:
                due.append(slot)
        day += timedelta(days=1)
    return due
