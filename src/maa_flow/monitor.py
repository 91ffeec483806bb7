"""Polling-based observation of the engine's current job.

The engine has no completion callback, so completion means "a poll saw it idle".
A poll that fails is *unknown*, never idle: unknown polls are retried with
exponential backoff until the lost-contact ceiling, at which point the wait
gives up with MonitorUnknown.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import UTC, datetime
from typing import Callable, Literal

from maa_flow.engine.base import EngineClient
from maa_flow.errors import MonitorUnknown
from maa_flow.models import EngineStatus

logger = logging.getLogger(__name__)

WaitResult = Literal["idle", "cancelled", "confirmed"]


class ExecutionMonitor:
    def __init__(
        self,
        engine: EngineClient,
        *,
        poll_interval_s: float = 1.0,
        backoff_max_s: float = 8.0,
        lost_contact_after_s: float = 120.0,
        stale_after_s: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self.engine = engine
        self.poll_interval_s = poll_interval_s
        self.backoff_max_s = backoff_max_s
        self.lost_contact_after_s = lost_contact_after_s
        self.stale_after_s = stale_after_s
        self._clock = clock
        self._now = now or (lambda: datetime.now(UTC))

    def poll(self) -> EngineStatus:
        """One status snapshot; raises MonitorUnknown when the engine cannot be read."""
        try:
            return self.engine.status()
        except Exception as exc:  # noqa: BLE001
            raise MonitorUnknown(f"Engine status unavailable: {exc}") from exc

    def poll_until_known(
        self,
        *,
        cancel_event: threading.Event,
        task_id: str | None = None,
    ) -> EngineStatus | None:
        """Poll until a status is known; None when cancelled first.

        Raises MonitorUnknown once polls have failed for ``lost_contact_after_s``.
        """
        failures = 0
        first_failure_at: float | None = None
        while not cancel_event.is_set():
            try:
                return self.poll()
            except MonitorUnknown as exc:
                failures += 1
                if first_failure_at is None:
                    first_failure_at = self._clock()
                delay = self._backoff_or_give_up(exc, failures, first_failure_at, task_id)
                if cancel_event.wait(delay):
                    return None
        return None

    def is_possibly_stale(self, status: EngineStatus, now: datetime | None = None) -> bool:
        if not status.is_running or status.started_at is None:
            return False
        current = now or self._now()
        return (current - status.started_at).total_seconds() > self.stale_after_s

    def wait_until_idle(
        self,
        *,
        cancel_event: threading.Event,
        confirm_event: threading.Event | None = None,
        on_stale: Callable[[EngineStatus], None] | None = None,
        task_id: str | None = None,
    ) -> WaitResult:
        """Block until the engine reports idle, the run is cancelled, or the operator confirms.

        Raises MonitorUnknown once polls have failed continuously for longer than
        ``lost_contact_after_s``.
        """
        failures = 0
        first_failure_at: float | None = None
        stale_reported = False

        while True:
            if cancel_event.is_set():
                return "cancelled"
            if confirm_event is not None and confirm_event.is_set():
                confirm_event.clear()
                logger.warning("monitor event=operator_confirmed task_id=%s", task_id)
                return "confirmed"

            try:
                status = self.poll()
            except MonitorUnknown as exc:
                failures += 1
                if first_failure_at is None:
                    first_failure_at = self._clock()
                delay = self._backoff_or_give_up(exc, failures, first_failure_at, task_id)
                if cancel_event.wait(delay):
                    return "cancelled"
                continue

            failures = 0
            first_failure_at = None
            if not status.is_running:
                return "idle"

            if not stale_reported and self.is_possibly_stale(status):
                stale_reported = True
                logger.warning(
                    "monitor event=possibly_stale task_id=%s task_name=%s started_at=%s",
                    task_id,
                    status.task_name,
                    status.started_at,
                )
                if on_stale is not None:
                    on_stale(status)

            if cancel_event.wait(self.poll_interval_s):
                return "cancelled"

    def _backoff_or_give_up(
        self,
        exc: MonitorUnknown,
        failures: int,
        first_failure_at: float,
        task_id: str | None,
    ) -> float:
        elapsed = self._clock() - first_failure_at
        if elapsed >= self.lost_contact_after_s:
            logger.error(
                "monitor event=lost_contact task_id=%s failures=%s elapsed_s=%.1f",
                task_id,
                failures,
                elapsed,
            )
            raise MonitorUnknown(
                f"Lost contact with engine after {elapsed:.1f}s: {exc.message}",
                task_id=task_id,
            ) from exc
        delay = min(self.poll_interval_s * (2 ** (failures - 1)), self.backoff_max_s)
        logger.warning(
            "monitor event=poll_unknown task_id=%s failures=%s retry_in_s=%.2f",
            task_id,
            failures,
            delay,
        )
        return delay
