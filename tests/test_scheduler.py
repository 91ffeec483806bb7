from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from conftest import FakeEngine, wait_for
from pydantic import ValidationError

from maa_flow.coordinator import FlowCoordinator
from maa_flow.models import ScheduleConfig, TaskFlow, TaskSpec
from maa_flow.scheduler import SchedulerTrigger
from maa_flow.storage import RecoveryStore

MORNING = datetime(2026, 5, 1, 7, 59, 30, tzinfo=UTC)


def _schedule(*times: str, enabled: bool = True) -> ScheduleConfig:
    return ScheduleConfig(
        enabled=enabled,
        times=list(times),
        flow=TaskFlow(tasks=[TaskSpec(kind="award"), TaskSpec(kind="mall")]),
    )


def _trigger(coordinator: FlowCoordinator, store: RecoveryStore) -> SchedulerTrigger:
    return SchedulerTrigger(coordinator, store, timezone="UTC", tick_s=0.05)


def test_times_are_normalized() -> None:
    schedule = ScheduleConfig(times=["8:05", "08:05", " 23:59", "04:00"])

    assert schedule.times == ["04:00", "08:05", "23:59"]
    with pytest.raises(ValidationError):
        ScheduleConfig(times=["24:00"])


def test_first_tick_only_sets_the_baseline(
    coordinator: FlowCoordinator, store: RecoveryStore, engine: FakeEngine
) -> None:
    trigger = _trigger(coordinator, store)
    trigger.set_schedule(_schedule("08:00"))

    assert trigger.tick(datetime(2026, 5, 1, 8, 0, tzinfo=UTC)) is None
    assert engine.dispatched == []


def test_due_slot_starts_the_schedule_flow(
    coordinator: FlowCoordinator, store: RecoveryStore, engine: FakeEngine
) -> None:
    trigger = _trigger(coordinator, store)
    schedule = trigger.set_schedule(_schedule("08:00", "20:00"))

    assert trigger.tick(MORNING) is None
    handle = trigger.tick(MORNING + timedelta(seconds=40))

    assert handle is not None
    assert handle.trigger == "schedule"
    outcome = handle.wait(timeout=5.0)
    assert outcome is not None
    assert outcome.status == "succeeded"
    assert engine.task_ids == [task.id for task in schedule.flow.tasks]
    assert trigger.tick(MORNING + timedelta(minutes=5)) is None


def test_tick_is_skipped_while_a_run_is_active(
    coordinator: FlowCoordinator, store: RecoveryStore, engine: FakeEngine
) -> None:
    engine.hold = True
    manual = coordinator.submit_flow(TaskFlow(tasks=[TaskSpec(kind="recruit")]))
    assert wait_for(lambda: coordinator.status().phase == "awaiting_completion")
    trigger = _trigger(coordinator, store)
    trigger.set_schedule(_schedule("08:00"))

    trigger.tick(MORNING)
    skipped = trigger.tick(MORNING + timedelta(minutes=1))

    assert skipped is None
    status = coordinator.status()
    assert status.run_id == manual.run_id
    assert status.trigger == "manual"
    assert len(engine.dispatched) == 1


def test_disabled_schedule_never_fires(
    coordinator: FlowCoordinator, store: RecoveryStore, engine: FakeEngine
) -> None:
    trigger = _trigger(coordinator, store)
    trigger.set_schedule(_schedule("08:00", enabled=False))

    trigger.tick(MORNING)

    assert trigger.tick(MORNING + timedelta(minutes=1)) is None
    assert trigger.next_fire_time(MORNING) is None


def test_slots_across_midnight(
    coordinator: FlowCoordinator, store: RecoveryStore, engine: FakeEngine
) -> None:
    trigger = _trigger(coordinator, store)
    trigger.set_schedule(_schedule("00:00"))
    late = datetime(2026, 5, 1, 23, 59, 50, tzinfo=UTC)

    trigger.tick(late)
    handle = trigger.tick(late + timedelta(seconds=20))

    assert handle is not None
    handle.wait(timeout=5.0)


def test_next_fire_time(coordinator: FlowCoordinator, store: RecoveryStore) -> None:
    trigger = _trigger(coordinator, store)
    assert trigger.next_fire_time(MORNING) is None

    trigger.set_schedule(_schedule("08:00", "04:30"))

    assert trigger.next_fire_time(MORNING) == datetime(2026, 5, 1, 8, 0, tzinfo=UTC)
    evening = datetime(2026, 5, 1, 21, 0, tzinfo=UTC)
    assert trigger.next_fire_time(evening) == datetime(2026, 5, 2, 4, 30, tzinfo=UTC)


def test_schedule_is_persisted(coordinator: FlowCoordinator, store: RecoveryStore) -> None:
    schedule = _schedule("04:00")
    _trigger(coordinator, store).set_schedule(schedule)

    reloaded = _trigger(coordinator, store)

    assert reloaded.get_schedule() == schedule
    reloaded.clear_schedule()
    assert store.load_schedule() is None
    assert _trigger(coordinator, store).get_schedule() is None


def test_start_and_stop_loop(coordinator: FlowCoordinator, store: RecoveryStore) -> None:
    trigger = _trigger(coordinator, store)

    trigger.start()
    trigger.start()
    trigger.stop(timeout=1.0)

    assert trigger._thread is None
