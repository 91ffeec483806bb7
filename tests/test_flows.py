from __future__ import annotations

import pytest

from maa_flow import flows
from maa_flow.errors import ConfigurationError
from maa_flow.models import TaskFlow, TaskSpec


def _session_flow() -> TaskFlow:
    flow, _ = flows.add_task(TaskFlow(), "startup")
    flow, _ = flows.add_task(flow, "fight", params={"stage": "CE-6"})
    flow, _ = flows.add_task(flow, "closedown")
    return flow


def test_add_task_fills_catalog_defaults() -> None:
    flow, task = flows.add_task(TaskFlow(), "infrast", params={"drones": "Combat"})

    assert flow.tasks == [task]
    assert task.name == "Base shift"
    assert task.params["mode"] == "0"
    assert task.params["threshold"] == "0.3"
    assert task.params["drones"] == "Combat"


def test_add_task_at_position_keeps_input_untouched() -> None:
    original = _session_flow()

    updated, task = flows.add_task(original, "award", position=1)

    assert [item.kind for item in updated.tasks] == ["startup", "award", "fight", "closedown"]
    assert [item.kind for item in original.tasks] == ["startup", "fight", "closedown"]
    assert updated.tasks[1].id == task.id


def test_add_unknown_kind_is_rejected() -> None:
    with pytest.raises(ConfigurationError):
        flows.add_task(TaskFlow(), "legacy_kind")


def test_client_type_stays_equal_across_session_tasks() -> None:
    flow = _session_flow()
    startup = flow.tasks[0]

    updated = flows.update_task(flow, startup.id, params={"clientType": "Bilibili"})

    client_types = {task.kind: task.params.get("clientType") for task in updated.tasks}
    assert client_types == {"startup": "Bilibili", "fight": None, "closedown": "Bilibili"}


def test_added_session_task_propagates_its_client_type() -> None:
    flow = _session_flow()

    updated, _ = flows.add_task(flow, "closedown", params={"clientType": "YoStarJP"})

    session = [task for task in updated.tasks if task.kind in {"startup", "closedown"}]
    assert {task.params["clientType"] for task in session} == {"YoStarJP"}


def test_update_task_toggles_and_merges() -> None:
    flow = _session_flow()
    fight = flow.tasks[1]

    updated = flows.update_task(flow, fight.id, params={"times": 2}, enabled=False)

    changed = updated.get(fight.id)
    assert changed is not None
    assert changed.enabled is False
    assert changed.params == {"stage": "CE-6", "times": 2}
    assert changed.id == fight.id


def test_move_task_clamps_position() -> None:
    flow = _session_flow()
    startup = flow.tasks[0]

    moved = flows.move_task(flow, startup.id, 99)
    back = flows.move_task(moved, startup.id, 0)

    assert [task.kind for task in moved.tasks] == ["fight", "closedown", "startup"]
    assert [task.kind for task in back.tasks] == ["startup", "fight", "closedown"]


def test_remove_task() -> None:
    flow = _session_flow()

    updated = flows.remove_task(flow, flow.tasks[1].id)

    assert [task.kind for task in updated.tasks] == ["startup", "closedown"]
    with pytest.raises(KeyError):
        flows.remove_task(updated, "missing")


def test_task_id_is_immutable() -> None:
    task = TaskSpec(kind="award")

    with pytest.raises(ValueError):
        task.id = "other"
