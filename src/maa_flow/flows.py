"""Editing operations on a TaskFlow; each returns a new flow and leaves the input untouched."""

from __future__ import annotations

from typing import Any

from maa_flow.catalog import DEFAULT_CATALOG, SESSION_COUPLED_PARAM, TaskCatalog
from maa_flow.errors import ConfigurationError
from maa_flow.models import TaskFlow, TaskSpec


def add_task(
    flow: TaskFlow,
    kind: str,
    *,
    params: dict[str, Any] | None = None,
    name: str | None = None,
    enabled: bool = True,
    position: int | None = None,
    catalog: TaskCatalog = DEFAULT_CATALOG,
) -> tuple[TaskFlow, TaskSpec]:
    spec = catalog.get(kind)
    if spec is None:
        raise ConfigurationError(f"Unknown task kind: {kind}", kind=kind)
    task = TaskSpec(
        kind=kind,
        name=name or spec.label,
        params={**spec.default_params(), **(params or {})},
        enabled=enabled,
    )
    tasks = list(flow.tasks)
    if position is None or position >= len(tasks):
        tasks.append(task)
    else:
        tasks.insert(max(position, 0), task)
    updated = TaskFlow(tasks=tasks)
    if SESSION_COUPLED_PARAM in (params or {}) and kind in catalog.session_kinds():
        updated = _sync_session_param(updated, task.id, catalog)
    return updated, task


def remove_task(flow: TaskFlow, task_id: str) -> TaskFlow:
    index = flow.index_of(task_id)
    return TaskFlow(tasks=[task for i, task in enumerate(flow.tasks) if i != index])


def move_task(flow: TaskFlow, task_id: str, position: int) -> TaskFlow:
    """Move a task to ``position`` (clamped); other tasks keep their relative order."""
    tasks = list(flow.tasks)
    task = tasks.pop(flow.index_of(task_id))
    tasks.insert(min(max(position, 0), len(tasks)), task)
    return TaskFlow(tasks=tasks)


def update_task(
    flow: TaskFlow,
    task_id: str,
    *,
    params: dict[str, Any] | None = None,
    enabled: bool | None = None,
    catalog: TaskCatalog = DEFAULT_CATALOG,
) -> TaskFlow:
    """Merge ``params`` into a task and/or toggle it; session tasks stay in sync."""
    index = flow.index_of(task_id)
    current = flow.tasks[index]
    update: dict[str, Any] = {}
    if params is not None:
        update["params"] = {**current.params, **params}
    if enabled is not None:
        update["enabled"] = enabled

    tasks = list(flow.tasks)
    tasks[index] = current.model_copy(update=update, deep=True)
    updated = TaskFlow(tasks=tasks)
    if params and SESSION_COUPLED_PARAM in params and current.kind in catalog.session_kinds():
        updated = _sync_session_param(updated, task_id, catalog)
    return updated


def _sync_session_param(flow: TaskFlow, source_id: str, catalog: TaskCatalog) -> TaskFlow:
    source = flow.get(source_id)
    if source is None:
        return flow
    value = source.params.get(SESSION_COUPLED_PARAM)
    session_kinds = catalog.session_kinds()
    tasks: list[TaskSpec] = []
    for task in flow.tasks:
        if task.id != source_id and task.kind in session_kinds:
            task = task.model_copy(
                update={"params": {**task.params, SESSION_COUPLED_PARAM: value}}, deep=True
            )
        tasks.append(task)
    return TaskFlow(tasks=tasks)
