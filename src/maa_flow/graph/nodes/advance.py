"""Advancing: move the cursor to the next enabled task or finish the run."""

from __future__ import annotations

import logging

from maa_flow.graph.runtime import FlowRuntime
from maa_flow.graph.state import FlowState
from maa_flow.models import TaskSpec

logger = logging.getLogger(__name__)


def next_enabled_index(snapshot: list[TaskSpec], after: int) -> int:
    """First enabled index strictly after ``after``; ``len(snapshot)`` when none remain."""
    for index in range(after + 1, len(snapshot)):
        if snapshot[index].enabled:
            return index
    return len(snapshot)


def first_enabled_index(snapshot: list[TaskSpec]) -> int:
    return next_enabled_index(snapshot, -1)


def run(state: FlowState, runtime: FlowRuntime) -> FlowState:
    context = state["context"]
    cursor = next_enabled_index(context.flow_snapshot, context.cursor)
    if cursor >= len(context.flow_snapshot):
        context = runtime.persist(context, cursor=cursor, phase="advancing")
        logger.info("flow_run event=flow_complete run_id=%s cursor=%s", context.run_id, cursor)
        return {"context": context, "outcome": "succeeded", "skip_current": False}

    context = runtime.persist(context, cursor=cursor, phase="submitting")
    logger.info(
        "flow_run event=advanced run_id=%s cursor=%s task_id=%s",
        context.run_id,
        cursor,
        context.flow_snapshot[cursor].id,
    )
    return {"context": context, "skip_current": False}
