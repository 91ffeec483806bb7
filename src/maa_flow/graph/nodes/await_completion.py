"""AwaitingCompletion: poll until the submitted job goes idle, then settle."""

from __future__ import annotations

import logging

from maa_flow.errors import MonitorUnknown
from maa_flow.graph.runtime import FlowRuntime
from maa_flow.graph.state import FlowState

logger = logging.getLogger(__name__)


def run(state: FlowState, runtime: FlowRuntime) -> FlowState:
    context = state["context"]
    task = context.current_task()
    if runtime.checkpoint_cancelled():
        return {"outcome": "cancelled", "reason": "cancel_requested"}
    if task is None:
        return {"in_flight": False}

    try:
        result = runtime.monitor.wait_until_idle(
            cancel_event=runtime.cancel_event,
            confirm_event=runtime.confirm_event,
            on_stale=lambda status: runtime.flag_stale(task.id, status),
            task_id=task.id,
        )
    except MonitorUnknown as exc:
        exc.cursor = context.cursor
        return {
            "context": context,
            "outcome": "failed",
            "reason": "lost_contact",
            "error": exc.to_dict(),
        }

    context = runtime.context or context
    if result == "cancelled":
        return {"context": context, "outcome": "cancelled", "reason": "cancel_requested"}

    runtime.possibly_stale = False
    logger.info(
        "flow_run event=task_idle run_id=%s cursor=%s task_id=%s via=%s",
        context.run_id,
        context.cursor,
        task.id,
        result,
    )
    recognitions = dict(state.get("recognitions", {}))
    spec = runtime.catalog.get(task.kind)
    if spec is not None and spec.recognition is not None:
        report = runtime.extractor.extract_report(spec.recognition, runtime.read_log())
        recognitions[task.id] = {
            "kind": spec.recognition,
            "count": report.result.count if report.result else None,
            "complete": report.result.complete if report.result else False,
            "reason": report.reason,
        }

    context = runtime.persist(context, phase="advancing", stale_since=None)
    update: FlowState = {"context": context, "in_flight": False, "recognitions": recognitions}

    if _has_following_task(context.flow_snapshot, context.cursor):
        delay = runtime.settle_delay(task.kind)
        if delay > 0 and runtime.cancel_event.wait(delay):
            update.update({"outcome": "cancelled", "reason": "cancel_requested"})
            return update
    if runtime.checkpoint_cancelled():
        update.update({"outcome": "cancelled", "reason": "cancel_requested"})
    return update


def _has_following_task(snapshot: list, cursor: int) -> bool:
    return any(task.enabled for task in snapshot[cursor + 1 :])
