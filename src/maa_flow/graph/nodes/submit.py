"""Submitting: build and dispatch the invocation for the task at the cursor."""

from __future__ import annotations

import logging

from maa_flow.builder import build
from maa_flow.errors import ConfigurationError, DispatchError, ReconciliationAmbiguous
from maa_flow.graph.runtime import FlowRuntime
from maa_flow.graph.state import FlowState

logger = logging.getLogger(__name__)


def run(state: FlowState, runtime: FlowRuntime) -> FlowState:
    context = state["context"]
    if runtime.checkpoint_cancelled():
        return {"outcome": "cancelled", "reason": "cancel_requested"}

    task = context.current_task()
    if task is None:
        return {"outcome": "succeeded"}

    if state.get("recovered"):
        ambiguity = _reconciliation_problem(task.id, task.kind, runtime)
        if ambiguity is not None:
            warning = ReconciliationAmbiguous(ambiguity, task_id=task.id, cursor=context.cursor)
            logger.warning(
                "flow_run event=reconcile_skip run_id=%s cursor=%s task_id=%s reason=%s",
                context.run_id,
                context.cursor,
                task.id,
                warning.message,
            )
            context = runtime.persist(
                context,
                phase="advancing",
                skipped=[*context.skipped, task.id],
            )
            return {"context": context, "skip_current": True}

    context = runtime.persist(context, phase="submitting")
    try:
        invocation = build(task, runtime.catalog)
    except ConfigurationError as exc:
        exc.cursor = context.cursor
        logger.error(
            "flow_run event=configuration_error run_id=%s cursor=%s task_id=%s error=%s",
            context.run_id,
            context.cursor,
            task.id,
            exc.message,
        )
        return {
            "context": context,
            "outcome": "failed",
            "reason": "configuration_error",
            "error": exc.to_dict(),
        }

    # A confirmation belongs to the previous task's wait only.
    runtime.confirm_event.clear()
    try:
        runtime.engine.dispatch(invocation)
    except Exception as exc:  # noqa: BLE001
        error = exc if isinstance(exc, DispatchError) else DispatchError(str(exc))
        error.task_id = task.id
        error.cursor = context.cursor
        logger.error(
            "flow_run event=dispatch_error run_id=%s cursor=%s task_id=%s error=%s",
            context.run_id,
            context.cursor,
            task.id,
            error.message,
        )
        return {
            "context": context,
            "outcome": "failed",
            "reason": "dispatch_error",
            "error": error.to_dict(),
        }

    context = runtime.persist(
        context,
        phase="awaiting_completion",
        dispatched_at=runtime.now(),
        stale_since=None,
        submitted=[*context.submitted, task.id],
    )
    runtime.possibly_stale = False
    logger.info(
        "flow_run event=submitted run_id=%s cursor=%s task_id=%s kind=%s command=%s",
        context.run_id,
        context.cursor,
        task.id,
        task.kind,
        invocation.command,
    )

    update: FlowState = {"context": context, "in_flight": True, "skip_current": False}
    if runtime.checkpoint_cancelled():
        update.update({"outcome": "cancelled", "reason": "cancel_requested"})
    return update


def _reconciliation_problem(task_id: str, kind: str, runtime: FlowRuntime) -> str | None:
    if runtime.catalog.get(kind) is None:
        return f"Task kind {kind!r} is no longer in the catalog"
    if runtime.known_task_ids is not None and task_id not in runtime.known_task_ids:
        return f"Task {task_id} no longer exists in the saved flow"
    return None
