"""Recovery entry: reconcile a persisted context against a live engine poll.

- Engine running the task at the cursor: wait for it (no resubmission).
- Engine idle, context persisted before dispatch was confirmed: resubmit.
- Engine idle otherwise: the task finished unobserved; advance past it.
"""

from __future__ import annotations

import logging

from maa_flow.errors import MonitorUnknown
from maa_flow.graph.runtime import FlowRuntime
from maa_flow.graph.state import FlowState

logger = logging.getLogger(__name__)


def run(state: FlowState, runtime: FlowRuntime) -> FlowState:
    context = state["context"]
    task = context.current_task()
    if task is None:
        return {"skip_current": True}

    try:
        status = runtime.monitor.poll_until_known(
            cancel_event=runtime.cancel_event, task_id=task.id
        )
        if status is not None and status.is_running and not status.matches(task.id, task.label()):
            logger.warning(
                "flow_run event=reconcile_foreign_job run_id=%s cursor=%s task_id=%s engine_task=%s",
                context.run_id,
                context.cursor,
                task.id,
                status.task_name,
            )
            waited = runtime.monitor.wait_until_idle(
                cancel_event=runtime.cancel_event,
                confirm_event=runtime.confirm_event,
                on_stale=lambda observed: runtime.flag_stale(task.id, observed),
                task_id=task.id,
            )
            context = runtime.context or context
            if runtime.possibly_stale:
                context = runtime.persist(context, stale_since=None)
                runtime.possibly_stale = False
            status = None if waited == "cancelled" else status.model_copy(update={"is_running": False})
    except MonitorUnknown as exc:
        exc.cursor = context.cursor
        return {"outcome": "failed", "reason": "lost_contact", "error": exc.to_dict()}

    if status is None:
        return {"outcome": "cancelled", "reason": "cancel_requested"}

    if status.is_running:
        context = runtime.persist(context, phase="awaiting_completion")
        decision = "await"
        update: FlowState = {"context": context, "in_flight": True, "skip_current": False}
    elif context.phase == "submitting":
        decision = "resubmit"
        update = {"context": context, "skip_current": False}
    else:
        context = runtime.persist(context, phase="advancing")
        decision = "advance"
        update = {"context": context, "skip_current": True}

    logger.info(
        "flow_run event=reconciled run_id=%s cursor=%s task_id=%s phase=%s decision=%s",
        context.run_id,
        context.cursor,
        task.id,
        state["context"].phase,
        decision,
    )
    return update
