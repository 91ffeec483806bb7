"""Finalize: stop an in-flight job on cancel, record the outcome, clear the context."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError

from maa_flow.graph.runtime import FlowRuntime
from maa_flow.graph.state import FlowState
from maa_flow.models import RunOutcome

logger = logging.getLogger(__name__)


def run(state: FlowState, runtime: FlowRuntime) -> FlowState:
    context = state["context"]
    status = state.get("outcome") or ("succeeded" if context.is_complete() else "failed")

    if status == "cancelled" and state.get("in_flight"):
        _stop_engine(runtime, context.run_id)

    error = state.get("error")
    failed_task_id = None
    if status == "failed":
        task = context.current_task()
        failed_task_id = (error or {}).get("task_id") or (task.id if task else None)

    outcome = RunOutcome(
        run_id=context.run_id,
        status=status,
        trigger=context.trigger,
        recovered=bool(state.get("recovered")),
        reason=state.get("reason"),
        error=error,
        failed_task_id=failed_task_id,
        cursor=None if status == "succeeded" else context.cursor,
        total_tasks=len(context.flow_snapshot),
        submitted=list(context.submitted),
        skipped=list(context.skipped),
        recognitions=dict(state.get("recognitions", {})),
        started_at=context.started_at,
        finished_at=runtime.now(),
    )
    runtime.store.save_outcome(outcome)
    runtime.store.save(None)
    runtime.context = None
    runtime.possibly_stale = False

    log = logger.info if status == "succeeded" else logger.warning
    log(
        "flow_run event=finished run_id=%s status=%s reason=%s cursor=%s submitted=%s skipped=%s",
        outcome.run_id,
        outcome.status,
        outcome.reason,
        outcome.cursor,
        len(outcome.submitted),
        len(outcome.skipped),
    )
    return {"run_outcome": outcome}


def _stop_engine(runtime: FlowRuntime, run_id: str) -> None:
    """Best-effort stop; the run counts as cancelled whether or not the engine acknowledges."""
    timeout_s = runtime.settings.stop_timeout_s
    pool = ThreadPoolExecutor(max_workers=1)
    future = pool.submit(runtime.engine.stop)
    try:
        stopped = future.result(timeout=timeout_s)
        logger.info("flow_run event=stop_requested run_id=%s acknowledged=%s", run_id, stopped)
    except TimeoutError:
        logger.warning("flow_run event=stop_timeout run_id=%s timeout_s=%.2f", run_id, timeout_s)
    except Exception as exc:  # noqa: BLE001
        logger.warning("flow_run event=stop_failed run_id=%s error=%s", run_id, exc)
    finally:
        pool.shutdown(wait=False)
