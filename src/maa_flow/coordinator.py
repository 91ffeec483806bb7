"""Caller-facing flow orchestration: one run slot, background runs, recovery.

Beginner terms used in this file:
- Run slot: the single mutual-exclusion region; a run must acquire it before it
  starts and releases it when it reaches a terminal state.
- Run handle: what callers get back from submit_flow; it can be waited on.
- Recovery: on startup a persisted run context is resumed through the
  reconcile entry of the state machine instead of being restarted.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Callable
from uuid import uuid4

from maa_flow import flows
from maa_flow.catalog import DEFAULT_CATALOG, TaskCatalog
from maa_flow.config.settings import Settings
from maa_flow.engine import logs as engine_logs
from maa_flow.engine.base import EngineClient
from maa_flow.errors import EmptyFlowError, RunAlreadyActive, RunNotFound, RunNotStale
from maa_flow.extractor import LogExtractor
from maa_flow.graph.nodes.advance import first_enabled_index
from maa_flow.graph.runtime import FlowRuntime
from maa_flow.graph.state import FlowState, RunEntry, initial_state
from maa_flow.graph.workflow import build_graph, recursion_limit
from maa_flow.models import (
    ExtractionReport,
    FlowSource,
    RecognitionKind,
    RunContext,
    RunHandleInfo,
    RunOutcome,
    RunStatus,
    RunTrigger,
    TaskFlow,
    TaskSpec,
)
from maa_flow.monitor import ExecutionMonitor
from maa_flow.storage.recovery import RecoveryStore

logger = logging.getLogger(__name__)


class RunSlot:
    """Single-instance run region guarded by a compare-and-set acquire."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._holder: str | None = None

    @property
    def holder(self) -> str | None:
        with self._lock:
            return self._holder

    def try_acquire(self, run_id: str) -> str | None:
        """Acquire for ``run_id``; returns None on success or the current holder."""
        with self._lock:
            if self._holder is not None:
                return self._holder
            self._holder = run_id
            return None

    def release(self, run_id: str) -> None:
        with self._lock:
            if self._holder == run_id:
                self._holder = None


@dataclass
class RunHandle:
    run_id: str
    trigger: RunTrigger
    started_at: datetime
    outcome: RunOutcome | None = None
    _done: threading.Event = field(default_factory=threading.Event, repr=False)

    def wait(self, timeout: float | None = None) -> RunOutcome | None:
        self._done.wait(timeout)
        return self.outcome

    def done(self) -> bool:
        return self._done.is_set()

    def info(self) -> RunHandleInfo:
        return RunHandleInfo(run_id=self.run_id, trigger=self.trigger, started_at=self.started_at)


class FlowCoordinator:
    def __init__(
        self,
        *,
        engine: EngineClient,
        store: RecoveryStore,
        extractor: LogExtractor,
        settings: Settings,
        catalog: TaskCatalog = DEFAULT_CATALOG,
        monitor: ExecutionMonitor | None = None,
        read_log: Callable[[], str | None] | None = None,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self.engine = engine
        self.store = store
        self.extractor = extractor
        self.settings = settings
        self.catalog = catalog
        self.monitor = monitor or ExecutionMonitor(
            engine,
            poll_interval_s=settings.poll_interval_s,
            backoff_max_s=settings.poll_backoff_max_s,
            lost_contact_after_s=settings.lost_contact_after_s,
            stale_after_s=settings.stale_after_s,
        )
        self.read_log = read_log or (lambda: engine_logs.read_log(settings.engine_log_path()))
        self._now = now or (lambda: datetime.now(UTC))
        self.slot = RunSlot()
        self._flow_lock = threading.Lock()
        self._active: FlowRuntime | None = None
        self._handle: RunHandle | None = None
        self._thread: threading.Thread | None = None

    # Saved flow

    def get_flow(self) -> TaskFlow:
        return self.store.load_flow()

    def save_flow(self, flow: TaskFlow) -> TaskFlow:
        with self._flow_lock:
            self.store.save_flow(flow)
        return flow

    def add_task(self, kind: str, **options: Any) -> TaskSpec:
        with self._flow_lock:
            flow, task = flows.add_task(self.store.load_flow(), kind, catalog=self.catalog, **options)
            self.store.save_flow(flow)
        return task

    def remove_task(self, task_id: str) -> TaskFlow:
        with self._flow_lock:
            flow = flows.remove_task(self.store.load_flow(), task_id)
            self.store.save_flow(flow)
        return flow

    def move_task(self, task_id: str, position: int) -> TaskFlow:
        with self._flow_lock:
            flow = flows.move_task(self.store.load_flow(), task_id, position)
            self.store.save_flow(flow)
        return flow

    def update_task(
        self,
        task_id: str,
        *,
        params: dict[str, Any] | None = None,
        enabled: bool | None = None,
    ) -> TaskFlow:
        with self._flow_lock:
            flow = flows.update_task(
                self.store.load_flow(),
                task_id,
                params=params,
                enabled=enabled,
                catalog=self.catalog,
            )
            self.store.save_flow(flow)
        return flow

    # Runs

    def submit_flow(
        self,
        flow: TaskFlow | None = None,
        *,
        trigger: RunTrigger = "manual",
        source: FlowSource | None = None,
    ) -> RunHandle:
        """Start a run of ``flow`` (the saved flow when omitted) on a background thread.

        Raises EmptyFlowError when no task is enabled and RunAlreadyActive when
        another run holds the slot.
        """
        if flow is None:
            flow, source = self.store.load_flow(), source or "saved"
        snapshot = flow.snapshot()
        if not any(task.enabled for task in snapshot):
            raise EmptyFlowError("Flow has no enabled tasks")

        run_id = uuid4().hex
        holder = self.slot.try_acquire(run_id)
        if holder is not None:
            logger.info("flow_run event=rejected trigger=%s active_run_id=%s", trigger, holder)
            raise RunAlreadyActive(holder)

        try:
            context = RunContext(
                run_id=run_id,
                flow_snapshot=snapshot,
                cursor=first_enabled_index(snapshot),
                phase="submitting",
                trigger=trigger,
                flow_source=source or "adhoc",
                started_at=self._now(),
            )
            runtime = self._build_runtime(context)
            context = runtime.persist(context)
        except Exception:
            self.slot.release(run_id)
            raise

        logger.info(
            "flow_run event=start run_id=%s trigger=%s tasks=%s enabled=%s",
            run_id,
            trigger,
            len(snapshot),
            sum(1 for task in snapshot if task.enabled),
        )
        return self._start(runtime, initial_state(context, entry="submit"))

    def try_submit_scheduled(self, flow: TaskFlow) -> RunHandle | None:
        try:
            return self.submit_flow(flow, trigger="schedule", source="schedule")
        except RunAlreadyActive as exc:
            logger.info("scheduler event=skipped reason=run_active active_run_id=%s", exc.active_run_id)
        except EmptyFlowError:
            logger.info("scheduler event=skipped reason=empty_flow")
        return None

    def recover(self) -> RunHandle | None:
        """Resume a persisted run context, if any, through the reconcile entry."""
        context = self.store.load()
        if context is None:
            logger.info("flow_run event=recovery_none")
            return None

        holder = self.slot.try_acquire(context.run_id)
        if holder is not None:
            logger.warning(
                "flow_run event=recovery_deferred run_id=%s active_run_id=%s",
                context.run_id,
                holder,
            )
            return None

        try:
            runtime = self._build_runtime(context, known_task_ids=self._known_task_ids(context))
            runtime.context = context
        except Exception:
            self.slot.release(context.run_id)
            raise
        logger.info(
            "flow_run event=recovering run_id=%s cursor=%s phase=%s started_at=%s",
            context.run_id,
            context.cursor,
            context.phase,
            context.started_at,
        )
        return self._start(runtime, initial_state(context, entry="reconcile"))

    def cancel(self, run_id: str) -> RunStatus:
        runtime = self._require_active(run_id)
        runtime.cancel_event.set()
        logger.info("flow_run event=cancel_requested run_id=%s", run_id)
        return self.status()

    def confirm(self, run_id: str) -> RunStatus:
        """Operator confirmation that a possibly-stale task is done."""
        runtime = self._require_active(run_id)
        if not runtime.possibly_stale:
            raise RunNotStale(f"Run {run_id} has no possibly-stale task to confirm")
        runtime.confirm_event.set()
        logger.info("flow_run event=confirm_requested run_id=%s", run_id)
        return self.status()

    def status(self) -> RunStatus:
        runtime = self._active
        context = runtime.context if runtime is not None else None
        if runtime is None or context is None:
            return RunStatus(state="idle")
        return RunStatus(
            state="running",
            run_id=context.run_id,
            phase=context.phase,
            trigger=context.trigger,
            cursor=context.cursor,
            total_tasks=len(context.flow_snapshot),
            current_task=context.current_task(),
            started_at=context.started_at,
            possibly_stale=runtime.possibly_stale,
            cancel_requested=runtime.cancel_event.is_set(),
        )

    def active_handle(self) -> RunHandle | None:
        handle = self._handle
        return handle if handle is not None and not handle.done() else None

    def latest_outcome(self) -> RunOutcome | None:
        return self.store.latest_outcome()

    def extract_latest(self, kind: RecognitionKind) -> ExtractionReport:
        return self.extractor.extract_report(kind, self.read_log())

    def wait_idle(self, timeout: float | None = None) -> bool:
        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    # Internals

    def _build_runtime(
        self,
        context: RunContext,
        *,
        known_task_ids: frozenset[str] | None = None,
    ) -> FlowRuntime:
        return FlowRuntime(
            engine=self.engine,
            monitor=self.monitor,
            store=self.store,
            extractor=self.extractor,
            settings=self.settings,
            read_log=self.read_log,
            catalog=self.catalog,
            known_task_ids=known_task_ids,
            now=self._now,
        )

    def _known_task_ids(self, context: RunContext) -> frozenset[str] | None:
        if context.flow_source == "saved":
            return frozenset(task.id for task in self.store.load_flow().tasks)
        if context.flow_source == "schedule":
            schedule = self.store.load_schedule()
            return frozenset(task.id for task in schedule.flow.tasks) if schedule else frozenset()
        return None

    def _require_active(self, run_id: str) -> FlowRuntime:
        runtime = self._active
        if runtime is None or runtime.context is None or runtime.context.run_id != run_id:
            raise RunNotFound(f"Run {run_id} is not active")
        return runtime

    def _start(self, runtime: FlowRuntime, state: FlowState) -> RunHandle:
        context = state["context"]
        handle = RunHandle(run_id=context.run_id, trigger=context.trigger, started_at=context.started_at)
        self._active = runtime
        self._handle = handle
        thread = threading.Thread(
            target=self._execute,
            args=(runtime, handle, state),
            name=f"flow-run-{context.run_id[:8]}",
            daemon=True,
        )
        self._thread = thread
        thread.start()
        return handle

    def _execute(self, runtime: FlowRuntime, handle: RunHandle, state: FlowState) -> None:
        context = state["context"]
        try:
            graph = build_graph(runtime)
            result: dict[str, Any] = graph.invoke(
                state,
                config={"recursion_limit": recursion_limit(len(context.flow_snapshot))},
            )
            handle.outcome = result.get("run_outcome")
        except Exception as exc:  # noqa: BLE001
            logger.exception("flow_run event=crashed run_id=%s error=%s", context.run_id, exc)
            handle.outcome = self._record_crash(runtime, context, state, exc)
        finally:
            self._active = None
            self.slot.release(context.run_id)
            handle._done.set()

    def _record_crash(
        self,
        runtime: FlowRuntime,
        initial: RunContext,
        state: FlowState,
        exc: Exception,
    ) -> RunOutcome | None:
        context = runtime.context or initial
        outcome = RunOutcome(
            run_id=context.run_id,
            status="failed",
            trigger=context.trigger,
            recovered=bool(state.get("recovered")),
            reason="internal_error",
            error={"code": "internal_error", "message": str(exc)},
            cursor=context.cursor,
            total_tasks=len(context.flow_snapshot),
            submitted=list(context.submitted),
            skipped=list(context.skipped),
            started_at=context.started_at,
            finished_at=self._now(),
        )
        try:
            self.store.save_outcome(outcome)
            self.store.save(None)
        except Exception as store_exc:  # noqa: BLE001
            logger.error(
                "flow_run event=clear_failed run_id=%s error=%s", context.run_id, store_exc
            )
        return outcome
