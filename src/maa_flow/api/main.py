"""FastAPI app entrypoint for maa-flow.

Beginner terms used in this file:
- app.state: where the shared coordinator and scheduler live.
- Lifespan: startup/shutdown hook; startup resumes an interrupted run and
  starts the scheduler, shutdown stops the scheduler (an active run keeps its
  persisted context so the next start can resume it).
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Query, Request

from maa_flow.config.settings import Settings, get_settings
from maa_flow.coordinator import FlowCoordinator
from maa_flow.engine import build_engine
from maa_flow.engine import logs as engine_logs
from maa_flow.engine.logs import CleanupReport
from maa_flow.errors import (
    ConfigurationError,
    EmptyFlowError,
    EngineUnavailable,
    FlowError,
    RunAlreadyActive,
    RunNotFound,
    RunNotStale,
)
from maa_flow.extractor import LogExtractor
from maa_flow.models import (
    AddTaskRequest,
    EngineStatus,
    ExtractionReport,
    MoveTaskRequest,
    RecognitionKind,
    RunHandleInfo,
    RunOutcome,
    RunStatus,
    ScheduleConfig,
    ScheduleView,
    SubmitFlowRequest,
    TaskFlow,
    TaskPatchRequest,
    TaskSpec,
)
from maa_flow.reference import ReferenceRepository
from maa_flow.scheduler import SchedulerTrigger
from maa_flow.storage import RecoveryStore, build_document_store

logger = logging.getLogger(__name__)

_STATUS_CODES: dict[type[FlowError], int] = {
    RunAlreadyActive: 409,
    RunNotStale: 409,
    EmptyFlowError: 400,
    ConfigurationError: 400,
    RunNotFound: 404,
    EngineUnavailable: 503,
}


def build_coordinator(settings: Settings) -> FlowCoordinator:
    store = RecoveryStore(build_document_store(settings))
    store.migrate()
    reference = ReferenceRepository(
        settings.resolved_reference_dir(),
        remote_base=settings.reference_remote_base or None,
        timeout_s=settings.reference_timeout_s,
    )
    return FlowCoordinator(
        engine=build_engine(settings),
        store=store,
        extractor=LogExtractor(reference),
        settings=settings,
    )


def _ensure_runtime_state(
    app: FastAPI,
    *,
    settings: Settings,
    coordinator_override: FlowCoordinator | None,
) -> None:
    if not hasattr(app.state, "settings"):
        app.state.settings = settings

    if not hasattr(app.state, "coordinator"):
        app.state.coordinator = coordinator_override or build_coordinator(settings)

    if not hasattr(app.state, "scheduler"):
        coordinator: FlowCoordinator = app.state.coordinator
        app.state.scheduler = SchedulerTrigger(
            coordinator,
            coordinator.store,
            timezone=settings.schedule_timezone,
            tick_s=settings.scheduler_tick_s,
        )


def _http_error(exc: FlowError) -> HTTPException:
    for error_type, status_code in _STATUS_CODES.items():
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=exc.to_dict())
    return HTTPException(status_code=500, detail=exc.to_dict())


def create_app(
    *,
    coordinator: FlowCoordinator | None = None,
    settings_override: Settings | None = None,
) -> FastAPI:
    settings = settings_override or get_settings()
    logging.basicConfig(level=settings.log_level.upper())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _ensure_runtime_state(app, settings=settings, coordinator_override=coordinator)
        app.state.coordinator.recover()
        if settings.scheduler_enabled:
            app.state.scheduler.start()
        yield
        app.state.scheduler.stop()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)

    # Keep test paths reliable when lifespan is not executed by the client.
    if coordinator is not None:
        _ensure_runtime_state(app, settings=settings, coordinator_override=coordinator)

    def _coordinator(request: Request) -> FlowCoordinator:
        if not hasattr(request.app.state, "coordinator"):
            _ensure_runtime_state(request.app, settings=settings, coordinator_override=coordinator)
        return request.app.state.coordinator

    def _scheduler(request: Request) -> SchedulerTrigger:
        _coordinator(request)
        return request.app.state.scheduler

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "service": settings.app_name}

    @app.get("/catalog")
    def catalog(request: Request) -> dict[str, list[dict[str, Any]]]:
        specs = _coordinator(request).catalog.specs.values()
        return {"kinds": [spec.describe() for spec in specs]}

    @app.get("/flow", response_model=TaskFlow)
    def get_flow(request: Request) -> TaskFlow:
        return _coordinator(request).get_flow()

    @app.put("/flow", response_model=TaskFlow)
    def put_flow(payload: TaskFlow, request: Request) -> TaskFlow:
        flow_coordinator = _coordinator(request)
        for task in payload.tasks:
            if flow_coordinator.catalog.get(task.kind) is None:
                raise _http_error(
                    ConfigurationError(f"Unknown task kind: {task.kind}", kind=task.kind, task_id=task.id)
                )
        return flow_coordinator.save_flow(payload)

    @app.post("/flow/tasks", response_model=TaskSpec)
    def add_task(payload: AddTaskRequest, request: Request) -> TaskSpec:
        try:
            return _coordinator(request).add_task(
                payload.kind,
                params=payload.params,
                name=payload.name,
                enabled=payload.enabled,
                position=payload.position,
            )
        except FlowError as exc:
            raise _http_error(exc) from exc

    @app.patch("/flow/tasks/{task_id}", response_model=TaskFlow)
    def patch_task(task_id: str, payload: TaskPatchRequest, request: Request) -> TaskFlow:
        try:
            return _coordinator(request).update_task(
                task_id, params=payload.params, enabled=payload.enabled
            )
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="Task not found") from exc

    @app.delete("/flow/tasks/{task_id}", response_model=TaskFlow)
    def delete_task(task_id: str, request: Request) -> TaskFlow:
        try:
            return _coordinator(request).remove_task(task_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="Task not found") from exc

    @app.post("/flow/tasks/{task_id}/move", response_model=TaskFlow)
    def move_task(task_id: str, payload: MoveTaskRequest, request: Request) -> TaskFlow:
        try:
            return _coordinator(request).move_task(task_id, payload.position)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="Task not found") from exc

    @app.post("/runs", response_model=RunHandleInfo)
    def submit_run(request: Request, payload: SubmitFlowRequest | None = None) -> RunHandleInfo:
        flow = payload.flow if payload is not None else None
        try:
            handle = _coordinator(request).submit_flow(flow)
        except FlowError as exc:
            raise _http_error(exc) from exc
        return handle.info()

    @app.post("/runs/{run_id}/cancel", response_model=RunStatus)
    def cancel_run(run_id: str, request: Request) -> RunStatus:
        try:
            return _coordinator(request).cancel(run_id)
        except FlowError as exc:
            raise _http_error(exc) from exc

    @app.post("/runs/{run_id}/confirm", response_model=RunStatus)
    def confirm_run(run_id: str, request: Request) -> RunStatus:
        try:
            return _coordinator(request).confirm(run_id)
        except FlowError as exc:
            raise _http_error(exc) from exc

    @app.get("/status", response_model=RunStatus)
    def status(request: Request) -> RunStatus:
        return _coordinator(request).status()

    @app.get("/runs/latest", response_model=RunOutcome)
    def latest_run(request: Request) -> RunOutcome:
        outcome = _coordinator(request).latest_outcome()
        if outcome is None:
            raise HTTPException(status_code=404, detail="No finished run yet")
        return outcome

    @app.get("/schedule", response_model=ScheduleView)
    def get_schedule(request: Request) -> ScheduleView:
        scheduler = _scheduler(request)
        return ScheduleView(schedule=scheduler.get_schedule(), next_fire_time=scheduler.next_fire_time())

    @app.put("/schedule", response_model=ScheduleView)
    def put_schedule(payload: ScheduleConfig, request: Request) -> ScheduleView:
        scheduler = _scheduler(request)
        schedule = scheduler.set_schedule(payload)
        return ScheduleView(schedule=schedule, next_fire_time=scheduler.next_fire_time())

    @app.delete("/schedule", response_model=ScheduleView)
    def delete_schedule(request: Request) -> ScheduleView:
        _scheduler(request).clear_schedule()
        return ScheduleView()

    @app.get("/recognition/{kind}", response_model=ExtractionReport)
    def recognition(kind: RecognitionKind, request: Request) -> ExtractionReport:
        return _coordinator(request).extract_latest(kind)

    @app.get("/engine/status", response_model=EngineStatus)
    def engine_status(request: Request) -> EngineStatus:
        try:
            return _coordinator(request).monitor.poll()
        except FlowError as exc:
            raise HTTPException(status_code=503, detail=exc.to_dict()) from exc

    @app.get("/engine/logs")
    def engine_log_tail(
        request: Request,
        lines: int = Query(default=200, ge=1, le=5000),
    ) -> dict[str, Any]:
        flow_coordinator = _coordinator(request)
        try:
            realtime = flow_coordinator.engine.realtime_logs(lines)
        except FlowError as exc:
            logger.warning("engine_logs event=realtime_unavailable error=%s", exc.message)
            realtime = []
        return {
            "path": str(settings.engine_log_path()),
            "tail": engine_logs.tail(settings.engine_log_path(), lines),
            "realtime": realtime,
            "files": [
                item.model_dump(mode="json")
                for item in engine_logs.list_log_files(settings.engine_log_dir())
            ],
        }

    @app.post("/engine/logs/cleanup", response_model=CleanupReport)
    def engine_log_cleanup() -> CleanupReport:
        max_bytes = int(settings.log_retention_mb * 1024 * 1024)
        return engine_logs.cleanup_logs(
            settings.engine_log_dir(),
            max_bytes=max_bytes,
            protect=settings.engine_log_path(),
        )

    @app.post("/reference/refresh")
    def refresh_reference(request: Request) -> dict[str, int]:
        return _coordinator(request).extractor.reference.refresh(force_remote=True)

    return app


app = create_app()


def serve() -> None:
    import uvicorn

    settings = get_settings()
    logging.basicConfig(level=settings.log_level)
    uvicorn.run(app, host=settings.api_host, port=settings.api_port, log_level=settings.log_level.lower())
