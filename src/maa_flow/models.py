"""Pydantic models shared across the builder, state machine, storage, and API.

Beginner terms used in this file:
- Snapshot: a deep copy of the flow taken at submission time; later edits to the
  live flow never reach a run that already started.
- Cursor: index into the snapshot of the task currently executing (or about to).
- Phase: the state-machine state recorded with every persisted cursor.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Persisted state-machine phases. Terminal phases only appear in outcomes.
RunPhase = Literal[
    "submitting",
    "awaiting_completion",
    "advancing",
    "succeeded",
    "failed",
    "cancelled",
]
RunTrigger = Literal["manual", "schedule"]
FlowSource = Literal["saved", "schedule", "adhoc"]
OutcomeStatus = Literal["succeeded", "failed", "cancelled"]
RecognitionKind = Literal["inventory", "roster"]

# Mappings are accepted here and rejected by the builder as a bad parameter shape.
ParamValue = str | int | float | bool | list[Any] | dict[str, Any] | None

_TIME_OF_DAY = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


def new_task_id() -> str:
    return uuid4().hex[:12]


class TaskSpec(BaseModel):
    """One step of a flow."""

    # Unknown fields from newer snapshots are dropped instead of failing validation.
    model_config = ConfigDict(extra="ignore")

    id: str = Field(default_factory=new_task_id, frozen=True, min_length=1)
    kind: str = Field(min_length=1)
    name: str | None = None
    # Insertion order of params is kept; builders iterate it as-is.
    params: dict[str, ParamValue] = Field(default_factory=dict)
    enabled: bool = True

    def label(self) -> str:
        return self.name or self.kind


class TaskFlow(BaseModel):
    """Ordered list of task specs; list order is execution order."""

    model_config = ConfigDict(extra="ignore")

    tasks: list[TaskSpec] = Field(default_factory=list)

    def enabled_tasks(self) -> list[TaskSpec]:
        return [task for task in self.tasks if task.enabled]

    def index_of(self, task_id: str) -> int:
        for index, task in enumerate(self.tasks):
            if task.id == task_id:
                return index
        raise KeyError(task_id)

    def get(self, task_id: str) -> TaskSpec | None:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def snapshot(self) -> list[TaskSpec]:
        return [task.model_copy(deep=True) for task in self.tasks]


class TaskDescriptor(BaseModel):
    """Structured side-channel payload for dynamically configured engine tasks."""

    name: str
    type: str
    params: dict[str, Any] = Field(default_factory=dict)


class Invocation(BaseModel):
    """One external engine call derived from a TaskSpec."""

    task_id: str
    kind: str
    label: str
    command: str
    args: list[str] = Field(default_factory=list)
    descriptor: TaskDescriptor | None = None

    def argv(self, executable: str = "maa") -> list[str]:
        return [executable, self.command, *self.args]


class EngineStatus(BaseModel):
    """Single status snapshot of the engine's current job."""

    is_running: bool
    task_name: str | None = None
    task_id: str | None = None
    kind: str | None = None
    started_at: datetime | None = None

    def matches(self, invocation_task_id: str, label: str) -> bool:
        if self.task_id:
            return self.task_id == invocation_task_id
        return self.task_name is not None and self.task_name == label


class RunContext(BaseModel):
    """Durable pointer describing where an in-progress run stands."""

    model_config = ConfigDict(extra="ignore")

    run_id: str
    flow_snapshot: list[TaskSpec]
    cursor: int = Field(default=0, ge=0)
    phase: RunPhase = "awaiting_completion"
    trigger: RunTrigger = "manual"
    # Where the snapshot came from; recovery checks ids against that live flow.
    flow_source: FlowSource = "adhoc"
    started_at: datetime
    updated_at: datetime | None = None
    dispatched_at: datetime | None = None
    stale_since: datetime | None = None
    submitted: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)

    def current_task(self) -> TaskSpec | None:
        if 0 <= self.cursor < len(self.flow_snapshot):
            return self.flow_snapshot[self.cursor]
        return None

    def is_complete(self) -> bool:
        return self.cursor >= len(self.flow_snapshot)


class ScheduleConfig(BaseModel):
    """Wall-clock schedule owning the flow it triggers."""

    model_config = ConfigDict(extra="ignore")

    enabled: bool = True
    times: list[str] = Field(default_factory=list)
    flow: TaskFlow = Field(default_factory=TaskFlow)

    @field_validator("times")
    @classmethod
    def _normalize_times(cls, value: list[str]) -> list[str]:
        normalized: set[str] = set()
        for raw in value:
            match = _TIME_OF_DAY.match(raw.strip())
            if match is None:
                raise ValueError(f"Invalid time of day: {raw!r} (expected HH:MM)")
            normalized.add(f"{int(match.group(1)):02d}:{match.group(2)}")
        return sorted(normalized)


class RecognizedItem(BaseModel):
    id: str
    name: str
    count: int | None = None
    icon_id: str | None = None
    category: str | None = None
    sort_key: int = 999999
    attributes: dict[str, Any] = Field(default_factory=dict)


class RecognitionResult(BaseModel):
    """Structured view of a recognition record; recomputed from the log on demand."""

    kind: RecognitionKind
    count: int
    complete: bool
    items: list[RecognizedItem] = Field(default_factory=list)
    extracted_at: datetime


class ExtractionReport(BaseModel):
    kind: RecognitionKind
    result: RecognitionResult | None = None
    reason: str | None = None


class RunOutcome(BaseModel):
    """Terminal record of one run."""

    model_config = ConfigDict(extra="ignore")

    run_id: str
    status: OutcomeStatus
    trigger: RunTrigger = "manual"
    recovered: bool = False
    reason: str | None = None
    error: dict[str, Any] | None = None
    failed_task_id: str | None = None
    cursor: int | None = None
    total_tasks: int = 0
    submitted: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    recognitions: dict[str, dict[str, Any]] = Field(default_factory=dict)
    started_at: datetime
    finished_at: datetime


class RunHandleInfo(BaseModel):
    run_id: str
    trigger: RunTrigger
    started_at: datetime


class RunStatus(BaseModel):
    """Caller-facing view of the single run slot."""

    state: Literal["idle", "running"]
    run_id: str | None = None
    phase: RunPhase | None = None
    trigger: RunTrigger | None = None
    cursor: int | None = None
    total_tasks: int | None = None
    current_task: TaskSpec | None = None
    started_at: datetime | None = None
    possibly_stale: bool = False
    cancel_requested: bool = False


class SubmitFlowRequest(BaseModel):
    """Request body for POST /runs; the saved flow is used when flow is omitted."""

    flow: TaskFlow | None = None


class TaskPatchRequest(BaseModel):
    """Request body for PATCH /flow/tasks/{task_id}."""

    params: dict[str, ParamValue] | None = None
    enabled: bool | None = None


class AddTaskRequest(BaseModel):
    """Request body for POST /flow/tasks; catalog defaults fill missing params."""

    kind: str = Field(min_length=1)
    name: str | None = None
    params: dict[str, ParamValue] = Field(default_factory=dict)
    enabled: bool = True
    position: int | None = Field(default=None, ge=0)


class MoveTaskRequest(BaseModel):
    position: int = Field(ge=0)


class ScheduleView(BaseModel):
    schedule: ScheduleConfig | None = None
    next_fire_time: datetime | None = None
