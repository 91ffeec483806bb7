"""Error taxonomy for flow orchestration.

Task-level errors (ConfigurationError, DispatchError) stop the run and carry the
failing task's id and cursor. MonitorUnknown is never treated as "not running".
ExtractionError and ReconciliationAmbiguous are non-fatal and only surface as
reasons or warnings.
"""

from __future__ import annotations

from typing import Any


class FlowError(Exception):
    """Base class for every error raised by maa_flow."""

    code = "flow_error"

    def __init__(
        self,
        message: str,
        *,
        task_id: str | None = None,
        cursor: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.task_id = task_id
        self.cursor = cursor

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.task_id is not None:
            payload["task_id"] = self.task_id
        if self.cursor is not None:
            payload["cursor"] = self.cursor
        return payload


class ConfigurationError(FlowError):
    """A task's kind or parameter shape cannot be translated into an invocation."""

    code = "configuration_error"

    def __init__(
        self,
        message: str,
        *,
        kind: str | None = None,
        task_id: str | None = None,
        cursor: int | None = None,
    ) -> None:
        super().__init__(message, task_id=task_id, cursor=cursor)
        self.kind = kind

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        if self.kind is not None:
            payload["kind"] = self.kind
        return payload


class DispatchError(FlowError):
    """The engine rejected or could not receive an invocation."""

    code = "dispatch_error"


class EngineUnavailable(FlowError):
    """The engine's status or stop channel could not be reached."""

    code = "engine_unavailable"


class MonitorUnknown(FlowError):
    """A poll could not determine engine state."""

    code = "monitor_unknown"


class ExtractionError(FlowError):
    """A recognition payload in the engine log is absent or malformed."""

    code = "extraction_error"


class ReconciliationAmbiguous(FlowError):
    """A persisted cursor cannot be matched back to a known task definition."""

    code = "reconciliation_ambiguous"


class RunAlreadyActive(FlowError):
    """Another run holds the single run slot."""

    code = "run_already_active"

    def __init__(self, active_run_id: str) -> None:
        super().__init__(f"Run {active_run_id} is already active")
        self.active_run_id = active_run_id


class EmptyFlowError(FlowError):
    """A flow without any enabled task cannot be submitted."""

    code = "empty_flow"


class RunNotStale(FlowError):
    """Only a run flagged possibly stale accepts an operator confirmation."""

    code = "run_not_stale"


class RunNotFound(FlowError):
    """No active run matches the requested run id."""

    code = "run_not_found"
