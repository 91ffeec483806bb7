"""Engine client interface shared by the local CLI and remote adapters."""

from __future__ import annotations

from typing import Protocol

from maa_flow.models import EngineStatus, Invocation


class EngineClient(Protocol):
    def dispatch(self, invocation: Invocation) -> None: ...

    def status(self) -> EngineStatus: ...

    def stop(self) -> bool: ...

    def realtime_logs(self, limit: int = 100) -> list[str]: ...
