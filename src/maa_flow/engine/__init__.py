"""Engine adapters."""

from __future__ import annotations

from maa_flow.config.settings import Settings
from maa_flow.engine.base import EngineClient
from maa_flow.engine.cli import MaaCliEngine
from maa_flow.engine.remote import RemoteEngine


def build_engine(settings: Settings) -> EngineClient:
    mode = settings.engine_mode.strip().lower()
    if mode == "remote":
        return RemoteEngine(base_url=settings.engine_base_url, timeout_s=settings.engine_timeout_s)
    if mode == "cli":
        return MaaCliEngine(
            maa_bin=settings.maa_bin,
            tasks_dir=settings.engine_tasks_dir(),
            stop_grace_s=settings.stop_grace_s,
            buffer_lines=settings.realtime_log_lines,
        )
    raise ValueError(f"Unsupported engine mode: {settings.engine_mode}")


__all__ = ["EngineClient", "MaaCliEngine", "RemoteEngine", "build_engine"]
