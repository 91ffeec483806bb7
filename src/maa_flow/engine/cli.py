"""Local maa-cli engine adapter.

The engine runs one job at a time as a child process. Its stdout/stderr are
captured into a bounded realtime buffer; job state is whatever the child
process reports (running until it exits).
"""

from __future__ import annotations

import json
import logging
import subprocess
import threading
from collections import deque
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Callable

from maa_flow.errors import DispatchError
from maa_flow.models import EngineStatus, Invocation, TaskDescriptor

logger = logging.getLogger(__name__)


class MaaCliEngine:
    """Spawn ``maa <command> <args>`` and observe the child process."""

    def __init__(
        self,
        *,
        maa_bin: str = "maa",
        tasks_dir: Path,
        stop_grace_s: float = 3.0,
        buffer_lines: int = 2000,
        popen: Callable[..., Any] = subprocess.Popen,
    ) -> None:
        self.maa_bin = maa_bin
        self.tasks_dir = tasks_dir
        self.stop_grace_s = stop_grace_s
        self._popen = popen
        self._lock = threading.Lock()
        self._process: Any = None
        self._invocation: Invocation | None = None
        self._started_at: datetime | None = None
        self._buffer: deque[str] = deque(maxlen=buffer_lines)

    def dispatch(self, invocation: Invocation) -> None:
        with self._lock:
            if self._process is not None and self._process.poll() is None:
                raise DispatchError(
                    f"Engine is busy with {self._invocation.label if self._invocation else 'a job'}",
                    task_id=invocation.task_id,
                )
            if invocation.descriptor is not None:
                self._write_task_file(invocation.args[0], invocation.descriptor)

            argv = invocation.argv(self.maa_bin)
            try:
                process = self._popen(
                    argv,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.STDOUT,
                    text=True,
                    bufsize=1,
                )
            except OSError as exc:
                raise DispatchError(
                    f"Failed to start {argv[0]}: {exc}", task_id=invocation.task_id
                ) from exc

            self._process = process
            self._invocation = invocation
            self._started_at = datetime.now(UTC)
            self._append(f"$ {' '.join(argv)}")

        logger.info(
            "engine event=spawned command=%s task_id=%s pid=%s",
            invocation.command,
            invocation.task_id,
            getattr(process, "pid", None),
        )
        reader = threading.Thread(
            target=self._pump_output,
            args=(process,),
            name=f"maa-output-{invocation.task_id}",
            daemon=True,
        )
        reader.start()

    def status(self) -> EngineStatus:
        with self._lock:
            process = self._process
            invocation = self._invocation
            if process is None or invocation is None or process.poll() is not None:
                return EngineStatus(is_running=False)
            return EngineStatus(
                is_running=True,
                task_name=invocation.label,
                task_id=invocation.task_id,
                kind=invocation.kind,
                started_at=self._started_at,
            )

    def stop(self) -> bool:
        with self._lock:
            process = self._process
        if process is None or process.poll() is not None:
            return False

        process.terminate()
        try:
            process.wait(timeout=self.stop_grace_s)
        except subprocess.TimeoutExpired:
            logger.warning("engine event=kill pid=%s grace_s=%s", process.pid, self.stop_grace_s)
            process.kill()
            process.wait(timeout=self.stop_grace_s)
        self._append("[stopped]")
        return True

    def realtime_logs(self, limit: int = 100) -> list[str]:
        with self._lock:
            lines = list(self._buffer)
        return lines[-limit:] if limit > 0 else []

    def _pump_output(self, process: Any) -> None:
        stream = process.stdout
        if stream is not None:
            for line in stream:
                self._append(line.rstrip("\n"))
            stream.close()
        code = process.wait()
        logger.info("engine event=exited pid=%s returncode=%s", getattr(process, "pid", None), code)

    def _append(self, line: str) -> None:
        stamp = datetime.now(UTC).strftime("%H:%M:%S")
        self._buffer.append(f"[{stamp}] {line}")

    def _write_task_file(self, name: str, descriptor: TaskDescriptor) -> Path:
        self.tasks_dir.mkdir(parents=True, exist_ok=True)
        path = self.tasks_dir / f"{name}.json"
        payload = {"tasks": [render_descriptor(descriptor)]}
        temp_path = path.with_suffix(".json.tmp")
        temp_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        temp_path.replace(path)
        return path


def render_descriptor(descriptor: TaskDescriptor) -> dict[str, Any]:
    """Descriptor as written to the engine's task file.

    Bracketed literal strings are decoded when they are valid JSON and kept
    verbatim otherwise.
    """
    params: dict[str, Any] = {}
    for key, value in descriptor.params.items():
        if isinstance(value, str) and value.startswith("[") and value.endswith("]"):
            try:
                params[key] = json.loads(value)
            except json.JSONDecodeError:
                params[key] = value
        else:
            params[key] = value
    return {"name": descriptor.name, "type": descriptor.type, "params": params}
