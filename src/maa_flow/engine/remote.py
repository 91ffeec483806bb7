"""HTTP adapter for an engine host exposing task-status / execute / stop-task."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any
from urllib import error, request

from maa_flow.errors import DispatchError, EngineUnavailable
from maa_flow.models import EngineStatus, Invocation


class RemoteEngine:
    def __init__(self, *, base_url: str, timeout_s: float = 5.0) -> None:
        if not base_url:
            raise ValueError("MAA_FLOW_ENGINE_BASE_URL is required for the remote engine")
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s

    def dispatch(self, invocation: Invocation) -> None:
        body: dict[str, Any] = {
            "command": invocation.command,
            "args": invocation.args,
            "taskName": invocation.label,
            "taskType": invocation.kind,
            "taskId": invocation.task_id,
        }
        if invocation.descriptor is not None:
            body["taskConfig"] = invocation.descriptor.model_dump_json()
        try:
            payload = self._request("POST", "/execute", body)
        except EngineUnavailable as exc:
            raise DispatchError(exc.message, task_id=invocation.task_id) from exc
        if not payload.get("success", False):
            raise DispatchError(
                str(payload.get("error") or "Engine rejected the invocation"),
                task_id=invocation.task_id,
            )

    def status(self) -> EngineStatus:
        payload = self._request("GET", "/task-status")
        data = payload.get("data")
        if not payload.get("success", False) or not isinstance(data, dict):
            raise EngineUnavailable("Engine returned an unreadable status payload")
        return EngineStatus(
            is_running=bool(data.get("isRunning")),
            task_name=data.get("taskName"),
            task_id=data.get("taskId"),
            kind=data.get("taskType"),
            started_at=_parse_start_time(data.get("startTime")),
        )

    def stop(self) -> bool:
        payload = self._request("POST", "/stop-task", {})
        return bool(payload.get("success", False))

    def realtime_logs(self, limit: int = 100) -> list[str]:
        payload = self._request("GET", f"/realtime-logs?lines={int(limit)}")
        rows = payload.get("data")
        if not isinstance(rows, list):
            return []
        lines: list[str] = []
        for row in rows:
            if isinstance(row, dict):
                lines.append(f"[{row.get('time', '')}] {row.get('level', '')} {row.get('message', '')}")
            else:
                lines.append(str(row))
        return lines

    def _request(self, method: str, path: str, body: dict[str, Any] | None = None) -> dict[str, Any]:
        data = json.dumps(body).encode("utf-8") if body is not None else None
        req = request.Request(
            url=f"{self.base_url}{path}",
            data=data,
            method=method,
            headers={"Content-Type": "application/json"},
        )
        try:
            with request.urlopen(req, timeout=self.timeout_s) as response:
                raw = response.read().decode("utf-8")
        except error.HTTPError as exc:
            message = exc.read().decode("utf-8", errors="replace")
            raise EngineUnavailable(
                f"Engine request {path} failed with status {exc.code}: {message[:400]}"
            ) from exc
        except (error.URLError, TimeoutError, OSError) as exc:
            raise EngineUnavailable(f"Engine request {path} failed: {exc}") from exc

        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise EngineUnavailable("Engine returned non-JSON response") from exc
        if not isinstance(parsed, dict):
            raise EngineUnavailable("Engine returned an unexpected response shape")
        return parsed


def _parse_start_time(raw: Any) -> datetime | None:
    if raw is None:
        return None
    if isinstance(raw, (int, float)):
        return datetime.fromtimestamp(raw / 1000.0, tz=UTC)
    if isinstance(raw, str):
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            return None
        # Offset-less timestamps from the engine host are UTC.
        return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)
    return None
