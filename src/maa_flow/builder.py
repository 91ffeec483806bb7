"""Pure translation of a TaskSpec into an engine Invocation."""

from __future__ import annotations

import re
from typing import Any

from maa_flow.catalog import DEFAULT_CATALOG, CommandSpec, TaskCatalog
from maa_flow.errors import ConfigurationError
from maa_flow.models import Invocation, TaskDescriptor, TaskSpec

_NUMERIC = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")
_INTEGER = re.compile(r"^[+-]?\d+$")


def build(task: TaskSpec, catalog: TaskCatalog | None = None) -> Invocation:
    """Translate ``task`` into the invocation the engine should receive.

    Raises ConfigurationError for an unknown kind or a parameter whose shape the
    engine cannot accept (nested mappings, multi-entry stage lists, lists on flags).
    """
    catalog = catalog or DEFAULT_CATALOG
    spec = catalog.get(task.kind)
    if spec is None:
        raise ConfigurationError(
            f"Unknown task kind: {task.kind}", kind=task.kind, task_id=task.id
        )

    for key, value in task.params.items():
        if isinstance(value, dict):
            raise ConfigurationError(
                f"Parameter {key!r} of {task.kind} must not be a mapping",
                kind=task.kind,
                task_id=task.id,
            )

    if spec.is_dynamic:
        return _build_descriptor(task, spec)
    return _build_command(task, spec)


def task_file_name(kind: str) -> str:
    return f"{kind}_flow"


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, list):
        return len(value) == 0
    return False


def coerce_descriptor_value(key: str, value: Any, keep_as_text: frozenset[str]) -> Any:
    """Normalize one dynamic-task parameter; returns None when it should be omitted."""
    if is_empty(value):
        return None
    if isinstance(value, (bool, int, float, list)):
        return value
    text = str(value)
    stripped = text.strip()
    if stripped.startswith("[") and stripped.endswith("]"):
        return stripped
    if "," in text and "[" not in text:
        tokens = [token.strip() for token in text.split(",")]
        tokens = [token for token in tokens if token]
        return tokens or None
    if key not in keep_as_text and _NUMERIC.match(stripped):
        return int(stripped) if _INTEGER.match(stripped) else float(stripped)
    return text


def _build_descriptor(task: TaskSpec, spec: CommandSpec) -> Invocation:
    keep_as_text = spec.keep_as_text()
    params: dict[str, Any] = {}
    for key, value in task.params.items():
        coerced = coerce_descriptor_value(key, value, keep_as_text)
        if coerced is not None:
            params[key] = coerced

    file_name = task_file_name(spec.kind)
    return Invocation(
        task_id=task.id,
        kind=task.kind,
        label=task.label(),
        command="run",
        args=[file_name],
        descriptor=TaskDescriptor(name=task.label(), type=spec.task_type or spec.kind, params=params),
    )


def _build_command(task: TaskSpec, spec: CommandSpec) -> Invocation:
    params = dict(task.params)
    if spec.kind == "fight":
        params = _normalize_fight_params(task, params)
    unknown = sorted(key for key in params if spec.field(key) is None)
    if unknown:
        raise ConfigurationError(
            f"Unknown parameters for {task.kind}: {', '.join(unknown)}",
            kind=task.kind,
            task_id=task.id,
        )

    positional: list[str] = []
    flags: list[str] = []
    for field in spec.fields:
        if field.flag == "":
            continue
        value = params.get(field.key)
        if is_empty(value):
            if field.flag is None and field.key == "clientType":
                positional.append(str(field.default))
            continue
        if isinstance(value, list):
            raise ConfigurationError(
                f"Parameter {field.key!r} of {task.kind} must be a scalar",
                kind=task.kind,
                task_id=task.id,
            )
        if field.omit_when is not None and _as_text(value) == str(field.omit_when):
            continue
        if field.flag is None:
            positional.append(_as_text(value))
        elif isinstance(value, bool):
            if value:
                flags.append(field.flag)
        else:
            flags.extend([field.flag, _as_text(value)])

    return Invocation(
        task_id=task.id,
        kind=task.kind,
        label=task.label(),
        command=spec.command or spec.kind,
        args=[*positional, *flags],
    )


def _normalize_fight_params(task: TaskSpec, params: dict[str, Any]) -> dict[str, Any]:
    stages = params.pop("stages", None)
    if is_empty(stages):
        return params
    if not isinstance(stages, list) or len(stages) != 1:
        raise ConfigurationError(
            "A fight task carries exactly one stage",
            kind=task.kind,
            task_id=task.id,
        )

    entry = stages[0]
    if isinstance(entry, dict):
        stage, times = entry.get("stage"), entry.get("times")
    else:
        stage, times = entry, None
    if is_empty(params.get("stage")) and not is_empty(stage):
        params["stage"] = str(stage).strip()
    if is_empty(params.get("times")) and not is_empty(times):
        params["times"] = times
    return params


def _as_text(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()
