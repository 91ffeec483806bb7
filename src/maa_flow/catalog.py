"""Catalog of task kinds and their declared parameter fields.

Two families exist:
- Built-in commands (``startup``, ``closedown``, ``fight``) map params onto maa-cli
  positional arguments and flags.
- Dynamic kinds carry an engine ``task_type`` and are handed to the engine as a
  structured task descriptor instead of flags.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from maa_flow.models import RecognitionKind

CLIENT_TYPES = ("Official", "Bilibili", "YoStarEN", "YoStarJP", "YoStarKR", "Txwy")

# Param key kept equal across every session task in a flow.
SESSION_COUPLED_PARAM = "clientType"


@dataclass(frozen=True)
class ParamField:
    key: str
    # None means positional; "" means the field is consumed by the builder itself.
    flag: str | None = None
    keep_as_text: bool = False
    default: Any = None
    # Value equal to this is the engine default and is not emitted.
    omit_when: Any = None


@dataclass(frozen=True)
class CommandSpec:
    kind: str
    label: str
    command: str | None = None
    task_type: str | None = None
    fields: tuple[ParamField, ...] = ()
    settle_s: float | None = None
    recognition: RecognitionKind | None = None
    session: bool = False

    @property
    def is_dynamic(self) -> bool:
        return self.task_type is not None

    def field(self, key: str) -> ParamField | None:
        for item in self.fields:
            if item.key == key:
                return item
        return None

    def keep_as_text(self) -> frozenset[str]:
        return frozenset(item.key for item in self.fields if item.keep_as_text)

    def default_params(self) -> dict[str, Any]:
        return {item.key: item.default for item in self.fields if item.default is not None}

    def describe(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "label": self.label,
            "command": self.command or "run",
            "task_type": self.task_type,
            "fields": [
                {"key": item.key, "flag": item.flag, "keep_as_text": item.keep_as_text}
                for item in self.fields
            ],
            "default_params": self.default_params(),
            "settle_s": self.settle_s,
            "recognition": self.recognition,
        }


@dataclass
class TaskCatalog:
    specs: dict[str, CommandSpec] = field(default_factory=dict)

    def get(self, kind: str) -> CommandSpec | None:
        return self.specs.get(kind)

    def kinds(self) -> list[str]:
        return list(self.specs)

    def settle_delay(self, kind: str, default_s: float) -> float:
        spec = self.specs.get(kind)
        if spec is None or spec.settle_s is None:
            return default_s
        return spec.settle_s

    def session_kinds(self) -> frozenset[str]:
        return frozenset(kind for kind, spec in self.specs.items() if spec.session)


_SESSION_FIELDS = (
    ParamField("clientType", flag=None, default="Official"),
    ParamField("address", flag="-a", default="127.0.0.1:16384"),
    ParamField("accountName", flag="--account"),
)


def _build_default_catalog() -> TaskCatalog:
    specs = [
        CommandSpec(
            kind="startup",
            label="Start game",
            command="startup",
            fields=_SESSION_FIELDS,
            settle_s=15.0,
            session=True,
        ),
        CommandSpec(
            kind="fight",
            label="Sanity battles",
            command="fight",
            fields=(
                ParamField("stage", flag=None, default="1-7"),
                ParamField("medicine", flag="-m"),
                ParamField("expiringMedicine", flag="--expiring-medicine"),
                ParamField("stone", flag="--stone"),
                ParamField("times", flag="--times"),
                ParamField("series", flag="--series", omit_when="1"),
                # Alternative single-entry form accepted in place of "stage".
                ParamField("stages", flag=""),
            ),
        ),
        CommandSpec(
            kind="infrast",
            label="Base shift",
            task_type="Infrast",
            fields=(
                ParamField("mode", keep_as_text=True, default="0"),
                ParamField(
                    "facility",
                    default=["Mfg", "Trade", "Power", "Control", "Reception", "Office", "Dorm"],
                ),
                ParamField("drones", default="Money"),
                ParamField("threshold", default="0.3"),
                ParamField("replenish", default=False),
            ),
        ),
        CommandSpec(
            kind="recruit",
            label="Recruitment",
            task_type="Recruit",
            fields=(
                ParamField("refresh", default=True),
                ParamField("select", default=[4, 5, 6]),
                ParamField("confirm", default=[3, 4]),
                ParamField("times", default=4),
                ParamField("set_time", default=True),
                ParamField("expedite", default=False),
                ParamField("expedite_times"),
                ParamField("skip_robot", default=True),
            ),
        ),
        CommandSpec(
            kind="mall",
            label="Credit store",
            task_type="Mall",
            fields=(
                ParamField("shopping", default=True),
                ParamField("buy_first"),
                ParamField("blacklist"),
                ParamField("force_shopping_if_credit_full", default=False),
            ),
        ),
        CommandSpec(
            kind="award",
            label="Collect rewards",
            task_type="Award",
            fields=(
                ParamField("award", default=True),
                ParamField("mail", default=True),
                ParamField("recruit", default=False),
                ParamField("orundum", default=False),
                ParamField("mining", default=False),
                ParamField("specialaccess", default=False),
            ),
        ),
        CommandSpec(
            kind="closedown",
            label="Close game",
            command="closedown",
            fields=(ParamField("clientType", flag=None, default="Official"),),
            settle_s=3.0,
            session=True,
        ),
        CommandSpec(
            kind="depot",
            label="Depot recognition",
            task_type="Depot",
            recognition="inventory",
        ),
        CommandSpec(
            kind="operbox",
            label="Operator box recognition",
            task_type="OperBox",
            recognition="roster",
        ),
    ]
    return TaskCatalog(specs={spec.kind: spec for spec in specs})


DEFAULT_CATALOG = _build_default_catalog()
