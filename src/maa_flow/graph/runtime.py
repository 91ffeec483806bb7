"""Collaborators shared by every node of one flow run."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Callable

from maa_flow.catalog import DEFAULT_CATALOG, TaskCatalog
from maa_flow.config.settings import Settings
from maa_flow.engine.base import EngineClient
from maa_flow.extractor import LogExtractor
from maa_flow.models import EngineStatus, RunContext
from maa_flow.monitor import ExecutionMonitor
from maa_flow.storage.recovery import RecoveryStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class FlowRuntime:
    engine: EngineClient
    monitor: ExecutionMonitor
    store: RecoveryStore
    extractor: LogExtractor
    settings: Settings
    read_log: Callable[[], str | None]
    catalog: TaskCatalog = field(default_factory=lambda: DEFAULT_CATALOG)
    cancel_event: threading.Event = field(default_factory=threading.Event)
    confirm_event: threading.Event = field(default_factory=threading.Event)
    # Task ids of the live flow; None disables the reconciliation id check.
    known_task_ids: frozenset[str] | None = None
    now: Callable[[], datetime] = _utcnow
    context: RunContext | None = None
    possibly_stale: bool = False

    def persist(self, context: RunContext, **updates: Any) -> RunContext:
        """Write the next context to the recovery store before control moves on."""
        updated = context.model_copy(update={**updates, "updated_at": self.now()}, deep=True)
        self.store.save(updated)
        self.context = updated
        return updated

    def settle_delay(self, kind: str) -> float:
        base = self.catalog.settle_delay(kind, self.settings.settle_default_s)
        return base * self.settings.settle_scale

    def checkpoint_cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def flag_stale(self, task_id: str, status: EngineStatus) -> None:
        """Persist ``stale_since`` and surface the run as waiting for operator confirmation."""
        if self.context is not None:
            self.persist(self.context, stale_since=self.now())
        self.possibly_stale = True
        logger.warning(
            "flow_run event=possibly_stale run_id=%s cursor=%s task_id=%s engine_task=%s started_at=%s",
            self.context.run_id if self.context else None,
            self.context.cursor if self.context else None,
            task_id,
            status.task_name,
            status.started_at,
        )
