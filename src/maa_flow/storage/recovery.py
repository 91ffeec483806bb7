"""Recovery store: the durable "where were we" pointer plus flow/schedule documents.

Every document is overwritten whole (last write wins). Reads ignore unknown
fields, so snapshots written by newer versions still load.
"""

from __future__ import annotations

import logging
from typing import TypeVar

from pydantic import BaseModel, ValidationError

from maa_flow.models import RunContext, RunOutcome, ScheduleConfig, TaskFlow
from maa_flow.storage.base import DocumentStore

logger = logging.getLogger(__name__)

RUN_CONTEXT_KEY = "run_context"
SCHEDULE_KEY = "schedule"
FLOW_KEY = "flow"
LATEST_OUTCOME_KEY = "latest_outcome"

ModelT = TypeVar("ModelT", bound=BaseModel)


class RecoveryStore:
    def __init__(self, documents: DocumentStore) -> None:
        self.documents = documents

    def migrate(self) -> None:
        self.documents.migrate()

    def save(self, context: RunContext | None) -> None:
        if context is None:
            self.documents.delete(RUN_CONTEXT_KEY)
            return
        self.documents.put(RUN_CONTEXT_KEY, context.model_dump(mode="json"))

    def load(self) -> RunContext | None:
        return self._load_model(RUN_CONTEXT_KEY, RunContext, clear_invalid=True)

    def save_schedule(self, schedule: ScheduleConfig | None) -> None:
        if schedule is None:
            self.documents.delete(SCHEDULE_KEY)
            return
        self.documents.put(SCHEDULE_KEY, schedule.model_dump(mode="json"))

    def load_schedule(self) -> ScheduleConfig | None:
        return self._load_model(SCHEDULE_KEY, ScheduleConfig)

    def save_flow(self, flow: TaskFlow) -> None:
        self.documents.put(FLOW_KEY, flow.model_dump(mode="json"))

    def load_flow(self) -> TaskFlow:
        return self._load_model(FLOW_KEY, TaskFlow) or TaskFlow()

    def save_outcome(self, outcome: RunOutcome) -> None:
        self.documents.put(LATEST_OUTCOME_KEY, outcome.model_dump(mode="json"))

    def latest_outcome(self) -> RunOutcome | None:
        return self._load_model(LATEST_OUTCOME_KEY, RunOutcome)

    def _load_model(
        self,
        key: str,
        model: type[ModelT],
        *,
        clear_invalid: bool = False,
    ) -> ModelT | None:
        payload = self.documents.get(key)
        if payload is None:
            return None
        try:
            return model.model_validate(payload)
        except ValidationError as exc:
            logger.warning(
                "recovery_store event=invalid_document key=%s errors=%s cleared=%s",
                key,
                exc.error_count(),
                clear_invalid,
            )
            if clear_invalid:
                self.documents.delete(key)
            return None
