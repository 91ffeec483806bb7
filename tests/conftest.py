from __future__ import annotations

import json
import threading
import time
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Callable

import pytest
from fastapi.testclient import TestClient

from maa_flow.api.main import create_app
from maa_flow.config.settings import Settings
from maa_flow.coordinator import FlowCoordinator
from maa_flow.extractor import LogExtractor
from maa_flow.models import EngineStatus, Invocation
from maa_flow.reference import ReferenceRepository
from maa_flow.storage import InMemoryDocumentStore, RecoveryStore

ITEM_INDEX = {
    "2001": {"name": "Drill Battle Record", "classifyType": "NORMAL", "sortId": 10, "icon": "EXP_PLAYER"},
    "3003": {"name": "Pure Gold", "classifyType": "MATERIAL", "sortId": 5},
}
ITEM_TABLE = {"items": {"2001": {"iconId": "sprite_exp_card_t1"}}}
BATTLE_DATA = {
    "chars": {
        "char_002_amiya": {"name": "Amiya", "rarity": "TIER_5", "profession": "CASTER"},
        "char_285_medic2": {"name": "Lancet-2", "rarity": "TIER_1", "profession": "MEDIC"},
        "char_504_rguard": {"name": "Reserve Guard", "rarity": "TIER_1", "profession": "WARRIOR"},
        "token_10000_silent_healrb": {"name": "Drone", "rarity": "TIER_1"},
    }
}


class FakeEngine:
    """Scripted engine double.

    ``status_script`` entries are returned (or raised) first. Until something is
    dispatched, ``foreign_job`` stands for a job started elsewhere. The
    last dispatched job reports running for ``job_polls`` polls, or forever
    while ``hold`` is set, and idle afterwards.
    """

    def __init__(self, *, job_polls: int = 1) -> None:
        self.job_polls = job_polls
        self.hold = False
        self.job_started_at: datetime | None = None
        self.status_script: list[EngineStatus | Exception] = []
        self.fail_dispatch: Exception | None = None
        self.fail_status_after_dispatch = False
        self.dispatched: list[Invocation] = []
        self.events: list[str] = []
        self.stop_calls = 0
        self.fail_stop: Exception | None = None
        self.foreign_job: EngineStatus | None = None
        self.stop_delay_s = 0.0
        self.log_lines: list[str] = []
        self._current: Invocation | None = None
        self._remaining = 0
        self._lock = threading.Lock()

    @property
    def commands(self) -> list[str]:
        return [invocation.command for invocation in self.dispatched]

    @property
    def task_ids(self) -> list[str]:
        return [invocation.task_id for invocation in self.dispatched]

    def dispatch(self, invocation: Invocation) -> None:
        with self._lock:
            self.events.append(f"dispatch:{invocation.task_id}")
            if self.fail_dispatch is not None:
                raise self.fail_dispatch
            self.dispatched.append(invocation)
            self._current = invocation
            self._remaining = self.job_polls

    def status(self) -> EngineStatus:
        with self._lock:
            self.events.append("status")
            if self.status_script:
                item = self.status_script.pop(0)
                if isinstance(item, Exception):
                    raise item
                return item
            if self.fail_status_after_dispatch and self._current is not None:
                raise ConnectionError("engine host unreachable")
            current = self._current
            if current is None and self.foreign_job is not None:
                return self.foreign_job
            if current is not None and (self.hold or self._remaining > 0):
                self._remaining -= 1
                return EngineStatus(
                    is_running=True,
                    task_name=current.label,
                    task_id=current.task_id,
                    kind=current.kind,
                    started_at=self.job_started_at or datetime.now(UTC),
                )
            return EngineStatus(is_running=False)

    def stop(self) -> bool:
        with self._lock:
            self.events.append("stop")
            self.stop_calls += 1
            if self.fail_stop is not None:
                raise self.fail_stop
        if self.stop_delay_s:
            time.sleep(self.stop_delay_s)
        with self._lock:
            self.hold = False
            self._remaining = 0
            return True

    def realtime_logs(self, limit: int = 100) -> list[str]:
        return self.log_lines[-limit:]


def wait_for(predicate: Callable[[], bool], timeout: float = 3.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def write_reference_tables(resource_dir: Path) -> None:
    (resource_dir / "gamedata" / "excel").mkdir(parents=True, exist_ok=True)
    (resource_dir / "item_index.json").write_text(json.dumps(ITEM_INDEX), encoding="utf-8")
    (resource_dir / "gamedata" / "excel" / "item_table.json").write_text(
        json.dumps(ITEM_TABLE), encoding="utf-8"
    )
    (resource_dir / "battle_data.json").write_text(json.dumps(BATTLE_DATA), encoding="utf-8")


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        storage_backend="memory",
        maa_config_dir=tmp_path / "config",
        maa_state_dir=tmp_path / "state",
        reference_dir=tmp_path / "resource",
        reference_remote_base="",
        poll_interval_s=0.01,
        poll_backoff_max_s=0.02,
        lost_contact_after_s=0.2,
        stale_after_s=60.0,
        stop_timeout_s=1.0,
        settle_default_s=0.0,
        settle_scale=0.0,
        scheduler_enabled=False,
        schedule_timezone="UTC",
    )


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def documents() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def store(documents: InMemoryDocumentStore) -> RecoveryStore:
    return RecoveryStore(documents)


@pytest.fixture
def reference(settings: Settings) -> ReferenceRepository:
    write_reference_tables(settings.resolved_reference_dir())
    return ReferenceRepository(settings.resolved_reference_dir())


@pytest.fixture
def extractor(reference: ReferenceRepository) -> LogExtractor:
    return LogExtractor(reference)


@pytest.fixture
def engine_log() -> dict[str, Any]:
    """Mutable holder for the engine log text the coordinator reads."""
    return {"text": None}


@pytest.fixture
def coordinator(
    engine: FakeEngine,
    store: RecoveryStore,
    extractor: LogExtractor,
    settings: Settings,
    engine_log: dict[str, Any],
) -> FlowCoordinator:
    flow_coordinator = FlowCoordinator(
        engine=engine,
        store=store,
        extractor=extractor,
        settings=settings,
        read_log=lambda: engine_log["text"],
    )
    yield flow_coordinator
    runtime = flow_coordinator._active
    if runtime is not None:
        runtime.cancel_event.set()
    engine.hold = False
    flow_coordinator.wait_idle(timeout=3.0)


@pytest.fixture
def client(coordinator: FlowCoordinator, settings: Settings) -> TestClient:
    app = create_app(coordinator=coordinator, settings_override=settings)
    with TestClient(app) as test_client:
        yield test_client
