from __future__ import annotations

from fastapi.testclient import TestClient

from maa_flow.api.main import create_app
from maa_flow.config.settings import Settings
from maa_flow.coordinator import FlowCoordinator
from maa_flow.models import RunContext, TaskSpec


def test_health_endpoint(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "maa-flow"}


def test_startup_resumes_persisted_run(coordinator: FlowCoordinator, settings: Settings) -> None:
    award = TaskSpec(kind="award")
    coordinator.store.save(
        RunContext(
            run_id="run-crashed",
            flow_snapshot=[award],
            cursor=0,
            phase="submitting",
            started_at="2026-05-01T04:00:00Z",
        )
    )
    app = create_app(coordinator=coordinator, settings_override=settings)

    with TestClient(app):
        assert coordinator.wait_idle(timeout=5.0)

    outcome = coordinator.latest_outcome()
    assert outcome is not None
    assert outcome.run_id == "run-crashed"
    assert outcome.recovered is True
    assert outcome.status == "succeeded"


def test_app_builds_its_own_coordinator(settings: Settings) -> None:
    app = create_app(settings_override=settings)

    with TestClient(app) as test_client:
        assert test_client.get("/status").json()["state"] == "idle"
        assert isinstance(test_client.app.state.coordinator, FlowCoordinator)
        assert test_client.get("/flow").json() == {"tasks": []}
