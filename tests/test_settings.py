from __future__ import annotations

from pathlib import Path

import pytest

from maa_flow.config.settings import Settings


def test_prefixed_environment_overrides_defaults(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("MAA_FLOW_API_PORT", "9100")
    monkeypatch.setenv("MAA_FLOW_ENGINE_MODE", "remote")
    monkeypatch.setenv("MAA_FLOW_APP_ENV", "prod")

    settings = Settings(maa_config_dir=tmp_path / "config", maa_state_dir=tmp_path / "state")

    assert settings.api_port == 9100
    assert settings.engine_mode == "remote"
    assert "app_env" not in Settings.model_fields
    assert settings.resolved_reference_dir() == tmp_path / "config" / "resource"
    assert settings.engine_log_path() == tmp_path / "state" / "debug" / "asst.log"
