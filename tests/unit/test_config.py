"""Unit tests for settings loading."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from workflow_runner.config import WorkflowSettings


def test_settings_defaults(clean_env: Path) -> None:
    """Test settings default values."""
    settings = WorkflowSettings()

    assert settings.log_level == "INFO"
    assert settings.run_timeout_seconds == 300.0
    assert settings.http_timeout_seconds == 30.0
    assert settings.step_delay_seconds == 0.0
    assert settings.max_visits_per_node == 1
    assert settings.record_error_vars is True
    assert settings.documents_path == Path("agent_state/graphs.json")


def test_settings_loads_from_dotenv(clean_env: Path) -> None:
    (clean_env / ".env").write_text(
        "\n".join(
            [
                "LOG_LEVEL=DEBUG",
                "WORKFLOW_RUN_TIMEOUT_SECONDS=12.5",
                "WORKFLOW_MAX_VISITS_PER_NODE=4",
                "WORKFLOW_RECORD_ERROR_VARS=false",
                "",
            ]
        ),
        encoding="utf-8",
    )

    settings = WorkflowSettings()

    assert settings.log_level == "DEBUG"
    assert settings.run_timeout_seconds == 12.5
    assert settings.max_visits_per_node == 4
    assert settings.record_error_vars is False


def test_environment_overrides_dotenv(clean_env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    (clean_env / ".env").write_text("WORKFLOW_STEP_DELAY_SECONDS=1\n", encoding="utf-8")
    monkeypatch.setenv("WORKFLOW_STEP_DELAY_SECONDS", "0.25")
    monkeypatch.setenv("WORKFLOW_DOCUMENTS_PATH", "/tmp/rules.json")

    settings = WorkflowSettings()

    assert settings.step_delay_seconds == 0.25
    assert settings.documents_path == Path("/tmp/rules.json")


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("WORKFLOW_RUN_TIMEOUT_SECONDS", "0"),
        ("WORKFLOW_MAX_VISITS_PER_NODE", "0"),
        ("WORKFLOW_STEP_DELAY_SECONDS", "-1"),
        ("LOG_LEVEL", "LOUD"),
    ],
)
def test_invalid_values_are_rejected(
    clean_env: Path, monkeypatch: pytest.MonkeyPatch, name: str, value: str
) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValidationError):
        WorkflowSettings()
