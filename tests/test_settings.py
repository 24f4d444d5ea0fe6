"""Tests for services/settings.py."""

from __future__ import annotations

import logging

import pytest

from toolweave.orchestration.types import ExecutionOptions
from toolweave.services import EngineSettings, load_settings
from toolweave.tools.executor import ExecutorConfig


class TestLoadSettings:
    """Tests for defaults and environment overrides."""

    def test_defaults(self) -> None:
        settings = load_settings(env={})

        assert settings == EngineSettings()
        assert settings.max_concurrency == 4
        assert settings.continue_on_error is False

    def test_environment_overrides(self) -> None:
        env = {
            "TOOLWEAVE_MAX_CONCURRENCY": "8",
            "TOOLWEAVE_CONTINUE_ON_ERROR": "yes",
            "TOOLWEAVE_TIMEOUT_MS": "1500",
            "TOOLWEAVE_TOOL_TIMEOUT": "2.5",
            "TOOLWEAVE_LOG_ARGUMENTS": "0",
        }

        settings = load_settings(env=env)

        assert settings.max_concurrency == 8
        assert settings.continue_on_error is True
        assert settings.timeout_ms == 1500
        assert settings.tool_timeout_seconds == 2.5
        assert settings.log_arguments is False

    @pytest.mark.parametrize(
        "env",
        [
            {"TOOLWEAVE_MAX_CONCURRENCY": "lots"},
            {"TOOLWEAVE_MAX_CONCURRENCY": "0"},
            {"TOOLWEAVE_TIMEOUT_MS": "-5"},
            {"TOOLWEAVE_TOOL_TIMEOUT": "soon"},
        ],
    )
    def test_invalid_environment_values_ignored(self, env: dict, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="toolweave.services.settings"):
            settings = load_settings(env=env)

        assert settings == EngineSettings()
        assert "Environment override" in caplog.text

    def test_explicit_overrides_win(self) -> None:
        settings = load_settings(
            {"max_concurrency": 2, "unknown_key": True},
            env={"TOOLWEAVE_MAX_CONCURRENCY": "8"},
        )

        assert settings.max_concurrency == 2

    def test_reads_process_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TOOLWEAVE_LOG_RESULTS", "true")

        assert load_settings().log_results is True


class TestConversions:
    """Tests for deriving run options and runner configuration."""

    def test_to_options(self) -> None:
        settings = EngineSettings(max_concurrency=3, continue_on_error=True, timeout_ms=100)

        assert settings.to_options() == ExecutionOptions(max_concurrency=3, continue_on_error=True, timeout_ms=100)

    def test_to_executor_config(self) -> None:
        settings = EngineSettings(tool_timeout_seconds=1.5, log_results=True)

        assert settings.to_executor_config() == ExecutorConfig(default_timeout=1.5, log_results=True)


class TestExecutionOptions:
    """Tests for ExecutionOptions parsing."""

    def test_from_dict_aliases(self) -> None:
        options = ExecutionOptions.from_dict({"maxConcurrency": 2, "continueOnError": True, "timeout": 50})

        assert options == ExecutionOptions(max_concurrency=2, continue_on_error=True, timeout_ms=50)

    def test_concurrency_clamped(self) -> None:
        assert ExecutionOptions(max_concurrency=0).max_concurrency == 1

    def test_empty(self) -> None:
        assert ExecutionOptions.from_dict(None) == ExecutionOptions()
