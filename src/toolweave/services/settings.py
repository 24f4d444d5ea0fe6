"""Engine settings with environment overrides."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields, replace
from typing import TYPE_CHECKING, Any, Dict, Mapping

from ..tools.executor import ExecutorConfig

if TYPE_CHECKING:
    from ..orchestration.types import ExecutionOptions

__all__ = ["EngineSettings", "load_settings"]

LOGGER = logging.getLogger(__name__)

_BOOL_ENV_OVERRIDES: Mapping[str, str] = {
    "TOOLWEAVE_CONTINUE_ON_ERROR": "continue_on_error",
    "TOOLWEAVE_LOG_ARGUMENTS": "log_arguments",
    "TOOLWEAVE_LOG_RESULTS": "log_results",
}
_INT_ENV_OVERRIDES: Mapping[str, str] = {
    "TOOLWEAVE_MAX_CONCURRENCY": "max_concurrency",
    "TOOLWEAVE_TIMEOUT_MS": "timeout_ms",
}
_FLOAT_ENV_OVERRIDES: Mapping[str, str] = {
    "TOOLWEAVE_TOOL_TIMEOUT": "tool_timeout_seconds",
}
_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass(slots=True, frozen=True)
class EngineSettings:
    """Defaults for execution runs.

    Attributes:
        max_concurrency: Largest parallel batch.
        continue_on_error: Keep running after failures.
        timeout_ms: Run deadline, checked between scheduling steps.
        tool_timeout_seconds: Per-call timeout used by the registry runner.
        log_arguments: Log tool arguments (may contain sensitive data).
        log_results: Log tool payloads.
    """

    max_concurrency: int = 4
    continue_on_error: bool = False
    timeout_ms: int | None = None
    tool_timeout_seconds: float | None = None
    log_arguments: bool = False
    log_results: bool = False

    def to_options(self) -> "ExecutionOptions":
        from ..orchestration.types import ExecutionOptions

        return ExecutionOptions(
            max_concurrency=max(self.max_concurrency, 1),
            continue_on_error=self.continue_on_error,
            timeout_ms=self.timeout_ms,
        )

    def to_executor_config(self) -> ExecutorConfig:
        """Runner configuration carrying the per-call timeout and logging flags."""
        return ExecutorConfig(
            default_timeout=self.tool_timeout_seconds,
            log_arguments=self.log_arguments,
            log_results=self.log_results,
        )


def load_settings(
    overrides: Mapping[str, Any] | None = None,
    *,
    env: Mapping[str, str] | None = None,
) -> EngineSettings:
    """Build settings from defaults, environment variables and explicit overrides.

    Explicit ``overrides`` win over the environment. Malformed environment
    values are ignored with a warning.
    """
    settings = _apply_env_overrides(EngineSettings(), os.environ if env is None else env)
    if overrides:
        settings = _apply_overrides(settings, overrides, source="runtime")
    return settings


def _apply_overrides(settings: EngineSettings, overrides: Mapping[str, Any], *, source: str) -> EngineSettings:
    allowed = {field.name for field in fields(EngineSettings)}
    filtered: Dict[str, Any] = {key: value for key, value in overrides.items() if key in allowed}
    if filtered:
        LOGGER.debug("Applying %s settings overrides: %s", source, sorted(filtered))
        settings = replace(settings, **filtered)
    return settings


def _apply_env_overrides(settings: EngineSettings, env: Mapping[str, str]) -> EngineSettings:
    overrides: Dict[str, Any] = {}
    for env_name, field_name in _BOOL_ENV_OVERRIDES.items():
        value = env.get(env_name)
        if value is not None:
            overrides[field_name] = value.strip().lower() in _TRUE_VALUES
    for env_name, field_name in _INT_ENV_OVERRIDES.items():
        value = env.get(env_name)
        if value is None:
            continue
        try:
            parsed = int(value.strip(), 10)
        except ValueError:
            LOGGER.warning("Environment override %s=%s is not a valid integer", env_name, value)
            continue
        if parsed < (1 if field_name == "max_concurrency" else 0):
            LOGGER.warning("Environment override %s=%s is out of range", env_name, value)
            continue
        overrides[field_name] = parsed
    for env_name, field_name in _FLOAT_ENV_OVERRIDES.items():
        value = env.get(env_name)
        if value is None:
            continue
        try:
            overrides[field_name] = float(value)
        except ValueError:
            LOGGER.warning("Environment override %s=%s is not a valid float", env_name, value)
    if overrides:
        settings = _apply_overrides(settings, overrides, source="environment")
    return settings
