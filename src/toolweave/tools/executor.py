"""Registry-backed tool runner.

:class:`RegistryToolRunner` implements the ``ToolRunner`` protocol consumed by
the execution engine by dispatching to handlers registered in a
:class:`~toolweave.tools.registry.ToolRegistry`. Handlers may be plain
functions or coroutine functions and receive a :class:`ToolContext` carrying
the host's approver; approval is entirely the handler's business.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Any, Mapping

from .errors import ErrorCode, ToolExecutionError, UnknownToolError
from .registry import ToolRegistry
from .types import Approver, ToolContext

__all__ = [
    "RegistryToolRunner",
    "ExecutorConfig",
]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class ExecutorConfig:
    """Configuration for the registry runner.

    Attributes:
        default_timeout: Per-call timeout in seconds, or None for no limit.
        log_arguments: Whether to log tool arguments (may contain sensitive data).
        log_results: Whether to log tool results.
    """

    default_timeout: float | None = None
    log_arguments: bool = False
    log_results: bool = False


class RegistryToolRunner:
    """Runs tools through handlers attached to a registry.

    Example:
        registry = default_registry()
        registry.attach_handler("read_file", lambda args, ctx: Path(args["path"]).read_text())
        runner = RegistryToolRunner(registry)
        engine = ExecutionEngine(runner, registry=registry)
    """

    def __init__(
        self,
        registry: ToolRegistry,
        config: ExecutorConfig | None = None,
        *,
        approver: Approver | None = None,
    ) -> None:
        self._registry = registry
        self._config = config or ExecutorConfig()
        self._approver = approver

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    @property
    def config(self) -> ExecutorConfig:
        return self._config

    async def run(
        self,
        name: str,
        parameters: Mapping[str, str],
        context: ToolContext,
    ) -> Any:
        """Run the handler registered for ``name``.

        Args:
            name: Tool name.
            parameters: Parameter values.
            context: Invocation context; its approver defaults to the runner's.

        Returns:
            Whatever the handler returns.

        Raises:
            UnknownToolError: The tool is unknown, disabled or has no handler.
            ToolExecutionError: The handler raised.
            asyncio.TimeoutError: The handler exceeded the configured timeout.
        """
        if self._config.log_arguments:
            LOGGER.debug("Running tool %s (id=%s) with arguments: %s", name, context.invocation_id, parameters)
        else:
            LOGGER.debug("Running tool %s (id=%s)", name, context.invocation_id)

        registration = self._registry.get(name)
        if registration is None:
            raise UnknownToolError(tool_name=name)
        if registration.handler is None:
            raise UnknownToolError(
                error_code=ErrorCode.TOOL_NOT_IMPLEMENTED,
                message=f"Tool '{name}' has no implementation",
                tool_name=name,
            )
        if context.approver is None and self._approver is not None:
            context.approver = self._approver

        timeout = self._config.default_timeout
        start_time = time.perf_counter()
        try:
            call = self._invoke(registration.handler, parameters, context)
            if timeout is not None and timeout > 0:
                result = await asyncio.wait_for(call, timeout=timeout)
            else:
                result = await call
        except asyncio.TimeoutError:
            duration_ms = (time.perf_counter() - start_time) * 1000
            LOGGER.warning("Tool %s timed out after %.1fms (timeout=%.1fs)", name, duration_ms, timeout)
            raise
        except Exception as exc:
            duration_ms = (time.perf_counter() - start_time) * 1000
            LOGGER.warning("Tool %s failed after %.1fms: %s", name, duration_ms, exc)
            raise ToolExecutionError(str(exc), tool_name=name, cause=exc) from exc

        duration_ms = (time.perf_counter() - start_time) * 1000
        if self._config.log_results:
            LOGGER.debug("Tool %s completed in %.1fms with result: %s", name, duration_ms, result)
        else:
            LOGGER.debug("Tool %s completed in %.1fms", name, duration_ms)
        return result

    @staticmethod
    async def _invoke(handler: Any, parameters: Mapping[str, str], context: ToolContext) -> Any:
        result = handler(dict(parameters), context)
        if inspect.isawaitable(result):
            result = await result
        return result
