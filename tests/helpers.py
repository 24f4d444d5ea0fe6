"""Shared test helpers and fake collaborators.

Import from here instead of duplicating these classes in individual test files::

    from helpers import FakeRunner, SequentialIds, make_invocation
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
from typing import Any, Callable, Mapping

from toolweave.orchestration.types import ExecutionMode, ToolInvocation
from toolweave.tools.types import ToolContext


class SequentialIds:
    """Deterministic id factory: ``id1``, ``id2``, ..."""

    def __init__(self, prefix: str = "id") -> None:
        self._prefix = prefix
        self._counter = itertools.count(1)

    def __call__(self) -> str:
        return f"{self._prefix}{next(self._counter)}"


class FakeRunner:
    """Tool runner stub recording every call.

    ``handlers`` maps tool names to a value or a callable
    ``(parameters, context) -> value`` (sync or async). Tools without a handler
    return ``"<name> ok"``.
    """

    def __init__(self, handlers: Mapping[str, Any] | None = None, *, delay: float = 0.0) -> None:
        self.handlers: dict[str, Any] = dict(handlers or {})
        self.delay = delay
        self.calls: list[tuple[str, dict[str, str]]] = []
        self.contexts: list[ToolContext] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def run(self, name: str, parameters: Mapping[str, str], context: ToolContext) -> Any:
        self.calls.append((name, dict(parameters)))
        self.contexts.append(context)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            handler = self.handlers.get(name)
            if handler is None:
                return f"{name} ok"
            result = handler(parameters, context) if callable(handler) else handler
            if inspect.isawaitable(result):
                result = await result
            return result
        finally:
            self.in_flight -= 1

    def called_names(self) -> list[str]:
        return [name for name, _ in self.calls]

    def call_count(self, name: str) -> int:
        return sum(1 for called, _ in self.calls if called == name)


class Flaky:
    """Handler failing ``failures`` times before returning ``value``."""

    def __init__(self, failures: int, value: Any = "recovered") -> None:
        self.failures = failures
        self.value = value
        self.calls = 0

    def __call__(self, parameters: Mapping[str, str], context: ToolContext) -> Any:
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError(f"transient failure {self.calls}")
        return self.value


def make_invocation(
    invocation_id: str,
    name: str = "read_file",
    *,
    parameters: Mapping[str, str] | None = None,
    mode: ExecutionMode = ExecutionMode.SINGLE,
    **changes: Any,
) -> ToolInvocation:
    """Build an invocation with sensible default parameters for ``name``."""
    if parameters is None:
        parameters = _DEFAULT_PARAMETERS.get(name, lambda i: {})(invocation_id)
    return ToolInvocation(id=invocation_id, name=name, parameters=dict(parameters), mode=mode, **changes)


_DEFAULT_PARAMETERS: dict[str, Callable[[str], dict[str, str]]] = {
    "read_file": lambda i: {"path": f"{i}.py"},
    "list_files": lambda i: {"path": "src"},
    "search_files": lambda i: {"path": "src", "regex": "TODO"},
    "execute_command": lambda i: {"command": f"echo {i}"},
    "write_to_file": lambda i: {"path": f"{i}.txt", "content": "hello"},
}
