"""Tool system types and collaborator interfaces.

This module defines the tool specification used by the registry and the
protocols the orchestration core consumes: the runner that performs tool
side effects, the approver used by individual tools, the abort signal polled
at scheduling checkpoints, and the usage recorder.
"""

from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Coroutine, Mapping, Protocol, runtime_checkable

__all__ = [
    "ToolSpec",
    "ToolCategory",
    "ToolContext",
    "ToolHandler",
    "AsyncToolHandler",
    "ToolRunner",
    "Approver",
    "AbortSignal",
    "AbortFlag",
    "UsageRecorder",
]


# -----------------------------------------------------------------------------
# Tool Categories
# -----------------------------------------------------------------------------


class ToolCategory:
    """Standard tool categories for organization."""

    READ = "read"
    WRITE = "write"
    SEARCH = "search"
    COMMAND = "command"
    BROWSER = "browser"
    MCP = "mcp"
    INTERACTION = "interaction"
    WORKFLOW = "workflow"


# -----------------------------------------------------------------------------
# Tool Specification
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolSpec:
    """Specification for a tool's interface.

    Attributes:
        name: Unique identifier for the tool, also its inline tag name.
        description: Human-readable description of what the tool does.
        parameters: Every parameter tag the tool accepts.
        required: Parameters that must be present before the tool can run.
        category: Tool category for organization.
        is_write: Whether the tool has user-visible side effects.
    """

    name: str
    description: str = ""
    parameters: tuple[str, ...] = ()
    required: tuple[str, ...] = ()
    category: str = ToolCategory.READ
    is_write: bool = False

    def accepts(self, parameter: str) -> bool:
        """Return True if ``parameter`` is part of this tool's vocabulary."""
        return parameter in self.parameters or parameter in self.required

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": list(self.parameters),
            "required": list(self.required),
            "category": self.category,
            "is_write": self.is_write,
        }


# -----------------------------------------------------------------------------
# Tool Context
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class ToolContext:
    """Context handed to a running tool.

    Attributes:
        invocation_id: Id of the invocation being executed.
        shared_state: Read-only view of the execution context's shared state.
        approver: Approval gate for user-visible side effects, if available.
        metadata: Free-form values supplied by the host.
    """

    invocation_id: str = ""
    shared_state: Mapping[str, Any] = field(default_factory=dict)
    approver: "Approver | None" = None
    metadata: dict[str, Any] = field(default_factory=dict)

    async def request_approval(self, kind: str, message: str) -> bool:
        """Ask the approver; without one, nothing is approved."""
        if self.approver is None:
            return False
        return bool(await self.approver.request(kind, message))


# Synchronous tool handler
ToolHandler = Callable[[Mapping[str, Any], ToolContext], Any]

# Asynchronous tool handler
AsyncToolHandler = Callable[[Mapping[str, Any], ToolContext], Coroutine[Any, Any, Any]]


# -----------------------------------------------------------------------------
# Collaborator Protocols
# -----------------------------------------------------------------------------


@runtime_checkable
class ToolRunner(Protocol):
    """Performs the actual side effect of a named tool.

    Implementations return the tool payload and raise on failure.
    """

    async def run(
        self,
        name: str,
        parameters: Mapping[str, str],
        context: ToolContext,
    ) -> Any:
        ...


@runtime_checkable
class Approver(Protocol):
    """Gates user-visible side effects. Used by tools, never by the engine."""

    async def request(self, kind: str, message: str) -> bool:
        ...


@runtime_checkable
class AbortSignal(Protocol):
    """Cooperative cancellation flag polled at scheduling checkpoints."""

    def is_set(self) -> bool:
        ...


@runtime_checkable
class UsageRecorder(Protocol):
    """Fire-and-forget telemetry hook called once per executed tool."""

    def record(self, tool_name: str) -> None:
        ...


class AbortFlag:
    """Default abort signal backed by a thread-safe event.

    Can be set from any thread (for example a UI cancel button) and is polled
    by the engine running on the event loop.
    """

    __slots__ = ("_event", "_reason")

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason = ""

    def set(self, reason: str = "") -> None:
        self._reason = reason
        self._event.set()

    def clear(self) -> None:
        self._reason = ""
        self._event.clear()

    def is_set(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason

    async def wait(self, timeout: float | None = None) -> bool:
        """Wait for the flag without blocking the event loop."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._event.wait, timeout)
