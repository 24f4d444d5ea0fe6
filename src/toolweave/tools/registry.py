"""Tool registry for the orchestration core.

The registry is the catalog the parser and engine consult: which tag names
open a tool block, which parameter tags exist, and which parameters each
tool requires. Tools registered with a handler can also be run through
:class:`~toolweave.tools.executor.RegistryToolRunner`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from .types import AsyncToolHandler, ToolCategory, ToolHandler, ToolSpec

__all__ = [
    "ToolRegistry",
    "ToolRegistration",
    "DuplicateToolError",
    "ToolNotFoundError",
    "WRITE_FILE_TOOL",
    "RESERVED_TAGS",
    "DEFAULT_TOOL_SPECS",
    "default_registry",
]

LOGGER = logging.getLogger(__name__)

# Tool whose ``content`` parameter may legitimately contain ``</content>``.
WRITE_FILE_TOOL = "write_to_file"

# Tags inside a tool block that carry scheduling metadata, not parameters.
RESERVED_TAGS: tuple[str, ...] = ("toolId", "dependsOn")


# -----------------------------------------------------------------------------
# Exceptions
# -----------------------------------------------------------------------------


class DuplicateToolError(Exception):
    """Raised when attempting to register a tool with a name that already exists."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool '{name}' is already registered")


class ToolNotFoundError(Exception):
    """Raised when a requested tool is not found in the registry."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool '{name}' not found")


# -----------------------------------------------------------------------------
# Tool Registration
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class ToolRegistration:
    """Record of a registered tool.

    Attributes:
        spec: Tool specification.
        handler: Callable implementing the tool, if the host supplied one.
        enabled: Whether the tool is currently enabled.
        metadata: Additional registration metadata.
    """

    spec: ToolSpec
    handler: ToolHandler | AsyncToolHandler | None = None
    enabled: bool = True
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.spec.name


# -----------------------------------------------------------------------------
# Default Catalog
# -----------------------------------------------------------------------------

DEFAULT_TOOL_SPECS: tuple[ToolSpec, ...] = (
    ToolSpec(
        name="execute_command",
        description="Run a CLI command in the workspace",
        parameters=("command", "cwd", "requires_approval"),
        required=("command",),
        category=ToolCategory.COMMAND,
        is_write=True,
    ),
    ToolSpec(
        name="read_file",
        description="Read the contents of a file",
        parameters=("path", "start_line", "end_line"),
        required=("path",),
    ),
    ToolSpec(
        name="fetch_instructions",
        description="Fetch instructions for a task",
        parameters=("task",),
        required=("task",),
    ),
    ToolSpec(
        name="write_to_file",
        description="Write complete content to a file",
        parameters=("path", "content", "line_count"),
        required=("path", "content"),
        category=ToolCategory.WRITE,
        is_write=True,
    ),
    ToolSpec(
        name="apply_diff",
        description="Apply a search/replace diff to a file",
        parameters=("path", "diff", "start_line", "end_line"),
        required=("path", "diff"),
        category=ToolCategory.WRITE,
        is_write=True,
    ),
    ToolSpec(
        name="search_files",
        description="Regex search across files in a directory",
        parameters=("path", "regex", "file_pattern"),
        required=("path", "regex"),
        category=ToolCategory.SEARCH,
    ),
    ToolSpec(
        name="list_files",
        description="List files in a directory",
        parameters=("path", "recursive"),
        required=("path",),
    ),
    ToolSpec(
        name="list_code_definition_names",
        description="List top-level definitions in source files",
        parameters=("path",),
        required=("path",),
    ),
    ToolSpec(
        name="browser_action",
        description="Drive a headless browser",
        parameters=("action", "url", "coordinate", "text", "size"),
        required=("action",),
        category=ToolCategory.BROWSER,
        is_write=True,
    ),
    ToolSpec(
        name="use_mcp_tool",
        description="Call a tool exposed by an MCP server",
        parameters=("server_name", "tool_name", "arguments"),
        required=("server_name", "tool_name"),
        category=ToolCategory.MCP,
        is_write=True,
    ),
    ToolSpec(
        name="access_mcp_resource",
        description="Read a resource exposed by an MCP server",
        parameters=("server_name", "uri"),
        required=("server_name", "uri"),
        category=ToolCategory.MCP,
    ),
    ToolSpec(
        name="ask_followup_question",
        description="Ask the user a clarifying question",
        parameters=("question", "follow_up"),
        required=("question",),
        category=ToolCategory.INTERACTION,
    ),
    ToolSpec(
        name="attempt_completion",
        description="Present the result of the task",
        parameters=("result", "command"),
        required=("result",),
        category=ToolCategory.INTERACTION,
    ),
    ToolSpec(
        name="switch_mode",
        description="Switch the agent to another mode",
        parameters=("mode_slug", "reason"),
        required=("mode_slug",),
        category=ToolCategory.WORKFLOW,
    ),
    ToolSpec(
        name="new_task",
        description="Start a new task in a given mode",
        parameters=("mode", "message"),
        required=("mode", "message"),
        category=ToolCategory.WORKFLOW,
    ),
    ToolSpec(
        name="insert_content",
        description="Insert content at given lines of a file",
        parameters=("path", "operations", "line", "content"),
        required=("path", "operations"),
        category=ToolCategory.WRITE,
        is_write=True,
    ),
    ToolSpec(
        name="search_and_replace",
        description="Search and replace text in a file",
        parameters=("path", "operations", "search", "replace", "use_regex", "ignore_case"),
        required=("path", "operations"),
        category=ToolCategory.WRITE,
        is_write=True,
    ),
)


# -----------------------------------------------------------------------------
# Tool Registry
# -----------------------------------------------------------------------------


class ToolRegistry:
    """Registry for managing tool registrations.

    Example:
        registry = ToolRegistry()
        registry.register_function(
            ToolSpec(name="read_file", parameters=("path",), required=("path",)),
            handler=lambda args, ctx: open(args["path"]).read(),
        )
        registry.required_parameters("read_file")  # ("path",)
    """

    def __init__(self, specs: Iterable[ToolSpec] | None = None) -> None:
        self._tools: dict[str, ToolRegistration] = {}
        for spec in specs or ():
            self.register(spec)

    def register(
        self,
        spec: ToolSpec,
        *,
        handler: ToolHandler | AsyncToolHandler | None = None,
        enabled: bool = True,
        allow_override: bool = False,
        metadata: Mapping[str, Any] | None = None,
    ) -> ToolRegistration:
        """Register a tool specification.

        Args:
            spec: The tool specification.
            handler: Optional implementation used by ``RegistryToolRunner``.
            enabled: Whether the tool is enabled.
            allow_override: If True, replaces an existing registration.
            metadata: Additional metadata to store with registration.

        Returns:
            The tool registration record.

        Raises:
            DuplicateToolError: If the name is taken and allow_override is False.
        """
        name = spec.name
        if name in self._tools and not allow_override:
            raise DuplicateToolError(name)

        registration = ToolRegistration(
            spec=spec,
            handler=handler,
            enabled=enabled,
            metadata=dict(metadata) if metadata else {},
        )
        self._tools[name] = registration
        LOGGER.debug("Registered tool: %s", name)
        return registration

    def register_function(
        self,
        spec: ToolSpec,
        handler: ToolHandler | AsyncToolHandler,
        *,
        enabled: bool = True,
        allow_override: bool = False,
        metadata: Mapping[str, Any] | None = None,
    ) -> ToolRegistration:
        """Register a function as a tool implementation."""
        return self.register(
            spec,
            handler=handler,
            enabled=enabled,
            allow_override=allow_override,
            metadata=metadata,
        )

    def attach_handler(self, name: str, handler: ToolHandler | AsyncToolHandler) -> None:
        """Attach an implementation to an already registered tool.

        Raises:
            ToolNotFoundError: If the tool is not registered.
        """
        registration = self._tools.get(name)
        if registration is None:
            raise ToolNotFoundError(name)
        registration.handler = handler

    def get(self, name: str) -> ToolRegistration | None:
        """Get the registration for an enabled tool, or None."""
        registration = self._tools.get(name)
        if registration is None or not registration.enabled:
            return None
        return registration

    def has(self, name: str) -> bool:
        """Check if a tool is registered and enabled."""
        registration = self._tools.get(name)
        return registration is not None and registration.enabled

    def list_names(self, *, include_disabled: bool = False) -> list[str]:
        """List registered tool names in registration order."""
        return [
            registration.name
            for registration in self._tools.values()
            if registration.enabled or include_disabled
        ]

    def list_tools(self, *, include_disabled: bool = False) -> list[ToolSpec]:
        """List registered tool specifications."""
        return [
            registration.spec
            for registration in self._tools.values()
            if registration.enabled or include_disabled
        ]

    def parameter_names(self) -> tuple[str, ...]:
        """Every parameter tag known to any registered tool, in first-seen order."""
        seen: dict[str, None] = {}
        for registration in self._tools.values():
            for name in (*registration.spec.required, *registration.spec.parameters):
                seen.setdefault(name, None)
        return tuple(seen)

    def required_parameters(self, name: str) -> tuple[str, ...]:
        """Required parameters for ``name``; empty for unknown tools."""
        registration = self._tools.get(name)
        if registration is None:
            return ()
        return registration.spec.required

    def enable(self, name: str) -> bool:
        """Enable a tool by name."""
        registration = self._tools.get(name)
        if registration is None:
            return False
        registration.enabled = True
        return True

    def disable(self, name: str) -> bool:
        """Disable a tool by name. Disabled tools do not open inline blocks."""
        registration = self._tools.get(name)
        if registration is None:
            return False
        registration.enabled = False
        return True

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools


def default_registry() -> ToolRegistry:
    """Return a fresh registry loaded with the coding-agent tool catalog."""
    return ToolRegistry(DEFAULT_TOOL_SPECS)
