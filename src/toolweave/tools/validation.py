"""Invocation validation against the tool registry."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .errors import MissingParameterError, UnknownToolError
from .registry import ToolRegistry

if TYPE_CHECKING:
    from ..orchestration.types import ToolInvocation

__all__ = ["validate_invocation", "missing_parameters"]


def missing_parameters(invocation: "ToolInvocation", registry: ToolRegistry) -> list[str]:
    """Required parameters of ``invocation`` that are absent or blank."""
    return [
        name
        for name in registry.required_parameters(invocation.name)
        if not str(invocation.parameters.get(name, "")).strip()
    ]


def validate_invocation(invocation: "ToolInvocation", registry: ToolRegistry) -> None:
    """Check that ``invocation`` names an enabled tool and carries its required parameters.

    Composite invocations are containers and skip the name check.

    Raises:
        UnknownToolError: The tool is not registered or disabled.
        MissingParameterError: Required parameters are missing.
    """
    if invocation.is_composite:
        return
    if not registry.has(invocation.name):
        raise UnknownToolError(tool_name=invocation.name)
    missing = missing_parameters(invocation, registry)
    if missing:
        raise MissingParameterError(tool_name=invocation.name, missing=tuple(missing))
