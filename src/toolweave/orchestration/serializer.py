"""Serialize invocations back into the inline and JSON grammars."""

from __future__ import annotations

import json
from typing import Any, Sequence

from .types import ExecutionMode, ExecutionOptions, ToolInvocation

__all__ = ["to_inline_tags", "to_inline_batch", "to_execution_json", "invocation_to_spec"]


def to_inline_tags(invocation: ToolInvocation, *, include_ids: bool = False) -> str:
    """Render one invocation as an inline tool block.

    Args:
        invocation: Invocation to render.
        include_ids: Emit ``<toolId>`` and ``<dependsOn>`` children.
    """
    lines = [f"<{invocation.name}>"]
    if include_ids:
        lines.append(f"<toolId>{invocation.id}</toolId>")
        if invocation.depends_on:
            lines.append(f"<dependsOn>{invocation.depends_on}</dependsOn>")
    for key, value in invocation.parameters.items():
        if "\n" in value:
            lines.append(f"<{key}>\n{value}\n</{key}>")
        else:
            lines.append(f"<{key}>{value}</{key}>")
    lines.append(f"</{invocation.name}>")
    return "\n".join(lines)


def to_inline_batch(invocations: Sequence[ToolInvocation], mode: ExecutionMode | str) -> str:
    """Render a parallel or sequential batch wrapped in ``<multi_tool_use>``."""
    mode = ExecutionMode.coerce(mode)
    if mode not in (ExecutionMode.PARALLEL, ExecutionMode.SEQUENTIAL):
        raise ValueError(f"Inline batches support parallel and sequential modes, not {mode.value}")
    blocks = "\n".join(to_inline_tags(item, include_ids=True) for item in invocations)
    return f'<multi_tool_use mode="{mode.value}">\n{blocks}\n</multi_tool_use>'


def invocation_to_spec(invocation: ToolInvocation) -> dict[str, Any]:
    """Convert an invocation to its JSON tool entry."""
    spec: dict[str, Any] = {
        "name": invocation.name,
        "toolId": invocation.id,
        "params": dict(invocation.parameters),
    }
    if invocation.depends_on:
        spec["dependsOn"] = invocation.depends_on
    if invocation.condition is not None:
        spec["condition"] = invocation.condition.to_dict()
    if invocation.retry_policy is not None:
        spec["retry"] = invocation.retry_policy.to_dict()
    if invocation.fallback is not None:
        spec["fallback"] = invocation_to_spec(invocation.fallback)
    if invocation.children is not None:
        spec["tools"] = [invocation_to_spec(child) for child in invocation.children]
        spec["mode"] = (invocation.child_mode or ExecutionMode.SEQUENTIAL).value
    if invocation.input_mappings:
        spec["inputMappings"] = [dict(entry) for entry in invocation.input_mappings]
    if invocation.output_mappings:
        spec["outputMappings"] = [dict(entry) for entry in invocation.output_mappings]
    return spec


def to_execution_json(
    invocations: Sequence[ToolInvocation],
    mode: ExecutionMode | str,
    options: ExecutionOptions | None = None,
    *,
    fenced: bool = True,
) -> str:
    """Render a batch as a JSON execution block."""
    execution: dict[str, Any] = {
        "mode": ExecutionMode.coerce(mode).value,
        "tools": [invocation_to_spec(item) for item in invocations],
    }
    if options is not None:
        execution["options"] = options.to_dict()
    body = json.dumps({"execution": execution}, indent=2, ensure_ascii=False)
    return f"```json\n{body}\n```" if fenced else body
