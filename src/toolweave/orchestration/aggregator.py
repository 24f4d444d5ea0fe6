"""Result aggregation and human-readable reports.

The report is what the agent loop feeds back to the model: a mode header
followed by one entry per invocation, in declaration order::

    [Parallel tool execution results]

    [read_file for 'src/app.py'] Result:
    <file contents>

    [search_files for 'TODO' in '*.py'] Result:
    Error: permission denied
"""

from __future__ import annotations

import json
from typing import Any, Callable, Iterable, Mapping, Sequence

from .types import ExecutionMode, MultiToolResult, ToolInvocation, ToolResult

__all__ = [
    "aggregate",
    "aggregate_report",
    "describe_invocation",
    "format_payload",
]


def aggregate(
    results: Iterable[ToolResult],
    *,
    continue_on_error: bool = False,
    warnings: Iterable[str] = (),
) -> MultiToolResult:
    """Merge per-invocation results into a :class:`MultiToolResult`.

    Overall success is ``continue_on_error`` or every result succeeded; an
    empty batch succeeds. The aggregated payload lists payloads in order.
    """
    results_by_id: dict[str, ToolResult] = {}
    for result in results:
        results_by_id[result.id] = result
    ordered = list(results_by_id.values())
    return MultiToolResult(
        results_by_id=results_by_id,
        overall_success=continue_on_error or all(result.success for result in ordered),
        aggregated_payload=[result.payload for result in ordered],
        warnings=list(warnings),
    )


# -----------------------------------------------------------------------------
# Descriptions
# -----------------------------------------------------------------------------

def _for(key: str) -> Callable[[ToolInvocation], str]:
    return lambda inv: f"[{inv.name} for '{inv.parameters.get(key, '')}']"


def _search_files(inv: ToolInvocation) -> str:
    text = f"[{inv.name} for '{inv.parameters.get('regex', '')}'"
    pattern = inv.parameters.get("file_pattern")
    if pattern:
        text += f" in '{pattern}'"
    return text + "]"


def _switch_mode(inv: ToolInvocation) -> str:
    text = f"[{inv.name} to '{inv.parameters.get('mode_slug', '')}'"
    reason = inv.parameters.get("reason")
    if reason:
        text += f" because: {reason}"
    return text + "]"


def _new_task(inv: ToolInvocation) -> str:
    mode = inv.parameters.get("mode", "")
    return f"[{inv.name} in {mode} mode: '{inv.parameters.get('message', '')}']"


_DESCRIBERS: dict[str, Callable[[ToolInvocation], str]] = {
    "execute_command": _for("command"),
    "read_file": _for("path"),
    "fetch_instructions": _for("task"),
    "write_to_file": _for("path"),
    "apply_diff": _for("path"),
    "search_files": _search_files,
    "list_files": _for("path"),
    "list_code_definition_names": _for("path"),
    "browser_action": _for("action"),
    "use_mcp_tool": _for("server_name"),
    "access_mcp_resource": _for("server_name"),
    "ask_followup_question": _for("question"),
    "attempt_completion": lambda inv: f"[{inv.name}]",
    "switch_mode": _switch_mode,
    "new_task": _new_task,
    "insert_content": _for("path"),
    "search_and_replace": _for("path"),
}


def describe_invocation(invocation: ToolInvocation) -> str:
    """Short bracketed description of an invocation for reports."""
    if invocation.is_composite:
        count = len(invocation.children or ())
        mode = (invocation.child_mode or ExecutionMode.SEQUENTIAL).value
        return f"[{invocation.name} composite of {count} tools ({mode})]"
    describer = _DESCRIBERS.get(invocation.name)
    if describer is None:
        return f"[{invocation.name}]"
    return describer(invocation)


# -----------------------------------------------------------------------------
# Report
# -----------------------------------------------------------------------------

def format_payload(payload: Any) -> str:
    """Render a tool payload as text."""
    if payload is None:
        return "(no output)"
    if isinstance(payload, str):
        return payload
    if isinstance(payload, list) and payload and all(
        isinstance(block, Mapping) and block.get("type") == "text" for block in payload
    ):
        return "\n".join(str(block.get("text", "")) for block in payload)
    try:
        return json.dumps(payload, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return repr(payload)


def _format_result(result: ToolResult | None) -> str:
    if result is None:
        return "(no result)"
    if not result.attempted:
        return "(not attempted)"
    if not result.success:
        message = result.error.message if result.error is not None else "Unknown error"
        return f"Error: {message}"
    if result.skipped:
        reason = result.payload.get("reason", "") if isinstance(result.payload, dict) else ""
        return f"(skipped: {reason})"
    if result.children is not None and result.children.report:
        return result.children.report
    return format_payload(result.payload)


def _results_map(
    results: MultiToolResult | Mapping[str, ToolResult] | Sequence[ToolResult],
) -> Mapping[str, ToolResult]:
    if isinstance(results, MultiToolResult):
        return results.results_by_id
    if isinstance(results, Mapping):
        return results
    return {result.id: result for result in results}


def aggregate_report(
    mode: ExecutionMode | str,
    results: MultiToolResult | Mapping[str, ToolResult] | Sequence[ToolResult],
    original_invocations: Sequence[ToolInvocation],
) -> str:
    """Build the grouped, human-readable report for a batch.

    Args:
        mode: Batch mode, used in the header.
        results: Results keyed by invocation id (or a sequence of them).
        original_invocations: Invocations in declaration order.

    Returns:
        The report text.
    """
    label = ExecutionMode.coerce(mode).label
    by_id = _results_map(results)
    parts = [f"[{label} tool execution results]"]
    for invocation in original_invocations:
        parts.append(f"{describe_invocation(invocation)} Result:\n{_format_result(by_id.get(invocation.id))}")
    return "\n\n".join(parts)
