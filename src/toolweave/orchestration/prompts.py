"""System prompt section teaching the model the batch grammars."""

from __future__ import annotations

from ..tools.registry import ToolRegistry

__all__ = ["multi_tool_execution_prompt"]


def multi_tool_execution_prompt(*, include_json: bool = True, registry: ToolRegistry | None = None) -> str:
    """Return the multi-tool execution section of the system prompt.

    Args:
        include_json: Also document the fenced JSON execution block.
        registry: When given, list the tools available in batches.
    """
    sections = [
        "# Multi-Tool Execution",
        "You can run several tools from one response in two modes.",
        _parallel_section(),
        _sequential_section(),
        _ids_section(),
    ]
    if include_json:
        sections.append(_json_section())
    if registry is not None and registry.list_names():
        sections.append(_tools_section(registry))
    return "\n\n".join(sections) + "\n"


def _tools_section(registry: ToolRegistry) -> str:
    lines = ["## Available Tools"]
    for spec in registry.list_tools():
        lines.append(f"- {spec.name}: {spec.description}" if spec.description else f"- {spec.name}")
    return "\n".join(lines)


def _parallel_section() -> str:
    return """## Parallel Execution
Use parallel mode when the tools do not depend on each other's results, for example
reading several files or running independent searches.

```
<multi_tool_use mode="parallel">
  <read_file>
    <path>src/app.py</path>
    <toolId>read_app</toolId>
  </read_file>

  <read_file>
    <path>src/config.py</path>
    <toolId>read_config</toolId>
  </read_file>
</multi_tool_use>
```"""


def _sequential_section() -> str:
    return """## Sequential Execution
Use sequential mode when a tool needs the result of an earlier one. Tools run in order,
one at a time, and the batch stops at the first failure.

```
<multi_tool_use mode="sequential">
  <search_files>
    <path>src</path>
    <regex>def main</regex>
    <toolId>find_main</toolId>
  </search_files>

  <read_file>
    <path>src/app.py</path>
    <toolId>read_main</toolId>
    <dependsOn>find_main</dependsOn>
  </read_file>
</multi_tool_use>
```"""


def _ids_section() -> str:
    return """## Tool Ids
Give every tool a unique `toolId`. Another tool can reference it with `dependsOn`
to wait for its result. In sequential mode a tool without `dependsOn` waits for the
tool right before it."""


def _json_section() -> str:
    return """## JSON Execution Blocks
For conditional, composite or retrying work, describe the batch as JSON instead.
When a response contains such a block, inline tool tags are ignored.

```json
{
  "execution": {
    "mode": "conditional",
    "tools": [
      {"name": "list_files", "toolId": "ls", "params": {"path": "tests"}},
      {
        "name": "execute_command",
        "toolId": "run_tests",
        "params": {"command": "pytest"},
        "condition": {"type": "result", "sourceToolId": "ls", "expression": "result contains 'test_'"},
        "retry": {"maxRetries": 2, "backoffMs": 500, "exponential": true}
      }
    ],
    "options": {"continueOnError": false}
  }
}
```

Modes are single, sequential, parallel, conditional and composite. Condition
types are `result` (expression over the source tool's result), `error` (the source
tool failed) and `custom` (expression over `result`, `state` and `results`).
A tool can name a `fallback` tool to run if it fails, and a composite tool nests
its own `tools` with a `mode`."""
