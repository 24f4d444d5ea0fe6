"""JSON execution-block grammar.

An assistant message may carry a fenced code block describing a whole batch::

    ```json
    {"execution": {"mode": "parallel",
                   "tools": [{"name": "read_file", "toolId": "a", "params": {"path": "x"}}],
                   "options": {"maxConcurrency": 2}}}
    ```

The first fenced block that decodes and validates against
:data:`EXECUTION_SCHEMA` is converted into invocations. Blocks that fail
either step are skipped rather than raised.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from json import JSONDecodeError
from typing import Any, Callable, Mapping, Sequence

from jsonschema import Draft202012Validator

from .types import (
    Condition,
    ExecutionMode,
    ExecutionOptions,
    RetryPolicy,
    ToolInvocation,
    new_invocation_id,
)

__all__ = [
    "EXECUTION_SCHEMA",
    "JSON_BLOCK_RE",
    "JsonBlock",
    "find_execution_block",
    "schema_errors",
    "invocation_from_spec",
    "coerce_parameter",
]

LOGGER = logging.getLogger(__name__)

JSON_BLOCK_RE = re.compile(r"```(?:json)?\s*(\{[\s\S]*?\})\s*```", re.IGNORECASE)

_MODES = [mode.value for mode in ExecutionMode]

_MAPPINGS_SCHEMA: dict[str, Any] = {
    "oneOf": [
        {"type": "object", "additionalProperties": {"type": "string"}},
        {
            "type": "array",
            "items": {"type": "object", "additionalProperties": {"type": "string"}},
        },
    ]
}

EXECUTION_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["execution"],
    "properties": {
        "execution": {
            "type": "object",
            "required": ["mode", "tools"],
            "properties": {
                "mode": {"enum": _MODES},
                "tools": {"type": "array", "items": {"$ref": "#/$defs/toolSpec"}},
                "options": {
                    "type": "object",
                    "properties": {
                        "maxConcurrency": {"type": "integer", "minimum": 1},
                        "continueOnError": {"type": "boolean"},
                        "timeout": {"type": "integer", "minimum": 0},
                    },
                },
            },
        }
    },
    "$defs": {
        "toolSpec": {
            "type": "object",
            "required": ["name"],
            "anyOf": [{"required": ["params"]}, {"required": ["tools"]}],
            "properties": {
                "name": {"type": "string", "minLength": 1},
                "toolId": {"type": "string"},
                "dependsOn": {"type": "string"},
                "params": {"type": "object"},
                "mode": {"enum": _MODES},
                "condition": {
                    "type": "object",
                    "anyOf": [{"required": ["sourceToolId"]}, {"required": ["sourceId"]}],
                    "properties": {
                        "type": {"enum": ["result", "error", "custom"]},
                        "kind": {"enum": ["result", "error", "custom"]},
                        "sourceToolId": {"type": "string"},
                        "sourceId": {"type": "string"},
                        "expression": {"type": "string"},
                    },
                },
                "retry": {
                    "type": "object",
                    "properties": {
                        "maxRetries": {"type": "integer", "minimum": 0},
                        "backoffMs": {"type": "integer", "minimum": 0},
                        "exponential": {"type": "boolean"},
                    },
                },
                "fallback": {"$ref": "#/$defs/toolSpec"},
                "tools": {"type": "array", "items": {"$ref": "#/$defs/toolSpec"}},
                "inputMappings": _MAPPINGS_SCHEMA,
                "outputMappings": _MAPPINGS_SCHEMA,
            },
        }
    },
}

_VALIDATOR = Draft202012Validator(EXECUTION_SCHEMA)


@dataclass(slots=True)
class JsonBlock:
    """An execution block located in a message.

    Attributes:
        start: Offset of the opening fence.
        end: Offset just past the closing fence.
        mode: Batch mode.
        invocations: Top-level invocations in declaration order.
        options: Execution options from the block.
    """

    start: int
    end: int
    mode: ExecutionMode
    invocations: list[ToolInvocation] = field(default_factory=list)
    options: ExecutionOptions = field(default_factory=ExecutionOptions)


def find_execution_block(
    text: str,
    *,
    id_factory: Callable[[], str] = new_invocation_id,
) -> JsonBlock | None:
    """Return the first valid execution block in ``text``, or None."""
    if not text or "```" not in text:
        return None
    for match in JSON_BLOCK_RE.finditer(text):
        raw = match.group(1)
        try:
            document = json.loads(raw)
        except JSONDecodeError as exc:
            LOGGER.debug("Skipping fenced block that is not JSON: %s", exc.msg)
            continue
        except (RecursionError, ValueError) as exc:
            LOGGER.debug("Skipping fenced block that cannot be decoded: %s", type(exc).__name__)
            continue
        errors = schema_errors(document)
        if errors:
            LOGGER.debug("Skipping fenced block failing the execution schema: %s", "; ".join(errors))
            continue
        execution = document["execution"]
        mode = ExecutionMode.coerce(execution["mode"])
        try:
            invocations = [
                invocation_from_spec(spec, mode, id_factory=id_factory)
                for spec in execution["tools"]
            ]
        except RecursionError:
            LOGGER.debug("Skipping fenced block nested too deeply to convert")
            continue
        return JsonBlock(
            start=match.start(),
            end=match.end(),
            mode=mode,
            invocations=invocations,
            options=ExecutionOptions.from_dict(execution.get("options")),
        )
    return None


def schema_errors(document: Any, *, limit: int = 5) -> list[str]:
    """Validate ``document`` against the execution schema."""
    errors: list[str] = []
    try:
        for issue in _VALIDATOR.iter_errors(document):
            path = _format_schema_path(issue.absolute_path)
            errors.append(f"{path}: {issue.message}" if path else issue.message)
            if len(errors) >= limit:
                break
    except RecursionError:
        errors.append("document nested too deeply to validate")
    return errors


def invocation_from_spec(
    spec: Mapping[str, Any],
    mode: ExecutionMode,
    *,
    id_factory: Callable[[], str] = new_invocation_id,
) -> ToolInvocation:
    """Convert one validated tool entry into an invocation stamped with ``mode``."""
    children: list[ToolInvocation] | None = None
    child_mode: ExecutionMode | None = None
    if "tools" in spec:
        child_mode = ExecutionMode.coerce(spec.get("mode") or ExecutionMode.SEQUENTIAL)
        children = [
            invocation_from_spec(child, child_mode, id_factory=id_factory)
            for child in spec["tools"]
        ]

    fallback = None
    if spec.get("fallback"):
        fallback = invocation_from_spec(spec["fallback"], mode, id_factory=id_factory)

    params = spec.get("params") or {}
    return ToolInvocation(
        id=str(spec.get("toolId") or "").strip() or id_factory(),
        name=str(spec["name"]).strip(),
        parameters={str(key): coerce_parameter(value) for key, value in params.items()},
        mode=mode,
        depends_on=str(spec.get("dependsOn") or "").strip() or None,
        condition=Condition.from_dict(spec["condition"]) if spec.get("condition") else None,
        retry_policy=RetryPolicy.from_dict(spec["retry"]) if spec.get("retry") else None,
        fallback=fallback,
        children=children,
        child_mode=child_mode,
        input_mappings=_normalize_mappings(spec.get("inputMappings")),
        output_mappings=_normalize_mappings(spec.get("outputMappings")),
    )


def coerce_parameter(value: Any) -> str:
    """Render a JSON parameter value the way the inline grammar would carry it."""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    if isinstance(value, (int, float)):
        return str(value)
    return json.dumps(value, ensure_ascii=False)


def _normalize_mappings(raw: Any) -> list[dict[str, str]] | None:
    if not raw:
        return None
    if isinstance(raw, Mapping):
        raw = [raw]
    return [{str(k): str(v) for k, v in entry.items()} for entry in raw]


def _format_schema_path(path: Sequence[Any]) -> str:
    if not path:
        return ""
    components: list[str] = []
    for segment in path:
        if isinstance(segment, int):
            if components:
                components[-1] = f"{components[-1]}[{segment}]"
            else:
                components.append(f"[{segment}]")
        else:
            components.append(str(segment))
    return ".".join(filter(None, components))
