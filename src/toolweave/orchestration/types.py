"""Core type definitions for the tool orchestration pipeline.

This module defines the dataclasses that flow from the message parser through
the dependency resolver and execution engine into the result aggregator.
"""

from __future__ import annotations

import copy as _copy
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Mapping, Union

from ..tools.errors import ErrorCode

__all__ = [
    "new_invocation_id",
    # Enums
    "ExecutionMode",
    "ConditionKind",
    # Invocation types
    "Condition",
    "RetryPolicy",
    "TextSegment",
    "ToolInvocation",
    "ContentSegment",
    "ParsedMessage",
    # Execution types
    "ExecutionOptions",
    "ExecutionContext",
    # Result types
    "ToolErrorInfo",
    "ToolMetrics",
    "ToolResult",
    "MultiToolResult",
]


def new_invocation_id() -> str:
    """Generate a unique id for an invocation that did not declare one."""
    return f"call_{uuid.uuid4().hex[:12]}"


# -----------------------------------------------------------------------------
# Enums
# -----------------------------------------------------------------------------


class ExecutionMode(str, Enum):
    """Strategy applied to a batch of invocations."""

    SINGLE = "single"
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    CONDITIONAL = "conditional"
    COMPOSITE = "composite"

    @classmethod
    def coerce(cls, value: "ExecutionMode | str") -> "ExecutionMode":
        """Return the mode for an enum member or a case-insensitive name.

        Raises:
            ValueError: If ``value`` names no known mode.
        """
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower()
        for mode in cls:
            if mode.value == normalized:
                return mode
        raise ValueError(f"Unknown execution mode: {value!r}")

    @property
    def label(self) -> str:
        return self.value.capitalize()


class ConditionKind(str, Enum):
    """How a condition is evaluated against its source result."""

    RESULT = "result"
    ERROR = "error"
    CUSTOM = "custom"


# -----------------------------------------------------------------------------
# Invocation Types
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class Condition:
    """Guard evaluated before running an invocation.

    Attributes:
        kind: Evaluation strategy.
        source_id: Id of the invocation whose result is inspected.
        expression: Expression in the condition language; unused for ``ERROR``.
    """

    kind: ConditionKind
    source_id: str
    expression: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Condition:
        """Build a condition from its JSON form.

        Accepts ``type``/``sourceToolId`` as well as ``kind``/``sourceId``.
        """
        kind = data.get("kind", data.get("type", ConditionKind.RESULT.value))
        source = data.get("sourceId", data.get("sourceToolId", data.get("source_id", "")))
        return cls(
            kind=ConditionKind(str(kind).strip().lower()),
            source_id=str(source or ""),
            expression=str(data.get("expression") or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.kind.value, "sourceToolId": self.source_id}
        if self.expression:
            payload["expression"] = self.expression
        return payload


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """Retry-with-backoff policy for a single invocation.

    Attributes:
        max_retries: Additional attempts after the first one.
        backoff_ms: Base delay between attempts, in milliseconds.
        exponential: Double the delay after every failed attempt.
    """

    max_retries: int = 0
    backoff_ms: int = 0
    exponential: bool = False

    def delay_seconds(self, attempt: int) -> float:
        """Delay before the retry that follows failed ``attempt`` (1-based)."""
        factor = 2 ** max(attempt - 1, 0) if self.exponential else 1
        return self.backoff_ms * factor / 1000.0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RetryPolicy:
        return cls(
            max_retries=max(int(data.get("maxRetries", data.get("max_retries", 0)) or 0), 0),
            backoff_ms=max(int(data.get("backoffMs", data.get("backoff_ms", 0)) or 0), 0),
            exponential=bool(data.get("exponential", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "maxRetries": self.max_retries,
            "backoffMs": self.backoff_ms,
            "exponential": self.exponential,
        }


@dataclass(slots=True, frozen=True)
class TextSegment:
    """Plain text surrounding tool blocks in an assistant message."""

    content: str


@dataclass(slots=True)
class ToolInvocation:
    """A single requested tool call with its scheduling metadata.

    Attributes:
        id: Unique id within the batch.
        name: Tool name (tag name in the inline grammar).
        parameters: Parameter values keyed by name.
        mode: Mode of the batch the invocation came from.
        partial: True when the closing delimiter was never observed.
        depends_on: Id of the invocation that must finish first.
        condition: Guard evaluated before running.
        retry_policy: Retry policy wrapped around execution.
        fallback: Invocation run instead when this one fails.
        children: Nested batch for composite invocations.
        child_mode: Mode used to run ``children``.
        input_mappings: ``{parent_key: child_key}`` copies made before the children run.
        output_mappings: ``{child_key: parent_key}`` copies made afterwards.
    """

    id: str
    name: str
    parameters: dict[str, str] = field(default_factory=dict)
    mode: ExecutionMode = ExecutionMode.SINGLE
    partial: bool = False
    depends_on: str | None = None
    condition: Condition | None = None
    retry_policy: RetryPolicy | None = None
    fallback: ToolInvocation | None = None
    children: list[ToolInvocation] | None = None
    child_mode: ExecutionMode | None = None
    input_mappings: list[dict[str, str]] | None = None
    output_mappings: list[dict[str, str]] | None = None

    @property
    def is_composite(self) -> bool:
        return self.children is not None

    def copy(self, **changes: Any) -> ToolInvocation:
        """Return a deep copy, optionally with fields replaced."""
        return replace(_copy.deepcopy(self), **changes)


ContentSegment = Union[TextSegment, ToolInvocation]


@dataclass(slots=True)
class ParsedMessage:
    """Result of parsing one assistant message.

    Attributes:
        segments: Ordered text and tool segments.
        mode: Mode of the batch (``SINGLE`` outside any wrapper).
        options: Execution options from a JSON block, if any.
        warnings: Anomalies repaired while parsing.
    """

    segments: list[ContentSegment] = field(default_factory=list)
    mode: ExecutionMode = ExecutionMode.SINGLE
    options: ExecutionOptions | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def invocations(self) -> list[ToolInvocation]:
        """Complete invocations, ready to execute."""
        return [
            segment
            for segment in self.segments
            if isinstance(segment, ToolInvocation) and not segment.partial
        ]

    @property
    def has_partial(self) -> bool:
        return bool(self.segments) and isinstance(self.segments[-1], ToolInvocation) and self.segments[-1].partial

    @property
    def text(self) -> str:
        return "\n\n".join(s.content for s in self.segments if isinstance(s, TextSegment))


# -----------------------------------------------------------------------------
# Execution Types
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ExecutionOptions:
    """Per-run execution options.

    Attributes:
        max_concurrency: Largest parallel batch.
        continue_on_error: Keep going after failures and report success anyway.
        timeout_ms: Optional run deadline checked between scheduling steps.
    """

    max_concurrency: int = 4
    continue_on_error: bool = False
    timeout_ms: int | None = None

    def __post_init__(self) -> None:
        if self.max_concurrency < 1:
            object.__setattr__(self, "max_concurrency", 1)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> ExecutionOptions:
        if not data:
            return cls()
        timeout = data.get("timeout", data.get("timeoutMs", data.get("timeout_ms")))
        return cls(
            max_concurrency=int(data.get("maxConcurrency", data.get("max_concurrency", 4)) or 4),
            continue_on_error=bool(data.get("continueOnError", data.get("continue_on_error", False))),
            timeout_ms=int(timeout) if timeout is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "maxConcurrency": self.max_concurrency,
            "continueOnError": self.continue_on_error,
        }
        if self.timeout_ms is not None:
            payload["timeout"] = self.timeout_ms
        return payload


@dataclass(slots=True)
class ExecutionContext:
    """State owned by one run (top level or one composite child)."""

    mode: ExecutionMode = ExecutionMode.SINGLE
    options: ExecutionOptions = field(default_factory=ExecutionOptions)
    shared_state: dict[str, Any] = field(default_factory=dict)
    results_by_id: dict[str, ToolResult] = field(default_factory=dict)

    def child(self, mode: ExecutionMode) -> ExecutionContext:
        """Create an independent context for a composite's children."""
        return ExecutionContext(mode=mode, options=self.options)


# -----------------------------------------------------------------------------
# Result Types
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolErrorInfo:
    """Error captured into a failed result."""

    message: str
    details: Any = None
    code: str = ""

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"message": self.message}
        if self.code:
            payload["code"] = self.code
        if self.details is not None:
            payload["details"] = self.details
        return payload


@dataclass(slots=True, frozen=True)
class ToolMetrics:
    """Timing and retry accounting for one invocation."""

    duration_ms: float = 0.0
    retry_count: int = 0


@dataclass(slots=True)
class ToolResult:
    """Outcome of one invocation.

    Attributes:
        id: Invocation id.
        success: Whether the invocation succeeded (skips count as success).
        payload: Value returned by the tool.
        error: Error information for failures.
        metrics: Duration and retry accounting.
        attempted: False when the invocation was never started.
        skipped: True when a false condition kept the invocation from running.
        children: Child results for composite invocations.
    """

    id: str
    success: bool
    payload: Any = None
    error: ToolErrorInfo | None = None
    metrics: ToolMetrics = field(default_factory=ToolMetrics)
    attempted: bool = True
    skipped: bool = False
    children: MultiToolResult | None = None

    @classmethod
    def ok(cls, invocation_id: str, payload: Any = None, *, duration_ms: float = 0.0) -> ToolResult:
        return cls(id=invocation_id, success=True, payload=payload, metrics=ToolMetrics(duration_ms=duration_ms))

    @classmethod
    def failure(
        cls,
        invocation_id: str,
        message: str,
        *,
        details: Any = None,
        code: str = "",
        duration_ms: float = 0.0,
    ) -> ToolResult:
        return cls(
            id=invocation_id,
            success=False,
            error=ToolErrorInfo(message=message, details=details, code=code),
            metrics=ToolMetrics(duration_ms=duration_ms),
        )

    @classmethod
    def skip(cls, invocation_id: str, reason: str = "Condition not met") -> ToolResult:
        """Successful result for an invocation whose condition was false."""
        return cls(id=invocation_id, success=True, payload={"skipped": True, "reason": reason}, skipped=True)

    @classmethod
    def not_attempted(cls, invocation_id: str, reason: str = "Not attempted after earlier failure") -> ToolResult:
        return cls(
            id=invocation_id,
            success=False,
            error=ToolErrorInfo(message=reason, code=ErrorCode.NOT_ATTEMPTED),
            attempted=False,
        )

    def with_id(self, new_id: str) -> ToolResult:
        return replace(self, id=new_id)

    def with_metrics(self, *, duration_ms: float | None = None, retry_count: int | None = None) -> ToolResult:
        metrics = ToolMetrics(
            duration_ms=self.metrics.duration_ms if duration_ms is None else duration_ms,
            retry_count=self.metrics.retry_count if retry_count is None else retry_count,
        )
        return replace(self, metrics=metrics)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        payload: dict[str, Any] = {
            "id": self.id,
            "success": self.success,
            "payload": self.payload,
            "metrics": {
                "durationMs": self.metrics.duration_ms,
                "retryCount": self.metrics.retry_count,
            },
        }
        if self.error is not None:
            payload["error"] = self.error.to_dict()
        if not self.attempted:
            payload["attempted"] = False
        if self.skipped:
            payload["skipped"] = True
        if self.children is not None:
            payload["children"] = self.children.to_dict()
        return payload


@dataclass(slots=True)
class MultiToolResult:
    """Aggregated outcome of a batch."""

    results_by_id: dict[str, ToolResult] = field(default_factory=dict)
    overall_success: bool = True
    aggregated_payload: list[Any] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    report: str = ""

    @property
    def results(self) -> list[ToolResult]:
        return list(self.results_by_id.values())

    @property
    def total_duration_ms(self) -> float:
        return sum(result.metrics.duration_ms for result in self.results_by_id.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "resultsById": {key: value.to_dict() for key, value in self.results_by_id.items()},
            "overallSuccess": self.overall_success,
            "aggregatedPayload": self.aggregated_payload,
            "warnings": list(self.warnings),
        }
