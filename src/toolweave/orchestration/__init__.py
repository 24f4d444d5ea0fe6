"""Orchestration core: parse assistant messages, resolve, execute and report.

Example:
    from toolweave.orchestration import ExecutionEngine, MessageParser
    from toolweave.tools import RegistryToolRunner, default_registry

    registry = default_registry()
    parser = MessageParser(registry)
    engine = ExecutionEngine(RegistryToolRunner(registry), registry=registry)

    parsed = parser.parse_message(assistant_text)
    outcome = await engine.execute_message(parsed)
    feed_back_to_model(outcome.report)
"""

from .types import (
    Condition,
    ConditionKind,
    ContentSegment,
    ExecutionContext,
    ExecutionMode,
    ExecutionOptions,
    MultiToolResult,
    ParsedMessage,
    RetryPolicy,
    TextSegment,
    ToolErrorInfo,
    ToolInvocation,
    ToolMetrics,
    ToolResult,
    new_invocation_id,
)

from .message_parser import MessageParser, parse, parse_message
from .json_block import EXECUTION_SCHEMA, JsonBlock, find_execution_block
from .serializer import to_execution_json, to_inline_batch, to_inline_tags
from .dependency_resolver import DependencyResolver, ResolutionPlan, resolve, validate
from .conditions import ConditionError, compile_expression, evaluate_condition, evaluate_expression
from .resilience import RunGuard, with_fallback, with_retry
from .aggregator import aggregate, aggregate_report, describe_invocation
from .engine import ExecutionEngine
from .prompts import multi_tool_execution_prompt

__all__ = [
    # types.py
    "Condition",
    "ConditionKind",
    "ContentSegment",
    "ExecutionContext",
    "ExecutionMode",
    "ExecutionOptions",
    "MultiToolResult",
    "ParsedMessage",
    "RetryPolicy",
    "TextSegment",
    "ToolErrorInfo",
    "ToolInvocation",
    "ToolMetrics",
    "ToolResult",
    "new_invocation_id",
    # message_parser.py
    "MessageParser",
    "parse",
    "parse_message",
    # json_block.py
    "EXECUTION_SCHEMA",
    "JsonBlock",
    "find_execution_block",
    # serializer.py
    "to_execution_json",
    "to_inline_batch",
    "to_inline_tags",
    # dependency_resolver.py
    "DependencyResolver",
    "ResolutionPlan",
    "resolve",
    "validate",
    # conditions.py
    "ConditionError",
    "compile_expression",
    "evaluate_condition",
    "evaluate_expression",
    # resilience.py
    "RunGuard",
    "with_fallback",
    "with_retry",
    # aggregator.py
    "aggregate",
    "aggregate_report",
    "describe_invocation",
    # engine.py
    "ExecutionEngine",
    # prompts.py
    "multi_tool_execution_prompt",
]
