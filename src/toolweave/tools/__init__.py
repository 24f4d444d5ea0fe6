"""Tool catalog, collaborator interfaces and the registry-backed runner.

Example:
    from toolweave.tools import RegistryToolRunner, ToolSpec, default_registry

    registry = default_registry()
    registry.attach_handler("read_file", lambda args, ctx: open(args["path"]).read())
    runner = RegistryToolRunner(registry)
"""

from .types import (
    AbortFlag,
    AbortSignal,
    Approver,
    AsyncToolHandler,
    ToolCategory,
    ToolContext,
    ToolHandler,
    ToolRunner,
    ToolSpec,
    UsageRecorder,
)

from .registry import (
    DEFAULT_TOOL_SPECS,
    DuplicateToolError,
    ToolNotFoundError,
    ToolRegistration,
    ToolRegistry,
    default_registry,
)

from .errors import (
    AbortedError,
    ErrorCode,
    InvalidModeUsage,
    MissingParameterError,
    OrchestrationError,
    RunTimeoutError,
    ToolExecutionError,
    UnknownToolError,
    ValidationError,
)

from .executor import ExecutorConfig, RegistryToolRunner
from .recorder import CountingUsageRecorder
from .validation import validate_invocation

__all__ = [
    # types.py
    "AbortFlag",
    "AbortSignal",
    "Approver",
    "AsyncToolHandler",
    "ToolCategory",
    "ToolContext",
    "ToolHandler",
    "ToolRunner",
    "ToolSpec",
    "UsageRecorder",
    # registry.py
    "DEFAULT_TOOL_SPECS",
    "DuplicateToolError",
    "ToolNotFoundError",
    "ToolRegistration",
    "ToolRegistry",
    "default_registry",
    # errors.py
    "AbortedError",
    "ErrorCode",
    "InvalidModeUsage",
    "MissingParameterError",
    "OrchestrationError",
    "RunTimeoutError",
    "ToolExecutionError",
    "UnknownToolError",
    "ValidationError",
    # executor.py
    "ExecutorConfig",
    "RegistryToolRunner",
    # recorder.py
    "CountingUsageRecorder",
    # validation.py
    "validate_invocation",
]
