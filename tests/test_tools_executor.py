"""Tests for tools/executor.py."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping

import pytest

from toolweave.tools import (
    ErrorCode,
    ExecutorConfig,
    RegistryToolRunner,
    ToolContext,
    ToolExecutionError,
    ToolRegistry,
    ToolSpec,
    UnknownToolError,
)


# -----------------------------------------------------------------------------
# Test Fixtures and Helpers
# -----------------------------------------------------------------------------


class AllowAll:
    """Approver granting everything and remembering what it was asked."""

    def __init__(self) -> None:
        self.requests: list[tuple[str, str]] = []

    async def request(self, kind: str, message: str) -> bool:
        self.requests.append((kind, message))
        return True


def make_registry_with_tools() -> ToolRegistry:
    """Create a registry with some test tools."""
    registry = ToolRegistry()

    registry.register_function(
        ToolSpec(name="echo", parameters=("message",)),
        handler=lambda args, ctx: {"echo": args.get("message", "")},
    )

    async def greet(args: Mapping[str, Any], ctx: ToolContext) -> str:
        return f"Hello, {args.get('name', 'World')}!"

    registry.register_function(ToolSpec(name="greet", parameters=("name",)), handler=greet)

    def failing(args: Mapping[str, Any], ctx: ToolContext) -> None:
        raise ValueError("Intentional failure")

    registry.register_function(ToolSpec(name="fail"), handler=failing)

    async def slow(args: Mapping[str, Any], ctx: ToolContext) -> str:
        await asyncio.sleep(float(args.get("delay", "1.0")))
        return "done"

    registry.register_function(ToolSpec(name="slow", parameters=("delay",)), handler=slow)

    async def guarded(args: Mapping[str, Any], ctx: ToolContext) -> str:
        approved = await ctx.request_approval("command", "run it?")
        return "ran" if approved else "denied"

    registry.register_function(ToolSpec(name="guarded"), handler=guarded)
    registry.register(ToolSpec(name="unimplemented"))
    return registry


# -----------------------------------------------------------------------------
# Tests: ExecutorConfig
# -----------------------------------------------------------------------------


class TestExecutorConfig:
    """Tests for ExecutorConfig."""

    def test_defaults(self) -> None:
        config = ExecutorConfig()

        assert config.default_timeout is None
        assert config.log_arguments is False
        assert config.log_results is False


# -----------------------------------------------------------------------------
# Tests: RegistryToolRunner
# -----------------------------------------------------------------------------


class TestRegistryToolRunner:
    """Tests for dispatching to registered handlers."""

    @pytest.mark.asyncio
    async def test_sync_handler(self) -> None:
        runner = RegistryToolRunner(make_registry_with_tools())

        result = await runner.run("echo", {"message": "hi"}, ToolContext(invocation_id="1"))

        assert result == {"echo": "hi"}

    @pytest.mark.asyncio
    async def test_async_handler(self) -> None:
        runner = RegistryToolRunner(make_registry_with_tools())

        result = await runner.run("greet", {"name": "Ada"}, ToolContext())

        assert result == "Hello, Ada!"

    @pytest.mark.asyncio
    async def test_unknown_tool(self) -> None:
        runner = RegistryToolRunner(make_registry_with_tools())

        with pytest.raises(UnknownToolError) as excinfo:
            await runner.run("ghost", {}, ToolContext())
        assert excinfo.value.error_code == ErrorCode.UNKNOWN_TOOL

    @pytest.mark.asyncio
    async def test_disabled_tool(self) -> None:
        registry = make_registry_with_tools()
        registry.disable("echo")

        with pytest.raises(UnknownToolError):
            await RegistryToolRunner(registry).run("echo", {}, ToolContext())

    @pytest.mark.asyncio
    async def test_missing_handler(self) -> None:
        runner = RegistryToolRunner(make_registry_with_tools())

        with pytest.raises(UnknownToolError) as excinfo:
            await runner.run("unimplemented", {}, ToolContext())
        assert excinfo.value.error_code == ErrorCode.TOOL_NOT_IMPLEMENTED
        assert excinfo.value.message == "Tool 'unimplemented' has no implementation"

    @pytest.mark.asyncio
    async def test_handler_error_wrapped(self) -> None:
        runner = RegistryToolRunner(make_registry_with_tools())

        with pytest.raises(ToolExecutionError) as excinfo:
            await runner.run("fail", {}, ToolContext())
        assert excinfo.value.tool_name == "fail"
        assert isinstance(excinfo.value.cause, ValueError)
        assert str(excinfo.value) == "Intentional failure"

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        runner = RegistryToolRunner(make_registry_with_tools(), ExecutorConfig(default_timeout=0.01))

        with pytest.raises(asyncio.TimeoutError):
            await runner.run("slow", {"delay": "1"}, ToolContext())

    @pytest.mark.asyncio
    async def test_runner_approver_fills_context(self) -> None:
        approver = AllowAll()
        runner = RegistryToolRunner(make_registry_with_tools(), approver=approver)

        result = await runner.run("guarded", {}, ToolContext())

        assert result == "ran"
        assert approver.requests == [("command", "run it?")]

    @pytest.mark.asyncio
    async def test_no_approver_denies(self) -> None:
        runner = RegistryToolRunner(make_registry_with_tools())

        assert await runner.run("guarded", {}, ToolContext()) == "denied"

    @pytest.mark.asyncio
    async def test_argument_logging_is_opt_in(self, caplog: pytest.LogCaptureFixture) -> None:
        runner = RegistryToolRunner(make_registry_with_tools(), ExecutorConfig(log_arguments=True))

        with caplog.at_level(logging.DEBUG, logger="toolweave.tools.executor"):
            await runner.run("echo", {"message": "secret"}, ToolContext(invocation_id="7"))

        assert "secret" in caplog.text

    @pytest.mark.asyncio
    async def test_arguments_not_logged_by_default(self, caplog: pytest.LogCaptureFixture) -> None:
        runner = RegistryToolRunner(make_registry_with_tools())

        with caplog.at_level(logging.DEBUG, logger="toolweave.tools.executor"):
            await runner.run("echo", {"message": "secret"}, ToolContext())

        assert "secret" not in caplog.text


# -----------------------------------------------------------------------------
# Tests: Engine Integration
# -----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_engine_runs_registry_handlers() -> None:
    from toolweave.orchestration import ExecutionEngine, ExecutionMode, ToolInvocation

    registry = make_registry_with_tools()
    engine = ExecutionEngine(RegistryToolRunner(registry), registry=registry)

    outcome = await engine.execute(
        [
            ToolInvocation(id="a", name="echo", parameters={"message": "x"}),
            ToolInvocation(id="b", name="unimplemented"),
        ],
        ExecutionMode.PARALLEL,
    )

    assert outcome.results_by_id["a"].payload == {"echo": "x"}
    assert outcome.results_by_id["b"].error.code == ErrorCode.TOOL_NOT_IMPLEMENTED
