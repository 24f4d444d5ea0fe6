"""Execution engine for tool batches.

The engine drives a batch of invocations under one of five modes and hands
every side effect to an injected :class:`~toolweave.tools.types.ToolRunner`.
Each invocation goes through the same pipeline::

    condition -> validation -> usage recorder -> runner -> retry -> fallback -> record

Validation and runner failures become failed results. Only
:class:`~toolweave.tools.errors.AbortedError` (and its timeout subclass)
escapes :meth:`ExecutionEngine.execute`.
"""

from __future__ import annotations

import asyncio
import copy
import functools
import inspect
import logging
import time
from types import MappingProxyType
from typing import Any, Mapping, Sequence

from ..services.settings import EngineSettings
from ..tools.errors import (
    AbortedError,
    ErrorCode,
    InvalidModeUsage,
    OrchestrationError,
    ToolExecutionError,
    ValidationError,
)
from ..tools.registry import ToolRegistry, default_registry
from ..tools.types import AbortSignal, Approver, ToolContext, ToolRunner, UsageRecorder
from ..tools.validation import validate_invocation
from .aggregator import aggregate, aggregate_report
from .conditions import evaluate_condition
from .dependency_resolver import DependencyResolver, ResolutionPlan
from .resilience import Execute, RunGuard, with_fallback, with_retry
from .types import (
    ExecutionContext,
    ExecutionMode,
    ExecutionOptions,
    MultiToolResult,
    ParsedMessage,
    ToolErrorInfo,
    ToolInvocation,
    ToolMetrics,
    ToolResult,
)

__all__ = ["ExecutionEngine"]

LOGGER = logging.getLogger(__name__)


class ExecutionEngine:
    """Runs tool batches against a tool runner.

    Args:
        runner: Performs the side effect of each tool.
        registry: Catalog used to validate invocations; defaults to the
            coding-agent catalog.
        usage_recorder: Telemetry hook called once per executed tool.
        settings: Defaults for runs that pass no explicit options.
        approver: Handed to tools through their :class:`ToolContext`.
        resolver: Dependency resolver; one with uuid ids by default.

    Example:
        engine = ExecutionEngine(RegistryToolRunner(registry), registry=registry)
        parsed = MessageParser(registry).parse_message(assistant_text)
        outcome = await engine.execute_message(parsed)
        print(outcome.report)
    """

    def __init__(
        self,
        runner: ToolRunner,
        *,
        registry: ToolRegistry | None = None,
        usage_recorder: UsageRecorder | None = None,
        settings: EngineSettings | None = None,
        approver: Approver | None = None,
        resolver: DependencyResolver | None = None,
    ) -> None:
        self._runner = runner
        self._registry = registry if registry is not None else default_registry()
        self._recorder = usage_recorder
        self._settings = settings or EngineSettings()
        self._approver = approver
        self._resolver = resolver or DependencyResolver()
        self._mistakes = 0

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------
    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    @property
    def consecutive_mistake_count(self) -> int:
        """Validation failures since the last invocation that passed validation."""
        return self._mistakes

    def reset_mistakes(self) -> None:
        self._mistakes = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def execute(
        self,
        invocations: Sequence[ToolInvocation],
        mode: ExecutionMode | str,
        options: ExecutionOptions | None = None,
        *,
        abort_signal: AbortSignal | None = None,
        shared_state: dict[str, Any] | None = None,
    ) -> MultiToolResult:
        """Execute a batch.

        Args:
            invocations: Batch in declaration order.
            mode: Execution mode.
            options: Run options; defaults come from the engine settings.
            abort_signal: Cooperative cancellation flag.
            shared_state: Initial shared state; updated in place with the
                payloads of successful invocations.

        Returns:
            The aggregated result, including its report.

        Raises:
            AbortedError: The abort signal was set at a checkpoint.
            RunTimeoutError: The run exceeded ``options.timeout_ms``.
        """
        mode = ExecutionMode.coerce(mode)
        options = options or self._settings.to_options()
        context = ExecutionContext(
            mode=mode,
            options=options,
            shared_state=shared_state if shared_state is not None else {},
        )
        guard = RunGuard.from_options(options, abort_signal)
        start_time = time.perf_counter()
        outcome = await self._run(list(invocations), context, guard)
        LOGGER.debug(
            "Executed %d tool(s) in %s mode in %.1fms (success=%s)",
            len(outcome.results_by_id),
            mode.value,
            (time.perf_counter() - start_time) * 1000,
            outcome.overall_success,
        )
        return outcome

    async def execute_message(
        self,
        parsed: ParsedMessage,
        options: ExecutionOptions | None = None,
        *,
        abort_signal: AbortSignal | None = None,
        shared_state: dict[str, Any] | None = None,
    ) -> MultiToolResult:
        """Execute the complete invocations of a parsed message with its mode and options."""
        outcome = await self.execute(
            parsed.invocations,
            parsed.mode,
            options or parsed.options,
            abort_signal=abort_signal,
            shared_state=shared_state,
        )
        warnings = list(parsed.warnings)
        if parsed.has_partial:
            partial = parsed.segments[-1]
            warnings.append(f"Partial tool '{getattr(partial, 'name', '')}' was not executed")
        outcome.warnings = warnings + outcome.warnings
        return outcome

    # ------------------------------------------------------------------
    # Mode dispatch
    # ------------------------------------------------------------------
    async def _run(
        self,
        invocations: list[ToolInvocation],
        context: ExecutionContext,
        guard: RunGuard,
    ) -> MultiToolResult:
        warnings: list[str] = []
        runnable: list[ToolInvocation] = []
        for invocation in invocations:
            if invocation.partial:
                warnings.append(f"Partial tool '{invocation.name}' ({invocation.id}) was not executed")
                continue
            runnable.append(invocation)

        plan = self._resolver.resolve_plan(runnable, context.mode)
        warnings.extend(plan.warnings)

        mode = context.mode
        if mode is ExecutionMode.SINGLE:
            results = await self._run_single(plan, context, guard)
        elif mode is ExecutionMode.PARALLEL:
            results = await self._run_parallel(plan, context, guard, warnings)
        elif mode is ExecutionMode.COMPOSITE:
            results = await self._run_composite_mode(plan, context, guard)
        else:
            results = await self._run_in_order(plan, context, guard)

        outcome = aggregate(
            (results[invocation.id] for invocation in plan.declared if invocation.id in results),
            continue_on_error=context.options.continue_on_error,
            warnings=warnings,
        )
        outcome.report = aggregate_report(mode, outcome, plan.declared)
        return outcome

    async def _run_single(
        self,
        plan: ResolutionPlan,
        context: ExecutionContext,
        guard: RunGuard,
    ) -> dict[str, ToolResult]:
        if not plan.declared:
            return {}
        if len(plan.declared) > 1:
            error = InvalidModeUsage(message="Single mode requires exactly one tool")
            return self._reject_batch(plan.declared, error)
        guard.check("single")
        invocation = plan.declared[0]
        return {invocation.id: await self._run_invocation(invocation, context, guard)}

    async def _run_in_order(
        self,
        plan: ResolutionPlan,
        context: ExecutionContext,
        guard: RunGuard,
    ) -> dict[str, ToolResult]:
        """Sequential and conditional modes: one at a time in resolved order."""
        results: dict[str, ToolResult] = {}
        halted_by: str | None = None
        for invocation in plan.ordered:
            if halted_by is not None:
                results[invocation.id] = ToolResult.not_attempted(
                    invocation.id, f"Not attempted because '{halted_by}' failed"
                )
                continue
            guard.check(context.mode.value)
            result = await self._run_invocation(invocation, context, guard)
            results[invocation.id] = result
            if not result.success and not context.options.continue_on_error:
                halted_by = invocation.id
                LOGGER.debug("Halting %s batch after failure of %s", context.mode.value, invocation.id)
        return results

    async def _run_parallel(
        self,
        plan: ResolutionPlan,
        context: ExecutionContext,
        guard: RunGuard,
        warnings: list[str],
    ) -> dict[str, ToolResult]:
        results: dict[str, ToolResult] = {}
        pending = list(plan.declared)
        limit = max(context.options.max_concurrency, 1)
        while pending:
            guard.check("parallel")
            ready = [item for item in pending if not item.depends_on or item.depends_on in results]
            if not ready:
                warnings.append("No tool is ready to run; running the rest in declaration order")
                for item in pending:
                    item.depends_on = None
                ready = pending
            batch = ready[:limit]
            outcomes = await asyncio.gather(
                *(self._run_invocation(item, context, guard) for item in batch),
                return_exceptions=True,
            )
            aborted: AbortedError | None = None
            for item, outcome in zip(batch, outcomes):
                if isinstance(outcome, AbortedError):
                    aborted = aborted or outcome
                elif isinstance(outcome, BaseException):
                    if not isinstance(outcome, Exception):
                        raise outcome
                    results[item.id] = self._failure_from_exception(item, outcome, 0.0)
                else:
                    results[item.id] = outcome
            if aborted is not None:
                raise aborted
            started = {item.id for item in batch}
            pending = [item for item in pending if item.id not in started]
        return results

    async def _run_composite_mode(
        self,
        plan: ResolutionPlan,
        context: ExecutionContext,
        guard: RunGuard,
    ) -> dict[str, ToolResult]:
        if len(plan.declared) != 1 or not plan.declared[0].is_composite:
            if not plan.declared:
                return {}
            error = InvalidModeUsage(message="Composite mode requires exactly one composite tool")
            return self._reject_batch(plan.declared, error)
        guard.check("composite")
        invocation = plan.declared[0]
        return {invocation.id: await self._run_invocation(invocation, context, guard)}

    def _reject_batch(self, invocations: Sequence[ToolInvocation], error: ValidationError) -> dict[str, ToolResult]:
        self._mistakes += 1
        LOGGER.warning("%s (%d tools)", error.message, len(invocations))
        return {item.id: self._failure_from_validation(item, error) for item in invocations}

    # ------------------------------------------------------------------
    # Per-invocation pipeline
    # ------------------------------------------------------------------
    async def _run_invocation(
        self,
        invocation: ToolInvocation,
        context: ExecutionContext,
        guard: RunGuard,
    ) -> ToolResult:
        if invocation.condition is not None and not evaluate_condition(
            invocation.condition, context.results_by_id, context.shared_state
        ):
            LOGGER.debug("Skipping %s: condition not met", invocation.id)
            result = ToolResult.skip(invocation.id)
            self._record(context, result)
            return result

        try:
            validate_invocation(invocation, self._registry)
        except ValidationError as exc:
            self._mistakes += 1
            LOGGER.warning("Rejected tool %s (%s): %s", invocation.name, invocation.id, exc.message)
            result = self._failure_from_validation(invocation, exc)
            self._record(context, result)
            return result
        self._mistakes = 0

        result = await self._executor_for(invocation, context, guard)()
        self._record(context, result)
        return result

    def _executor_for(self, invocation: ToolInvocation, context: ExecutionContext, guard: RunGuard) -> Execute:
        execute: Execute
        if invocation.is_composite:
            execute = functools.partial(self._run_composite, invocation, context, guard)
        else:
            execute = functools.partial(self._call_runner, invocation, context)
        policy = invocation.retry_policy
        if policy is not None and policy.max_retries > 0:
            execute = with_retry(execute, policy, guard=guard, invocation_id=invocation.id)
        if invocation.fallback is not None:
            fallback_execute = functools.partial(self._run_fallback, invocation.fallback, context, guard)
            execute = with_fallback(execute, fallback_execute, invocation.id)
        return execute

    async def _run_fallback(
        self,
        fallback: ToolInvocation,
        context: ExecutionContext,
        guard: RunGuard,
    ) -> ToolResult:
        try:
            validate_invocation(fallback, self._registry)
        except ValidationError as exc:
            LOGGER.warning("Rejected fallback tool %s: %s", fallback.name, exc.message)
            return self._failure_from_validation(fallback, exc)
        return await self._executor_for(fallback, context, guard)()

    async def _call_runner(self, invocation: ToolInvocation, context: ExecutionContext) -> ToolResult:
        self._record_usage(invocation.name)
        if self._settings.log_arguments:
            LOGGER.debug("Executing tool %s (id=%s) with arguments: %s", invocation.name, invocation.id, invocation.parameters)
        else:
            LOGGER.debug("Executing tool %s (id=%s)", invocation.name, invocation.id)

        tool_context = ToolContext(
            invocation_id=invocation.id,
            shared_state=MappingProxyType(context.shared_state),
            approver=self._approver,
        )
        start_time = time.perf_counter()
        try:
            payload = self._runner.run(invocation.name, dict(invocation.parameters), tool_context)
            if inspect.isawaitable(payload):
                payload = await payload
        except AbortedError:
            raise
        except Exception as exc:
            duration_ms = (time.perf_counter() - start_time) * 1000
            LOGGER.warning("Tool %s (%s) failed after %.1fms: %s", invocation.name, invocation.id, duration_ms, exc)
            return self._failure_from_exception(invocation, exc, duration_ms)

        duration_ms = (time.perf_counter() - start_time) * 1000
        if self._settings.log_results:
            LOGGER.debug("Tool %s completed in %.1fms with result: %s", invocation.name, duration_ms, payload)
        else:
            LOGGER.debug("Tool %s completed in %.1fms", invocation.name, duration_ms)
        return ToolResult.ok(invocation.id, payload, duration_ms=duration_ms)

    async def _run_composite(
        self,
        invocation: ToolInvocation,
        context: ExecutionContext,
        guard: RunGuard,
    ) -> ToolResult:
        child = context.child(invocation.child_mode or ExecutionMode.SEQUENTIAL)
        _copy_mappings(invocation.input_mappings, context.shared_state, child.shared_state, invocation.id)
        LOGGER.debug(
            "Running composite %s with %d children in %s mode",
            invocation.id,
            len(invocation.children or ()),
            child.mode.value,
        )
        outcome = await self._run(list(invocation.children or ()), child, guard)
        _copy_mappings(invocation.output_mappings, child.shared_state, context.shared_state, invocation.id)

        error = None
        if not outcome.overall_success:
            failed = [result.id for result in outcome.results if not result.success]
            error = ToolErrorInfo(
                message=f"Composite tool failed: {len(failed)} of {len(outcome.results_by_id)} children failed",
                details={"failed": failed},
                code=ErrorCode.EXECUTION_FAILED,
            )
        return ToolResult(
            id=invocation.id,
            success=outcome.overall_success,
            payload=outcome.aggregated_payload,
            error=error,
            metrics=ToolMetrics(duration_ms=outcome.total_duration_ms),
            children=outcome,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _record(context: ExecutionContext, result: ToolResult) -> None:
        context.results_by_id[result.id] = result
        if result.success and result.attempted and not result.skipped:
            context.shared_state[result.id] = result.payload

    def _record_usage(self, tool_name: str) -> None:
        if self._recorder is None:
            return
        try:
            self._recorder.record(tool_name)
        except Exception:
            LOGGER.debug("Usage recorder failed for %s", tool_name, exc_info=True)

    @staticmethod
    def _failure_from_validation(invocation: ToolInvocation, error: ValidationError) -> ToolResult:
        return ToolResult.failure(
            invocation.id,
            error.message,
            details=error.to_dict(),
            code=error.error_code,
        )

    @staticmethod
    def _failure_from_exception(invocation: ToolInvocation, exc: Exception, duration_ms: float) -> ToolResult:
        if isinstance(exc, OrchestrationError):
            return ToolResult.failure(
                invocation.id, exc.message, details=exc.to_dict(), code=exc.error_code, duration_ms=duration_ms
            )
        details: dict[str, Any] = {"tool": invocation.name, "exception": type(exc).__name__}
        if isinstance(exc, ToolExecutionError) and exc.cause is not None:
            details["exception"] = type(exc.cause).__name__
        return ToolResult.failure(
            invocation.id,
            str(exc) or type(exc).__name__,
            details=details,
            code=ErrorCode.EXECUTION_FAILED,
            duration_ms=duration_ms,
        )


def _copy_mappings(
    mappings: Sequence[Mapping[str, str]] | None,
    source: Mapping[str, Any],
    target: dict[str, Any],
    owner: str,
) -> None:
    """Copy ``{source_key: target_key}`` entries across a context boundary."""
    for mapping in mappings or ():
        for source_key, target_key in mapping.items():
            if source_key not in source:
                LOGGER.debug("Composite %s: no state entry '%s' to map", owner, source_key)
                continue
            target[target_key] = copy.deepcopy(source[source_key])
