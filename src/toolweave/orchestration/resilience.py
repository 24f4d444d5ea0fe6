"""Retry and fallback wrappers for single invocations.

Both wrappers take a zero-argument coroutine function producing a
:class:`~toolweave.orchestration.types.ToolResult` and return another one, so
they compose freely. Retries are driven by tenacity, the same way the model
client retries transient API failures.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
    wait_fixed,
)

from ..tools.errors import AbortedError, ErrorCode, RunTimeoutError
from ..tools.types import AbortSignal
from .types import ExecutionOptions, RetryPolicy, ToolResult

__all__ = ["Execute", "RunGuard", "with_retry", "with_fallback"]

LOGGER = logging.getLogger(__name__)

Execute = Callable[[], Awaitable[ToolResult]]

_POLL_SECONDS = 0.05


class RunGuard:
    """Checks the abort signal and the run deadline at scheduling checkpoints.

    Args:
        abort_signal: Caller's cooperative cancellation flag.
        timeout_ms: Optional time budget for the whole run.
    """

    __slots__ = ("_signal", "_deadline")

    def __init__(self, abort_signal: AbortSignal | None = None, timeout_ms: int | None = None) -> None:
        self._signal = abort_signal
        self._deadline = time.monotonic() + timeout_ms / 1000.0 if timeout_ms is not None else None

    @classmethod
    def from_options(cls, options: ExecutionOptions, abort_signal: AbortSignal | None = None) -> RunGuard:
        return cls(abort_signal, options.timeout_ms)

    @property
    def aborted(self) -> bool:
        return self._signal is not None and bool(self._signal.is_set())

    @property
    def expired(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    def check(self, stage: str = "") -> None:
        """Raise if the run must stop.

        Raises:
            AbortedError: The abort signal is set.
            RunTimeoutError: The run deadline has passed.
        """
        if self.aborted:
            raise AbortedError(stage=stage)
        if self.expired:
            raise RunTimeoutError(stage=stage)

    async def sleep(self, seconds: float) -> None:
        """Sleep in short slices, checking the guard between them."""
        self.check("backoff")
        remaining = max(float(seconds), 0.0)
        while remaining > 0:
            step = min(remaining, _POLL_SECONDS)
            await asyncio.sleep(step)
            remaining -= step
            self.check("backoff")


# -----------------------------------------------------------------------------
# Retry
# -----------------------------------------------------------------------------


def _failed_result(result: ToolResult) -> bool:
    return not result.success


def _retryable_error(exc: BaseException) -> bool:
    return isinstance(exc, Exception) and not isinstance(exc, AbortedError)


def with_retry(
    execute: Execute,
    policy: RetryPolicy,
    *,
    guard: RunGuard | None = None,
    invocation_id: str = "",
) -> Execute:
    """Wrap ``execute`` with retry-with-backoff.

    A failed result or a raised error (other than :class:`AbortedError`) is
    retried up to ``policy.max_retries`` more times. The final result carries
    ``metrics.retry_count``; exhausted retries return the last failure.
    """
    delay = policy.backoff_ms / 1000.0
    wait = wait_exponential(multiplier=delay, exp_base=2) if policy.exponential else wait_fixed(delay)
    sleep = guard.sleep if guard is not None else asyncio.sleep

    def log_retry(state: RetryCallState) -> None:
        outcome = state.outcome
        reason = "raised" if outcome is not None and outcome.failed else "failed"
        LOGGER.info(
            "Tool %s %s on attempt %d; retrying in %.3fs",
            invocation_id or "<anonymous>",
            reason,
            state.attempt_number,
            state.next_action.sleep if state.next_action else 0.0,
        )

    def give_up(state: RetryCallState) -> ToolResult:
        outcome = state.outcome
        retries = state.attempt_number - 1
        if outcome is None:
            return ToolResult.failure(invocation_id, "Retry produced no outcome").with_metrics(retry_count=retries)
        if outcome.failed:
            exc = outcome.exception()
            return ToolResult.failure(
                invocation_id,
                str(exc) or type(exc).__name__,
                code=ErrorCode.EXECUTION_FAILED,
            ).with_metrics(retry_count=retries)
        return outcome.result().with_metrics(retry_count=retries)

    async def run() -> ToolResult:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(policy.max_retries, 0) + 1),
            wait=wait,
            retry=retry_if_result(_failed_result) | retry_if_exception(_retryable_error),
            sleep=sleep,
            before_sleep=log_retry,
            retry_error_callback=give_up,
        )
        attempts = 0

        async def attempt() -> ToolResult:
            nonlocal attempts
            attempts += 1
            return await execute()

        result = await retrying(attempt)
        if result.metrics.retry_count != attempts - 1:
            result = result.with_metrics(retry_count=attempts - 1)
        return result

    return run


# -----------------------------------------------------------------------------
# Fallback
# -----------------------------------------------------------------------------


def with_fallback(execute: Execute, fallback_execute: Execute, original_id: str) -> Execute:
    """Run ``fallback_execute`` when ``execute`` fails, keyed under ``original_id``."""

    async def run() -> ToolResult:
        try:
            result = await execute()
        except AbortedError:
            raise
        except Exception as exc:
            LOGGER.info("Tool %s raised %s; running fallback", original_id, exc)
        else:
            if result.success:
                return result
            LOGGER.info("Tool %s failed; running fallback", original_id)
        fallback_result = await fallback_execute()
        return fallback_result.with_id(original_id)

    return run
