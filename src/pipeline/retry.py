# src/pipeline/retry.py - v1
"""Bounded retry with exponential backoff for external agent calls.

Every attempt runs under a hard per-call timeout. Failures are split into
transient (timeouts, throttling, server errors: retried) and permanent
(malformed request, permission denied, anything unrecognised: never
retried).
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from suitegate.core.errors import (
    AgentExecutionError,
    AgentRetryExhausted,
    PermanentAgentError,
    TransientAgentError,
)

if TYPE_CHECKING:
    from suitegate.config.settings import Settings
    from suitegate.tracking.call_logger import CallLogger

logger = logging.getLogger(__name__)

TRANSIENT = "transient"
PERMANENT = "permanent"

_TRANSIENT_MARKERS = ("429", "rate limit", "throttl", "timeout", "timed out",
                      "500", "502", "503", "504", "unavailable", "overloaded")
_PERMANENT_MARKERS = ("400", "401", "403", "404", "forbidden", "permission",
                      "unauthorized", "malformed", "invalid request")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry configuration for agent calls."""

    max_retries: int = 3
    base_delay_s: float = 1.0
    backoff_factor: float = 2.0
    call_timeout_s: float = 300.0
    jitter: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        return cls(
            max_retries=settings.agent_max_retries,
            base_delay_s=settings.agent_backoff_base_s,
            backoff_factor=settings.agent_backoff_factor,
            call_timeout_s=settings.agent_call_timeout_s,
        )


def classify_error(error: Exception) -> str:
    """Classify an exception as transient or permanent."""
    if isinstance(error, TransientAgentError):
        return TRANSIENT
    if isinstance(error, (PermanentAgentError, PermissionError)):
        return PERMANENT
    if isinstance(error, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return TRANSIENT

    msg = str(error).lower()
    if any(marker in msg for marker in _PERMANENT_MARKERS):
        return PERMANENT
    if any(marker in msg for marker in _TRANSIENT_MARKERS):
        return TRANSIENT
    return PERMANENT


def _compute_delay(policy: RetryPolicy, attempt: int) -> float:
    """Compute delay for a given retry (0-based)."""
    delay = policy.base_delay_s * (policy.backoff_factor ** attempt)
    if policy.jitter:
        delay *= 0.5 + random.random()  # noqa: S311
    return delay


async def call_with_retry(
    fn: Callable[..., Awaitable[Any]],
    *args: Any,
    phase: str,
    agent: str = "unknown",
    policy: RetryPolicy | None = None,
    call_logger: CallLogger | None = None,
    run_id: str | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    **kwargs: Any,
) -> Any:
    """Execute an async agent call with timeout and retry logic.

    Raises:
        AgentRetryExhausted: If a transient failure persists past max_retries.
        PermanentAgentError: On the first permanent failure.
    """
    policy = policy or RetryPolicy()
    attempts = 0

    while True:
        attempts += 1
        start = time.monotonic()
        try:
            result = await asyncio.wait_for(fn(*args, **kwargs), timeout=policy.call_timeout_s)
        except Exception as e:
            latency_ms = int((time.monotonic() - start) * 1000)
            error_class = classify_error(e)
            retrying = error_class == TRANSIENT and attempts <= policy.max_retries
            if call_logger is not None:
                call_logger.record(
                    phase, agent, attempts, latency_ms,
                    status="retry" if retrying else "failed",
                    error_type=type(e).__name__,
                    run_id=run_id,
                )

            if error_class == PERMANENT:
                logger.error("Agent '%s' permanent failure on attempt %d: %s", agent, attempts, e)
                if isinstance(e, AgentExecutionError):
                    raise
                raise PermanentAgentError(phase, f"agent '{agent}': {e}") from e
            if not retrying:
                raise AgentRetryExhausted(phase, agent, attempts, e) from e

            delay = _compute_delay(policy, attempts - 1)
            logger.warning(
                "Agent '%s' transient failure (attempt %d/%d), retrying in %.1fs: %s",
                agent, attempts, policy.max_retries + 1, delay, e,
            )
            await sleep(delay)
            continue

        if call_logger is not None:
            call_logger.record(
                phase, agent, attempts, int((time.monotonic() - start) * 1000),
                status="success", run_id=run_id,
            )
        return result
