# src/core/errors.py - v1
"""Error taxonomy for the phase pipeline.

Configuration errors (ConfigurationError, ThresholdMisconfiguration) live in
config/settings.py because they are raised at load time, before a Run exists.
"""

from __future__ import annotations


class SuiteGateError(Exception):
    """Base class for all pipeline errors."""


class SequenceViolation(SuiteGateError):
    """A phase was invoked out of order or before its predecessor was approved.

    Fatal to the request only: the Run is left untouched.
    """


class StaleResult(SequenceViolation):
    """A phase result arrived for an execution the Run is no longer awaiting."""

    def __init__(self, run_id: str, execution_id: str, reason: str) -> None:
        self.run_id = run_id
        self.execution_id = execution_id
        self.reason = reason
        super().__init__(
            f"Run '{run_id}' is not awaiting execution '{execution_id}': {reason}"
        )


class RunNotActive(SequenceViolation):
    """The Run is completed or failed and accepts no further transitions."""


class GateAlreadyResolved(SuiteGateError):
    """An approval decision was submitted for a gate that is already resolved."""


class RunNotFound(SuiteGateError):
    """No Run with the given identifier exists."""


class GateNotFound(SuiteGateError):
    """No ApprovalGate with the given identifier exists."""


class InvalidCoverageInput(SuiteGateError):
    """Malformed AC/test similarity matrix (e.g. zero ACs)."""


class InvalidRankingInput(SuiteGateError):
    """Ranking factors missing or outside [0, 1]."""


class AgentExecutionError(SuiteGateError):
    """External capability failed or returned schema-invalid output."""

    def __init__(self, phase: str, message: str) -> None:
        self.phase = phase
        super().__init__(f"[{phase}] {message}")


class TransientAgentError(AgentExecutionError):
    """Failure class eligible for bounded retry (timeouts, throttling, 5xx)."""


class PermanentAgentError(AgentExecutionError):
    """Failure class never retried (malformed request, permission denied)."""


class AgentRetryExhausted(AgentExecutionError):
    """All retries exhausted for a transient failure."""

    def __init__(self, phase: str, agent: str, attempts: int, last_error: Exception) -> None:
        self.agent = agent
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            phase,
            f"agent '{agent}' failed after {attempts} attempts: {last_error}",
        )


class AuditIntegrityError(SuiteGateError):
    """An audit write was rejected (excluded field or ordering violation)."""
