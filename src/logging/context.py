# src/logging/context.py - v2
"""Contextual logging: attach run_id, phase, gate_id and agent to records.

Context variables are task-local under asyncio, so concurrent Runs driven
from separate tasks never see each other's context.
"""

from __future__ import annotations

import contextvars
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from typing import Any, Iterator

_run_id: contextvars.ContextVar[str | None] = contextvars.ContextVar("run_id", default=None)
_phase: contextvars.ContextVar[str | None] = contextvars.ContextVar("phase", default=None)
_gate_id: contextvars.ContextVar[str | None] = contextvars.ContextVar("gate_id", default=None)
_agent: contextvars.ContextVar[str | None] = contextvars.ContextVar("agent", default=None)


@dataclass(frozen=True)
class LogContext:
    """Snapshot of the current logging context."""

    run_id: str | None = None
    phase: str | None = None
    gate_id: str | None = None
    agent: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """Return non-None fields as dict for JSON log injection."""
        return {k: v for k, v in asdict(self).items() if v is not None}


def get_context() -> LogContext:
    return LogContext(
        run_id=_run_id.get(),
        phase=_phase.get(),
        gate_id=_gate_id.get(),
        agent=_agent.get(),
    )


def set_run_context(run_id: str, phase: str | None = None) -> None:
    """Set run-level context (called when a Run is touched)."""
    _run_id.set(run_id)
    _phase.set(phase)


def set_gate_context(gate_id: str | None) -> None:
    _gate_id.set(gate_id)


def set_agent_context(agent: str | None) -> None:
    _agent.set(agent)


@contextmanager
def run_context(run_id: str, phase: str | None = None) -> Iterator[None]:
    """Scope run/phase context to a block, restoring the previous values."""
    run_token = _run_id.set(run_id)
    phase_token = _phase.set(phase)
    try:
        yield
    finally:
        _phase.reset(phase_token)
        _run_id.reset(run_token)


def clear_context() -> None:
    """Reset all context variables."""
    _run_id.set(None)
    _phase.set(None)
    _gate_id.set(None)
    _agent.set(None)
