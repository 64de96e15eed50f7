# src/core/models.py - v1
"""Core domain models: Phase order, Run, PhaseExecution, ApprovalGate.

Runs, executions and gates are persisted by a BaseRunStore and only ever
mutated through the PhaseStateMachine.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class Phase(str, Enum):
    """Pipeline phases, declared in their fixed execution order."""

    INGESTION = "ingestion"
    CLASSIFICATION = "classification"
    EMBEDDING = "embedding"
    RETRIEVAL = "retrieval"
    COVERAGE = "coverage"
    RANKING = "ranking"
    GENERATION = "generation"
    AUDIT = "audit"


PHASE_ORDER: tuple[Phase, ...] = tuple(Phase)

# Phases delegated to external agents; the rest are computed by the core.
AGENT_PHASES: frozenset[Phase] = frozenset(
    {
        Phase.INGESTION,
        Phase.CLASSIFICATION,
        Phase.EMBEDDING,
        Phase.RETRIEVAL,
        Phase.GENERATION,
    }
)


def phase_index(phase: Phase) -> int:
    """Position of a phase in the fixed order."""
    return PHASE_ORDER.index(phase)


class RunStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class ExecutionStatus(str, Enum):
    PENDING = "pending"
    EXECUTED = "executed"
    APPROVED = "approved"
    REJECTED = "rejected"
    FAILED = "failed"


NON_TERMINAL_STATUSES: frozenset[ExecutionStatus] = frozenset(
    {ExecutionStatus.PENDING, ExecutionStatus.EXECUTED}
)

EXECUTION_STATUS_TRANSITIONS: dict[ExecutionStatus, frozenset[ExecutionStatus]] = {
    ExecutionStatus.PENDING: frozenset({ExecutionStatus.EXECUTED, ExecutionStatus.FAILED}),
    ExecutionStatus.EXECUTED: frozenset(
        {ExecutionStatus.APPROVED, ExecutionStatus.REJECTED, ExecutionStatus.FAILED}
    ),
    ExecutionStatus.APPROVED: frozenset(),
    ExecutionStatus.REJECTED: frozenset(),
    ExecutionStatus.FAILED: frozenset(),
}


class GateStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class Run(BaseModel):
    """One pipeline invocation for one story.

    phase_cursor indexes PHASE_ORDER and names the phase the Run expects
    next. It only ever moves forward. skipped_phases lists phases jumped
    over by a gate (Generation when the ranking statistic is too low).
    """

    run_id: str
    story_text: str
    created_at: datetime
    updated_at: datetime
    status: RunStatus = RunStatus.IN_PROGRESS
    phase_cursor: int = 0
    pause_reason: str | None = None
    skipped_phases: list[Phase] = Field(default_factory=list)

    @property
    def expected_phase(self) -> Phase | None:
        if self.status != RunStatus.IN_PROGRESS or self.phase_cursor >= len(PHASE_ORDER):
            return None
        return PHASE_ORDER[self.phase_cursor]


class PhaseExecution(BaseModel):
    """One attempt at one phase within a Run."""

    execution_id: str
    run_id: str
    phase: Phase
    attempt: int
    status: ExecutionStatus = ExecutionStatus.PENDING
    input_snapshot: dict[str, Any] = Field(default_factory=dict)
    output_snapshot: dict[str, Any] | None = None
    created_at: datetime
    executed_at: datetime | None = None
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status not in NON_TERMINAL_STATUSES


class ApprovalGate(BaseModel):
    """Mandatory human checkpoint attached to one executed PhaseExecution."""

    gate_id: str
    run_id: str
    execution_id: str
    phase: Phase
    status: GateStatus = GateStatus.PENDING
    created_at: datetime
    deadline: datetime
    feedback: str | None = None
    decided_at: datetime | None = None
    decider: str | None = None
