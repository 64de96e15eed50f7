# src/api/models.py - v2
"""Public API views: RunSummary, RunHistory, GateStatusView, ResubmitHint."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from suitegate.audit.models import AuditEntry
from suitegate.core.models import (
    ApprovalGate,
    GateStatus,
    Phase,
    PhaseExecution,
    Run,
    RunStatus,
)


class GateStatusView(BaseModel):
    """Current state of one approval gate."""

    gate_id: str
    run_id: str
    execution_id: str
    phase: Phase
    status: GateStatus
    deadline: datetime
    feedback: str | None = None
    decider: str | None = None
    decided_at: datetime | None = None

    @classmethod
    def from_gate(cls, gate: ApprovalGate) -> GateStatusView:
        return cls.model_validate(gate.model_dump(exclude={"created_at"}))


class RunSummary(BaseModel):
    """One row of the run listing."""

    run_id: str
    status: RunStatus
    created_at: datetime
    updated_at: datetime
    expected_phase: Phase | None = None
    pause_reason: str | None = None

    @classmethod
    def from_run(cls, run: Run) -> RunSummary:
        return cls(
            run_id=run.run_id,
            status=run.status,
            created_at=run.created_at,
            updated_at=run.updated_at,
            expected_phase=run.expected_phase,
            pause_reason=run.pause_reason,
        )


class ResubmitHint(BaseModel):
    """What an operator needs to retry or resubmit a paused phase."""

    phase: Phase
    last_status: str
    input_snapshot: dict[str, Any] = Field(default_factory=dict)
    last_error: str | None = None
    last_feedback: str | None = None


class RunHistory(BaseModel):
    """Full record of a Run: executions, gates and audit trail."""

    run: Run
    expected_phase: Phase | None = None
    pause_reason: str | None = None
    executions: list[PhaseExecution] = Field(default_factory=list)
    gates: list[ApprovalGate] = Field(default_factory=list)
    audit: list[AuditEntry] = Field(default_factory=list)
    resubmit: ResubmitHint | None = None
