# src/audit/models.py - v1
"""Audit domain models: event types, typed event payloads, AuditEntry.

Every payload forbids extra fields and none of them declares a slot for raw
embedding vectors or agent reasoning text, so those can never be written to
the log. AuditEntry additionally rejects excluded keys anywhere in its
details as a second line of enforcement.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

# Keys never accepted anywhere inside an audit entry.
EXCLUDED_AUDIT_FIELDS: frozenset[str] = frozenset(
    {
        "embedding",
        "embeddings",
        "vector",
        "vectors",
        "reasoning",
        "rationale",
        "thoughts",
        "chain_of_thought",
        "raw_response",
    }
)


class AuditEventType(str, Enum):
    RUN_CREATED = "run_created"
    RUN_COMPLETED = "run_completed"
    RUN_ABANDONED = "run_abandoned"
    PHASE_STARTED = "phase_started"
    PHASE_COMPLETED = "phase_completed"
    PHASE_FAILED = "phase_failed"
    APPROVAL_DECIDED = "approval_decided"
    APPROVAL_TIMEOUT = "approval_timeout"
    THRESHOLD_EVALUATED = "threshold_evaluated"
    GENERATION_GATED = "generation_gated"
    RANKING_BREAKDOWN = "ranking_breakdown"
    LATE_RESULT_DISCARDED = "late_result_discarded"


class AuditEvent(BaseModel):
    """Base for typed audit payloads."""

    model_config = ConfigDict(extra="forbid", frozen=True)


class RunEvent(AuditEvent):
    status: str
    reason: str | None = None
    decider: str | None = None


class PhaseEvent(AuditEvent):
    phase: str
    execution_id: str
    attempt: int
    output_digest: str | None = None
    output_keys: list[str] = Field(default_factory=list)


class PhaseFailureEvent(AuditEvent):
    phase: str
    execution_id: str
    attempt: int
    error_type: str
    error: str


class ApprovalEvent(AuditEvent):
    gate_id: str
    phase: str
    execution_id: str
    decision: Literal["approved", "rejected"]
    decider: str | None = None
    feedback: str | None = None


class ApprovalTimeoutEvent(AuditEvent):
    gate_id: str
    phase: str
    execution_id: str
    deadline: datetime
    feedback: str


class ThresholdEvent(AuditEvent):
    check: Literal["coverage_cutoff", "generation_gate"]
    threshold: float
    statistic_name: str | None = None
    statistic: float | None = None
    passed: bool | None = None
    counts: dict[str, int] = Field(default_factory=dict)


class GenerationGatedEvent(AuditEvent):
    statistic_name: str
    statistic: float
    threshold: float


class RankingBreakdownItem(AuditEvent):
    test_id: str
    raw_score: float
    final_score: float
    factors: dict[str, float]


class RankingBreakdownEvent(AuditEvent):
    weights: dict[str, float]
    entries: list[RankingBreakdownItem] = Field(default_factory=list)


class LateResultEvent(AuditEvent):
    phase: str
    execution_id: str
    reason: str


def find_excluded_keys(value: Any, path: str = "") -> list[str]:
    """Return dotted paths of excluded keys found anywhere in value."""
    found: list[str] = []
    if isinstance(value, dict):
        for key, item in value.items():
            here = f"{path}.{key}" if path else str(key)
            if str(key).lower() in EXCLUDED_AUDIT_FIELDS:
                found.append(here)
            found.extend(find_excluded_keys(item, here))
    elif isinstance(value, (list, tuple)):
        for idx, item in enumerate(value):
            found.extend(find_excluded_keys(item, f"{path}[{idx}]"))
    return found


class AuditEntry(BaseModel):
    """One append-only audit log entry. sequence is assigned by the store."""

    model_config = ConfigDict(frozen=True)

    entry_id: str
    run_id: str
    sequence: int = 0
    event_type: AuditEventType
    phase: str | None = None
    created_at: datetime
    details: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _no_excluded_fields(self) -> AuditEntry:
        excluded = find_excluded_keys(self.details)
        if excluded:
            raise ValueError(f"audit details contain excluded fields: {excluded}")
        return self
