# src/audit/recorder.py - v1
"""Append-only audit recorder.

The write surface is a set of typed methods, one per event type. None of
them takes raw phase output: completed phases are recorded as a digest plus
the payload's top-level keys. There is no update or delete operation.
"""

from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable

from pydantic import ValidationError

from suitegate.audit.models import (
    ApprovalEvent,
    ApprovalTimeoutEvent,
    AuditEntry,
    AuditEvent,
    AuditEventType,
    GenerationGatedEvent,
    LateResultEvent,
    PhaseEvent,
    PhaseFailureEvent,
    RankingBreakdownEvent,
    RankingBreakdownItem,
    RunEvent,
    ThresholdEvent,
)
from suitegate.core.errors import AuditIntegrityError
from suitegate.core.models import ApprovalGate, PhaseExecution, new_id, utc_now

if TYPE_CHECKING:
    from suitegate.core.payloads import RankingReport
    from suitegate.storage.base_run_store import BaseRunStore

logger = logging.getLogger(__name__)


def output_digest(output: dict[str, Any] | None) -> str | None:
    """sha256 over the canonical JSON form of a phase output."""
    if output is None:
        return None
    canonical = json.dumps(output, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class AuditRecorder:
    """Typed, append-only writer for the per-Run audit log."""

    def __init__(
        self,
        store: BaseRunStore,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._clock = clock

    async def _append(
        self,
        run_id: str,
        event_type: AuditEventType,
        event: AuditEvent,
        phase: str | None = None,
    ) -> AuditEntry:
        try:
            entry = AuditEntry(
                entry_id=new_id("aud"),
                run_id=run_id,
                event_type=event_type,
                phase=phase,
                created_at=self._clock(),
                details=event.model_dump(mode="json"),
            )
        except ValidationError as exc:
            raise AuditIntegrityError(f"rejected {event_type.value} entry: {exc}") from exc
        stored = await self._store.append_audit(entry)
        logger.debug("Audit %s run=%s seq=%d", event_type.value, run_id, stored.sequence)
        return stored

    # --- Run lifecycle ---

    async def run_created(self, run_id: str) -> AuditEntry:
        return await self._append(run_id, AuditEventType.RUN_CREATED, RunEvent(status="in_progress"))

    async def run_completed(self, run_id: str) -> AuditEntry:
        return await self._append(run_id, AuditEventType.RUN_COMPLETED, RunEvent(status="completed"))

    async def run_abandoned(self, run_id: str, reason: str, decider: str | None) -> AuditEntry:
        return await self._append(
            run_id,
            AuditEventType.RUN_ABANDONED,
            RunEvent(status="failed", reason=reason, decider=decider),
        )

    # --- Phases ---

    async def phase_started(self, execution: PhaseExecution) -> AuditEntry:
        return await self._append(
            execution.run_id,
            AuditEventType.PHASE_STARTED,
            PhaseEvent(
                phase=execution.phase.value,
                execution_id=execution.execution_id,
                attempt=execution.attempt,
            ),
            phase=execution.phase.value,
        )

    async def phase_completed(self, execution: PhaseExecution) -> AuditEntry:
        output = execution.output_snapshot or {}
        return await self._append(
            execution.run_id,
            AuditEventType.PHASE_COMPLETED,
            PhaseEvent(
                phase=execution.phase.value,
                execution_id=execution.execution_id,
                attempt=execution.attempt,
                output_digest=output_digest(execution.output_snapshot),
                output_keys=sorted(output),
            ),
            phase=execution.phase.value,
        )

    async def phase_failed(self, execution: PhaseExecution, error: Exception) -> AuditEntry:
        return await self._append(
            execution.run_id,
            AuditEventType.PHASE_FAILED,
            PhaseFailureEvent(
                phase=execution.phase.value,
                execution_id=execution.execution_id,
                attempt=execution.attempt,
                error_type=type(error).__name__,
                error=str(error),
            ),
            phase=execution.phase.value,
        )

    async def late_result_discarded(
        self, run_id: str, phase: str, execution_id: str, reason: str
    ) -> AuditEntry:
        return await self._append(
            run_id,
            AuditEventType.LATE_RESULT_DISCARDED,
            LateResultEvent(phase=phase, execution_id=execution_id, reason=reason),
            phase=phase,
        )

    # --- Approvals ---

    async def approval_decided(self, gate: ApprovalGate) -> AuditEntry:
        return await self._append(
            gate.run_id,
            AuditEventType.APPROVAL_DECIDED,
            ApprovalEvent(
                gate_id=gate.gate_id,
                phase=gate.phase.value,
                execution_id=gate.execution_id,
                decision=gate.status.value,  # type: ignore[arg-type]
                decider=gate.decider,
                feedback=gate.feedback,
            ),
            phase=gate.phase.value,
        )

    async def approval_timed_out(self, gate: ApprovalGate) -> AuditEntry:
        return await self._append(
            gate.run_id,
            AuditEventType.APPROVAL_TIMEOUT,
            ApprovalTimeoutEvent(
                gate_id=gate.gate_id,
                phase=gate.phase.value,
                execution_id=gate.execution_id,
                deadline=gate.deadline,
                feedback=gate.feedback or "",
            ),
            phase=gate.phase.value,
        )

    # --- Threshold evaluations ---

    async def coverage_cutoff(
        self,
        run_id: str,
        threshold: float,
        min_ratio: float,
        qualified: int,
        rejected: int,
        uncovered: int,
    ) -> AuditEntry:
        return await self._append(
            run_id,
            AuditEventType.THRESHOLD_EVALUATED,
            ThresholdEvent(
                check="coverage_cutoff",
                threshold=threshold,
                statistic_name="min_coverage_ratio",
                statistic=min_ratio,
                counts={"qualified": qualified, "rejected": rejected, "uncovered_acs": uncovered},
            ),
            phase="coverage",
        )

    async def generation_gate_evaluated(
        self, run_id: str, statistic_name: str, statistic: float, threshold: float, passed: bool
    ) -> AuditEntry:
        return await self._append(
            run_id,
            AuditEventType.THRESHOLD_EVALUATED,
            ThresholdEvent(
                check="generation_gate",
                threshold=threshold,
                statistic_name=statistic_name,
                statistic=statistic,
                passed=passed,
            ),
            phase="generation",
        )

    async def generation_gated(
        self, run_id: str, statistic_name: str, statistic: float, threshold: float
    ) -> AuditEntry:
        return await self._append(
            run_id,
            AuditEventType.GENERATION_GATED,
            GenerationGatedEvent(
                statistic_name=statistic_name, statistic=statistic, threshold=threshold
            ),
            phase="generation",
        )

    async def ranking_breakdown(self, run_id: str, report: RankingReport) -> AuditEntry:
        return await self._append(
            run_id,
            AuditEventType.RANKING_BREAKDOWN,
            RankingBreakdownEvent(
                weights=dict(report.weights),
                entries=[
                    RankingBreakdownItem(
                        test_id=item.test_id,
                        raw_score=item.raw_score,
                        final_score=item.final_score,
                        factors=item.factors.model_dump(),
                    )
                    for item in report.ranked
                ],
            ),
            phase="ranking",
        )

    # --- Read side ---

    async def entries(self, run_id: str) -> list[AuditEntry]:
        """All entries for a Run, oldest first."""
        return await self._store.list_audit(run_id)
