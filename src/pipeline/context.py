# src/pipeline/context.py - v1
"""Cumulative context handed to each phase.

A phase sees the story text plus the approved output of every earlier
phase, and any feedback left on previously rejected attempts of itself.
The context is snapshotted into PhaseExecution.input_snapshot at start.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from suitegate.core.generation_gate import uncovered_acs
from suitegate.core.models import (
    ExecutionStatus,
    GateStatus,
    Phase,
    PhaseExecution,
    Run,
    phase_index,
)
from suitegate.core.payloads import CoverageReport, IngestionOutput, PhasePayload, validate_payload

if TYPE_CHECKING:
    from suitegate.storage.base_run_store import BaseRunStore


class PhaseContext(BaseModel):
    """Inputs available to one phase execution."""

    run_id: str
    story_text: str
    phase: Phase
    attempt: int = 1
    outputs: dict[str, dict[str, Any]] = Field(default_factory=dict)
    feedback: list[str] = Field(default_factory=list)
    uncovered_ac_ids: list[str] = Field(default_factory=list)

    def has_output(self, phase: Phase) -> bool:
        return phase.value in self.outputs

    def output(self, phase: Phase) -> PhasePayload:
        """Approved output of an earlier phase, parsed into its schema.

        Raises:
            KeyError: If the phase has no approved output in this context.
        """
        return validate_payload(phase, self.outputs[phase.value])


def latest_approved(executions: list[PhaseExecution]) -> dict[Phase, PhaseExecution]:
    """Most recent approved execution per phase."""
    approved: dict[Phase, PhaseExecution] = {}
    for execution in executions:
        if execution.status == ExecutionStatus.APPROVED:
            approved[execution.phase] = execution
    return approved


async def build_context(store: BaseRunStore, run: Run, phase: Phase, attempt: int) -> PhaseContext:
    """Assemble the context for ``phase`` from the Run's approved history."""
    executions = await store.list_executions(run.run_id)
    approved = latest_approved(executions)
    cutoff = phase_index(phase)
    outputs = {
        p.value: execution.output_snapshot or {}
        for p, execution in approved.items()
        if phase_index(p) < cutoff
    }

    gates = await store.list_gates(run.run_id)
    feedback = [
        gate.feedback
        for gate in gates
        if gate.phase == phase and gate.status == GateStatus.REJECTED and gate.feedback
    ]

    uncovered: list[str] = []
    if phase == Phase.GENERATION:
        ingestion = IngestionOutput.model_validate(outputs[Phase.INGESTION.value])
        coverage = CoverageReport.model_validate(outputs[Phase.COVERAGE.value])
        uncovered = uncovered_acs(coverage, ingestion.ac_ids)

    return PhaseContext(
        run_id=run.run_id,
        story_text=run.story_text,
        phase=phase,
        attempt=attempt,
        outputs=outputs,
        feedback=feedback,
        uncovered_ac_ids=uncovered,
    )
