# src/api/facade.py - v2
"""Public API facade: single entry point for driving Runs.

Usage:
    from suitegate.api.facade import SuiteGate
    gate = SuiteGate()
    run = await gate.submit_story(text)
    result = await gate.run_next_phase(run.run_id)
    await gate.submit_approval(result.gate.gate_id, approved=True, decider="qa-lead")
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable

from pydantic import BaseModel

from suitegate.api.models import GateStatusView, ResubmitHint, RunHistory, RunSummary
from suitegate.audit.recorder import AuditRecorder
from suitegate.config.settings import Settings, load_settings
from suitegate.core.errors import GateNotFound, SequenceViolation
from suitegate.core.models import (
    AGENT_PHASES,
    ApprovalGate,
    ExecutionStatus,
    GateStatus,
    Phase,
    Run,
    utc_now,
)
from suitegate.logging.context import set_gate_context
from suitegate.pipeline.registry import AgentRegistry
from suitegate.pipeline.runner import PhaseResult, PhaseRunner
from suitegate.pipeline.state_machine import PhaseStateMachine
from suitegate.storage.store_factory import create_run_store

if TYPE_CHECKING:
    from suitegate.storage.base_run_store import BaseRunStore
    from suitegate.tracking.call_logger import CallLogger

logger = logging.getLogger(__name__)


class SuiteGate:
    """Wires store, audit recorder, state machine and runner together.

    Args:
        settings: Global settings. Loaded from env/.env if None.
        store: Registry backend. Built from settings if None.
        registry: Agents for the agent phases. Loaded from
            settings.phase_agents if None.
        clock: Time source, injectable for deadline tests.
        call_logger: Optional agent call tracking.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        store: BaseRunStore | None = None,
        registry: AgentRegistry | None = None,
        clock: Callable[[], datetime] = utc_now,
        call_logger: CallLogger | None = None,
    ) -> None:
        self.settings = settings or load_settings()
        self.store = store or create_run_store(self.settings)
        if registry is None:
            registry = AgentRegistry()
            registry.load_paths(self.settings.phase_agents_map)
        self.registry = registry
        self.recorder = AuditRecorder(self.store, clock=clock)
        self.machine = PhaseStateMachine(self.store, self.recorder, self.settings, clock=clock)
        self.runner = PhaseRunner(self.machine, self.registry, call_logger=call_logger)

    async def submit_story(self, story_text: str) -> Run:
        """Create a Run for a story. It starts at Ingestion."""
        return await self.machine.create_run(story_text)

    async def run_next_phase(self, run_id: str) -> PhaseResult:
        """Execute the phase the Run expects (agent call or core computation)."""
        return await self.runner.run_next_phase(run_id)

    async def submit_phase_output(
        self, run_id: str, phase: Phase, output: dict[str, Any] | BaseModel
    ) -> ApprovalGate:
        """Record externally produced output for an agent phase.

        Raises:
            SequenceViolation: For core-computed phases or out-of-order phases.
            AgentExecutionError: If the output fails schema validation.
        """
        if phase not in AGENT_PHASES:
            raise SequenceViolation(f"phase '{phase.value}' is computed by the core")
        return await self.machine.advance(run_id, phase, output)

    async def submit_approval(
        self,
        gate_id: str,
        approved: bool,
        feedback: str | None = None,
        decider: str | None = None,
    ) -> GateStatusView:
        set_gate_context(gate_id)
        try:
            gate = await self.machine.submit_approval(gate_id, approved, feedback, decider)
        finally:
            set_gate_context(None)
        return GateStatusView.from_gate(gate)

    async def get_gate_status(self, gate_id: str) -> GateStatusView:
        gate = await self.store.get_gate(gate_id)
        if gate is None:
            raise GateNotFound(f"Gate not found: {gate_id}")
        return GateStatusView.from_gate(gate)

    async def list_runs(self, limit: int = 20) -> list[RunSummary]:
        """Most recent Runs first; ``limit`` is capped at settings.run_list_max."""
        if limit < 1:
            raise ValueError(f"limit must be >= 1, got {limit}")
        limit = min(limit, self.settings.run_list_max)
        return [RunSummary.from_run(run) for run in await self.store.list_runs(limit)]

    async def get_run_history(self, run_id: str) -> RunHistory:
        run = await self.machine.get_run(run_id)
        executions = await self.store.list_executions(run_id)
        gates = await self.store.list_gates(run_id)
        audit = await self.recorder.entries(run_id)

        resubmit = None
        if run.pause_reason and run.expected_phase is not None and executions:
            last = executions[-1]
            if last.status in (ExecutionStatus.FAILED, ExecutionStatus.REJECTED):
                feedback = next(
                    (
                        g.feedback
                        for g in reversed(gates)
                        if g.execution_id == last.execution_id and g.status == GateStatus.REJECTED
                    ),
                    None,
                )
                resubmit = ResubmitHint(
                    phase=last.phase,
                    last_status=last.status.value,
                    input_snapshot=last.input_snapshot,
                    last_error=last.error,
                    last_feedback=feedback,
                )

        return RunHistory(
            run=run,
            expected_phase=run.expected_phase,
            pause_reason=run.pause_reason,
            executions=executions,
            gates=gates,
            audit=audit,
            resubmit=resubmit,
        )

    async def sweep_expired_gates(self, now: datetime | None = None) -> list[GateStatusView]:
        """Reject gates past their deadline. Idempotent."""
        expired = await self.machine.sweep_expired_gates(now)
        if expired:
            logger.info("Timed out %d approval gates", len(expired))
        return [GateStatusView.from_gate(g) for g in expired]

    async def abandon_run(self, run_id: str, reason: str, decider: str | None = None) -> Run:
        return await self.machine.abandon(run_id, reason, decider)

    def close(self) -> None:
        self.store.close()
