# src/pipeline/runner.py - v3
"""Phase runner: executes the next phase of a Run and hands the result to
the state machine.

Agent phases call their registered capability under the retry policy.
Coverage, Ranking and Audit are computed in-process from earlier approved
outputs. Failures are recorded on the execution (the Run pauses); results
that arrive after the Run stopped awaiting them are discarded and audited.
Unexpected errors are recorded the same way and then re-raised.
"""

from __future__ import annotations

import contextlib
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from suitegate.core.coverage import evaluate_coverage
from suitegate.core.errors import (
    AgentExecutionError,
    InvalidCoverageInput,
    InvalidRankingInput,
    PermanentAgentError,
    RunNotActive,
    StaleResult,
)
from suitegate.core.models import AGENT_PHASES, ApprovalGate, Phase, PhaseExecution
from suitegate.core.payloads import (
    AuditSummary,
    CoverageReport,
    GenerationOutput,
    IngestionOutput,
    PhasePayload,
    RankingFactors,
    RankingReport,
    RetrievalOutput,
)
from suitegate.core.ranking import rank_tests
from suitegate.logging.context import run_context, set_agent_context
from suitegate.pipeline.context import PhaseContext
from suitegate.pipeline.plugin_kit.models import AgentOutput
from suitegate.pipeline.retry import RetryPolicy, call_with_retry

if TYPE_CHECKING:
    from suitegate.pipeline.plugin_kit.base_agent import BasePhaseAgent
    from suitegate.pipeline.registry import AgentRegistry
    from suitegate.pipeline.state_machine import PhaseStateMachine
    from suitegate.tracking.call_logger import CallLogger

logger = logging.getLogger(__name__)

_PHASE_ERRORS = (AgentExecutionError, InvalidCoverageInput, InvalidRankingInput)


@dataclass
class PhaseResult:
    """Outcome of one run_next_phase call."""

    run_id: str
    phase: Phase
    execution_id: str
    gate: ApprovalGate | None = None
    error: str | None = None
    discarded: bool = False
    duration_ms: int = 0

    @property
    def success(self) -> bool:
        return self.gate is not None


class PhaseRunner:
    """Run the phase a Run currently expects.

    Args:
        machine: State machine that owns all transitions.
        registry: Agents for the agent phases.
        call_logger: Optional per-attempt call tracking.
        retry_policy: Timeout/backoff policy; derived from settings if None.
    """

    def __init__(
        self,
        machine: PhaseStateMachine,
        registry: AgentRegistry,
        call_logger: CallLogger | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._machine = machine
        self._registry = registry
        self._call_logger = call_logger
        self._retry_policy = retry_policy or RetryPolicy.from_settings(machine.settings)

    async def run_next_phase(self, run_id: str) -> PhaseResult:
        """Execute the expected phase and open its approval gate.

        Raises:
            RunNotActive: If the Run is completed or failed.
            SequenceViolation: If a phase is already in flight or the
                predecessor awaits approval.
            RegistryError: If an agent phase has no registered agent.
        """
        run = await self._machine.get_run(run_id)
        phase = run.expected_phase
        if phase is None:
            raise RunNotActive(f"Run '{run_id}' is {run.status.value}")

        agent = self._registry.get(phase)
        if phase in AGENT_PHASES and phase != Phase.GENERATION:
            agent = self._registry.get_or_raise(phase)

        start = time.monotonic()
        execution = await self._machine.begin_phase(run_id, phase)
        result = PhaseResult(run_id=run_id, phase=phase, execution_id=execution.execution_id)
        context = PhaseContext.model_validate(execution.input_snapshot)

        with run_context(run_id, phase.value):
            try:
                output = await self._produce(execution, context, agent)
            except _PHASE_ERRORS as exc:
                result.error = str(exc)
                try:
                    await self._machine.record_failure(run_id, execution.execution_id, exc)
                except StaleResult as stale:
                    await self._discard(execution, stale)
                    result.discarded = True
                result.duration_ms = int((time.monotonic() - start) * 1000)
                return result
            except Exception as exc:
                await self._record_unexpected(execution, exc)
                raise

            try:
                result.gate = await self._machine.advance(
                    run_id, phase, output, execution_id=execution.execution_id
                )
            except StaleResult as stale:
                await self._discard(execution, stale)
                result.discarded = True
            except AgentExecutionError as exc:
                result.error = str(exc)
            except Exception as exc:
                await self._record_unexpected(execution, exc)
                raise

        result.duration_ms = int((time.monotonic() - start) * 1000)
        return result

    async def _record_unexpected(self, execution: PhaseExecution, exc: Exception) -> None:
        logger.exception("Unexpected error in %s", execution.phase.value)
        # Already terminal: nothing left to pause.
        with contextlib.suppress(StaleResult):
            await self._machine.record_failure(execution.run_id, execution.execution_id, exc)

    async def _discard(self, execution: PhaseExecution, stale: StaleResult) -> None:
        logger.warning("Discarding late %s result: %s", execution.phase.value, stale.reason)
        await self._machine.recorder.late_result_discarded(
            execution.run_id, execution.phase.value, execution.execution_id, stale.reason
        )

    async def _produce(
        self,
        execution: PhaseExecution,
        context: PhaseContext,
        agent: BasePhaseAgent | None,
    ) -> PhasePayload | dict:
        phase = execution.phase
        if phase == Phase.COVERAGE:
            return await self._coverage(context)
        if phase == Phase.RANKING:
            return await self._ranking(context)
        if phase == Phase.AUDIT:
            return await self._audit_summary(context)
        if phase == Phase.GENERATION and not context.uncovered_ac_ids:
            logger.info("Every AC is covered; nothing to generate")
            return GenerationOutput()

        if agent is None:
            raise PermanentAgentError(
                phase.value, "no agent registered; submit the output manually"
            )
        set_agent_context(agent.name)
        try:
            output = await call_with_retry(
                agent.execute,
                context,
                phase=phase.value,
                agent=agent.name,
                policy=self._retry_policy,
                call_logger=self._call_logger,
                run_id=execution.run_id,
            )
        finally:
            set_agent_context(None)
        if not isinstance(output, AgentOutput):
            return output
        for warning in output.warnings:
            logger.warning("Agent '%s': %s", agent.name, warning)
        return output.data

    async def _coverage(self, context: PhaseContext) -> CoverageReport:
        ingestion: IngestionOutput = context.output(Phase.INGESTION)  # type: ignore[assignment]
        retrieval: RetrievalOutput = context.output(Phase.RETRIEVAL)  # type: ignore[assignment]
        settings = self._machine.settings

        report = evaluate_coverage(
            ingestion.ac_ids,
            [c.test_id for c in retrieval.candidates],
            retrieval.similarity,
            settings.ac_match_threshold,
        )
        await self._machine.recorder.coverage_cutoff(
            context.run_id,
            threshold=report.ac_match_threshold,
            min_ratio=report.min_coverage_ratio,
            qualified=len(report.qualified),
            rejected=len(report.rejected),
            uncovered=len(report.uncovered_ac_ids),
        )
        return report

    async def _ranking(self, context: PhaseContext) -> RankingReport:
        coverage: CoverageReport = context.output(Phase.COVERAGE)  # type: ignore[assignment]
        retrieval: RetrievalOutput = context.output(Phase.RETRIEVAL)  # type: ignore[assignment]

        factors_by_test: dict[str, RankingFactors] = {}
        for qualified in coverage.qualified:
            try:
                candidate = retrieval.candidate(qualified.test_id)
            except KeyError as exc:
                raise InvalidRankingInput(
                    f"qualified test '{qualified.test_id}' missing from retrieval"
                ) from exc
            row = retrieval.similarity.get(qualified.test_id, {})
            best = max(row.values(), default=0.0)
            factors_by_test[qualified.test_id] = RankingFactors(
                similarity=min(1.0, max(0.0, best)),
                coverage=qualified.coverage_ratio,
                defect_density=candidate.defect_density,
                module_criticality=candidate.module_criticality,
                recurrence=candidate.recurrence,
            )

        report = rank_tests(factors_by_test, self._machine.settings.ranking_weights)
        await self._machine.recorder.ranking_breakdown(context.run_id, report)
        return report

    async def _audit_summary(self, context: PhaseContext) -> AuditSummary:
        run = await self._machine.get_run(context.run_id)
        ranking: RankingReport = context.output(Phase.RANKING)  # type: ignore[assignment]
        generated: list[str] = []
        if context.has_output(Phase.GENERATION):
            generation: GenerationOutput = context.output(Phase.GENERATION)  # type: ignore[assignment]
            generated = [t.test_id for t in generation.generated_tests]
        entries = await self._machine.recorder.entries(context.run_id)
        return AuditSummary(
            run_id=context.run_id,
            phases=list(context.outputs),
            generation_gated=Phase.GENERATION in run.skipped_phases,
            suite=[item.test_id for item in ranking.ranked],
            generated_test_ids=generated,
            audit_entry_count=len(entries),
        )
