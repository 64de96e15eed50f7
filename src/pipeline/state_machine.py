# src/pipeline/state_machine.py - v2
"""Phase state machine: the only writer of Run, execution and gate state.

Every transition for a Run happens under that Run's asyncio lock, so two
callers racing on the same Run are serialized while distinct Runs proceed
independently. Rules enforced here:

- phases run strictly in PHASE_ORDER, one in flight per Run;
- a phase may start only after its predecessor's gate was approved;
- every executed phase gets exactly one ApprovalGate;
- a rejection leaves the Run on the same phase, ready for a new attempt;
- approving Ranking evaluates the Generation gate (and may skip it);
- approving Audit completes the Run.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Callable

from pydantic import BaseModel

from suitegate.config.settings import Settings, load_settings
from suitegate.core.errors import (
    AgentExecutionError,
    GateAlreadyResolved,
    GateNotFound,
    RunNotActive,
    RunNotFound,
    SequenceViolation,
    StaleResult,
)
from suitegate.core.generation_gate import GateDecision, evaluate_generation_gate
from suitegate.core.models import (
    NON_TERMINAL_STATUSES,
    PHASE_ORDER,
    ApprovalGate,
    ExecutionStatus,
    GateStatus,
    Phase,
    PhaseExecution,
    Run,
    RunStatus,
    new_id,
    phase_index,
    utc_now,
)
from suitegate.core.payloads import (
    CoverageReport,
    IngestionOutput,
    RankingReport,
    check_generation_targets,
    validate_payload,
)
from suitegate.logging.context import run_context
from suitegate.pipeline.context import build_context, latest_approved
from suitegate.storage.run_manager import new_run

if TYPE_CHECKING:
    from suitegate.audit.recorder import AuditRecorder
    from suitegate.storage.base_run_store import BaseRunStore

logger = logging.getLogger(__name__)

TIMEOUT_DECIDER = "system:timeout"


class PhaseStateMachine:
    """Sequencing, gating and approval bookkeeping for all Runs."""

    def __init__(
        self,
        store: BaseRunStore,
        recorder: AuditRecorder,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._recorder = recorder
        self._settings = settings or load_settings()
        self._clock = clock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    @property
    def store(self) -> BaseRunStore:
        return self._store

    @property
    def recorder(self) -> AuditRecorder:
        return self._recorder

    @property
    def settings(self) -> Settings:
        return self._settings

    def _lock(self, run_id: str) -> asyncio.Lock:
        """Per-Run lock; dropped once no caller holds or awaits it."""
        lock = self._locks.get(run_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[run_id] = lock
        return lock

    # --- Runs ---

    async def create_run(self, story_text: str) -> Run:
        run = new_run(story_text, created_at=self._clock())
        await self._store.create_run(run)
        await self._recorder.run_created(run.run_id)
        logger.info("Run %s created", run.run_id)
        return run

    async def get_run(self, run_id: str) -> Run:
        run = await self._store.get_run(run_id)
        if run is None:
            raise RunNotFound(f"Run not found: {run_id}")
        return run

    async def _active_run(self, run_id: str) -> Run:
        run = await self.get_run(run_id)
        if run.status != RunStatus.IN_PROGRESS:
            raise RunNotActive(f"Run '{run_id}' is {run.status.value}")
        return run

    # --- Starting and completing phases ---

    async def begin_phase(self, run_id: str, phase: Phase) -> PhaseExecution:
        """Open a new execution of ``phase``, snapshotting its input context.

        Raises:
            SequenceViolation: If ``phase`` is not the one the Run expects,
                its predecessor is not approved, or a phase is already in flight.
            RunNotActive: If the Run is completed or failed.
        """
        async with self._lock(run_id):
            run = await self._active_run(run_id)
            return await self._begin_locked(run, phase)

    async def _begin_locked(self, run: Run, phase: Phase) -> PhaseExecution:
        executions = await self._store.list_executions(run.run_id)
        self._check_sequence(run, phase, executions)

        attempt = 1 + sum(1 for e in executions if e.phase == phase)
        context = await build_context(self._store, run, phase, attempt)
        execution = PhaseExecution(
            execution_id=new_id("exe"),
            run_id=run.run_id,
            phase=phase,
            attempt=attempt,
            input_snapshot=context.model_dump(mode="json"),
            created_at=self._clock(),
        )
        await self._store.add_execution(execution)
        await self._recorder.phase_started(execution)
        with run_context(run.run_id, phase.value):
            logger.info("Phase %s started (attempt %d)", phase.value, attempt)
        return execution

    def _check_sequence(self, run: Run, phase: Phase, executions: list[PhaseExecution]) -> None:
        active = [e for e in executions if e.status in NON_TERMINAL_STATUSES]
        if active:
            current = active[-1]
            raise SequenceViolation(
                f"Run '{run.run_id}' already has {current.phase.value} "
                f"execution '{current.execution_id}' {current.status.value}"
            )

        expected = run.expected_phase
        if phase != expected:
            raise SequenceViolation(
                f"Run '{run.run_id}' expects phase "
                f"'{expected.value if expected else None}', got '{phase.value}'"
            )

        predecessor = self._predecessor(run, phase)
        if predecessor is None:
            return
        approved = latest_approved(executions).get(predecessor)
        if approved is None:
            raise SequenceViolation(
                f"phase '{phase.value}' requires approved '{predecessor.value}'"
            )

    @staticmethod
    def _predecessor(run: Run, phase: Phase) -> Phase | None:
        for candidate in reversed(PHASE_ORDER[: phase_index(phase)]):
            if candidate not in run.skipped_phases:
                return candidate
        return None

    async def advance(
        self,
        run_id: str,
        phase: Phase,
        output: dict[str, Any] | BaseModel,
        execution_id: str | None = None,
    ) -> ApprovalGate:
        """Record the output of ``phase`` and open its approval gate.

        With ``execution_id`` the output completes that in-flight execution;
        without it a new execution is opened and completed in one step
        (manually submitted output).

        Raises:
            StaleResult: If the Run is no longer awaiting ``execution_id``.
            SequenceViolation: If ``phase`` may not run now.
            AgentExecutionError: If the output fails schema validation; the
                execution is marked failed and the Run paused.
        """
        async with self._lock(run_id):
            if execution_id is not None:
                execution = await self._awaited_execution(run_id, phase, execution_id)
            else:
                execution = await self._begin_locked(await self._active_run(run_id), phase)

            try:
                payload = validate_payload(phase, output)
                if phase == Phase.GENERATION:
                    check_generation_targets(
                        payload,  # type: ignore[arg-type]
                        execution.input_snapshot.get("uncovered_ac_ids", []),
                    )
            except AgentExecutionError as exc:
                await self._fail_locked(execution, exc)
                raise

            now = self._clock()
            gate = ApprovalGate(
                gate_id=new_id("gate"),
                run_id=run_id,
                execution_id=execution.execution_id,
                phase=phase,
                created_at=now,
                deadline=now + timedelta(seconds=self._settings.approval_timeout_s),
            )
            execution = execution.model_copy(
                update={
                    "status": ExecutionStatus.EXECUTED,
                    "output_snapshot": payload.model_dump(mode="json"),
                    "executed_at": now,
                }
            )
            await self._store.update_execution(execution)
            await self._store.add_gate(gate)

            run = await self.get_run(run_id)
            await self._store.update_run(
                run.model_copy(update={"pause_reason": None, "updated_at": now})
            )
            await self._recorder.phase_completed(execution)
            with run_context(run_id, phase.value):
                logger.info("Phase %s executed; gate %s awaiting approval", phase.value, gate.gate_id)
            return gate

    async def _awaited_execution(
        self, run_id: str, phase: Phase, execution_id: str
    ) -> PhaseExecution:
        execution = await self._store.get_execution(execution_id)
        if execution is None or execution.run_id != run_id:
            raise SequenceViolation(f"Run '{run_id}' has no execution '{execution_id}'")
        if execution.phase != phase:
            raise SequenceViolation(
                f"execution '{execution_id}' is {execution.phase.value}, not {phase.value}"
            )
        run = await self.get_run(run_id)
        if run.status != RunStatus.IN_PROGRESS:
            raise StaleResult(run_id, execution_id, f"run is {run.status.value}")
        if execution.status != ExecutionStatus.PENDING:
            raise StaleResult(run_id, execution_id, f"execution is {execution.status.value}")
        return execution

    async def is_awaiting(self, run_id: str, execution_id: str) -> bool:
        """True while ``execution_id`` is the Run's in-flight execution."""
        run = await self._store.get_run(run_id)
        execution = await self._store.get_execution(execution_id)
        return (
            run is not None
            and execution is not None
            and run.status == RunStatus.IN_PROGRESS
            and execution.status == ExecutionStatus.PENDING
        )

    # --- Failures ---

    async def record_failure(
        self, run_id: str, execution_id: str, error: Exception
    ) -> PhaseExecution:
        """Mark an in-flight execution failed and pause the Run.

        The Run stays in progress: the same phase may be retried.

        Raises:
            StaleResult: If the execution is no longer in flight.
        """
        async with self._lock(run_id):
            execution = await self._store.get_execution(execution_id)
            if execution is None or execution.run_id != run_id:
                raise SequenceViolation(f"Run '{run_id}' has no execution '{execution_id}'")
            run = await self.get_run(run_id)
            if run.status != RunStatus.IN_PROGRESS or execution.is_terminal:
                raise StaleResult(run_id, execution_id, "failure reported for inactive execution")
            return await self._fail_locked(execution, error)

    async def _fail_locked(self, execution: PhaseExecution, error: Exception) -> PhaseExecution:
        now = self._clock()
        failed = execution.model_copy(
            update={"status": ExecutionStatus.FAILED, "error": f"{type(error).__name__}: {error}"}
        )
        await self._store.update_execution(failed)
        run = await self.get_run(execution.run_id)
        await self._store.update_run(
            run.model_copy(
                update={
                    "pause_reason": f"{execution.phase.value} failed: {error}",
                    "updated_at": now,
                }
            )
        )
        await self._recorder.phase_failed(failed, error)
        with run_context(execution.run_id, execution.phase.value):
            logger.warning("Phase %s failed: %s", execution.phase.value, error)
        return failed

    # --- Approvals ---

    async def submit_approval(
        self,
        gate_id: str,
        approved: bool,
        feedback: str | None = None,
        decider: str | None = None,
    ) -> ApprovalGate:
        """Resolve a pending gate.

        When approving Ranking, the Generation gate is evaluated before the
        approval is stored: if that evaluation fails the gate stays pending
        and the decision can be resubmitted. Only the store writes that move
        the cursor happen after the gate is resolved.

        Raises:
            GateNotFound: Unknown gate.
            GateAlreadyResolved: The gate was already decided or timed out.
            RunNotActive: The Run is completed or failed.
        """
        gate = await self._store.get_gate(gate_id)
        if gate is None:
            raise GateNotFound(f"Gate not found: {gate_id}")

        async with self._lock(gate.run_id):
            run = await self.get_run(gate.run_id)
            if run.status != RunStatus.IN_PROGRESS:
                raise RunNotActive(f"Run '{run.run_id}' is {run.status.value}")

            decision = None
            if approved and gate.phase == Phase.RANKING and gate.status == GateStatus.PENDING:
                decision = await self._generation_decision(run, gate)

            status = GateStatus.APPROVED if approved else GateStatus.REJECTED
            resolved = await self._store.resolve_gate(
                gate_id, status, feedback, decider, self._clock()
            )
            if resolved is None:
                current = await self._store.get_gate(gate_id)
                raise GateAlreadyResolved(
                    f"Gate '{gate_id}' is already {current.status.value if current else 'gone'}"
                )

            execution = await self._store.get_execution(resolved.execution_id)
            if execution is None:
                raise SequenceViolation(f"gate '{gate_id}' has no execution")
            execution = execution.model_copy(
                update={
                    "status": ExecutionStatus.APPROVED if approved else ExecutionStatus.REJECTED
                }
            )
            await self._store.update_execution(execution)
            await self._recorder.approval_decided(resolved)

            with run_context(run.run_id, resolved.phase.value):
                logger.info(
                    "Gate %s %s by %s", gate_id, status.value, decider or "unknown",
                )
            if approved:
                await self._on_approved(run, execution, decision)
            else:
                await self._store.update_run(
                    run.model_copy(
                        update={
                            "pause_reason": _rejection_reason(resolved.phase, feedback),
                            "updated_at": self._clock(),
                        }
                    )
                )
            return resolved

    async def _on_approved(
        self, run: Run, execution: PhaseExecution, decision: GateDecision | None = None
    ) -> None:
        phase = execution.phase
        if phase == Phase.AUDIT:
            await self._complete_run(run)
            return

        next_cursor = phase_index(phase) + 1
        skipped = list(run.skipped_phases)
        if decision is not None:
            await self._record_generation_gate(run.run_id, decision)
            if not decision.admitted:
                skipped.append(Phase.GENERATION)
                next_cursor += 1

        await self._store.update_run(
            run.model_copy(
                update={
                    "phase_cursor": next_cursor,
                    "skipped_phases": skipped,
                    "pause_reason": None,
                    "updated_at": self._clock(),
                }
            )
        )

    async def _generation_decision(self, run: Run, ranking_gate: ApprovalGate) -> GateDecision:
        """Evaluate the Generation gate from the stored Ranking output."""
        ranking_execution = await self._store.get_execution(ranking_gate.execution_id)
        if ranking_execution is None or ranking_execution.output_snapshot is None:
            raise SequenceViolation(f"gate '{ranking_gate.gate_id}' has no executed ranking")
        approved = latest_approved(await self._store.list_executions(run.run_id))
        ranking = RankingReport.model_validate(ranking_execution.output_snapshot)
        coverage = CoverageReport.model_validate(approved[Phase.COVERAGE].output_snapshot)
        ingestion = IngestionOutput.model_validate(approved[Phase.INGESTION].output_snapshot)
        return evaluate_generation_gate(
            ranking,
            coverage,
            ingestion.ac_ids,
            threshold=self._settings.generation_score_threshold,
        )

    async def _record_generation_gate(self, run_id: str, decision: GateDecision) -> None:
        await self._recorder.generation_gate_evaluated(
            run_id,
            decision.statistic_name,
            decision.statistic,
            decision.threshold,
            decision.admitted,
        )
        if not decision.admitted:
            await self._recorder.generation_gated(
                run_id, decision.statistic_name, decision.statistic, decision.threshold
            )
            with run_context(run_id, Phase.GENERATION.value):
                logger.info(
                    "Generation skipped: %s=%.4f below %.4f",
                    decision.statistic_name, decision.statistic, decision.threshold,
                )

    async def _complete_run(self, run: Run) -> None:
        approved = latest_approved(await self._store.list_executions(run.run_id))
        missing = [
            p.value for p in PHASE_ORDER if p not in run.skipped_phases and p not in approved
        ]
        if missing:
            raise SequenceViolation(
                f"Run '{run.run_id}' cannot complete; unapproved phases: {missing}"
            )
        await self._store.update_run(
            run.model_copy(
                update={
                    "status": RunStatus.COMPLETED,
                    "phase_cursor": len(PHASE_ORDER),
                    "pause_reason": None,
                    "updated_at": self._clock(),
                }
            )
        )
        await self._recorder.run_completed(run.run_id)
        logger.info("Run %s completed", run.run_id)

    # --- Timeouts and abandonment ---

    async def sweep_expired_gates(self, now: datetime | None = None) -> list[ApprovalGate]:
        """Reject every pending gate past its deadline.

        Safe to run repeatedly and concurrently: a gate is resolved by the
        first sweep that reaches it, later sweeps skip it.
        """
        now = now or self._clock()
        timed_out: list[ApprovalGate] = []
        for gate in await self._store.list_expired_gates(now):
            async with self._lock(gate.run_id):
                feedback = (
                    f"approval timed out after {self._settings.approval_timeout_hours}h "
                    f"(deadline {gate.deadline.isoformat()})"
                )
                resolved = await self._store.resolve_gate(
                    gate.gate_id, GateStatus.REJECTED, feedback, TIMEOUT_DECIDER, now
                )
                if resolved is None:
                    continue

                execution = await self._store.get_execution(resolved.execution_id)
                if execution is not None and execution.status == ExecutionStatus.EXECUTED:
                    await self._store.update_execution(
                        execution.model_copy(update={"status": ExecutionStatus.REJECTED})
                    )
                run = await self.get_run(resolved.run_id)
                await self._store.update_run(
                    run.model_copy(
                        update={
                            "pause_reason": _rejection_reason(resolved.phase, feedback),
                            "updated_at": now,
                        }
                    )
                )
                await self._recorder.approval_timed_out(resolved)
                with run_context(resolved.run_id, resolved.phase.value):
                    logger.warning("Gate %s timed out", resolved.gate_id)
                timed_out.append(resolved)
        return timed_out

    async def abandon(self, run_id: str, reason: str, decider: str | None = None) -> Run:
        """Move a Run to failed, closing any in-flight execution and gate.

        Raises:
            RunNotActive: If the Run is already completed or failed.
        """
        async with self._lock(run_id):
            run = await self._active_run(run_id)
            now = self._clock()
            for execution in await self._store.list_executions(run_id):
                if execution.status == ExecutionStatus.PENDING:
                    await self._store.update_execution(
                        execution.model_copy(
                            update={
                                "status": ExecutionStatus.FAILED,
                                "error": f"run abandoned: {reason}",
                            }
                        )
                    )
                elif execution.status == ExecutionStatus.EXECUTED:
                    gate = await self._store.get_gate_for_execution(execution.execution_id)
                    if gate is not None:
                        await self._store.resolve_gate(
                            gate.gate_id,
                            GateStatus.REJECTED,
                            f"run abandoned: {reason}",
                            decider,
                            now,
                        )
                    await self._store.update_execution(
                        execution.model_copy(update={"status": ExecutionStatus.REJECTED})
                    )

            failed = run.model_copy(
                update={"status": RunStatus.FAILED, "pause_reason": reason, "updated_at": now}
            )
            await self._store.update_run(failed)
            await self._recorder.run_abandoned(run_id, reason, decider)
            logger.warning("Run %s abandoned: %s", run_id, reason)
            return failed


def _rejection_reason(phase: Phase, feedback: str | None) -> str:
    if feedback:
        return f"{phase.value} rejected: {feedback}"
    return f"{phase.value} rejected"
