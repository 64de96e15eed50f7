# tests/integration/pipeline/test_int_full_run.py - v1
"""End-to-end Runs through the SuiteGate facade.

Covers: the happy path to completion, the generation gate skipping
Generation, generation for uncovered ACs, rejection then resubmission,
approval timeouts, abandonment and run history.
"""

from __future__ import annotations

import pytest

from suitegate.audit.models import AuditEventType
from suitegate.core.errors import GateAlreadyResolved, RunNotActive, SequenceViolation
from suitegate.core.models import PHASE_ORDER, ExecutionStatus, GateStatus, Phase, RunStatus
from suitegate.core.payloads import AuditSummary, CoverageReport, RankingReport


def _events(history) -> list[AuditEventType]:
    return [entry.event_type for entry in history.audit]


def _output(history, phase: Phase) -> dict:
    [execution] = [
        e for e in history.executions
        if e.phase == phase and e.status == ExecutionStatus.APPROVED
    ]
    return execution.output_snapshot


# =====================================================================
#  HAPPY PATH
# =====================================================================


class TestCompleteRun:
    @pytest.mark.asyncio
    async def test_all_phases_in_order(self, app, drive):
        run = await app.submit_story("As a user I can reset my password.")
        executed = await drive(app, run.run_id)

        assert executed == list(PHASE_ORDER)
        history = await app.get_run_history(run.run_id)
        assert history.run.status == RunStatus.COMPLETED
        assert history.expected_phase is None
        assert history.resubmit is None
        assert all(g.status == GateStatus.APPROVED for g in history.gates)

    @pytest.mark.asyncio
    async def test_core_outputs(self, app, drive):
        run = await app.submit_story("story")
        await drive(app, run.run_id)
        history = await app.get_run_history(run.run_id)

        coverage = CoverageReport.model_validate(_output(history, Phase.COVERAGE))
        assert [q.test_id for q in coverage.qualified] == ["T-LOGIN", "T-RESET"]
        assert [r.test_id for r in coverage.rejected] == ["T-UI"]
        assert coverage.uncovered_ac_ids == []

        ranking = RankingReport.model_validate(_output(history, Phase.RANKING))
        assert [r.test_id for r in ranking.ranked] == ["T-RESET", "T-LOGIN"]
        assert ranking.ranked[0].final_score == pytest.approx(91.5)
        assert ranking.ranked[1].final_score == pytest.approx(56.5)

        summary = AuditSummary.model_validate(_output(history, Phase.AUDIT))
        assert summary.generation_gated is False
        assert summary.suite == ["T-RESET", "T-LOGIN"]
        assert summary.generated_test_ids == []
        assert summary.phases == [p.value for p in PHASE_ORDER[:-1]]

    @pytest.mark.asyncio
    async def test_audit_trail(self, app, drive):
        run = await app.submit_story("story")
        await drive(app, run.run_id)
        history = await app.get_run_history(run.run_id)
        events = _events(history)

        assert events[0] == AuditEventType.RUN_CREATED
        assert events[-1] == AuditEventType.RUN_COMPLETED
        assert events.count(AuditEventType.PHASE_STARTED) == len(PHASE_ORDER)
        assert events.count(AuditEventType.APPROVAL_DECIDED) == len(PHASE_ORDER)
        assert AuditEventType.RANKING_BREAKDOWN in events
        assert AuditEventType.GENERATION_GATED not in events
        thresholds = [e for e in history.audit if e.event_type == AuditEventType.THRESHOLD_EVALUATED]
        assert {e.details["check"] for e in thresholds} == {"coverage_cutoff", "generation_gate"}
        sequences = [e.sequence for e in history.audit]
        assert sequences == sorted(sequences)
        assert len(set(sequences)) == len(sequences)

    @pytest.mark.asyncio
    async def test_completed_run_rejects_more_work(self, app, drive, ingestion_output):
        run = await app.submit_story("story")
        await drive(app, run.run_id)
        with pytest.raises(RunNotActive):
            await app.run_next_phase(run.run_id)
        with pytest.raises(SequenceViolation):
            await app.submit_phase_output(run.run_id, Phase.INGESTION, ingestion_output)


# =====================================================================
#  GENERATION GATE
# =====================================================================


class TestGenerationGate:
    @pytest.mark.asyncio
    async def test_low_score_skips_generation(
        self, make_app, drive, agent_outputs, weak_retrieval_output
    ):
        outputs = {**agent_outputs, Phase.RETRIEVAL: weak_retrieval_output}
        app = make_app(outputs)
        run = await app.submit_story("story")

        executed = await drive(app, run.run_id)

        assert Phase.GENERATION not in executed
        assert executed[-2:] == [Phase.RANKING, Phase.AUDIT]
        history = await app.get_run_history(run.run_id)
        assert history.run.status == RunStatus.COMPLETED
        assert history.run.skipped_phases == [Phase.GENERATION]
        [gated] = [e for e in history.audit if e.event_type == AuditEventType.GENERATION_GATED]
        assert gated.details["statistic"] == pytest.approx(0.39)
        assert gated.details["threshold"] == pytest.approx(0.7)
        summary = AuditSummary.model_validate(_output(history, Phase.AUDIT))
        assert summary.generation_gated is True

    @pytest.mark.asyncio
    async def test_generation_targets_uncovered_acs(self, make_app, drive, agent_outputs):
        retrieval = {
            "candidates": [
                {"test_id": "T-LOGIN", "defect_density": 0.9,
                 "module_criticality": 0.8, "recurrence": 0.7},
            ],
            "similarity": {"T-LOGIN": {"A1": 0.85, "A2": 0.4}},
        }
        generation = {
            "generated_tests": [
                {"test_id": "GEN-A2", "ac_id": "A2", "title": "link expiry",
                 "steps": ["request reset", "wait 31 minutes", "open link"],
                 "expected_result": "link rejected"},
            ]
        }
        app = make_app({**agent_outputs, Phase.RETRIEVAL: retrieval, Phase.GENERATION: generation})
        run = await app.submit_story("story")

        executed = await drive(app, run.run_id)

        assert Phase.GENERATION in executed
        history = await app.get_run_history(run.run_id)
        [generation_exec] = [e for e in history.executions if e.phase == Phase.GENERATION]
        assert generation_exec.input_snapshot["uncovered_ac_ids"] == ["A2"]
        summary = AuditSummary.model_validate(_output(history, Phase.AUDIT))
        assert summary.generated_test_ids == ["GEN-A2"]

    @pytest.mark.asyncio
    async def test_generation_for_covered_ac_fails(self, make_app, agent_outputs):
        stray = {"generated_tests": [{"test_id": "GEN-A1", "ac_id": "A1", "title": "dup"}]}
        retrieval = {
            "candidates": [
                {"test_id": "T-LOGIN", "defect_density": 0.9,
                 "module_criticality": 0.8, "recurrence": 0.7},
            ],
            "similarity": {"T-LOGIN": {"A1": 0.85, "A2": 0.4}},
        }
        app = make_app({**agent_outputs, Phase.RETRIEVAL: retrieval, Phase.GENERATION: stray})
        run = await app.submit_story("story")
        for _ in range(6):
            result = await app.run_next_phase(run.run_id)
            await app.submit_approval(result.gate.gate_id, approved=True)

        result = await app.run_next_phase(run.run_id)

        assert result.phase == Phase.GENERATION
        assert not result.success
        assert "outside the uncovered set" in result.error
        history = await app.get_run_history(run.run_id)
        assert history.resubmit.phase == Phase.GENERATION
        assert history.resubmit.last_status == "failed"


# =====================================================================
#  HUMAN DECISIONS
# =====================================================================


class TestRejectAndResubmit:
    @pytest.mark.asyncio
    async def test_rejected_phase_reruns_with_feedback(self, app, drive):
        run = await app.submit_story("story")
        first = await app.run_next_phase(run.run_id)
        await app.submit_approval(first.gate.gate_id, approved=False, feedback="missing AC 3")

        history = await app.get_run_history(run.run_id)
        assert history.expected_phase == Phase.INGESTION
        assert history.pause_reason == "ingestion rejected: missing AC 3"

        second = await app.run_next_phase(run.run_id)
        assert second.phase == Phase.INGESTION
        history = await app.get_run_history(run.run_id)
        retry = next(e for e in history.executions if e.execution_id == second.execution_id)
        assert retry.attempt == 2
        assert retry.input_snapshot["feedback"] == ["missing AC 3"]
        assert history.pause_reason is None

        await app.submit_approval(second.gate.gate_id, approved=True)
        await drive(app, run.run_id)
        assert (await app.machine.get_run(run.run_id)).status == RunStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_second_decision_refused(self, app):
        run = await app.submit_story("story")
        result = await app.run_next_phase(run.run_id)
        await app.submit_approval(result.gate.gate_id, approved=True)
        with pytest.raises(GateAlreadyResolved):
            await app.submit_approval(result.gate.gate_id, approved=False, feedback="late")

    @pytest.mark.asyncio
    async def test_cannot_skip_pending_gate(self, app, classification_output):
        run = await app.submit_story("story")
        await app.run_next_phase(run.run_id)
        with pytest.raises(SequenceViolation):
            await app.submit_phase_output(run.run_id, Phase.CLASSIFICATION, classification_output)


class TestTimeoutAndAbandon:
    @pytest.mark.asyncio
    async def test_expired_gate_pauses_run(self, app, clock):
        run = await app.submit_story("story")
        result = await app.run_next_phase(run.run_id)
        clock.advance(hours=24, minutes=1)

        [expired] = await app.sweep_expired_gates()

        assert expired.gate_id == result.gate.gate_id
        assert expired.decider == "system:timeout"
        history = await app.get_run_history(run.run_id)
        assert history.run.status == RunStatus.IN_PROGRESS
        assert history.pause_reason.startswith("ingestion rejected: approval timed out")
        assert history.resubmit.last_status == "rejected"
        assert AuditEventType.APPROVAL_TIMEOUT in _events(history)
        with pytest.raises(GateAlreadyResolved):
            await app.submit_approval(result.gate.gate_id, approved=True)

    @pytest.mark.asyncio
    async def test_gate_within_deadline_untouched(self, app, clock):
        run = await app.submit_story("story")
        await app.run_next_phase(run.run_id)
        clock.advance(hours=23)
        assert await app.sweep_expired_gates() == []

    @pytest.mark.asyncio
    async def test_abandon_mid_run(self, app):
        run = await app.submit_story("story")
        result = await app.run_next_phase(run.run_id)

        await app.abandon_run(run.run_id, "story withdrawn", decider="po")

        history = await app.get_run_history(run.run_id)
        assert history.run.status == RunStatus.FAILED
        assert history.gates[0].status == GateStatus.REJECTED
        assert history.executions[0].status == ExecutionStatus.REJECTED
        assert _events(history)[-1] == AuditEventType.RUN_ABANDONED
        with pytest.raises(RunNotActive):
            await app.submit_approval(result.gate.gate_id, approved=True)
