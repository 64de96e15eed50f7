# tests/unit/api/test_unit_facade.py - v2
"""Tests for api/facade.py - SuiteGate entry points."""

from __future__ import annotations

import pytest

from suitegate.api.facade import SuiteGate
from suitegate.core.errors import AgentExecutionError, GateNotFound, SequenceViolation
from suitegate.core.models import GateStatus, Phase, RunStatus
from suitegate.storage.memory_store import MemoryRunStore


class TestSubmitAndStep:
    @pytest.mark.asyncio
    async def test_submit_story(self, app: SuiteGate):
        run = await app.submit_story("As a user I can reset my password.")
        assert run.expected_phase == Phase.INGESTION
        assert run.status == RunStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_step_and_gate_status(self, app: SuiteGate):
        run = await app.submit_story("story")
        result = await app.run_next_phase(run.run_id)
        view = await app.get_gate_status(result.gate.gate_id)
        assert view.status == GateStatus.PENDING
        assert view.phase == Phase.INGESTION

        decided = await app.submit_approval(view.gate_id, approved=True, decider="qa-lead")
        assert decided.status == GateStatus.APPROVED
        assert decided.decider == "qa-lead"

    @pytest.mark.asyncio
    async def test_unknown_gate(self, app: SuiteGate):
        with pytest.raises(GateNotFound):
            await app.get_gate_status("gate_nope")


class TestSubmitPhaseOutput:
    @pytest.mark.asyncio
    async def test_manual_output(self, app: SuiteGate, ingestion_output):
        run = await app.submit_story("story")
        gate = await app.submit_phase_output(run.run_id, Phase.INGESTION, ingestion_output)
        assert gate.phase == Phase.INGESTION

    @pytest.mark.asyncio
    async def test_core_phase_refused(self, app: SuiteGate):
        run = await app.submit_story("story")
        with pytest.raises(SequenceViolation, match="computed by the core"):
            await app.submit_phase_output(run.run_id, Phase.RANKING, {})

    @pytest.mark.asyncio
    async def test_invalid_output_surfaces_in_history(self, app: SuiteGate):
        run = await app.submit_story("story")
        with pytest.raises(AgentExecutionError):
            await app.submit_phase_output(run.run_id, Phase.INGESTION, {"title": "x"})

        history = await app.get_run_history(run.run_id)
        assert history.pause_reason.startswith("ingestion failed")
        assert history.expected_phase == Phase.INGESTION
        assert history.resubmit is not None
        assert history.resubmit.phase == Phase.INGESTION
        assert history.resubmit.last_status == "failed"
        assert history.resubmit.input_snapshot["story_text"] == "story"


class TestHistory:
    @pytest.mark.asyncio
    async def test_rejection_feedback_in_resubmit_hint(self, app: SuiteGate):
        run = await app.submit_story("story")
        result = await app.run_next_phase(run.run_id)
        await app.submit_approval(result.gate.gate_id, approved=False, feedback="missing AC 3")

        history = await app.get_run_history(run.run_id)
        assert history.resubmit.last_feedback == "missing AC 3"
        assert len(history.executions) == 1
        assert len(history.gates) == 1
        assert [e.sequence for e in history.audit] == sorted(e.sequence for e in history.audit)

    @pytest.mark.asyncio
    async def test_no_hint_while_progressing(self, app: SuiteGate):
        run = await app.submit_story("story")
        history = await app.get_run_history(run.run_id)
        assert history.resubmit is None


class TestListRuns:
    @pytest.mark.asyncio
    async def test_limit_capped(self, settings, static_registry, clock):
        capped = settings.model_copy(update={"run_list_max": 2})
        app = SuiteGate(settings=capped, store=MemoryRunStore(), registry=static_registry, clock=clock)
        for i in range(4):
            await app.submit_story(f"story {i}")
        assert len(await app.list_runs(limit=50)) == 2

    @pytest.mark.asyncio
    async def test_summary_fields(self, app: SuiteGate):
        run = await app.submit_story("story")
        [summary] = await app.list_runs()
        assert summary.run_id == run.run_id
        assert summary.expected_phase == Phase.INGESTION

    @pytest.mark.asyncio
    async def test_invalid_limit(self, app: SuiteGate):
        with pytest.raises(ValueError):
            await app.list_runs(limit=0)


class TestSweepAndAbandon:
    @pytest.mark.asyncio
    async def test_sweep(self, app: SuiteGate, clock):
        run = await app.submit_story("story")
        await app.run_next_phase(run.run_id)
        clock.advance(hours=24, seconds=1)
        [expired] = await app.sweep_expired_gates()
        assert expired.status == GateStatus.REJECTED
        assert await app.sweep_expired_gates() == []

    @pytest.mark.asyncio
    async def test_abandon(self, app: SuiteGate):
        run = await app.submit_story("story")
        abandoned = await app.abandon_run(run.run_id, "duplicate story", decider="po")
        assert abandoned.status == RunStatus.FAILED
        [summary] = await app.list_runs()
        assert summary.expected_phase is None


class TestConstruction:
    def test_registry_from_settings(self, settings):
        app = SuiteGate(settings=settings, store=MemoryRunStore())
        assert app.registry.phases == []
