# tests/unit/api/test_unit_api_models.py - v1
"""Tests for api/models.py - view conversions."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from suitegate.api.models import GateStatusView, RunSummary
from suitegate.core.models import ApprovalGate, Phase, Run, RunStatus

NOW = datetime(2026, 3, 2, tzinfo=timezone.utc)


def test_gate_view_from_gate():
    gate = ApprovalGate(
        gate_id="g1", run_id="r1", execution_id="e1", phase=Phase.COVERAGE,
        created_at=NOW, deadline=NOW + timedelta(hours=24),
    )
    view = GateStatusView.from_gate(gate)
    assert view.gate_id == "g1"
    assert view.deadline == gate.deadline
    assert view.decider is None


def test_run_summary_of_completed_run():
    run = Run(run_id="r1", story_text="s", created_at=NOW, updated_at=NOW,
              status=RunStatus.COMPLETED, phase_cursor=8)
    summary = RunSummary.from_run(run)
    assert summary.status == RunStatus.COMPLETED
    assert summary.expected_phase is None
