# src/storage/memory_store.py - v2
"""In-process registry store (STORE_BACKEND=memory).

Used for tests and single-process tooling. Each method completes without
awaiting, so every call is atomic with respect to the event loop.
"""

from __future__ import annotations

import itertools
from datetime import datetime

from suitegate.audit.models import AuditEntry
from suitegate.core.errors import SequenceViolation
from suitegate.core.models import (
    NON_TERMINAL_STATUSES,
    ApprovalGate,
    GateStatus,
    PhaseExecution,
    Run,
)
from suitegate.storage.base_run_store import BaseRunStore


class MemoryRunStore(BaseRunStore):
    """Dict-backed store preserving insertion order."""

    def __init__(self) -> None:
        self._runs: dict[str, Run] = {}
        self._executions: dict[str, PhaseExecution] = {}
        self._gates: dict[str, ApprovalGate] = {}
        self._audit: dict[str, list[AuditEntry]] = {}
        self._sequence = itertools.count(1)

    async def create_run(self, run: Run) -> None:
        if run.run_id in self._runs:
            raise ValueError(f"Run already exists: {run.run_id}")
        self._runs[run.run_id] = run.model_copy(deep=True)

    async def get_run(self, run_id: str) -> Run | None:
        run = self._runs.get(run_id)
        return run.model_copy(deep=True) if run else None

    async def update_run(self, run: Run) -> None:
        if run.run_id not in self._runs:
            raise KeyError(run.run_id)
        self._runs[run.run_id] = run.model_copy(deep=True)

    async def list_runs(self, limit: int) -> list[Run]:
        ordered = list(self._runs.values())[::-1]
        ordered.sort(key=lambda r: r.created_at, reverse=True)
        return [r.model_copy(deep=True) for r in ordered[:limit]]

    async def add_execution(self, execution: PhaseExecution) -> None:
        if execution.execution_id in self._executions:
            raise ValueError(f"Execution already exists: {execution.execution_id}")
        if execution.status in NON_TERMINAL_STATUSES:
            active = next(
                (
                    e for e in self._executions.values()
                    if e.run_id == execution.run_id and e.status in NON_TERMINAL_STATUSES
                ),
                None,
            )
            if active is not None:
                raise SequenceViolation(
                    f"Run '{execution.run_id}' already has {active.phase.value} "
                    f"execution '{active.execution_id}' {active.status.value}"
                )
        self._executions[execution.execution_id] = execution.model_copy(deep=True)

    async def get_execution(self, execution_id: str) -> PhaseExecution | None:
        execution = self._executions.get(execution_id)
        return execution.model_copy(deep=True) if execution else None

    async def list_executions(self, run_id: str) -> list[PhaseExecution]:
        return [
            e.model_copy(deep=True) for e in self._executions.values() if e.run_id == run_id
        ]

    async def _write_execution(self, execution: PhaseExecution) -> None:
        self._executions[execution.execution_id] = execution.model_copy(deep=True)

    async def add_gate(self, gate: ApprovalGate) -> None:
        if gate.gate_id in self._gates:
            raise ValueError(f"Gate already exists: {gate.gate_id}")
        self._gates[gate.gate_id] = gate.model_copy(deep=True)

    async def get_gate(self, gate_id: str) -> ApprovalGate | None:
        gate = self._gates.get(gate_id)
        return gate.model_copy(deep=True) if gate else None

    async def get_gate_for_execution(self, execution_id: str) -> ApprovalGate | None:
        for gate in self._gates.values():
            if gate.execution_id == execution_id:
                return gate.model_copy(deep=True)
        return None

    async def list_gates(self, run_id: str) -> list[ApprovalGate]:
        return [g.model_copy(deep=True) for g in self._gates.values() if g.run_id == run_id]

    async def resolve_gate(
        self,
        gate_id: str,
        status: GateStatus,
        feedback: str | None,
        decider: str | None,
        decided_at: datetime,
    ) -> ApprovalGate | None:
        gate = self._gates.get(gate_id)
        if gate is None or gate.status != GateStatus.PENDING:
            return None
        resolved = gate.model_copy(
            update={
                "status": status,
                "feedback": feedback,
                "decider": decider,
                "decided_at": decided_at,
            }
        )
        self._gates[gate_id] = resolved
        return resolved.model_copy(deep=True)

    async def list_expired_gates(self, now: datetime) -> list[ApprovalGate]:
        return [
            g.model_copy(deep=True)
            for g in self._gates.values()
            if g.status == GateStatus.PENDING and g.deadline <= now
        ]

    async def append_audit(self, entry: AuditEntry) -> AuditEntry:
        stored = entry.model_copy(update={"sequence": next(self._sequence)})
        self._audit.setdefault(entry.run_id, []).append(stored)
        return stored

    async def list_audit(self, run_id: str) -> list[AuditEntry]:
        return list(self._audit.get(run_id, []))
