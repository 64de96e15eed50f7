# src/storage/base_run_store.py - v1
"""Abstract Run/Approval registry interface.

Backends persist Runs, PhaseExecutions, ApprovalGates and the audit log.
The audit side is append-only: there is deliberately no update or delete.
Everything is partitioned by run_id, so concurrent Runs never contend on
the same records.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from suitegate.audit.models import AuditEntry
from suitegate.core.errors import SequenceViolation
from suitegate.core.models import (
    EXECUTION_STATUS_TRANSITIONS,
    ApprovalGate,
    GateStatus,
    PhaseExecution,
    Run,
)


class BaseRunStore(ABC):
    """Unified interface for registry storage backends."""

    # --- Runs ---

    @abstractmethod
    async def create_run(self, run: Run) -> None:
        """Persist a new Run. Raises ValueError if the id already exists."""

    @abstractmethod
    async def get_run(self, run_id: str) -> Run | None:
        """Retrieve a Run by id."""

    @abstractmethod
    async def update_run(self, run: Run) -> None:
        """Overwrite a Run's mutable state (status, cursor, pause reason)."""

    @abstractmethod
    async def list_runs(self, limit: int) -> list[Run]:
        """Most recent Runs first, at most ``limit``."""

    # --- Phase executions ---

    @abstractmethod
    async def add_execution(self, execution: PhaseExecution) -> None:
        """Persist a new PhaseExecution.

        Backends enforce at most one pending or executed execution per Run
        atomically, independent of any caller-side check.

        Raises:
            SequenceViolation: If the Run already has a non-terminal execution
                and ``execution`` is non-terminal too.
            ValueError: If the execution id already exists.
        """

    @abstractmethod
    async def get_execution(self, execution_id: str) -> PhaseExecution | None:
        """Retrieve a PhaseExecution by id."""

    @abstractmethod
    async def list_executions(self, run_id: str) -> list[PhaseExecution]:
        """All executions of a Run in creation order."""

    @abstractmethod
    async def _write_execution(self, execution: PhaseExecution) -> None:
        """Backend write used by update_execution after the transition check."""

    async def update_execution(self, execution: PhaseExecution) -> None:
        """Persist a status transition of an existing execution.

        Raises:
            SequenceViolation: If the transition is not allowed (approved,
                rejected and failed executions are immutable).
            KeyError: If the execution does not exist.
        """
        current = await self.get_execution(execution.execution_id)
        if current is None:
            raise KeyError(execution.execution_id)
        allowed = EXECUTION_STATUS_TRANSITIONS[current.status]
        if execution.status not in allowed:
            raise SequenceViolation(
                f"execution '{execution.execution_id}' cannot move "
                f"{current.status.value} -> {execution.status.value}"
            )
        await self._write_execution(execution)

    # --- Approval gates ---

    @abstractmethod
    async def add_gate(self, gate: ApprovalGate) -> None:
        """Persist a new ApprovalGate."""

    @abstractmethod
    async def get_gate(self, gate_id: str) -> ApprovalGate | None:
        """Retrieve a gate by id."""

    @abstractmethod
    async def get_gate_for_execution(self, execution_id: str) -> ApprovalGate | None:
        """Retrieve the gate attached to an execution, if any."""

    @abstractmethod
    async def list_gates(self, run_id: str) -> list[ApprovalGate]:
        """All gates of a Run in creation order."""

    @abstractmethod
    async def resolve_gate(
        self,
        gate_id: str,
        status: GateStatus,
        feedback: str | None,
        decider: str | None,
        decided_at: datetime,
    ) -> ApprovalGate | None:
        """Atomically move a gate from pending to ``status``.

        Returns:
            The resolved gate, or None if the gate was no longer pending
            (someone else resolved it first).
        """

    @abstractmethod
    async def list_expired_gates(self, now: datetime) -> list[ApprovalGate]:
        """Pending gates whose deadline is at or before ``now``."""

    # --- Audit log ---

    @abstractmethod
    async def append_audit(self, entry: AuditEntry) -> AuditEntry:
        """Append an entry and return it with its assigned sequence number."""

    @abstractmethod
    async def list_audit(self, run_id: str) -> list[AuditEntry]:
        """All audit entries of a Run, oldest first."""

    def close(self) -> None:
        """Release backend resources."""
