# src/storage/sqlite_store.py - v2
"""SQLite-backed registry store (STORE_BACKEND=sqlite).

Uses stdlib sqlite3 in WAL mode. Gate resolution is a conditional UPDATE
(pending -> resolved) so concurrent deciders and repeated timeout sweeps
resolve a gate at most once. A partial unique index allows one pending or
executed execution per Run, so stores in separate processes cannot both
start a phase. Triggers make the audit table append-only.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from pathlib import Path

from suitegate.audit.models import AuditEntry
from suitegate.core.errors import SequenceViolation
from suitegate.core.models import ApprovalGate, GateStatus, PhaseExecution, Run
from suitegate.storage.base_run_store import BaseRunStore

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS runs (
    run_id TEXT PRIMARY KEY,
    created_ts REAL NOT NULL,
    status TEXT NOT NULL,
    data TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_runs_created ON runs(created_ts);

CREATE TABLE IF NOT EXISTS phase_executions (
    execution_id TEXT PRIMARY KEY,
    run_id TEXT NOT NULL,
    phase TEXT NOT NULL,
    status TEXT NOT NULL,
    data TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_exec_run ON phase_executions(run_id);
CREATE UNIQUE INDEX IF NOT EXISTS idx_exec_one_active ON phase_executions(run_id)
    WHERE status IN ('pending', 'executed');

CREATE TABLE IF NOT EXISTS approval_gates (
    gate_id TEXT PRIMARY KEY,
    run_id TEXT NOT NULL,
    execution_id TEXT NOT NULL UNIQUE,
    status TEXT NOT NULL,
    deadline_ts REAL NOT NULL,
    data TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_gates_pending ON approval_gates(status, deadline_ts);

CREATE TABLE IF NOT EXISTS audit_log (
    sequence INTEGER PRIMARY KEY AUTOINCREMENT,
    entry_id TEXT NOT NULL UNIQUE,
    run_id TEXT NOT NULL,
    event_type TEXT NOT NULL,
    data TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_audit_run ON audit_log(run_id, sequence);

CREATE TRIGGER IF NOT EXISTS audit_log_no_update
BEFORE UPDATE ON audit_log
BEGIN
    SELECT RAISE(ABORT, 'audit_log is append-only');
END;

CREATE TRIGGER IF NOT EXISTS audit_log_no_delete
BEFORE DELETE ON audit_log
BEGIN
    SELECT RAISE(ABORT, 'audit_log is append-only');
END;
"""


class SqliteRunStore(BaseRunStore):
    """SQLite-backed store; one connection per store instance."""

    def __init__(self, db_path: Path | str) -> None:
        self._db_path = Path(db_path).expanduser()
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path))
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)

    # --- Runs ---

    async def create_run(self, run: Run) -> None:
        try:
            self._conn.execute(
                "INSERT INTO runs (run_id, created_ts, status, data) VALUES (?, ?, ?, ?)",
                (run.run_id, run.created_at.timestamp(), run.status.value, run.model_dump_json()),
            )
        except sqlite3.IntegrityError as exc:
            self._conn.rollback()
            raise ValueError(f"Run already exists: {run.run_id}") from exc
        self._conn.commit()

    async def get_run(self, run_id: str) -> Run | None:
        row = self._conn.execute("SELECT data FROM runs WHERE run_id = ?", (run_id,)).fetchone()
        return Run.model_validate_json(row[0]) if row else None

    async def update_run(self, run: Run) -> None:
        cursor = self._conn.execute(
            "UPDATE runs SET status = ?, data = ? WHERE run_id = ?",
            (run.status.value, run.model_dump_json(), run.run_id),
        )
        if cursor.rowcount == 0:
            raise KeyError(run.run_id)
        self._conn.commit()

    async def list_runs(self, limit: int) -> list[Run]:
        rows = self._conn.execute(
            "SELECT data FROM runs ORDER BY created_ts DESC, rowid DESC LIMIT ?", (limit,)
        ).fetchall()
        return [Run.model_validate_json(row[0]) for row in rows]

    # --- Phase executions ---

    async def add_execution(self, execution: PhaseExecution) -> None:
        try:
            self._conn.execute(
                """INSERT INTO phase_executions (execution_id, run_id, phase, status, data)
                   VALUES (?, ?, ?, ?, ?)""",
                (
                    execution.execution_id,
                    execution.run_id,
                    execution.phase.value,
                    execution.status.value,
                    execution.model_dump_json(),
                ),
            )
        except sqlite3.IntegrityError as exc:
            self._conn.rollback()
            if "phase_executions.execution_id" in str(exc):
                raise ValueError(f"Execution already exists: {execution.execution_id}") from exc
            raise SequenceViolation(
                f"Run '{execution.run_id}' already has a pending or executed execution"
            ) from exc
        self._conn.commit()

    async def get_execution(self, execution_id: str) -> PhaseExecution | None:
        row = self._conn.execute(
            "SELECT data FROM phase_executions WHERE execution_id = ?", (execution_id,)
        ).fetchone()
        return PhaseExecution.model_validate_json(row[0]) if row else None

    async def list_executions(self, run_id: str) -> list[PhaseExecution]:
        rows = self._conn.execute(
            "SELECT data FROM phase_executions WHERE run_id = ? ORDER BY rowid", (run_id,)
        ).fetchall()
        return [PhaseExecution.model_validate_json(row[0]) for row in rows]

    async def _write_execution(self, execution: PhaseExecution) -> None:
        self._conn.execute(
            "UPDATE phase_executions SET status = ?, data = ? WHERE execution_id = ?",
            (execution.status.value, execution.model_dump_json(), execution.execution_id),
        )
        self._conn.commit()

    # --- Approval gates ---

    async def add_gate(self, gate: ApprovalGate) -> None:
        try:
            self._conn.execute(
                """INSERT INTO approval_gates
                   (gate_id, run_id, execution_id, status, deadline_ts, data)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    gate.gate_id,
                    gate.run_id,
                    gate.execution_id,
                    gate.status.value,
                    gate.deadline.timestamp(),
                    gate.model_dump_json(),
                ),
            )
        except sqlite3.IntegrityError as exc:
            self._conn.rollback()
            raise ValueError(f"Gate already exists: {gate.gate_id}") from exc
        self._conn.commit()

    async def get_gate(self, gate_id: str) -> ApprovalGate | None:
        row = self._conn.execute(
            "SELECT data FROM approval_gates WHERE gate_id = ?", (gate_id,)
        ).fetchone()
        return ApprovalGate.model_validate_json(row[0]) if row else None

    async def get_gate_for_execution(self, execution_id: str) -> ApprovalGate | None:
        row = self._conn.execute(
            "SELECT data FROM approval_gates WHERE execution_id = ?", (execution_id,)
        ).fetchone()
        return ApprovalGate.model_validate_json(row[0]) if row else None

    async def list_gates(self, run_id: str) -> list[ApprovalGate]:
        rows = self._conn.execute(
            "SELECT data FROM approval_gates WHERE run_id = ? ORDER BY rowid", (run_id,)
        ).fetchall()
        return [ApprovalGate.model_validate_json(row[0]) for row in rows]

    async def resolve_gate(
        self,
        gate_id: str,
        status: GateStatus,
        feedback: str | None,
        decider: str | None,
        decided_at: datetime,
    ) -> ApprovalGate | None:
        gate = await self.get_gate(gate_id)
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
        cursor = self._conn.execute(
            "UPDATE approval_gates SET status = ?, data = ? WHERE gate_id = ? AND status = ?",
            (status.value, resolved.model_dump_json(), gate_id, GateStatus.PENDING.value),
        )
        self._conn.commit()
        if cursor.rowcount != 1:
            logger.debug("Gate %s resolved concurrently; skipping", gate_id)
            return None
        return resolved

    async def list_expired_gates(self, now: datetime) -> list[ApprovalGate]:
        rows = self._conn.execute(
            """SELECT data FROM approval_gates
               WHERE status = ? AND deadline_ts <= ? ORDER BY deadline_ts, rowid""",
            (GateStatus.PENDING.value, now.timestamp()),
        ).fetchall()
        return [ApprovalGate.model_validate_json(row[0]) for row in rows]

    # --- Audit log ---

    async def append_audit(self, entry: AuditEntry) -> AuditEntry:
        cursor = self._conn.execute(
            "INSERT INTO audit_log (entry_id, run_id, event_type, data) VALUES (?, ?, ?, ?)",
            (entry.entry_id, entry.run_id, entry.event_type.value, entry.model_dump_json()),
        )
        self._conn.commit()
        return entry.model_copy(update={"sequence": int(cursor.lastrowid)})

    async def list_audit(self, run_id: str) -> list[AuditEntry]:
        rows = self._conn.execute(
            "SELECT sequence, data FROM audit_log WHERE run_id = ? ORDER BY sequence", (run_id,)
        ).fetchall()
        return [
            AuditEntry.model_validate_json(row[1]).model_copy(update={"sequence": row[0]})
            for row in rows
        ]

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
