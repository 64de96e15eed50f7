# src/tracking/call_logger.py - v2
"""Agent call logging: one record per attempt, for latency and retry analysis."""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path

from suitegate.tracking.models import AgentCallRecord, AgentStats

logger = logging.getLogger(__name__)


class CallLogger:
    """Accumulates agent call records across phase runs."""

    def __init__(self) -> None:
        self._records: list[AgentCallRecord] = []

    def record(
        self,
        phase: str,
        agent: str,
        attempt: int,
        latency_ms: int,
        status: str = "success",
        error_type: str | None = None,
        run_id: str | None = None,
    ) -> AgentCallRecord:
        """Record one agent call attempt.

        Args:
            phase: Phase the agent served (e.g. "retrieval").
            agent: Agent name.
            attempt: 1-based attempt number.
            latency_ms: Wall time of the attempt.
            status: success, retry (failed but retried) or failed.
            error_type: Exception class name for non-success attempts.
            run_id: Owning Run, when known.
        """
        record = AgentCallRecord(
            call_id=str(uuid.uuid4()),
            timestamp=datetime.now(timezone.utc),
            run_id=run_id,
            phase=phase,
            agent=agent,
            attempt=attempt,
            latency_ms=latency_ms,
            status=status,  # type: ignore[arg-type]
            error_type=error_type,
        )
        self._records.append(record)
        return record

    @property
    def records(self) -> list[AgentCallRecord]:
        """All recorded calls."""
        return list(self._records)

    @property
    def total_calls(self) -> int:
        return len(self._records)

    def stats(self) -> list[AgentStats]:
        """Aggregate records per agent, sorted by agent name."""
        by_agent: dict[str, list[AgentCallRecord]] = {}
        for record in self._records:
            by_agent.setdefault(record.agent, []).append(record)
        return [
            AgentStats(
                agent=agent,
                total_calls=len(records),
                retry_count=sum(1 for r in records if r.status == "retry"),
                failure_count=sum(1 for r in records if r.status == "failed"),
                avg_latency_ms=sum(r.latency_ms for r in records) / len(records),
                max_latency_ms=max(r.latency_ms for r in records),
            )
            for agent, records in sorted(by_agent.items())
        ]

    def save(self, path: Path) -> None:
        """Save all records to a JSON Lines file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w") as f:
            for record in self._records:
                f.write(json.dumps(record.model_dump(), default=str) + "\n")
        logger.debug("Saved %d call records to %s", len(self._records), path)
