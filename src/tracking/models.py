# src/tracking/models.py - v2
"""Tracking models: AgentCallRecord, AgentStats."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel


class AgentCallRecord(BaseModel):
    """One attempt at one external agent call."""

    call_id: str
    timestamp: datetime
    run_id: str | None = None
    phase: str
    agent: str
    attempt: int
    latency_ms: int
    status: Literal["success", "retry", "failed"]
    error_type: str | None = None


class AgentStats(BaseModel):
    """Per-agent aggregate over recorded calls."""

    agent: str
    total_calls: int
    retry_count: int = 0
    failure_count: int = 0
    avg_latency_ms: float
    max_latency_ms: int
