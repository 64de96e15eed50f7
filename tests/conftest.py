# tests/conftest.py - v2
"""Shared test fixtures for all unit and integration tests.

Provides settings without .env, in-memory stores, a controllable clock,
sample phase payloads and a fully wired SuiteGate facade.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from suitegate.api.facade import SuiteGate
from suitegate.audit.recorder import AuditRecorder
from suitegate.config.settings import Settings
from suitegate.core.models import Phase
from suitegate.pipeline.agents.static import StaticPayloadAgent
from suitegate.pipeline.registry import AgentRegistry
from suitegate.pipeline.retry import RetryPolicy
from suitegate.pipeline.state_machine import PhaseStateMachine
from suitegate.storage.memory_store import MemoryRunStore


class FakeClock:
    """Deterministic clock; advance() moves time forward."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


# === FIXTURES: Infrastructure ===


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, store_backend="memory")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> MemoryRunStore:
    return MemoryRunStore()


@pytest.fixture
def recorder(store: MemoryRunStore, clock: FakeClock) -> AuditRecorder:
    return AuditRecorder(store, clock=clock)


@pytest.fixture
def machine(
    store: MemoryRunStore, recorder: AuditRecorder, settings: Settings, clock: FakeClock
) -> PhaseStateMachine:
    return PhaseStateMachine(store, recorder, settings, clock=clock)


@pytest.fixture
def fast_retry() -> RetryPolicy:
    return RetryPolicy(max_retries=3, base_delay_s=0.0, call_timeout_s=1.0, jitter=False)


# === FIXTURES: Sample payloads ===


@pytest.fixture
def ingestion_output() -> dict[str, Any]:
    return {
        "story_id": "US-101",
        "title": "Password reset",
        "description": "As a user I can reset my password by email.",
        "acceptance_criteria": [
            {"ac_id": "A1", "text": "A reset link is emailed to a registered address."},
            {"ac_id": "A2", "text": "The link expires after 30 minutes."},
        ],
    }


@pytest.fixture
def classification_output() -> dict[str, Any]:
    return {"story_type": "feature", "modules": ["auth"], "risk_level": "high"}


@pytest.fixture
def embedding_output() -> dict[str, Any]:
    return {"model": "mini-embed", "dimensions": 384, "vector_refs": {"A1": "vec://a1", "A2": "vec://a2"}}


@pytest.fixture
def retrieval_output() -> dict[str, Any]:
    """T-LOGIN covers A1 only (ratio 0.5), T-RESET covers both, T-UI covers none."""
    return {
        "candidates": [
            {"test_id": "T-LOGIN", "title": "login", "module": "auth",
             "defect_density": 0.4, "module_criticality": 0.6, "recurrence": 0.2},
            {"test_id": "T-RESET", "title": "reset", "module": "auth",
             "defect_density": 0.9, "module_criticality": 0.8, "recurrence": 0.7},
            {"test_id": "T-UI", "title": "ui", "module": "web",
             "defect_density": 0.1, "module_criticality": 0.1, "recurrence": 0.1},
        ],
        "similarity": {
            "T-LOGIN": {"A1": 0.85, "A2": 0.4},
            "T-RESET": {"A1": 0.9, "A2": 0.95},
            "T-UI": {"A1": 0.3, "A2": 0.2},
        },
    }


@pytest.fixture
def weak_retrieval_output() -> dict[str, Any]:
    """A single weak test that covers A1 only; ranks far below 0.7."""
    return {
        "candidates": [
            {"test_id": "T-WEAK", "defect_density": 0.0,
             "module_criticality": 0.0, "recurrence": 0.0},
        ],
        "similarity": {"T-WEAK": {"A1": 0.8, "A2": 0.1}},
    }


@pytest.fixture
def agent_outputs(
    ingestion_output: dict[str, Any],
    classification_output: dict[str, Any],
    embedding_output: dict[str, Any],
    retrieval_output: dict[str, Any],
) -> dict[Phase, dict[str, Any]]:
    return {
        Phase.INGESTION: ingestion_output,
        Phase.CLASSIFICATION: classification_output,
        Phase.EMBEDDING: embedding_output,
        Phase.RETRIEVAL: retrieval_output,
        Phase.GENERATION: {"generated_tests": []},
    }


@pytest.fixture
def static_registry(agent_outputs: dict[Phase, dict[str, Any]]) -> AgentRegistry:
    registry = AgentRegistry()
    for phase, payload in agent_outputs.items():
        registry.register(StaticPayloadAgent(phase, payload))
    return registry


@pytest.fixture
def app(
    settings: Settings,
    store: MemoryRunStore,
    static_registry: AgentRegistry,
    clock: FakeClock,
) -> SuiteGate:
    return SuiteGate(settings=settings, store=store, registry=static_registry, clock=clock)
