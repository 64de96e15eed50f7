# tests/integration/conftest.py - v8
"""Shared fixtures for integration tests.

Integration tests drive whole Runs through the SuiteGate facade, against
the in-memory store and against a SQLite file under tmp_path.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable

import pytest

from suitegate.api.facade import SuiteGate
from suitegate.config.settings import Settings
from suitegate.core.models import Phase, RunStatus
from suitegate.pipeline.agents.static import StaticPayloadAgent
from suitegate.pipeline.registry import AgentRegistry
from suitegate.storage.memory_store import MemoryRunStore
from suitegate.storage.sqlite_store import SqliteRunStore


@pytest.fixture
def make_app(settings: Settings, clock) -> Callable[..., SuiteGate]:
    """Build a facade whose agents return the given outputs."""

    def _make(outputs: dict[Phase, dict[str, Any]], store=None) -> SuiteGate:
        registry = AgentRegistry()
        for phase, payload in outputs.items():
            registry.register(StaticPayloadAgent(phase, payload))
        return SuiteGate(
            settings=settings, store=store or MemoryRunStore(), registry=registry, clock=clock
        )

    return _make


@pytest.fixture
def drive() -> Callable[[SuiteGate, str], Awaitable[list[Phase]]]:
    """Run and approve phases until the Run stops being in progress."""

    async def _drive(app: SuiteGate, run_id: str) -> list[Phase]:
        executed: list[Phase] = []
        while (await app.machine.get_run(run_id)).status == RunStatus.IN_PROGRESS:
            result = await app.run_next_phase(run_id)
            assert result.success, result.error
            executed.append(result.phase)
            await app.submit_approval(result.gate.gate_id, approved=True, decider="qa-lead")
        return executed

    return _drive


@pytest.fixture
def sqlite_settings(tmp_path) -> Settings:
    return Settings(_env_file=None, store_backend="sqlite", store_path=tmp_path / "registry.db")


@pytest.fixture
def sqlite_app(sqlite_settings: Settings, static_registry: AgentRegistry, clock):
    store = SqliteRunStore(sqlite_settings.store_path)
    app = SuiteGate(settings=sqlite_settings, store=store, registry=static_registry, clock=clock)
    yield app
    app.close()
