# src/pipeline/agents/static.py - v1
"""Agent that replays a fixed payload.

Bridges phases whose output is produced outside the process (a human
analyst, another service writing JSON) and keeps pipelines reproducible in
tests and dry runs.
"""

from __future__ import annotations

import copy
import json
import time
from pathlib import Path
from typing import Any

from suitegate.core.models import Phase
from suitegate.pipeline.context import PhaseContext
from suitegate.pipeline.plugin_kit.base_agent import BasePhaseAgent
from suitegate.pipeline.plugin_kit.models import AgentMetadata, AgentOutput


class StaticPayloadAgent(BasePhaseAgent):
    """Returns the same payload on every call."""

    def __init__(self, phase: Phase, payload: dict[str, Any], name: str | None = None) -> None:
        self._phase = phase
        self._payload = payload
        self._name = name or f"static_{phase.value}"

    @classmethod
    def from_file(cls, phase: Phase, path: Path) -> StaticPayloadAgent:
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(payload, dict):
            raise ValueError(f"{path} must contain a JSON object")
        return cls(phase, payload, name=f"file_{phase.value}")

    @property
    def name(self) -> str:
        return self._name

    @property
    def phase(self) -> Phase:
        return self._phase

    async def execute(self, context: PhaseContext) -> AgentOutput:
        start = time.monotonic()
        data = copy.deepcopy(self._payload)
        return AgentOutput(
            data=data,
            metadata=AgentMetadata(
                agent_name=self.name,
                agent_version=self.version,
                execution_time_ms=int((time.monotonic() - start) * 1000),
                backend="static",
            ),
        )
