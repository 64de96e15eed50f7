# src/pipeline/plugin_kit/base_agent.py - v2
"""Capability interface for the external agents behind non-core phases.

An agent wraps one reasoning backend (classifier, embedder, retriever,
test writer). The core only sees ``execute(context) -> AgentOutput`` and
validates the returned data against the phase schema; what happens inside
is opaque.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from suitegate.core.payloads import PAYLOAD_SCHEMAS, PhasePayload
from suitegate.pipeline.plugin_kit.models import AgentOutput

if TYPE_CHECKING:
    from suitegate.core.models import Phase
    from suitegate.pipeline.context import PhaseContext


class BasePhaseAgent(ABC):
    """Standard interface for all phase agents."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique agent identifier (e.g., 'story_parser', 'vector_retriever')."""

    @property
    @abstractmethod
    def phase(self) -> Phase:
        """The single phase this agent serves."""

    @property
    def version(self) -> str:
        """Agent version (semver)."""
        return "0.1.0"

    @property
    def output_schema(self) -> type[PhasePayload]:
        """Fixed output schema for this agent's phase."""
        return PAYLOAD_SCHEMAS[self.phase]

    @abstractmethod
    async def execute(self, context: PhaseContext) -> AgentOutput:
        """Run the capability against the cumulative phase context.

        Raises:
            TransientAgentError: For failures worth retrying.
            PermanentAgentError: For failures that must not be retried.
        """
