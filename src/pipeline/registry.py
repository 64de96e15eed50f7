# src/pipeline/registry.py - v2
"""Agent registry: one capability per agent phase.

Agents are registered directly or loaded from dotted class paths
(``PHASE_AGENTS=ingestion=pkg.mod.Class,...``). Core phases (coverage,
ranking, audit) never have agents.
"""

from __future__ import annotations

import importlib
import logging

from suitegate.core.models import AGENT_PHASES, Phase
from suitegate.pipeline.plugin_kit.base_agent import BasePhaseAgent

logger = logging.getLogger(__name__)


class RegistryError(Exception):
    """Raised when agent loading or lookup fails."""


class AgentRegistry:
    """Registry of phase agents keyed by phase."""

    def __init__(self) -> None:
        self._agents: dict[Phase, BasePhaseAgent] = {}

    @property
    def phases(self) -> list[Phase]:
        return [p for p in Phase if p in self._agents]

    def register(self, agent: BasePhaseAgent) -> None:
        """Register an agent instance for its phase.

        Raises:
            RegistryError: If the agent targets a core-computed phase.
        """
        if agent.phase not in AGENT_PHASES:
            raise RegistryError(
                f"Agent '{agent.name}' targets core phase '{agent.phase.value}'"
            )
        if agent.phase in self._agents:
            logger.warning(
                "Replacing agent for %s: %s -> %s",
                agent.phase.value, self._agents[agent.phase].name, agent.name,
            )
        self._agents[agent.phase] = agent

    def get(self, phase: Phase) -> BasePhaseAgent | None:
        return self._agents.get(phase)

    def get_or_raise(self, phase: Phase) -> BasePhaseAgent:
        agent = self._agents.get(phase)
        if agent is None:
            raise RegistryError(
                f"No agent registered for phase '{phase.value}'; submit its output manually"
            )
        return agent

    def missing_phases(self) -> list[Phase]:
        """Agent phases with nothing registered."""
        return [p for p in Phase if p in AGENT_PHASES and p not in self._agents]

    def load_paths(self, phase_paths: dict[str, str]) -> None:
        """Instantiate and register agents from ``phase -> class path``.

        Raises:
            RegistryError: On unknown phases or unloadable classes.
        """
        for phase_name, class_path in phase_paths.items():
            try:
                phase = Phase(phase_name)
            except ValueError as exc:
                raise RegistryError(f"Unknown phase in agent map: {phase_name!r}") from exc
            agent = _import_agent(class_path)
            if agent.phase != phase:
                raise RegistryError(
                    f"{class_path} serves '{agent.phase.value}', not '{phase.value}'"
                )
            self.register(agent)
            logger.debug("Loaded agent %s v%s for %s", agent.name, agent.version, phase.value)

        logger.info(
            "Registry loaded %d agents; unassigned phases: %s",
            len(self._agents), [p.value for p in self.missing_phases()],
        )


def _import_agent(class_path: str) -> BasePhaseAgent:
    """Import and instantiate an agent from a dotted class path."""
    module_path, _, class_name = class_path.rpartition(".")
    if not module_path:
        raise RegistryError(f"Invalid class path: {class_path}")

    try:
        module = importlib.import_module(module_path)
    except ImportError as exc:
        raise RegistryError(f"Cannot import module {module_path}: {exc}") from exc

    cls = getattr(module, class_name, None)
    if cls is None:
        raise RegistryError(f"Class {class_name} not found in {module_path}")
    if not isinstance(cls, type) or not issubclass(cls, BasePhaseAgent):
        raise RegistryError(f"{class_path} is not a BasePhaseAgent subclass")

    return cls()
