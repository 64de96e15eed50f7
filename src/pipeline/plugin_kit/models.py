# src/pipeline/plugin_kit/models.py - v2
"""Agent plugin models: AgentMetadata, AgentOutput."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class AgentMetadata(BaseModel):
    """Metadata about an agent execution, attached to every AgentOutput."""

    agent_name: str
    agent_version: str
    execution_time_ms: int = 0
    backend: str | None = None


class AgentOutput(BaseModel):
    """Standard return type for all BasePhaseAgent.execute() calls.

    ``data`` must validate against the phase's fixed output schema.
    """

    data: dict[str, Any]
    metadata: AgentMetadata
    warnings: list[str] = Field(default_factory=list)
