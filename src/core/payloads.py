# src/core/payloads.py - v1
"""Fixed output schemas for every phase, keyed by phase name.

Agent phases (ingestion, classification, embedding, retrieval, generation)
must return data that validates against their schema; coverage, ranking and
audit payloads are produced by the core itself. Unknown fields returned by an
agent (free-form reasoning, raw vectors) are dropped at validation.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from suitegate.core.errors import AgentExecutionError
from suitegate.core.models import Phase


class PhasePayload(BaseModel):
    """Base for all phase payloads."""

    model_config = ConfigDict(extra="ignore", frozen=True)


# === INGESTION ===


class AcceptanceCriterion(PhasePayload):
    ac_id: str = Field(min_length=1)
    text: str = Field(min_length=1)


class IngestionOutput(PhasePayload):
    story_id: str = Field(min_length=1)
    title: str
    description: str = ""
    acceptance_criteria: list[AcceptanceCriterion] = Field(min_length=1)

    @model_validator(mode="after")
    def _unique_ac_ids(self) -> IngestionOutput:
        ids = [ac.ac_id for ac in self.acceptance_criteria]
        if len(ids) != len(set(ids)):
            raise ValueError("acceptance criterion ids must be unique")
        return self

    @property
    def ac_ids(self) -> list[str]:
        return [ac.ac_id for ac in self.acceptance_criteria]


# === CLASSIFICATION ===


class ClassificationOutput(PhasePayload):
    story_type: str = Field(min_length=1)
    modules: list[str] = Field(default_factory=list)
    risk_level: Literal["low", "medium", "high", "critical"] = "medium"


# === EMBEDDING ===


class EmbeddingOutput(PhasePayload):
    """References into the external vector store. Vectors stay there."""

    model: str = Field(min_length=1)
    dimensions: int = Field(gt=0)
    vector_refs: dict[str, str] = Field(default_factory=dict)


# === RETRIEVAL ===


class CandidateTest(PhasePayload):
    test_id: str = Field(min_length=1)
    title: str = ""
    module: str = ""
    defect_density: float = Field(ge=0.0, le=1.0)
    module_criticality: float = Field(ge=0.0, le=1.0)
    recurrence: float = Field(ge=0.0, le=1.0)


class RetrievalOutput(PhasePayload):
    candidates: list[CandidateTest] = Field(default_factory=list)
    # test_id -> ac_id -> similarity
    similarity: dict[str, dict[str, float]] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _consistent_ids(self) -> RetrievalOutput:
        ids = [c.test_id for c in self.candidates]
        if len(ids) != len(set(ids)):
            raise ValueError("candidate test ids must be unique")
        unknown = set(self.similarity) - set(ids)
        if unknown:
            raise ValueError(f"similarity rows for unknown tests: {sorted(unknown)}")
        return self

    def candidate(self, test_id: str) -> CandidateTest:
        for item in self.candidates:
            if item.test_id == test_id:
                return item
        raise KeyError(test_id)


# === COVERAGE ===


class QualifiedTest(PhasePayload):
    test_id: str
    coverage_ratio: float
    matched_ac_ids: list[str]


class RejectedTest(PhasePayload):
    test_id: str
    coverage_ratio: float


class CoverageReport(PhasePayload):
    ac_match_threshold: float
    min_coverage_ratio: float
    total_acs: int
    qualified: list[QualifiedTest] = Field(default_factory=list)
    rejected: list[RejectedTest] = Field(default_factory=list)
    uncovered_ac_ids: list[str] = Field(default_factory=list)


# === RANKING ===


class RankingFactors(PhasePayload):
    similarity: float
    coverage: float
    defect_density: float
    module_criticality: float
    recurrence: float


class RankedTest(PhasePayload):
    test_id: str
    raw_score: float
    final_score: float
    factors: RankingFactors


class RankingReport(PhasePayload):
    weights: dict[str, float]
    ranked: list[RankedTest] = Field(default_factory=list)
    gate_statistic: float = 0.0


# === GENERATION ===


class GeneratedTest(PhasePayload):
    test_id: str = Field(min_length=1)
    ac_id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    steps: list[str] = Field(default_factory=list)
    expected_result: str = ""


class GenerationOutput(PhasePayload):
    generated_tests: list[GeneratedTest] = Field(default_factory=list)


# === AUDIT ===


class AuditSummary(PhasePayload):
    run_id: str
    phases: list[str]
    generation_gated: bool
    suite: list[str] = Field(default_factory=list)
    generated_test_ids: list[str] = Field(default_factory=list)
    audit_entry_count: int = 0


PAYLOAD_SCHEMAS: dict[Phase, type[PhasePayload]] = {
    Phase.INGESTION: IngestionOutput,
    Phase.CLASSIFICATION: ClassificationOutput,
    Phase.EMBEDDING: EmbeddingOutput,
    Phase.RETRIEVAL: RetrievalOutput,
    Phase.COVERAGE: CoverageReport,
    Phase.RANKING: RankingReport,
    Phase.GENERATION: GenerationOutput,
    Phase.AUDIT: AuditSummary,
}


def validate_payload(phase: Phase, data: dict[str, Any] | BaseModel) -> PhasePayload:
    """Validate a phase output against its fixed schema.

    Raises:
        AgentExecutionError: If the payload does not match the schema.
    """
    schema = PAYLOAD_SCHEMAS[phase]
    if isinstance(data, schema):
        return data
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json")
    try:
        return schema.model_validate(data)
    except ValidationError as exc:
        raise AgentExecutionError(
            phase.value,
            f"output does not match {schema.__name__} schema: "
            f"{exc.error_count()} error(s): {exc.errors(include_url=False)[0]['msg']}",
        ) from exc


def check_generation_targets(output: GenerationOutput, uncovered_ac_ids: list[str]) -> None:
    """Reject generated tests aimed at ACs that are already covered.

    Raises:
        AgentExecutionError: If any generated test targets a covered or unknown AC.
    """
    allowed = set(uncovered_ac_ids)
    stray = sorted({t.ac_id for t in output.generated_tests if t.ac_id not in allowed})
    if stray:
        raise AgentExecutionError(
            Phase.GENERATION.value,
            f"generated tests target ACs outside the uncovered set: {stray}",
        )
