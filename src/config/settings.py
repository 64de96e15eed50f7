# src/config/settings.py - v2
"""Typed configuration loaded from .env via pydantic-settings.

Single source of truth for thresholds, ranking weights, timeouts and the
retry policy. Values are validated at load: a misconfigured threshold or
weight never reaches a Run.
"""

from __future__ import annotations

import math
from pathlib import Path
from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Fixed qualification cutoff for coverage; not configurable.
MIN_COVERAGE_RATIO = 0.5

# Upper bound for APPROVAL_TIMEOUT_HOURS (one year).
MAX_APPROVAL_TIMEOUT_HOURS = 24.0 * 365


class ConfigurationError(Exception):
    """Raised when configuration is internally inconsistent."""


class ThresholdMisconfiguration(ConfigurationError):
    """Raised for negative weights or thresholds outside their valid range."""


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === Coverage ===
    ac_match_threshold: float = 0.8
    # Accepted only so an override attempt can be detected and rejected.
    coverage_min_ratio: float = MIN_COVERAGE_RATIO

    # === Ranking weights (W1..W5) ===
    ranking_w_similarity: float = 0.3
    ranking_w_coverage: float = 0.3
    ranking_w_defect_density: float = 0.2
    ranking_w_module_criticality: float = 0.1
    ranking_w_recurrence: float = 0.1

    # === Generation gate ===
    generation_score_threshold: float = 0.7

    # === Approval ===
    approval_timeout_hours: float = 24.0

    # === External agent calls ===
    agent_call_timeout_s: float = 300.0
    agent_max_retries: int = 3
    agent_backoff_base_s: float = 1.0
    agent_backoff_factor: float = 2.0
    phase_agents: str = ""

    # === Registry persistence ===
    store_backend: Literal["sqlite", "memory"] = "sqlite"
    store_path: Path = Path("~/.suitegate/suitegate.db")
    run_list_max: int = 100

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Path | None = None
    log_rotation: str = "10MB"
    log_retention: int = 30

    # --- Validators ---

    @model_validator(mode="after")
    def validate_thresholds(self) -> Settings:
        """Reject out-of-range thresholds and weights at load time."""
        errors: list[str] = []

        for name, value in self.__dict__.items():
            if isinstance(value, float) and not math.isfinite(value):
                errors.append(f"{name.upper()} must be a finite number, got {value}")

        if self.coverage_min_ratio != MIN_COVERAGE_RATIO:
            errors.append(
                f"COVERAGE_MIN_RATIO is fixed at {MIN_COVERAGE_RATIO} and cannot be overridden"
            )

        for name in ("ac_match_threshold", "generation_score_threshold"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                errors.append(f"{name.upper()} must be within [0, 1], got {value}")

        for name, value in self.ranking_weights.items():
            if value < 0:
                errors.append(f"RANKING_W_{name.upper()} must be >= 0, got {value}")
        if all(v == 0 for v in self.ranking_weights.values()):
            errors.append("at least one ranking weight must be > 0")

        if not 0 < self.approval_timeout_hours <= MAX_APPROVAL_TIMEOUT_HOURS:
            errors.append(
                f"APPROVAL_TIMEOUT_HOURS must be within (0, {MAX_APPROVAL_TIMEOUT_HOURS:g}], "
                f"got {self.approval_timeout_hours}"
            )
        if self.agent_call_timeout_s <= 0:
            errors.append("AGENT_CALL_TIMEOUT_S must be > 0")
        if self.agent_max_retries < 0:
            errors.append("AGENT_MAX_RETRIES must be >= 0")
        if self.agent_backoff_base_s < 0 or self.agent_backoff_factor < 1.0:
            errors.append("AGENT_BACKOFF_BASE_S must be >= 0 and AGENT_BACKOFF_FACTOR >= 1")
        if self.run_list_max < 1:
            errors.append("RUN_LIST_MAX must be >= 1")

        if errors:
            raise ThresholdMisconfiguration("; ".join(errors))

        # Surface malformed PHASE_AGENTS at load rather than on first use.
        self.phase_agents_map  # noqa: B018
        return self

    # --- Helpers ---

    @property
    def ranking_weights(self) -> dict[str, float]:
        """W1..W5 keyed by factor name, in formula order."""
        return {
            "similarity": self.ranking_w_similarity,
            "coverage": self.ranking_w_coverage,
            "defect_density": self.ranking_w_defect_density,
            "module_criticality": self.ranking_w_module_criticality,
            "recurrence": self.ranking_w_recurrence,
        }

    @property
    def approval_timeout_s(self) -> float:
        return self.approval_timeout_hours * 3600.0

    @property
    def phase_agents_map(self) -> dict[str, str]:
        """Parse comma-separated ``phase=dotted.path.Class`` overrides."""
        mapping: dict[str, str] = {}
        for item in self.phase_agents.split(","):
            item = item.strip()
            if not item:
                continue
            phase, sep, class_path = item.partition("=")
            if not sep or not phase.strip() or not class_path.strip():
                raise ConfigurationError(
                    f"PHASE_AGENTS entry must look like phase=module.Class, got {item!r}"
                )
            mapping[phase.strip()] = class_path.strip()
        return mapping


def load_settings(**overrides: object) -> Settings:
    """Load settings from .env with optional overrides.

    Args:
        **overrides: Field-level overrides (for testing or per-run tooling).

    Returns:
        Validated Settings instance.

    Raises:
        ThresholdMisconfiguration: If a threshold or weight is out of range.
        ConfigurationError: If configuration is otherwise inconsistent.
    """
    return Settings(**overrides)  # type: ignore[arg-type]
