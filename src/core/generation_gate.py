# src/core/generation_gate.py - v2
"""Generation gate: decide whether new tests may be synthesized.

The gate statistic is the maximum qualified-test final score rescaled to
[0, 1] (see ranking.gate_statistic). Generation is admitted iff the
statistic is at or above the configured threshold, and then only for ACs
that no qualified test matches.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from suitegate.config.settings import ThresholdMisconfiguration
from suitegate.core.payloads import CoverageReport, RankingReport
from suitegate.core.ranking import gate_statistic

logger = logging.getLogger(__name__)

DEFAULT_GENERATION_THRESHOLD = 0.7
GATE_STATISTIC_NAME = "max_qualified_final_score"


@dataclass(frozen=True)
class GateDecision:
    """Outcome of one generation gate evaluation."""

    statistic: float
    threshold: float
    admitted: bool
    statistic_name: str = GATE_STATISTIC_NAME
    uncovered_ac_ids: list[str] = field(default_factory=list)


def uncovered_acs(coverage: CoverageReport, ac_ids: list[str]) -> list[str]:
    """ACs absent from every qualified test's matched set, in story order."""
    covered = {ac for test in coverage.qualified for ac in test.matched_ac_ids}
    return [ac for ac in ac_ids if ac not in covered]


def evaluate_generation_gate(
    ranking: RankingReport,
    coverage: CoverageReport,
    ac_ids: list[str],
    threshold: float = DEFAULT_GENERATION_THRESHOLD,
) -> GateDecision:
    """Compare the gate statistic of the ranked tests against the threshold.

    The statistic is recomputed from ``ranking.ranked``; the stored
    ``gate_statistic`` field is not trusted.

    Raises:
        ThresholdMisconfiguration: If threshold is outside [0, 1].
    """
    if not 0.0 <= threshold <= 1.0:
        raise ThresholdMisconfiguration(
            f"generation_score_threshold must be within [0, 1], got {threshold}"
        )
    statistic = gate_statistic(ranking.ranked)
    admitted = statistic >= threshold
    decision = GateDecision(
        statistic=statistic,
        threshold=threshold,
        admitted=admitted,
        uncovered_ac_ids=uncovered_acs(coverage, ac_ids) if admitted else [],
    )
    logger.info(
        "Generation gate: statistic=%.4f threshold=%.4f admitted=%s uncovered=%d",
        statistic, threshold, admitted, len(decision.uncovered_ac_ids),
    )
    return decision
