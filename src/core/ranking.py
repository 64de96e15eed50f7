# src/core/ranking.py - v1
"""Ranking engine: weighted multi-factor score normalized onto [0, 100].

final_score = 100 * sum(W_i * factor_i) / sum(W_i)

Every factor is defined on [0, 1] and weights are non-negative, so the
theoretical raw range is [0, sum(W_i)]. Normalizing against that range (not
the observed min/max) keeps scores comparable across runs that share a
weight configuration.
"""

from __future__ import annotations

import logging
import math

from suitegate.config.settings import ThresholdMisconfiguration
from suitegate.core.errors import InvalidRankingInput
from suitegate.core.payloads import RankedTest, RankingFactors, RankingReport

logger = logging.getLogger(__name__)

FACTOR_NAMES: tuple[str, ...] = (
    "similarity",
    "coverage",
    "defect_density",
    "module_criticality",
    "recurrence",
)

SCORE_DECIMALS = 6


def validate_weights(weights: dict[str, float]) -> dict[str, float]:
    """Return weights in formula order.

    Raises:
        ThresholdMisconfiguration: On missing, unknown, negative or
            all-zero weights.
    """
    missing = [name for name in FACTOR_NAMES if name not in weights]
    unknown = sorted(set(weights) - set(FACTOR_NAMES))
    if missing or unknown:
        raise ThresholdMisconfiguration(
            f"ranking weights must name exactly {list(FACTOR_NAMES)} "
            f"(missing={missing}, unknown={unknown})"
        )
    ordered = {name: float(weights[name]) for name in FACTOR_NAMES}
    for name, value in ordered.items():
        if not math.isfinite(value) or value < 0:
            raise ThresholdMisconfiguration(f"ranking weight '{name}' must be >= 0, got {value}")
    if math.fsum(ordered.values()) == 0:
        raise ThresholdMisconfiguration("at least one ranking weight must be > 0")
    return ordered


def score(factors: RankingFactors, weights: dict[str, float]) -> tuple[float, float]:
    """Compute (raw_score, final_score) for one test.

    Raises:
        InvalidRankingInput: If a factor lies outside [0, 1].
    """
    values = factors.model_dump()
    for name in FACTOR_NAMES:
        value = values[name]
        if not math.isfinite(value) or not 0.0 <= value <= 1.0:
            raise InvalidRankingInput(f"factor '{name}' must be within [0, 1], got {value}")
    raw = math.fsum(weights[name] * values[name] for name in FACTOR_NAMES)
    max_raw = math.fsum(weights.values())
    final = round(100.0 * raw / max_raw, SCORE_DECIMALS)
    # Clamp float noise at the edges of the achievable range.
    final = min(100.0, max(0.0, final))
    return round(raw, SCORE_DECIMALS), final


def rank_tests(
    factors_by_test: dict[str, RankingFactors],
    weights: dict[str, float],
) -> RankingReport:
    """Score and order tests: final_score descending, test_id ascending.

    No test is dropped; the order depends on nothing but the formula and
    the tie-break.
    """
    ordered_weights = validate_weights(weights)
    ranked: list[RankedTest] = []
    for test_id, factors in factors_by_test.items():
        raw, final = score(factors, ordered_weights)
        ranked.append(
            RankedTest(test_id=test_id, raw_score=raw, final_score=final, factors=factors)
        )
    ranked.sort(key=lambda item: (-item.final_score, item.test_id))

    statistic = gate_statistic(ranked)
    logger.info(
        "Ranked %d tests; top=%s statistic=%.4f",
        len(ranked), ranked[0].test_id if ranked else None, statistic,
    )
    return RankingReport(weights=ordered_weights, ranked=ranked, gate_statistic=statistic)


def gate_statistic(ranked: list[RankedTest]) -> float:
    """Maximum final score over ranked tests, rescaled to [0, 1]. 0.0 if empty."""
    if not ranked:
        return 0.0
    return round(max(item.final_score for item in ranked) / 100.0, SCORE_DECIMALS)
