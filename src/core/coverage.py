# src/core/coverage.py - v1
"""Coverage engine: AC-to-test coverage ratios from a similarity matrix.

For each test, matched ACs are those with similarity >= ac_match_threshold;
coverage_ratio = |matched| / |ACs|. A test qualifies when its ratio is at
least 0.5 (inclusive). Qualification is decided on exact integer fractions,
so the 0.5 boundary never depends on float rounding.
"""

from __future__ import annotations

import logging
import math
from fractions import Fraction

import numpy as np

from suitegate.config.settings import MIN_COVERAGE_RATIO, ThresholdMisconfiguration
from suitegate.core.errors import InvalidCoverageInput
from suitegate.core.payloads import CoverageReport, QualifiedTest, RejectedTest

logger = logging.getLogger(__name__)

_MIN_RATIO = Fraction(1, 2)


def build_similarity_matrix(
    ac_ids: list[str],
    test_ids: list[str],
    similarity: dict[str, dict[str, float]],
) -> np.ndarray:
    """Arrange similarity scores as a (tests x ACs) array.

    Raises:
        InvalidCoverageInput: On missing cells, unknown AC ids, or
            non-finite / out-of-range values.
    """
    known = set(ac_ids)
    matrix = np.empty((len(test_ids), len(ac_ids)), dtype=np.float64)
    for row, test_id in enumerate(test_ids):
        scores = similarity.get(test_id)
        if scores is None:
            raise InvalidCoverageInput(f"no similarity row for test '{test_id}'")
        unknown = set(scores) - known
        if unknown:
            raise InvalidCoverageInput(
                f"test '{test_id}' references unknown ACs: {sorted(unknown)}"
            )
        for col, ac_id in enumerate(ac_ids):
            if ac_id not in scores:
                raise InvalidCoverageInput(
                    f"missing similarity for test '{test_id}' and AC '{ac_id}'"
                )
            value = float(scores[ac_id])
            if not math.isfinite(value) or not -1.0 <= value <= 1.0:
                raise InvalidCoverageInput(
                    f"similarity for test '{test_id}' and AC '{ac_id}' out of range: {value}"
                )
            matrix[row, col] = value
    return matrix


def evaluate_coverage(
    ac_ids: list[str],
    test_ids: list[str],
    similarity: dict[str, dict[str, float]],
    ac_match_threshold: float,
    min_coverage_ratio: float | None = None,
) -> CoverageReport:
    """Partition candidate tests into qualified and rejected.

    Args:
        ac_ids: Acceptance criterion ids of the story.
        test_ids: Candidate test ids, in retrieval order.
        similarity: test_id -> ac_id -> similarity score.
        ac_match_threshold: Similarity cutoff for "matched" (inclusive).
        min_coverage_ratio: Must be omitted or equal to 0.5.

    Returns:
        CoverageReport with qualified tests (ratio + matched AC ids), rejected
        tests (ratio only) and the ACs matched by no qualified test.

    Raises:
        InvalidCoverageInput: If there are no ACs or the matrix is malformed.
        ThresholdMisconfiguration: On an attempt to change the 0.5 minimum or
            a threshold outside [0, 1].
    """
    if min_coverage_ratio is not None and min_coverage_ratio != MIN_COVERAGE_RATIO:
        raise ThresholdMisconfiguration(
            f"minimum coverage ratio is fixed at {MIN_COVERAGE_RATIO}, got {min_coverage_ratio}"
        )
    if not 0.0 <= ac_match_threshold <= 1.0:
        raise ThresholdMisconfiguration(
            f"ac_match_threshold must be within [0, 1], got {ac_match_threshold}"
        )
    if not ac_ids:
        raise InvalidCoverageInput("story has zero acceptance criteria")
    if len(set(ac_ids)) != len(ac_ids):
        raise InvalidCoverageInput("duplicate acceptance criterion ids")
    if len(set(test_ids)) != len(test_ids):
        raise InvalidCoverageInput("duplicate candidate test ids")

    total = len(ac_ids)
    qualified: list[QualifiedTest] = []
    rejected: list[RejectedTest] = []

    if test_ids:
        matrix = build_similarity_matrix(ac_ids, test_ids, similarity)
        matched_mask = matrix >= ac_match_threshold
        for row, test_id in enumerate(test_ids):
            matched = [ac_ids[col] for col in np.flatnonzero(matched_mask[row])]
            ratio = Fraction(len(matched), total)
            if ratio >= _MIN_RATIO:
                qualified.append(
                    QualifiedTest(
                        test_id=test_id,
                        coverage_ratio=float(ratio),
                        matched_ac_ids=matched,
                    )
                )
            else:
                rejected.append(RejectedTest(test_id=test_id, coverage_ratio=float(ratio)))

    covered = {ac for test in qualified for ac in test.matched_ac_ids}
    uncovered = [ac for ac in ac_ids if ac not in covered]

    logger.info(
        "Coverage evaluated: %d ACs, %d qualified, %d rejected, %d uncovered (threshold=%.3f)",
        total, len(qualified), len(rejected), len(uncovered), ac_match_threshold,
    )
    return CoverageReport(
        ac_match_threshold=ac_match_threshold,
        min_coverage_ratio=MIN_COVERAGE_RATIO,
        total_acs=total,
        qualified=qualified,
        rejected=rejected,
        uncovered_ac_ids=uncovered,
    )
