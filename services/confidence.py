"""Confidence scoring over the five interview signals."""
from __future__ import annotations

from audit.types import ConfidenceScores

WEIGHTS = {"I": 0.25, "R": 0.25, "P": 0.30, "M": 0.20}

STOP_OVERALL = 0.75
STOP_PAIN = 0.70
STOP_MAPPABILITY = 0.50


def _clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


def calculate_overall(I: float, R: float, P: float, M: float, K: float) -> float:
    """Weighted sum of the positive signals minus the noise penalty, clamped to [0, 1]."""

    raw = WEIGHTS["I"] * I + WEIGHTS["R"] * R + WEIGHTS["P"] * P + WEIGHTS["M"] * M - K
    return _clamp01(raw)


def with_overall(scores: ConfidenceScores) -> ConfidenceScores:
    """Return a copy of ``scores`` whose ``overall`` is recomputed from the signals."""

    overall = calculate_overall(scores.I, scores.R, scores.P, scores.M, scores.K)
    return scores.model_copy(update={"overall": overall})


def should_stop(scores: ConfidenceScores) -> bool:
    return (
        scores.overall >= STOP_OVERALL
        and scores.P >= STOP_PAIN
        and scores.M >= STOP_MAPPABILITY
    )


__all__ = ["calculate_overall", "with_overall", "should_stop"]
