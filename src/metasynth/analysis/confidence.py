"""Heuristic confidence scores attached to analysis results.

The score is advisory metadata summarising how much the inputs look like a
well-powered analysis (sample size, number of studies, interval width, ...).
It is NOT a calibrated statistical quantity: it is not a probability, not a
measure of power and must never be read as a substitute for a p-value or a
confidence interval.
"""

from collections.abc import Iterable

BASE_CONFIDENCE = 0.7
MIN_CONFIDENCE = 0.1
MAX_CONFIDENCE = 0.9


def heuristic_confidence(penalties: Iterable[float], base: float = BASE_CONFIDENCE) -> float:
    """
    Combine additive penalties into a bounded confidence score.

    Args:
        penalties: Amounts to subtract from the base score (positive numbers)
        base: Starting score before penalties

    Returns:
        Score clamped to [0.1, 0.9]
    """
    score = base - sum(penalties)
    return round(max(MIN_CONFIDENCE, min(MAX_CONFIDENCE, score)), 10)


def sample_size_penalty(total: float) -> tuple[float, str | None]:
    """Penalty and warning for the total number of participants."""
    if total < 30:
        return 0.2, "Small sample size (<30 total participants)"
    if total < 100:
        return 0.1, "Moderate sample size (<100 total participants)"
    return 0.0, None


def study_count_penalty(k: int) -> tuple[float, str | None]:
    """Penalty and warning for the number of pooled studies."""
    if k < 3:
        return 0.2, "Very few studies (<3) for pooling"
    if k < 5:
        return 0.1, "Few studies (<5) for pooling"
    return 0.0, None
