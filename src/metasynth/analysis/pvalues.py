"""P-value helpers shared by the analysis modules."""

from scipy import stats


def two_tailed_p(z: float) -> float:
    """Two-tailed p-value of a z-score under the standard normal."""
    return float(2 * stats.norm.sf(abs(z)))


def chi_square_p(statistic: float, df: int) -> float:
    """Upper-tail p-value of a chi-square statistic (1.0 when df <= 0)."""
    if df <= 0:
        return 1.0
    return float(stats.chi2.sf(statistic, df))
