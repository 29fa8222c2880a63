"""Heterogeneity statistics for meta-analysis.

Cochran's Q, I², τ² (DerSimonian-Laird), H² and prediction intervals.

`HeterogeneityAnalyzer.compute` is the single implementation of Q/I²/τ²; the
pooling module uses it for both the fixed- and random-effects models, so the
two models always report the same amount of heterogeneity for the same
studies even though they handle it differently.

References:
- Higgins & Thompson (2002) Quantifying heterogeneity in a meta-analysis
- DerSimonian & Laird (1986) Meta-analysis in clinical trials
"""

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Literal

import numpy as np
from scipy import stats

from metasynth.analysis.confidence import heuristic_confidence
from metasynth.analysis.pvalues import chi_square_p
from metasynth.exceptions import InsufficientDataError, InvalidDataError
from metasynth.models import PoolingModel, StudyEffect

logger = logging.getLogger(__name__)

# I² above this (in percent) switches automatic model selection to random effects
RANDOM_EFFECTS_I2_THRESHOLD = 50.0

ISquaredBand = Literal["low", "moderate", "substantial", "considerable"]


@dataclass(frozen=True)
class HeterogeneityStats:
    """Cochran's Q with its derived I² and DerSimonian-Laird τ²."""

    q: float
    df: int
    i_squared: float  # Percent, 0-100
    tau_squared: float
    fixed_effect: float  # Inverse-variance pooled estimate Q is measured against


@dataclass(frozen=True)
class PredictionInterval:
    lower: float
    upper: float


@dataclass(frozen=True)
class HeterogeneityAssessment:
    """Full heterogeneity report for a set of studies."""

    n_studies: int
    q_statistic: float
    df: int
    q_p_value: float
    i_squared: float
    i_squared_interpretation: ISquaredBand
    tau_squared: float
    tau: float
    h_squared: float
    pooled_effect: float | None
    prediction_interval: PredictionInterval | None
    recommended_model: PoolingModel
    interpretation: str
    confidence: float
    warnings: list[str] = field(default_factory=list)


def prepare_studies(studies: Sequence[StudyEffect]) -> tuple[np.ndarray, np.ndarray]:
    """
    Validate studies and return their effects and standard errors as arrays.

    Raises:
        InsufficientDataError: If no studies are given
        InvalidDataError: Listing every problem across all studies
    """
    if len(studies) == 0:
        raise InsufficientDataError("No studies provided")

    errors: list[str] = []
    for i, study in enumerate(studies, start=1):
        errors.extend(study.validation_errors(label=study.study_id or str(i)))
    if errors:
        raise InvalidDataError(errors, context="Invalid study effects")

    effects = np.array([s.effect for s in studies], dtype=float)
    ses = np.array([s.resolved_se() for s in studies], dtype=float)
    return effects, ses


class HeterogeneityAnalyzer:
    """Quantifies between-study heterogeneity."""

    @staticmethod
    def compute(
        effects: Sequence[float] | np.ndarray,
        standard_errors: Sequence[float] | np.ndarray,
    ) -> HeterogeneityStats:
        """
        Compute Q, I² and τ² for already-validated effects.

        Args:
            effects: Per-study effect estimates (pooling scale)
            standard_errors: Per-study standard errors, all positive

        Returns:
            HeterogeneityStats; τ² is exactly 0 when Q <= df
        """
        y = np.asarray(effects, dtype=float)
        w = 1 / np.asarray(standard_errors, dtype=float) ** 2
        k = len(y)

        sum_w = float(np.sum(w))
        pooled = float(np.sum(w * y) / sum_w)
        q = float(np.sum(w * (y - pooled) ** 2))
        df = k - 1

        i_squared = max(0.0, (q - df) / q * 100) if df > 0 and q > 0 else 0.0

        tau_squared = 0.0
        if k > 1 and q > df:
            c = sum_w - float(np.sum(w**2)) / sum_w
            if c > 0:
                tau_squared = max(0.0, (q - df) / c)

        return HeterogeneityStats(q=q, df=df, i_squared=i_squared, tau_squared=tau_squared, fixed_effect=pooled)

    @staticmethod
    def interpret_i_squared(i_squared: float) -> ISquaredBand:
        """Map I² to the Cochrane Handbook bands."""
        if i_squared < 25:
            return "low"
        if i_squared < 50:
            return "moderate"
        if i_squared < 75:
            return "substantial"
        return "considerable"

    @staticmethod
    def assess(studies: Sequence[StudyEffect]) -> HeterogeneityAssessment:
        """
        Assess heterogeneity across a set of studies.

        Args:
            studies: Per-study effects with SE or 95% CI

        Returns:
            HeterogeneityAssessment with test, indices, prediction interval
            and a recommended pooling model

        Raises:
            InsufficientDataError: If no studies are given
            InvalidDataError: If any study cannot be used
        """
        effects, ses = prepare_studies(studies)
        k = len(effects)
        warnings: list[str] = []

        if k == 1:
            warnings.append("Only one study - heterogeneity cannot be assessed")
            return HeterogeneityAssessment(
                n_studies=1,
                q_statistic=0.0,
                df=0,
                q_p_value=1.0,
                i_squared=0.0,
                i_squared_interpretation="low",
                tau_squared=0.0,
                tau=0.0,
                h_squared=1.0,
                pooled_effect=float(effects[0]),
                prediction_interval=None,
                recommended_model=PoolingModel.FIXED,
                interpretation="Only one study available. Heterogeneity cannot be assessed.",
                confidence=0.5,
                warnings=warnings,
            )

        het = HeterogeneityAnalyzer.compute(effects, ses)
        q_p_value = chi_square_p(het.q, het.df)
        band = HeterogeneityAnalyzer.interpret_i_squared(het.i_squared)
        h_squared = max(1.0, het.q / het.df)

        # Random-effects mean for the prediction interval
        re_weights = 1 / (ses**2 + het.tau_squared)
        re_pooled = float(np.sum(re_weights * effects) / np.sum(re_weights))
        re_se = math.sqrt(1 / float(np.sum(re_weights)))

        prediction_interval = None
        if k >= 3:
            t_crit = float(stats.t.ppf(0.975, k - 2))
            half_width = t_crit * math.sqrt(het.tau_squared + re_se**2)
            prediction_interval = PredictionInterval(lower=re_pooled - half_width, upper=re_pooled + half_width)
        else:
            warnings.append("Prediction interval requires at least 3 studies")

        recommended = (
            PoolingModel.RANDOM if het.i_squared > RANDOM_EFFECTS_I2_THRESHOLD else PoolingModel.FIXED
        )

        interpretation = f"Heterogeneity is {band} (I² = {het.i_squared:.1f}%). "
        if q_p_value < 0.05:
            interpretation += (
                f"The Q test is statistically significant (p = {q_p_value:.4f}), indicating significant heterogeneity. "
            )
        else:
            interpretation += f"The Q test is not statistically significant (p = {q_p_value:.4f}). "
        if het.i_squared > 75:
            interpretation += (
                "Random-effects model is strongly recommended due to considerable heterogeneity. "
                "Consider subgroup analysis or meta-regression to explore sources of heterogeneity."
            )
        elif het.i_squared > 50:
            interpretation += (
                "Random-effects model is recommended due to substantial heterogeneity. "
                "Consider exploring sources of heterogeneity."
            )
        elif het.i_squared > 25:
            interpretation += (
                "Moderate heterogeneity detected. Either fixed-effect or random-effects model may be appropriate."
            )
        else:
            interpretation += (
                "Low heterogeneity suggests studies are estimating similar effects. Fixed-effect model is appropriate."
            )

        penalties: list[float] = []
        if k < 3:
            penalties.append(0.2)
            warnings.append("Very few studies (<3) - heterogeneity estimates may be unreliable")
        elif k < 5:
            penalties.append(0.1)
            warnings.append("Few studies (<5) - heterogeneity estimates have wide uncertainty")
        if 0.05 <= q_p_value < 0.10:
            warnings.append("Q test p-value is borderline (0.05-0.10) - interpret with caution")
        if het.i_squared > 50 and q_p_value >= 0.05:
            warnings.append(
                "I² suggests heterogeneity but Q test is not significant - may be due to low power with few studies"
            )

        logger.info(f"Heterogeneity: k={k}, Q={het.q:.3f}, I²={het.i_squared:.1f}%, tau²={het.tau_squared:.4f}")

        return HeterogeneityAssessment(
            n_studies=k,
            q_statistic=het.q,
            df=het.df,
            q_p_value=q_p_value,
            i_squared=het.i_squared,
            i_squared_interpretation=band,
            tau_squared=het.tau_squared,
            tau=math.sqrt(het.tau_squared),
            h_squared=h_squared,
            pooled_effect=re_pooled,
            prediction_interval=prediction_interval,
            recommended_model=recommended,
            interpretation=interpretation,
            confidence=heuristic_confidence(penalties),
            warnings=warnings,
        )
