"""Pooling of per-study effect sizes.

Pooling methods:
- Fixed effect (inverse-variance weighted)
- Random effects (DerSimonian-Laird)
- Automatic selection: random effects when I² > 50%, fixed effect otherwise

Effects must be on an additive scale; ratio measures (OR, RR) are pooled as
log values and can be exponentiated back with `PooledResult.natural_scale`.

References:
- Cochrane Handbook for Systematic Reviews (Chapter 10)
- DerSimonian & Laird (1986) Meta-analysis in clinical trials
"""

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass, field, replace

import numpy as np

from metasynth.analysis.confidence import heuristic_confidence, study_count_penalty
from metasynth.analysis.heterogeneity import (
    RANDOM_EFFECTS_I2_THRESHOLD,
    HeterogeneityAnalyzer,
    HeterogeneityStats,
    prepare_studies,
)
from metasynth.analysis.pvalues import two_tailed_p
from metasynth.models import PoolingModel, StudyEffect

logger = logging.getLogger(__name__)

Z_95 = 1.96


@dataclass(frozen=True)
class StudyWeight:
    """A study's weight in the pooled estimate."""

    study_id: str
    weight: float  # Raw inverse-variance weight
    weight_percent: float  # Share of the total weight, 0-100


@dataclass(frozen=True)
class PooledResult:
    """Result of meta-analysis pooling."""

    model: PoolingModel  # FIXED or RANDOM, never AUTO
    pooled_effect: float
    ci_lower: float  # 95% CI lower bound
    ci_upper: float  # 95% CI upper bound
    standard_error: float
    z_score: float
    p_value: float  # Two-tailed
    weights: list[StudyWeight]
    n_studies: int
    heterogeneity: HeterogeneityStats
    model_rationale: str
    confidence: float  # Heuristic, see metasynth.analysis.confidence
    warnings: list[str] = field(default_factory=list)
    total_sample_size: int | None = None
    log_scale: bool = False

    def natural_scale(self) -> tuple[float, float, float]:
        """Return (effect, ci_lower, ci_upper), exponentiated for log-scale results."""
        if self.log_scale:
            return math.exp(self.pooled_effect), math.exp(self.ci_lower), math.exp(self.ci_upper)
        return self.pooled_effect, self.ci_lower, self.ci_upper

    def with_rationale(self, rationale: str) -> "PooledResult":
        """Return a copy with a different model rationale."""
        return replace(self, model_rationale=rationale)


class Pooler:
    """Combines per-study effects into a pooled estimate."""

    @staticmethod
    def _summarise(
        model: PoolingModel,
        studies: Sequence[StudyEffect],
        effects: np.ndarray,
        weights: np.ndarray,
        heterogeneity: HeterogeneityStats,
        rationale: str,
        penalties: list[float],
        warnings: list[str],
        log_scale: bool,
    ) -> PooledResult:
        total_weight = float(np.sum(weights))
        pooled = float(np.sum(weights * effects) / total_weight)
        se = math.sqrt(1 / total_weight)
        ci_lower = pooled - Z_95 * se
        ci_upper = pooled + Z_95 * se
        z = pooled / se

        if ci_upper - ci_lower > 2 * abs(pooled):
            penalties.append(0.1)
            warnings.append("Wide confidence interval")

        study_weights = [
            StudyWeight(study_id=s.study_id, weight=float(w), weight_percent=float(w / total_weight * 100))
            for s, w in zip(studies, weights, strict=True)
        ]

        sizes = [s.sample_size for s in studies if s.sample_size is not None]
        total_sample_size = sum(sizes) if sizes else None

        return PooledResult(
            model=model,
            pooled_effect=pooled,
            ci_lower=ci_lower,
            ci_upper=ci_upper,
            standard_error=se,
            z_score=z,
            p_value=two_tailed_p(z),
            weights=study_weights,
            n_studies=len(studies),
            heterogeneity=heterogeneity,
            model_rationale=rationale,
            confidence=heuristic_confidence(penalties),
            warnings=warnings,
            total_sample_size=total_sample_size,
            log_scale=log_scale,
        )

    @staticmethod
    def pool_fixed(studies: Sequence[StudyEffect], log_scale: bool = False) -> PooledResult:
        """
        Inverse-variance weighted fixed-effect meta-analysis.

        Args:
            studies: Per-study effects with SE or 95% CI
            log_scale: Whether the effects are log ratios (for reporting only)

        Returns:
            PooledResult with pooled estimate and heterogeneity statistics

        Raises:
            InsufficientDataError: If no studies are given
            InvalidDataError: If any study cannot be used
        """
        effects, ses = prepare_studies(studies)
        heterogeneity = HeterogeneityAnalyzer.compute(effects, ses)
        weights = 1 / ses**2

        warnings: list[str] = []
        penalties: list[float] = []
        penalty, warning = study_count_penalty(len(studies))
        if penalty:
            penalties.append(penalty)
            warnings.append(warning)  # type: ignore[arg-type]

        # Fixed effect may not be appropriate with high heterogeneity
        if heterogeneity.i_squared > 75:
            penalties.append(0.2)
            warnings.append("High heterogeneity (I² > 75%) - consider random-effects model")
        elif heterogeneity.i_squared > 50:
            penalties.append(0.1)
            warnings.append("Moderate heterogeneity (I² > 50%) - consider random-effects model")

        result = Pooler._summarise(
            PoolingModel.FIXED,
            studies,
            effects,
            weights,
            heterogeneity,
            "Fixed-effect model assumes all studies estimate the same true effect",
            penalties,
            warnings,
            log_scale,
        )
        logger.debug(
            f"Fixed effect: k={result.n_studies}, pooled={result.pooled_effect:.4f}, se={result.standard_error:.4f}"
        )
        return result

    @staticmethod
    def pool_random(studies: Sequence[StudyEffect], log_scale: bool = False) -> PooledResult:
        """
        DerSimonian-Laird random-effects meta-analysis.

        Q, df and I² are those of the fixed-effect fit; only the weights
        change, to 1 / (variance + τ²).

        Args:
            studies: Per-study effects with SE or 95% CI
            log_scale: Whether the effects are log ratios (for reporting only)

        Returns:
            PooledResult with pooled estimate and heterogeneity statistics

        Raises:
            InsufficientDataError: If no studies are given
            InvalidDataError: If any study cannot be used
        """
        effects, ses = prepare_studies(studies)
        heterogeneity = HeterogeneityAnalyzer.compute(effects, ses)
        weights = 1 / (ses**2 + heterogeneity.tau_squared)

        warnings: list[str] = []
        penalties: list[float] = []
        penalty, warning = study_count_penalty(len(studies))
        if penalty:
            penalties.append(penalty)
            warnings.append(warning)  # type: ignore[arg-type]

        # Heterogeneity is noted but not penalised here
        if heterogeneity.i_squared > 75:
            warnings.append("High heterogeneity (I² > 75%) detected")
        elif heterogeneity.i_squared > 50:
            warnings.append("Moderate heterogeneity (I² > 50%) detected")

        if heterogeneity.tau_squared > 1:
            penalties.append(0.1)
            warnings.append("Large between-study variance (tau² > 1)")

        result = Pooler._summarise(
            PoolingModel.RANDOM,
            studies,
            effects,
            weights,
            heterogeneity,
            "Random-effects model accounts for between-study heterogeneity",
            penalties,
            warnings,
            log_scale,
        )
        logger.debug(
            f"Random effects: k={result.n_studies}, tau²={heterogeneity.tau_squared:.4f}, "
            f"pooled={result.pooled_effect:.4f}"
        )
        return result

    @staticmethod
    def pool_auto(studies: Sequence[StudyEffect], log_scale: bool = False) -> PooledResult:
        """
        Pick the pooling model from the fixed-effect I².

        Random effects are used when I² > 50%, fixed effect otherwise. The
        result's model_rationale states the I² that drove the choice.
        """
        fixed = Pooler.pool_fixed(studies, log_scale=log_scale)
        i_squared = fixed.heterogeneity.i_squared

        if i_squared > RANDOM_EFFECTS_I2_THRESHOLD:
            random = Pooler.pool_random(studies, log_scale=log_scale)
            logger.info(f"Auto model selection: random effects (I² = {i_squared:.1f}%)")
            return random.with_rationale(
                f"Random-effects model selected due to moderate/high heterogeneity (I² = {i_squared:.1f}%)"
            )

        logger.info(f"Auto model selection: fixed effect (I² = {i_squared:.1f}%)")
        return fixed.with_rationale(f"Fixed-effect model selected due to low heterogeneity (I² = {i_squared:.1f}%)")

    @staticmethod
    def pool(
        studies: Sequence[StudyEffect],
        model: PoolingModel = PoolingModel.AUTO,
        log_scale: bool = False,
    ) -> PooledResult:
        """
        Pool effect sizes using the specified model.

        Args:
            studies: Per-study effects with SE or 95% CI
            model: FIXED, RANDOM or AUTO
            log_scale: Whether the effects are log ratios (OR, RR)

        Returns:
            PooledResult with pooled estimate
        """
        if model == PoolingModel.FIXED:
            return Pooler.pool_fixed(studies, log_scale=log_scale)
        if model == PoolingModel.RANDOM:
            return Pooler.pool_random(studies, log_scale=log_scale)
        return Pooler.pool_auto(studies, log_scale=log_scale)
