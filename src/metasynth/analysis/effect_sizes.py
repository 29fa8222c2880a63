"""Effect size calculations for individual studies.

Converts raw 2x2 tables or group summary statistics into a single study's
effect estimate, standard error and inverse-variance weight.

Supported effect measures:
- Odds Ratio (OR)
- Risk Ratio (RR)
- Risk Difference (RD)
- Mean Difference (MD)
- Standardized Mean Difference (SMD / Hedges' g)

OR and RR are reported on the natural scale, but their standard error and
weight live on the log scale, which is where they are pooled.

References:
- Cochrane Handbook for Systematic Reviews (Chapter 6)
- Borenstein et al. (2009) Introduction to Meta-Analysis
- Hedges & Olkin (1985) Statistical Methods for Meta-Analysis
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from metasynth.analysis.confidence import heuristic_confidence, sample_size_penalty
from metasynth.exceptions import InvalidDataError
from metasynth.models import BinaryOutcome, ContinuousOutcome, EffectMeasure, StudyEffect

logger = logging.getLogger(__name__)

Z_95 = 1.96
CONTINUITY_CORRECTION = 0.5


@dataclass(frozen=True)
class EffectEstimate:
    """A single study's effect estimate."""

    measure: EffectMeasure
    point: float  # On the natural scale (OR/RR exponentiated)
    ci_lower: float  # 95% CI lower bound, natural scale
    ci_upper: float  # 95% CI upper bound, natural scale
    standard_error: float  # On the pooling scale (log scale for OR/RR)
    weight: float  # 1 / SE^2 on the pooling scale
    log_scale: bool = False
    log_point: float | None = None
    log_se: float | None = None
    continuity_correction_applied: bool = False
    confidence: float = 0.7  # Heuristic, see metasynth.analysis.confidence
    warnings: list[str] = field(default_factory=list)
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def pooling_point(self) -> float:
        """Point estimate on the scale used for pooling."""
        if self.log_scale and self.log_point is not None:
            return self.log_point
        return self.point

    def to_study_effect(self, study_id: str, sample_size: int | None = None) -> StudyEffect:
        """Downcast to the minimal input accepted by pooling."""
        if sample_size is None:
            sample_size = self.details.get("sample_size_total")
        return StudyEffect(
            study_id=study_id,
            effect=self.pooling_point,
            standard_error=self.standard_error,
            sample_size=int(sample_size) if sample_size is not None else None,
        )


class EffectSizeCalculator:
    """Computes per-study effect sizes from raw outcome data."""

    @staticmethod
    def _check_binary(data: BinaryOutcome) -> None:
        errors = data.validation_errors()
        if errors:
            raise InvalidDataError(errors, context="Invalid binary data")

    @staticmethod
    def _check_continuous(data: ContinuousOutcome) -> None:
        errors = data.validation_errors()
        if errors:
            raise InvalidDataError(errors, context="Invalid continuous data")

    @staticmethod
    def _cells(data: BinaryOutcome) -> tuple[float, float, float, float, bool]:
        """Return (a, b, c, d) with 0.5 added to every cell if any is zero."""
        a = float(data.events_treatment)
        b = float(data.non_events_treatment)
        c = float(data.events_control)
        d = float(data.non_events_control)
        if data.has_zero_cell():
            k = CONTINUITY_CORRECTION
            return a + k, b + k, c + k, d + k, True
        return a, b, c, d, False

    @staticmethod
    def _ratio_estimate(
        measure: EffectMeasure,
        data: BinaryOutcome,
        log_effect: float,
        se: float,
        corrected: bool,
        warnings: list[str],
    ) -> EffectEstimate:
        """Build an OR/RR estimate from its log-scale point and SE."""
        ci_lower = float(np.exp(log_effect - Z_95 * se))
        ci_upper = float(np.exp(log_effect + Z_95 * se))

        penalties: list[float] = []
        total = data.total_treatment + data.total_control
        penalty, warning = sample_size_penalty(total)
        if penalty:
            penalties.append(penalty)
            warnings.append(warning)  # type: ignore[arg-type]
        if ci_upper / ci_lower > 10:
            penalties.append(0.1)
            warnings.append("Very wide confidence interval (ratio > 10)")
        if corrected:
            penalties.append(0.1)

        return EffectEstimate(
            measure=measure,
            point=float(np.exp(log_effect)),
            ci_lower=ci_lower,
            ci_upper=ci_upper,
            standard_error=float(se),
            weight=float(1 / se**2),
            log_scale=True,
            log_point=float(log_effect),
            log_se=float(se),
            continuity_correction_applied=corrected,
            confidence=heuristic_confidence(penalties),
            warnings=warnings,
            details={
                "risk_treatment": data.events_treatment / data.total_treatment,
                "risk_control": data.events_control / data.total_control,
                "sample_size_total": total,
            },
        )

    @staticmethod
    def odds_ratio(data: BinaryOutcome) -> EffectEstimate:
        """
        Calculate the odds ratio between treatment and control.

        Adds 0.5 to every cell when any cell is zero.

        Args:
            data: 2x2 table of events and totals

        Returns:
            EffectEstimate with OR on the natural scale and SE on the log scale

        Raises:
            InvalidDataError: If the table violates any constraint
        """
        EffectSizeCalculator._check_binary(data)
        a, b, c, d, corrected = EffectSizeCalculator._cells(data)

        warnings: list[str] = []
        if corrected:
            warnings.append("Continuity correction (0.5) applied due to zero cells")

        log_or = np.log((a * d) / (b * c))
        se = np.sqrt(1 / a + 1 / b + 1 / c + 1 / d)

        logger.debug(f"OR: log={log_or:.4f}, se={se:.4f}, corrected={corrected}")
        return EffectSizeCalculator._ratio_estimate(EffectMeasure.OR, data, log_or, se, corrected, warnings)

    @staticmethod
    def risk_ratio(data: BinaryOutcome) -> EffectEstimate:
        """
        Calculate the risk ratio between treatment and control.

        Adds 0.5 to every cell when any cell is zero.

        Args:
            data: 2x2 table of events and totals

        Returns:
            EffectEstimate with RR on the natural scale and SE on the log scale

        Raises:
            InvalidDataError: If the table violates any constraint
        """
        EffectSizeCalculator._check_binary(data)
        a, b, c, d, corrected = EffectSizeCalculator._cells(data)

        warnings: list[str] = []
        if corrected:
            warnings.append("Continuity correction (0.5) applied due to zero cells")

        n1 = a + b
        n2 = c + d
        log_rr = np.log((a / n1) / (c / n2))
        se = np.sqrt(1 / a - 1 / n1 + 1 / c - 1 / n2)

        logger.debug(f"RR: log={log_rr:.4f}, se={se:.4f}, corrected={corrected}")
        return EffectSizeCalculator._ratio_estimate(EffectMeasure.RR, data, log_rr, se, corrected, warnings)

    @staticmethod
    def risk_difference(data: BinaryOutcome) -> EffectEstimate:
        """
        Calculate the risk difference between treatment and control.

        No continuity correction is applied; zero cells are flagged instead.

        Args:
            data: 2x2 table of events and totals

        Returns:
            EffectEstimate with RD and its normal-approximation CI

        Raises:
            InvalidDataError: If the table violates any constraint, or both
                risks are 0 or 1 so the standard error is zero
        """
        EffectSizeCalculator._check_binary(data)

        p1 = data.events_treatment / data.total_treatment
        p2 = data.events_control / data.total_control
        rd = p1 - p2
        se = math.sqrt(p1 * (1 - p1) / data.total_treatment + p2 * (1 - p2) / data.total_control)
        if se == 0:
            raise InvalidDataError(
                ["Risk difference has zero variance (all risks are 0 or 1)"],
                context="Invalid binary data",
            )

        ci_lower = rd - Z_95 * se
        ci_upper = rd + Z_95 * se

        warnings: list[str] = []
        penalties: list[float] = []
        total = data.total_treatment + data.total_control
        penalty, warning = sample_size_penalty(total)
        if penalty:
            penalties.append(penalty)
            warnings.append(warning)  # type: ignore[arg-type]
        if ci_upper - ci_lower > 0.5:
            penalties.append(0.1)
            warnings.append("Wide confidence interval (>0.5 absolute difference)")
        if data.has_zero_cell():
            penalties.append(0.1)
            warnings.append("Zero cells present (no continuity correction applied for RD)")

        return EffectEstimate(
            measure=EffectMeasure.RD,
            point=float(rd),
            ci_lower=float(ci_lower),
            ci_upper=float(ci_upper),
            standard_error=float(se),
            weight=float(1 / se**2),
            confidence=heuristic_confidence(penalties),
            warnings=warnings,
            details={
                "risk_treatment": p1,
                "risk_control": p2,
                "sample_size_total": total,
            },
        )

    @staticmethod
    def _continuous_penalties(
        data: ContinuousOutcome, ci_width: float, max_width: float, width_warning: str, warnings: list[str]
    ) -> tuple[list[float], float]:
        penalties: list[float] = []
        # Ratio of the arm SDs, reported as variance_ratio
        variance_ratio = data.sd_t / data.sd_c
        unequal = variance_ratio > 2 or variance_ratio < 0.5
        if unequal:
            warnings.append(f"Unequal variances detected (ratio: {variance_ratio:.2f})")

        penalty, warning = sample_size_penalty(data.n_t + data.n_c)
        if penalty:
            penalties.append(penalty)
            warnings.append(warning)  # type: ignore[arg-type]
        if ci_width > max_width:
            penalties.append(0.1)
            warnings.append(width_warning)
        if unequal:
            penalties.append(0.1)
        return penalties, variance_ratio

    @staticmethod
    def mean_difference(data: ContinuousOutcome) -> EffectEstimate:
        """
        Calculate the mean difference between treatment and control.

        Args:
            data: Means, SDs and sample sizes of both groups

        Returns:
            EffectEstimate with MD and its normal-approximation CI

        Raises:
            InvalidDataError: If the summary violates any constraint
        """
        EffectSizeCalculator._check_continuous(data)

        md = data.mean_t - data.mean_c
        se = np.sqrt(data.sd_t**2 / data.n_t + data.sd_c**2 / data.n_c)
        ci_lower = md - Z_95 * se
        ci_upper = md + Z_95 * se

        warnings: list[str] = []
        penalties, variance_ratio = EffectSizeCalculator._continuous_penalties(
            data, ci_upper - ci_lower, 0.5, "Wide confidence interval (>0.5 absolute difference)", warnings
        )

        return EffectEstimate(
            measure=EffectMeasure.MD,
            point=float(md),
            ci_lower=float(ci_lower),
            ci_upper=float(ci_upper),
            standard_error=float(se),
            weight=float(1 / se**2),
            confidence=heuristic_confidence(penalties),
            warnings=warnings,
            details={
                "mean_difference": md,
                "sample_size_total": data.n_t + data.n_c,
                "variance_ratio": variance_ratio,
            },
        )

    @staticmethod
    def standardized_mean_difference(data: ContinuousOutcome) -> EffectEstimate:
        """
        Calculate the standardized mean difference (Hedges' g).

        Uses the pooled standard deviation and Hedges' small-sample correction.

        Args:
            data: Means, SDs and sample sizes of both groups

        Returns:
            EffectEstimate with Hedges' g

        Raises:
            InvalidDataError: If the summary violates any constraint
        """
        EffectSizeCalculator._check_continuous(data)
        n1, n2 = data.n_t, data.n_c
        if n1 + n2 <= 2:
            raise InvalidDataError(
                ["Total sample size must exceed 2 for a standardized mean difference"],
                context="Invalid continuous data",
            )

        # Pooled standard deviation
        pooled_sd = np.sqrt(((n1 - 1) * data.sd_t**2 + (n2 - 1) * data.sd_c**2) / (n1 + n2 - 2))

        # Cohen's d
        mean_diff = data.mean_t - data.mean_c
        d = mean_diff / pooled_sd

        # Hedges' correction factor (small sample correction)
        j = 1 - (3 / (4 * (n1 + n2 - 2) - 1))
        g = d * j

        # Standard error of Hedges' g
        se = np.sqrt((n1 + n2) / (n1 * n2) + g**2 / (2 * (n1 + n2)))
        ci_lower = g - Z_95 * se
        ci_upper = g + Z_95 * se

        warnings: list[str] = []
        penalties, variance_ratio = EffectSizeCalculator._continuous_penalties(
            data, ci_upper - ci_lower, 2.0, "Wide confidence interval (>2 SD units)", warnings
        )
        if abs(d - g) > 0.05:
            warnings.append(f"Small sample correction applied (Cohen's d: {d:.3f}, Hedges' g: {g:.3f})")

        return EffectEstimate(
            measure=EffectMeasure.SMD,
            point=float(g),
            ci_lower=float(ci_lower),
            ci_upper=float(ci_upper),
            standard_error=float(se),
            weight=float(1 / se**2),
            confidence=heuristic_confidence(penalties),
            warnings=warnings,
            details={
                "mean_difference": mean_diff,
                "sample_size_total": n1 + n2,
                "variance_ratio": variance_ratio,
                "pooled_sd": float(pooled_sd),
                "cohens_d": float(d),
                "correction_factor": j,
            },
        )

    @staticmethod
    def binary(data: BinaryOutcome, measure: EffectMeasure = EffectMeasure.OR) -> EffectEstimate:
        """Calculate a binary-outcome effect size for the given measure."""
        if measure == EffectMeasure.OR:
            return EffectSizeCalculator.odds_ratio(data)
        if measure == EffectMeasure.RR:
            return EffectSizeCalculator.risk_ratio(data)
        if measure == EffectMeasure.RD:
            return EffectSizeCalculator.risk_difference(data)
        raise ValueError(f"Not a binary effect measure: {measure}")

    @staticmethod
    def continuous(data: ContinuousOutcome, measure: EffectMeasure = EffectMeasure.SMD) -> EffectEstimate:
        """Calculate a continuous-outcome effect size for the given measure."""
        if measure == EffectMeasure.MD:
            return EffectSizeCalculator.mean_difference(data)
        if measure == EffectMeasure.SMD:
            return EffectSizeCalculator.standardized_mean_difference(data)
        raise ValueError(f"Not a continuous effect measure: {measure}")
