"""Publication bias and small-study effect checks.

- Funnel asymmetry heuristic (count of studies either side of the pooled effect)
- Egger's regression test
- Begg and Mazumdar's rank correlation test
- Funnel plot data (points only, no rendering)

References:
- Egger et al. (1997) Bias in meta-analysis detected by a simple, graphical test
- Begg & Mazumdar (1994) Operating characteristics of a rank correlation test
- Cochrane Handbook for Systematic Reviews (Chapter 13)
"""

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Literal

import numpy as np
from scipy import stats

from metasynth.analysis.confidence import heuristic_confidence
from metasynth.analysis.heterogeneity import prepare_studies
from metasynth.exceptions import InsufficientDataError
from metasynth.models import StudyEffect

logger = logging.getLogger(__name__)

BIAS_TEST_ALPHA = 0.10
MIN_STUDIES_FOR_TESTS = 3


@dataclass(frozen=True)
class AsymmetryResult:
    """Outcome of the funnel asymmetry heuristic."""

    asymmetry_detected: bool
    n_left: int  # Studies with effect below the pooled effect
    n_right: int  # Studies at or above the pooled effect
    ratio: float  # max(left, right) / min(left, right), inf when one side is empty
    interpretation: str


@dataclass(frozen=True)
class FunnelPoint:
    study_id: str
    effect: float
    standard_error: float
    precision: float


@dataclass(frozen=True)
class EggerTest:
    """Egger's regression test for funnel asymmetry."""

    estimable: bool
    intercept: float = 0.0
    se_intercept: float = 0.0
    t_statistic: float = 0.0
    p_value: float = 1.0
    df: int = 0
    interpretation: str = ""


@dataclass(frozen=True)
class BeggTest:
    """Begg and Mazumdar's rank correlation test."""

    estimable: bool
    tau: float = 0.0
    p_value: float = 1.0
    interpretation: str = ""


@dataclass(frozen=True)
class PublicationBiasAssessment:
    """Combined publication bias report."""

    n_studies: int
    pooled_effect: float
    asymmetry: AsymmetryResult
    egger: EggerTest
    begg: BeggTest
    funnel_points: list[FunnelPoint]
    bias_detected: bool
    assessment_confidence: Literal["low", "moderate", "high"]
    interpretation: str
    confidence: float  # Heuristic, see metasynth.analysis.confidence
    warnings: list[str] = field(default_factory=list)


def _describe(p_value: float, what: str) -> str:
    if p_value < 0.05:
        return f"Significant {what} detected (p < 0.05), suggesting possible publication bias"
    if p_value < BIAS_TEST_ALPHA:
        return f"Borderline {what} (p < 0.10), publication bias possible"
    return f"No significant {what} detected (p ≥ 0.10)"


class PublicationBiasDetector:
    """Checks a set of study effects for signs of publication bias."""

    @staticmethod
    def detect_asymmetry(studies: Sequence[StudyEffect], pooled_effect: float) -> AsymmetryResult:
        """
        Coarse funnel symmetry check around the pooled effect.

        Studies are split into those below the pooled effect and those at or
        above it. Asymmetry is flagged only when one side outnumbers the other
        by more than 2:1 and by at least 3 studies, which keeps small sets of
        studies from tripping it.

        Args:
            studies: Per-study effects
            pooled_effect: Pooled estimate on the same scale as the effects

        Returns:
            AsymmetryResult

        Raises:
            InsufficientDataError: If no studies are given
        """
        if len(studies) == 0:
            raise InsufficientDataError("No studies provided for asymmetry assessment")

        n_left = sum(1 for s in studies if s.effect < pooled_effect)
        n_right = len(studies) - n_left
        smaller = min(n_left, n_right)
        ratio = max(n_left, n_right) / smaller if smaller > 0 else math.inf
        detected = ratio > 2 and abs(n_left - n_right) >= 3

        parts = [f"Funnel of {len(studies)} studies ({n_left} below, {n_right} at or above the pooled effect)."]
        if detected:
            parts.append(
                "The imbalance suggests potential asymmetry, which may indicate publication bias "
                "or small-study effects."
            )
        else:
            parts.append("Studies appear reasonably balanced around the pooled effect.")
        parts.append(
            "This is a coarse rule-of-thumb count, not a formal test; it is not a substitute for "
            "Egger's regression or Begg's rank correlation test."
        )

        return AsymmetryResult(
            asymmetry_detected=detected,
            n_left=n_left,
            n_right=n_right,
            ratio=ratio,
            interpretation=" ".join(parts),
        )

    @staticmethod
    def funnel_points(studies: Sequence[StudyEffect]) -> list[FunnelPoint]:
        """Effect, SE and precision per study for a funnel plot."""
        effects, ses = prepare_studies(studies)
        return [
            FunnelPoint(study_id=s.study_id, effect=float(y), standard_error=float(se), precision=float(1 / se))
            for s, y, se in zip(studies, effects, ses, strict=True)
        ]

    @staticmethod
    def egger_test(studies: Sequence[StudyEffect]) -> EggerTest:
        """
        Egger's regression test.

        Regresses the standardized effect (effect / SE) on precision (1 / SE);
        an intercept away from zero indicates funnel asymmetry.
        """
        effects, ses = prepare_studies(studies)
        if len(effects) < MIN_STUDIES_FOR_TESTS:
            return EggerTest(estimable=False, interpretation="Insufficient studies (<3) for Egger's test")

        precision = 1 / ses
        if np.ptp(precision) == 0:
            return EggerTest(
                estimable=False, interpretation="All studies have the same precision; Egger's test is undefined"
            )

        standardized = effects / ses
        fit = stats.linregress(precision, standardized)
        df = len(effects) - 2
        intercept = float(fit.intercept)
        se_intercept = float(fit.intercept_stderr)
        # Rounding noise on an exact fit, relative to the size of the data
        tolerance = 1e-9 * max(1.0, float(np.abs(standardized).max()))
        if se_intercept > tolerance:
            t_statistic = intercept / se_intercept
            p_value = float(2 * stats.t.sf(abs(t_statistic), df))
        elif math.isclose(intercept, 0.0, abs_tol=tolerance):
            # Exact fit through the origin: perfectly symmetric funnel
            intercept = 0.0
            t_statistic = 0.0
            p_value = 1.0
        else:
            t_statistic = math.copysign(math.inf, intercept)
            p_value = 0.0

        return EggerTest(
            estimable=True,
            intercept=intercept,
            se_intercept=se_intercept,
            t_statistic=t_statistic,
            p_value=p_value,
            df=df,
            interpretation=_describe(p_value, "asymmetry"),
        )

    @staticmethod
    def begg_test(studies: Sequence[StudyEffect]) -> BeggTest:
        """
        Begg and Mazumdar's rank correlation test.

        Kendall's tau between the standardized deviates from the fixed-effect
        estimate and the study variances.
        """
        effects, ses = prepare_studies(studies)
        if len(effects) < MIN_STUDIES_FOR_TESTS:
            return BeggTest(estimable=False, interpretation="Insufficient studies (<3) for Begg's test")

        variances = ses**2
        weights = 1 / variances
        pooled = float(np.sum(weights * effects) / np.sum(weights))
        if np.allclose(effects, pooled, rtol=1e-9, atol=1e-12):
            return BeggTest(
                estimable=False, interpretation="All effects equal the pooled estimate; Begg's test is undefined"
            )

        deviates = (effects - pooled) / np.sqrt(variances - 1 / np.sum(weights))

        tau, p_value = stats.kendalltau(deviates, variances)
        if math.isnan(tau):
            return BeggTest(estimable=False, interpretation="Constant ranks; Begg's test is undefined")

        return BeggTest(
            estimable=True,
            tau=float(tau),
            p_value=float(p_value),
            interpretation=_describe(float(p_value), "correlation"),
        )

    @staticmethod
    def assess(studies: Sequence[StudyEffect], pooled_effect: float) -> PublicationBiasAssessment:
        """
        Run every publication bias check and combine them.

        Bias is flagged when either formal test has p < 0.10.

        Args:
            studies: Per-study effects with SE or 95% CI
            pooled_effect: Pooled estimate on the same scale as the effects

        Returns:
            PublicationBiasAssessment

        Raises:
            InsufficientDataError: If no studies are given
            InvalidDataError: If any study cannot be used
        """
        k = len(studies)
        if k == 0:
            raise InsufficientDataError("No studies provided for publication bias assessment")

        warnings: list[str] = []
        penalties: list[float] = []
        if k < 3:
            penalties.append(0.3)
            warnings.append("Very few studies (<3) - publication bias tests have low power")
        elif k < 10:
            penalties.append(0.1)
            warnings.append("Few studies (<10) - publication bias tests may have low power")

        egger = PublicationBiasDetector.egger_test(studies)
        begg = PublicationBiasDetector.begg_test(studies)
        asymmetry = PublicationBiasDetector.detect_asymmetry(studies, pooled_effect)

        egger_significant = egger.estimable and egger.p_value < BIAS_TEST_ALPHA
        begg_significant = begg.estimable and begg.p_value < BIAS_TEST_ALPHA

        level: Literal["low", "moderate", "high"] = "moderate"
        if egger_significant and begg_significant:
            bias_detected = True
            level = "high"
            interpretation = (
                "Both Egger's and Begg's tests suggest publication bias. Results should be interpreted with caution."
            )
        elif egger_significant or begg_significant:
            bias_detected = True
            interpretation = "One test suggests possible publication bias. Consider sensitivity analysis."
        else:
            bias_detected = False
            interpretation = (
                "No strong evidence of publication bias detected. "
                "However, absence of evidence is not evidence of absence."
            )

        if k < 10:
            level = "low"
            interpretation += " Note: Low power due to small number of studies."

        if egger_significant != begg_significant:
            penalties.append(0.1)
            warnings.append("Egger's and Begg's tests give conflicting results")

        logger.info(
            f"Publication bias: k={k}, egger_p={egger.p_value:.4f}, begg_p={begg.p_value:.4f}, "
            f"asymmetry={asymmetry.asymmetry_detected}"
        )

        return PublicationBiasAssessment(
            n_studies=k,
            pooled_effect=pooled_effect,
            asymmetry=asymmetry,
            egger=egger,
            begg=begg,
            funnel_points=PublicationBiasDetector.funnel_points(studies),
            bias_detected=bias_detected,
            assessment_confidence=level,
            interpretation=interpretation,
            confidence=heuristic_confidence(penalties),
            warnings=warnings,
        )
