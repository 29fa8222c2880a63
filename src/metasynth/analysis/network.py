"""Consistency checks for network meta-analysis.

Consistency means that direct and indirect evidence about a treatment
comparison agree. This module provides:
- Triangle loop discovery and loop inconsistency factors
- Node-splitting (direct vs indirect evidence for each compared pair)
- A global chi-square inconsistency test with severity classification

Comparisons are treated as independent two-arm contrasts on an additive scale
(log OR, MD, ...); the effect of a comparison (a, b) is d_b - d_a.

Loop discovery enumerates every triple of treatments, which is cubic in the
number of distinct treatments. That is fine for typical networks of tens of
treatments but becomes slow beyond roughly 100.

References:
- Bucher et al. (1997) The results of direct and indirect treatment comparisons
- Dias et al. (2010) Checking consistency in mixed treatment comparison meta-analysis
- Higgins et al. (2012) Consistency and inconsistency in network meta-analysis
"""

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from itertools import combinations
from typing import Literal

import numpy as np

from metasynth.analysis.confidence import heuristic_confidence
from metasynth.analysis.pvalues import chi_square_p, two_tailed_p
from metasynth.exceptions import InsufficientDataError, InvalidDataError
from metasynth.models import TreatmentComparison

logger = logging.getLogger(__name__)

# Per-loop and node-split tests
LOCAL_INCONSISTENCY_ALPHA = 0.10
GLOBAL_INCONSISTENCY_ALPHA = 0.05
LARGE_NETWORK_TREATMENTS = 100

Severity = Literal["none", "mild", "moderate", "severe"]


@dataclass(frozen=True)
class DirectEstimate:
    """Direct evidence for treatment_b versus treatment_a."""

    treatment_a: str
    treatment_b: str
    effect: float
    standard_error: float
    n_comparisons: int = 1


@dataclass(frozen=True)
class Loop:
    """A closed triangle (a, b, c) with its inconsistency factor."""

    treatments: tuple[str, str, str]
    direct_comparisons: list[DirectEstimate]  # (a, b), (b, c), (a, c)
    inconsistency_factor: float  # (ab + bc) - ac, zero under consistency
    se_inconsistency: float
    z_score: float
    p_value: float
    is_inconsistent: bool


@dataclass(frozen=True)
class NodeSplit:
    """Direct against indirect evidence for one treatment pair."""

    treatment_a: str
    treatment_b: str
    direct_estimate: float
    direct_se: float
    n_direct: int
    estimable: bool  # False when the pair is only connected through its own direct evidence
    indirect_estimate: float | None = None
    indirect_se: float | None = None
    difference: float | None = None  # direct - indirect
    se_difference: float | None = None
    z_score: float | None = None
    p_value: float | None = None
    is_inconsistent: bool = False


@dataclass(frozen=True)
class GlobalInconsistency:
    chi_square: float
    df: int
    p_value: float
    is_inconsistent: bool


@dataclass(frozen=True)
class ConsistencyReport:
    """Network consistency assessment."""

    n_comparisons: int
    n_treatments: int
    loops: list[Loop]
    node_splits: list[NodeSplit]
    global_inconsistency: GlobalInconsistency
    inconsistency_detected: bool
    severity: Severity
    interpretation: str
    assessable: bool  # False when the network has no closed loops
    recommendations: list[str] = field(default_factory=list)
    confidence: float = 0.7  # Heuristic, see metasynth.analysis.confidence
    warnings: list[str] = field(default_factory=list)

    @property
    def n_loops(self) -> int:
        return len(self.loops)


def _adjacency(comparisons: Sequence[TreatmentComparison]) -> dict[str, set[str]]:
    adjacency: dict[str, set[str]] = {}
    for comp in comparisons:
        adjacency.setdefault(comp.treatment_a, set()).add(comp.treatment_b)
        adjacency.setdefault(comp.treatment_b, set()).add(comp.treatment_a)
    return adjacency


def _component(start: str, adjacency: dict[str, set[str]]) -> set[str]:
    """Treatments reachable from start."""
    seen = {start}
    stack = [start]
    while stack:
        node = stack.pop()
        for neighbour in adjacency.get(node, ()):
            if neighbour not in seen:
                seen.add(neighbour)
                stack.append(neighbour)
    return seen


class NetworkConsistencyChecker:
    """Checks agreement between direct and indirect evidence in a treatment network."""

    @staticmethod
    def _validate(comparisons: Sequence[TreatmentComparison]) -> None:
        if len(comparisons) == 0:
            raise InsufficientDataError("No comparisons provided for consistency assessment")
        errors: list[str] = []
        for i, comp in enumerate(comparisons, start=1):
            errors.extend(comp.validation_errors(label=comp.study_id or str(i)))
        if errors:
            raise InvalidDataError(errors, context="Invalid treatment comparisons")

    @staticmethod
    def find_loops(comparisons: Sequence[TreatmentComparison]) -> list[tuple[str, str, str]]:
        """
        Find every closed triangle of treatments.

        Args:
            comparisons: Direct comparisons forming the network

        Returns:
            Sorted (a, b, c) triples where a-b, b-c and a-c are all compared directly
        """
        adjacency = _adjacency(comparisons)
        treatments = sorted(adjacency)
        if len(treatments) > LARGE_NETWORK_TREATMENTS:
            logger.warning(
                f"Triangle enumeration over {len(treatments)} treatments is cubic and may be slow"
            )

        return [
            (a, b, c)
            for a, b, c in combinations(treatments, 3)
            if b in adjacency[a] and c in adjacency[b] and c in adjacency[a]
        ]

    @staticmethod
    def get_effect_size(
        comparisons: Sequence[TreatmentComparison], treatment_x: str, treatment_y: str
    ) -> DirectEstimate | None:
        """
        Direct estimate of treatment_y versus treatment_x.

        Comparisons stored as (y, x) are negated so that
        effect(x, y) == -effect(y, x). Several direct comparisons of the same
        pair are combined by inverse-variance weighting.

        Returns:
            DirectEstimate, or None when the pair was never compared directly
        """
        direct = [c for c in comparisons if c.involves(treatment_x, treatment_y)]
        if not direct:
            return None

        effects = np.array([c.effect if c.treatment_a == treatment_x else -c.effect for c in direct])
        weights = np.array([1 / c.standard_error**2 for c in direct])
        total = float(np.sum(weights))
        return DirectEstimate(
            treatment_a=treatment_x,
            treatment_b=treatment_y,
            effect=float(np.sum(weights * effects) / total),
            standard_error=math.sqrt(1 / total),
            n_comparisons=len(direct),
        )

    @staticmethod
    def loop_inconsistency(
        loop: tuple[str, str, str], comparisons: Sequence[TreatmentComparison]
    ) -> Loop | None:
        """
        Inconsistency factor for a triangle (a, b, c).

        The factor (ab + bc) - ac is zero when the loop is consistent. It is
        flagged at p < 0.10.
        """
        a, b, c = loop
        ab = NetworkConsistencyChecker.get_effect_size(comparisons, a, b)
        bc = NetworkConsistencyChecker.get_effect_size(comparisons, b, c)
        ac = NetworkConsistencyChecker.get_effect_size(comparisons, a, c)
        if ab is None or bc is None or ac is None:
            return None

        factor = (ab.effect + bc.effect) - ac.effect
        se = math.sqrt(ab.standard_error**2 + bc.standard_error**2 + ac.standard_error**2)
        z = factor / se
        p_value = two_tailed_p(z)

        return Loop(
            treatments=loop,
            direct_comparisons=[ab, bc, ac],
            inconsistency_factor=factor,
            se_inconsistency=se,
            z_score=z,
            p_value=p_value,
            is_inconsistent=p_value < LOCAL_INCONSISTENCY_ALPHA,
        )

    @staticmethod
    def indirect_estimate(
        comparisons: Sequence[TreatmentComparison], treatment_x: str, treatment_y: str
    ) -> tuple[float, float] | None:
        """
        Indirect estimate of treatment_y versus treatment_x from the rest of the network.

        Every direct x-y comparison is removed and a fixed-effect consistency
        model is fitted to what remains by weighted least squares, with x as
        the reference treatment. The estimate is the fitted d_y and its SE
        comes from the inverse information matrix.

        Returns:
            (estimate, standard_error), or None when x and y are not connected
            without their direct evidence
        """
        remaining = [c for c in comparisons if not c.involves(treatment_x, treatment_y)]
        component = _component(treatment_x, _adjacency(remaining))
        if treatment_y not in component:
            return None

        rows = [c for c in remaining if c.treatment_a in component]
        params = sorted(component - {treatment_x})
        index = {t: i for i, t in enumerate(params)}

        design = np.zeros((len(rows), len(params)))
        for r, comp in enumerate(rows):
            if comp.treatment_b != treatment_x:
                design[r, index[comp.treatment_b]] += 1
            if comp.treatment_a != treatment_x:
                design[r, index[comp.treatment_a]] -= 1
        y = np.array([c.effect for c in rows])
        w = np.array([1 / c.standard_error**2 for c in rows])

        information = design.T @ (w[:, None] * design)
        covariance = np.linalg.inv(information)
        beta = covariance @ (design.T @ (w * y))

        i = index[treatment_y]
        return float(beta[i]), math.sqrt(float(covariance[i, i]))

    @staticmethod
    def node_split(
        treatment_x: str, treatment_y: str, comparisons: Sequence[TreatmentComparison]
    ) -> NodeSplit | None:
        """
        Compare direct and indirect evidence for treatment_y versus treatment_x.

        Returns:
            NodeSplit (not estimable when no indirect path exists), or None
            when the pair has no direct evidence
        """
        direct = NetworkConsistencyChecker.get_effect_size(comparisons, treatment_x, treatment_y)
        if direct is None:
            return None

        indirect = NetworkConsistencyChecker.indirect_estimate(comparisons, treatment_x, treatment_y)
        if indirect is None:
            return NodeSplit(
                treatment_a=treatment_x,
                treatment_b=treatment_y,
                direct_estimate=direct.effect,
                direct_se=direct.standard_error,
                n_direct=direct.n_comparisons,
                estimable=False,
            )

        indirect_effect, indirect_se = indirect
        difference = direct.effect - indirect_effect
        se_difference = math.sqrt(direct.standard_error**2 + indirect_se**2)
        z = difference / se_difference
        p_value = two_tailed_p(z)

        return NodeSplit(
            treatment_a=treatment_x,
            treatment_b=treatment_y,
            direct_estimate=direct.effect,
            direct_se=direct.standard_error,
            n_direct=direct.n_comparisons,
            estimable=True,
            indirect_estimate=indirect_effect,
            indirect_se=indirect_se,
            difference=difference,
            se_difference=se_difference,
            z_score=z,
            p_value=p_value,
            is_inconsistent=p_value < LOCAL_INCONSISTENCY_ALPHA,
        )

    @staticmethod
    def global_test(loops: Sequence[Loop]) -> GlobalInconsistency:
        """Chi-square test on the sum of squared loop z-scores, flagged at p < 0.05."""
        chi_square = float(sum(loop.z_score**2 for loop in loops))
        df = len(loops)
        p_value = chi_square_p(chi_square, df)
        return GlobalInconsistency(
            chi_square=chi_square,
            df=df,
            p_value=p_value,
            is_inconsistent=p_value < GLOBAL_INCONSISTENCY_ALPHA,
        )

    @staticmethod
    def classify_severity(loops: Sequence[Loop], global_result: GlobalInconsistency) -> Severity:
        """Severity from the share of inconsistent loops."""
        n_inconsistent = sum(1 for loop in loops if loop.is_inconsistent)
        if n_inconsistent == 0 and not global_result.is_inconsistent:
            return "none"

        proportion = n_inconsistent / max(len(loops), 1)
        if proportion > 0.5:
            return "severe"
        if proportion > 0.25:
            return "moderate"
        return "mild"

    @staticmethod
    def assess(comparisons: Sequence[TreatmentComparison]) -> ConsistencyReport:
        """
        Assess consistency of a treatment network.

        Args:
            comparisons: Direct treatment comparisons from all studies

        Returns:
            ConsistencyReport. A network without closed loops gives an empty
            loop list and a warning, since inconsistency cannot be assessed.

        Raises:
            InsufficientDataError: If no comparisons are given
            InvalidDataError: If any comparison is malformed
        """
        NetworkConsistencyChecker._validate(comparisons)
        warnings: list[str] = []
        recommendations: list[str] = []

        loops = [
            result
            for triangle in NetworkConsistencyChecker.find_loops(comparisons)
            if (result := NetworkConsistencyChecker.loop_inconsistency(triangle, comparisons)) is not None
        ]

        node_splits: list[NodeSplit] = []
        seen_pairs: set[frozenset[str]] = set()
        for comp in comparisons:
            pair = frozenset((comp.treatment_a, comp.treatment_b))
            if pair in seen_pairs:
                continue
            seen_pairs.add(pair)
            split = NetworkConsistencyChecker.node_split(comp.treatment_a, comp.treatment_b, comparisons)
            if split is not None:
                node_splits.append(split)

        global_result = NetworkConsistencyChecker.global_test(loops)
        severity = NetworkConsistencyChecker.classify_severity(loops, global_result)
        detected = severity != "none"

        interpretation = {
            "none": "No significant inconsistency detected. Direct and indirect evidence appear to agree.",
            "mild": "Mild inconsistency detected in some loops. Results should be interpreted with some caution.",
            "moderate": "Moderate inconsistency detected. Consider investigating sources of inconsistency.",
            "severe": "Severe inconsistency detected. Network meta-analysis results may be unreliable.",
        }[severity]

        if not loops:
            warnings.append("No closed loops detected - cannot assess inconsistency")
            recommendations.append("Network has no triangular loops; inconsistency assessment not possible")
            interpretation = "Inconsistency could not be assessed because the network has no closed loops."

        if detected:
            recommendations.append("Investigate potential effect modifiers or biases")
            recommendations.append("Consider subgroup analyses or meta-regression")
            recommendations.append("Examine study characteristics for inconsistent comparisons")

        if severity == "severe":
            recommendations.append("Consider excluding inconsistent studies or using alternative models")
            warnings.append("Severe inconsistency - network meta-analysis may not be appropriate")

        split_flags = [s for s in node_splits if s.is_inconsistent]
        if split_flags:
            pairs = ", ".join(f"{s.treatment_a} vs {s.treatment_b}" for s in split_flags)
            warnings.append(f"Node-splitting flags direct/indirect disagreement for: {pairs}")

        penalties: list[float] = []
        if not loops:
            penalties.append(0.3)
        elif len(loops) < 3:
            penalties.append(0.1)
            warnings.append("Few loops detected - inconsistency assessment has limited power")
        if severity == "severe":
            penalties.append(0.2)

        treatments = {t for c in comparisons for t in (c.treatment_a, c.treatment_b)}
        logger.info(
            f"Network consistency: {len(treatments)} treatments, {len(loops)} loops, "
            f"severity={severity}, global p={global_result.p_value:.4f}"
        )

        return ConsistencyReport(
            n_comparisons=len(comparisons),
            n_treatments=len(treatments),
            loops=loops,
            node_splits=node_splits,
            global_inconsistency=global_result,
            inconsistency_detected=detected,
            severity=severity,
            interpretation=interpretation,
            assessable=bool(loops),
            recommendations=recommendations,
            confidence=heuristic_confidence(penalties),
            warnings=warnings,
        )
