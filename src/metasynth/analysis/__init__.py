"""Statistical meta-analysis engine."""

from metasynth.analysis.effect_sizes import EffectEstimate, EffectSizeCalculator
from metasynth.analysis.heterogeneity import (
    HeterogeneityAnalyzer,
    HeterogeneityAssessment,
    HeterogeneityStats,
    PredictionInterval,
)
from metasynth.analysis.network import (
    ConsistencyReport,
    DirectEstimate,
    GlobalInconsistency,
    Loop,
    NetworkConsistencyChecker,
    NodeSplit,
)
from metasynth.analysis.pooling import PooledResult, Pooler, StudyWeight
from metasynth.analysis.publication_bias import (
    AsymmetryResult,
    BeggTest,
    EggerTest,
    FunnelPoint,
    PublicationBiasAssessment,
    PublicationBiasDetector,
)

__all__ = [
    # Effect sizes
    "EffectEstimate",
    "EffectSizeCalculator",
    # Heterogeneity
    "HeterogeneityAnalyzer",
    "HeterogeneityAssessment",
    "HeterogeneityStats",
    "PredictionInterval",
    # Pooling
    "PooledResult",
    "Pooler",
    "StudyWeight",
    # Publication bias
    "AsymmetryResult",
    "BeggTest",
    "EggerTest",
    "FunnelPoint",
    "PublicationBiasAssessment",
    "PublicationBiasDetector",
    # Network consistency
    "ConsistencyReport",
    "DirectEstimate",
    "GlobalInconsistency",
    "Loop",
    "NetworkConsistencyChecker",
    "NodeSplit",
]
