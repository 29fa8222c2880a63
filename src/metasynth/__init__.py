"""Meta-analysis engine for systematic reviews."""

from metasynth.analysis import (
    EffectEstimate,
    EffectSizeCalculator,
    HeterogeneityAnalyzer,
    NetworkConsistencyChecker,
    PooledResult,
    Pooler,
    PublicationBiasDetector,
)
from metasynth.exceptions import InsufficientDataError, InvalidDataError, MetaAnalysisError
from metasynth.models import (
    BinaryOutcome,
    ContinuousOutcome,
    EffectMeasure,
    PoolingModel,
    StudyEffect,
    TreatmentComparison,
)

__version__ = "0.1.0"

__all__ = [
    "BinaryOutcome",
    "ContinuousOutcome",
    "EffectEstimate",
    "EffectMeasure",
    "EffectSizeCalculator",
    "HeterogeneityAnalyzer",
    "InsufficientDataError",
    "InvalidDataError",
    "MetaAnalysisError",
    "NetworkConsistencyChecker",
    "PooledResult",
    "Pooler",
    "PoolingModel",
    "PublicationBiasDetector",
    "StudyEffect",
    "TreatmentComparison",
]
