"""Pytest fixtures for metasynth tests."""

from collections.abc import Generator

import pytest

from metasynth import config
from metasynth.models import BinaryOutcome, ContinuousOutcome, StudyEffect, TreatmentComparison


@pytest.fixture(autouse=True)
def reset_config(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Clear the global config and METASYNTH_* variables around each test."""
    for name in (
        "METASYNTH_POOLING_MODEL",
        "METASYNTH_BINARY_MEASURE",
        "METASYNTH_CONTINUOUS_MEASURE",
        "METASYNTH_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    config._config = None
    yield
    config._config = None


@pytest.fixture
def binary_outcome() -> BinaryOutcome:
    """A 2x2 table with fewer events in the treatment arm."""
    return BinaryOutcome(events_treatment=15, total_treatment=100, events_control=30, total_control=100)


@pytest.fixture
def continuous_outcome() -> ContinuousOutcome:
    """Group summaries with a one-SD difference in means."""
    return ContinuousOutcome(mean_t=10.0, sd_t=2.0, n_t=50, mean_c=8.0, sd_c=2.0, n_c=50)


@pytest.fixture
def two_smd_studies() -> list[StudyEffect]:
    """Two SMD studies with moderate disagreement."""
    return [
        StudyEffect(study_id="Smith 2020", effect=0.5, standard_error=0.1, sample_size=120),
        StudyEffect(study_id="Jones 2021", effect=0.2, standard_error=0.15, sample_size=80),
    ]


@pytest.fixture
def homogeneous_studies() -> list[StudyEffect]:
    """Five studies that agree closely (Q < df)."""
    return [
        StudyEffect(study_id="S1", effect=0.30, standard_error=0.10),
        StudyEffect(study_id="S2", effect=0.32, standard_error=0.12),
        StudyEffect(study_id="S3", effect=0.28, standard_error=0.15),
        StudyEffect(study_id="S4", effect=0.31, standard_error=0.11),
        StudyEffect(study_id="S5", effect=0.29, standard_error=0.20),
    ]


@pytest.fixture
def heterogeneous_studies() -> list[StudyEffect]:
    """Five studies with widely differing effects."""
    return [
        StudyEffect(study_id="S1", effect=0.1, standard_error=0.1),
        StudyEffect(study_id="S2", effect=0.9, standard_error=0.1),
        StudyEffect(study_id="S3", effect=0.4, standard_error=0.1),
        StudyEffect(study_id="S4", effect=1.3, standard_error=0.1),
        StudyEffect(study_id="S5", effect=-0.2, standard_error=0.1),
    ]


@pytest.fixture
def consistent_triangle() -> list[TreatmentComparison]:
    """A-B-C loop where AB + BC == AC."""
    return [
        TreatmentComparison(study_id="T1", treatment_a="A", treatment_b="B", effect=0.5, standard_error=0.1),
        TreatmentComparison(study_id="T2", treatment_a="B", treatment_b="C", effect=0.3, standard_error=0.1),
        TreatmentComparison(study_id="T3", treatment_a="A", treatment_b="C", effect=0.8, standard_error=0.1),
    ]


@pytest.fixture
def inconsistent_triangle() -> list[TreatmentComparison]:
    """A-B-C loop where the direct A-C effect is far from AB + BC."""
    return [
        TreatmentComparison(study_id="T1", treatment_a="A", treatment_b="B", effect=0.5, standard_error=0.1),
        TreatmentComparison(study_id="T2", treatment_a="B", treatment_b="C", effect=0.3, standard_error=0.1),
        TreatmentComparison(study_id="T3", treatment_a="A", treatment_b="C", effect=3.0, standard_error=0.1),
    ]
