"""Tests for input data models."""

import pytest
from pydantic import ValidationError

from metasynth.models import (
    BinaryOutcome,
    ContinuousOutcome,
    EffectMeasure,
    PoolingModel,
    StudyEffect,
    TreatmentComparison,
)


class TestEnums:
    """Tests for EffectMeasure and PoolingModel."""

    def test_effect_measure_values(self) -> None:
        """Test effect measure enum values."""
        assert [m.value for m in EffectMeasure] == ["OR", "RR", "RD", "MD", "SMD"]

    def test_ratio_measures(self) -> None:
        """Test only OR and RR are ratio measures."""
        assert EffectMeasure.OR.is_ratio is True
        assert EffectMeasure.RR.is_ratio is True
        assert EffectMeasure.RD.is_ratio is False
        assert EffectMeasure.SMD.is_ratio is False

    def test_binary_measures(self) -> None:
        """Test which measures need a 2x2 table."""
        assert EffectMeasure.RD.is_binary is True
        assert EffectMeasure.MD.is_binary is False

    def test_pooling_model_values(self) -> None:
        """Test pooling model enum values."""
        assert PoolingModel("fixed") == PoolingModel.FIXED
        assert PoolingModel("random") == PoolingModel.RANDOM
        assert PoolingModel("auto") == PoolingModel.AUTO


class TestBinaryOutcome:
    """Tests for BinaryOutcome."""

    def test_valid_table(self, binary_outcome: BinaryOutcome) -> None:
        """Test a valid table has no errors."""
        assert binary_outcome.validation_errors() == []
        assert binary_outcome.non_events_treatment == 85
        assert binary_outcome.has_zero_cell() is False

    def test_fractional_counts_rejected(self) -> None:
        """Test non-integer counts are reported."""
        data = BinaryOutcome(events_treatment=2.5, total_treatment=10, events_control=1, total_control=10)
        assert data.validation_errors() == ["Events in treatment group must be an integer"]

    def test_whole_floats_accepted(self) -> None:
        """Test counts given as whole floats are accepted."""
        data = BinaryOutcome(events_treatment=2.0, total_treatment=10.0, events_control=1, total_control=10)
        assert data.validation_errors() == []

    def test_swapped(self, binary_outcome: BinaryOutcome) -> None:
        """Test swapping exchanges the arms."""
        swapped = binary_outcome.swapped()
        assert swapped.events_treatment == 30
        assert swapped.events_control == 15

    def test_frozen(self, binary_outcome: BinaryOutcome) -> None:
        """Test tables are immutable."""
        with pytest.raises(ValidationError):
            binary_outcome.events_treatment = 1  # type: ignore[misc]


class TestContinuousOutcome:
    """Tests for ContinuousOutcome."""

    def test_multiple_errors(self) -> None:
        """Test every violation is reported."""
        data = ContinuousOutcome(mean_t=1.0, sd_t=-1.0, n_t=0, mean_c=1.0, sd_c=0.0, n_c=10)
        errors = data.validation_errors()
        assert "SD in treatment group cannot be negative" in errors
        assert "Sample size in treatment group must be positive" in errors
        assert "SD in control group cannot be zero" in errors

    def test_non_finite_mean(self) -> None:
        """Test NaN means are rejected."""
        data = ContinuousOutcome(mean_t=float("nan"), sd_t=1.0, n_t=10, mean_c=1.0, sd_c=1.0, n_c=10)
        assert data.validation_errors() == ["Mean in treatment group must be finite"]


class TestStudyEffect:
    """Tests for StudyEffect."""

    def test_resolved_se_direct(self) -> None:
        """Test a given SE is used as is."""
        assert StudyEffect(study_id="S", effect=0.1, standard_error=0.3).resolved_se() == 0.3

    def test_resolved_se_from_ci(self) -> None:
        """Test SE is (upper - lower) / 3.92."""
        study = StudyEffect(study_id="S", effect=0.0, ci_lower=-0.392, ci_upper=0.392)
        assert study.resolved_se() == pytest.approx(0.2)

    def test_resolved_se_without_uncertainty(self) -> None:
        """Test a study with neither SE nor CI raises ValueError."""
        with pytest.raises(ValueError, match="no standard error or confidence interval"):
            StudyEffect(study_id="S", effect=0.1).resolved_se()

    def test_label_in_errors(self) -> None:
        """Test errors name the study."""
        study = StudyEffect(study_id="Smith 2020", effect=0.1)
        assert study.validation_errors() == [
            "Study Smith 2020: Must provide either standard_error or confidence interval"
        ]

    def test_zero_width_interval(self) -> None:
        """Test a zero-width CI without SE is rejected."""
        study = StudyEffect(study_id="S", effect=0.1, ci_lower=0.1, ci_upper=0.1)
        assert len(study.validation_errors()) == 1


class TestTreatmentComparison:
    """Tests for TreatmentComparison."""

    def test_involves_either_direction(self) -> None:
        """Test involves ignores arm order."""
        comp = TreatmentComparison(study_id="1", treatment_a="A", treatment_b="B", effect=0.2, standard_error=0.1)
        assert comp.involves("A", "B") is True
        assert comp.involves("B", "A") is True
        assert comp.involves("A", "C") is False

    def test_reversed(self) -> None:
        """Test reversing swaps arms and negates the effect."""
        comp = TreatmentComparison(study_id="1", treatment_a="A", treatment_b="B", effect=0.2, standard_error=0.1)
        rev = comp.reversed()
        assert (rev.treatment_a, rev.treatment_b, rev.effect) == ("B", "A", -0.2)
        assert rev.standard_error == 0.1
        assert rev.study_id == "1"
