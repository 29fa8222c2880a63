"""Tests for heterogeneity statistics."""

import pytest

from metasynth.analysis.heterogeneity import HeterogeneityAnalyzer
from metasynth.analysis.pooling import Pooler
from metasynth.exceptions import InsufficientDataError
from metasynth.models import PoolingModel, StudyEffect


class TestCompute:
    """Tests for Q, I² and τ²."""

    def test_equal_weights(self) -> None:
        """Test Q and τ² for equally precise studies."""
        stats = HeterogeneityAnalyzer.compute([0.1, 0.9, 0.4, 1.3, -0.2], [0.1] * 5)
        assert stats.fixed_effect == pytest.approx(0.5)
        assert stats.q == pytest.approx(146.0)
        assert stats.df == 4
        assert stats.i_squared == pytest.approx(142 / 146 * 100)
        assert stats.tau_squared == pytest.approx(142 / 400)

    def test_no_excess_variation(self) -> None:
        """Test identical effects give Q = 0 and I² = 0."""
        stats = HeterogeneityAnalyzer.compute([0.3, 0.3, 0.3], [0.1, 0.2, 0.3])
        assert stats.q == pytest.approx(0.0)
        assert stats.i_squared == 0.0
        assert stats.tau_squared == 0.0

    def test_outlier_increases_i_squared(self, homogeneous_studies: list[StudyEffect]) -> None:
        """Test adding a discordant study raises I²."""
        base = [s.effect for s in homogeneous_studies]
        ses = [s.standard_error for s in homogeneous_studies]
        before = HeterogeneityAnalyzer.compute(base, ses)
        after = HeterogeneityAnalyzer.compute([*base, 1.5], [*ses, 0.1])
        assert after.i_squared > before.i_squared
        assert after.tau_squared > 0


class TestInterpretISquared:
    """Tests for the Cochrane I² bands."""

    @pytest.mark.parametrize(
        ("i_squared", "band"),
        [
            (0.0, "low"),
            (24.9, "low"),
            (25.0, "moderate"),
            (49.9, "moderate"),
            (50.0, "substantial"),
            (74.9, "substantial"),
            (75.0, "considerable"),
            (100.0, "considerable"),
        ],
    )
    def test_bands(self, i_squared: float, band: str) -> None:
        """Test each band boundary."""
        assert HeterogeneityAnalyzer.interpret_i_squared(i_squared) == band


class TestAssess:
    """Tests for the full heterogeneity assessment."""

    def test_single_study(self) -> None:
        """Test one study cannot be assessed."""
        result = HeterogeneityAnalyzer.assess([StudyEffect(study_id="Only", effect=0.3, standard_error=0.1)])
        assert result.n_studies == 1
        assert result.i_squared == 0.0
        assert result.prediction_interval is None
        assert result.confidence == pytest.approx(0.5)
        assert "Only one study - heterogeneity cannot be assessed" in result.warnings

    def test_empty_raises(self) -> None:
        """Test no studies raises InsufficientDataError."""
        with pytest.raises(InsufficientDataError):
            HeterogeneityAnalyzer.assess([])

    def test_considerable_heterogeneity(self, heterogeneous_studies: list[StudyEffect]) -> None:
        """Test widely differing studies recommend random effects."""
        result = HeterogeneityAnalyzer.assess(heterogeneous_studies)
        assert result.i_squared_interpretation == "considerable"
        assert result.recommended_model == PoolingModel.RANDOM
        assert result.q_p_value < 0.05
        assert result.tau == pytest.approx(result.tau_squared**0.5)
        assert result.h_squared == pytest.approx(146.0 / 4)
        assert "Random-effects model is strongly recommended" in result.interpretation

    def test_prediction_interval(self, heterogeneous_studies: list[StudyEffect]) -> None:
        """Test the prediction interval is centred on the random-effects mean."""
        result = HeterogeneityAnalyzer.assess(heterogeneous_studies)
        pi = result.prediction_interval
        assert pi is not None
        assert result.pooled_effect == pytest.approx(0.5)
        assert (pi.lower + pi.upper) / 2 == pytest.approx(0.5)
        assert pi.upper - pi.lower > 2 * 1.96 * result.tau

    def test_two_studies_no_prediction_interval(self, two_smd_studies: list[StudyEffect]) -> None:
        """Test the prediction interval needs at least three studies."""
        result = HeterogeneityAnalyzer.assess(two_smd_studies)
        assert result.prediction_interval is None
        assert "Prediction interval requires at least 3 studies" in result.warnings
        assert "Very few studies (<3) - heterogeneity estimates may be unreliable" in result.warnings

    def test_homogeneous(self, homogeneous_studies: list[StudyEffect]) -> None:
        """Test agreeing studies recommend fixed effect."""
        result = HeterogeneityAnalyzer.assess(homogeneous_studies)
        assert result.i_squared_interpretation == "low"
        assert result.recommended_model == PoolingModel.FIXED
        assert result.tau_squared == 0.0
        assert result.h_squared == 1.0
        assert "Fixed-effect model is appropriate" in result.interpretation

    def test_matches_pooling(self, two_smd_studies: list[StudyEffect]) -> None:
        """Test assessment and pooling agree on I² and τ²."""
        result = HeterogeneityAnalyzer.assess(two_smd_studies)
        pooled = Pooler.pool_fixed(two_smd_studies)
        assert result.i_squared == pooled.heterogeneity.i_squared
        assert result.tau_squared == pooled.heterogeneity.tau_squared

    def test_high_i_squared_with_non_significant_q(self, two_smd_studies: list[StudyEffect]) -> None:
        """Test the low-power warning for two disagreeing studies."""
        result = HeterogeneityAnalyzer.assess(two_smd_studies)
        assert result.q_p_value >= 0.05
        assert any(w.startswith("I² suggests heterogeneity but Q test is not significant") for w in result.warnings)
