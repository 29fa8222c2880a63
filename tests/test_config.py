"""Tests for configuration management."""

import pytest

from metasynth.config import AnalysisConfig, get_config, set_config
from metasynth.models import EffectMeasure, PoolingModel


class TestAnalysisConfig:
    """Tests for AnalysisConfig."""

    def test_defaults(self) -> None:
        """Test defaults without environment variables."""
        config = AnalysisConfig()
        assert config.default_pooling_model == PoolingModel.AUTO
        assert config.default_binary_measure == EffectMeasure.OR
        assert config.default_continuous_measure == EffectMeasure.SMD
        assert config.log_level == "INFO"

    def test_environment_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test METASYNTH_* variables fill in defaults."""
        monkeypatch.setenv("METASYNTH_POOLING_MODEL", "Random")
        monkeypatch.setenv("METASYNTH_BINARY_MEASURE", "rr")
        monkeypatch.setenv("METASYNTH_CONTINUOUS_MEASURE", "md")
        monkeypatch.setenv("METASYNTH_LOG_LEVEL", "debug")
        config = AnalysisConfig()
        assert config.default_pooling_model == PoolingModel.RANDOM
        assert config.default_binary_measure == EffectMeasure.RR
        assert config.default_continuous_measure == EffectMeasure.MD
        assert config.log_level == "DEBUG"

    def test_explicit_values_win(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test keyword arguments take precedence over the environment."""
        monkeypatch.setenv("METASYNTH_POOLING_MODEL", "random")
        config = AnalysisConfig(default_pooling_model=PoolingModel.FIXED)
        assert config.default_pooling_model == PoolingModel.FIXED


class TestGlobalConfig:
    """Tests for the global config instance."""

    def test_get_config_cached(self) -> None:
        """Test get_config returns the same instance."""
        assert get_config() is get_config()

    def test_set_config(self) -> None:
        """Test set_config replaces the global instance."""
        config = AnalysisConfig(log_level="WARNING")
        set_config(config)
        assert get_config() is config
