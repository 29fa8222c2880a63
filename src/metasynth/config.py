"""Configuration management for the metasynth command line."""

import os

from pydantic import BaseModel, Field

from metasynth.models import EffectMeasure, PoolingModel


class AnalysisConfig(BaseModel):
    """Defaults used by the CLI when a command does not specify them.

    The statistical thresholds of the engine are fixed constants and are not
    configurable here.
    """

    default_pooling_model: PoolingModel = Field(default=PoolingModel.AUTO)
    default_binary_measure: EffectMeasure = Field(default=EffectMeasure.OR)
    default_continuous_measure: EffectMeasure = Field(default=EffectMeasure.SMD)
    log_level: str = "INFO"

    def __init__(self, **data: object) -> None:
        # Environment variables fill in anything not passed explicitly
        env = {
            "default_pooling_model": os.environ.get("METASYNTH_POOLING_MODEL"),
            "default_binary_measure": os.environ.get("METASYNTH_BINARY_MEASURE"),
            "default_continuous_measure": os.environ.get("METASYNTH_CONTINUOUS_MEASURE"),
            "log_level": os.environ.get("METASYNTH_LOG_LEVEL"),
        }
        for key, value in env.items():
            if key not in data and value:
                data[key] = value.lower() if key == "default_pooling_model" else value.upper()
        super().__init__(**data)


# Global config instance
_config: AnalysisConfig | None = None


def get_config() -> AnalysisConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = AnalysisConfig()
    return _config


def set_config(config: AnalysisConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
