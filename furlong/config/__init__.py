"""Configuration for Furlong."""

from furlong.config.pipeline import ModelSpec, PipelineConfig
from furlong.config.settings import Settings, get_settings

__all__ = ["ModelSpec", "PipelineConfig", "Settings", "get_settings"]
