"""Configuration loading and validation."""

from .models import (
    SystemConfig,
    SegmentationConfig,
    ExportConfig,
    PromptConfig,
)
from .loader import ConfigLoader, ConfigLoadError, ConfigValidationError

__all__ = [
    "SystemConfig",
    "SegmentationConfig",
    "ExportConfig",
    "PromptConfig",
    "ConfigLoader",
    "ConfigLoadError",
    "ConfigValidationError",
]
