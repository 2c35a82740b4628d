"""
Configuration Module for camera/LiDAR NID calibration

Provides centralized configuration management with YAML files and environment variable support.
"""

from .config_loader import Config, get_config
from .settings import (
    CalibrationSettings,
    CostConfig,
    HistogramConfig,
    OptimizerConfig,
    ProjectionConfig,
)

__all__ = [
    'Config',
    'get_config',
    'CalibrationSettings',
    'CostConfig',
    'HistogramConfig',
    'OptimizerConfig',
    'ProjectionConfig',
]
