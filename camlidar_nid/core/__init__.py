"""
Core Module for camera/LiDAR NID calibration

Contains core infrastructure components: exceptions and logging.
"""

from .exceptions import (
    CalibrationException,
    ConfigurationError,
    DegenerateSampleError,
    NumericalDegeneracyError,
    ManifoldConstraintViolation,
    OptimizationError,
)
from .logging_config import setup_logging, get_logger, get_run_id

__all__ = [
    'CalibrationException',
    'ConfigurationError',
    'DegenerateSampleError',
    'NumericalDegeneracyError',
    'ManifoldConstraintViolation',
    'OptimizationError',
    'setup_logging',
    'get_logger',
    'get_run_id',
]
