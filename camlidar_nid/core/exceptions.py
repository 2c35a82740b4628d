"""
Calibration exception hierarchy.

Every domain error derives from CalibrationException and carries the steps a
user can take to fix it plus a `details` dict for logs. Subclasses declare
their default resolution steps in DEFAULT_STEPS.

Per-frame problems (DegenerateSampleError, NumericalDegeneracyError) are
caught by the cost function and turned into skipped frames; configuration
problems propagate to the CLI, which exits with a configuration error code.

Usage:
    from camlidar_nid.core.exceptions import ConfigurationError

    raise ConfigurationError(
        field="intrinsics.camera_matrix",
        message="Camera matrix must be 3x3"
    )
"""

from typing import Any, Dict, List, Optional


class CalibrationException(Exception):
    """Base class: message, resolution steps and structured details."""

    DEFAULT_STEPS: List[str] = []

    def __init__(
        self,
        message: str,
        resolution_steps: Optional[List[str]] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.resolution_steps = list(resolution_steps or self.DEFAULT_STEPS)
        self.details = details or {}

    def __str__(self) -> str:
        return self.message

    def get_user_message(self) -> str:
        """Message followed by a numbered list of resolution steps."""
        if not self.resolution_steps:
            return self.message
        steps = "".join(f"  {i}. {step}\n" for i, step in enumerate(self.resolution_steps, 1))
        return f"{self.message}\n\nPossible solutions:\n{steps}"


class ConfigurationError(CalibrationException):
    """
    Invalid session configuration, settings or input artifacts.

    Always raised before optimization starts.
    """

    DEFAULT_STEPS = [
        "Review the session configuration file",
        "Check that every image and point cloud path exists",
        "Verify the intrinsics (camera_matrix, image_size)",
        "Ensure values are within valid ranges",
    ]

    def __init__(
        self,
        field: str = "",
        value: str = "",
        message: str = "Invalid configuration",
        resolution_steps: Optional[List[str]] = None
    ):
        super().__init__(message, resolution_steps, {"field": field, "value": value})
        self.field = field
        self.value = value


class DegenerateSampleError(CalibrationException):
    """
    A frame yields no (intensity, reflectance) pairs at the current pose.

    Common causes:
    - Candidate pose points the LiDAR away from the camera
    - Every point is beyond the maximum range
    - Initial pose is far from the true extrinsics
    """

    DEFAULT_STEPS = [
        "Check the initial pose guess",
        "Increase projection.max_range if the scene is far away",
        "Verify the LiDAR and camera fields of view overlap",
    ]

    def __init__(
        self,
        frame_index: int = -1,
        message: str = "No valid projected points",
        resolution_steps: Optional[List[str]] = None
    ):
        super().__init__(message, resolution_steps, {"frame_index": frame_index})
        self.frame_index = frame_index


class NumericalDegeneracyError(CalibrationException):
    """Joint entropy too close to zero to divide by (all samples in one joint cell)."""

    DEFAULT_STEPS = [
        "Check that the image is not uniform",
        "Check that the point cloud reflectance is not constant",
    ]

    def __init__(
        self,
        joint_entropy: float = 0.0,
        message: str = "Joint entropy is numerically zero",
        resolution_steps: Optional[List[str]] = None
    ):
        super().__init__(message, resolution_steps, {"joint_entropy": joint_entropy})
        self.joint_entropy = joint_entropy


class ManifoldConstraintViolation(CalibrationException):
    """A pose or pose update that would leave SE(3)."""

    DEFAULT_STEPS = [
        "Check the optimizer step for NaN or infinite values",
    ]

    def __init__(
        self,
        message: str = "Pose update violates the SE(3) constraint",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, details=details)


class OptimizationError(CalibrationException):
    """The optimizer could not produce a usable result."""

    DEFAULT_STEPS = [
        "Improve the initial pose guess",
        "Add more frames with overlapping camera/LiDAR coverage",
        "Run with --log-level DEBUG to inspect per-frame NID values",
    ]

    def __init__(
        self,
        stage: str = "",
        message: str = "Optimization failed",
        resolution_steps: Optional[List[str]] = None
    ):
        super().__init__(message, resolution_steps, {"stage": stage})
        self.stage = stage
