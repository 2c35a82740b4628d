"""
Camera model capability used by the projector.

Any object providing project_to_pixel / is_within_image_bounds (single point)
and project / in_image (vectorized) can be plugged into the projector; the
pinhole model below is the one loaded from intrinsics files.
"""

from dataclasses import dataclass, field
from typing import Optional, Protocol, Tuple, runtime_checkable

import cv2
import numpy as np

from camlidar_nid.core.exceptions import ConfigurationError


@runtime_checkable
class CameraModel(Protocol):
    """Capability interface for pixel projection and visibility tests."""

    width: int
    height: int

    def project_to_pixel(self, point: np.ndarray) -> Optional[Tuple[float, float]]:
        ...

    def is_within_image_bounds(self, pixel: Tuple[float, float], margin: float = 0.0) -> bool:
        ...

    def project(self, points: np.ndarray) -> np.ndarray:
        ...

    def in_image(self, pixels: np.ndarray, margin: float = 0.0) -> np.ndarray:
        ...


@dataclass
class PinholeCameraModel:
    """
    Pinhole camera with optional OpenCV (k1, k2, p1, p2[, k3...]) distortion.

    Points are given in the camera frame (X right, Y down, Z forward).
    """
    fx: float
    fy: float
    cx: float
    cy: float
    width: int
    height: int
    distortion: np.ndarray = field(default_factory=lambda: np.zeros(5))

    def __post_init__(self):
        self.distortion = np.asarray(self.distortion, dtype=np.float64).reshape(-1)
        if self.fx <= 0 or self.fy <= 0:
            raise ConfigurationError(
                field="intrinsics.camera_matrix", value=f"fx={self.fx}, fy={self.fy}",
                message="Focal lengths must be positive"
            )
        if int(self.width) <= 0 or int(self.height) <= 0:
            raise ConfigurationError(
                field="intrinsics.image_size", value=f"{self.width}x{self.height}",
                message="Image size must be positive"
            )
        self.width = int(self.width)
        self.height = int(self.height)

    @classmethod
    def from_matrix(cls, camera_matrix: np.ndarray, image_size: Tuple[int, int],
                    distortion: Optional[np.ndarray] = None) -> 'PinholeCameraModel':
        K = np.asarray(camera_matrix, dtype=np.float64)
        if K.shape != (3, 3):
            raise ConfigurationError(
                field="intrinsics.camera_matrix", value=str(K.shape),
                message="Camera matrix must be 3x3"
            )
        width, height = image_size
        return cls(
            fx=float(K[0, 0]), fy=float(K[1, 1]),
            cx=float(K[0, 2]), cy=float(K[1, 2]),
            width=int(width), height=int(height),
            distortion=np.zeros(5) if distortion is None else distortion,
        )

    @classmethod
    def from_dict(cls, intrinsics: dict) -> 'PinholeCameraModel':
        """
        Build from an intrinsics mapping.

        Accepts the intrinsic calibration output layout
        (camera_matrix, distortion_coefficients, image_size=[width, height])
        or flat fx/fy/cx/cy/width/height keys.
        """
        try:
            if "camera_matrix" in intrinsics:
                return cls.from_matrix(
                    np.array(intrinsics["camera_matrix"], dtype=np.float64),
                    tuple(intrinsics["image_size"]),
                    np.array(intrinsics.get("distortion_coefficients", [0, 0, 0, 0, 0]),
                             dtype=np.float64),
                )
            return cls(
                fx=float(intrinsics["fx"]), fy=float(intrinsics["fy"]),
                cx=float(intrinsics["cx"]), cy=float(intrinsics["cy"]),
                width=int(intrinsics["width"]), height=int(intrinsics["height"]),
                distortion=np.array(intrinsics.get("distortion_coefficients", [0, 0, 0, 0, 0]),
                                    dtype=np.float64),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(
                field="intrinsics", value=str(e),
                message=f"Incomplete camera intrinsics: {e}"
            )

    @property
    def camera_matrix(self) -> np.ndarray:
        return np.array([
            [self.fx, 0, self.cx],
            [0, self.fy, self.cy],
            [0, 0, 1]
        ], dtype=np.float64)

    @property
    def has_distortion(self) -> bool:
        return bool(np.any(self.distortion != 0))

    @property
    def image_size(self) -> Tuple[int, int]:
        return self.width, self.height

    def project(self, points: np.ndarray) -> np.ndarray:
        """Project (N, 3) camera-frame points with z > 0 to (N, 2) pixels (u, v)."""
        points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        if len(points) == 0:
            return np.zeros((0, 2))
        if self.has_distortion:
            proj, _ = cv2.projectPoints(points, np.zeros(3), np.zeros(3),
                                        self.camera_matrix, self.distortion)
            return proj.reshape(-1, 2)
        z = points[:, 2]
        u = self.fx * points[:, 0] / z + self.cx
        v = self.fy * points[:, 1] / z + self.cy
        return np.column_stack([u, v])

    def project_to_pixel(self, point: np.ndarray) -> Optional[Tuple[float, float]]:
        point = np.asarray(point, dtype=np.float64).reshape(3)
        if point[2] <= 0:
            return None
        u, v = self.project(point[None, :])[0]
        return float(u), float(v)

    def in_image(self, pixels: np.ndarray, margin: float = 0.0) -> np.ndarray:
        pixels = np.asarray(pixels, dtype=np.float64).reshape(-1, 2)
        u, v = pixels[:, 0], pixels[:, 1]
        return ((u >= margin) & (u < self.width - margin)
                & (v >= margin) & (v < self.height - margin))

    def is_within_image_bounds(self, pixel: Tuple[float, float], margin: float = 0.0) -> bool:
        return bool(self.in_image(np.asarray(pixel, dtype=np.float64), margin)[0])

    def to_dict(self) -> dict:
        return {
            "camera_matrix": self.camera_matrix.tolist(),
            "distortion_coefficients": self.distortion.tolist(),
            "image_size": [self.width, self.height],
        }
