"""
Calibration frames: one grayscale image paired with one LiDAR scan.
"""

from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np

from camlidar_nid.core.exceptions import ConfigurationError


@dataclass(frozen=True, eq=False)
class Frame:
    """
    Immutable (image, point cloud) pair.

    image: (H, W) uint8 intensities. 3-channel BGR input is converted to gray.
    cloud: (N, 4) float64 rows of x, y, z, reflectance with reflectance in [0, 1].
    Both arrays are read-only; evaluations read them by reference.
    """
    image: np.ndarray
    cloud: np.ndarray
    name: Optional[str] = None

    def __post_init__(self):
        image = np.asarray(self.image)
        if image.ndim == 3 and image.shape[2] == 3:
            image = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        if image.ndim != 2 or image.size == 0:
            raise ConfigurationError(
                field="frame.image", value=str(image.shape),
                message=f"Frame image must be a non-empty 2-D array, got shape {image.shape}"
            )
        if image.dtype != np.uint8:
            if np.issubdtype(image.dtype, np.floating) and image.size and image.max() <= 1.0:
                image = image * 255.0
            image = np.clip(image, 0, 255).astype(np.uint8)

        cloud = np.asarray(self.cloud, dtype=np.float64)
        if cloud.ndim != 2 or cloud.shape[1] < 4:
            raise ConfigurationError(
                field="frame.cloud", value=str(cloud.shape),
                message=f"Point cloud must be (N, 4) x, y, z, reflectance; got {cloud.shape}"
            )
        cloud = cloud[:, :4]
        finite = np.all(np.isfinite(cloud), axis=1)
        if not np.all(finite):
            cloud = cloud[finite]
        reflectance = cloud[:, 3]
        if reflectance.size and (reflectance.min() < 0.0 or reflectance.max() > 1.0):
            raise ConfigurationError(
                field="frame.cloud", value=f"[{reflectance.min()}, {reflectance.max()}]",
                message="Point reflectance must lie in [0, 1]"
            )

        image = np.ascontiguousarray(image)
        cloud = np.ascontiguousarray(cloud)
        image.setflags(write=False)
        cloud.setflags(write=False)
        object.__setattr__(self, "image", image)
        object.__setattr__(self, "cloud", cloud)

    @property
    def points(self) -> np.ndarray:
        return self.cloud[:, :3]

    @property
    def reflectance(self) -> np.ndarray:
        return self.cloud[:, 3]

    @property
    def num_points(self) -> int:
        return int(self.cloud.shape[0])

    @property
    def image_size(self):
        """(width, height) of the image."""
        return self.image.shape[1], self.image.shape[0]
