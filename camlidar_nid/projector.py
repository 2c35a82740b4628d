"""
LiDAR-to-image projection.

Turns a candidate pose and a frame into (intensity, reflectance) samples.
A point is kept when its camera-frame depth lies in (min_depth, max_range]
and its projection falls inside the image with a pixel margin. Pixel
indices are truncated, not rounded.
"""

from dataclasses import dataclass
from typing import Iterator, Optional

import numpy as np

from camlidar_nid.camera_model import CameraModel
from camlidar_nid.config.settings import ProjectionConfig
from camlidar_nid.frames import Frame
from camlidar_nid.se3 import Pose


def reflectance_to_bin(reflectance):
    """Reflectance in [0, 1] to an integer level in [0, 255] (truncated)."""
    levels = np.asarray(reflectance, dtype=np.float64) * 255.0
    return np.clip(levels, 0, 255).astype(np.int64)


@dataclass(frozen=True)
class Sample:
    """One projected point: pixel indices plus its intensity and reflectance levels."""
    row: int
    col: int
    gray: int
    ref: int


@dataclass(eq=False)
class SampleBatch:
    """
    Samples of one frame for one pose, as parallel arrays.

    gray/ref are integer levels in [0, 255]. gray_values/ref_values are the
    continuous counterparts (bilinear intensity, unquantized reflectance) and
    are only filled by Projector.project_frame(..., subpixel=True).
    """
    rows: np.ndarray
    cols: np.ndarray
    gray: np.ndarray
    ref: np.ndarray
    point_indices: np.ndarray
    gray_values: Optional[np.ndarray] = None
    ref_values: Optional[np.ndarray] = None

    @classmethod
    def empty(cls) -> 'SampleBatch':
        e = np.zeros(0, dtype=np.int64)
        return cls(rows=e, cols=e.copy(), gray=e.copy(), ref=e.copy(), point_indices=e.copy())

    @classmethod
    def from_samples(cls, samples) -> 'SampleBatch':
        samples = list(samples)
        if not samples:
            return cls.empty()
        arr = np.array([(s.row, s.col, s.gray, s.ref) for s in samples], dtype=np.int64)
        return cls(rows=arr[:, 0], cols=arr[:, 1], gray=arr[:, 2], ref=arr[:, 3],
                   point_indices=np.arange(len(samples), dtype=np.int64))

    @property
    def has_continuous_values(self) -> bool:
        return self.gray_values is not None and self.ref_values is not None

    def __len__(self) -> int:
        return int(self.gray.shape[0])

    def __iter__(self) -> Iterator[Sample]:
        for r, c, g, f in zip(self.rows, self.cols, self.gray, self.ref):
            yield Sample(int(r), int(c), int(g), int(f))


class Projector:
    """Projects LiDAR points into the image through a candidate pose."""

    def __init__(self, camera: CameraModel, config: Optional[ProjectionConfig] = None):
        self.camera = camera
        self.config = config or ProjectionConfig()

    def _depth_ok(self, depth):
        return (depth > self.config.min_depth) & (depth <= self.config.max_range)

    def project_point(self, pose: Pose, point: np.ndarray, reflectance: float,
                      image: np.ndarray) -> Optional[Sample]:
        """Project a single LiDAR point; None when it is not visible."""
        p_c = pose.transform_points(np.asarray(point, dtype=np.float64).reshape(3))
        if not self._depth_ok(p_c[2]):
            return None
        uv = self.camera.project_to_pixel(p_c)
        if uv is None or not self.camera.is_within_image_bounds(uv, self.config.image_margin):
            return None
        col, row = int(uv[0]), int(uv[1])
        return Sample(row=row, col=col, gray=int(image[row, col]),
                      ref=int(reflectance_to_bin(reflectance)))

    def project_frame(self, pose: Pose, frame: Frame, subpixel: bool = False) -> SampleBatch:
        """Project every point of a frame; invisible points are dropped."""
        if frame.num_points == 0:
            return SampleBatch.empty()

        points_c = pose.transform_points(frame.points)
        idx = np.flatnonzero(self._depth_ok(points_c[:, 2]))
        if idx.size == 0:
            return SampleBatch.empty()

        pixels = self.camera.project(points_c[idx])
        inside = self.camera.in_image(pixels, self.config.image_margin)
        idx, pixels = idx[inside], pixels[inside]
        if idx.size == 0:
            return SampleBatch.empty()

        image = frame.image
        cols = pixels[:, 0].astype(np.int64)
        rows = pixels[:, 1].astype(np.int64)
        reflectance = frame.reflectance[idx]

        batch = SampleBatch(
            rows=rows,
            cols=cols,
            gray=image[rows, cols].astype(np.int64),
            ref=reflectance_to_bin(reflectance),
            point_indices=idx,
        )
        if subpixel:
            batch.gray_values = self._bilinear(image, pixels)
            batch.ref_values = np.clip(reflectance * 255.0, 0.0, 255.0)
        return batch

    @staticmethod
    def _bilinear(image: np.ndarray, pixels: np.ndarray) -> np.ndarray:
        height, width = image.shape
        u = np.clip(pixels[:, 0], 0.0, width - 1.0)
        v = np.clip(pixels[:, 1], 0.0, height - 1.0)
        c0 = np.floor(u).astype(np.int64)
        r0 = np.floor(v).astype(np.int64)
        c1 = np.minimum(c0 + 1, width - 1)
        r1 = np.minimum(r0 + 1, height - 1)
        du = u - c0
        dv = v - r0
        img = image.astype(np.float64)
        return ((1 - du) * (1 - dv) * img[r0, c0] + du * (1 - dv) * img[r0, c1]
                + (1 - du) * dv * img[r1, c0] + du * dv * img[r1, c1])
