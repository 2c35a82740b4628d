"""
Synthetic calibration data.

Renders a smooth random texture as the camera image, then samples LiDAR
points on a tilted wall seen through random sub-pixel positions. Each point
takes its reflectance from the image level of the pixel it was sampled in,
so at the ground-truth pose every point lands back in its own pixel and
intensity and reflectance agree exactly. A few points behind the sensor and
beyond the maximum range are added to exercise visibility filtering.
"""

from dataclasses import dataclass
from typing import List, Optional

import cv2
import numpy as np
from scipy.spatial.transform import Rotation

from camlidar_nid.camera_model import PinholeCameraModel
from camlidar_nid.frames import Frame
from camlidar_nid.se3 import Pose

# LiDAR axes (X forward, Y left, Z up) expressed in camera axes (X right, Y down, Z forward)
R_CAMERA_FROM_LIDAR = np.array([
    [0.0, -1.0, 0.0],
    [0.0, 0.0, -1.0],
    [1.0, 0.0, 0.0],
])


def default_ground_truth() -> Pose:
    """A plausible T_CL: LiDAR mounted slightly above and behind the camera."""
    R_mount = Rotation.from_euler('xyz', [1.0, -2.0, 1.5], degrees=True).as_matrix()
    return Pose.from_Rt(R_mount @ R_CAMERA_FROM_LIDAR, np.array([0.05, -0.12, 0.08]))


def perturb(pose: Pose, rotation_deg: float, translation: float,
            seed: Optional[int] = None) -> Pose:
    """Offset a pose by a rotation of fixed angle and a translation of fixed length."""
    rng = np.random.default_rng(seed)
    axis = rng.normal(size=3)
    axis /= np.linalg.norm(axis)
    direction = rng.normal(size=3)
    direction /= np.linalg.norm(direction)
    delta = np.concatenate([direction * translation, axis * np.radians(rotation_deg)])
    return pose.retract(delta)


@dataclass
class SyntheticSceneConfig:
    """Camera and scene parameters of the synthetic rig."""
    width: int = 640
    height: int = 480
    fx: float = 500.0
    fy: float = 500.0
    cx: float = 320.0
    cy: float = 240.0
    num_points: int = 4000
    num_outliers: int = 200
    wall_distance: float = 8.0
    wall_distance_step: float = 1.5
    wall_tilt: float = 0.1
    texture_sigma: float = 4.0
    seed: int = 0


class SyntheticScene:
    """Generates frames consistent with a known extrinsic pose."""

    def __init__(self, config: Optional[SyntheticSceneConfig] = None,
                 ground_truth: Optional[Pose] = None):
        self.config = config or SyntheticSceneConfig()
        self.ground_truth = ground_truth or default_ground_truth()
        c = self.config
        self.camera = PinholeCameraModel(fx=c.fx, fy=c.fy, cx=c.cx, cy=c.cy,
                                         width=c.width, height=c.height)

    def texture(self, rng: np.random.Generator) -> np.ndarray:
        c = self.config
        noise = rng.random((c.height, c.width)).astype(np.float32)
        smooth = cv2.GaussianBlur(noise, (0, 0), c.texture_sigma)
        # Levels kept in [10, 245] so (level + 0.5) / 255 stays inside [0, 1]
        return cv2.normalize(smooth, None, 10, 245, cv2.NORM_MINMAX).astype(np.uint8)

    def generate_frame(self, index: int = 0) -> Frame:
        c = self.config
        rng = np.random.default_rng(c.seed + index)
        image = self.texture(rng)
        distance = c.wall_distance + index * c.wall_distance_step

        margin = 3
        cols = rng.integers(margin, c.width - margin, size=c.num_points)
        rows = rng.integers(margin, c.height - margin, size=c.num_points)
        u = cols + rng.uniform(0.2, 0.8, size=c.num_points)
        v = rows + rng.uniform(0.2, 0.8, size=c.num_points)

        # Intersect pixel rays with the wall z = distance + tilt * x
        a = (u - c.cx) / c.fx
        b = (v - c.cy) / c.fy
        depth = distance / (1.0 - c.wall_tilt * a)
        points_camera = np.column_stack([a * depth, b * depth, depth])
        reflectance = (image[rows, cols].astype(np.float64) + 0.5) / 255.0

        points_lidar = self.ground_truth.inverse().transform_points(points_camera)
        cloud = np.column_stack([points_lidar, reflectance])

        if c.num_outliers:
            n_behind = c.num_outliers // 2
            n_far = c.num_outliers - n_behind
            behind = np.column_stack([
                rng.uniform(-20.0, -1.0, n_behind),
                rng.uniform(-5.0, 5.0, n_behind),
                rng.uniform(-2.0, 2.0, n_behind),
            ])
            far = np.column_stack([
                rng.uniform(35.0, 50.0, n_far),
                rng.uniform(-5.0, 5.0, n_far),
                rng.uniform(-2.0, 2.0, n_far),
            ])
            outliers = np.column_stack([np.vstack([behind, far]),
                                        rng.uniform(0.0, 1.0, c.num_outliers)])
            cloud = np.vstack([cloud, outliers])

        cloud = cloud[rng.permutation(len(cloud))]
        return Frame(image=image, cloud=cloud, name=f"synthetic_{index:03d}")

    def generate_frames(self, count: int) -> List[Frame]:
        return [self.generate_frame(i) for i in range(count)]
