"""
Tests for frames, the pinhole camera model and LiDAR projection.
"""

import numpy as np
import pytest

from camlidar_nid.camera_model import CameraModel, PinholeCameraModel
from camlidar_nid.config.settings import ProjectionConfig
from camlidar_nid.core.exceptions import ConfigurationError
from camlidar_nid.frames import Frame
from camlidar_nid.projector import Projector, reflectance_to_bin
from camlidar_nid.se3 import Pose


def cloud_of(*points, reflectance=0.5):
    pts = np.array(points, dtype=float).reshape(-1, 3)
    return np.column_stack([pts, np.full(len(pts), reflectance)])


@pytest.fixture
def projector(small_camera):
    return Projector(small_camera, ProjectionConfig(min_depth=0.0, max_range=30.0, image_margin=2))


class TestFrame:

    def test_arrays_are_read_only(self, gradient_image):
        frame = Frame(gradient_image, cloud_of([0, 0, 1]))
        with pytest.raises(ValueError):
            frame.cloud[0, 0] = 5.0
        with pytest.raises(ValueError):
            frame.image[0, 0] = 1

    def test_color_image_converted_to_gray(self):
        bgr = np.full((20, 30, 3), 100, dtype=np.uint8)
        frame = Frame(bgr, cloud_of([0, 0, 1]))
        assert frame.image.shape == (20, 30)
        assert frame.image_size == (30, 20)

    def test_reflectance_out_of_range_rejected(self, gradient_image):
        with pytest.raises(ConfigurationError):
            Frame(gradient_image, cloud_of([0, 0, 1], reflectance=1.5))

    def test_non_finite_rows_dropped(self, gradient_image):
        cloud = cloud_of([0, 0, 1], [0, 0, 2])
        cloud[1, 0] = np.nan
        assert Frame(gradient_image, cloud).num_points == 1

    def test_bad_cloud_shape_rejected(self, gradient_image):
        with pytest.raises(ConfigurationError):
            Frame(gradient_image, np.zeros((5, 3)))


class TestCameraModel:

    def test_satisfies_protocol(self, small_camera):
        assert isinstance(small_camera, CameraModel)

    def test_dict_round_trip(self, small_camera):
        again = PinholeCameraModel.from_dict(small_camera.to_dict())
        assert (again.fx, again.cy, again.width) == (100.0, 50.0, 100)

    def test_flat_dict(self):
        cam = PinholeCameraModel.from_dict({"fx": 1, "fy": 2, "cx": 3, "cy": 4,
                                            "width": 10, "height": 8})
        assert cam.image_size == (10, 8)

    def test_incomplete_intrinsics(self):
        with pytest.raises(ConfigurationError):
            PinholeCameraModel.from_dict({"fx": 1.0})

    def test_behind_camera_has_no_pixel(self, small_camera):
        assert small_camera.project_to_pixel(np.array([0.0, 0.0, -1.0])) is None

    def test_distortion_uses_opencv(self):
        cam = PinholeCameraModel(fx=100, fy=100, cx=50, cy=50, width=100, height=100,
                                 distortion=[0.1, 0, 0, 0, 0])
        assert cam.has_distortion
        center = cam.project(np.array([[0.0, 0.0, 2.0]]))[0]
        np.testing.assert_allclose(center, [50.0, 50.0], atol=1e-9)
        edge = cam.project(np.array([[0.3, 0.0, 1.0]]))[0]
        assert edge[0] > 80.0


class TestProjectPoint:

    def test_visible_point(self, projector, gradient_image):
        sample = projector.project_point(Pose.identity(), [0.095, 0.0, 1.0], 0.5, gradient_image)
        assert (sample.row, sample.col) == (50, 59)
        assert sample.gray == 59
        assert sample.ref == 127

    def test_pixel_indices_truncated(self, projector, gradient_image):
        # u = 59.9 stays in column 59
        sample = projector.project_point(Pose.identity(), [0.099, 0.0, 1.0], 0.5, gradient_image)
        assert sample.col == 59

    @pytest.mark.parametrize("point", [
        [0.0, 0.0, -1.0],     # behind the camera
        [0.0, 0.0, 0.0],      # at the optical center
        [0.0, 0.0, 31.0],     # beyond max range
        [-0.485, 0.0, 1.0],   # u = 1.5, inside the margin
        [0.485, 0.0, 1.0],    # u = 98.5, inside the margin
    ])
    def test_invisible_points(self, projector, gradient_image, point):
        assert projector.project_point(Pose.identity(), point, 0.5, gradient_image) is None

    def test_max_range_inclusive(self, projector, gradient_image):
        assert projector.project_point(Pose.identity(), [0.0, 0.0, 30.0], 0.5,
                                       gradient_image) is not None

    def test_pose_applied(self, projector, gradient_image):
        shifted = Pose.from_Rt(np.eye(3), np.array([0.105, 0.0, 0.0]))
        sample = projector.project_point(shifted, [0.0, 0.0, 1.0], 0.5, gradient_image)
        assert sample.col == 60


class TestProjectFrame:

    def test_matches_single_point_projection(self, projector, gradient_image):
        rng = np.random.default_rng(5)
        points = np.column_stack([rng.uniform(-1, 1, 200), rng.uniform(-1, 1, 200),
                                  rng.uniform(-2, 3, 200)])
        cloud = np.column_stack([points, rng.uniform(0, 1, 200)])
        frame = Frame(gradient_image, cloud)
        pose = Pose.from_params([0.02, -0.01, 0.1, 0.01, 0.02, -0.03])

        batch = projector.project_frame(pose, frame)
        singles = [projector.project_point(pose, p[:3], p[3], gradient_image) for p in frame.cloud]
        expected = [s for s in singles if s is not None]

        assert len(batch) == len(expected)
        assert list(batch) == expected

    def test_no_visible_points_gives_empty_batch(self, projector, gradient_image):
        frame = Frame(gradient_image, cloud_of([0, 0, -1], [0, 0, -5]))
        assert len(projector.project_frame(Pose.identity(), frame)) == 0

    def test_subpixel_values(self, projector, gradient_image):
        frame = Frame(gradient_image, cloud_of([0.095, 0.0, 1.0], reflectance=0.2))
        batch = projector.project_frame(Pose.identity(), frame, subpixel=True)
        assert batch.has_continuous_values
        assert batch.gray_values[0] == pytest.approx(59.5)
        assert batch.ref_values[0] == pytest.approx(51.0)

    def test_point_indices_refer_to_cloud_rows(self, projector, gradient_image):
        frame = Frame(gradient_image, cloud_of([0, 0, -1], [0.0, 0.0, 1.0]))
        batch = projector.project_frame(Pose.identity(), frame)
        np.testing.assert_array_equal(batch.point_indices, [1])


def test_reflectance_to_bin():
    np.testing.assert_array_equal(reflectance_to_bin([0.0, 0.5, 0.999, 1.0]), [0, 127, 254, 255])
