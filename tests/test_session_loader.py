"""
Tests for loading sessions, images and point clouds from disk.
"""

import json

import numpy as np
import pytest
import yaml

from camlidar_nid.config import get_config
from camlidar_nid.config.session_loader import load_point_cloud, load_session
from camlidar_nid.core.exceptions import ConfigurationError
from conftest import write_session


class TestLoadSession:

    def test_round_trip(self, tmp_path, scene, frames, ground_truth):
        path = write_session(tmp_path, scene, frames, ground_truth)
        spec = load_session(path)

        assert len(spec.frames) == 2
        assert spec.camera.image_size == (640, 480)
        assert spec.initial_pose.is_close(ground_truth)
        np.testing.assert_array_equal(spec.frames[0].image, frames[0].image)
        np.testing.assert_array_equal(spec.frames[1].cloud, frames[1].cloud)
        assert spec.frames[0].name == "000000"

    def test_settings_section_applied(self, tmp_path, scene, frames, ground_truth):
        path = write_session(tmp_path, scene, frames, ground_truth,
                             settings={"optimizer": {"max_iterations": 7}})
        assert load_session(path).settings.optimizer.max_iterations == 7

    def test_settings_do_not_leak_between_sessions(self, tmp_path, scene, frames, ground_truth):
        first_dir = tmp_path / "first"
        second_dir = tmp_path / "second"
        first_dir.mkdir()
        second_dir.mkdir()
        first = write_session(first_dir, scene, frames[:1], ground_truth,
                              settings={"optimizer": {"max_iterations": 7},
                                        "histogram": {"binning": "soft"}})
        second = write_session(second_dir, scene, frames[:1], ground_truth)

        assert load_session(first).settings.optimizer.max_iterations == 7
        settings = load_session(second).settings
        assert settings.optimizer.max_iterations == 100
        assert settings.histogram.binning == "hard"
        assert get_config().get("optimizer.max_iterations") == 100

    def test_overrides_win_over_session_settings(self, tmp_path, scene, frames, ground_truth):
        path = write_session(tmp_path, scene, frames[:1], ground_truth,
                             settings={"optimizer": {"mode": "powell", "max_iterations": 7}})
        spec = load_session(path, overrides={"optimizer": {"mode": "least_squares"}})
        assert spec.settings.optimizer.mode == "least_squares"
        assert spec.settings.optimizer.max_iterations == 7

    def test_settings_section_must_be_mapping(self, tmp_path, scene, frames, ground_truth):
        path = write_session(tmp_path, scene, frames[:1], ground_truth, settings=["fast"])
        with pytest.raises(ConfigurationError):
            load_session(path)

    def test_wrongly_typed_setting(self, tmp_path, scene, frames, ground_truth):
        path = write_session(tmp_path, scene, frames[:1], ground_truth,
                             settings={"projection": {"max_range": "far"}})
        with pytest.raises(ConfigurationError):
            load_session(path)

    def test_intrinsics_file(self, tmp_path, scene, frames, ground_truth):
        (tmp_path / "intrinsics.json").write_text(json.dumps(scene.camera.to_dict()))
        path = write_session(tmp_path, scene, frames, ground_truth, intrinsics="intrinsics.json")
        assert load_session(path).camera.fx == scene.camera.fx

    def test_missing_session_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_session(tmp_path / "nope.yaml")

    def test_missing_image(self, tmp_path, scene, frames, ground_truth):
        path = write_session(tmp_path, scene, frames[:1], ground_truth)
        (tmp_path / "000000.png").unlink()
        with pytest.raises(ConfigurationError):
            load_session(path)

    def test_missing_pose(self, tmp_path, scene, frames, ground_truth):
        path = write_session(tmp_path, scene, frames[:1], ground_truth)
        data = yaml.safe_load(path.read_text())
        del data["initial_pose"]
        path.write_text(yaml.safe_dump(data))
        with pytest.raises(ConfigurationError):
            load_session(path)

    def test_no_frames(self, tmp_path, scene, ground_truth):
        path = write_session(tmp_path, scene, [], ground_truth)
        with pytest.raises(ConfigurationError):
            load_session(path)

    def test_unknown_setting(self, tmp_path, scene, frames, ground_truth):
        path = write_session(tmp_path, scene, frames[:1], ground_truth,
                             settings={"optimizer": {"momentum": 0.9}})
        with pytest.raises(ConfigurationError):
            load_session(path)


class TestLoadPointCloud:

    @pytest.fixture
    def cloud(self):
        return np.array([[1.0, 2.0, 3.0, 0.25], [4.0, 5.0, 6.0, 0.75]])

    def test_kitti_bin(self, tmp_path, cloud):
        path = tmp_path / "scan.bin"
        cloud.astype(np.float32).tofile(path)
        np.testing.assert_allclose(load_point_cloud(path), cloud)

    def test_text(self, tmp_path, cloud):
        path = tmp_path / "scan.xyzi"
        np.savetxt(path, cloud)
        np.testing.assert_allclose(load_point_cloud(path), cloud)

    def test_csv(self, tmp_path, cloud):
        path = tmp_path / "scan.csv"
        np.savetxt(path, cloud, delimiter=",")
        np.testing.assert_allclose(load_point_cloud(path), cloud)

    def test_eight_bit_reflectance_scaled(self, tmp_path):
        path = tmp_path / "scan.npy"
        np.save(path, np.array([[0.0, 0.0, 1.0, 51.0], [0.0, 0.0, 2.0, 255.0]]))
        np.testing.assert_allclose(load_point_cloud(path)[:, 3], [0.2, 1.0])

    def test_extra_columns_dropped(self, tmp_path):
        path = tmp_path / "scan.npy"
        np.save(path, np.ones((3, 6)) * 0.5)
        assert load_point_cloud(path).shape == (3, 4)

    def test_too_few_columns(self, tmp_path):
        path = tmp_path / "scan.npy"
        np.save(path, np.zeros((3, 3)))
        with pytest.raises(ConfigurationError):
            load_point_cloud(path)

    def test_unsupported_format(self, tmp_path):
        path = tmp_path / "scan.pcd"
        path.write_text("garbage")
        with pytest.raises(ConfigurationError):
            load_point_cloud(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_point_cloud(tmp_path / "none.bin")
