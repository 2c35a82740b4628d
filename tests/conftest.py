import logging

import cv2
import numpy as np
import pytest
import yaml

from camlidar_nid.camera_model import PinholeCameraModel
from camlidar_nid.config import get_config
from camlidar_nid.frames import Frame
from camlidar_nid.synthetic import SyntheticScene, SyntheticSceneConfig


# =============================================================================
# Configuration isolation
# =============================================================================

@pytest.fixture(autouse=True)
def fresh_config(monkeypatch):
    """Every test starts from the packaged defaults with no env overrides."""
    for name in list(get_config().ENV_MAPPINGS):
        monkeypatch.delenv(name, raising=False)
    get_config().reload()
    yield
    get_config().reload()


# =============================================================================
# Synthetic rig fixtures
# =============================================================================

@pytest.fixture(scope="session")
def scene():
    """Synthetic rig with a smaller point budget to keep tests fast."""
    return SyntheticScene(SyntheticSceneConfig(num_points=3000, num_outliers=100))


@pytest.fixture(scope="session")
def frames(scene):
    return scene.generate_frames(2)


@pytest.fixture(scope="session")
def ground_truth(scene):
    return scene.ground_truth


@pytest.fixture
def small_camera():
    """100x100 pinhole camera, f=100, principal point at the center."""
    return PinholeCameraModel(fx=100.0, fy=100.0, cx=50.0, cy=50.0, width=100, height=100)


@pytest.fixture
def gradient_image():
    """Image whose value encodes the column: I[r, c] = c."""
    return np.tile(np.arange(100, dtype=np.uint8), (100, 1))


@pytest.fixture(autouse=True)
def restore_root_logger():
    """setup_logging() replaces root handlers; put the originals back."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def behind_frame(scene):
    """Full-size frame whose points all lie behind the camera at the ground truth."""
    image = np.full((scene.config.height, scene.config.width), 128, dtype=np.uint8)
    cloud = np.array([[-10.0, 0.0, 0.0, 0.5], [-12.0, 1.0, 0.5, 0.2]])
    return Frame(image, cloud, name="behind")


def write_session(directory, scene, frames, pose, **extra):
    """Write frames as PNG + .npy and a session YAML referencing them."""
    entries = []
    for i, frame in enumerate(frames):
        image_path = directory / f"{i:06d}.png"
        cloud_path = directory / f"{i:06d}.npy"
        cv2.imwrite(str(image_path), frame.image)
        np.save(cloud_path, np.array(frame.cloud))
        entries.append({"image": image_path.name, "cloud": cloud_path.name})
    data = {
        "intrinsics": scene.camera.to_dict(),
        "frames": entries,
        "initial_pose": {"translation": pose.translation.tolist(),
                         "quaternion": pose.quaternion.tolist()},
    }
    data.update(extra)
    path = directory / "session.yaml"
    path.write_text(yaml.safe_dump(data))
    return path
