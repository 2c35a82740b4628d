"""
Session configuration loader.

A session file is YAML:

    intrinsics: intrinsics.json          # or an inline mapping
    frames:
      - image: images/000000.png
        cloud: clouds/000000.bin         # .npy, .bin (float32 x4), .txt/.csv/.xyz
    initial_pose:
      translation: [0.0, -0.1, 0.05]
      quaternion: [-0.5, 0.5, -0.5, 0.5] # or rotvec / euler_deg / matrix
    settings:                            # optional overrides of default.yaml
      optimizer:
        max_iterations: 50

Relative paths are resolved against the directory of the session file.
Every problem is reported as ConfigurationError before optimization starts.
"""

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import cv2
import numpy as np
import yaml

from camlidar_nid.camera_model import PinholeCameraModel
from camlidar_nid.config.config_loader import get_config
from camlidar_nid.config.settings import CalibrationSettings
from camlidar_nid.core.exceptions import ConfigurationError, ManifoldConstraintViolation
from camlidar_nid.core.logging_config import get_logger
from camlidar_nid.frames import Frame
from camlidar_nid.se3 import Pose, pose_from_dict

logger = get_logger(__name__)

TEXT_CLOUD_SUFFIXES = ('.txt', '.csv', '.xyz', '.xyzi')


@dataclass
class SessionSpec:
    camera: PinholeCameraModel
    frames: List[Frame]
    initial_pose: Pose
    settings: CalibrationSettings
    source_path: Optional[Path] = None


def _read_structured(path: Path) -> Dict[str, Any]:
    try:
        with open(path, 'r') as f:
            if path.suffix.lower() == '.json':
                data = json.load(f)
            else:
                data = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigurationError(field="path", value=str(path),
                                 message=f"File not found: {path}")
    except (OSError, json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigurationError(field="path", value=str(path),
                                 message=f"Could not parse {path}: {e}")
    if not isinstance(data, dict):
        raise ConfigurationError(field="path", value=str(path),
                                 message=f"{path} does not contain a mapping")
    return data


def _resolve(base_dir: Path, value: Union[str, Path]) -> Path:
    path = Path(str(value)).expanduser()
    return path if path.is_absolute() else base_dir / path


def load_image(path: Path) -> np.ndarray:
    image = cv2.imread(str(path), cv2.IMREAD_GRAYSCALE)
    if image is None:
        raise ConfigurationError(field="frames.image", value=str(path),
                                 message=f"Could not read image: {path}")
    return image


def load_point_cloud(path: Path) -> np.ndarray:
    """
    Read an (N, 4) x, y, z, reflectance cloud.

    .npy: any (N, >=4) array. .bin: KITTI-style float32 records of 4 values.
    Text: whitespace or comma separated columns. Reflectance above 1 is
    treated as 8-bit and divided by 255.
    """
    if not path.exists():
        raise ConfigurationError(field="frames.cloud", value=str(path),
                                 message=f"Point cloud not found: {path}")
    suffix = path.suffix.lower()
    try:
        if suffix == '.npy':
            cloud = np.load(path)
        elif suffix == '.bin':
            cloud = np.fromfile(path, dtype=np.float32).reshape(-1, 4)
        elif suffix in TEXT_CLOUD_SUFFIXES:
            delimiter = ',' if suffix == '.csv' else None
            cloud = np.loadtxt(path, delimiter=delimiter, ndmin=2)
        else:
            raise ConfigurationError(field="frames.cloud", value=str(path),
                                     message=f"Unsupported point cloud format '{suffix}'")
    except (OSError, ValueError) as e:
        raise ConfigurationError(field="frames.cloud", value=str(path),
                                 message=f"Could not read point cloud {path}: {e}")

    cloud = np.asarray(cloud, dtype=np.float64)
    if cloud.ndim != 2 or cloud.shape[1] < 4:
        raise ConfigurationError(field="frames.cloud", value=str(path),
                                 message=f"{path}: expected N x 4 columns, got {cloud.shape}")
    cloud = cloud[:, :4].copy()
    if cloud.shape[0] and np.nanmax(cloud[:, 3]) > 1.0:
        cloud[:, 3] = cloud[:, 3] / 255.0
    return cloud


def load_intrinsics(value: Union[str, Dict[str, Any]], base_dir: Path) -> PinholeCameraModel:
    if isinstance(value, dict):
        intrinsics = value
    elif isinstance(value, str):
        intrinsics = _read_structured(_resolve(base_dir, value))
    else:
        raise ConfigurationError(field="intrinsics",
                                 message="'intrinsics' must be a mapping or a file path")
    return PinholeCameraModel.from_dict(intrinsics)


def load_session(path: Union[str, Path], settings: Optional[CalibrationSettings] = None,
                 overrides: Optional[Dict[str, Any]] = None) -> SessionSpec:
    """
    Materialize camera model, frames, initial pose and settings from a session file.

    Without explicit `settings`, the session's `settings` section is layered
    over the global configuration and `overrides` (command line values) go
    on top. The global configuration itself is not modified.
    """
    path = Path(path)
    data = _read_structured(path)
    base_dir = path.parent

    if 'intrinsics' not in data:
        raise ConfigurationError(field="intrinsics", message="Session file has no 'intrinsics'")
    camera = load_intrinsics(data['intrinsics'], base_dir)

    entries = data.get('frames') or []
    if not isinstance(entries, list) or not entries:
        raise ConfigurationError(field="frames", message="Session file lists no frames")

    frames = []
    for i, entry in enumerate(entries):
        if not isinstance(entry, dict) or 'image' not in entry or 'cloud' not in entry:
            raise ConfigurationError(field=f"frames[{i}]",
                                     message=f"Frame {i} needs 'image' and 'cloud' entries")
        image_path = _resolve(base_dir, entry['image'])
        cloud_path = _resolve(base_dir, entry['cloud'])
        frame = Frame(image=load_image(image_path), cloud=load_point_cloud(cloud_path),
                      name=entry.get('name', image_path.stem))
        logger.info(f"Loaded frame {i}: {image_path.name} ({frame.num_points} points)")
        frames.append(frame)

    try:
        initial_pose = pose_from_dict(data.get('initial_pose') or {}, default=None)
    except (ManifoldConstraintViolation, ValueError, TypeError) as e:
        raise ConfigurationError(field="initial_pose", value=str(data.get('initial_pose')),
                                 message=f"Invalid initial pose: {e}")

    if settings is None:
        section = data.get('settings') or {}
        if not isinstance(section, dict):
            raise ConfigurationError(field="settings", value=str(section),
                                     message="Session 'settings' must be a mapping")
        settings = CalibrationSettings.from_dict(get_config().effective(section, overrides))

    return SessionSpec(camera=camera, frames=frames, initial_pose=initial_pose,
                       settings=settings, source_path=path)
