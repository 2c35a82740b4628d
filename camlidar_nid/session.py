"""
Calibration session: frames, camera model and initial pose in, optimized
extrinsics out.
"""

import json
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import yaml

from camlidar_nid.camera_model import CameraModel
from camlidar_nid.config.settings import CalibrationSettings
from camlidar_nid.core.exceptions import ConfigurationError, OptimizationError
from camlidar_nid.core.logging_config import get_logger, get_run_id
from camlidar_nid.cost import NIDCostFunction
from camlidar_nid.diagnostics import DiagnosticSink
from camlidar_nid.frames import Frame
from camlidar_nid.optimizer import ManifoldOptimizer, OptimizationResult, OptimizerState
from camlidar_nid.se3 import Pose

logger = get_logger(__name__)


@dataclass
class CalibrationResult:
    """Optimized LiDAR-to-camera pose with quality metrics."""
    pose: Pose
    state: OptimizerState
    optimization: OptimizationResult
    frame_names: List[str]
    settings: Optional[CalibrationSettings] = None

    @property
    def success(self) -> bool:
        return self.optimization.success

    def to_dict(self) -> Dict[str, Any]:
        opt = self.optimization
        R, t = self.pose.to_Rt()
        yaw, pitch, roll = self.pose.euler_degrees('ZYX')
        final = opt.final_evaluation
        per_frame = []
        if final is not None:
            for f in final.frames:
                per_frame.append({
                    "frame": self.frame_names[f.frame_index],
                    "nid": None if f.nid is None else float(f.nid),
                    "num_samples": int(f.num_samples),
                    "status": f.status,
                })
        return {
            "lidar_to_camera_transform": {
                "rotation_matrix": R.tolist(),
                "translation_vector": t.tolist(),
                "quaternion_xyzw": self.pose.quaternion.tolist(),
                "euler_angles_zyx_deg": [float(yaw), float(pitch), float(roll)],
                "transform_matrix_4x4": self.pose.matrix().tolist(),
            },
            "initial_transform": {
                "quaternion_xyzw": opt.initial_pose.quaternion.tolist(),
                "translation_vector": opt.initial_pose.translation.tolist(),
            },
            "coordinate_system": {
                "note": "T_CL transforms points from the LiDAR frame to the camera frame"
            },
            "quality_metrics": {
                "state": self.state.value,
                "optimizer_mode": opt.mode,
                "iterations": opt.iterations,
                "cost_evaluations": opt.evaluations,
                "initial_cost": float(opt.initial_cost),
                "final_cost": float(opt.final_cost),
                "mean_nid": None if final is None else final.mean_nid,
                "rotation_change_deg": opt.initial_pose.rotation_distance_deg(self.pose),
                "translation_change": opt.initial_pose.translation_distance(self.pose),
                "message": opt.message,
                "frames": per_frame,
            },
            "settings": None if self.settings is None else self.settings.to_dict(),
            "run_id": get_run_id(),
            "timestamp": datetime.now().isoformat(),
        }

    def save(self, path: str) -> None:
        """Write the result as YAML (.yaml/.yml) or JSON (anything else)."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = self.to_dict()
        with open(path, 'w') as f:
            if path.suffix.lower() in ('.yaml', '.yml'):
                yaml.safe_dump(data, f, sort_keys=False)
            else:
                json.dump(data, f, indent=2)
        logger.info(f"Saved calibration result to: {path}")


class CalibrationSession:
    """
    Holds the frames of one calibration and runs the NID optimization.

    Inputs are validated on construction so configuration problems surface
    before any optimization starts.
    """

    def __init__(self, camera: CameraModel, frames: Sequence[Frame], initial_pose: Pose,
                 settings: Optional[CalibrationSettings] = None,
                 diagnostics: Optional[DiagnosticSink] = None):
        if not frames:
            raise ConfigurationError(field="frames", message="Calibration needs at least one frame")
        if not isinstance(initial_pose, Pose) or not initial_pose.is_valid():
            raise ConfigurationError(field="initial_pose", message="Initial pose is not a valid SE(3) pose")
        self.camera = camera
        self.frames = list(frames)
        self.initial_pose = initial_pose
        self.settings = (settings or CalibrationSettings()).validate()
        self.cost_function = NIDCostFunction(camera, self.frames, self.settings, diagnostics)

    @property
    def frame_names(self) -> List[str]:
        return [f.name or f"frame_{i:03d}" for i, f in enumerate(self.frames)]

    def calibrate(self) -> CalibrationResult:
        logger.info(f"Calibrating with {len(self.frames)} frames, "
                    f"{sum(f.num_points for f in self.frames)} LiDAR points")
        optimizer = ManifoldOptimizer(self.cost_function, self.settings.optimizer)
        try:
            optimization = optimizer.optimize(self.initial_pose)
        finally:
            self.cost_function.close()
        if not optimization.pose.is_valid():
            raise OptimizationError(stage="result", message="Optimizer returned an invalid pose")
        return CalibrationResult(pose=optimization.pose, state=optimization.state,
                                 optimization=optimization, frame_names=self.frame_names,
                                 settings=self.settings)

    def evaluate(self, pose: Optional[Pose] = None):
        """Score a pose (the initial one by default) without optimizing."""
        return self.cost_function.evaluate(pose or self.initial_pose)
