"""
NID cost function over a set of calibration frames.

For a candidate pose every frame is projected, histogrammed and reduced to
one residual NID_i = 2 - (H_gray + H_ref) / H_joint. Frames without usable
samples are marked invalid for that evaluation instead of aborting it.

The aggregate cost is 0.5 * sum(NID_i^2) over all frames, where an invalid
frame is charged `degenerate_penalty` (2.0, above the largest attainable
NID) so that pushing frames out of view never looks like an improvement.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np

from camlidar_nid.camera_model import CameraModel
from camlidar_nid.config.settings import CalibrationSettings
from camlidar_nid.core.exceptions import (
    ConfigurationError,
    DegenerateSampleError,
    NumericalDegeneracyError,
)
from camlidar_nid.core.logging_config import get_logger
from camlidar_nid.diagnostics import DiagnosticSink, NullDiagnosticSink
from camlidar_nid.entropy import EntropyEstimator, EntropyTriple
from camlidar_nid.frames import Frame
from camlidar_nid.histogram import JointHistogramEstimator
from camlidar_nid.projector import Projector, SampleBatch
from camlidar_nid.se3 import Pose

logger = get_logger(__name__)

STATUS_OK = "ok"
STATUS_DEGENERATE_SAMPLE = "degenerate_sample"
STATUS_NUMERICAL_DEGENERACY = "numerical_degeneracy"


@dataclass
class FrameResidual:
    """NID of one frame at one pose."""
    frame_index: int
    nid: Optional[float]
    num_samples: int
    entropies: Optional[EntropyTriple] = None
    status: str = STATUS_OK

    @property
    def valid(self) -> bool:
        return self.status == STATUS_OK


@dataclass
class CostEvaluation:
    """Result of scoring one pose against every frame."""
    pose: Pose
    frames: List[FrameResidual] = field(default_factory=list)
    penalty: float = 2.0

    @property
    def valid_count(self) -> int:
        return sum(1 for f in self.frames if f.valid)

    @property
    def all_degenerate(self) -> bool:
        return self.valid_count == 0

    def residual_vector(self) -> np.ndarray:
        """One residual per frame, invalid frames replaced by the penalty."""
        return np.array([f.nid if f.valid else self.penalty for f in self.frames], dtype=float)

    @property
    def aggregate(self) -> float:
        r = self.residual_vector()
        return float(0.5 * np.dot(r, r))

    @property
    def mean_nid(self) -> Optional[float]:
        values = [f.nid for f in self.frames if f.valid]
        return float(np.mean(values)) if values else None

    @property
    def num_samples(self) -> int:
        return sum(f.num_samples for f in self.frames)


class NIDCostFunction:
    """
    Scores candidate poses (T_CL, LiDAR -> camera) by normalized information
    distance between image intensity and LiDAR reflectance.

    Each frame owns a histogram estimator so buffers are reused between
    evaluations and frames can be scored on a thread pool. The pool is
    created on the first parallel evaluation and kept until close(); use
    the cost function as a context manager to release it.
    """

    def __init__(self, camera: CameraModel, frames: Sequence[Frame],
                 settings: Optional[CalibrationSettings] = None,
                 diagnostics: Optional[DiagnosticSink] = None):
        if not frames:
            raise ConfigurationError(field="frames", message="At least one frame is required")
        self.settings = settings or CalibrationSettings()
        self.camera = camera
        self.frames = list(frames)
        for i, frame in enumerate(self.frames):
            if tuple(frame.image_size) != (camera.width, camera.height):
                raise ConfigurationError(
                    field=f"frames[{i}].image", value=f"{frame.image_size}",
                    message=(f"Frame {i} image is {frame.image_size[0]}x{frame.image_size[1]} "
                             f"but the camera model expects {camera.width}x{camera.height}")
                )

        hist_cfg = self.settings.histogram
        self.projector = Projector(camera, self.settings.projection)
        self.entropy = EntropyEstimator(self.settings.cost.joint_entropy_epsilon)
        self._estimators = [JointHistogramEstimator(hist_cfg.num_bins, hist_cfg.binning)
                            for _ in self.frames]
        self._subpixel = hist_cfg.binning == "soft"
        self.diagnostics = diagnostics or NullDiagnosticSink()
        self.evaluation_count = 0
        self.num_workers = min(int(self.settings.cost.num_workers), len(self.frames))
        self._pool: Optional[ThreadPoolExecutor] = None

    def _executor(self) -> ThreadPoolExecutor:
        if self._pool is None:
            self._pool = ThreadPoolExecutor(max_workers=self.num_workers,
                                            thread_name_prefix="nid-frame")
            logger.debug(f"Started frame pool with {self.num_workers} workers")
        return self._pool

    def close(self) -> None:
        """Shut down the frame pool, if one was started."""
        if self._pool is not None:
            self._pool.shutdown(wait=True)
            self._pool = None
            logger.debug("Frame pool shut down")

    def __enter__(self) -> 'NIDCostFunction':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def evaluate_frame(self, pose: Pose, index: int) -> Tuple[FrameResidual, SampleBatch]:
        frame = self.frames[index]
        samples = self.projector.project_frame(pose, frame, subpixel=self._subpixel)
        histogram = self._estimators[index].build(samples)
        try:
            triple = self.entropy.entropies(histogram, frame_index=index)
            nid = triple.nid(self.entropy.joint_entropy_epsilon)
        except DegenerateSampleError:
            return FrameResidual(index, None, 0, status=STATUS_DEGENERATE_SAMPLE), samples
        except NumericalDegeneracyError:
            return FrameResidual(index, None, len(samples), triple,
                                 status=STATUS_NUMERICAL_DEGENERACY), samples
        return FrameResidual(index, nid, len(samples), triple), samples

    def evaluate(self, pose: Pose) -> CostEvaluation:
        self.evaluation_count += 1
        indices = range(len(self.frames))
        if self.num_workers > 1:
            results = list(self._executor().map(lambda i: self.evaluate_frame(pose, i), indices))
        else:
            results = [self.evaluate_frame(pose, i) for i in indices]

        evaluation = CostEvaluation(pose=pose, penalty=self.settings.cost.degenerate_penalty)
        for residual, samples in results:
            evaluation.frames.append(residual)
            self.diagnostics.on_frame(residual.frame_index, self.frames[residual.frame_index],
                                      samples, residual.nid)
            if residual.valid:
                logger.debug(f"Frame {residual.frame_index}: NID = {residual.nid:.6f} "
                             f"({residual.num_samples} samples)")
            else:
                logger.debug(f"Frame {residual.frame_index} skipped: {residual.status} "
                             f"({residual.num_samples} samples)")
        return evaluation

    def __call__(self, pose: Pose) -> float:
        return self.evaluate(pose).aggregate
