"""
camlidar_nid - Camera/LiDAR extrinsic calibration by Normalized Information Distance.
"""

from .camera_model import CameraModel, PinholeCameraModel
from .cost import CostEvaluation, FrameResidual, NIDCostFunction
from .entropy import EntropyEstimator, EntropyTriple, ProbabilityTable
from .frames import Frame
from .histogram import Histogram, JointHistogramEstimator
from .optimizer import ManifoldOptimizer, OptimizationResult, OptimizerState
from .projector import Projector, Sample, SampleBatch
from .se3 import Pose
from .session import CalibrationResult, CalibrationSession

__version__ = "0.1.0"

__all__ = [
    'CameraModel',
    'PinholeCameraModel',
    'CostEvaluation',
    'FrameResidual',
    'NIDCostFunction',
    'EntropyEstimator',
    'EntropyTriple',
    'ProbabilityTable',
    'Frame',
    'Histogram',
    'JointHistogramEstimator',
    'ManifoldOptimizer',
    'OptimizationResult',
    'OptimizerState',
    'Projector',
    'Sample',
    'SampleBatch',
    'Pose',
    'CalibrationResult',
    'CalibrationSession',
]
