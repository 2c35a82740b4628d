"""
Shannon entropies of joint intensity/reflectance histograms.

H = -sum(p * ln(p)) over bins with p > 0. The normalized information
distance of an entropy triple is NID = 2 - (H_gray + H_ref) / H_joint.
"""

from dataclasses import dataclass

import numpy as np

from camlidar_nid.core.exceptions import DegenerateSampleError, NumericalDegeneracyError
from camlidar_nid.histogram import Histogram

DEFAULT_JOINT_ENTROPY_EPSILON = 1e-12


@dataclass(frozen=True, eq=False)
class ProbabilityTable:
    """Histogram counts divided by the sample total; each table sums to 1."""
    joint: np.ndarray
    gray: np.ndarray
    ref: np.ndarray


@dataclass(frozen=True)
class EntropyTriple:
    h_gray: float
    h_ref: float
    h_joint: float

    def mutual_information(self) -> float:
        return self.h_gray + self.h_ref - self.h_joint

    def nid(self, epsilon: float = DEFAULT_JOINT_ENTROPY_EPSILON) -> float:
        """
        Normalized information distance.

        Raises:
            NumericalDegeneracyError: joint entropy below epsilon (all samples in
                one joint cell), where the ratio is undefined.
        """
        if self.h_joint < epsilon:
            raise NumericalDegeneracyError(
                joint_entropy=self.h_joint,
                message=f"Joint entropy {self.h_joint:.3e} below {epsilon:.1e}; NID undefined"
            )
        return 2.0 - (self.h_gray + self.h_ref) / self.h_joint


def shannon_entropy(p: np.ndarray) -> float:
    p = p[p > 0.0]
    return float(-np.sum(p * np.log(p)))


class EntropyEstimator:
    """Converts histograms into probability tables and entropy triples."""

    def __init__(self, joint_entropy_epsilon: float = DEFAULT_JOINT_ENTROPY_EPSILON):
        self.joint_entropy_epsilon = joint_entropy_epsilon

    @staticmethod
    def probabilities(histogram: Histogram, frame_index: int = -1) -> ProbabilityTable:
        if histogram.count <= 0:
            raise DegenerateSampleError(
                frame_index=frame_index,
                message="Histogram is empty: no LiDAR point projects into the image"
            )
        n = float(histogram.count)
        return ProbabilityTable(joint=histogram.joint / n, gray=histogram.gray / n,
                                ref=histogram.ref / n)

    def entropies(self, histogram: Histogram, frame_index: int = -1) -> EntropyTriple:
        prob = self.probabilities(histogram, frame_index)
        return EntropyTriple(
            h_gray=shannon_entropy(prob.gray),
            h_ref=shannon_entropy(prob.ref),
            h_joint=shannon_entropy(prob.joint),
        )

    def nid(self, histogram: Histogram, frame_index: int = -1) -> float:
        return self.entropies(histogram, frame_index).nid(self.joint_entropy_epsilon)
