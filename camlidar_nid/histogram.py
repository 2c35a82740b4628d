"""
Joint intensity/reflectance histograms.

The estimator owns its count buffers and reuses them between evaluations;
every build() starts from zero. Counting is commutative, so histograms of
disjoint sample partitions can be merged by addition.
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np

from camlidar_nid.projector import SampleBatch

LEVELS = 256


@dataclass(eq=False)
class Histogram:
    """Joint (B x B), gray (B,) and reflectance (B,) counts plus the sample total."""
    joint: np.ndarray
    gray: np.ndarray
    ref: np.ndarray
    count: int

    @classmethod
    def zeros(cls, num_bins: int = LEVELS) -> 'Histogram':
        return cls(joint=np.zeros((num_bins, num_bins)), gray=np.zeros(num_bins),
                   ref=np.zeros(num_bins), count=0)

    @property
    def num_bins(self) -> int:
        return int(self.gray.shape[0])

    @property
    def is_empty(self) -> bool:
        return self.count == 0

    def copy(self) -> 'Histogram':
        return Histogram(joint=self.joint.copy(), gray=self.gray.copy(),
                         ref=self.ref.copy(), count=self.count)

    def merge(self, other: 'Histogram') -> 'Histogram':
        if other.num_bins != self.num_bins:
            raise ValueError(f"Cannot merge histograms with {self.num_bins} and {other.num_bins} bins")
        return Histogram(joint=self.joint + other.joint, gray=self.gray + other.gray,
                         ref=self.ref + other.ref, count=self.count + other.count)

    __add__ = merge


class JointHistogramEstimator:
    """
    Accumulates samples into a joint histogram and its two marginals.

    binning="hard": each sample adds 1 to exactly one cell of each table.
    binning="soft": each sample's unit weight is split bilinearly between the
    two nearest bins per axis (four joint cells), using the continuous values
    of the batch. Table sums equal the sample count in both modes.

    The returned Histogram shares the estimator's buffers and is valid until
    the next build()/reset(); call copy() to keep it.
    """

    def __init__(self, num_bins: int = LEVELS, binning: str = "hard"):
        if not 2 <= num_bins <= LEVELS:
            raise ValueError(f"num_bins must be in [2, {LEVELS}], got {num_bins}")
        if binning not in ("hard", "soft"):
            raise ValueError(f"Unknown binning mode '{binning}'")
        self.num_bins = int(num_bins)
        self.binning = binning
        self._joint = np.zeros((self.num_bins, self.num_bins))
        self._gray = np.zeros(self.num_bins)
        self._ref = np.zeros(self.num_bins)
        self._count = 0

    def reset(self) -> None:
        self._joint.fill(0.0)
        self._gray.fill(0.0)
        self._ref.fill(0.0)
        self._count = 0

    @property
    def histogram(self) -> Histogram:
        return Histogram(joint=self._joint, gray=self._gray, ref=self._ref, count=self._count)

    def to_bins(self, levels) -> np.ndarray:
        """Map integer levels in [0, 255] to bin indices."""
        levels = np.asarray(levels, dtype=np.int64)
        return levels * self.num_bins // LEVELS

    def add(self, gray: int, ref: int) -> None:
        """Add one hard-binned (gray, reflectance) level pair."""
        g = int(self.to_bins(gray))
        r = int(self.to_bins(ref))
        self._gray[g] += 1.0
        self._ref[r] += 1.0
        self._joint[g, r] += 1.0
        self._count += 1

    def accumulate(self, samples: SampleBatch) -> None:
        n = len(samples)
        if n == 0:
            return
        if self.binning == "soft" and samples.has_continuous_values:
            self._accumulate_soft(samples.gray_values, samples.ref_values)
        else:
            self._accumulate_hard(samples.gray, samples.ref)
        self._count += n

    def build(self, samples: SampleBatch) -> Histogram:
        """Reset, then count one evaluation's samples."""
        self.reset()
        self.accumulate(samples)
        return self.histogram

    def _accumulate_hard(self, gray_levels: np.ndarray, ref_levels: np.ndarray) -> None:
        B = self.num_bins
        g = self.to_bins(gray_levels)
        r = self.to_bins(ref_levels)
        self._gray += np.bincount(g, minlength=B)
        self._ref += np.bincount(r, minlength=B)
        self._joint += np.bincount(g * B + r, minlength=B * B).reshape(B, B)

    def _split(self, values: np.ndarray):
        # Bin centers sit at integer positions of values * B / 256
        pos = np.clip(np.asarray(values, dtype=np.float64) * self.num_bins / LEVELS,
                      0.0, self.num_bins - 1.0)
        lo = np.floor(pos).astype(np.int64)
        hi = np.minimum(lo + 1, self.num_bins - 1)
        w_hi = pos - lo
        return lo, hi, 1.0 - w_hi, w_hi

    def _accumulate_soft(self, gray_values: np.ndarray, ref_values: np.ndarray) -> None:
        B = self.num_bins
        g_lo, g_hi, gw_lo, gw_hi = self._split(gray_values)
        r_lo, r_hi, rw_lo, rw_hi = self._split(ref_values)

        self._gray += (np.bincount(g_lo, weights=gw_lo, minlength=B)
                       + np.bincount(g_hi, weights=gw_hi, minlength=B))
        self._ref += (np.bincount(r_lo, weights=rw_lo, minlength=B)
                      + np.bincount(r_hi, weights=rw_hi, minlength=B))

        joint = np.zeros(B * B)
        for g_idx, g_w in ((g_lo, gw_lo), (g_hi, gw_hi)):
            for r_idx, r_w in ((r_lo, rw_lo), (r_hi, rw_hi)):
                joint += np.bincount(g_idx * B + r_idx, weights=g_w * r_w, minlength=B * B)
        self._joint += joint.reshape(B, B)


def build_histogram(samples: SampleBatch, num_bins: int = LEVELS,
                    binning: str = "hard",
                    estimator: Optional[JointHistogramEstimator] = None) -> Histogram:
    """One-shot helper returning a histogram that owns its arrays."""
    estimator = estimator or JointHistogramEstimator(num_bins, binning)
    return estimator.build(samples).copy()
