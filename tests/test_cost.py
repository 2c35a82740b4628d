"""
Tests for the per-frame NID residuals and the aggregate cost.
"""

import numpy as np
import pytest

from camlidar_nid.config import CalibrationSettings, CostConfig, HistogramConfig
from camlidar_nid.core.exceptions import ConfigurationError
from camlidar_nid.cost import (
    STATUS_DEGENERATE_SAMPLE,
    STATUS_NUMERICAL_DEGENERACY,
    NIDCostFunction,
)
from camlidar_nid.diagnostics import OverlayDiagnosticSink
from camlidar_nid.frames import Frame
from camlidar_nid.synthetic import perturb


@pytest.fixture
def cost_function(scene, frames):
    return NIDCostFunction(scene.camera, frames)


class TestGroundTruth:

    def test_nid_vanishes_at_ground_truth(self, cost_function, ground_truth):
        evaluation = cost_function.evaluate(ground_truth)
        assert evaluation.valid_count == 2
        for residual in evaluation.frames:
            assert residual.nid < 1e-12
            assert residual.num_samples > 2500
        assert evaluation.aggregate < 1e-20

    def test_perturbed_pose_costs_more(self, cost_function, ground_truth):
        truth_cost = cost_function(ground_truth)
        offset = perturb(ground_truth, rotation_deg=1.0, translation=0.05, seed=7)
        evaluation = cost_function.evaluate(offset)
        assert evaluation.aggregate > truth_cost + 0.01
        for residual in evaluation.frames:
            assert 0.0 < residual.nid <= 2.0

    def test_outliers_are_not_sampled(self, cost_function, frames, ground_truth):
        _, samples = cost_function.evaluate_frame(ground_truth, 0)
        assert len(samples) == 3000
        assert samples.point_indices.max() < frames[0].num_points

    def test_evaluation_is_deterministic(self, cost_function, ground_truth):
        pose = perturb(ground_truth, rotation_deg=0.5, translation=0.02, seed=1)
        first = cost_function.evaluate(pose).residual_vector()
        second = cost_function.evaluate(pose).residual_vector()
        np.testing.assert_array_equal(first, second)

    def test_thread_pool_matches_sequential(self, scene, frames, ground_truth):
        pose = perturb(ground_truth, rotation_deg=0.5, translation=0.02, seed=2)
        sequential = NIDCostFunction(scene.camera, frames).evaluate(pose)
        settings = CalibrationSettings(cost=CostConfig(num_workers=2))
        pooled = NIDCostFunction(scene.camera, frames, settings).evaluate(pose)
        np.testing.assert_array_equal(sequential.residual_vector(), pooled.residual_vector())

    def test_thread_pool_reused_across_evaluations(self, scene, frames, ground_truth):
        settings = CalibrationSettings(cost=CostConfig(num_workers=2))
        cost = NIDCostFunction(scene.camera, frames, settings)
        cost.evaluate(ground_truth)
        pool = cost._pool
        assert pool is not None
        cost.evaluate(ground_truth)
        assert cost._pool is pool
        cost.close()
        assert cost._pool is None
        assert pool._shutdown

    def test_context_manager_closes_pool(self, scene, frames, ground_truth):
        settings = CalibrationSettings(cost=CostConfig(num_workers=2))
        with NIDCostFunction(scene.camera, frames, settings) as cost:
            evaluation = cost.evaluate(ground_truth)
        assert evaluation.valid_count == 2
        assert cost._pool is None

    def test_sequential_evaluation_starts_no_pool(self, cost_function, ground_truth):
        cost_function.evaluate(ground_truth)
        assert cost_function._pool is None
        cost_function.close()

    def test_evaluation_count(self, cost_function, ground_truth):
        cost_function.evaluate(ground_truth)
        cost_function(ground_truth)
        assert cost_function.evaluation_count == 2


class TestDegenerateFrames:

    def test_frame_without_points_is_skipped(self, scene, frames, behind_frame, ground_truth):
        cost = NIDCostFunction(scene.camera, [frames[0], behind_frame])
        evaluation = cost.evaluate(ground_truth)

        skipped = evaluation.frames[1]
        assert not skipped.valid
        assert skipped.status == STATUS_DEGENERATE_SAMPLE
        assert skipped.nid is None
        assert skipped.num_samples == 0

        residuals = evaluation.residual_vector()
        assert not np.any(np.isnan(residuals))
        assert residuals[1] == evaluation.penalty
        assert evaluation.valid_count == 1
        assert evaluation.aggregate == pytest.approx(0.5 * 2.0 ** 2)
        assert evaluation.mean_nid < 1e-12

    def test_single_sample_is_numerically_degenerate(self, scene, ground_truth):
        image = np.full((scene.config.height, scene.config.width), 90, dtype=np.uint8)
        frame = Frame(image, np.array([[10.0, 0.0, 0.0, 0.3]]))
        evaluation = NIDCostFunction(scene.camera, [frame]).evaluate(ground_truth)
        assert evaluation.frames[0].status == STATUS_NUMERICAL_DEGENERACY
        assert evaluation.frames[0].num_samples == 1
        assert evaluation.all_degenerate

    def test_all_frames_degenerate(self, scene, behind_frame, ground_truth):
        evaluation = NIDCostFunction(scene.camera, [behind_frame]).evaluate(ground_truth)
        assert evaluation.all_degenerate
        assert evaluation.mean_nid is None


class TestConfiguration:

    def test_no_frames(self, scene):
        with pytest.raises(ConfigurationError):
            NIDCostFunction(scene.camera, [])

    def test_image_size_mismatch(self, small_camera, frames):
        with pytest.raises(ConfigurationError):
            NIDCostFunction(small_camera, frames)

    def test_soft_binning_ranks_ground_truth_first(self, scene, frames, ground_truth):
        settings = CalibrationSettings(histogram=HistogramConfig(num_bins=64, binning="soft"))
        cost = NIDCostFunction(scene.camera, frames, settings)
        offset = perturb(ground_truth, rotation_deg=1.0, translation=0.05, seed=7)
        assert cost(ground_truth) < cost(offset)


class TestDiagnostics:

    def test_overlay_written_per_frame(self, scene, frames, ground_truth, tmp_path):
        sink = OverlayDiagnosticSink(tmp_path / "overlays")
        NIDCostFunction(scene.camera, frames, diagnostics=sink).evaluate(ground_truth)
        assert len(list((tmp_path / "overlays").glob("*.png"))) == 2

    def test_every_n_thins_output(self, scene, frames, ground_truth, tmp_path):
        sink = OverlayDiagnosticSink(tmp_path, every_n=2)
        cost = NIDCostFunction(scene.camera, frames, diagnostics=sink)
        cost.evaluate(ground_truth)
        cost.evaluate(ground_truth)
        assert len(list(tmp_path.glob("*.png"))) == 2

    def test_render_shape(self, scene, frames, ground_truth, tmp_path):
        cost = NIDCostFunction(scene.camera, frames)
        _, samples = cost.evaluate_frame(ground_truth, 0)
        image = OverlayDiagnosticSink(tmp_path).render(frames[0], samples, 0.0)
        assert image.shape == (scene.config.height, scene.config.width, 3)
