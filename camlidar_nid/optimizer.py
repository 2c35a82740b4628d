"""
Manifold optimizer for the extrinsic pose.

Each outer iteration hands a local subproblem to a scipy.optimize solver:
the unknown is a tangent vector z in step units, the pose it stands for is
Pose.retract(scales * z) (T @ exp(delta)) around the current pose, so the
rotation stays on the manifold whatever the solver proposes. The solver's
answer is retracted and accepted only if it lowers the aggregate cost. A
trust radius bounds z per axis; it grows on accepted steps and shrinks on
rejected ones, and the run converges once it falls below step_tolerance.

Solver modes:
- powell: scipy.optimize.minimize(method="Powell") on the aggregate cost.
  The default: it needs no derivatives, which suits hard binning, where the
  NID is piecewise constant in the pose.
- least_squares: scipy.optimize.least_squares (trust region reflective)
  on the per-frame residual vector with a finite-difference Jacobian. Use
  with histogram.binning set to "soft", which makes the residuals vary
  continuously with the pose.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

import numpy as np
from scipy.optimize import least_squares, minimize

from camlidar_nid.config.settings import OptimizerConfig
from camlidar_nid.core.exceptions import ManifoldConstraintViolation
from camlidar_nid.core.logging_config import get_logger
from camlidar_nid.cost import CostEvaluation, NIDCostFunction
from camlidar_nid.se3 import Pose

logger = get_logger(__name__)


class OptimizerState(Enum):
    INITIALIZED = "initialized"
    ITERATING = "iterating"
    CONVERGED = "converged"
    MAX_ITERATIONS_REACHED = "max_iterations_reached"
    FAILED = "failed"


@dataclass
class IterationRecord:
    iteration: int
    cost: float
    candidate_cost: float
    radius: float
    step_norm: float
    accepted: bool
    valid_frames: int


@dataclass
class OptimizationResult:
    pose: Pose
    state: OptimizerState
    initial_pose: Pose
    initial_cost: float
    final_cost: float
    iterations: int
    evaluations: int
    mode: str
    message: str = ""
    final_evaluation: Optional[CostEvaluation] = None
    history: List[IterationRecord] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.state in (OptimizerState.CONVERGED, OptimizerState.MAX_ITERATIONS_REACHED)


class ManifoldOptimizer:
    """Trust-region framing of scipy.optimize solvers on the pose manifold."""

    def __init__(self, cost_function: NIDCostFunction, config: Optional[OptimizerConfig] = None):
        self.cost_function = cost_function
        self.config = config or OptimizerConfig()
        self.config.validate()
        self.scales = np.array([self.config.translation_step] * 3
                               + [np.radians(self.config.rotation_step_deg)] * 3)
        self.state = OptimizerState.INITIALIZED

    # ------------------------------------------------------------------
    # Local subproblems
    # ------------------------------------------------------------------

    def _solve_powell(self, pose: Pose, radius: float) -> np.ndarray:
        def objective(z):
            return self.cost_function.evaluate(pose.retract(self.scales * z)).aggregate

        result = minimize(
            objective, np.zeros(6), method="Powell",
            bounds=[(-radius, radius)] * 6,
            options={
                "maxfev": int(self.config.inner_max_evaluations),
                "xtol": self.config.step_tolerance,
            },
        )
        logger.debug(f"Powell: {result.nfev} evaluations, f={result.fun:.6e} ({result.message})")
        return np.asarray(result.x, dtype=float)

    def _solve_least_squares(self, pose: Pose, radius: float) -> np.ndarray:
        def residuals(z):
            return self.cost_function.evaluate(pose.retract(self.scales * z)).residual_vector()

        # Every Jacobian costs six further evaluations
        max_nfev = max(1, int(self.config.inner_max_evaluations) // 7)
        result = least_squares(
            residuals, np.zeros(6), method="trf",
            bounds=(-radius, radius),
            diff_step=min(self.config.fd_epsilon, radius),
            max_nfev=max_nfev,
            verbose=0,
        )
        logger.debug(f"least_squares: {result.nfev} evaluations, "
                     f"cost={result.cost:.6e} ({result.message})")
        return np.asarray(result.x, dtype=float)

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    def optimize(self, initial_pose: Pose) -> OptimizationResult:
        cfg = self.config
        self.state = OptimizerState.INITIALIZED
        start_evals = self.cost_function.evaluation_count
        solve = self._solve_powell if cfg.mode == "powell" else self._solve_least_squares
        logger.info(f"Optimizing extrinsics with mode={cfg.mode}, "
                    f"max_iterations={cfg.max_iterations}")

        pose = initial_pose
        current = self.cost_function.evaluate(pose)
        self.state = OptimizerState.ITERATING
        initial_cost = current.aggregate
        history: List[IterationRecord] = []

        def finish(state: OptimizerState, iterations: int, message: str) -> OptimizationResult:
            self.state = state
            logger.info(f"Optimizer {state.value} after {iterations} iterations: {message}")
            return OptimizationResult(
                pose=pose, state=state, initial_pose=initial_pose,
                initial_cost=initial_cost, final_cost=current.aggregate,
                iterations=iterations,
                evaluations=self.cost_function.evaluation_count - start_evals,
                mode=cfg.mode, message=message, final_evaluation=current, history=history,
            )

        if current.all_degenerate:
            return finish(OptimizerState.FAILED, 0,
                          "no frame has valid projected points at the initial pose")
        if current.valid_count < len(current.frames):
            logger.warning(f"{len(current.frames) - current.valid_count} of "
                           f"{len(current.frames)} frames unusable at the initial pose")

        radius = 1.0
        for iteration in range(1, cfg.max_iterations + 1):
            step = np.zeros(6)
            candidate = pose
            evaluation = current
            try:
                step = self.scales * solve(pose, radius)
                if np.any(step != 0.0):
                    candidate = pose.retract(step)
                    evaluation = self.cost_function.evaluate(candidate)
            except ManifoldConstraintViolation as e:
                logger.warning(f"Rejected step {step}: {e}")
                evaluation = current

            accepted = (evaluation is not current
                        and not evaluation.all_degenerate
                        and evaluation.aggregate < current.aggregate)
            history.append(IterationRecord(
                iteration=iteration, cost=current.aggregate,
                candidate_cost=evaluation.aggregate, radius=radius,
                step_norm=float(np.linalg.norm(step)), accepted=accepted,
                valid_frames=evaluation.valid_count,
            ))
            logger.info(f"Iteration {iteration}: cost={current.aggregate:.6e} "
                        f"candidate={evaluation.aggregate:.6e} radius={radius:.4g} "
                        f"{'accepted' if accepted else 'rejected'}")

            if accepted:
                decrease = current.aggregate - evaluation.aggregate
                pose, current = candidate, evaluation
                radius = min(radius * cfg.radius_grow, cfg.max_radius)
                if decrease < cfg.cost_tolerance:
                    return finish(OptimizerState.CONVERGED, iteration,
                                  f"cost decrease {decrease:.3e} below tolerance")
            else:
                radius *= cfg.radius_shrink
                if radius < cfg.step_tolerance:
                    return finish(OptimizerState.CONVERGED, iteration,
                                  f"trust radius {radius:.3e} below tolerance")

        return finish(OptimizerState.MAX_ITERATIONS_REACHED, cfg.max_iterations,
                      "iteration budget exhausted")
