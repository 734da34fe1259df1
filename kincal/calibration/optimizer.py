"""
Kinematic calibration optimizer.

Builds a nonlinear least-squares problem from a KinematicCalibrationProblem
and solves it with scipy.optimize.least_squares.

Residuals:
  - one 6-vector per measurement: the log-map error between the predicted
    camera-to-target transform

        inv(FK_c(q_c, o_c) * T_cm_c) * T_cb_tb * FK_t(q_t, o_t) * T_tm_t

    and the measured one (translation error + rotation-vector error);
  - one scalar per free DH offset: ``offset * uncertainty_scale / stdev``,
    i.e. a zero-mean Gaussian prior that keeps weakly observed offsets
    bounded.

Parameter vector layout (before masking):

    [camera DH offsets (4*dof_c) | target DH offsets (4*dof_t) |
     camera_mount_to_camera (6)  | target_mount_to_target (6)   |
     camera_base_to_target_base (6)]

Poses are Pose6d arrays (rx, ry, rz, x, y, z).  Masked entries are dropped
from the solver's variable vector and stay at their initial value.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Optional

import numpy as np
from scipy.optimize import least_squares

from kincal.calibration.covariance import CovarianceResult, compute_covariance
from kincal.calibration.masks import ALL_COMPONENTS, DHParameter
from kincal.calibration.problem import KinematicCalibrationProblem
from kincal.exceptions import DomainError, OptimizationError
from kincal.kinematics.dh_chain import DHChain
from kincal.kinematics.transforms import (
    Pose6d,
    invert_transform,
    pose6d_to_matrices,
    transform_log,
)

logger = logging.getLogger(__name__)

POSE_RESIDUAL_SIZE = 6
POSE_BLOCKS = ("camera_mount_to_camera", "target_mount_to_target", "camera_base_to_target_base")
SOLVER_METHODS = ("trf", "lm", "dogbox")
# |correlation| above which a pair is logged as nearly degenerate
DEGENERATE_CORRELATION = 0.99
# Singular values below this fraction of the largest count as rank-deficient;
# forward differences are only accurate to about sqrt(eps)
RANK_RTOL = 1e-6


@dataclass
class SolverOptions:
    """Generic least-squares solver configuration."""
    max_iterations: int = 500
    ftol: float = 1e-10
    xtol: float = 1e-10
    gtol: float = 1e-10
    method: str = "trf"
    jac: str = "2-point"
    # Hint only: residual blocks are split across a thread pool when > 1
    num_threads: int = 1
    verbose: int = 0
    # Opt-in numerical rank check of the initial Jacobian
    check_rank: bool = False

    def __post_init__(self):
        if self.method not in SOLVER_METHODS:
            raise DomainError(f"Unknown solver method '{self.method}', expected one of {SOLVER_METHODS}")
        if self.max_iterations < 1:
            raise DomainError(f"max_iterations must be >= 1, got {self.max_iterations}")
        if self.num_threads < 1:
            raise DomainError(f"num_threads must be >= 1, got {self.num_threads}")

    @classmethod
    def from_config(cls, config: Optional[Any] = None) -> SolverOptions:
        """Build options from the 'solver' section of the calibration config."""
        if config is None:
            from kincal.config.calibration_config import get_calibration_config
            config = get_calibration_config()
        section = config.get("solver")
        return cls(**{k: v for k, v in section.items() if k in cls.__dataclass_fields__})


@dataclass(frozen=True, eq=False)
class KinematicCalibrationResult:
    """Output of one optimizer run.  Read-only."""
    converged: bool
    initial_cost_per_obs: float
    final_cost_per_obs: float
    camera_chain_dh_offsets: np.ndarray
    target_chain_dh_offsets: np.ndarray
    camera_mount_to_camera: np.ndarray
    target_mount_to_target: np.ndarray
    camera_base_to_target_base: np.ndarray
    covariance: CovarianceResult
    iterations: int = 0
    status_message: str = ""
    num_residuals: int = 0
    num_free_parameters: int = 0


# ---------------------------------------------------------------------------
# Parameter layout
# ---------------------------------------------------------------------------


class _ParameterLayout:
    """Maps between the full parameter vector and the free (unmasked) subset."""

    def __init__(self, problem: KinematicCalibrationProblem) -> None:
        self.n_cam = problem.camera_chain.num_params
        self.n_tgt = problem.target_chain.num_params
        mask = problem.mask

        labels: list[str] = []
        labels += _dh_labels("camera_chain", problem.camera_chain)
        labels += _dh_labels("target_chain", problem.target_chain)
        for block in POSE_BLOCKS:
            labels += [f"{block}.{c.name.lower()}" for c in ALL_COMPONENTS]
        self.labels = labels

        fixed = np.zeros(len(labels), dtype=bool)
        for i in mask.camera_chain:
            fixed[i] = True
        for i in mask.target_chain:
            fixed[self.n_cam + i] = True
        offset = self.n_cam + self.n_tgt
        for block in POSE_BLOCKS:
            for c in getattr(mask, block):
                fixed[offset + int(c)] = True
            offset += len(ALL_COMPONENTS)

        self.free_index = np.flatnonzero(~fixed)
        self.free_labels = [labels[i] for i in self.free_index]
        # Full-vector indices of the free DH offsets (the prior residuals)
        n_dh = self.n_cam + self.n_tgt
        self.free_dh_index = self.free_index[self.free_index < n_dh]

        self.x0 = np.concatenate([
            np.zeros(n_dh, dtype=np.float64),
            Pose6d.from_matrix(problem.camera_mount_to_camera_guess).to_array(),
            Pose6d.from_matrix(problem.target_mount_to_target_guess).to_array(),
            Pose6d.from_matrix(problem.camera_base_to_target_base_guess).to_array(),
        ])

    @property
    def num_free(self) -> int:
        return int(self.free_index.size)

    def expand(self, x_free: np.ndarray) -> np.ndarray:
        x = self.x0.copy()
        x[self.free_index] = x_free
        return x

    def split(self, x: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        """Full vector -> (camera offsets, target offsets, three Pose6d arrays)."""
        i = 0
        cam = x[i:i + self.n_cam]
        i += self.n_cam
        tgt = x[i:i + self.n_tgt]
        i += self.n_tgt
        poses = []
        for _ in POSE_BLOCKS:
            poses.append(x[i:i + 6])
            i += 6
        return cam, tgt, poses[0], poses[1], poses[2]


def _dh_labels(prefix: str, chain: DHChain) -> list[str]:
    return [
        f"{prefix}.{joint}.{p.name.lower()}"
        for joint in chain.joint_names
        for p in DHParameter
    ]


# ---------------------------------------------------------------------------
# Residual model
# ---------------------------------------------------------------------------


def predict_camera_to_target(
    camera_chain: DHChain,
    target_chain: DHChain,
    camera_joints: np.ndarray,
    target_joints: np.ndarray,
    camera_offsets: Optional[np.ndarray],
    target_offsets: Optional[np.ndarray],
    camera_mount_to_camera: np.ndarray,
    target_mount_to_target: np.ndarray,
    camera_base_to_target_base: np.ndarray,
) -> np.ndarray:
    """Predicted (N, 4, 4) camera-to-target transforms for N joint states."""
    camera_base_to_camera = camera_chain.get_fk_batch(camera_joints, camera_offsets) @ camera_mount_to_camera
    camera_base_to_target = (
        camera_base_to_target_base
        @ target_chain.get_fk_batch(target_joints, target_offsets)
        @ target_mount_to_target
    )
    return invert_transform(camera_base_to_camera) @ camera_base_to_target


class _ResidualModel:
    """Vectorized residual function over the free parameters."""

    def __init__(
        self,
        problem: KinematicCalibrationProblem,
        layout: _ParameterLayout,
        uncertainty_scale: float,
        executor: Optional[ThreadPoolExecutor] = None,
        num_chunks: int = 1,
    ) -> None:
        self.problem = problem
        self.layout = layout
        obs = problem.observations
        self.camera_joints = np.array([m.camera_chain_joints for m in obs], dtype=np.float64).reshape(
            len(obs), problem.camera_chain.dof)
        self.target_joints = np.array([m.target_chain_joints for m in obs], dtype=np.float64).reshape(
            len(obs), problem.target_chain.dof)
        self.measured = np.array([m.camera_to_target for m in obs], dtype=np.float64)

        stdev = np.concatenate([problem.stdev_vector("camera"), problem.stdev_vector("target")])
        self.prior_weights = uncertainty_scale / stdev[layout.free_dh_index]

        self.executor = executor
        self.chunks = [c for c in np.array_split(np.arange(len(obs)), num_chunks) if c.size]

    @property
    def num_residuals(self) -> int:
        return POSE_RESIDUAL_SIZE * self.measured.shape[0] + self.prior_weights.size

    def _pose_residuals(self, x: np.ndarray, idx: np.ndarray) -> np.ndarray:
        cam_off, tgt_off, cm, tm, cbtb = self.layout.split(x)
        predicted = predict_camera_to_target(
            self.problem.camera_chain,
            self.problem.target_chain,
            self.camera_joints[idx],
            self.target_joints[idx],
            cam_off,
            tgt_off,
            pose6d_to_matrices(cm),
            pose6d_to_matrices(tm),
            pose6d_to_matrices(cbtb),
        )
        return transform_log(predicted, self.measured[idx]).reshape(-1)

    def __call__(self, x_free: np.ndarray) -> np.ndarray:
        x = self.layout.expand(x_free)
        if self.executor is not None and len(self.chunks) > 1:
            parts = list(self.executor.map(lambda idx: self._pose_residuals(x, idx), self.chunks))
            pose = np.concatenate(parts)
        else:
            pose = self._pose_residuals(x, np.arange(self.measured.shape[0]))
        prior = x[self.layout.free_dh_index] * self.prior_weights
        return np.concatenate([pose, prior])


def _numeric_jacobian(fun, x: np.ndarray, f0: np.ndarray) -> np.ndarray:
    """Forward-difference Jacobian, used only for the optional rank check."""
    J = np.empty((f0.size, x.size), dtype=np.float64)
    for j in range(x.size):
        h = np.sqrt(np.finfo(float).eps) * max(1.0, abs(x[j]))
        xp = x.copy()
        xp[j] += h
        J[:, j] = (fun(xp) - f0) / h
    return J


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def optimize(
    problem: KinematicCalibrationProblem,
    uncertainty_scale: float = 1.0,
    options: Optional[SolverOptions] = None,
) -> KinematicCalibrationResult:
    """Calibrate DH offsets and mount/base transforms.

    Args:
        problem: chains, guesses, priors, mask and measurements.
        uncertainty_scale: multiplier on the prior weights (1 / stdev).  Zero
            disables the pull toward nominal DH parameters.
        options: solver configuration.  Defaults to SolverOptions().

    Returns:
        KinematicCalibrationResult.  Non-convergence is reported through
        ``converged``, not raised.

    Raises:
        DomainError: malformed problem inputs.
        OptimizationError: empty measurement set, more free parameters than
            constraints, or a numerical failure inside the solver.
        CovarianceError: covariance could not be computed at the solution.
    """
    if options is None:
        options = SolverOptions()
    if not np.isfinite(uncertainty_scale) or uncertainty_scale < 0.0:
        raise DomainError(f"uncertainty_scale must be finite and >= 0, got {uncertainty_scale}")

    if not problem.observations:
        raise OptimizationError("Measurement set is empty")
    problem.validate()

    layout = _ParameterLayout(problem)
    n_free = layout.num_free
    if n_free == 0:
        raise OptimizationError("Every parameter is masked; nothing to optimize")
    if not problem.has_enough_constraints():
        raise OptimizationError(
            f"{n_free} free parameters but only {POSE_RESIDUAL_SIZE * len(problem.observations)} "
            f"pose constraints from {len(problem.observations)} measurements"
        )

    executor = ThreadPoolExecutor(max_workers=options.num_threads) if options.num_threads > 1 else None
    try:
        model = _ResidualModel(problem, layout, uncertainty_scale, executor, options.num_threads)
        return _solve(model, layout, options)
    finally:
        if executor is not None:
            executor.shutdown(wait=True)


def _solve(model: _ResidualModel, layout: _ParameterLayout, options: SolverOptions) -> KinematicCalibrationResult:
    x0 = layout.x0[layout.free_index]
    m = model.num_residuals

    logger.info(
        "Kinematic calibration: %d measurements, %d free parameters, %d residuals (method=%s)",
        model.measured.shape[0], layout.num_free, m, options.method,
    )

    r0 = model(x0)
    if not np.all(np.isfinite(r0)):
        raise OptimizationError("Residuals are not finite at the initial guess")
    initial_cost_per_obs = float(r0 @ r0) / m

    if options.check_rank:
        s = np.linalg.svd(_numeric_jacobian(model, x0, r0), compute_uv=False)
        rank = int(np.sum(s > RANK_RTOL * s[0]))
        if rank < layout.num_free:
            raise OptimizationError(
                f"Initial Jacobian has rank {rank} < {layout.num_free} free parameters; "
                "mask the redundant degrees of freedom"
            )
        logger.debug("Initial Jacobian has full rank %d", rank)

    try:
        sol = least_squares(
            model,
            x0,
            jac=options.jac,
            method=options.method,
            ftol=options.ftol,
            xtol=options.xtol,
            gtol=options.gtol,
            max_nfev=options.max_iterations,
            verbose=options.verbose,
        )
    except (ValueError, np.linalg.LinAlgError) as e:
        raise OptimizationError(f"Solver failed: {e}") from e

    if sol.status < 0:
        raise OptimizationError(f"Solver failed: {sol.message}")
    if not np.all(np.isfinite(sol.x)) or not np.all(np.isfinite(sol.fun)):
        raise OptimizationError("Solver produced non-finite parameters or residuals")

    converged = sol.status > 0
    final_cost_per_obs = float(sol.fun @ sol.fun) / m
    if converged:
        logger.info(
            "Calibration converged after %d evaluations: cost/obs %.3e -> %.3e",
            sol.nfev, initial_cost_per_obs, final_cost_per_obs,
        )
    else:
        logger.warning(
            "Calibration did not converge within %d evaluations: cost/obs %.3e -> %.3e (%s)",
            options.max_iterations, initial_cost_per_obs, final_cost_per_obs, sol.message,
        )

    covariance = compute_covariance(sol.jac, sol.fun, layout.free_labels)
    degenerate = covariance.correlation_coeff_above_threshold(DEGENERATE_CORRELATION)
    for a, b, c in degenerate:
        logger.warning("Parameters %s and %s are nearly degenerate (correlation %+.4f); consider masking one", a, b, c)

    x = layout.expand(sol.x)
    cam_off, tgt_off, cm, tm, cbtb = layout.split(x)
    return KinematicCalibrationResult(
        converged=converged,
        initial_cost_per_obs=initial_cost_per_obs,
        final_cost_per_obs=final_cost_per_obs,
        camera_chain_dh_offsets=cam_off.copy(),
        target_chain_dh_offsets=tgt_off.copy(),
        camera_mount_to_camera=pose6d_to_matrices(cm),
        target_mount_to_target=pose6d_to_matrices(tm),
        camera_base_to_target_base=pose6d_to_matrices(cbtb),
        covariance=covariance,
        iterations=int(sol.nfev),
        status_message=str(sol.message),
        num_residuals=m,
        num_free_parameters=layout.num_free,
    )
