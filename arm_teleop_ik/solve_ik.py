"""Compute joint steps towards the pose target.

This module provides the damped least-squares (Levenberg-Marquardt) step used
on every solve iteration, and the Jacobian-transpose step used when it fails
or when a joint sits near a limit. Both minimize the quadratic model
    minimize:   (1/2) * dq^T * (H + lambda * I) * dq + c^T * dq
of the summed task costs, or follow its steepest-descent direction.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from . import constants as consts
from .configuration import Configuration
from .exceptions import InvalidDamping
from .limits import limit_attenuation
from .lie import SO3
from .pose_residual import compute_pose_residual
from .resolver import ControlledDOF
from .tasks import BaseTask, Linearization, Objective


def gauss_jordan_solve(A: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Solve A x = b by Gauss-Jordan elimination with partial pivoting.

    Args:
        A: Square matrix of shape (n, n).
        b: Right-hand side of shape (n,).

    Returns:
        Solution of shape (n,). If a pivot smaller than PIVOT_TOLERANCE is
        met the system is treated as singular and a zero vector is returned.
    """
    n = b.shape[0]
    M = np.hstack([np.array(A, dtype=np.float64), np.array(b, dtype=np.float64)[:, None]])

    for col in range(n):
        pivot_row = col + int(np.argmax(np.abs(M[col:, col])))
        if abs(M[pivot_row, col]) < consts.PIVOT_TOLERANCE:
            return np.zeros(n)
        if pivot_row != col:
            M[[col, pivot_row]] = M[[pivot_row, col]]

        M[col] /= M[col, col]
        for row in range(n):
            if row == col:
                continue
            factor = M[row, col]
            if abs(factor) < consts.PIVOT_TOLERANCE:
                continue
            M[row] -= factor * M[col]

    return M[:, n].copy()


def scale_to_step_limit(step: np.ndarray, step_limit: float) -> np.ndarray:
    """Scale a step so that its largest component is at most ``step_limit``.

    The whole vector is scaled, so the step direction is preserved.

    Args:
        step: Joint step.
        step_limit: Largest allowed absolute component.

    Returns:
        The scaled step.
    """
    largest = float(np.max(np.abs(step))) if step.size else 0.0
    if largest > step_limit:
        return step * (step_limit / largest)
    return step.copy()


@dataclass
class SolverState:
    """Solver state carried across update calls.

    Attributes:
        damping: Current trust-region damping.
        initial_damping: Damping restored by :meth:`reset`.
        stall_count: Consecutive iterations without enough improvement.
        last_error: Combined pose error of the previous iteration.
        fallback_count: Consecutive fallback steps.
    """

    damping: float = consts.DEFAULT_LAMBDA_INITIAL
    initial_damping: float = consts.DEFAULT_LAMBDA_INITIAL
    stall_count: int = 0
    last_error: Optional[float] = None
    fallback_count: int = 0

    def reset(self) -> None:
        """Forget the history of the current target."""
        self.damping = self.initial_damping
        self.stall_count = 0
        self.last_error = None
        self.fallback_count = 0

    def record_error(self, error: float, min_improvement: float) -> int:
        """Update the stall counter with the error of a new iteration.

        Args:
            error: Combined pose error of this iteration.
            min_improvement: Improvement below which the iteration stalls.

        Returns:
            The consecutive stall count.
        """
        if self.last_error is not None:
            improvement = self.last_error - error
            if improvement < min_improvement:
                self.stall_count += 1
            else:
                self.stall_count = 0
        self.last_error = error
        return self.stall_count


class LevenbergMarquardtSolver:
    """Damped least-squares step with an adaptive trust region.

    Each trial solves (H + lambda * I) dq = -c, scales dq to the step limit
    and evaluates the true cost with forward kinematics at q + dq. A trial is
    accepted when the cost decreases and the ratio of actual to predicted
    reduction reaches ``step_quality_min``. Lambda shrinks on acceptance and
    grows on rejection, within [lambda_min, lambda_max].
    """

    def __init__(
        self,
        configuration: Configuration,
        body_id: int,
        dofs: Sequence[ControlledDOF],
        tasks: Sequence[BaseTask],
        step_limit: float = consts.DEFAULT_STEP_LIMIT,
        lambda_factor: float = consts.DEFAULT_LAMBDA_FACTOR,
        lambda_min: float = consts.DEFAULT_LAMBDA_MIN,
        lambda_max: float = consts.DEFAULT_LAMBDA_MAX,
        step_quality_min: float = consts.DEFAULT_STEP_QUALITY_MIN,
        max_trials: int = consts.DEFAULT_LM_MAX_TRIALS,
    ):
        """Initialize the solver.

        Args:
            configuration: Model configuration.
            body_id: End-effector body id.
            dofs: Controlled DOFs, in control order.
            tasks: Cost terms.
            step_limit: Largest joint change per iteration.
            lambda_factor: Damping growth and shrink factor, > 1.
            lambda_min: Lower damping bound.
            lambda_max: Upper damping bound.
            step_quality_min: Minimum actual-to-predicted reduction ratio.
            max_trials: Trials per call; 0 always signals failure.
        """
        if not 0.0 < lambda_min <= lambda_max or lambda_factor <= 1.0:
            raise InvalidDamping(
                f"{self.__class__.__name__} requires 0 < lambda_min <= lambda_max "
                f"and lambda_factor > 1"
            )
        self.configuration = configuration
        self.body_id = body_id
        self.dofs = tuple(dofs)
        self.tasks = tuple(tasks)
        self.step_limit = step_limit
        self.lambda_factor = lambda_factor
        self.lambda_min = lambda_min
        self.lambda_max = lambda_max
        self.step_quality_min = step_quality_min
        self.max_trials = max_trials
        self._addresses = np.array([dof.qpos_address for dof in self.dofs], dtype=int)

    def _compute_objective(self, linearization: Linearization) -> Objective:
        n = len(self.dofs)
        H = np.zeros((n, n))
        c = np.zeros(n)
        for task in self.tasks:
            objective = task.compute_qp_objective(linearization)
            H += objective.H
            c += objective.c
        return Objective(H, c)

    def _current_cost(self, linearization: Linearization) -> float:
        return sum(
            task.compute_cost(linearization.dof_values, linearization.residual)
            for task in self.tasks
        )

    def _predicted_cost(self, linearization: Linearization, step: np.ndarray) -> float:
        return sum(task.predict_cost(linearization, step) for task in self.tasks)

    def _proposed_cost(
        self,
        linearization: Linearization,
        step: np.ndarray,
        target_position: np.ndarray,
        target_rotation: SO3,
    ) -> float:
        candidate = self.configuration.q.copy()
        candidate[self._addresses] += step
        pose = self.configuration.evaluate_body_pose(candidate, self.body_id)
        residual = compute_pose_residual(target_position, target_rotation, pose)
        dof_values = linearization.dof_values + step
        return sum(task.compute_cost(dof_values, residual) for task in self.tasks)

    def compute_step(
        self,
        linearization: Linearization,
        state: SolverState,
        target_position: np.ndarray,
        target_rotation: SO3,
    ) -> Optional[np.ndarray]:
        """Compute an accepted damped least-squares step.

        Args:
            linearization: Current state.
            state: Solver state; its damping is read and updated.
            target_position: Target position.
            target_rotation: Target orientation.

        Returns:
            The accepted step of shape (n,), or None if no trial was accepted.
        """
        H, c = self._compute_objective(linearization)
        current_cost = self._current_cost(linearization)
        identity = np.eye(len(self.dofs))
        damping = float(np.clip(state.damping, self.lambda_min, self.lambda_max))

        for _ in range(self.max_trials):
            delta = gauss_jordan_solve(H + damping * identity, -c)
            step = scale_to_step_limit(delta, self.step_limit)

            predicted_cost = self._predicted_cost(linearization, step)
            proposed_cost = self._proposed_cost(
                linearization, step, target_position, target_rotation
            )

            denominator = predicted_cost - current_cost
            tiny = abs(denominator) < consts.PREDICTION_TOLERANCE
            rho = 0.0 if tiny else (proposed_cost - current_cost) / denominator
            if proposed_cost < current_cost and (tiny or rho >= self.step_quality_min):
                state.damping = max(self.lambda_min, damping / self.lambda_factor)
                return step

            damping = min(self.lambda_max, damping * self.lambda_factor)
            state.damping = damping

        logging.debug(
            f"Damped least-squares step rejected after {self.max_trials} trials "
            f"(lambda={state.damping:.3g})"
        )
        return None


def compute_jacobian_transpose_step(
    jacobian: np.ndarray,
    error: np.ndarray,
    dofs: Sequence[ControlledDOF],
    dof_values: np.ndarray,
    step_limit: float = consts.DEFAULT_STEP_LIMIT,
    damping_scale: float = consts.DEFAULT_TRANSPOSE_DAMPING_SCALE,
    margin_fraction: float = consts.DEFAULT_LIMIT_MARGIN_FRACTION,
) -> np.ndarray:
    """Compute a Jacobian-transpose step.

    The step is J^T * error, attenuated for joints moving into a nearby limit,
    multiplied by ``damping_scale`` and clipped element-wise to the step
    limit. It is always finite, even where J is singular.

    Args:
        jacobian: Pose Jacobian of shape (6, n).
        error: Pose error of shape (6,), optionally scaled by the gains.
        dofs: Controlled DOFs.
        dof_values: Current values of the controlled coordinates, shape (n,).
        step_limit: Largest joint change per iteration.
        damping_scale: Overall scale of the step.
        margin_fraction: Base limit margin; attenuation acts within twice it.

    Returns:
        Joint step of shape (n,).
    """
    step = jacobian.T @ error
    for k, dof in enumerate(dofs):
        step[k] *= limit_attenuation(dof, float(dof_values[k]), float(step[k]), margin_fraction)
    return np.clip(step * damping_scale, -step_limit, step_limit)
