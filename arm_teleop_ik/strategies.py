"""Ordered per-iteration policy that picks how to compute the joint step.

Each strategy either proposes a step or declines. The policy asks its
strategies in order and the first proposal wins:

1. ``NearLimitTransposeStrategy``: near a joint limit, go straight to the
   Jacobian-transpose step and skip the more expensive damped least squares.
2. ``LevenbergMarquardtStrategy``: damped least-squares step.
3. ``TransposeFallbackStrategy``: Jacobian-transpose step when the damped
   least-squares step was rejected.
"""

import abc
from typing import List, NamedTuple, Optional, Sequence

import numpy as np

from .ik_config import IKConfig
from .limits import any_near_limit
from .lie import SO3
from .resolver import ControlledDOF
from .solve_ik import LevenbergMarquardtSolver, SolverState, compute_jacobian_transpose_step
from .tasks import Linearization, PoseTask


class StepContext(NamedTuple):
    """Everything a strategy needs for one iteration."""

    linearization: Linearization
    state: SolverState
    target_position: np.ndarray
    target_rotation: SO3


class StepDecision(NamedTuple):
    """A proposed joint step.

    Attributes:
        step: Joint step of shape (n,).
        strategy: Name of the strategy that proposed it.
        is_fallback: Whether it counts towards the consecutive fallback cap.
    """

    step: np.ndarray
    strategy: str
    is_fallback: bool


class StepStrategy(abc.ABC):
    """A way of computing the joint step."""

    name: str = "strategy"
    is_fallback: bool = False

    @abc.abstractmethod
    def propose(self, context: StepContext) -> Optional[np.ndarray]:
        """Propose a step, or return None to defer to the next strategy."""
        raise NotImplementedError


class _TransposeStrategy(StepStrategy):
    is_fallback = True

    def __init__(self, dofs: Sequence[ControlledDOF], pose_task: PoseTask, config: IKConfig):
        self.dofs = tuple(dofs)
        self.pose_task = pose_task
        self.config = config

    def _transpose_step(self, context: StepContext) -> np.ndarray:
        residual = context.linearization.residual
        if self.config.transpose_use_gain:
            error = self.pose_task.scaled_error(residual)
        else:
            error = residual.vector
        return compute_jacobian_transpose_step(
            context.linearization.jacobian,
            error,
            self.dofs,
            context.linearization.dof_values,
            step_limit=self.config.step_limit,
            damping_scale=self.config.transpose_damping_scale,
            margin_fraction=self.config.limit_margin_fraction,
        )


class NearLimitTransposeStrategy(_TransposeStrategy):
    """Jacobian-transpose step whenever any joint is near a limit."""

    name = "near_limit_transpose"

    def propose(self, context: StepContext) -> Optional[np.ndarray]:
        if not any_near_limit(
            self.dofs,
            context.linearization.dof_values,
            self.config.smart_selection_margin_fraction,
        ):
            return None
        return self._transpose_step(context)


class TransposeFallbackStrategy(_TransposeStrategy):
    """Unconditional Jacobian-transpose step."""

    name = "transpose_fallback"

    def propose(self, context: StepContext) -> Optional[np.ndarray]:
        return self._transpose_step(context)


class LevenbergMarquardtStrategy(StepStrategy):
    """Damped least-squares step; declines when no trial is accepted."""

    name = "levenberg_marquardt"

    def __init__(self, solver: LevenbergMarquardtSolver):
        self.solver = solver

    def propose(self, context: StepContext) -> Optional[np.ndarray]:
        return self.solver.compute_step(
            context.linearization,
            context.state,
            context.target_position,
            context.target_rotation,
        )


class StepPolicy:
    """Ask strategies in order; the first proposal wins."""

    def __init__(self, strategies: Sequence[StepStrategy]):
        self.strategies = tuple(strategies)

    @property
    def names(self) -> List[str]:
        return [strategy.name for strategy in self.strategies]

    def decide(self, context: StepContext) -> Optional[StepDecision]:
        """Compute the step of this iteration.

        Args:
            context: Iteration state.

        Returns:
            The first proposed step, or None if every strategy declined.
        """
        for strategy in self.strategies:
            step = strategy.propose(context)
            if step is not None:
                return StepDecision(step=step, strategy=strategy.name, is_fallback=strategy.is_fallback)
        return None


def build_step_policy(
    config: IKConfig,
    dofs: Sequence[ControlledDOF],
    pose_task: PoseTask,
    solver: LevenbergMarquardtSolver,
) -> StepPolicy:
    """Build the step policy selected by the configuration.

    Args:
        config: Controller configuration.
        dofs: Controlled DOFs.
        pose_task: Pose task providing the gains.
        solver: Damped least-squares solver.

    Returns:
        The step policy.
    """
    strategies: List[StepStrategy] = []
    if config.use_smart_selection and config.use_transpose_fallback:
        strategies.append(NearLimitTransposeStrategy(dofs, pose_task, config))
    strategies.append(LevenbergMarquardtStrategy(solver))
    if config.use_transpose_fallback:
        strategies.append(TransposeFallbackStrategy(dofs, pose_task, config))
    return StepPolicy(strategies)
