"""Joint-limit soft barrier."""

from typing import Sequence, Tuple

import numpy as np

from ..constants import DEFAULT_LIMIT_MARGIN_FRACTION, DEFAULT_LIMIT_WEIGHT, MIN_LIMIT_MARGIN
from ..exceptions import InvalidGain
from ..pose_residual import PoseResidual
from ..resolver import ControlledDOF
from .task import BaseTask, Linearization, Objective


class JointLimitBarrierTask(BaseTask):
    """Penalize controlled coordinates that enter a margin next to their limits.

    For a joint with range [lo, hi] the margin is
    m = max(MIN_LIMIT_MARGIN, (hi - lo) * margin_fraction) and the inner range
    is [lo + m, hi - m]. Outside the inner range the barrier residual grows
    linearly:
        r = (lo + m - q) / m    below the inner range
        r = (q - hi + m) / m    above the inner range
    and the cost is weight * r^2. Joints without a range contribute nothing.
    """

    def __init__(
        self,
        dofs: Sequence[ControlledDOF],
        weight: float = DEFAULT_LIMIT_WEIGHT,
        margin_fraction: float = DEFAULT_LIMIT_MARGIN_FRACTION,
    ):
        """Initialize the barrier.

        Args:
            dofs: Controlled DOFs, in control order.
            weight: Barrier weight.
            margin_fraction: Margin as a fraction of each joint range.
        """
        if weight < 0.0:
            raise InvalidGain(f"{self.__class__.__name__} weight should be >= 0")
        self.dofs = tuple(dofs)
        self.weight = weight
        self.margin_fraction = margin_fraction

    @property
    def active(self) -> bool:
        return self.weight > 0.0 and self.margin_fraction > 0.0

    def barrier_residuals(self, dof_values: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Compute the barrier residual and its derivative for every DOF.

        Args:
            dof_values: Values of the controlled coordinates, shape (n,).

        Returns:
            Tuple (residual, derivative), each of shape (n,).
        """
        residual = np.zeros(len(self.dofs))
        derivative = np.zeros(len(self.dofs))
        if not self.active:
            return residual, derivative

        for k, dof in enumerate(self.dofs):
            if not dof.has_range:
                continue
            q = dof_values[k]
            margin = max(MIN_LIMIT_MARGIN, dof.span * self.margin_fraction)
            inner_lower = dof.lower + margin
            inner_upper = dof.upper - margin
            if q < inner_lower:
                residual[k] = (inner_lower - q) / margin
                derivative[k] = -1.0 / margin
            elif q > inner_upper:
                residual[k] = (q - inner_upper) / margin
                derivative[k] = 1.0 / margin
        return residual, derivative

    def compute_cost(self, dof_values: np.ndarray, residual: PoseResidual) -> float:
        barrier, _ = self.barrier_residuals(dof_values)
        return float(self.weight * np.sum(barrier * barrier))

    def compute_qp_objective(self, linearization: Linearization) -> Objective:
        barrier, derivative = self.barrier_residuals(linearization.dof_values)
        # c is half the gradient of weight * r^2.
        H = np.diag(self.weight * derivative * derivative)
        c = self.weight * derivative * barrier
        return Objective(H, c)

    def predict_cost(self, linearization: Linearization, step: np.ndarray) -> float:
        return self.compute_cost(linearization.dof_values + step, linearization.residual)
