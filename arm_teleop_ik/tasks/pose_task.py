"""Pose task implementation."""

import numpy as np

from ..constants import (
    DEFAULT_HELD_ORIENTATION_WEIGHT,
    DEFAULT_ORIENTATION_WEIGHT,
    DEFAULT_POSITION_WEIGHT,
    DEFAULT_ROTATION_GAIN,
    DEFAULT_TRANSLATION_GAIN,
)
from ..exceptions import InvalidGain
from ..pose_residual import PoseResidual
from .task import BaseTask, Linearization, Objective


class PoseTask(BaseTask):
    """Drive the end-effector towards a target pose.

    The cost is a weighted sum of squares of the scaled residual
    e = [translation_gain * t, rotation_gain * r]:
        sum_i w_i * e_i^2

    Its quadratic model in the joint step dq follows from e(q + dq) ~ e - J dq:
        H = J^T * W * J,    c = -J^T * W * e

    While the user only translates, ``hold_orientation`` switches the rotation
    rows to a much larger weight so the end-effector keeps its orientation.

    Attributes:
        position_weight: Weight of each position row.
        orientation_weight: Weight of each rotation row.
        held_orientation_weight: Weight of each rotation row while holding.
        translation_gain: Scale of the translational residual.
        rotation_gain: Scale of the rotational residual.
        hold_orientation: Whether the held orientation weight is in effect.
    """

    def __init__(
        self,
        position_weight: float = DEFAULT_POSITION_WEIGHT,
        orientation_weight: float = DEFAULT_ORIENTATION_WEIGHT,
        held_orientation_weight: float = DEFAULT_HELD_ORIENTATION_WEIGHT,
        translation_gain: float = DEFAULT_TRANSLATION_GAIN,
        rotation_gain: float = DEFAULT_ROTATION_GAIN,
    ):
        for name, value in (
            ("position_weight", position_weight),
            ("orientation_weight", orientation_weight),
            ("held_orientation_weight", held_orientation_weight),
            ("translation_gain", translation_gain),
            ("rotation_gain", rotation_gain),
        ):
            if value < 0.0:
                raise InvalidGain(f"{self.__class__.__name__} {name} should be >= 0")

        self.position_weight = position_weight
        self.orientation_weight = orientation_weight
        self.held_orientation_weight = held_orientation_weight
        self.translation_gain = translation_gain
        self.rotation_gain = rotation_gain
        self.hold_orientation = False

    def weights(self) -> np.ndarray:
        """Per-row weights of shape (6,)."""
        rotation_weight = (
            self.held_orientation_weight if self.hold_orientation else self.orientation_weight
        )
        return np.array([self.position_weight] * 3 + [rotation_weight] * 3)

    def gains(self) -> np.ndarray:
        """Per-row residual gains of shape (6,)."""
        return np.array([self.translation_gain] * 3 + [self.rotation_gain] * 3)

    def scaled_error(self, residual: PoseResidual) -> np.ndarray:
        """Residual scaled by the gains, shape (6,)."""
        return self.gains() * residual.vector

    def compute_cost(self, dof_values: np.ndarray, residual: PoseResidual) -> float:
        error = self.scaled_error(residual)
        return float(np.sum(self.weights() * error * error))

    def compute_qp_objective(self, linearization: Linearization) -> Objective:
        W = self.weights()
        J = linearization.jacobian
        error = self.scaled_error(linearization.residual)
        H = J.T @ (W[:, None] * J)
        c = -J.T @ (W * error)
        return Objective(H, c)

    def predict_cost(self, linearization: Linearization, step: np.ndarray) -> float:
        predicted = self.scaled_error(linearization.residual) - linearization.jacobian @ step
        return float(np.sum(self.weights() * predicted * predicted))
