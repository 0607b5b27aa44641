"""All cost terms derive from the BaseTask base class."""

import abc
from typing import NamedTuple

import numpy as np

from ..pose_residual import PoseResidual


class Objective(NamedTuple):
    """Quadratic objective of the form (1/2) * dq^T * H * dq + c^T * dq."""

    H: np.ndarray
    c: np.ndarray


class Linearization(NamedTuple):
    """State around which the cost terms are linearized.

    Attributes:
        dof_values: Current values of the controlled coordinates, shape (n,).
        residual: Pose residual at the current coordinates.
        jacobian: Pose Jacobian of shape (6, n).
    """

    dof_values: np.ndarray
    residual: PoseResidual
    jacobian: np.ndarray


class BaseTask(abc.ABC):
    """Abstract base class for cost terms of the damped least-squares step.

    Subclasses provide the exact cost at a configuration, its quadratic
    model around a linearization, and the cost predicted by that model for a
    candidate step.
    """

    @abc.abstractmethod
    def compute_cost(self, dof_values: np.ndarray, residual: PoseResidual) -> float:
        """Compute the exact cost.

        Args:
            dof_values: Values of the controlled coordinates, shape (n,).
            residual: Pose residual at those coordinates.

        Returns:
            Non-negative cost.
        """
        raise NotImplementedError

    @abc.abstractmethod
    def compute_qp_objective(self, linearization: Linearization) -> Objective:
        """Compute the quadratic model of the cost in the joint step.

        Args:
            linearization: Current state.

        Returns:
            Pair (H, c) such that the change in cost for a step dq is
            approximated by 2 * ((1/2) * dq^T * H * dq + c^T * dq).
        """
        raise NotImplementedError

    @abc.abstractmethod
    def predict_cost(self, linearization: Linearization, step: np.ndarray) -> float:
        """Predict the cost after a step.

        Args:
            linearization: Current state.
            step: Joint step of shape (n,).

        Returns:
            Predicted cost.
        """
        raise NotImplementedError
