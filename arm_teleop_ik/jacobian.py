"""Finite-difference Jacobian of the end-effector pose."""

from typing import Sequence

import mujoco
import numpy as np

from .configuration import BodyPose, Configuration
from .constants import FINITE_DIFFERENCE_EPSILON
from .pose_residual import orientation_delta
from .resolver import ControlledDOF


def compute_finite_difference_jacobian(
    configuration: Configuration,
    body_id: int,
    dofs: Sequence[ControlledDOF],
    base_pose: BodyPose,
    eps: float = FINITE_DIFFERENCE_EPSILON,
) -> np.ndarray:
    """Compute the pose Jacobian of a body by forward differences.

    Each controlled coordinate is perturbed in turn by ``eps`` and forward
    kinematics evaluated. The shared coordinates are restored, and forward
    kinematics re-run, before this function returns or raises.

    Args:
        configuration: Model configuration.
        body_id: Body whose pose is differentiated.
        dofs: Controlled DOFs, one Jacobian column each.
        base_pose: Pose of the body at the unperturbed coordinates.
        eps: Perturbation size in [rad] or [m].

    Returns:
        Jacobian of shape (6, len(dofs)); rows are [position, rotation].
    """
    jacobian = np.zeros((6, len(dofs)))
    with configuration.perturbation() as qpos:
        for column, dof in enumerate(dofs):
            original = qpos[dof.qpos_address]
            qpos[dof.qpos_address] = original + eps
            mujoco.mj_forward(configuration.model, configuration.data)
            perturbed = configuration.get_body_pose(body_id)
            qpos[dof.qpos_address] = original

            jacobian[:3, column] = (perturbed.position - base_pose.position) / eps
            jacobian[3:, column] = orientation_delta(base_pose.rotation, perturbed.rotation) / eps
    return jacobian
