"""Pose residual between a target and the current end-effector pose."""

from typing import NamedTuple

import numpy as np

from .configuration import BodyPose
from .lie import SO3


class PoseResidual(NamedTuple):
    """Translational and rotational residual of a pose.

    Attributes:
        translation: Target position minus current position, shape (3,).
        rotation: Axis-angle of the shortest rotation taking the current
            orientation to the target orientation, shape (3,).
    """

    translation: np.ndarray
    rotation: np.ndarray

    @property
    def vector(self) -> np.ndarray:
        """Stacked residual [translation, rotation] of shape (6,)."""
        return np.concatenate([self.translation, self.rotation])

    @property
    def magnitude(self) -> float:
        """Combined scalar error ||t|| + ||r||."""
        return float(np.linalg.norm(self.translation) + np.linalg.norm(self.rotation))


def orientation_delta(base: SO3, other: SO3) -> np.ndarray:
    """World-frame rotation vector taking ``base`` to ``other``.

    Both q and -q encode the same rotation, so the result is computed along
    the shortest arc and does not depend on the sign of either quaternion.

    Args:
        base: Starting orientation.
        other: Final orientation.

    Returns:
        Rotation vector of shape (3,).
    """
    return other.multiply(base.inverse()).log()


def compute_pose_residual(
    target_position: np.ndarray,
    target_rotation: SO3,
    pose: BodyPose,
) -> PoseResidual:
    """Compute the residual of a pose with respect to a target.

    Args:
        target_position: Target position of shape (3,).
        target_rotation: Target orientation.
        pose: Current pose.

    Returns:
        The pose residual.
    """
    translation = np.asarray(target_position, dtype=np.float64) - pose.position
    rotation = orientation_delta(pose.rotation, target_rotation)
    return PoseResidual(translation=translation, rotation=rotation)
