"""SO(3): Special Orthogonal group for 3D rotations."""

from __future__ import annotations

from dataclasses import dataclass

import mujoco
import numpy as np

from ..constants import SMALL_ROTATION, get_epsilon

_IDENTITY_QUAT = np.array([1.0, 0.0, 0.0, 0.0], dtype=np.float64)  # [w, x, y, z]


@dataclass(frozen=True)
class SO3:
    """Special orthogonal group for 3D rotations.

    Internal parameterization is the MuJoCo quaternion [w, x, y, z].
    Tangent parameterization is (omega_x, omega_y, omega_z).
    """

    wxyz: np.ndarray  # [w, x, y, z]
    parameters_dim: int = 4
    tangent_dim: int = 3

    def __repr__(self) -> str:
        wxyz = np.round(self.wxyz, 5)
        return f"{self.__class__.__name__}(wxyz={wxyz})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SO3):
            return NotImplemented
        return np.allclose(self.wxyz, other.wxyz)

    def __matmul__(self, other: SO3) -> SO3:
        return self.multiply(other)

    def copy(self) -> SO3:
        return SO3(wxyz=self.wxyz.copy())

    @classmethod
    def identity(cls) -> SO3:
        return SO3(wxyz=_IDENTITY_QUAT.copy())

    @classmethod
    def from_quaternion(cls, quat: np.ndarray) -> SO3:
        """Create SO3 from a [w, x, y, z] quaternion, normalizing it.

        Args:
            quat: Quaternion of shape (4,).

        Returns:
            SO3 instance.
        """
        quat = np.array(quat, dtype=np.float64)
        assert quat.shape == (4,)
        return SO3(wxyz=quat).normalized()

    @classmethod
    def from_matrix(cls, matrix: np.ndarray) -> SO3:
        """Create SO3 from rotation matrix.

        Args:
            matrix: 3x3 rotation matrix.

        Returns:
            SO3 instance.
        """
        assert matrix.shape == (3, 3)
        quat = np.zeros(4)
        mujoco.mju_mat2Quat(quat, np.ascontiguousarray(matrix, dtype=np.float64).ravel())
        return SO3(wxyz=quat)

    @classmethod
    def from_axis_angle(cls, axis: np.ndarray, angle: float) -> SO3:
        """Create SO3 from a rotation axis and angle.

        Args:
            axis: Unit rotation axis of shape (3,).
            angle: Rotation angle in radians.

        Returns:
            SO3 instance.
        """
        quat = np.zeros(4)
        mujoco.mju_axisAngle2Quat(quat, np.asarray(axis, dtype=np.float64), float(angle))
        return SO3(wxyz=quat)

    @classmethod
    def from_euler_xyz(cls, rx: float, ry: float, rz: float) -> SO3:
        """Create SO3 from intrinsic XYZ Euler angles.

        The rotation about X is applied first in the body frame, then Y about
        the rotated frame, then Z.

        Args:
            rx: Rotation about X in radians.
            ry: Rotation about Y in radians.
            rz: Rotation about Z in radians.

        Returns:
            SO3 instance.
        """
        qx = cls.from_axis_angle(np.array([1.0, 0.0, 0.0]), rx)
        qy = cls.from_axis_angle(np.array([0.0, 1.0, 0.0]), ry)
        qz = cls.from_axis_angle(np.array([0.0, 0.0, 1.0]), rz)
        return qx.multiply(qy).multiply(qz)

    def as_matrix(self) -> np.ndarray:
        """Convert to 3x3 rotation matrix."""
        mat = np.zeros(9)
        mujoco.mju_quat2Mat(mat, self.wxyz)
        return mat.reshape(3, 3)

    def normalized(self) -> SO3:
        """Return the unit-norm version of this rotation."""
        quat = self.wxyz.astype(np.float64).copy()
        norm = np.linalg.norm(quat)
        if norm < get_epsilon(quat.dtype):
            return SO3.identity()
        return SO3(wxyz=quat / norm)

    def canonical(self) -> SO3:
        """Return the representative with a non-negative scalar part.

        q and -q encode the same rotation; picking w >= 0 selects the
        shortest arc.
        """
        if self.wxyz[0] < 0.0:
            return SO3(wxyz=-self.wxyz)
        return self.copy()

    @classmethod
    def exp(cls, tangent: np.ndarray) -> SO3:
        """Exponential map from tangent space to SO(3).

        Args:
            tangent: 3D rotation vector.

        Returns:
            SO3 instance.
        """
        assert tangent.shape == (3,)
        theta = np.linalg.norm(tangent)
        if theta < get_epsilon(tangent.dtype):
            return SO3.identity()
        return cls.from_axis_angle(tangent / theta, theta)

    def log(self) -> np.ndarray:
        """Logarithm map from SO(3) to tangent space along the shortest arc.

        Returns:
            3D rotation vector (axis times angle), with angle in [0, pi].
        """
        quat = self.canonical().wxyz
        sin_half = np.linalg.norm(quat[1:])
        if sin_half < SMALL_ROTATION:
            return np.zeros(3)
        axis = quat[1:] / sin_half
        angle = 2.0 * np.arctan2(sin_half, quat[0])
        return axis * angle

    def inverse(self) -> SO3:
        """Compute inverse rotation."""
        quat = np.zeros(4)
        mujoco.mju_negQuat(quat, self.wxyz)
        return SO3(wxyz=quat)

    def apply(self, target: np.ndarray) -> np.ndarray:
        """Rotate a 3D point.

        Args:
            target: 3D point.

        Returns:
            Rotated point.
        """
        assert target.shape == (3,)
        result = np.zeros(3)
        mujoco.mju_rotVecQuat(result, np.asarray(target, dtype=np.float64), self.wxyz)
        return result

    def multiply(self, other: SO3) -> SO3:
        """Compose two rotations.

        Args:
            other: Another SO3 rotation, applied first.

        Returns:
            Composed rotation.
        """
        quat = np.zeros(4)
        mujoco.mju_mulQuat(quat, self.wxyz, other.wxyz)
        return SO3(wxyz=quat)
