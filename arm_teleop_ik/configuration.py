"""Configuration space of a MuJoCo model.

The Configuration class encapsulates a MuJoCo model and data, offering easy
access to body poses, name tables and joint/actuator ranges, and a scoped way
to evaluate forward kinematics at perturbed joint coordinates.
"""

import contextlib
import logging
from typing import Iterator, List, NamedTuple, Optional, Sequence, Tuple

import mujoco
import numpy as np

from . import constants as consts
from . import exceptions
from .lie import SO3


class BodyPose(NamedTuple):
    """World pose of a body."""

    position: np.ndarray
    rotation: SO3


class Configuration:
    """Encapsulates a MuJoCo model and data for convenient access to kinematic quantities.

    The generalized-coordinate buffer ``data.qpos`` is shared with the host: it
    is read by rendering and advanced by physics stepping outside the
    controller. Any temporary change made while differentiating must go
    through :meth:`perturbation`, which restores the buffer on every exit path.

    Key functionalities include:
    * Running forward kinematics to update the state.
    * Retrieving body poses in the world frame.
    * Resolving body, joint and actuator names.
    * Reading joint and actuator command ranges.
    * Evaluating poses at candidate configurations without side effects.
    """

    def __init__(
        self,
        model: mujoco.MjModel,
        data: Optional[mujoco.MjData] = None,
    ):
        """Constructor.

        Args:
            model: MuJoCo model.
            data: MuJoCo data shared with the host. If None, fresh data is
                created at the model's default configuration.
        """
        self.model = model
        self.data = data if data is not None else mujoco.MjData(model)
        self.update()

    @classmethod
    def from_xml_string(cls, xml: str, assets: Optional[dict] = None) -> "Configuration":
        """Create a Configuration from an MJCF string.

        Args:
            xml: MJCF model description.
            assets: Optional mapping of asset file names to contents.

        Returns:
            Configuration instance.
        """
        model = mujoco.MjModel.from_xml_string(xml, assets or {})
        return cls(model)

    @classmethod
    def from_xml_path(cls, path: str) -> "Configuration":
        """Create a Configuration from an MJCF file."""
        model = mujoco.MjModel.from_xml_path(str(path))
        return cls(model)

    def update(self, qpos: Optional[np.ndarray] = None) -> None:
        """Run forward kinematics.

        Args:
            qpos: Optional configuration vector to override internal data.qpos with.
        """
        if qpos is not None:
            self.data.qpos[:] = qpos
        mujoco.mj_forward(self.model, self.data)

    @property
    def q(self) -> np.ndarray:
        """Get current configuration (a live view of the shared buffer)."""
        return self.data.qpos

    @property
    def ctrl(self) -> np.ndarray:
        """Get current actuator commands (a live view)."""
        return self.data.ctrl

    @property
    def nq(self) -> int:
        """Configuration space dimension."""
        return self.model.nq

    @property
    def nu(self) -> int:
        """Number of actuators."""
        return self.model.nu

    # Name tables

    def body_id(self, name: Optional[str]) -> int:
        """Return the id of a body, or -1 when it does not exist."""
        if not name:
            return -1
        return mujoco.mj_name2id(self.model, mujoco.mjtObj.mjOBJ_BODY, name)

    def joint_id(self, name: Optional[str]) -> int:
        """Return the id of a joint, or -1 when it does not exist."""
        if not name:
            return -1
        return mujoco.mj_name2id(self.model, mujoco.mjtObj.mjOBJ_JOINT, name)

    def _names(self, obj: mujoco.mjtObj, count: int) -> List[str]:
        return [mujoco.mj_id2name(self.model, obj, i) or "" for i in range(count)]

    def body_names(self) -> List[str]:
        return self._names(mujoco.mjtObj.mjOBJ_BODY, self.model.nbody)

    def joint_names(self) -> List[str]:
        return self._names(mujoco.mjtObj.mjOBJ_JOINT, self.model.njnt)

    def actuator_names(self) -> List[str]:
        return self._names(mujoco.mjtObj.mjOBJ_ACTUATOR, self.model.nu)

    def joint_name(self, joint_id: int) -> str:
        return mujoco.mj_id2name(self.model, mujoco.mjtObj.mjOBJ_JOINT, joint_id) or f"joint_{joint_id}"

    # Ranges

    def joint_range(self, joint_id: int) -> Tuple[float, float]:
        """Get the position range of a joint.

        Args:
            joint_id: Joint id.

        Returns:
            Tuple (lower, upper). Unlimited joints report an empty range,
            which callers detect with ``upper > lower``.
        """
        lower, upper = self.model.jnt_range[joint_id]
        if not self.model.jnt_limited[joint_id]:
            return 0.0, 0.0
        return float(lower), float(upper)

    def actuator_range(self, actuator_id: int) -> Tuple[float, float]:
        """Get the command range of an actuator.

        Args:
            actuator_id: Actuator id.

        Returns:
            Tuple (lower, upper). Models that leave ctrlrange unset report
            (0, 0), which callers detect with ``upper > lower``.
        """
        if not self.model.actuator_ctrllimited[actuator_id]:
            return 0.0, 0.0
        lower, upper = self.model.actuator_ctrlrange[actuator_id]
        return float(lower), float(upper)

    def check_limits(
        self,
        joint_ids: Sequence[int],
        tol: float = consts.DEFAULT_TOLERANCE,
        safety_break: bool = True,
    ) -> None:
        """Check that the given joints are within bounds.

        Args:
            joint_ids: Joints to check.
            tol: Tolerance in [rad] or [m].
            safety_break: If True, raise an exception if a joint is outside
                its limits. If False, log a warning and continue.

        Raises:
            NotWithinConfigurationLimits: If a joint is outside its limits
                and safety_break is True.
        """
        for joint_id in joint_ids:
            lower, upper = self.joint_range(joint_id)
            if not upper > lower:
                continue
            value = float(self.data.qpos[self.model.jnt_qposadr[joint_id]])
            if value < lower - tol or value > upper + tol:
                if safety_break:
                    raise exceptions.NotWithinConfigurationLimits(
                        joint_name=self.joint_name(joint_id),
                        value=value,
                        lower=lower,
                        upper=upper,
                    )
                logging.warning(
                    f"Joint '{self.joint_name(joint_id)}' value {value:.4f} is outside "
                    f"of its limits: [{lower:.4f}, {upper:.4f}]"
                )

    # Poses

    def get_body_pose(self, body_id: int) -> BodyPose:
        """Get the pose of a body at the current configuration.

        Args:
            body_id: Body id.

        Returns:
            The pose of the body in the world frame.
        """
        position = self.data.xpos[body_id].copy()
        rotation = SO3.from_quaternion(self.data.xquat[body_id])
        return BodyPose(position=position, rotation=rotation)

    @contextlib.contextmanager
    def perturbation(self) -> Iterator[np.ndarray]:
        """Scope a temporary change of the generalized coordinates.

        Yields the live ``qpos`` buffer. On exit, including exits through an
        exception raised while evaluating kinematics, the saved coordinates are
        written back and forward kinematics re-run so the host sees the
        unperturbed state.
        """
        saved = self.data.qpos.copy()
        try:
            yield self.data.qpos
        finally:
            self.data.qpos[:] = saved
            mujoco.mj_forward(self.model, self.data)

    def evaluate_body_pose(self, qpos: np.ndarray, body_id: int) -> BodyPose:
        """Get the pose of a body at a candidate configuration.

        The shared state is left untouched.

        Args:
            qpos: Candidate configuration of shape (nq,).
            body_id: Body id.

        Returns:
            The pose of the body at ``qpos``.
        """
        with self.perturbation() as buffer:
            buffer[:] = qpos
            mujoco.mj_forward(self.model, self.data)
            return self.get_body_pose(body_id)

    # Proxy bodies

    def mocap_id(self, body_id: int) -> int:
        """Return the mocap index of a body, or -1 if it is not a mocap body."""
        if body_id < 0:
            return -1
        return int(self.model.body_mocapid[body_id])

    def write_mocap_pose(self, mocap_id: int, position: np.ndarray, rotation: SO3) -> None:
        """Write a pose to a mocap (free-floating proxy) body."""
        self.data.mocap_pos[mocap_id] = position
        self.data.mocap_quat[mocap_id] = rotation.wxyz
