"""Resolve configured joints to controlled DOFs and their actuators.

Joint names are resolved to generalized-coordinate addresses and limit
ranges; each resulting DOF is then bound to exactly one actuator command
channel. Both tables are rebuilt whenever the host reloads the model.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import mujoco

from .configuration import Configuration
from .exceptions import EndEffectorNotFound, InvalidConfiguration, MissingActuator

_SUPPORTED_JOINT_TYPES = (
    int(mujoco.mjtJoint.mjJNT_HINGE),
    int(mujoco.mjtJoint.mjJNT_SLIDE),
)
_JOINT_TRANSMISSION = int(mujoco.mjtTrn.mjTRN_JOINT)


@dataclass(frozen=True)
class ControlledDOF:
    """A single joint coordinate driven by the controller.

    Attributes:
        joint_name: Name of the owning joint.
        joint_id: Id of the owning joint.
        qpos_address: Index into the generalized-coordinate vector.
        lower: Lower joint limit.
        upper: Upper joint limit.
    """

    joint_name: str
    joint_id: int
    qpos_address: int
    lower: float
    upper: float

    @property
    def has_range(self) -> bool:
        return self.upper > self.lower

    @property
    def span(self) -> float:
        return self.upper - self.lower


@dataclass(frozen=True)
class ActuatorBinding:
    """The actuator command channel that drives a controlled DOF.

    Attributes:
        qpos_address: Address of the driven DOF.
        actuator_id: Index into the actuator command vector.
        actuator_name: Name of the actuator.
        ctrl_lower: Lower command limit.
        ctrl_upper: Upper command limit.
    """

    qpos_address: int
    actuator_id: int
    actuator_name: str
    ctrl_lower: float
    ctrl_upper: float

    @property
    def has_range(self) -> bool:
        return self.ctrl_upper > self.ctrl_lower


def resolve_end_effector(configuration: Configuration, body_name: Optional[str]) -> int:
    """Resolve the end-effector body id.

    Args:
        configuration: Model configuration.
        body_name: Name of the end-effector body.

    Returns:
        The body id.

    Raises:
        InvalidConfiguration: If no body name is configured.
        EndEffectorNotFound: If the body does not exist in the model.
    """
    if not body_name:
        raise InvalidConfiguration("No end-effector body name provided.")
    body_id = configuration.body_id(body_name)
    if body_id < 0:
        raise EndEffectorNotFound(body_name, configuration.body_names())
    return body_id


def resolve_controlled_dofs(
    configuration: Configuration,
    joint_names: Sequence[str],
) -> Tuple[ControlledDOF, ...]:
    """Resolve joint names to controlled DOFs.

    Missing joints and joints of unsupported kinds (only hinge and slide joints
    have a single scalar coordinate) are skipped with a warning.

    Args:
        configuration: Model configuration.
        joint_names: Configured joint names, in control order.

    Returns:
        Tuple of controlled DOFs in configured order.
    """
    model = configuration.model
    dofs: List[ControlledDOF] = []
    for name in joint_names:
        joint_id = configuration.joint_id(name)
        if joint_id < 0:
            logging.warning(f"Joint '{name}' not found in model; skipping.")
            continue
        if int(model.jnt_type[joint_id]) not in _SUPPORTED_JOINT_TYPES:
            logging.warning(
                f"Joint '{name}' is not a hinge or slide joint; unsupported by numeric IK, skipping."
            )
            continue
        lower, upper = configuration.joint_range(joint_id)
        dofs.append(
            ControlledDOF(
                joint_name=name,
                joint_id=joint_id,
                qpos_address=int(model.jnt_qposadr[joint_id]),
                lower=lower,
                upper=upper,
            )
        )
    return tuple(dofs)


def find_actuator(
    actuator_index: Mapping[str, int],
    joint_name: str,
    prefixes: Sequence[str] = (),
) -> Optional[int]:
    """Find the actuator for a joint by name.

    Matching order: exact name, then ``prefix + joint_name`` for each prefix,
    then actuator names ending in ``/joint_name``, then any actuator name
    ending in ``joint_name``.

    Args:
        actuator_index: Mapping of actuator name to actuator id, in model order.
        joint_name: Joint to find an actuator for.
        prefixes: Name prefixes to try.

    Returns:
        The actuator id, or None when nothing matches.
    """
    if joint_name in actuator_index:
        return actuator_index[joint_name]
    for prefix in prefixes:
        if f"{prefix}{joint_name}" in actuator_index:
            return actuator_index[f"{prefix}{joint_name}"]
    for actuator_name, actuator_id in actuator_index.items():
        if actuator_name.endswith(f"/{joint_name}"):
            return actuator_id
    for actuator_name, actuator_id in actuator_index.items():
        if actuator_name.endswith(joint_name):
            return actuator_id
    return None


def resolve_actuator_bindings(
    configuration: Configuration,
    dofs: Sequence[ControlledDOF],
    prefixes: Sequence[str] = (),
) -> Dict[int, ActuatorBinding]:
    """Bind every controlled DOF to an actuator command channel.

    Args:
        configuration: Model configuration.
        dofs: Controlled DOFs.
        prefixes: Actuator name prefixes tried after the exact match.

    Returns:
        Mapping of qpos address to actuator binding.

    Raises:
        MissingActuator: If any controlled DOF has no actuator.
    """
    model = configuration.model
    actuator_names = configuration.actuator_names()
    actuator_index = {name: i for i, name in enumerate(actuator_names) if name}

    bindings: Dict[int, ActuatorBinding] = {}
    missing: List[Tuple[str, int]] = []
    for dof in dofs:
        actuator_id = find_actuator(actuator_index, dof.joint_name, prefixes)
        if actuator_id is None:
            missing.append((dof.joint_name, dof.qpos_address))
            continue

        trn_type = int(model.actuator_trntype[actuator_id])
        trn_id = int(model.actuator_trnid[actuator_id][0])
        if trn_type != _JOINT_TRANSMISSION or trn_id != dof.joint_id:
            logging.warning(
                f"Actuator '{actuator_names[actuator_id]}' bound to joint '{dof.joint_name}' "
                f"does not drive it through a joint transmission (trntype={trn_type}, trnid={trn_id})."
            )

        ctrl_lower, ctrl_upper = configuration.actuator_range(actuator_id)
        bindings[dof.qpos_address] = ActuatorBinding(
            qpos_address=dof.qpos_address,
            actuator_id=actuator_id,
            actuator_name=actuator_names[actuator_id],
            ctrl_lower=ctrl_lower,
            ctrl_upper=ctrl_upper,
        )

    if missing:
        raise MissingActuator(missing, actuator_names)
    return bindings
