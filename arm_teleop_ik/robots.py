"""Robot presets and resolution of controller settings from a loaded model.

A preset names the arm joints, end-effector candidates and tuned gains of a
known robot. The preset is chosen from the model's joint names, then its names
are matched against the model, which may carry extra name prefixes.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import mujoco

from .configuration import Configuration
from .ik_config import ControlMode, IKConfig

_PANDA_ARM_JOINTS = tuple(f"franka/panda_joint{i}" for i in range(1, 8))
_GEN3_ARM_JOINTS = tuple(f"joint_{i}" for i in range(1, 8))


@dataclass(frozen=True)
class RobotPreset:
    """Controller settings of a known robot.

    Attributes:
        key: Preset name.
        end_effector_body: Preferred end-effector body.
        end_effector_candidates: Bodies tried, in order, after the preferred one.
        joint_names: Controlled arm joints, in control order.
        joint_prefix: Prefix shared by the arm joints, used for matching.
        match_joint_names: Joints that must all exist for the preset to match.
        ready_joint_names: Joints set by the ready pose.
        ready_qpos: Ready pose values, one per ready joint.
        overrides: IKConfig fields tuned for this robot.
    """

    key: str
    end_effector_body: Optional[str] = None
    end_effector_candidates: Tuple[str, ...] = ()
    joint_names: Tuple[str, ...] = ()
    joint_prefix: Optional[str] = None
    match_joint_names: Tuple[str, ...] = ()
    ready_joint_names: Tuple[str, ...] = ()
    ready_qpos: Tuple[float, ...] = ()
    overrides: Dict[str, Any] = field(default_factory=dict)


DEFAULT_PRESET = RobotPreset(
    key="unknown",
    overrides={
        "mode": ControlMode.JOINT,
        "translation_gain": 1.0,
        "rotation_gain": 0.5,
        "max_iterations": 6,
        "step_limit": 0.04,
    },
)

ROBOT_PRESETS: Dict[str, RobotPreset] = {
    "franka": RobotPreset(
        key="franka",
        end_effector_body="franka/panda_hand",
        end_effector_candidates=("franka/panda_hand",),
        joint_names=_PANDA_ARM_JOINTS,
        joint_prefix="franka/panda_joint",
        ready_joint_names=_PANDA_ARM_JOINTS
        + ("franka/panda_finger_joint1", "franka/panda_finger_joint2"),
        ready_qpos=(0.0, -0.785398, 0.0, -2.356194, 0.0, 1.570796, 0.785398, 0.04, 0.04),
        overrides={
            "mode": ControlMode.JOINT,
            "translation_gain": 1.5,
            "rotation_gain": 0.8,
            "max_iterations": 6,
            "step_limit": 0.04,
        },
    ),
    "gen3_hand": RobotPreset(
        key="gen3_hand",
        end_effector_body="lh_palm",
        end_effector_candidates=("lh_palm", "lh_wrist", "bracelet_link"),
        joint_names=_GEN3_ARM_JOINTS,
        match_joint_names=_GEN3_ARM_JOINTS,
        ready_joint_names=_GEN3_ARM_JOINTS,
        ready_qpos=(0.0, 0.2618, 3.1416, -2.2689, 0.0, 0.9599, 1.5708),
        overrides={
            "mode": ControlMode.JOINT,
            "translation_gain": 1.5,
            "rotation_gain": 0.8,
            "max_iterations": 6,
            "step_limit": 0.04,
        },
    ),
}


def match_robot_preset(joint_names: Sequence[str]) -> RobotPreset:
    """Pick the preset of the robot in a model.

    A preset matches when all its ``match_joint_names`` exist, or when some
    joint starts with its ``joint_prefix``.

    Args:
        joint_names: All joint names of the model.

    Returns:
        The first matching preset, or ``DEFAULT_PRESET``.
    """
    available = set(joint_names)
    for preset in ROBOT_PRESETS.values():
        if preset.match_joint_names and all(n in available for n in preset.match_joint_names):
            return preset
        if preset.joint_prefix and any(n.startswith(preset.joint_prefix) for n in joint_names):
            return preset
    return DEFAULT_PRESET


def resolve_end_effector_name(preset: RobotPreset, body_names: Sequence[str]) -> Optional[str]:
    """Return the first of the preset's end-effector bodies present in the model."""
    candidates = [preset.end_effector_body, *preset.end_effector_candidates]
    for candidate in candidates:
        if candidate and candidate in body_names:
            return candidate
    return None


def _match_suffixed(configured: Sequence[str], available: Sequence[str]) -> List[str]:
    matched = []
    for name in configured:
        found = next((n for n in available if n == name or n.endswith(f"/{name}")), None)
        if found is not None:
            matched.append(found)
    return matched


def resolve_joint_names(preset: RobotPreset, joint_names: Sequence[str]) -> List[str]:
    """Match the preset's joints against the model's joint names.

    Matching order:
    1. Every configured name exists exactly.
    2. Model joints starting with the preset's joint prefix.
    3. Every configured name exists exactly or as a ``/name`` suffix, which
       covers models whose joints gained a namespace prefix.
    4. The exact matches found, or the configured names unchanged.

    A preset without joints controls every joint of the model; joints the
    solver cannot drive are skipped when the controller resolves them.

    Args:
        preset: Robot preset.
        joint_names: All joint names of the model.

    Returns:
        Joint names to control, in control order.
    """
    configured = list(preset.joint_names)
    if not configured:
        return list(joint_names)
    exact = [name for name in configured if name in joint_names]
    if len(exact) == len(configured):
        return exact

    if preset.joint_prefix:
        prefixed = [name for name in joint_names if name.startswith(preset.joint_prefix)]
        if prefixed:
            return prefixed

    suffixed = _match_suffixed(configured, joint_names)
    if len(suffixed) == len(configured):
        return suffixed

    return exact if exact else configured


def apply_ready_pose(configuration: Configuration, preset: RobotPreset) -> int:
    """Move the preset's ready joints to their ready values.

    Joints missing from the model are skipped; namespaced joints are found by
    their ``/name`` suffix.

    Args:
        configuration: Model configuration.
        preset: Robot preset.

    Returns:
        Number of joints set.
    """
    model = configuration.model
    available = configuration.joint_names()
    count = 0
    for name, value in zip(preset.ready_joint_names, preset.ready_qpos):
        matched = _match_suffixed([name], available)
        if not matched:
            continue
        joint_id = configuration.joint_id(matched[0])
        configuration.q[model.jnt_qposadr[joint_id]] = value
        count += 1
    if count:
        mujoco.mj_forward(model, configuration.data)
    return count


def build_ik_config(configuration: Configuration, **overrides: Any) -> IKConfig:
    """Build a controller configuration for the robot in a model.

    Args:
        configuration: Model configuration.
        **overrides: IKConfig fields overriding the preset.

    Returns:
        The controller configuration.
    """
    joint_names = configuration.joint_names()
    preset = match_robot_preset(joint_names)
    values: Dict[str, Any] = dict(preset.overrides)
    values["end_effector_body"] = resolve_end_effector_name(preset, configuration.body_names())
    values["joint_names"] = tuple(resolve_joint_names(preset, joint_names))
    values.update(overrides)
    return IKConfig.from_dict(values)
