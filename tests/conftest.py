from typing import Callable, Dict, Optional, Tuple

import mujoco
import numpy as np
import pytest

from arm_teleop_ik import Configuration, IKConfig, IKController

ARM_JOINTS = ("joint1", "joint2", "joint3", "joint4", "joint5", "joint6")

JOINT_RANGES: Dict[str, Tuple[float, float]] = {
    "joint1": (-2.9, 2.9),
    "joint2": (-1.8, 1.8),
    "joint3": (-2.5, 2.5),
    "joint4": (-2.9, 2.9),
    "joint5": (-2.0, 2.0),
    "joint6": (-2.9, 2.9),
}

START_QPOS = np.array([0.0, 0.3, 0.6, 0.0, 0.5, 0.0])


def position_actuators(name_format: str = "{joint}", joints=ARM_JOINTS) -> str:
    lines = []
    for joint in joints:
        lo, hi = JOINT_RANGES[joint]
        name = name_format.format(joint=joint)
        lines.append(f'<position name="{name}" joint="{joint}" ctrlrange="{lo} {hi}"/>')
    return "\n    ".join(lines)


def arm_xml(actuators: Optional[str] = None, extra_bodies: str = "") -> str:
    if actuators is None:
        actuators = position_actuators()
    return f"""
<mujoco model="six_dof_arm">
  <compiler angle="radian" autolimits="true"/>
  <option gravity="0 0 0"/>
  <default>
    <geom contype="0" conaffinity="0" density="500"/>
    <position kp="200"/>
  </default>
  <worldbody>
    <body name="base">
      <geom type="cylinder" size="0.06 0.03"/>
      <body name="shoulder" pos="0 0 0.06">
        <joint name="joint1" axis="0 0 1" range="-2.9 2.9"/>
        <geom type="cylinder" size="0.04 0.04"/>
        <body name="upper_arm" pos="0 0 0.05">
          <joint name="joint2" axis="0 1 0" range="-1.8 1.8"/>
          <geom type="capsule" fromto="0 0 0 0 0 0.3" size="0.03"/>
          <body name="forearm" pos="0 0 0.3">
            <joint name="joint3" axis="0 1 0" range="-2.5 2.5"/>
            <geom type="capsule" fromto="0 0 0 0.25 0 0" size="0.025"/>
            <body name="wrist1" pos="0.25 0 0">
              <joint name="joint4" axis="1 0 0" range="-2.9 2.9"/>
              <geom type="sphere" size="0.025"/>
              <body name="wrist2" pos="0.05 0 0">
                <joint name="joint5" axis="0 1 0" range="-2.0 2.0"/>
                <geom type="sphere" size="0.02"/>
                <body name="wrist3" pos="0.05 0 0">
                  <joint name="joint6" axis="1 0 0" range="-2.9 2.9"/>
                  <geom type="sphere" size="0.02"/>
                  <body name="hand" pos="0.06 0 0">
                    <geom type="box" size="0.02 0.03 0.01"/>
                  </body>
                </body>
              </body>
            </body>
          </body>
        </body>
      </body>
    </body>
    {extra_bodies}
  </worldbody>
  <actuator>
    {actuators}
  </actuator>
</mujoco>
"""


BALL_JOINT_BODY = """
    <body name="ball_link" pos="0.5 0.5 0">
      <joint name="ball" type="ball"/>
      <geom type="sphere" size="0.02"/>
    </body>
"""

MOCAP_XML = """
<mujoco model="mocap_hand">
  <worldbody>
    <body name="mocap_hand" mocap="true" pos="0.3 0 0.4">
      <geom type="box" size="0.02 0.03 0.01" contype="0" conaffinity="0"/>
    </body>
  </worldbody>
</mujoco>
"""


def load_model(xml: str, qpos: Optional[np.ndarray] = START_QPOS) -> Tuple[mujoco.MjModel, mujoco.MjData]:
    model = mujoco.MjModel.from_xml_string(xml)
    data = mujoco.MjData(model)
    if qpos is not None:
        data.qpos[: len(qpos)] = qpos
    mujoco.mj_forward(model, data)
    return model, data


@pytest.fixture
def arm():
    return load_model(arm_xml())


@pytest.fixture
def arm_configuration(arm) -> Configuration:
    model, data = arm
    return Configuration(model, data)


@pytest.fixture
def make_controller(arm) -> Callable[..., IKController]:
    model, data = arm

    def factory(**overrides) -> IKController:
        values = {"end_effector_body": "hand", "joint_names": ARM_JOINTS}
        values.update(overrides)
        return IKController(model, data, IKConfig(**values))

    return factory
