"""Anti-windup integration of joint steps into actuator commands."""

import logging
from typing import Mapping, Sequence

import numpy as np

from .configuration import Configuration
from .constants import DEFAULT_MAX_CTRL_OFFSET
from .limits import SafetyMargin
from .resolver import ActuatorBinding, ControlledDOF


def sync_ctrl_from_qpos(
    configuration: Configuration,
    bindings: Mapping[int, ActuatorBinding],
) -> None:
    """Set every bound actuator's command to its joint's measured value.

    Position actuators then hold the arm where it is instead of pulling it
    towards stale commands.

    Args:
        configuration: Model configuration.
        bindings: Mapping of qpos address to actuator binding.
    """
    for address, binding in bindings.items():
        configuration.ctrl[binding.actuator_id] = configuration.q[address]


class ActuatorCommandIntegrator:
    """Turn joint steps into position-actuator commands.

    The command is integrated from the previous command, not from the measured
    joint value, so a persistent error keeps building the command until the
    actuator overcomes gravity or load. It is then clamped to:
    * the actuator command range, when the actuator defines one;
    * the joint range behind a directional safety margin;
    * a window of ``max_ctrl_offset`` around the measured joint value, which
      keeps commands from running away while contact blocks the joint.
    """

    def __init__(
        self,
        configuration: Configuration,
        dofs: Sequence[ControlledDOF],
        bindings: Mapping[int, ActuatorBinding],
        safety_margin: SafetyMargin,
        max_ctrl_offset: float = DEFAULT_MAX_CTRL_OFFSET,
    ):
        """Initialize the integrator.

        Args:
            configuration: Model configuration.
            dofs: Controlled DOFs, in control order.
            bindings: Mapping of qpos address to actuator binding.
            safety_margin: Soft wall applied to joint commands.
            max_ctrl_offset: Largest offset of a command from the measured
                joint value; 0 disables the window.
        """
        self.configuration = configuration
        self.dofs = tuple(dofs)
        self.bindings = dict(bindings)
        self.safety_margin = safety_margin
        self.max_ctrl_offset = max_ctrl_offset

    def command(self, dof: ControlledDOF, binding: ActuatorBinding, step: float) -> float:
        """Compute the clamped command for one DOF.

        Args:
            dof: Controlled DOF.
            binding: Its actuator binding.
            step: Joint step.

        Returns:
            The new actuator command.
        """
        measured = float(self.configuration.q[dof.qpos_address])
        previous = float(self.configuration.ctrl[binding.actuator_id])
        command = previous + step

        if binding.has_range:
            command = float(np.clip(command, binding.ctrl_lower, binding.ctrl_upper))

        command = self.safety_margin.clamp(command, measured, step, dof)

        if self.max_ctrl_offset > 0.0:
            command = float(
                np.clip(command, measured - self.max_ctrl_offset, measured + self.max_ctrl_offset)
            )
        return command

    def _validate(self, step: np.ndarray) -> bool:
        if step is None or len(step) != len(self.dofs) or not np.all(np.isfinite(step)):
            logging.error(f"Cannot apply joint step {step}: expected {len(self.dofs)} finite values")
            return False
        nu = self.configuration.nu
        for dof in self.dofs:
            binding = self.bindings.get(dof.qpos_address)
            if binding is None or not 0 <= binding.actuator_id < nu:
                logging.error(
                    f"No valid actuator for joint '{dof.joint_name}' qpos[{dof.qpos_address}]; "
                    f"step not applied"
                )
                return False
        return True

    def apply(self, step: np.ndarray, preview: bool = False) -> bool:
        """Write the commands for a joint step.

        Nothing is written unless every DOF has a valid actuator.

        Args:
            step: Joint step of shape (n,).
            preview: Also move the joint coordinates to the commands and
                re-run forward kinematics. Used while the host is paused and
                physics does not move the joints. The write bypasses contacts and
                actuator dynamics.

        Returns:
            True if the commands were written.
        """
        if not self._validate(step):
            return False

        commands = [
            (dof, self.bindings[dof.qpos_address], self.command(dof, self.bindings[dof.qpos_address], s))
            for dof, s in zip(self.dofs, step)
        ]
        for dof, binding, command in commands:
            self.configuration.ctrl[binding.actuator_id] = command
            if preview:
                self.configuration.q[dof.qpos_address] = command
        if preview:
            self.configuration.update()
        return True
