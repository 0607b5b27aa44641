"""Exceptions specific to the IK controller."""

from typing import Iterable, Sequence, Tuple


class IKError(Exception):
    """Base class for IK controller exceptions."""


class EndEffectorNotFound(IKError):
    """Exception raised when the end-effector body is not found in the model."""

    def __init__(self, body_name: str, available: Sequence[str]):
        message = (
            f"End-effector body '{body_name}' does not exist in the model. "
            f"Available body names: {list(available)}"
        )
        super().__init__(message)


class MissingActuator(IKError):
    """Exception raised when a controlled joint has no actuator driving it.

    Without an actuator the controller could only write joint coordinates
    directly, which bypasses the physics and contact model.
    """

    def __init__(self, missing: Iterable[Tuple[str, int]], available: Sequence[str]):
        missing = list(missing)
        described = ", ".join(f"{name}(qpos[{addr}])" for name, addr in missing)
        message = (
            f"Missing actuators for {len(missing)} controlled joints: {described}. "
            f"Available actuator names: {list(available)}"
        )
        super().__init__(message)


class NotWithinConfigurationLimits(IKError):
    """Exception raised when a configuration violates its limits."""

    def __init__(self, joint_name: str, value: float, lower: float, upper: float):
        message = (
            f"Configuration violates limits for joint '{joint_name}'. "
            f"Value: {value:.4f}, Limits: [{lower:.4f}, {upper:.4f}]"
        )
        super().__init__(message)


class InvalidTarget(IKError):
    """Exception raised when a target intent is invalid."""

    def __init__(self, message: str):
        super().__init__(message)


class InvalidGain(IKError):
    """Exception raised when a gain or weight is invalid."""

    def __init__(self, message: str):
        super().__init__(message)


class InvalidDamping(IKError):
    """Exception raised when a trust-region damping parameter is invalid."""

    def __init__(self, message: str):
        super().__init__(message)


class InvalidConfiguration(IKError):
    """Exception raised when the controller configuration is incorrectly defined."""

    def __init__(self, message: str):
        super().__init__(message)
