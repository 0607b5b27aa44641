"""Numeric inverse kinematics for teleoperating simulated arms.

Turns end-effector pose intents into position-actuator commands for a MuJoCo
model, using damped least squares over a finite-difference Jacobian with a
joint-limit barrier, a Jacobian-transpose fallback and anti-windup command
integration.
"""

from .actuation import ActuatorCommandIntegrator, sync_ctrl_from_qpos
from .configuration import BodyPose, Configuration
from .constants import (
    CONVERGENCE_THRESHOLD,
    DEFAULT_STEP_LIMIT,
    DEFAULT_TOLERANCE,
    EPSILON_FLOAT32,
    EPSILON_FLOAT64,
    FINITE_DIFFERENCE_EPSILON,
)
from .controller import IKController
from .exceptions import (
    EndEffectorNotFound,
    IKError,
    InvalidConfiguration,
    InvalidDamping,
    InvalidGain,
    InvalidTarget,
    MissingActuator,
    NotWithinConfigurationLimits,
)
from .ik_config import ControlMode, IKConfig
from .jacobian import compute_finite_difference_jacobian
from .lie import SO3
from .limits import SafetyMargin, any_near_limit, limit_attenuation
from .pose_residual import PoseResidual, compute_pose_residual
from .resolver import ActuatorBinding, ControlledDOF
from .robots import ROBOT_PRESETS, RobotPreset, build_ik_config
from .solve_ik import (
    LevenbergMarquardtSolver,
    SolverState,
    compute_jacobian_transpose_step,
    gauss_jordan_solve,
    scale_to_step_limit,
)
from .strategies import StepDecision, StepPolicy, build_step_policy
from .target import PoseTarget
from .tasks import BaseTask, JointLimitBarrierTask, Objective, PoseTask
from .teleop import KeyboardTeleop

__version__ = "0.1.0"

__all__ = [
    # Controller
    "IKController",
    "IKConfig",
    "ControlMode",
    "PoseTarget",
    # Configuration
    "BodyPose",
    "Configuration",
    "ActuatorBinding",
    "ControlledDOF",
    # Solver
    "LevenbergMarquardtSolver",
    "SolverState",
    "StepDecision",
    "StepPolicy",
    "build_step_policy",
    "compute_finite_difference_jacobian",
    "compute_jacobian_transpose_step",
    "compute_pose_residual",
    "gauss_jordan_solve",
    "scale_to_step_limit",
    "PoseResidual",
    # Tasks
    "BaseTask",
    "JointLimitBarrierTask",
    "Objective",
    "PoseTask",
    # Limits and actuation
    "ActuatorCommandIntegrator",
    "SafetyMargin",
    "any_near_limit",
    "limit_attenuation",
    "sync_ctrl_from_qpos",
    # Robots and teleoperation
    "ROBOT_PRESETS",
    "RobotPreset",
    "build_ik_config",
    "KeyboardTeleop",
    # Lie groups
    "SO3",
    # Exceptions
    "EndEffectorNotFound",
    "IKError",
    "InvalidConfiguration",
    "InvalidDamping",
    "InvalidGain",
    "InvalidTarget",
    "MissingActuator",
    "NotWithinConfigurationLimits",
    # Constants
    "CONVERGENCE_THRESHOLD",
    "DEFAULT_STEP_LIMIT",
    "DEFAULT_TOLERANCE",
    "EPSILON_FLOAT32",
    "EPSILON_FLOAT64",
    "FINITE_DIFFERENCE_EPSILON",
]
