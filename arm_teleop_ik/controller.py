"""Teleoperation IK controller.

The controller turns accumulated pose intents into position-actuator
commands, once per host tick. It is single-threaded and synchronous: every
call runs to completion on the caller's thread and the only shared state it
touches is the host's MuJoCo data.
"""

import logging
from typing import Dict, List, Optional, Tuple

import mujoco
import numpy as np

from . import constants as consts
from .actuation import ActuatorCommandIntegrator, sync_ctrl_from_qpos
from .configuration import BodyPose, Configuration
from .exceptions import InvalidTarget
from .ik_config import ControlMode, IKConfig
from .jacobian import compute_finite_difference_jacobian
from .lie import SO3
from .limits import SafetyMargin
from .pose_residual import compute_pose_residual
from .resolver import (
    ActuatorBinding,
    ControlledDOF,
    resolve_actuator_bindings,
    resolve_controlled_dofs,
    resolve_end_effector,
)
from .solve_ik import LevenbergMarquardtSolver, SolverState
from .strategies import StepContext, StepDecision, StepPolicy, build_step_policy
from .target import PoseTarget
from .tasks import JointLimitBarrierTask, Linearization, PoseTask


def _as_vector(value: np.ndarray, name: str) -> np.ndarray:
    vector = np.asarray(value, dtype=np.float64)
    if vector.shape != (3,):
        raise InvalidTarget(f"Expected {name} to have shape (3,) but got {vector.shape}")
    if not np.all(np.isfinite(vector)):
        raise InvalidTarget(f"{name} must be finite, got {vector}")
    return vector


class IKController:
    """Numeric IK controller for teleoperating an arm.

    Two operating modes exist. With a mocap end-effector (``FREE`` or
    ``AUTO``) the target pose is written straight to the proxy body on every
    update. Otherwise each update runs a bounded number of solve iterations:
    forward kinematics, pose error, stall and convergence checks, a
    finite-difference Jacobian, a joint step from the step policy and its
    anti-windup integration into actuator commands.

    Example:
        >>> model = mujoco.MjModel.from_xml_path("scene.xml")
        >>> data = mujoco.MjData(model)
        >>> config = IKConfig(end_effector_body="hand", joint_names=("joint1", "joint2"))
        >>> controller = IKController(model, data, config)
        >>> controller.set_target_position_delta(np.array([0.0, 0.0, 0.01]))
        >>> controller.update(timestamp=data.time, is_paused=False)
    """

    def __init__(
        self,
        model: mujoco.MjModel,
        data: Optional[mujoco.MjData] = None,
        config: Optional[IKConfig] = None,
    ):
        """Constructor.

        Args:
            model: MuJoCo model.
            data: MuJoCo data shared with the host.
            config: Controller configuration; defaults are used if None.

        Raises:
            InvalidConfiguration: If no end-effector body is configured.
            EndEffectorNotFound: If the end-effector body does not exist.
            MissingActuator: If a controlled joint has no actuator.
        """
        self.config = config if config is not None else IKConfig()
        self.target = PoseTarget()
        self.state = SolverState(
            damping=self.config.lambda_initial,
            initial_damping=self.config.lambda_initial,
        )
        self._disabled = False
        self._converged = False
        self._last_error: Optional[float] = None
        self._last_decision: Optional[StepDecision] = None
        self._last_no_dof_warning: Optional[float] = None

        self._build(Configuration(model, data))
        self.sync_ctrl_from_qpos()
        self.sync_target_from_model()
        logging.info(
            f"IK controller ready: end-effector '{self.config.end_effector_body}', "
            f"{len(self._dofs)} controlled DOFs, mode={'proxy' if self._uses_proxy else 'joint'}"
        )

    def _build(self, configuration: Configuration) -> None:
        """Resolve the model-dependent tables and rebuild the solver stack.

        Nothing is replaced unless every table resolves, so a failed reload
        leaves the controller on its previous model.
        """
        config = self.config

        body_id = resolve_end_effector(configuration, config.end_effector_body)
        mocap_id = configuration.mocap_id(body_id)
        dofs: Tuple[ControlledDOF, ...] = resolve_controlled_dofs(
            configuration, config.joint_names
        )
        bindings: Dict[int, ActuatorBinding] = resolve_actuator_bindings(
            configuration, dofs, config.actuator_prefixes
        )
        configuration.check_limits([dof.joint_id for dof in dofs], safety_break=False)

        pose_task = PoseTask(
            position_weight=config.position_weight,
            orientation_weight=config.orientation_weight,
            held_orientation_weight=config.held_orientation_weight,
            translation_gain=config.translation_gain,
            rotation_gain=config.rotation_gain,
        )
        barrier = JointLimitBarrierTask(
            dofs,
            weight=config.limit_weight,
            margin_fraction=config.limit_margin_fraction,
        )
        solver = LevenbergMarquardtSolver(
            configuration,
            body_id,
            dofs,
            [pose_task, barrier],
            step_limit=config.step_limit,
            lambda_factor=config.lambda_factor,
            lambda_min=config.lambda_min,
            lambda_max=config.lambda_max,
            step_quality_min=config.step_quality_min,
            max_trials=config.lm_max_trials,
        )
        policy = build_step_policy(config, dofs, pose_task, solver)
        integrator = ActuatorCommandIntegrator(
            configuration,
            dofs,
            bindings,
            SafetyMargin(config.safety_margin_fraction, enabled=config.use_safety_margin),
            max_ctrl_offset=config.max_ctrl_offset,
        )

        self.configuration = configuration
        self._body_id = body_id
        self._mocap_id = mocap_id
        self._uses_proxy = config.mode in (ControlMode.AUTO, ControlMode.FREE) and mocap_id >= 0
        self._dofs = dofs
        self._bindings = bindings
        self._addresses = np.array([dof.qpos_address for dof in dofs], dtype=int)
        self._pose_task = pose_task
        self._policy: StepPolicy = policy
        self._integrator = integrator

    def reload_model(self, model: mujoco.MjModel, data: Optional[mujoco.MjData] = None) -> None:
        """Rebuild every model-dependent table after the host reloads the model.

        The target is re-synchronized to the new end-effector pose and the
        solver state is reset. A controller disabled by an earlier failure is
        enabled again. If the new model cannot be resolved, the controller
        keeps running on its previous model.

        Args:
            model: New MuJoCo model.
            data: New MuJoCo data shared with the host.

        Raises:
            EndEffectorNotFound: If the end-effector body does not exist.
            MissingActuator: If a controlled joint has no actuator.
        """
        self._build(Configuration(model, data))
        self.state.reset()
        self._disabled = False
        self._last_decision = None
        self.target.reset_to(self._current_pose())
        logging.info(f"IK controller reloaded with {len(self._dofs)} controlled DOFs")

    # Intents

    def set_target_position_delta(self, delta: np.ndarray) -> None:
        """Translate the target.

        Args:
            delta: Translation of shape (3,) in world coordinates [m].

        Raises:
            InvalidTarget: If ``delta`` has the wrong shape or is not finite.
        """
        delta = _as_vector(delta, "position delta")
        pose = self._current_pose()
        self.target.translate(
            delta,
            pose.position,
            max_lead=self.config.max_target_lead,
            lock_orientation=self.config.lock_orientation_on_translate,
        )
        self._converged = False

    def set_target_orientation_delta(self, euler_delta: np.ndarray) -> None:
        """Rotate the target by intrinsic XYZ Euler angles.

        Args:
            euler_delta: Angles (rx, ry, rz) in radians.

        Raises:
            InvalidTarget: If ``euler_delta`` has the wrong shape or is not finite.
        """
        euler_delta = _as_vector(euler_delta, "orientation delta")
        self.target.rotate(euler_delta)
        self._converged = False

    def reset_to_current_pose(self, sync_ctrl: bool = False) -> None:
        """Re-synchronize the target to the live end-effector pose.

        Clears the orientation lock and the solver state. Call after the host
        resets the episode.

        Args:
            sync_ctrl: Also set actuator commands to the measured joint values.
        """
        if sync_ctrl:
            self.sync_ctrl_from_qpos()
        self.target.reset_to(self._current_pose())
        self.state.reset()
        self._converged = False
        self._last_decision = None

    def sync_ctrl_from_qpos(self) -> None:
        """Set every bound actuator's command to its joint's measured value."""
        sync_ctrl_from_qpos(self.configuration, self._bindings)

    def sync_target_from_model(self) -> None:
        """Set the target to the live end-effector pose, keeping lock state."""
        self.target.sync_to(self._current_pose())

    # Solve

    def update(self, timestamp: float, is_paused: bool = False) -> None:
        """Advance the controller by one host tick.

        Never raises. An unexpected failure is logged and disables the
        controller until :meth:`reload_model` is called.

        Args:
            timestamp: Host time in [s].
            is_paused: Whether the host is paused. Paused hosts get the larger
                iteration cap since physics does not move the joints.
        """
        if self._disabled:
            return
        try:
            self._update(timestamp, is_paused)
        except Exception:
            logging.exception("IK update failed; disabling the controller")
            self._disabled = True

    def _update(self, timestamp: float, is_paused: bool) -> None:
        if self._uses_proxy:
            self.configuration.write_mocap_pose(
                self._mocap_id, self.target.position, self.target.rotation
            )
            self.target.dirty = False
            return

        if not self._dofs:
            last = self._last_no_dof_warning
            if last is None or timestamp - last >= consts.WARNING_INTERVAL:
                logging.warning("No controlled DOFs available; cannot solve IK")
                self._last_no_dof_warning = timestamp
            return

        if not self.target.dirty:
            return

        iterations = self.config.max_iterations if is_paused else self.config.running_iterations
        preview = is_paused and self.config.preview_when_paused
        for _ in range(iterations):
            if not self._iterate(preview):
                break

    def _iterate(self, preview: bool) -> bool:
        """Run one solve iteration.

        Returns:
            True if a step was applied and iterating may continue.
        """
        config = self.config
        pose = self._current_pose()
        self.target.enforce_lock(config.lock_orientation_on_translate)

        residual = compute_pose_residual(self.target.position, self.target.rotation, pose)
        error = residual.magnitude
        self._last_error = error
        self.state.record_error(error, config.stall_min_improvement)

        if error < config.convergence_threshold:
            self.target.dirty = False
            self.state.stall_count = 0
            self._converged = True
            return False

        if config.stall_max_iterations > 0 and self.state.stall_count >= config.stall_max_iterations:
            logging.debug(f"IK stalled at error {error:.5f}")
            if config.snap_target_on_stall:
                self._snap(pose)
            else:
                self.target.dirty = False
                self.state.stall_count = 0
            return False

        dof_values = self.configuration.q[self._addresses].copy()
        jacobian = compute_finite_difference_jacobian(
            self.configuration,
            self._body_id,
            self._dofs,
            pose,
            eps=config.finite_difference_epsilon,
        )
        self._pose_task.hold_orientation = (
            config.hold_orientation_on_translate and self.target.hold_orientation
        )
        context = StepContext(
            linearization=Linearization(dof_values, residual, jacobian),
            state=self.state,
            target_position=self.target.position,
            target_rotation=self.target.rotation,
        )

        decision = self._policy.decide(context)
        self._last_decision = decision
        if decision is None:
            logging.debug("No joint step available; snapping target to current pose")
            self._snap(pose)
            return False

        if decision.is_fallback:
            self.state.fallback_count += 1
            if self.state.fallback_count >= config.fallback_max_consecutive:
                logging.debug(
                    f"{self.state.fallback_count} consecutive fallback steps; "
                    f"snapping target to current pose"
                )
                self._snap(pose)
                return False
        else:
            self.state.fallback_count = 0

        return self._integrator.apply(decision.step, preview=preview)

    def _snap(self, pose: BodyPose) -> None:
        self.target.snap_to(pose, refresh_lock=self.config.lock_orientation_on_translate)
        self.state.damping = self.state.initial_damping
        self.state.stall_count = 0
        self.state.fallback_count = 0

    def _current_pose(self) -> BodyPose:
        self.configuration.update()
        return self.configuration.get_body_pose(self._body_id)

    # Accessors

    @property
    def target_position(self) -> np.ndarray:
        return self.target.position.copy()

    @property
    def target_rotation(self) -> SO3:
        return self.target.rotation.copy()

    @property
    def is_dirty(self) -> bool:
        return self.target.dirty

    @property
    def converged(self) -> bool:
        return self._converged

    @property
    def last_error(self) -> Optional[float]:
        """Combined pose error of the latest solve iteration."""
        return self._last_error

    @property
    def last_decision(self) -> Optional[StepDecision]:
        """Step decision of the latest solve iteration."""
        return self._last_decision

    @property
    def disabled(self) -> bool:
        return self._disabled

    @property
    def uses_proxy(self) -> bool:
        return self._uses_proxy

    @property
    def end_effector_id(self) -> int:
        return self._body_id

    @property
    def controlled_dofs(self) -> Tuple[ControlledDOF, ...]:
        return self._dofs

    @property
    def actuator_bindings(self) -> Dict[int, ActuatorBinding]:
        return dict(self._bindings)

    @property
    def strategy_names(self) -> List[str]:
        return self._policy.names

    def current_pose(self) -> BodyPose:
        """Live end-effector pose."""
        return self._current_pose()
