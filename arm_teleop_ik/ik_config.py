"""Configuration object for the IK controller.

Classes:
    ControlMode: How the end-effector target reaches the model.
    IKConfig: Every tunable of the controller, validated on construction.
"""

from __future__ import annotations

import dataclasses
import enum
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Tuple

from . import constants as consts
from .exceptions import InvalidConfiguration, InvalidDamping, InvalidGain


class ControlMode(enum.Enum):
    """Operating mode of the controller.

    FREE writes the target straight to a free-floating proxy (mocap) body.
    JOINT solves for joint commands. AUTO picks FREE when the end-effector
    is a mocap body and JOINT otherwise.
    """

    AUTO = "auto"
    FREE = "free"
    JOINT = "joint"


@dataclass
class IKConfig:
    """Tunables of the IK controller.

    Attributes:
        end_effector_body: Name of the body to place at the target.
        joint_names: Controlled joints, in control order.
        mode: Operating mode.
        translation_gain: Scale applied to the translational residual.
        rotation_gain: Scale applied to the rotational residual.
        max_iterations: Solve iterations per update while the host is paused.
        running_iterations: Solve iterations per update while the host steps physics.
        step_limit: Largest joint change per iteration [rad] or [m].
        position_weight: Pose cost weight of the position residual.
        orientation_weight: Pose cost weight of a free rotation residual.
        held_orientation_weight: Pose cost weight of the rotation residual
            while the user is only translating.
        hold_orientation_on_translate: Use the held weight while translating.
        lock_orientation_on_translate: Freeze the target orientation while translating.
        limit_weight: Weight of the joint-limit soft barrier.
        limit_margin_fraction: Barrier region as a fraction of the joint range.
        lambda_initial: Initial trust-region damping.
        lambda_factor: Damping growth (reject) and shrink (accept) factor.
        lambda_min: Lower bound of the damping.
        lambda_max: Upper bound of the damping.
        step_quality_min: Minimum actual-to-predicted cost reduction ratio.
        lm_max_trials: Damped least-squares trials per iteration; 0 disables it.
        use_transpose_fallback: Fall back to a Jacobian-transpose step.
        transpose_damping_scale: Scale of the Jacobian-transpose step.
        transpose_use_gain: Apply the gains to the Jacobian-transpose error.
        fallback_max_consecutive: Consecutive fallback steps before the target snaps.
        use_smart_selection: Go straight to the fallback near joint limits.
        smart_selection_margin_fraction: Near-limit region for smart selection.
        use_safety_margin: Block commands further into a breached margin.
        safety_margin_fraction: Safety margin as a fraction of the joint range.
        stall_min_improvement: Error improvement below which an iteration stalls.
        stall_max_iterations: Consecutive stalled iterations before stopping; 0 disables.
        snap_target_on_stall: Snap the target to the current pose on a stall.
        max_ctrl_offset: Largest command offset from the measured joint value; 0 disables.
        max_target_lead: Largest distance the target may lead the end-effector [m].
        convergence_threshold: Combined pose error considered converged.
        finite_difference_epsilon: Perturbation used for the Jacobian.
        preview_when_paused: While paused, move the joint coordinates to the
            committed commands so later iterations of the same call see them.
            The joints are written directly, bypassing contacts and actuator
            dynamics; disable it when paused previews must respect contacts.
        actuator_prefixes: Actuator name prefixes tried after the exact match.
    """

    end_effector_body: Optional[str] = None
    joint_names: Tuple[str, ...] = ()
    mode: ControlMode = ControlMode.AUTO
    translation_gain: float = consts.DEFAULT_TRANSLATION_GAIN
    rotation_gain: float = consts.DEFAULT_ROTATION_GAIN
    max_iterations: int = consts.DEFAULT_MAX_ITERATIONS
    running_iterations: int = consts.DEFAULT_RUNNING_ITERATIONS
    step_limit: float = consts.DEFAULT_STEP_LIMIT
    position_weight: float = consts.DEFAULT_POSITION_WEIGHT
    orientation_weight: float = consts.DEFAULT_ORIENTATION_WEIGHT
    held_orientation_weight: float = consts.DEFAULT_HELD_ORIENTATION_WEIGHT
    hold_orientation_on_translate: bool = True
    lock_orientation_on_translate: bool = True
    limit_weight: float = consts.DEFAULT_LIMIT_WEIGHT
    limit_margin_fraction: float = consts.DEFAULT_LIMIT_MARGIN_FRACTION
    lambda_initial: float = consts.DEFAULT_LAMBDA_INITIAL
    lambda_factor: float = consts.DEFAULT_LAMBDA_FACTOR
    lambda_min: float = consts.DEFAULT_LAMBDA_MIN
    lambda_max: float = consts.DEFAULT_LAMBDA_MAX
    step_quality_min: float = consts.DEFAULT_STEP_QUALITY_MIN
    lm_max_trials: int = consts.DEFAULT_LM_MAX_TRIALS
    use_transpose_fallback: bool = True
    transpose_damping_scale: float = consts.DEFAULT_TRANSPOSE_DAMPING_SCALE
    transpose_use_gain: bool = True
    fallback_max_consecutive: int = consts.DEFAULT_FALLBACK_MAX_CONSECUTIVE
    use_smart_selection: bool = True
    smart_selection_margin_fraction: float = consts.DEFAULT_SMART_SELECTION_MARGIN_FRACTION
    use_safety_margin: bool = True
    safety_margin_fraction: float = consts.DEFAULT_SAFETY_MARGIN_FRACTION
    stall_min_improvement: float = consts.DEFAULT_STALL_MIN_IMPROVEMENT
    stall_max_iterations: int = consts.DEFAULT_STALL_MAX_ITERATIONS
    snap_target_on_stall: bool = True
    max_ctrl_offset: float = consts.DEFAULT_MAX_CTRL_OFFSET
    max_target_lead: float = consts.DEFAULT_MAX_TARGET_LEAD
    convergence_threshold: float = consts.CONVERGENCE_THRESHOLD
    finite_difference_epsilon: float = consts.FINITE_DIFFERENCE_EPSILON
    preview_when_paused: bool = True
    actuator_prefixes: Tuple[str, ...] = consts.DEFAULT_ACTUATOR_PREFIXES

    def __post_init__(self) -> None:
        """Normalize field types and validate every tunable."""
        if not isinstance(self.mode, ControlMode):
            try:
                self.mode = ControlMode(self.mode)
            except ValueError as exc:
                raise InvalidConfiguration(
                    f"Unknown mode '{self.mode}'. Choose from {[m.value for m in ControlMode]}"
                ) from exc
        self.joint_names = tuple(self.joint_names)
        self.actuator_prefixes = tuple(self.actuator_prefixes)
        self._validate_gains()
        self._validate_damping()
        self._validate_fractions()
        self._validate_counts()

    def _validate_gains(self) -> None:
        for name in (
            "translation_gain",
            "rotation_gain",
            "position_weight",
            "orientation_weight",
            "held_orientation_weight",
            "limit_weight",
            "transpose_damping_scale",
        ):
            if getattr(self, name) < 0.0:
                raise InvalidGain(f"{self.__class__.__name__} {name} should be >= 0")
        if self.step_limit <= 0.0:
            raise InvalidGain(f"{self.__class__.__name__} step_limit should be > 0")

    def _validate_damping(self) -> None:
        if not 0.0 < self.lambda_min <= self.lambda_max:
            raise InvalidDamping(
                f"Damping bounds must satisfy 0 < lambda_min <= lambda_max, got "
                f"[{self.lambda_min}, {self.lambda_max}]"
            )
        if self.lambda_initial <= 0.0:
            raise InvalidDamping("lambda_initial should be > 0")
        if self.lambda_factor <= 1.0:
            raise InvalidDamping("lambda_factor should be > 1")

    def _validate_fractions(self) -> None:
        for name in (
            "limit_margin_fraction",
            "smart_selection_margin_fraction",
            "safety_margin_fraction",
        ):
            value = getattr(self, name)
            if not 0.0 <= value < 0.5:
                raise InvalidConfiguration(f"{name} must be in the range [0, 0.5), got {value}")
        for name in (
            "max_ctrl_offset",
            "max_target_lead",
            "stall_min_improvement",
            "step_quality_min",
        ):
            if getattr(self, name) < 0.0:
                raise InvalidConfiguration(f"{name} should be >= 0")
        if self.convergence_threshold <= 0.0 or self.finite_difference_epsilon <= 0.0:
            raise InvalidConfiguration(
                "convergence_threshold and finite_difference_epsilon should be > 0"
            )

    def _validate_counts(self) -> None:
        if self.max_iterations < 1 or self.running_iterations < 1:
            raise InvalidConfiguration("Iteration caps should be >= 1")
        if self.lm_max_trials < 0 or self.stall_max_iterations < 0:
            raise InvalidConfiguration("lm_max_trials and stall_max_iterations should be >= 0")
        if self.fallback_max_consecutive < 1:
            raise InvalidConfiguration("fallback_max_consecutive should be >= 1")

    @classmethod
    def from_dict(cls, values: Mapping[str, Any]) -> IKConfig:
        """Build a config from a mapping of field names to values.

        Args:
            values: Field overrides.

        Returns:
            An ``IKConfig`` instance.

        Raises:
            InvalidConfiguration: If a key is not a config field.
        """
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise InvalidConfiguration(f"Unknown IK config keys: {unknown}")
        return cls(**dict(values))

    def replace(self, **changes: Any) -> IKConfig:
        """Return a copy with the given fields changed."""
        return dataclasses.replace(self, **changes)
