"""Joint-limit safety for commands and steps.

A joint range [lo, hi] is shrunk by a margin proportional to its span. The
margin is used three ways: to detect that any joint sits near a limit, to
attenuate fallback steps heading into a limit, and as a directional soft wall
on actuator commands.
"""

from typing import Sequence

import numpy as np

from ..constants import DEFAULT_SAFETY_MARGIN_FRACTION, MIN_LIMIT_MARGIN
from ..exceptions import InvalidConfiguration
from ..resolver import ControlledDOF


def any_near_limit(
    dofs: Sequence[ControlledDOF],
    dof_values: np.ndarray,
    margin_fraction: float,
) -> bool:
    """Check whether any controlled coordinate is within a margin of a limit.

    Args:
        dofs: Controlled DOFs.
        dof_values: Current values of the controlled coordinates, shape (n,).
        margin_fraction: Margin as a fraction of each joint range.

    Returns:
        True if some joint with a range satisfies q <= lo + m or q >= hi - m.
    """
    for dof, q in zip(dofs, dof_values):
        if not dof.has_range:
            continue
        margin = dof.span * margin_fraction
        if q <= dof.lower + margin or q >= dof.upper - margin:
            return True
    return False


def limit_attenuation(
    dof: ControlledDOF,
    q: float,
    step: float,
    margin_fraction: float,
) -> float:
    """Scale factor for a step heading into a joint limit.

    Inside a margin of twice ``margin_fraction`` next to a limit, a step
    towards that limit is scaled linearly down to zero at the limit. Steps
    away from the limit, and joints without a range, are not scaled.

    Args:
        dof: Controlled DOF.
        q: Current value of the coordinate.
        step: Proposed step.
        margin_fraction: Base margin as a fraction of the joint range.

    Returns:
        Factor in [0, 1].
    """
    if not dof.has_range:
        return 1.0
    margin = max(MIN_LIMIT_MARGIN, dof.span * margin_fraction * 2.0)
    if q < dof.lower + margin and step < 0.0:
        return max(0.0, (q - dof.lower) / margin)
    if q > dof.upper - margin and step > 0.0:
        return max(0.0, (dof.upper - q) / margin)
    return 1.0


class SafetyMargin:
    """Directional soft wall in front of each joint limit.

    A command may not newly enter the safety zone [lo, lo + m] or
    [hi - m, hi]; it is held at the zone boundary. A joint already inside the
    zone may not be commanded further towards the limit than its measured
    value, while commands moving it away are passed through. The result is
    always clipped to the hard range [lo, hi].
    """

    def __init__(
        self,
        fraction: float = DEFAULT_SAFETY_MARGIN_FRACTION,
        enabled: bool = True,
    ):
        """Initialize the safety margin.

        Args:
            fraction: Margin as a fraction of the joint range, in [0, 0.5).
            enabled: If False, only the hard range is enforced.
        """
        if not 0.0 <= fraction < 0.5:
            raise InvalidConfiguration(
                f"{self.__class__.__name__} fraction must be in the range [0, 0.5)"
            )
        self.fraction = fraction
        self.enabled = enabled

    def clamp(self, command: float, measured: float, step: float, dof: ControlledDOF) -> float:
        """Clamp a joint command against the soft wall and the hard range.

        Args:
            command: Proposed command.
            measured: Measured value of the joint.
            step: Step that produced the command; its sign is the direction
                of motion.
            dof: Controlled DOF.

        Returns:
            The clamped command.
        """
        if not dof.has_range:
            return command

        margin = dof.span * self.fraction if self.enabled else 0.0
        if margin > 0.0:
            safe_lower = dof.lower + margin
            safe_upper = dof.upper - margin

            if measured <= safe_lower:
                if step < 0.0:
                    command = max(command, measured)
            elif command < safe_lower:
                command = safe_lower

            if measured >= safe_upper:
                if step > 0.0:
                    command = min(command, measured)
            elif command > safe_upper:
                command = safe_upper

        return float(np.clip(command, dof.lower, dof.upper))
