"""
Keyboard teleoperation of the end-effector target.

Held keys are turned into per-frame translation and rotation intents and fed
to an :class:`~arm_teleop_ik.controller.IKController`. The host reports key
state through :meth:`KeyboardTeleop.press` / :meth:`KeyboardTeleop.release`,
or through :meth:`KeyboardTeleop.tap` when its input layer only reports
presses (key repeat keeps a tapped key held).

Classes:
    KeyboardTeleop: Maps held keys to target intents.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Set, Tuple

import numpy as np

from .controller import IKController

DEFAULT_TRANSLATION_BINDINGS: Dict[str, Tuple[float, float, float]] = {
    "up": (1.0, 0.0, 0.0),
    "down": (-1.0, 0.0, 0.0),
    "left": (0.0, 1.0, 0.0),
    "right": (0.0, -1.0, 0.0),
    "e": (0.0, 0.0, 1.0),
    "d": (0.0, 0.0, -1.0),
}

DEFAULT_ROTATION_BINDINGS: Dict[str, Tuple[float, float, float]] = {
    "q": (1.0, 0.0, 0.0),
    "w": (-1.0, 0.0, 0.0),
    "a": (0.0, 1.0, 0.0),
    "s": (0.0, -1.0, 0.0),
    "z": (0.0, 0.0, 1.0),
    "x": (0.0, 0.0, -1.0),
}

FAST_KEY = "shift"
SLOW_KEY = "alt"


@dataclass
class KeyboardTeleop:
    """Maps held keys to end-effector target intents.

    Translation keys add up to a direction that is normalized, so diagonal
    motion is not faster. Rotation keys add up to roll/pitch/yaw rates.
    Holding Shift multiplies both speeds by ``fast_multiplier``; holding Alt
    by ``slow_multiplier``.

    Attributes:
        translation_speed: Translation speed [m/s].
        rotation_speed: Rotation speed [rad/s].
        fast_multiplier: Speed multiplier while Shift is held.
        slow_multiplier: Speed multiplier while Alt is held.
        max_frame_dt: Largest frame time integrated at once [s].
        tap_hold_time: How long a tapped key stays held [s].
        translation_bindings: Key name to unit translation direction.
        rotation_bindings: Key name to rotation axis.
    """

    translation_speed: float = 0.25
    rotation_speed: float = float(np.deg2rad(45.0))
    fast_multiplier: float = 3.0
    slow_multiplier: float = 0.35
    max_frame_dt: float = 0.1
    tap_hold_time: float = 0.15
    translation_bindings: Dict[str, Tuple[float, float, float]] = field(
        default_factory=lambda: dict(DEFAULT_TRANSLATION_BINDINGS)
    )
    rotation_bindings: Dict[str, Tuple[float, float, float]] = field(
        default_factory=lambda: dict(DEFAULT_ROTATION_BINDINGS)
    )
    active_keys: Set[str] = field(default_factory=set)
    _tapped: Dict[str, float] = field(default_factory=dict, repr=False)
    _last_timestamp: Optional[float] = field(default=None, repr=False)

    # ------------------------------------------------------------------
    # Key state
    # ------------------------------------------------------------------

    def is_bound(self, key: str) -> bool:
        key = key.lower()
        return (
            key in self.translation_bindings
            or key in self.rotation_bindings
            or key in (FAST_KEY, SLOW_KEY)
        )

    def press(self, key: str) -> None:
        """Mark a key as held. Unbound keys are ignored."""
        key = key.lower()
        if self.is_bound(key):
            self.active_keys.add(key)

    def release(self, key: str) -> None:
        """Mark a key as released."""
        key = key.lower()
        self.active_keys.discard(key)
        self._tapped.pop(key, None)

    def tap(self, key: str, timestamp: float) -> None:
        """Hold a key until ``tap_hold_time`` after its latest tap.

        Args:
            key: Key name.
            timestamp: Host time of the tap [s].
        """
        key = key.lower()
        if self.is_bound(key):
            self.active_keys.add(key)
            self._tapped[key] = timestamp

    def clear(self) -> None:
        """Release every key."""
        self.active_keys.clear()
        self._tapped.clear()

    def has_active_commands(self) -> bool:
        return any(
            key in self.translation_bindings or key in self.rotation_bindings
            for key in self.active_keys
        )

    # ------------------------------------------------------------------
    # Intents
    # ------------------------------------------------------------------

    def speed_scale(self) -> float:
        if FAST_KEY in self.active_keys:
            return self.fast_multiplier
        if SLOW_KEY in self.active_keys:
            return self.slow_multiplier
        return 1.0

    def compute_deltas(self, dt: float) -> Tuple[np.ndarray, np.ndarray]:
        """Compute the translation and rotation of one frame.

        Args:
            dt: Frame time [s].

        Returns:
            Tuple (translation, euler_rotation), each of shape (3,).
        """
        scale = self.speed_scale()
        direction = np.zeros(3)
        rates = np.zeros(3)
        for key in self.active_keys:
            if key in self.translation_bindings:
                direction += self.translation_bindings[key]
            if key in self.rotation_bindings:
                rates += self.rotation_bindings[key]

        norm = np.linalg.norm(direction)
        translation = np.zeros(3)
        if norm > 0.0:
            translation = direction / norm * self.translation_speed * scale * dt
        rotation = rates * self.rotation_speed * scale * dt
        return translation, rotation

    def update(self, timestamp: float, controller: IKController) -> None:
        """Send the intents of the frame ending at ``timestamp``.

        The first call only records the time.

        Args:
            timestamp: Host time [s].
            controller: Controller receiving the intents.
        """
        for key, tapped_at in list(self._tapped.items()):
            if timestamp - tapped_at > self.tap_hold_time:
                self.release(key)

        if self._last_timestamp is None:
            self._last_timestamp = timestamp
            return
        dt = min(timestamp - self._last_timestamp, self.max_frame_dt)
        self._last_timestamp = timestamp
        if dt <= 0.0:
            return

        translation, rotation = self.compute_deltas(dt)
        if np.any(translation):
            controller.set_target_position_delta(translation)
        if np.any(rotation):
            controller.set_target_orientation_delta(rotation)
