"""End-effector pose target driven by user intents."""

from dataclasses import dataclass, field

import numpy as np

from .configuration import BodyPose
from .constants import DEFAULT_MAX_TARGET_LEAD, DEFAULT_TOLERANCE
from .lie import SO3


@dataclass
class PoseTarget:
    """Target pose of the end-effector.

    Intents accumulate here between solves; the last write wins.

    Attributes:
        position: Target position of shape (3,).
        rotation: Target orientation.
        dirty: Whether the target changed since the solver last settled.
        hold_orientation: Whether the latest intent was a translation.
        lock_active: Whether the locked orientation is in effect.
        locked_rotation: Orientation restored on every translation while locked.
    """

    position: np.ndarray = field(default_factory=lambda: np.zeros(3))
    rotation: SO3 = field(default_factory=SO3.identity)
    dirty: bool = False
    hold_orientation: bool = True
    lock_active: bool = False
    locked_rotation: SO3 = field(default_factory=SO3.identity)

    def translate(
        self,
        delta: np.ndarray,
        current_position: np.ndarray,
        max_lead: float = DEFAULT_MAX_TARGET_LEAD,
        lock_orientation: bool = True,
    ) -> None:
        """Move the target by ``delta``.

        Before the delta is added, a target further than ``max_lead`` from the
        current end-effector position is pulled back onto the sphere of that
        radius, so the target cannot run away while a key is held.

        Args:
            delta: Translation of shape (3,).
            current_position: Current end-effector position.
            max_lead: Largest lead of the target before the delta is added.
            lock_orientation: Freeze the target orientation while translating.
        """
        lead = self.position - current_position
        distance = float(np.linalg.norm(lead))
        if distance > max_lead and distance > DEFAULT_TOLERANCE:
            self.position = current_position + lead / distance * max_lead

        if lock_orientation:
            if not self.lock_active:
                self.locked_rotation = self.rotation.normalized()
                self.lock_active = True
            self.rotation = self.locked_rotation.normalized()

        self.position = self.position + delta
        self.hold_orientation = True
        self.dirty = True

    def rotate(self, euler_delta: np.ndarray) -> None:
        """Compose an intrinsic XYZ Euler rotation onto the target.

        Args:
            euler_delta: Angles (rx, ry, rz) in radians.
        """
        delta = SO3.from_euler_xyz(*euler_delta)
        self.rotation = self.rotation.multiply(delta).normalized()
        self.hold_orientation = False
        self.lock_active = False
        self.dirty = True

    def sync_to(self, pose: BodyPose) -> None:
        """Set the target to a pose and mark it settled."""
        self.position = pose.position.copy()
        self.rotation = pose.rotation.normalized()
        self.dirty = False

    def reset_to(self, pose: BodyPose) -> None:
        """Set the target to a pose and clear the orientation lock."""
        self.lock_active = False
        self.hold_orientation = True
        self.locked_rotation = SO3.identity()
        self.sync_to(pose)

    def snap_to(self, pose: BodyPose, refresh_lock: bool = True) -> None:
        """Give up on the current target and settle at a reached pose.

        Args:
            pose: Reached pose.
            refresh_lock: Also move the lock reference to the reached
                orientation, so the next translation does not pull back
                towards the abandoned one.
        """
        self.sync_to(pose)
        if refresh_lock:
            self.locked_rotation = pose.rotation.normalized()

    def enforce_lock(self, lock_orientation: bool = True) -> None:
        """Re-apply the locked orientation while only translating."""
        if lock_orientation and self.hold_orientation and self.lock_active:
            self.rotation = self.locked_rotation.normalized()
