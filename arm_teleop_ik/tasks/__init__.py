"""Cost terms of the damped least-squares step."""

from .limit_barrier_task import JointLimitBarrierTask
from .pose_task import PoseTask
from .task import BaseTask, Linearization, Objective

__all__ = [
    "BaseTask",
    "JointLimitBarrierTask",
    "Linearization",
    "Objective",
    "PoseTask",
]
