"""Constants used throughout the IK controller."""

import numpy as np

# Numerical tolerances
DEFAULT_TOLERANCE = 1e-6
EPSILON_FLOAT32 = 1e-5
EPSILON_FLOAT64 = 1e-10
PIVOT_TOLERANCE = 1e-12
PREDICTION_TOLERANCE = 1e-12
MIN_LIMIT_MARGIN = 1e-6
SMALL_ROTATION = 1e-9

# Pose error and finite differencing
CONVERGENCE_THRESHOLD = 1e-3
FINITE_DIFFERENCE_EPSILON = 1e-4

# Gains and iteration caps
DEFAULT_TRANSLATION_GAIN = 0.3
DEFAULT_ROTATION_GAIN = 0.3
DEFAULT_MAX_ITERATIONS = 5
DEFAULT_RUNNING_ITERATIONS = 1
DEFAULT_STEP_LIMIT = 0.05

# Pose cost weights
DEFAULT_POSITION_WEIGHT = 50.0
DEFAULT_ORIENTATION_WEIGHT = 100.0
DEFAULT_HELD_ORIENTATION_WEIGHT = 2000.0

# Joint-limit soft barrier
DEFAULT_LIMIT_WEIGHT = 10.0
DEFAULT_LIMIT_MARGIN_FRACTION = 0.05

# Trust region
DEFAULT_LAMBDA_INITIAL = 0.1
DEFAULT_LAMBDA_FACTOR = 2.0
DEFAULT_LAMBDA_MIN = 1e-5
DEFAULT_LAMBDA_MAX = 10.0
DEFAULT_STEP_QUALITY_MIN = 1e-3
DEFAULT_LM_MAX_TRIALS = 10

# Jacobian-transpose fallback and solver selection
DEFAULT_TRANSPOSE_DAMPING_SCALE = 1.5
DEFAULT_FALLBACK_MAX_CONSECUTIVE = 10
DEFAULT_SMART_SELECTION_MARGIN_FRACTION = 0.02

# Safety
DEFAULT_SAFETY_MARGIN_FRACTION = 0.06
DEFAULT_STALL_MIN_IMPROVEMENT = 1e-4
DEFAULT_STALL_MAX_ITERATIONS = 3
DEFAULT_MAX_CTRL_OFFSET = 0.5
DEFAULT_MAX_TARGET_LEAD = 0.03

# Actuator name resolution
DEFAULT_ACTUATOR_PREFIXES = ("franka/",)

# Host diagnostics
WARNING_INTERVAL = 1.0


def get_epsilon(dtype: np.dtype) -> float:
    """Get numerical epsilon for a given dtype."""
    return {
        np.dtype("float32"): EPSILON_FLOAT32,
        np.dtype("float64"): EPSILON_FLOAT64,
    }.get(dtype, EPSILON_FLOAT64)
