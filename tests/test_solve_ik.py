import numpy as np
import pytest

from arm_teleop_ik import (
    LevenbergMarquardtSolver,
    SolverState,
    compute_jacobian_transpose_step,
    gauss_jordan_solve,
    scale_to_step_limit,
)
from arm_teleop_ik.exceptions import InvalidDamping
from arm_teleop_ik.jacobian import compute_finite_difference_jacobian
from arm_teleop_ik.pose_residual import compute_pose_residual
from arm_teleop_ik.resolver import ControlledDOF, resolve_controlled_dofs
from arm_teleop_ik.tasks import JointLimitBarrierTask, Linearization, PoseTask

from .conftest import ARM_JOINTS


def test_gauss_jordan_matches_numpy():
    rng = np.random.default_rng(0)
    M = rng.normal(size=(5, 5))
    A = M @ M.T + np.eye(5)
    b = rng.normal(size=5)
    np.testing.assert_allclose(gauss_jordan_solve(A, b), np.linalg.solve(A, b), atol=1e-10)


def test_gauss_jordan_pivots_zero_diagonal():
    A = np.array([[0.0, 2.0], [3.0, 0.0]])
    b = np.array([4.0, 9.0])
    np.testing.assert_allclose(gauss_jordan_solve(A, b), [3.0, 2.0])


def test_gauss_jordan_singular_returns_zero_step():
    A = np.array([[1.0, 2.0], [2.0, 4.0]])
    np.testing.assert_array_equal(gauss_jordan_solve(A, np.array([1.0, 1.0])), np.zeros(2))


def test_scale_to_step_limit_preserves_direction():
    np.testing.assert_allclose(scale_to_step_limit(np.array([0.1, -0.2]), 0.05), [0.025, -0.05])
    np.testing.assert_allclose(scale_to_step_limit(np.array([0.01, -0.02]), 0.05), [0.01, -0.02])


def test_solver_state_counts_stalls():
    state = SolverState(damping=0.5, initial_damping=0.1)
    assert state.record_error(1.0, 1e-3) == 0
    assert state.record_error(0.9999, 1e-3) == 1
    assert state.record_error(0.9999, 1e-3) == 2
    assert state.record_error(0.5, 1e-3) == 0
    state.fallback_count = 4
    state.reset()
    assert state.damping == 0.1
    assert state.last_error is None
    assert state.stall_count == state.fallback_count == 0


def _linearize(configuration, target_position, target_rotation, dofs):
    body_id = configuration.body_id("hand")
    pose = configuration.get_body_pose(body_id)
    residual = compute_pose_residual(target_position, target_rotation, pose)
    jacobian = compute_finite_difference_jacobian(configuration, body_id, dofs, pose)
    dof_values = configuration.q[[dof.qpos_address for dof in dofs]].copy()
    return body_id, Linearization(dof_values, residual, jacobian)


def test_levenberg_marquardt_step_reduces_cost(arm_configuration):
    dofs = resolve_controlled_dofs(arm_configuration, ARM_JOINTS)
    body_id = arm_configuration.body_id("hand")
    pose = arm_configuration.get_body_pose(body_id)
    target_position = pose.position + np.array([0.01, 0.0, -0.01])
    _, linearization = _linearize(arm_configuration, target_position, pose.rotation, dofs)

    tasks = [PoseTask(), JointLimitBarrierTask(dofs)]
    solver = LevenbergMarquardtSolver(arm_configuration, body_id, dofs, tasks)
    state = SolverState(damping=0.1, initial_damping=0.1)
    qpos_before = arm_configuration.q.copy()

    step = solver.compute_step(linearization, state, target_position, pose.rotation)

    assert step is not None
    assert np.max(np.abs(step)) <= solver.step_limit + 1e-12
    assert state.damping <= 0.1
    np.testing.assert_array_equal(arm_configuration.q, qpos_before)

    candidate = qpos_before.copy()
    candidate[[dof.qpos_address for dof in dofs]] += step
    moved = arm_configuration.evaluate_body_pose(candidate, body_id)
    assert np.linalg.norm(target_position - moved.position) < np.linalg.norm(
        target_position - pose.position
    )


def test_levenberg_marquardt_signals_failure_without_trials(arm_configuration):
    dofs = resolve_controlled_dofs(arm_configuration, ARM_JOINTS)
    body_id = arm_configuration.body_id("hand")
    pose = arm_configuration.get_body_pose(body_id)
    target_position = pose.position + 0.01
    _, linearization = _linearize(arm_configuration, target_position, pose.rotation, dofs)
    solver = LevenbergMarquardtSolver(arm_configuration, body_id, dofs, [PoseTask()], max_trials=0)
    assert solver.compute_step(linearization, SolverState(), target_position, pose.rotation) is None


def test_levenberg_marquardt_grows_damping_until_trials_run_out(arm_configuration):
    dofs = resolve_controlled_dofs(arm_configuration, ARM_JOINTS)
    body_id = arm_configuration.body_id("hand")
    pose = arm_configuration.get_body_pose(body_id)
    target_position = pose.position + np.array([0.01, 0.0, -0.01])
    _, linearization = _linearize(arm_configuration, target_position, pose.rotation, dofs)

    solver = LevenbergMarquardtSolver(
        arm_configuration,
        body_id,
        dofs,
        [PoseTask(), JointLimitBarrierTask(dofs)],
        step_quality_min=10.0,
        max_trials=4,
    )
    state = SolverState(damping=0.1, initial_damping=0.1)
    qpos_before = arm_configuration.q.copy()

    assert solver.compute_step(linearization, state, target_position, pose.rotation) is None
    assert state.damping == pytest.approx(0.1 * 2**4)
    np.testing.assert_array_equal(arm_configuration.q, qpos_before)


def test_levenberg_marquardt_rejects_bad_damping(arm_configuration):
    with pytest.raises(InvalidDamping):
        LevenbergMarquardtSolver(arm_configuration, 1, (), [], lambda_min=1.0, lambda_max=0.1)


def test_jacobian_transpose_step_is_finite_when_singular():
    dofs = [ControlledDOF("j", 0, 0, -1.0, 1.0), ControlledDOF("k", 1, 1, -1.0, 1.0)]
    step = compute_jacobian_transpose_step(np.zeros((6, 2)), np.ones(6), dofs, np.zeros(2))
    np.testing.assert_array_equal(step, np.zeros(2))


def test_jacobian_transpose_step_attenuates_and_clamps():
    dofs = [ControlledDOF("j", 0, 0, -1.0, 1.0), ControlledDOF("k", 1, 1, -1.0, 1.0)]
    jacobian = np.zeros((6, 2))
    jacobian[0, 0] = -1.0
    jacobian[1, 1] = 1.0
    error = np.array([0.02, 0.02, 0.0, 0.0, 0.0, 0.0])
    # Joint 0 sits halfway into the doubled margin and is pushed towards its lower limit.
    step = compute_jacobian_transpose_step(
        jacobian, error, dofs, np.array([-0.9, 0.0]), step_limit=0.025, damping_scale=1.0,
        margin_fraction=0.05,
    )
    np.testing.assert_allclose(step, [-0.01, 0.02])

    step = compute_jacobian_transpose_step(
        jacobian, error, dofs, np.array([0.0, 0.0]), step_limit=0.025, damping_scale=1.5,
    )
    np.testing.assert_allclose(step, [-0.025, 0.025])
