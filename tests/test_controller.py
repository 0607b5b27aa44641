import logging

import numpy as np
import pytest

from arm_teleop_ik import SO3, ControlMode, IKConfig, IKController
from arm_teleop_ik.exceptions import EndEffectorNotFound, InvalidTarget, MissingActuator
from arm_teleop_ik.pose_residual import compute_pose_residual, orientation_delta

from .conftest import ARM_JOINTS, JOINT_RANGES, MOCAP_XML, arm_xml, load_model, position_actuators


def _within_limits(values):
    for joint, value in zip(ARM_JOINTS, values):
        lo, hi = JOINT_RANGES[joint]
        if not lo - 1e-9 <= value <= hi + 1e-9:
            return False
    return True


def test_construction_syncs_ctrl_and_target(make_controller, arm):
    _, data = arm
    controller = make_controller()
    np.testing.assert_allclose(data.ctrl, data.qpos[:6])
    pose = controller.current_pose()
    np.testing.assert_allclose(controller.target_position, pose.position)
    assert controller.target_rotation == pose.rotation
    assert not controller.is_dirty
    assert len(controller.controlled_dofs) == 6
    assert sorted(controller.actuator_bindings) == list(range(6))
    assert not controller.uses_proxy
    assert controller.end_effector_id == controller.configuration.body_id("hand")


def test_construction_errors(arm):
    model, data = arm
    with pytest.raises(EndEffectorNotFound):
        IKController(model, data, IKConfig(end_effector_body="claw", joint_names=ARM_JOINTS))

    model, data = load_model(arm_xml(position_actuators(joints=ARM_JOINTS[:5])))
    with pytest.raises(MissingActuator):
        IKController(model, data, IKConfig(end_effector_body="hand", joint_names=ARM_JOINTS))


def test_update_without_intent_is_a_no_op(make_controller, arm):
    _, data = arm
    controller = make_controller()
    qpos, ctrl = data.qpos.copy(), data.ctrl.copy()
    controller.update(0.0, is_paused=True)
    controller.update(0.1, is_paused=False)
    np.testing.assert_array_equal(data.qpos, qpos)
    np.testing.assert_array_equal(data.ctrl, ctrl)
    assert controller.last_decision is None


def test_reaches_nearby_target_while_paused(make_controller):
    controller = make_controller(
        translation_gain=1.0, rotation_gain=1.0, max_iterations=50, stall_max_iterations=0
    )
    start = controller.current_pose()
    controller.set_target_position_delta(np.array([0.02, 0.0, 0.0]))
    assert controller.is_dirty

    controller.update(0.0, is_paused=True)

    assert controller.converged
    assert not controller.is_dirty
    assert controller.last_error < 1e-3
    pose = controller.current_pose()
    residual = compute_pose_residual(start.position + [0.02, 0.0, 0.0], start.rotation, pose)
    assert residual.magnitude < 1e-3


def test_reaches_nearby_target_with_default_tuning(make_controller):
    controller = make_controller()
    start = controller.current_pose()
    controller.set_target_position_delta(np.array([0.02, 0.0, 0.0]))

    controller.update(0.0, is_paused=True)
    controller.update(0.1, is_paused=True)

    residual = compute_pose_residual(
        start.position + [0.02, 0.0, 0.0], start.rotation, controller.current_pose()
    )
    assert residual.magnitude < 1e-3

    controller.update(0.2, is_paused=True)
    assert controller.converged
    assert not controller.is_dirty


def test_converged_update_is_idempotent(make_controller, arm):
    _, data = arm
    controller = make_controller(
        translation_gain=1.0, rotation_gain=1.0, max_iterations=50, stall_max_iterations=0
    )
    controller.set_target_position_delta(np.array([0.0, 0.01, 0.01]))
    controller.update(0.0, is_paused=True)
    assert controller.converged

    qpos, ctrl = data.qpos.copy(), data.ctrl.copy()
    target = controller.target_position
    for t in (0.1, 0.2, 0.3):
        controller.update(t, is_paused=True)
    np.testing.assert_array_equal(data.qpos, qpos)
    np.testing.assert_array_equal(data.ctrl, ctrl)
    np.testing.assert_array_equal(controller.target_position, target)


def test_holds_orientation_while_translating(make_controller):
    controller = make_controller(
        translation_gain=1.0,
        rotation_gain=1.0,
        max_iterations=50,
        stall_max_iterations=0,
        fallback_max_consecutive=1000,
    )
    start = controller.current_pose()
    for delta in ([0.01, 0.0, 0.0], [0.0, 0.01, 0.0], [0.0, 0.0, -0.01]):
        controller.set_target_position_delta(np.array(delta))
        controller.update(0.0, is_paused=True)
        assert controller.converged
        pose = controller.current_pose()
        assert np.linalg.norm(orientation_delta(start.rotation, pose.rotation)) < 1e-3
    np.testing.assert_allclose(pose.position, start.position + [0.01, 0.01, -0.01], atol=1e-3)


def test_joints_stay_within_limits_starting_at_a_limit(arm):
    model, data = arm
    data.qpos[1] = JOINT_RANGES["joint2"][1]
    controller = IKController(
        model, data, IKConfig(end_effector_body="hand", joint_names=ARM_JOINTS, max_iterations=10)
    )
    for delta in ([0.03, 0.0, 0.0], [0.0, 0.0, -0.03], [-0.03, 0.02, 0.0], [0.0, 0.0, 0.03]):
        for _ in range(5):
            controller.set_target_position_delta(np.array(delta))
            controller.update(0.0, is_paused=True)
            assert _within_limits(data.qpos[:6])
            assert _within_limits(data.ctrl)
    assert not controller.disabled


def test_commands_stay_near_measured_joints(make_controller, arm):
    _, data = arm
    controller = make_controller(stall_max_iterations=0, max_ctrl_offset=0.1)
    controller.set_target_position_delta(np.array([0.0, 0.0, -0.03]))
    qpos = data.qpos[:6].copy()

    # Physics never advances, so the joints do not follow the commands.
    for i in range(100):
        controller.update(i * 0.01, is_paused=False)
        offsets = np.abs(data.ctrl - data.qpos[:6])
        assert np.all(offsets <= 0.1 + 1e-12)

    np.testing.assert_array_equal(data.qpos[:6], qpos)
    assert np.max(np.abs(data.ctrl - qpos)) == pytest.approx(0.1)
    assert controller.is_dirty


def test_paused_update_without_preview_leaves_joints(make_controller, arm):
    _, data = arm
    controller = make_controller(preview_when_paused=False)
    qpos, ctrl = data.qpos.copy(), data.ctrl.copy()
    controller.set_target_position_delta(np.array([0.02, 0.0, 0.0]))
    controller.update(0.0, is_paused=True)
    np.testing.assert_array_equal(data.qpos, qpos)
    assert not np.array_equal(data.ctrl, ctrl)


def test_error_is_identical_for_negated_target_quaternion(make_controller):
    controller = make_controller()
    pose = controller.current_pose()
    rotation = SO3.from_euler_xyz(0.1, -0.2, 0.3).multiply(pose.rotation)
    negated = SO3(wxyz=-rotation.wxyz)
    a = compute_pose_residual(pose.position, rotation, pose)
    b = compute_pose_residual(pose.position, negated, pose)
    np.testing.assert_allclose(a.rotation, b.rotation, atol=1e-12)
    assert a.magnitude == pytest.approx(b.magnitude)


def test_falls_back_to_jacobian_transpose(make_controller, arm):
    _, data = arm
    controller = make_controller(lm_max_trials=0, use_smart_selection=False, max_iterations=1)
    ctrl = data.ctrl.copy()
    controller.set_target_position_delta(np.array([0.02, 0.0, 0.0]))
    controller.update(0.0, is_paused=True)

    decision = controller.last_decision
    assert decision.strategy == "transpose_fallback"
    assert decision.is_fallback
    assert np.all(np.isfinite(decision.step))
    assert np.any(decision.step != 0.0)
    assert not np.array_equal(data.ctrl, ctrl)
    assert controller.state.fallback_count == 1
    assert not controller.disabled


def test_rejected_damped_steps_fall_back_to_transpose(make_controller, arm):
    _, data = arm
    # No trial can reach a reduction ratio of 10, so every trial is rejected.
    controller = make_controller(step_quality_min=10.0, max_iterations=1)
    ctrl = data.ctrl.copy()
    controller.set_target_position_delta(np.array([0.02, 0.0, 0.0]))
    controller.update(0.0, is_paused=True)

    decision = controller.last_decision
    assert decision.strategy == "transpose_fallback"
    assert np.all(np.isfinite(decision.step))
    assert np.any(decision.step != 0.0)
    assert not np.array_equal(data.ctrl, ctrl)
    assert controller.state.damping == controller.config.lambda_max
    assert not controller.disabled


def test_consecutive_fallbacks_snap_target(make_controller):
    controller = make_controller(
        lm_max_trials=0, use_smart_selection=False, fallback_max_consecutive=2, max_iterations=5
    )
    controller.set_target_position_delta(np.array([0.02, 0.0, 0.0]))
    controller.update(0.0, is_paused=True)

    assert not controller.is_dirty
    assert controller.state.fallback_count == 0
    np.testing.assert_allclose(controller.target_position, controller.current_pose().position)


def test_no_step_snaps_target(make_controller):
    controller = make_controller(lm_max_trials=0, use_transpose_fallback=False)
    assert controller.strategy_names == ["levenberg_marquardt"]
    controller.set_target_position_delta(np.array([0.02, 0.0, 0.0]))
    controller.update(0.0, is_paused=True)
    assert controller.last_decision is None
    assert not controller.is_dirty
    np.testing.assert_allclose(controller.target_position, controller.current_pose().position)


def test_stall_snaps_target(make_controller):
    controller = make_controller(stall_max_iterations=1, stall_min_improvement=1.0)
    controller.set_target_position_delta(np.array([0.02, 0.0, 0.0]))
    controller.update(0.0, is_paused=True)
    assert not controller.is_dirty
    assert not controller.converged
    np.testing.assert_allclose(controller.target_position, controller.current_pose().position)
    assert controller.state.damping == controller.config.lambda_initial


def test_stall_without_snap_keeps_target(make_controller):
    controller = make_controller(
        stall_max_iterations=1, stall_min_improvement=1.0, snap_target_on_stall=False
    )
    controller.set_target_position_delta(np.array([0.02, 0.0, 0.0]))
    target = controller.target_position
    controller.update(0.0, is_paused=True)
    assert not controller.is_dirty
    np.testing.assert_array_equal(controller.target_position, target)
    assert controller.state.stall_count == 0


def test_step_policy_order(make_controller):
    assert make_controller().strategy_names == [
        "near_limit_transpose",
        "levenberg_marquardt",
        "transpose_fallback",
    ]
    assert make_controller(use_smart_selection=False).strategy_names == [
        "levenberg_marquardt",
        "transpose_fallback",
    ]


def test_target_lead_is_clamped(make_controller):
    controller = make_controller(max_target_lead=0.03)
    start = controller.current_pose().position
    for _ in range(5):
        controller.set_target_position_delta(np.array([0.0, 0.0, 0.02]))
    lead = np.linalg.norm(controller.target_position - start)
    assert lead == pytest.approx(0.05)


def test_rotation_intent_clears_lock(make_controller):
    controller = make_controller()
    controller.set_target_position_delta(np.array([0.01, 0.0, 0.0]))
    assert controller.target.lock_active
    controller.set_target_orientation_delta(np.array([0.0, 0.0, 0.1]))
    assert not controller.target.lock_active
    assert not controller.target.hold_orientation
    pose = controller.current_pose()
    np.testing.assert_allclose(
        orientation_delta(pose.rotation, controller.target_rotation),
        pose.rotation.apply(np.array([0.0, 0.0, 0.1])),
        atol=1e-9,
    )


def test_invalid_intents_raise(make_controller):
    controller = make_controller()
    with pytest.raises(InvalidTarget):
        controller.set_target_position_delta(np.zeros(2))
    with pytest.raises(InvalidTarget):
        controller.set_target_orientation_delta(np.array([0.0, np.nan, 0.0]))
    assert not controller.is_dirty


def test_reset_to_current_pose(make_controller, arm):
    _, data = arm
    controller = make_controller()
    controller.set_target_position_delta(np.array([0.01, 0.0, 0.0]))
    controller.state.damping = 5.0
    controller.state.stall_count = 2
    data.qpos[0] = 0.4
    controller.reset_to_current_pose(sync_ctrl=True)

    assert not controller.is_dirty
    assert not controller.target.lock_active
    assert controller.state.damping == controller.config.lambda_initial
    assert controller.state.stall_count == 0
    assert data.ctrl[0] == pytest.approx(0.4)
    np.testing.assert_allclose(controller.target_position, controller.current_pose().position)


def test_update_never_raises(make_controller, monkeypatch, caplog):
    controller = make_controller()

    def explode(preview):
        raise RuntimeError("boom")

    monkeypatch.setattr(controller, "_iterate", explode)
    controller.set_target_position_delta(np.array([0.01, 0.0, 0.0]))
    with caplog.at_level(logging.ERROR):
        controller.update(0.0, is_paused=True)
    assert controller.disabled
    assert "boom" in caplog.text

    monkeypatch.undo()
    controller.update(0.1, is_paused=True)
    assert controller.is_dirty


def test_reload_model_rebuilds_tables(make_controller, monkeypatch):
    controller = make_controller()
    monkeypatch.setattr(controller, "_iterate", lambda preview: 1 / 0)
    controller.set_target_position_delta(np.array([0.01, 0.0, 0.0]))
    controller.update(0.0, is_paused=True)
    assert controller.disabled
    monkeypatch.undo()

    model, data = load_model(arm_xml(position_actuators("arm/{joint}")))
    controller.reload_model(model, data)
    assert not controller.disabled
    assert not controller.is_dirty
    assert controller.actuator_bindings[0].actuator_name == "arm/joint1"
    np.testing.assert_allclose(controller.target_position, controller.current_pose().position)


def test_failed_reload_keeps_previous_model(make_controller, arm):
    _, data = arm
    controller = make_controller()
    bindings = controller.actuator_bindings
    configuration = controller.configuration

    model, new_data = load_model(arm_xml(position_actuators(joints=ARM_JOINTS[:5])))
    with pytest.raises(MissingActuator):
        controller.reload_model(model, new_data)

    assert controller.configuration is configuration
    assert controller.actuator_bindings == bindings
    controller.set_target_position_delta(np.array([0.01, 0.0, 0.0]))
    ctrl = data.ctrl.copy()
    controller.update(0.0, is_paused=True)
    assert not controller.disabled
    assert not np.array_equal(data.ctrl, ctrl)
    np.testing.assert_array_equal(new_data.ctrl, np.zeros(5))


def test_proxy_mode_writes_mocap_target():
    model, data = load_model(MOCAP_XML, qpos=None)
    controller = IKController(model, data, IKConfig(end_effector_body="mocap_hand"))
    assert controller.uses_proxy

    controller.set_target_position_delta(np.array([0.01, 0.0, 0.0]))
    controller.set_target_orientation_delta(np.array([0.0, 0.0, 0.2]))
    controller.update(0.0)

    assert not controller.is_dirty
    np.testing.assert_allclose(data.mocap_pos[0], controller.target_position)
    np.testing.assert_allclose(data.mocap_quat[0], controller.target_rotation.wxyz)


def test_joint_mode_without_dofs_warns_at_most_once_per_second(caplog):
    model, data = load_model(MOCAP_XML, qpos=None)
    controller = IKController(
        model, data, IKConfig(end_effector_body="mocap_hand", mode=ControlMode.JOINT)
    )
    assert not controller.uses_proxy
    with caplog.at_level(logging.WARNING):
        for t in (0.0, 0.3, 0.6, 0.9, 1.2):
            controller.update(t)
    assert caplog.text.count("No controlled DOFs") == 2
