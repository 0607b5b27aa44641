"""Keyboard teleoperation of an arm in the MuJoCo passive viewer.

Usage:
    python scripts/teleop_arm.py path/to/scene.xml [--ready-pose] [--paused]

Keys (in the viewer window):
    Arrows: X/Y translation | E/D: up/down
    Q/W: roll | A/S: pitch | Z/X: yaw
    Shift: fast | Alt: slow
    R: reset target to the current pose | P: pause/resume physics
"""

import argparse
import logging
import threading
import time

import mujoco
import mujoco.viewer

from arm_teleop_ik import Configuration, IKController, KeyboardTeleop, build_ik_config
from arm_teleop_ik.robots import apply_ready_pose, match_robot_preset

KEY_NAMES = {
    262: "right",
    263: "left",
    264: "down",
    265: "up",
    340: "shift",
    344: "shift",
    342: "alt",
    346: "alt",
}
RESET_KEY = ord("R")
PAUSE_KEY = ord("P")


class TeleopApp:
    def __init__(self, model_path: str, ready_pose: bool = False, paused: bool = False):
        self.configuration = Configuration.from_xml_path(model_path)
        self.model = self.configuration.model
        self.data = self.configuration.data

        if ready_pose:
            preset = match_robot_preset(self.configuration.joint_names())
            count = apply_ready_pose(self.configuration, preset)
            logging.info(f"Applied '{preset.key}' ready pose to {count} joints")

        config = build_ik_config(self.configuration)
        self.controller = IKController(self.model, self.data, config)
        self.teleop = KeyboardTeleop()
        self.paused = paused
        self.running = True
        self.input_lock = threading.Lock()
        self.last_print_time = 0.0

    def key_callback(self, keycode: int) -> None:
        """Called from the viewer thread on every key press."""
        with self.input_lock:
            if keycode == RESET_KEY:
                self.controller.reset_to_current_pose(sync_ctrl=True)
                self.teleop.clear()
                return
            if keycode == PAUSE_KEY:
                self.paused = not self.paused
                logging.info("Paused" if self.paused else "Running")
                return
            name = KEY_NAMES.get(keycode)
            if name is None and 32 <= keycode < 127:
                name = chr(keycode).lower()
            if name is not None:
                self.teleop.tap(name, time.monotonic())

    def control_step(self) -> None:
        with self.input_lock:
            self.teleop.update(time.monotonic(), self.controller)
            paused = self.paused
        self.controller.update(self.data.time, is_paused=paused)
        if not paused:
            mujoco.mj_step(self.model, self.data)
        else:
            mujoco.mj_forward(self.model, self.data)

        if time.time() - self.last_print_time > 0.5:
            self.current_state()
            self.last_print_time = time.time()

    def current_state(self) -> None:
        pose = self.controller.current_pose()
        target = self.controller.target_position
        error = self.controller.last_error
        logging.info(
            f"Target: [{target[0]:.4f}, {target[1]:.4f}, {target[2]:.4f}] | "
            f"Actual: [{pose.position[0]:.4f}, {pose.position[1]:.4f}, {pose.position[2]:.4f}] | "
            f"Error: {error if error is None else round(error, 5)}"
        )

    def run(self) -> None:
        with mujoco.viewer.launch_passive(
            self.model, self.data, key_callback=self.key_callback
        ) as viewer:
            while self.running and viewer.is_running():
                step_start = time.time()
                self.control_step()
                viewer.sync()

                elapsed = time.time() - step_start
                if elapsed < self.model.opt.timestep:
                    time.sleep(self.model.opt.timestep - elapsed)


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("model", help="MJCF scene containing the arm")
    parser.add_argument("--ready-pose", action="store_true", help="start from the robot's ready pose")
    parser.add_argument("--paused", action="store_true", help="start with physics paused")
    parser.add_argument("--verbose", action="store_true", help="log solver diagnostics")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
    )
    app = TeleopApp(args.model, ready_pose=args.ready_pose, paused=args.paused)
    app.run()


if __name__ == "__main__":
    main()
