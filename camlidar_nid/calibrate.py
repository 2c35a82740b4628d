#!/usr/bin/env python3
"""
Camera/LiDAR Extrinsic Calibration - Normalized Information Distance
=====================================================================

Estimates the LiDAR-to-camera transform (6-DOF) by aligning image intensity
with LiDAR reflectance.

METHOD: NID MINIMIZATION ON SE(3)
- Project every LiDAR point into the image through the candidate pose
- Build the joint intensity/reflectance histogram of the projected points
- Residual per frame: NID = 2 - (H_gray + H_ref) / H_joint
- Refine the pose with tangent-space steps retracted onto SE(3)

COORDINATE SYSTEMS:
- LiDAR Frame (L): sensor native axes
- Camera Frame (C): X=Right, Y=Down, Z=Forward (optical axis)
- Result T_CL maps p_L to p_C = R_CL @ p_L + t_CL

Usage:
    camlidar-nid-calibrate session.yaml -o extrinsics.json
    camlidar-nid-calibrate --demo
"""

import argparse
import sys
from typing import Optional

import yaml

from camlidar_nid.config import CalibrationSettings, get_config
from camlidar_nid.config.session_loader import load_session
from camlidar_nid.core.exceptions import CalibrationException, ConfigurationError
from camlidar_nid.core.logging_config import get_logger, setup_logging
from camlidar_nid.diagnostics import OverlayDiagnosticSink
from camlidar_nid.optimizer import OptimizerState
from camlidar_nid.session import CalibrationResult, CalibrationSession
from camlidar_nid.synthetic import SyntheticScene, perturb

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG_ERROR = 2


def print_result(result: CalibrationResult) -> None:
    data = result.to_dict()
    transform = data["lidar_to_camera_transform"]
    q = data["quality_metrics"]

    print("\n" + "=" * 70)
    print("CALIBRATION RESULT")
    print("=" * 70)
    print(f"\n  Optimizer state: {q['state']} ({q['message']})")
    print(f"  Iterations: {q['iterations']}, cost evaluations: {q['cost_evaluations']}")
    print(f"  Cost: {q['initial_cost']:.6f} -> {q['final_cost']:.6f}")
    if q["mean_nid"] is not None:
        print(f"  Mean NID: {q['mean_nid']:.4f}")

    t = transform["translation_vector"]
    yaw, pitch, roll = transform["euler_angles_zyx_deg"]
    qx, qy, qz, qw = transform["quaternion_xyzw"]
    print("\n  LIDAR-TO-CAMERA TRANSFORM (T_CL):")
    print(f"    Translation:  [{t[0]:+.4f}, {t[1]:+.4f}, {t[2]:+.4f}]")
    print(f"    Quaternion:   [{qx:+.6f}, {qy:+.6f}, {qz:+.6f}, {qw:+.6f}] (x, y, z, w)")
    print(f"    Euler ZYX:    yaw={yaw:+.3f}°, pitch={pitch:+.3f}°, roll={roll:+.3f}°")
    print(f"    Change from initial: {q['rotation_change_deg']:.3f}°, "
          f"{q['translation_change']:.4f} units")
    print("\n  4x4 matrix:")
    for row in transform["transform_matrix_4x4"]:
        print("    " + "  ".join(f"{v:+.6f}" for v in row))


def exit_code_for(result: CalibrationResult) -> int:
    return EXIT_FAILED if result.state == OptimizerState.FAILED else EXIT_OK


def run_demo(num_frames: int = 3, rotation_offset_deg: float = 2.0,
             translation_offset: float = 0.1, output_path: Optional[str] = None,
             diagnostics_dir: Optional[str] = None,
             settings: Optional[CalibrationSettings] = None) -> CalibrationResult:
    """Calibrate synthetic frames from a perturbed initial guess and report the error."""
    print("\n" + "=" * 70)
    print("EXTRINSIC CALIBRATION DEMO - Camera/LiDAR NID")
    print("=" * 70)

    scene = SyntheticScene()
    frames = scene.generate_frames(num_frames)
    truth = scene.ground_truth
    initial = perturb(truth, rotation_offset_deg, translation_offset, seed=42)

    print(f"\n  Synthetic frames: {num_frames} x {frames[0].num_points} points")
    print(f"  Initial guess offset: {truth.rotation_distance_deg(initial):.2f}°, "
          f"{truth.translation_distance(initial):.3f} units")

    sink = OverlayDiagnosticSink(diagnostics_dir) if diagnostics_dir else None
    session = CalibrationSession(scene.camera, frames, initial, settings, diagnostics=sink)
    result = session.calibrate()
    print_result(result)

    print("\n  COMPARISON WITH GROUND TRUTH:")
    print(f"    Rotation error:    {truth.rotation_distance_deg(result.pose):.3f}° "
          f"(initial {truth.rotation_distance_deg(initial):.3f}°)")
    print(f"    Translation error: {truth.translation_distance(result.pose):.4f} "
          f"(initial {truth.translation_distance(initial):.4f})")

    if output_path:
        result.save(output_path)
        print(f"\n  Results saved to: {output_path}")
    return result


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Camera/LiDAR extrinsic calibration by Normalized Information Distance")
    parser.add_argument("session", nargs="?", help="Path to the session configuration (YAML)")
    parser.add_argument("--demo", action="store_true", help="Run demo with synthetic data")
    parser.add_argument("--output", "-o", help="Write the result to this JSON/YAML file")
    parser.add_argument("--config", "-c", help="YAML file overriding default settings")
    parser.add_argument("--mode", choices=["powell", "least_squares"],
                        help="Optimizer solver (least_squares also selects soft binning)")
    parser.add_argument("--max-iterations", type=int, help="Optimizer iteration budget")
    parser.add_argument("--diagnostics", "-d", metavar="DIR",
                        help="Write projection overlays for every cost evaluation to DIR")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING, ERROR")
    parser.add_argument("--num", "-n", type=int, default=3, help="Number of demo frames")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    config = get_config()
    try:
        if args.config:
            config.load_file(args.config)
    except (OSError, ValueError, yaml.YAMLError) as e:
        print(f"Could not read configuration {args.config}: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    # Applied last, above session settings and the environment
    overrides = {}
    if args.mode is not None:
        overrides.setdefault("optimizer", {})["mode"] = args.mode
        if args.mode == "least_squares":
            overrides.setdefault("histogram", {})["binning"] = "soft"
    if args.max_iterations is not None:
        overrides.setdefault("optimizer", {})["max_iterations"] = args.max_iterations

    setup_logging(level=args.log_level)

    if not args.demo and not args.session:
        print("Camera/LiDAR Extrinsic Calibration - NID")
        print("\nUsage: camlidar-nid-calibrate SESSION.yaml [-o OUTPUT] | --demo [-n NUM]")
        return EXIT_CONFIG_ERROR

    try:
        if args.demo:
            result = run_demo(args.num, output_path=args.output,
                              diagnostics_dir=args.diagnostics,
                              settings=CalibrationSettings.from_config(config, overrides))
            return exit_code_for(result)

        spec = load_session(args.session, overrides=overrides)
        sink = OverlayDiagnosticSink(args.diagnostics) if args.diagnostics else None
        session = CalibrationSession(spec.camera, spec.frames, spec.initial_pose,
                                     spec.settings, diagnostics=sink)
        result = session.calibrate()
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        print(e.get_user_message(), file=sys.stderr)
        return EXIT_CONFIG_ERROR
    except CalibrationException as e:
        logger.error(f"Calibration failed: {e}")
        print(e.get_user_message(), file=sys.stderr)
        return EXIT_FAILED

    print_result(result)
    if args.output:
        result.save(args.output)
    return exit_code_for(result)


if __name__ == "__main__":
    sys.exit(main())
