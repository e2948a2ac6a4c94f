#!/usr/bin/env python3
"""
PPG Vitals – guided fingertip measurement.

Usage
-----
    python main.py [OPTIONS]

Options
-------
    --camera-index INT   OpenCV camera index (default: 0)
    --fps INT            Target frame rate (default: 30)
    --duration FLOAT     Measurement length in seconds (default: 30)
    --window INT         Sliding window size in samples (default: 150)
    --save-result PATH   Write the final result as JSON
    --headless           No display window; start at once and log to stdout
    --log-level LEVEL    Logging level (default: INFO)

Keyboard shortcuts (when a window is open)
------------------------------------------
    SPACE    – start measurement
    s        – stop early
    r        – retake (discard and re-arm)
    q / ESC  – quit
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from pathlib import Path

# Must be set before cv2 is imported so Qt5 uses X11/XWayland instead of
# looking for a Wayland plugin that is not bundled with pip-installed opencv.
import os
os.environ.setdefault("QT_QPA_PLATFORM", "xcb")

import cv2

from ppg_vitals.camera import Camera
from ppg_vitals.config import MeasurementConfig
from ppg_vitals.health import heart_rate_category, validate_measurement
from ppg_vitals.models import MeasurementResult
from ppg_vitals.orchestrator import MeasurementOrchestrator, MeasurementState
from ppg_vitals.visualizer import Visualizer

logger = logging.getLogger("ppg_vitals")

_WINDOW_NAME = "PPG Vitals"


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Heart rate, HRV and rhythm screening from a fingertip on the camera",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--camera-index", type=int, default=0,
                        help="OpenCV VideoCapture index")
    parser.add_argument("--fps", type=int, default=30,
                        help="Target capture frame rate")
    parser.add_argument("--duration", type=float, default=30.0,
                        help="Measurement length in seconds")
    parser.add_argument("--window", type=int, default=150,
                        help="Sliding window size in samples")
    parser.add_argument("--save-result", type=Path, default=None,
                        help="Write the final measurement result as JSON to this path")
    parser.add_argument("--headless", action="store_true",
                        help="No display window; start immediately and log to stdout")
    parser.add_argument("--log-level", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        help="Logging verbosity")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> MeasurementConfig:
    return MeasurementConfig(
        sample_rate=float(args.fps),
        window_size=args.window,
        duration_sec=args.duration,
    )


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------

def report(result: MeasurementResult, save_to: Path | None) -> None:
    if result.success:
        category = heart_rate_category(result.heart_rate)
        print(f"Heart rate : {result.heart_rate} BPM ({category.category})")
        print(f"Confidence : {result.confidence}%   signal quality: {result.signal_quality}%")
        if result.hrv is not None:
            print(f"HRV        : SDNN {result.hrv.sdnn:.1f} ms  RMSSD {result.hrv.rmssd:.1f} ms"
                  f"  pNN50 {result.hrv.pnn50:.1f}%")
        if result.arrhythmia is not None:
            print(f"Rhythm     : {result.arrhythmia.message}")
        if result.spo2 is not None:
            print(f"SpO2 (approx.): {result.spo2}%  confidence: {result.spo2_confidence}%")
        for warning in validate_measurement(result).warnings:
            print(f"  ! {warning}")
    else:
        print(f"Measurement failed: {result.error}")

    if save_to is not None:
        save_to.write_text(json.dumps(result.to_dict(), indent=2))
        logger.info("Result written to %s", save_to)


# ---------------------------------------------------------------------------
# Main loop
# ---------------------------------------------------------------------------

def run(args: argparse.Namespace) -> int:
    config = build_config(args)
    camera = Camera(camera_index=args.camera_index, fps=args.fps)
    orchestrator = MeasurementOrchestrator(camera, config)

    if not orchestrator.acquire():
        error = orchestrator.error
        print(f"Camera unavailable: {error.user_message}", file=sys.stderr)
        return 2 if error.retryable else 1

    vis = Visualizer(
        resolution=camera.resolution or (640, 480),
        radius_fraction=config.sample_radius_fraction,
    )
    if not args.headless:
        cv2.namedWindow(_WINDOW_NAME, cv2.WINDOW_NORMAL)
    else:
        orchestrator.start()

    logger.info("Ready. %s", "Recording..." if args.headless else "Press SPACE to start.")
    last_log = 0.0
    reported = False

    try:
        for frame in camera.frames():
            feedback = orchestrator.process_frame(frame)
            result = orchestrator.result

            if result is not None and not reported:
                report(result, args.save_result)
                reported = True
                if args.headless:
                    break

            if args.headless:
                now = time.monotonic()
                if feedback is not None and now - last_log >= 1.0:
                    last_log = now
                    bpm = feedback.heart_rate_estimate
                    print(f"[{orchestrator.remaining_sec:4.0f}s] "
                          f"{'--' if bpm is None else bpm} BPM  conf={feedback.confidence}%  "
                          f"{feedback.placement.message}")
                continue

            display = cv2.cvtColor(frame, cv2.COLOR_RGBA2BGR)
            waveform = orchestrator.conditioner.apply(orchestrator.red_window.values())
            vis.draw(display, feedback, config.duration_sec, waveform=waveform, result=result)
            cv2.imshow(_WINDOW_NAME, display)

            key = cv2.waitKey(1) & 0xFF
            if key in (ord("q"), 27):
                logger.info("Quit requested by user.")
                break
            if key == ord(" ") and orchestrator.state is MeasurementState.ARMED:
                orchestrator.start()
            elif key == ord("s"):
                orchestrator.stop()
            elif key == ord("r"):
                orchestrator.retake()
                reported = False

    except KeyboardInterrupt:
        logger.info("Interrupted.")
        if orchestrator.state is MeasurementState.SAMPLING and not reported:
            report(orchestrator.stop(), args.save_result)
    finally:
        orchestrator.close()
        if not args.headless:
            cv2.destroyAllWindows()

    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s – %(message)s",
        datefmt="%H:%M:%S",
    )
    return run(args)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    sys.exit(main())
