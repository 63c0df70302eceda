"""
Zeshto Vision — Launcher
========================
Live webcam mode with readiness overlay, or one-shot still-photo mode.

Usage:
  python start_zeshto.py --source 0
  python start_zeshto.py --source 1 --audit          (second webcam, JSONL audit log)
  python start_zeshto.py --headless                  (analyze on first ready frame, print JSON)
  python start_zeshto.py --image face.jpg            (analyze a photo)

Keys (live mode): 'A' analyze, 'R' retake, 'Q' / ESC quit.
"""

import argparse
import json
import logging
import os
import sys
import threading
import time

import cv2

sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from zeshto_config import load_config
from zeshto_errors import NotReadyError, ZeshtoError
from zeshto_hud import ZeshtoHUD
from zeshto_logger import AuditLogger, ZeshtoJSONEncoder, configure_logging
from zeshto_session import AnalysisSession

_log = logging.getLogger("ZeshtoLauncher")

WINDOW_NAME = "Zeshto Vision | Skin Analysis"


class _NoCamera:
    """Frame source placeholder for still-photo mode."""

    def read_frame(self):
        return None

    def release(self) -> None:
        pass


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Zeshto Vision Launcher")
    parser.add_argument("--source", type=int, default=None, help="Camera ID (0, 1, etc.)")
    parser.add_argument("--image", type=str, default=None, help="Analyze a still photo instead of the camera")
    parser.add_argument("--config", type=str, default=None, help="Path to a config YAML file")
    parser.add_argument("--interval-ms", type=float, default=None, help="Detection interval in milliseconds")
    parser.add_argument("--backend", choices=["mediapipe", "dnn_ssd"], default=None, help="Face detector backend")
    parser.add_argument("--audit", action="store_true", help="Write a JSONL audit trail")
    parser.add_argument("--headless", action="store_true", help="No window; analyze once on the first ready frame")
    parser.add_argument("--include-image", action="store_true", help="Include base64 JPEG in printed JSON")
    return parser


def build_overrides(args: argparse.Namespace) -> dict:
    overrides: dict = {}
    if args.source is not None:
        overrides.setdefault("camera", {})["camera_id"] = args.source
    if args.interval_ms is not None:
        overrides.setdefault("detection", {})["interval_ms"] = args.interval_ms
    if args.backend is not None:
        overrides.setdefault("detection", {})["backend"] = args.backend
    return overrides


def print_payload(payload, include_image: bool) -> None:
    print(json.dumps(payload.to_dict(include_image=include_image), cls=ZeshtoJSONEncoder, indent=2))


def run_image(session: AnalysisSession, args: argparse.Namespace) -> int:
    payload = session.analyze_image(args.image)
    print_payload(payload, args.include_image)
    return 0


def run_headless(session: AnalysisSession, args: argparse.Namespace) -> int:
    ready = threading.Event()
    session.on_ready = lambda decision: ready.set()
    session.start()
    print("[ZESHTO] Waiting for a well-positioned face... (Ctrl+C to abort)")
    while True:
        while not ready.wait(0.5):
            pass
        ready.clear()
        try:
            payload = session.analyze()
        except NotReadyError as e:
            # Readiness dropped after the edge; wait for the next one
            print(f"[ZESHTO] {e} Waiting again...")
            session.reset()
            continue
        print_payload(payload, args.include_image)
        return 0


def run_live(session: AnalysisSession, args: argparse.Namespace) -> int:
    hud = ZeshtoHUD(session.gate.confidence_threshold, session.gate.quality_threshold)
    session.on_ready = lambda decision: print(f"[ZESHTO] {decision.message}")
    session.start()

    cv2.namedWindow(WINDOW_NAME, cv2.WINDOW_AUTOSIZE)
    print("[ZESHTO] Camera active. 'A' analyze | 'R' retake | 'Q'/ESC quit.")

    while True:
        key = cv2.waitKey(1) & 0xFF
        if key in (ord("q"), ord("Q"), 27):
            print("\n[ZESHTO] Exit key pressed — shutting down...")
            break
        if key in (ord("r"), ord("R")):
            session.reset()
            print("[ZESHTO] Ready for a new capture.")
        if key in (ord("a"), ord("A")):
            try:
                print_payload(session.analyze(), args.include_image)
            except ZeshtoError as e:
                print(f"[ZESHTO] Cannot analyze: {e}")

        frame = session.source.read_frame()
        if frame is None:
            time.sleep(0.005)
            continue
        annotated, _ = hud.render(
            frame.pixels, session.latest_result, session.readiness, session.get_status()
        )
        cv2.imshow(WINDOW_NAME, annotated)
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    config = load_config(args.config, build_overrides(args))
    configure_logging(config["logging"]["level"])

    print("=" * 60)
    print("  Zeshto Vision — Starting...")
    print(f"  Mode:     {'image' if args.image else ('headless' if args.headless else 'live')}")
    print(f"  Source:   {args.image or config['camera']['camera_id']}")
    print(f"  Detector: {config['detection']['backend']}")
    print(f"  Interval: {config['detection']['interval_ms']:.0f} ms")
    print("=" * 60)

    session = None
    exit_code = 1
    try:
        audit = AuditLogger(config["logging"]["audit_dir"]) if args.audit else None
        if args.image:
            # No camera needed; the session never acquires one on this path
            session = AnalysisSession(source=_NoCamera(), audit=audit, config=config)
            exit_code = run_image(session, args)
        else:
            session = AnalysisSession(audit=audit, config=config)
            if args.headless:
                exit_code = run_headless(session, args)
            else:
                exit_code = run_live(session, args)
    except KeyboardInterrupt:
        print("\n[ZESHTO] Interrupted by User.")
        exit_code = 130
    except ZeshtoError as e:
        print(f"\n[ZESHTO] {type(e).__name__}: {e}")
    except Exception as e:
        _log.exception("Critical error: %s", e)
    finally:
        print("[ZESHTO] Cleaning up...")
        if session is not None:
            session.dispose()
        if not args.headless and not args.image:
            cv2.destroyAllWindows()
            cv2.waitKey(1)
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
