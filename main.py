from __future__ import annotations

import argparse
import asyncio
import logging
from typing import Optional, Sequence

import config
from capture.camera import CameraSource
from capture.export import MetricsExporter
from capture.geometry import RenderTarget
from capture.metrics import CaptureMetrics
from capture.orchestrator import CaptureOrchestrator, SessionStatus
from capture.overlay import OverlayRenderer, PreviewWindow
from capture.pose_estimator import MediaPipePoseEstimator, PoseInferenceUnavailable


def _print_capture(metrics: CaptureMetrics) -> None:
    estimates = metrics.muscle_estimates
    if estimates is None:
        print(f"[Capture] {metrics.method.value} at {metrics.timestamp}")
        return
    print(
        f"[Capture] {metrics.method.value} | shoulders={estimates.shoulders} biceps={estimates.biceps} "
        f"triceps={estimates.triceps} chest={estimates.chest} back={estimates.back} legs={estimates.legs}"
    )


async def run_capture(args: argparse.Namespace) -> int:
    try:
        estimator = MediaPipePoseEstimator(config.POSE_MODEL_PATH, config.POSE_MIN_DETECTION_CONFIDENCE)
    except PoseInferenceUnavailable as error:
        print(f"[Capture] {error}")
        return 1

    exporter = MetricsExporter(
        None if args.no_post else config.METRICS_ENDPOINT,
        export_dir=config.METRICS_EXPORT_DIR,
        timeout_sec=config.METRICS_TIMEOUT_SEC,
    )
    preview = PreviewWindow() if config.SHOW_CAPTURE_PREVIEW and not args.no_window else None
    session: Optional[CaptureOrchestrator] = None

    def on_capture(metrics: CaptureMetrics) -> None:
        _print_capture(metrics)
        if args.repeat:
            session.rearm()
        else:
            session.stop()

    session = CaptureOrchestrator(
        estimator,
        RenderTarget(config.PREVIEW_WIDTH, config.PREVIEW_HEIGHT, config.DEVICE_PIXEL_RATIO),
        exporter=exporter,
        renderer=OverlayRenderer() if preview is not None else None,
        hold_ms=config.CAPTURE_HOLD_MS,
        known_height_cm=config.KNOWN_HEIGHT_CM,
        on_capture=on_capture,
    )

    print(f"[Capture] Camera {config.CAMERA_SOURCE}, hold still for {config.CAPTURE_HOLD_MS / 1000:.0f}s to capture")
    try:
        await session.run(CameraSource(config.CAMERA_SOURCE, config.CAMERA_WIDTH, config.CAMERA_HEIGHT), preview)
        await exporter.drain()
    finally:
        estimator.close()
        if preview is not None:
            preview.close()

    if session.status == SessionStatus.ERROR:
        print(f"[Capture] {session.prompt}")
        return 1
    return 0


def run_server(args: argparse.Namespace) -> int:
    import uvicorn

    print(f"[Server] http://{args.host}:{args.port}")
    uvicorn.run("server.api_server:app", host=args.host, port=args.port, log_level=config.LOG_LEVEL.lower())
    return 0


def run_chat(args: argparse.Namespace) -> int:
    from server.api_server import default_assistant

    assistant = default_assistant()
    if not assistant.client.configured:
        print("[Chat] GEMINI_API_KEY is not set")
        return 1

    print("[Chat] Ask FitAI anything about fitness. Empty line to quit.")
    while True:
        try:
            message = input("you> ").strip()
        except (EOFError, KeyboardInterrupt):
            break
        if not message:
            break
        print(f"fitai> {assistant.chat(message)}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="FitAI body scan, backend and assistant")
    sub = parser.add_subparsers(dest="command", required=True)

    capture = sub.add_parser("capture", help="Run a camera capture session")
    capture.add_argument("--no-window", action="store_true")
    capture.add_argument("--no-post", action="store_true", help="Only write metrics locally")
    capture.add_argument("--repeat", action="store_true", help="Re-arm after each capture")

    serve = sub.add_parser("serve", help="Run the HTTP/WebSocket backend")
    serve.add_argument("--host", default=config.API_HOST)
    serve.add_argument("--port", type=int, default=config.API_PORT)

    sub.add_parser("chat", help="Chat with the fitness assistant in the terminal")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "capture":
        try:
            return asyncio.run(run_capture(args))
        except KeyboardInterrupt:
            return 0
    if args.command == "serve":
        return run_server(args)
    return run_chat(args)


if __name__ == "__main__":
    raise SystemExit(main())
