"""
FastAPI backend for FitAI.

HTTP endpoints persist the biometrics form, receive capture metrics, build
the fitness analysis and answer chat messages. The /ws/capture WebSocket
runs a capture session on frames streamed by a remote client: JPEG bytes
(binary message) or base64 JPEG (text message). Text messages that are JSON
objects are session commands instead of frames.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

import cv2
import numpy as np
from fastapi import Body, FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ConfigDict

import config
from assistant.chatbot import FitAIAssistant
from assistant.context_store import MongoContextStore
from assistant.gemini_client import GeminiClient
from capture.geometry import RenderTarget
from capture.metrics import CalibrationError, CaptureMetrics
from capture.orchestrator import CaptureOrchestrator
from capture.pose_estimator import (
    MediaPipePoseEstimator,
    PoseEstimator,
    PoseInferenceUnavailable,
)
from server.fitness_analysis import InvalidUserData, build_fitness_analysis
from server.user_store import UserDataNotFound, UserDataStore, write_results

logger = logging.getLogger(__name__)

EstimatorFactory = Callable[[], PoseEstimator]


class BiometricsForm(BaseModel):
    model_config = ConfigDict(extra="allow")

    age: Optional[float] = None
    gender: Optional[str] = None
    height: Optional[float] = None
    weight: Optional[float] = None
    fitness_level: Optional[str] = None
    primary_goal: Optional[str] = None


class CameraResultsUpdate(BaseModel):
    camera_results: Optional[Dict[str, Any]] = None


class WriteResultsRequest(BaseModel):
    content: str = ""
    append: bool = False


class ChatRequest(BaseModel):
    message: str = ""


def decode_frame(data: Union[str, bytes]) -> np.ndarray:
    """Decode a JPEG (raw bytes or base64 text) into a BGR image."""
    if not data:
        raise ValueError("Empty frame data")
    if isinstance(data, str):
        if "," in data and data.startswith("data:"):
            data = data.split(",", 1)[1]
        try:
            data = base64.b64decode(data, validate=True)
        except (binascii.Error, ValueError):
            raise ValueError("Frame text is not valid base64") from None
    arr = np.frombuffer(data, dtype=np.uint8)
    bgr = cv2.imdecode(arr, cv2.IMREAD_COLOR)
    if bgr is None:
        raise ValueError("Failed to decode JPEG frame")
    return bgr


def default_estimator_factory() -> PoseEstimator:
    return MediaPipePoseEstimator(config.POSE_MODEL_PATH, config.POSE_MIN_DETECTION_CONFIDENCE)


def default_assistant() -> FitAIAssistant:
    client = GeminiClient(
        config.GEMINI_API_KEY,
        model=config.GEMINI_MODEL,
        base_url=config.GEMINI_BASE_URL,
        temperature=config.GEMINI_TEMPERATURE,
        max_tokens=config.GEMINI_MAX_TOKENS,
        timeout_sec=config.GEMINI_TIMEOUT_SEC,
    )
    store = None
    if config.CONTEXT_DB_ENABLED and config.MONGODB_URI:
        store = MongoContextStore(config.MONGODB_URI, config.MONGODB_DATABASE)
    return FitAIAssistant(client, store, max_messages=config.CHAT_MAX_MESSAGES)


def create_app(
    user_store: Optional[UserDataStore] = None,
    assistant: Optional[FitAIAssistant] = None,
    estimator_factory: Optional[EstimatorFactory] = None,
    results_path: Optional[Union[str, Path]] = None,
) -> FastAPI:
    app = FastAPI(title="FitAI API")
    app.state.user_store = user_store or UserDataStore(config.USER_DATA_DIR)
    app.state.assistant = assistant
    app.state.estimator_factory = estimator_factory or default_estimator_factory
    app.state.results_path = Path(results_path or config.RESULTS_PATH)

    def get_assistant() -> FitAIAssistant:
        if app.state.assistant is None:
            app.state.assistant = default_assistant()
        return app.state.assistant

    @app.get("/health")
    def health():
        store: UserDataStore = app.state.user_store
        return {
            "status": "ok",
            "user_data": store.exists(),
            "chat_configured": bool(config.GEMINI_API_KEY) if app.state.assistant is None
            else app.state.assistant.client.configured,
        }

    @app.post("/api/save-form-data")
    def save_form_data(form: Optional[BiometricsForm] = Body(default=None)):
        fields = form.model_dump(exclude_none=True) if form is not None else {}
        if not fields:
            raise HTTPException(status_code=400, detail="Form data is required")
        record = app.state.user_store.save_form(fields)
        return {
            "success": True,
            "message": "Form data saved successfully",
            "filename": app.state.user_store.path.name,
            "id": record["id"],
        }

    @app.post("/api/update-form-with-camera")
    def update_form_with_camera(update: CameraResultsUpdate):
        if not update.camera_results:
            raise HTTPException(status_code=400, detail="Camera results are required")
        try:
            app.state.user_store.attach_camera_results(update.camera_results)
        except UserDataNotFound as error:
            raise HTTPException(status_code=404, detail=str(error)) from error
        return {
            "success": True,
            "message": "Camera results added to user data successfully",
            "updated_fields": sorted(update.camera_results.keys()),
        }

    @app.post("/api/receive-metrics")
    def receive_metrics(payload: Optional[Dict[str, Any]] = Body(default=None)):
        payload = payload or {}
        stored = False
        if payload:
            try:
                app.state.user_store.attach_camera_results(payload)
                stored = True
            except UserDataNotFound:
                logger.info("Metrics received before any form was saved; not stored")
        print(f"[Metrics] Received {payload.get('method', 'unknown')} capture (stored={stored})")
        return {"success": True, "stored": stored}

    @app.post("/api/fitness-analysis")
    def fitness_analysis():
        try:
            user_data = app.state.user_store.load()
        except UserDataNotFound as error:
            raise HTTPException(
                status_code=404,
                detail="No user data found. Please complete the form and camera analysis first.",
            ) from error
        try:
            analysis = build_fitness_analysis(user_data)
        except InvalidUserData as error:
            raise HTTPException(status_code=422, detail=str(error)) from error
        return {"success": True, "analysis": {**analysis, "user_data": user_data}}

    @app.post("/api/write-results")
    def write_results_file(request: WriteResultsRequest):
        if not request.content:
            raise HTTPException(status_code=400, detail="Content is required")
        path = write_results(app.state.results_path, request.content, append=request.append)
        message = f"Form data appended to {path.name}" if request.append else f"Results written to {path.name}"
        return {"success": True, "message": message}

    @app.post("/api/chat")
    async def chat(request: ChatRequest):
        if not request.message.strip():
            raise HTTPException(status_code=400, detail="Message is required")
        bot = get_assistant()
        loop = asyncio.get_running_loop()
        reply = await loop.run_in_executor(None, bot.chat, request.message)
        return {"reply": reply}

    @app.websocket("/ws/capture")
    async def ws_capture(websocket: WebSocket):
        width = _int_param(websocket, "width", config.PREVIEW_WIDTH)
        height = _int_param(websocket, "height", config.PREVIEW_HEIGHT)

        await websocket.accept()
        try:
            estimator = app.state.estimator_factory()
        except PoseInferenceUnavailable as error:
            await websocket.send_json({"error": str(error)})
            await websocket.close(code=1011)
            return

        def store_capture(metrics: CaptureMetrics) -> None:
            try:
                app.state.user_store.attach_camera_results(metrics.to_dict())
            except UserDataNotFound:
                logger.info("Capture finished before any form was saved; not stored")

        session = CaptureOrchestrator(
            estimator,
            RenderTarget(width, height),
            known_height_cm=config.KNOWN_HEIGHT_CM,
            hold_ms=config.CAPTURE_HOLD_MS,
            on_capture=store_capture,
        )
        loop = asyncio.get_running_loop()

        try:
            while True:
                msg = await websocket.receive()
                if msg.get("type") == "websocket.disconnect":
                    break

                text = msg.get("text")
                if text and text.lstrip().startswith("{"):
                    await websocket.send_json(_run_command(session, text))
                    continue

                try:
                    frame = decode_frame(msg.get("bytes") or text or "")
                except ValueError as error:
                    await websocket.send_json({"error": str(error)})
                    continue

                try:
                    pose = await loop.run_in_executor(None, estimator.estimate_pose, frame)
                    report = session.process_pose(pose, frame, now_ms=time.monotonic() * 1000.0)
                except PoseInferenceUnavailable as error:
                    await websocket.send_json({"error": str(error)})
                    continue
                except Exception as error:
                    logger.exception("Capture frame failed")
                    await websocket.send_json({"error": f"Frame processing failed: {error}"})
                    continue

                await websocket.send_json(report.to_dict())
        except WebSocketDisconnect:
            pass
        finally:
            session.stop()
            estimator.close()

    return app


def _int_param(websocket: WebSocket, name: str, default: int) -> int:
    try:
        return max(1, int(websocket.query_params.get(name, default)))
    except ValueError:
        return default


def _run_command(session: CaptureOrchestrator, text: str) -> Dict[str, Any]:
    try:
        command = json.loads(text)
    except json.JSONDecodeError:
        return {"error": "Invalid command"}

    action = command.get("action")
    try:
        if action == "rearm":
            session.rearm()
            return {"status": session.status.value, "prompt": session.prompt}
        if action == "calibrate_card":
            calibration = session.calibrate_card()
        elif action == "calibrate_height":
            height = command.get("known_height_cm")
            calibration = session.calibrate_height(float(height) if height is not None else None)
        else:
            return {"error": f"Unknown action: {action}"}
    except (CalibrationError, TypeError, ValueError) as error:
        return {"error": str(error)}

    return {
        "calibration": {
            "method": calibration.method.value,
            "scale_cm_per_pixel": calibration.scale_cm_per_pixel,
            "known_height_cm": calibration.known_height_cm,
            "pixel_height_px": calibration.pixel_height_px,
        },
        "prompt": session.prompt,
    }


app = create_app()
