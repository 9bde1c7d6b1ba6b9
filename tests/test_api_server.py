import base64
import json
import sys
from pathlib import Path

import cv2
import numpy as np
import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from assistant.chatbot import FAILURE_REPLY, FitAIAssistant
from assistant.gemini_client import GeminiError
from capture.pose_estimator import PoseInferenceUnavailable
from server.api_server import create_app, decode_frame
from server.user_store import UserDataStore

from pose_factory import FRAME_H, FRAME_W, standing_pose

FORM = {
    "age": 25,
    "gender": "male",
    "height": 180,
    "weight": 80,
    "fitness_level": "intermediate",
    "primary_goal": "muscle-gain",
    "name": "Sam",
}


class FakeClient:
    configured = True

    def __init__(self):
        self.error = None

    def generate_content(self, prompt, temperature=None, max_tokens=None):
        if self.error is not None:
            raise self.error
        return "Stay consistent."


class FakeEstimator:
    def __init__(self):
        self.closed = False
        self.frames = []

    def estimate_pose(self, frame):
        self.frames.append(frame.shape)
        return standing_pose()

    def close(self):
        self.closed = True


def _jpeg_bytes():
    ok, encoded = cv2.imencode(".jpg", np.full((FRAME_H, FRAME_W, 3), 80, dtype=np.uint8))
    assert ok
    return encoded.tobytes()


@pytest.fixture
def env(tmp_path):
    estimators = []
    client = FakeClient()

    def factory():
        estimators.append(FakeEstimator())
        return estimators[-1]

    app = create_app(
        UserDataStore(tmp_path / "user-data"),
        FitAIAssistant(client),
        factory,
        tmp_path / "results.txt",
    )
    return TestClient(app), app, estimators, client, tmp_path


class TestDecodeFrame:
    def test_bytes_and_data_url(self):
        raw = _jpeg_bytes()
        assert decode_frame(raw).shape == (FRAME_H, FRAME_W, 3)
        text = "data:image/jpeg;base64," + base64.b64encode(raw).decode("ascii")
        assert decode_frame(text).shape == (FRAME_H, FRAME_W, 3)

    @pytest.mark.parametrize("data", ["", "not base64!!", base64.b64encode(b"not a jpeg").decode("ascii")])
    def test_rejects_bad_data(self, data):
        with pytest.raises(ValueError):
            decode_frame(data)


class TestFormEndpoints:
    def test_health(self, env):
        client, *_ = env
        assert client.get("/health").json() == {"status": "ok", "user_data": False, "chat_configured": True}

    def test_save_form(self, env):
        client, app, *_ = env
        response = client.post("/api/save-form-data", json=FORM)
        body = response.json()
        assert response.status_code == 200
        assert body["success"] is True
        assert body["filename"] == "user-data.json"
        assert body["id"].startswith("form-")

        record = app.state.user_store.load()
        assert record["name"] == "Sam"
        assert record["timestamp"].endswith("Z")

    def test_empty_form_rejected(self, env):
        client, *_ = env
        assert client.post("/api/save-form-data", json={}).status_code == 400

    def test_camera_results_need_a_form(self, env):
        client, *_ = env
        payload = {"camera_results": {"muscle_estimates": {"chest": 20}}}
        assert client.post("/api/update-form-with-camera", json={}).status_code == 400
        assert client.post("/api/update-form-with-camera", json=payload).status_code == 404

        client.post("/api/save-form-data", json=FORM)
        response = client.post("/api/update-form-with-camera", json=payload)
        assert response.status_code == 200
        assert response.json()["updated_fields"] == ["muscle_estimates"]

    def test_receive_metrics(self, env):
        client, app, *_ = env
        metrics = {"method": "auto_hold", "muscle_estimates": {"legs": 80}}
        assert client.post("/api/receive-metrics", json=metrics).json() == {"success": True, "stored": False}

        client.post("/api/save-form-data", json=FORM)
        assert client.post("/api/receive-metrics", json=metrics).json() == {"success": True, "stored": True}
        camera = app.state.user_store.load()["camera_results"]
        assert camera["method"] == "auto_hold"
        assert "analysis_timestamp" in camera


class TestAnalysisEndpoint:
    def test_requires_user_data(self, env):
        client, *_ = env
        assert client.post("/api/fitness-analysis").status_code == 404

    def test_analysis_includes_user_data(self, env):
        client, *_ = env
        client.post("/api/save-form-data", json=FORM)
        client.post("/api/update-form-with-camera", json={"camera_results": {"muscle_estimates": {"shoulders": 10}}})
        body = client.post("/api/fitness-analysis").json()
        analysis = body["analysis"]
        assert body["success"] is True
        assert analysis["bmi"]["value"] == 24.7
        assert analysis["nutrition"]["daily_calories"]["target"] == 3098
        assert analysis["areas_to_focus"][-1] == "shoulders"
        assert analysis["user_data"]["name"] == "Sam"

    def test_unusable_measurements(self, env):
        client, *_ = env
        client.post("/api/save-form-data", json={"height": 180, "gender": "male"})
        assert client.post("/api/fitness-analysis").status_code == 422


class TestWriteResults:
    def test_write_then_append(self, env):
        client, _, _, _, tmp_path = env
        first = client.post("/api/write-results", json={"content": "line one\n"}).json()
        second = client.post("/api/write-results", json={"content": "line two\n", "append": True}).json()
        assert first["message"] == "Results written to results.txt"
        assert second["message"] == "Form data appended to results.txt"
        assert (tmp_path / "results.txt").read_text() == "line one\nline two\n"

    def test_overwrite(self, env):
        client, _, _, _, tmp_path = env
        client.post("/api/write-results", json={"content": "old"})
        client.post("/api/write-results", json={"content": "new"})
        assert (tmp_path / "results.txt").read_text() == "new"

    def test_content_required(self, env):
        client, *_ = env
        assert client.post("/api/write-results", json={"content": ""}).status_code == 400


class TestChatEndpoint:
    def test_reply(self, env):
        client, *_ = env
        assert client.post("/api/chat", json={"message": "How many sets?"}).json() == {"reply": "Stay consistent."}

    def test_empty_message(self, env):
        client, *_ = env
        assert client.post("/api/chat", json={"message": "  "}).status_code == 400

    def test_upstream_failure_returns_apology(self, env):
        client, _, _, fake, _ = env
        fake.error = GeminiError("API request failed: 503")
        assert client.post("/api/chat", json={"message": "plan my workout"}).json() == {"reply": FAILURE_REPLY}


class TestCaptureSocket:
    def test_binary_frame_gets_report(self, env):
        client, _, estimators, *_ = env
        with client.websocket_connect("/ws/capture?width=640&height=480") as ws:
            ws.send_bytes(_jpeg_bytes())
            report = ws.receive_json()
        assert report["phase"] == "accumulating"
        assert report["confident"] is True
        assert report["centered"] is True
        assert report["countdown"] == 3
        assert report["metrics"] is None
        assert report["keypoints"][0] == {"name": "nose", "x": 320.0, "y": 100.0, "score": 0.9}
        assert estimators[0].frames == [(FRAME_H, FRAME_W, 3)]
        assert estimators[0].closed

    def test_base64_text_frame(self, env):
        client, *_ = env
        with client.websocket_connect("/ws/capture") as ws:
            ws.send_text(base64.b64encode(_jpeg_bytes()).decode("ascii"))
            assert "prompt" in ws.receive_json()

    def test_invalid_frame_keeps_socket_open(self, env):
        client, *_ = env
        with client.websocket_connect("/ws/capture") as ws:
            ws.send_text("definitely not a frame")
            assert "error" in ws.receive_json()
            ws.send_bytes(_jpeg_bytes())
            assert "phase" in ws.receive_json()

    def test_commands(self, env):
        client, *_ = env
        with client.websocket_connect("/ws/capture?width=1000&height=750") as ws:
            ws.send_text(json.dumps({"action": "calibrate_height", "known_height_cm": 180}))
            assert "error" in ws.receive_json()

            ws.send_text(json.dumps({"action": "calibrate_card"}))
            reply = ws.receive_json()
            assert reply["calibration"]["method"] == "card"
            assert reply["calibration"]["scale_cm_per_pixel"] == pytest.approx(8.56 / 340)

            ws.send_text(json.dumps({"action": "rearm"}))
            assert ws.receive_json()["prompt"] == "Move into the box"

            ws.send_text(json.dumps({"action": "jump"}))
            assert ws.receive_json() == {"error": "Unknown action: jump"}

    def test_estimator_unavailable(self, tmp_path):
        def factory():
            raise PoseInferenceUnavailable("Pose model not found")

        client = TestClient(create_app(UserDataStore(tmp_path), FitAIAssistant(FakeClient()), factory, tmp_path / "r.txt"))
        with client.websocket_connect("/ws/capture") as ws:
            assert ws.receive_json() == {"error": "Pose model not found"}

    def test_estimator_crash_keeps_socket_open(self, tmp_path):
        class CrashOnceEstimator(FakeEstimator):
            def estimate_pose(self, frame):
                if not self.frames:
                    self.frames.append(None)
                    raise RuntimeError("mediapipe graph error")
                return super().estimate_pose(frame)

        estimator = CrashOnceEstimator()
        app = create_app(UserDataStore(tmp_path), FitAIAssistant(FakeClient()), lambda: estimator, tmp_path / "r.txt")
        with TestClient(app).websocket_connect("/ws/capture?width=640&height=480") as ws:
            ws.send_bytes(_jpeg_bytes())
            assert "mediapipe graph error" in ws.receive_json()["error"]
            ws.send_bytes(_jpeg_bytes())
            assert ws.receive_json()["phase"] == "accumulating"
        assert estimator.closed
