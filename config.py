from __future__ import annotations

import os
import shlex
from pathlib import Path
from typing import Dict, Optional, Union

PROJECT_DIR = Path(__file__).resolve().parent
DOTENV_PATH = PROJECT_DIR / ".env"


def _parse_env_file(path: Path) -> Dict[str, str]:
    values: Dict[str, str] = {}
    if not path.exists():
        return values

    for raw in path.read_text(encoding="utf-8").splitlines():
        entry = raw.strip()
        if entry.startswith("export "):
            entry = entry[len("export ") :].lstrip()
        if not entry or entry.startswith("#") or "=" not in entry:
            continue

        name, _, raw_value = entry.partition("=")
        tokens = shlex.shlex(raw_value.strip(), posix=True)
        tokens.whitespace_split = True
        tokens.commenters = "#"
        values[name.strip()] = " ".join(tokens).strip().strip("\"'")
    return values


def _clamp(value: float, low: Optional[float], high: Optional[float]) -> float:
    if low is not None:
        value = max(low, value)
    if high is not None:
        value = min(high, value)
    return value


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _float_env(name: str, default: float, low: Optional[float] = None, high: Optional[float] = None) -> float:
    try:
        value = float(os.getenv(name, default))
    except ValueError:
        value = default
    return _clamp(value, low, high)


def _int_env(name: str, default: int, low: Optional[int] = None, high: Optional[int] = None) -> int:
    try:
        value = int(os.getenv(name, default))
    except ValueError:
        value = default
    return int(_clamp(value, low, high))


def _camera_source() -> Union[int, str]:
    """Device index when numeric, otherwise a file path or stream URL."""
    raw = os.getenv("CAMERA_SOURCE", "0").strip()
    return int(raw) if raw.lstrip("-").isdigit() else raw


for _name, _value in _parse_env_file(DOTENV_PATH).items():
    if _name:
        os.environ.setdefault(_name, _value)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper()

# Camera and pose model
CAMERA_SOURCE = _camera_source()
CAMERA_WIDTH = _int_env("CAMERA_WIDTH", 640, low=1)
CAMERA_HEIGHT = _int_env("CAMERA_HEIGHT", 480, low=1)
POSE_MODEL_PATH = os.getenv("POSE_MODEL_PATH", str(PROJECT_DIR / "models" / "pose_landmarker_full.task"))
POSE_MIN_DETECTION_CONFIDENCE = _float_env("POSE_MIN_DETECTION_CONFIDENCE", 0.5, low=0.0, high=1.0)

# Capture session
SHOW_CAPTURE_PREVIEW = _bool_env("SHOW_CAPTURE_PREVIEW", True)
PREVIEW_WIDTH = _int_env("PREVIEW_WIDTH", 960, low=1)
PREVIEW_HEIGHT = _int_env("PREVIEW_HEIGHT", 720, low=1)
DEVICE_PIXEL_RATIO = _float_env("DEVICE_PIXEL_RATIO", 1.0, low=0.5, high=4.0)
CAPTURE_HOLD_MS = _float_env("CAPTURE_HOLD_MS", 3000.0, low=100.0)
KNOWN_HEIGHT_CM = _float_env("KNOWN_HEIGHT_CM", 175.0, low=50.0, high=272.0)

# Metrics hand-off
METRICS_ENDPOINT = os.getenv("METRICS_ENDPOINT", "http://127.0.0.1:8000/api/receive-metrics")
METRICS_TIMEOUT_SEC = _float_env("METRICS_TIMEOUT_SEC", 10.0, low=0.5)
METRICS_EXPORT_DIR = os.getenv("METRICS_EXPORT_DIR", str(PROJECT_DIR / "captures"))

# Backend storage
USER_DATA_DIR = os.getenv("USER_DATA_DIR", str(PROJECT_DIR / "user-data"))
RESULTS_PATH = os.getenv("RESULTS_PATH", str(PROJECT_DIR / "user-data" / "results.txt"))
API_HOST = os.getenv("API_HOST", "127.0.0.1")
API_PORT = _int_env("API_PORT", 8000, low=1, high=65535)

# Assistant
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "").strip()
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
GEMINI_BASE_URL = os.getenv("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta/models/")
GEMINI_TEMPERATURE = _float_env("GEMINI_TEMPERATURE", 0.7, low=0.0, high=2.0)
GEMINI_MAX_TOKENS = _int_env("GEMINI_MAX_TOKENS", 2000, low=16)
GEMINI_TIMEOUT_SEC = _float_env("GEMINI_TIMEOUT_SEC", 30.0, low=1.0)
CHAT_MAX_MESSAGES = _int_env("CHAT_MAX_MESSAGES", 50, low=2)

CONTEXT_DB_ENABLED = _bool_env("CONTEXT_DB_ENABLED", True)
MONGODB_URI = os.getenv("MONGODB_URI", "mongodb://localhost:27017/fitai")
MONGODB_DATABASE = os.getenv("MONGODB_DATABASE", "fitai")
