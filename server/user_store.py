from __future__ import annotations

import json
import logging
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Union

logger = logging.getLogger(__name__)

USER_DATA_FILENAME = "user-data.json"


class UserDataNotFound(LookupError):
    """No biometrics form has been saved yet."""


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class UserDataStore:
    """Single-user JSON record on disk. Each save overwrites the previous one."""

    def __init__(self, data_dir: Union[str, Path]) -> None:
        self.data_dir = Path(data_dir)
        self.path = self.data_dir / USER_DATA_FILENAME
        self._lock = threading.Lock()

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> Dict[str, Any]:
        with self._lock:
            return self._read()

    def save_form(self, form_data: Dict[str, Any]) -> Dict[str, Any]:
        record = dict(form_data)
        record["timestamp"] = _now_iso()
        record["id"] = f"form-{int(time.time() * 1000)}"
        with self._lock:
            self._write(record)
        logger.info("Saved user form %s", record["id"])
        return record

    def attach_camera_results(self, camera_results: Dict[str, Any]) -> Dict[str, Any]:
        """Merge camera results into the stored record. Raises UserDataNotFound."""
        with self._lock:
            record = self._read()
            record["camera_results"] = {**camera_results, "analysis_timestamp": _now_iso()}
            self._write(record)
        return record

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            raise UserDataNotFound("No user data found. Please fill out the form first.")
        return json.loads(self.path.read_text(encoding="utf-8"))

    def _write(self, record: Dict[str, Any]) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(record, indent=2), encoding="utf-8")


def write_results(path: Union[str, Path], content: str, append: bool = False) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    existing: Optional[str] = None
    if append and path.exists():
        existing = path.read_text(encoding="utf-8")
    path.write_text((existing or "") + content, encoding="utf-8")
    return path
