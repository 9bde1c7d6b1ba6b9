"""
Best-effort hand-off of capture metrics.

Each capture is written to a local JSON file and POSTed to the collaborating
backend. Neither step may block or fail the capture flow: errors are logged
and the caller continues regardless.
"""

from __future__ import annotations

import asyncio
import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Optional, Set, Union

import requests

from capture.metrics import CaptureMetrics

logger = logging.getLogger(__name__)

# Used when no event loop is running in the calling thread.
_executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="metrics-export")


class MetricsExporter:
    def __init__(
        self,
        endpoint: Optional[str],
        export_dir: Optional[Union[str, Path]] = None,
        timeout_sec: float = 10.0,
    ) -> None:
        self.endpoint = endpoint
        self.export_dir = Path(export_dir) if export_dir else None
        self.timeout_sec = timeout_sec
        self._pending: Set[Union[asyncio.Future, Future]] = set()

    def write_local(self, metrics: CaptureMetrics) -> Optional[Path]:
        if self.export_dir is None:
            return None
        try:
            self.export_dir.mkdir(parents=True, exist_ok=True)
            path = self.export_dir / f"fitai_metrics_{int(time.time() * 1000)}.json"
            path.write_text(metrics.to_json(), encoding="utf-8")
        except OSError as error:
            logger.warning("Local metrics export failed: %s", error)
            return None
        logger.info("Metrics written to %s", path)
        return path

    def post(self, metrics: CaptureMetrics) -> bool:
        if not self.endpoint:
            return False
        try:
            response = requests.post(
                self.endpoint,
                json=metrics.to_dict(),
                timeout=self.timeout_sec,
            )
        except requests.RequestException as error:
            logger.warning("Failed to post metrics to %s: %s", self.endpoint, error)
            return False

        if not 200 <= response.status_code < 300:
            logger.warning("Server rejected metrics: HTTP %s", response.status_code)
            return False
        logger.info("Metrics sent to %s", self.endpoint)
        return True

    def export(self, metrics: CaptureMetrics) -> bool:
        self.write_local(metrics)
        return self.post(metrics)

    def dispatch(self, metrics: CaptureMetrics, loop: Optional[asyncio.AbstractEventLoop] = None):
        """Run `export` off the calling thread and return without waiting.

        The returned future is only observed through logging.
        """
        if loop is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                loop = None

        if loop is not None:
            future = loop.run_in_executor(None, self.export, metrics)
        else:
            future = _executor.submit(self.export, metrics)

        self._pending.add(future)
        future.add_done_callback(self._on_done)
        return future

    def _on_done(self, future) -> None:
        self._pending.discard(future)
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error("Metrics export crashed: %s", error, exc_info=error)

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for in-flight exports; used on shutdown and in tests."""
        pending = [asyncio.wrap_future(f) if isinstance(f, Future) else f for f in list(self._pending)]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

