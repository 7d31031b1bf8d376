"""LogProgressAdapter — reports pipeline progress via logging, with per-job elapsed time."""

import time
import logging
import threading
from typing import Optional

from speaker_split.ports.progress import TERMINAL_STAGES, ProgressPort

logger = logging.getLogger(__name__)


class LogProgressAdapter(ProgressPort):
    def __init__(self):
        self._started: dict[str, float] = {}
        self._lock = threading.Lock()

    def report(
        self,
        job_id: str,
        stage: str,
        progress: float = 0.0,
        detail: Optional[str] = None,
    ) -> None:
        now = time.monotonic()
        with self._lock:
            started = self._started.setdefault(job_id, now)
            if stage in TERMINAL_STAGES:
                self._started.pop(job_id, None)

        msg = f"[{job_id}] {stage} (+{now - started:.1f}s)"
        if progress > 0:
            msg += f" {progress:.0%}"
        if detail:
            msg += f" — {detail}"
        if stage == "failed":
            logger.warning(msg)
        else:
            logger.info(msg)
