"""ffmpeg binary lookup and deadline-aware subprocess execution."""

import os
import shutil
import logging
import subprocess
from dataclasses import dataclass
from typing import Optional

from speaker_split.domain.errors import ConfigurationError, PipelineCancelledError, StageTimeoutError
from speaker_split.domain.models import JobContext

logger = logging.getLogger(__name__)

KNOWN_LOCATIONS = (
    "/opt/homebrew/bin/ffmpeg",
    "/usr/local/bin/ffmpeg",
    "/usr/bin/ffmpeg",
)

# How often a running child is checked for cancellation (seconds).
POLL_INTERVAL = 0.2


def resolve_ffmpeg(explicit_path: Optional[str] = None) -> str:
    """Locate the ffmpeg binary: explicit/FFMPEG_PATH, then PATH, then known locations."""
    candidate = explicit_path or os.environ.get("FFMPEG_PATH")
    if candidate and os.path.isfile(candidate):
        return candidate

    found = shutil.which("ffmpeg")
    if found:
        return found

    for path in KNOWN_LOCATIONS:
        if os.path.isfile(path):
            return path

    raise ConfigurationError(
        "ffmpeg not found. Install ffmpeg (e.g. 'apt-get install ffmpeg' or "
        "'brew install ffmpeg') or set FFMPEG_PATH to the ffmpeg binary."
    )


@dataclass
class ProcessResult:
    returncode: int
    stdout: str
    stderr: str


def run_ffmpeg(cmd: list[str], ctx: JobContext, stage: str) -> ProcessResult:
    """Run an ffmpeg command, killing it on deadline or cancellation.

    Raises StageTimeoutError / PipelineCancelledError after the child has
    been killed and reaped. A non-zero exit is returned, not raised.
    """
    ctx.check(stage)
    logger.debug(f"[{ctx.job_id}] {stage}: {' '.join(cmd)}")
    proc = subprocess.Popen(
        cmd,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
    )
    try:
        while True:
            remaining = ctx.remaining()
            wait = POLL_INTERVAL if remaining is None else min(POLL_INTERVAL, remaining)
            try:
                stdout, stderr = proc.communicate(timeout=wait)
                return ProcessResult(proc.returncode, stdout or "", stderr or "")
            except subprocess.TimeoutExpired:
                if ctx.cancelled:
                    raise PipelineCancelledError(f"{stage} cancelled")
                if remaining is not None and ctx.remaining() <= 0:
                    raise StageTimeoutError(f"{stage} exceeded the pipeline deadline")
    except BaseException:
        if proc.poll() is None:
            proc.kill()
            proc.communicate()
            logger.warning(f"[{ctx.job_id}] {stage}: killed ffmpeg (pid {proc.pid})")
        raise


def last_stderr_line(stderr: str) -> str:
    """Last non-blank line of ffmpeg stderr, which carries the actual error."""
    lines = [line for line in stderr.strip().splitlines() if line.strip()]
    return lines[-1] if lines else "no output"
