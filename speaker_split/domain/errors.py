"""Error taxonomy for the speaker separation pipeline.

Fatal stage failures are raised. Per-speaker rendering failures are carried
as RenderError values inside RenderResult and never abort a run.
"""

import os
import re
from typing import Optional

# Absolute POSIX or Windows paths inside an error message.
_PATH_PATTERN = re.compile(r"(?:[A-Za-z]:)?[\\/](?:[^\s'\"\\/:]+[\\/])+[^\s'\"\\/:]*")


def redact_paths(message: str) -> str:
    """Reduce absolute paths in a message to their basenames."""
    return _PATH_PATTERN.sub(lambda m: os.path.basename(m.group(0).rstrip("\\/")) or "<path>", message)


class PipelineError(Exception):
    """Base class for every error the pipeline reports to its caller."""

    @property
    def public_message(self) -> str:
        return redact_paths(str(self))


class InvalidInputError(PipelineError):
    """The source media is missing or unreadable."""


class ConfigurationError(PipelineError):
    """Missing transcoding binary or missing API credential."""


class ExtractionError(PipelineError):
    """The transcoder failed to normalize the source media."""


class UnsupportedFormatError(ExtractionError):
    """The source media could not be decoded."""


class UpstreamError(PipelineError):
    """The diarization service failed or returned an unusable structure."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class NoSpeakersError(PipelineError):
    """Diarization succeeded but produced no words to attribute."""


class RenderError(PipelineError):
    """Rendering failed for a single speaker."""

    def __init__(self, speaker_id: str, message: str):
        super().__init__(f"{speaker_id}: {message}")
        self.speaker_id = speaker_id


class StageTimeoutError(PipelineError, TimeoutError):
    """A subprocess or HTTP call ran past the run's deadline."""


class PipelineCancelledError(PipelineError):
    """The caller cancelled the run."""


class CleanupWarning(UserWarning):
    """Best-effort cleanup failed. Logged, never raised."""
