"""Framework-agnostic domain models for the speaker separation pipeline.

Pydantic DTOs live in models.py and are only built at the boundary
(see mappers.py); everything inside the pipeline works on these dataclasses.
"""

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Optional

from speaker_split.domain.errors import PipelineCancelledError, RenderError, StageTimeoutError

SAMPLE_RATE = 16000
BYTES_PER_SAMPLE = 2
SPEAKER_PREFIX = "SPK_"
# Gaps shorter than this between two segments of one speaker are bridged.
DEFAULT_MERGE_GAP = 0.5


@dataclass(frozen=True)
class SourceMedia:
    """An already stored upload. Read-only to the pipeline."""
    path: str
    mime_type: Optional[str] = None


@dataclass(frozen=True)
class NormalizedAudio:
    """Mono, 16-bit PCM, 16 kHz WAV produced once per run."""
    path: str


@dataclass(frozen=True)
class TranscriptWord:
    start: float
    end: float
    speaker: int = 0
    text: Optional[str] = None


@dataclass
class DiarizationTranscript:
    """Parsed diarization response."""
    words: list[TranscriptWord] = field(default_factory=list)
    duration: float = 0.0
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class SpeakerSegment:
    """A continuous interval of speech attributed to one speaker."""
    speaker_id: str
    start: float
    end: float

    @property
    def duration(self) -> float:
        return self.end - self.start


@dataclass(frozen=True)
class CutTask:
    """One segment cut, identified by speaker and merged-segment index."""
    speaker_id: str
    index: int
    start: float
    end: float

    @property
    def duration(self) -> float:
        return self.end - self.start


@dataclass
class SpeakerClip:
    speaker_id: str
    output_path: str
    size_bytes: int
    approx_duration: float
    segment_count: int


@dataclass
class RenderResult:
    """Outcome of rendering one speaker: exactly one of clip/error is set."""
    speaker_id: str
    clip: Optional[SpeakerClip] = None
    error: Optional[RenderError] = None

    @property
    def ok(self) -> bool:
        return self.clip is not None


@dataclass
class PipelineResult:
    speaker_count: int
    speaker_ids: list[str]
    total_duration: float
    clips: list[SpeakerClip] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass
class PipelineOptions:
    output_dir: str
    temp_dir: str
    save_debug_response: bool = False
    cleanup: bool = True
    timeout: Optional[float] = None
    merge_gap: float = DEFAULT_MERGE_GAP


@dataclass
class JobContext:
    """Deadline and cancellation state shared by every blocking call of a run."""
    job_id: str
    deadline: Optional[float] = None
    cancel_event: threading.Event = field(default_factory=threading.Event)

    @classmethod
    def create(cls, job_id: str, timeout: Optional[float] = None,
               cancel_event: Optional[threading.Event] = None) -> "JobContext":
        deadline = time.monotonic() + timeout if timeout else None
        return cls(job_id=job_id, deadline=deadline, cancel_event=cancel_event or threading.Event())

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None when unbounded."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def cancel(self) -> None:
        self.cancel_event.set()

    def check(self, stage: str) -> None:
        """Raise if the run was cancelled or its deadline passed."""
        if self.cancelled:
            raise PipelineCancelledError(f"{stage} cancelled")
        if self.deadline is not None and time.monotonic() >= self.deadline:
            raise StageTimeoutError(f"{stage} exceeded the pipeline deadline")


def speaker_id_for(index: int) -> str:
    return f"{SPEAKER_PREFIX}{index}"


def speaker_sort_key(speaker_id: str) -> tuple[int, str]:
    """Order SPK_2 before SPK_10; unknown ids sort after numbered ones."""
    suffix = speaker_id[len(SPEAKER_PREFIX):] if speaker_id.startswith(SPEAKER_PREFIX) else ""
    try:
        return int(suffix), speaker_id
    except ValueError:
        return 1 << 30, speaker_id


def approx_wav_duration(size_bytes: int) -> float:
    """Duration estimate from byte size; ignores the 44-byte WAV header."""
    return size_bytes / (SAMPLE_RATE * BYTES_PER_SAMPLE)
