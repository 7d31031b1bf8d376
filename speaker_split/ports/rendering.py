"""ClipRendererPort — abstract interface for per-speaker clip rendering.

Implementations decide what a cut "piece" is (a temp WAV path, an in-memory
PCM buffer, ...). Callers only ever observe SpeakerClip / RenderResult.
"""

import os
import shutil
import logging
from abc import ABC, abstractmethod
from typing import Any, Sequence

from speaker_split.domain.errors import PipelineCancelledError, RenderError, StageTimeoutError
from speaker_split.domain.models import CutTask, JobContext, RenderResult, SpeakerSegment

logger = logging.getLogger(__name__)

DEFAULT_MIN_SEGMENT = 0.05


def publish_clip(source_path: str, final_path: str) -> None:
    """Move a finished clip into the output directory without exposing a partial file.

    The move may be a cross-device copy, so it lands on a .part name first and
    is renamed into place. Raises OSError with nothing left at either name.
    """
    partial_path = f"{final_path}.part"
    try:
        shutil.move(source_path, partial_path)
        os.replace(partial_path, final_path)
    except OSError:
        if os.path.exists(partial_path):
            os.unlink(partial_path)
        raise


class ClipRendererPort(ABC):
    def __init__(self, min_segment: float = DEFAULT_MIN_SEGMENT):
        self.min_segment = min_segment

    def plan(self, speaker_id: str, segments: Sequence[SpeakerSegment]) -> list[CutTask]:
        """Build the cut tasks for one speaker's merged segments.

        Segments not longer than min_segment are dropped; indices keep the
        position in the merged list so task naming stays stable.
        """
        tasks = [
            CutTask(speaker_id=speaker_id, index=i, start=seg.start, end=seg.end)
            for i, seg in enumerate(segments)
            if seg.end - seg.start > self.min_segment
        ]
        if not tasks:
            raise RenderError(speaker_id, "no renderable segments")
        return tasks

    @abstractmethod
    def cut(self, audio_path: str, task: CutTask, temp_dir: str, ctx: JobContext) -> Any:
        """Cut [task.start, task.end) out of the audio. Raises RenderError."""

    @abstractmethod
    def concat(
        self,
        speaker_id: str,
        pieces: Sequence[Any],
        temp_dir: str,
        output_dir: str,
        ctx: JobContext,
    ):
        """Join pieces in order into the final clip. Returns SpeakerClip, raises RenderError."""

    def render(
        self,
        speaker_id: str,
        audio_path: str,
        segments: Sequence[SpeakerSegment],
        temp_dir: str,
        output_dir: str,
        ctx: JobContext,
    ) -> RenderResult:
        """Cut every segment then concatenate, for a single speaker.

        Failures come back as RenderResult.error instead of being raised.
        """
        try:
            tasks = self.plan(speaker_id, segments)
            pieces = [self.cut(audio_path, task, temp_dir, ctx) for task in tasks]
            clip = self.concat(speaker_id, pieces, temp_dir, output_dir, ctx)
            return RenderResult(speaker_id=speaker_id, clip=clip)
        except RenderError as e:
            return RenderResult(speaker_id=speaker_id, error=e)
        except (StageTimeoutError, PipelineCancelledError) as e:
            return RenderResult(speaker_id=speaker_id, error=RenderError(speaker_id, str(e)))
