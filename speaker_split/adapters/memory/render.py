"""PCMClipRenderer — renders speaker clips from in-memory PCM, no subprocesses.

Each cut reads only its frame range from the normalized WAV; pieces stay as
numpy arrays until the final clip is written.
"""

import os
import logging
from typing import Sequence

import numpy as np
import soundfile

from speaker_split.domain.errors import RenderError
from speaker_split.domain.models import SAMPLE_RATE, CutTask, JobContext, SpeakerClip, approx_wav_duration
from speaker_split.ports.rendering import ClipRendererPort, publish_clip

logger = logging.getLogger(__name__)


class PCMClipRenderer(ClipRendererPort):
    def cut(self, audio_path: str, task: CutTask, temp_dir: str, ctx: JobContext) -> np.ndarray:
        ctx.check(f"cut {task.speaker_id}#{task.index}")
        try:
            info = soundfile.info(audio_path)
            if info.samplerate != SAMPLE_RATE:
                raise RenderError(task.speaker_id, f"expected {SAMPLE_RATE}Hz audio, got {info.samplerate}Hz")
            start = int(round(task.start * info.samplerate))
            stop = min(int(round(task.end * info.samplerate)), info.frames)
            if start >= stop:
                raise RenderError(task.speaker_id, f"segment {task.index} lies outside the audio")
            audio, _ = soundfile.read(audio_path, start=start, stop=stop, dtype="int16")
        except (RuntimeError, OSError) as e:
            # soundfile reports decode problems as RuntimeError (LibsndfileError)
            raise RenderError(task.speaker_id, f"segment {task.index} read failed: {e}") from e

        if audio.ndim > 1:
            audio = audio.mean(axis=1).astype(np.int16)
        return audio

    def concat(
        self,
        speaker_id: str,
        pieces: Sequence[np.ndarray],
        temp_dir: str,
        output_dir: str,
        ctx: JobContext,
    ) -> SpeakerClip:
        if not pieces:
            raise RenderError(speaker_id, "no segment audio to concatenate")
        ctx.check(f"concat {speaker_id}")

        merged = np.concatenate(pieces)
        merged_tmp = os.path.join(temp_dir, f"{speaker_id}_merged.wav")
        final_path = os.path.join(output_dir, f"{speaker_id}_merged.wav")
        try:
            soundfile.write(merged_tmp, merged, SAMPLE_RATE, subtype="PCM_16")
            publish_clip(merged_tmp, final_path)
        except (RuntimeError, OSError) as e:
            raise RenderError(speaker_id, f"could not write clip: {e}") from e

        size = os.path.getsize(final_path)
        logger.info(f"{speaker_id}: {len(merged) / SAMPLE_RATE:.2f}s from {len(pieces)} segments")
        return SpeakerClip(
            speaker_id=speaker_id,
            output_path=final_path,
            size_bytes=size,
            approx_duration=approx_wav_duration(size),
            segment_count=len(pieces),
        )
