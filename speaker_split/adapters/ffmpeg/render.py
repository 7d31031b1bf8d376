"""FFmpegClipRenderer — cuts merged segments and concatenates them with ffmpeg."""

import os
import logging
from typing import Optional, Sequence

from speaker_split.adapters.ffmpeg.process import last_stderr_line, resolve_ffmpeg, run_ffmpeg
from speaker_split.domain.errors import RenderError
from speaker_split.domain.models import SAMPLE_RATE, CutTask, JobContext, SpeakerClip, approx_wav_duration
from speaker_split.ports.rendering import DEFAULT_MIN_SEGMENT, ClipRendererPort, publish_clip

logger = logging.getLogger(__name__)


def _concat_entry(path: str) -> str:
    # concat demuxer quoting: close the quote, escape, reopen
    escaped = os.path.abspath(path).replace("'", "'\\''")
    return f"file '{escaped}'"


class FFmpegClipRenderer(ClipRendererPort):
    def __init__(self, ffmpeg_path: Optional[str] = None, min_segment: float = DEFAULT_MIN_SEGMENT):
        super().__init__(min_segment=min_segment)
        self.ffmpeg = resolve_ffmpeg(ffmpeg_path)

    def cut(self, audio_path: str, task: CutTask, temp_dir: str, ctx: JobContext) -> str:
        output_path = os.path.join(temp_dir, f"{task.speaker_id}_{task.index}.wav")
        cmd = [
            self.ffmpeg, "-y",
            "-ss", f"{task.start:.3f}",
            "-t", f"{task.duration:.3f}",
            "-i", audio_path,
            "-acodec", "pcm_s16le",
            "-ar", str(SAMPLE_RATE),
            "-ac", "1",
            output_path,
        ]
        try:
            result = run_ffmpeg(cmd, ctx, f"cut {task.speaker_id}#{task.index}")
        except OSError as e:
            raise RenderError(task.speaker_id, f"failed to start ffmpeg: {e.strerror or e}") from e

        if result.returncode != 0:
            logger.error(f"Segment {task.index} failed for {task.speaker_id}: {result.stderr}")
            raise RenderError(task.speaker_id, f"segment {task.index} cut failed: {last_stderr_line(result.stderr)}")
        if not os.path.exists(output_path) or os.path.getsize(output_path) == 0:
            raise RenderError(task.speaker_id, f"segment {task.index} cut produced no audio")
        return output_path

    def concat(
        self,
        speaker_id: str,
        pieces: Sequence[str],
        temp_dir: str,
        output_dir: str,
        ctx: JobContext,
    ) -> SpeakerClip:
        if not pieces:
            raise RenderError(speaker_id, "no segment files to concatenate")

        list_file = os.path.join(temp_dir, f"{speaker_id}_list.txt")
        try:
            with open(list_file, "w", encoding="utf-8") as f:
                f.write("\n".join(_concat_entry(p) for p in pieces))
        except OSError as e:
            raise RenderError(speaker_id, f"could not write concat list: {e.strerror or e}") from e

        merged_tmp = os.path.join(temp_dir, f"{speaker_id}_merged.wav")
        cmd = [
            self.ffmpeg, "-y",
            "-f", "concat",
            "-safe", "0",
            "-i", os.path.abspath(list_file),
            "-ar", str(SAMPLE_RATE),
            "-ac", "1",
            "-c:a", "pcm_s16le",
            os.path.abspath(merged_tmp),
        ]
        try:
            result = run_ffmpeg(cmd, ctx, f"concat {speaker_id}")
        except OSError as e:
            raise RenderError(speaker_id, f"failed to start ffmpeg: {e.strerror or e}") from e

        if result.returncode != 0 or not os.path.exists(merged_tmp):
            logger.error(f"Error merging {speaker_id}: {result.stderr}")
            raise RenderError(speaker_id, f"concat failed: {last_stderr_line(result.stderr)}")

        final_path = os.path.join(output_dir, f"{speaker_id}_merged.wav")
        try:
            publish_clip(merged_tmp, final_path)
        except OSError as e:
            raise RenderError(speaker_id, f"could not publish clip: {e.strerror or e}") from e

        size = os.path.getsize(final_path)
        clip = SpeakerClip(
            speaker_id=speaker_id,
            output_path=final_path,
            size_bytes=size,
            approx_duration=approx_wav_duration(size),
            segment_count=len(pieces),
        )
        logger.info(
            f"{speaker_id}: {final_path} | Size: {size / (1024 * 1024):.2f} MB | "
            f"Duration: ~{clip.approx_duration:.2f}s | Segments: {clip.segment_count}"
        )
        return clip
