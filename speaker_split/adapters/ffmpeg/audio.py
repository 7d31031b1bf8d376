"""FFmpegAudioAdapter — normalizes uploaded media to the diarization input format."""

import os
import logging
from typing import Optional

from speaker_split.adapters.ffmpeg.process import last_stderr_line, resolve_ffmpeg, run_ffmpeg
from speaker_split.domain.errors import ExtractionError, UnsupportedFormatError
from speaker_split.domain.models import SAMPLE_RATE, JobContext, NormalizedAudio
from speaker_split.ports.audio import AudioExtractionPort

logger = logging.getLogger(__name__)

# stderr fragments ffmpeg prints when the input cannot be decoded at all.
DECODE_ERROR_MARKERS = (
    "invalid data found when processing input",
    "could not find codec parameters",
    "does not contain any stream",
    "output file does not contain any stream",
    "stream map '0:a' matches no streams",
    "unknown format",
    "moov atom not found",
)


class FFmpegAudioAdapter(AudioExtractionPort):
    def __init__(self, ffmpeg_path: Optional[str] = None):
        # Resolved once; a missing binary fails at startup, not per request.
        self.ffmpeg = resolve_ffmpeg(ffmpeg_path)
        logger.info(f"ffmpeg found at: {self.ffmpeg}")

    def extract(self, source_path: str, output_path: str, ctx: JobContext) -> NormalizedAudio:
        partial_path = f"{output_path}.part.wav"
        cmd = [
            self.ffmpeg, "-y",
            "-i", source_path,
            "-vn",
            "-acodec", "pcm_s16le",
            "-ac", "1",
            "-ar", str(SAMPLE_RATE),
            partial_path,
        ]

        try:
            try:
                result = run_ffmpeg(cmd, ctx, "extract")
            except OSError as e:
                raise ExtractionError(f"Failed to start ffmpeg: {e.strerror or e}") from e
            if result.returncode != 0:
                logger.error(f"Error extracting audio: {result.stderr}")
                lowered = result.stderr.lower()
                if any(marker in lowered for marker in DECODE_ERROR_MARKERS):
                    raise UnsupportedFormatError(
                        f"Cannot decode {os.path.basename(source_path)}: {last_stderr_line(result.stderr)}"
                    )
                raise ExtractionError(f"Failed to extract audio: {last_stderr_line(result.stderr)}")

            if not os.path.exists(partial_path) or os.path.getsize(partial_path) == 0:
                raise ExtractionError("Failed to extract audio: ffmpeg produced an empty file")

            os.replace(partial_path, output_path)
            logger.info(f"Audio extracted: {output_path} ({os.path.getsize(output_path)} bytes)")
            return NormalizedAudio(path=output_path)

        except Exception:
            if os.path.exists(partial_path):
                os.unlink(partial_path)
            raise
