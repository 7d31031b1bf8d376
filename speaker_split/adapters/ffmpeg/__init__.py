"""FFmpeg adapters for audio extraction and clip rendering."""

from .audio import FFmpegAudioAdapter
from .render import FFmpegClipRenderer

__all__ = ["FFmpegAudioAdapter", "FFmpegClipRenderer"]
