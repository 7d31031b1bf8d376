"""AudioExtractionPort — abstract interface for audio normalization."""

from abc import ABC, abstractmethod

from speaker_split.domain.models import JobContext, NormalizedAudio


class AudioExtractionPort(ABC):
    @abstractmethod
    def extract(self, source_path: str, output_path: str, ctx: JobContext) -> NormalizedAudio:
        """Convert any media file to mono 16-bit 16kHz WAV at output_path."""
