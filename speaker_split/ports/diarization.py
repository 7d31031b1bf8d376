"""DiarizationPort — abstract interface for an external diarization service."""

from abc import ABC, abstractmethod

from speaker_split.domain.models import DiarizationTranscript, JobContext


class DiarizationPort(ABC):
    @abstractmethod
    def diarize(self, audio_path: str, api_key: str, ctx: JobContext) -> DiarizationTranscript:
        """Submit normalized audio and return speaker-tagged words."""

    @abstractmethod
    def provider_name(self) -> str:
        """Return the human-readable provider name for logs and debug files."""
