from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class SpeakerClipInfo(BaseModel):
    """One rendered speaker clip as returned to the caller"""
    model_config = ConfigDict(populate_by_name=True)

    speaker: str
    path: str
    size_mb: str = Field(alias="sizeMB")
    duration_sec: str = Field(alias="durationSec")
    segments: int


class SpeakerSeparationResponse(BaseModel):
    """Response format for a speaker separation run"""
    model_config = ConfigDict(populate_by_name=True)

    speaker_count: int = Field(alias="speakerCount")
    speaker_ids: List[str] = Field(alias="speakerIds")
    total_duration_sec: float = Field(alias="totalDurationSec")
    clips: List[SpeakerClipInfo] = []
    warnings: Optional[List[str]] = None

    def as_payload(self) -> dict:
        result = self.model_dump(by_alias=True)
        if not self.warnings:
            result.pop("warnings", None)
        return result


class ErrorResponse(BaseModel):
    """Caller-facing error with filesystem paths stripped"""
    error: str
    type: str
