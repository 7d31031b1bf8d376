"""Domain -> DTO mappers.

Converts PipelineResult / SpeakerClip (domain) to the pydantic response
models. sizeMB and durationSec are rendered as two-decimal strings.
"""

import os
from typing import Optional

from speaker_split.domain.errors import PipelineError
from speaker_split.domain.models import PipelineResult, SpeakerClip
from speaker_split.models import ErrorResponse, SpeakerClipInfo, SpeakerSeparationResponse


def _public_path(path: str, public_root: Optional[str]) -> str:
    if not public_root:
        return path
    relative = os.path.relpath(os.path.abspath(path), os.path.abspath(public_root))
    # Never hand out a path that escapes the public root.
    return os.path.basename(path) if relative.startswith(os.pardir) else relative


def clip_to_dto(clip: SpeakerClip, public_root: Optional[str] = None) -> SpeakerClipInfo:
    return SpeakerClipInfo(
        speaker=clip.speaker_id,
        path=_public_path(clip.output_path, public_root),
        size_mb=f"{clip.size_bytes / (1024 * 1024):.2f}",
        duration_sec=f"{clip.approx_duration:.2f}",
        segments=clip.segment_count,
    )


def result_to_response(result: PipelineResult, public_root: Optional[str] = None) -> SpeakerSeparationResponse:
    """Convert a pipeline result to its response DTO, preserving clip order."""
    return SpeakerSeparationResponse(
        speaker_count=result.speaker_count,
        speaker_ids=list(result.speaker_ids),
        total_duration_sec=result.total_duration,
        clips=[clip_to_dto(c, public_root) for c in result.clips],
        warnings=list(result.warnings) or None,
    )


def error_to_response(error: PipelineError) -> ErrorResponse:
    return ErrorResponse(error=error.public_message, type=type(error).__name__)
