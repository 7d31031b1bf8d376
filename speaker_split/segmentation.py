"""Segment extraction and merging.

Pure functions that turn diarized words into per-speaker speech segments.
"""

import logging
from collections import Counter
from typing import Dict, Iterable, List

from speaker_split.domain.models import DEFAULT_MERGE_GAP, SpeakerSegment, TranscriptWord, speaker_id_for

logger = logging.getLogger(__name__)


def extract_speaker_segments(words: Iterable[TranscriptWord]) -> Dict[str, List[SpeakerSegment]]:
    """Group words by speaker, one raw segment per word.

    Words arrive time-ordered from the diarization service, so the relative
    order within each speaker is kept as-is and nothing is re-sorted here.

    Args:
        words: Diarized words in stream order.

    Returns:
        Mapping of speaker id ("SPK_{index}") to raw segments. Keys appear in
        order of each speaker's first word. Empty input gives an empty dict.
    """
    speakers: Dict[str, List[SpeakerSegment]] = {}
    for word in words:
        speaker_id = speaker_id_for(word.speaker)
        speakers.setdefault(speaker_id, []).append(
            SpeakerSegment(speaker_id=speaker_id, start=word.start, end=word.end)
        )

    if speakers:
        counts = Counter({spk: len(segs) for spk, segs in speakers.items()})
        total = sum(counts.values())
        for spk, count in counts.items():
            logger.debug(f"{spk}: {count} words ({count / total:.1%})")
    return speakers


def merge_segments(segments: List[SpeakerSegment], gap_threshold: float = DEFAULT_MERGE_GAP) -> List[SpeakerSegment]:
    """Collapse near-adjacent segments of one speaker.

    A segment joins the current one when the silence before it is strictly
    shorter than gap_threshold; a gap exactly equal to the threshold starts a
    new segment. Input must be ordered by start. The input list and its
    segments are left untouched.

    Running the function on its own output returns an equal list, since every
    remaining gap is already >= gap_threshold.
    """
    if not segments:
        return []
    if len(segments) == 1:
        return [segments[0]]

    merged: List[SpeakerSegment] = []
    first = segments[0]
    current = SpeakerSegment(first.speaker_id, first.start, first.end)

    for seg in segments[1:]:
        if seg.start - current.end < gap_threshold:
            current.end = max(current.end, seg.end)
        else:
            merged.append(current)
            current = SpeakerSegment(seg.speaker_id, seg.start, seg.end)

    merged.append(current)
    return merged


def merge_speaker_segments(
    speakers: Dict[str, List[SpeakerSegment]],
    gap_threshold: float = DEFAULT_MERGE_GAP,
) -> Dict[str, List[SpeakerSegment]]:
    """Apply merge_segments to every speaker independently."""
    merged = {}
    for speaker_id, segments in speakers.items():
        merged[speaker_id] = merge_segments(segments, gap_threshold)
        logger.info(f"{speaker_id}: {len(segments)} raw -> {len(merged[speaker_id])} merged segments")
    return merged


def speech_duration(segments: Iterable[SpeakerSegment]) -> float:
    """Total seconds covered by a list of non-overlapping segments."""
    return sum(seg.end - seg.start for seg in segments)
