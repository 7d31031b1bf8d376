import pytest

from speaker_split.domain.models import SpeakerSegment, TranscriptWord
from speaker_split.segmentation import (
    extract_speaker_segments,
    merge_segments,
    merge_speaker_segments,
    speech_duration,
)

from conftest import words


def _segs(*pairs, speaker="SPK_0"):
    return [SpeakerSegment(speaker, s, e) for s, e in pairs]


def _pairs(segments):
    return [(s.start, s.end) for s in segments]


def test_extract_groups_by_speaker_index():
    result = extract_speaker_segments(words((0, 1, 0), (1.2, 2, 0), (5, 6, 1)))
    assert list(result) == ["SPK_0", "SPK_1"]
    assert _pairs(result["SPK_0"]) == [(0, 1), (1.2, 2)]
    assert _pairs(result["SPK_1"]) == [(5, 6)]
    assert all(seg.speaker_id == "SPK_1" for seg in result["SPK_1"])


def test_extract_one_entry_per_distinct_speaker():
    items = [TranscriptWord(start=i, end=i + 0.5, speaker=i % 4) for i in range(20)]
    result = extract_speaker_segments(items)
    assert len(result) == 4
    for segments in result.values():
        starts = [s.start for s in segments]
        assert starts == sorted(starts)


def test_extract_preserves_input_order_without_sorting():
    result = extract_speaker_segments(words((3, 4, 0), (1, 2, 0)))
    assert _pairs(result["SPK_0"]) == [(3, 4), (1, 2)]


def test_extract_missing_speaker_defaults_to_zero():
    result = extract_speaker_segments([TranscriptWord(start=0.0, end=0.4)])
    assert list(result) == ["SPK_0"]


def test_extract_empty_input():
    assert extract_speaker_segments([]) == {}


def test_merge_empty_and_single():
    assert merge_segments([]) == []
    single = _segs((1.0, 2.0))
    assert merge_segments(single) == single


def test_merge_two_speaker_example():
    merged = merge_speaker_segments(extract_speaker_segments(words((0, 1, 0), (1.2, 2, 0), (5, 6, 1))))
    assert _pairs(merged["SPK_0"]) == [(0, 2)]
    assert _pairs(merged["SPK_1"]) == [(5, 6)]


def test_gap_equal_to_threshold_does_not_merge():
    merged = merge_segments(_segs((0.0, 1.0), (1.5, 2.0)), gap_threshold=0.5)
    assert _pairs(merged) == [(0.0, 1.0), (1.5, 2.0)]


def test_gap_just_below_threshold_merges():
    merged = merge_segments(_segs((0.0, 1.0), (1.499, 2.0)), gap_threshold=0.5)
    assert _pairs(merged) == [(0.0, 2.0)]


def test_merge_keeps_longest_end_for_overlaps():
    merged = merge_segments(_segs((0.0, 3.0), (1.0, 2.0), (2.5, 2.8)))
    assert _pairs(merged) == [(0.0, 3.0)]


def test_merge_does_not_mutate_input():
    original = _segs((0.0, 1.0), (1.1, 2.0))
    merge_segments(original)
    assert _pairs(original) == [(0.0, 1.0), (1.1, 2.0)]


@pytest.mark.parametrize("gap", [0.0, 0.25, 0.5, 1.0])
def test_merge_is_idempotent(gap):
    segments = _segs((0, 0.4), (0.5, 0.9), (1.6, 2.0), (2.1, 2.2), (3.0, 3.5), (3.9, 4.0), (6, 7))
    once = merge_segments(segments, gap)
    twice = merge_segments(once, gap)
    assert _pairs(twice) == _pairs(once)
    for prev, nxt in zip(once, once[1:]):
        assert nxt.start - prev.end >= gap


def test_speech_duration():
    assert speech_duration(_segs((0, 2), (5, 6))) == pytest.approx(3.0)
