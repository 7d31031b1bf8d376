import json
import threading
import time

import httpx
import pytest

from speaker_split.adapters.deepgram.diarization import DeepgramDiarizationAdapter, parse_response
from speaker_split.domain.errors import (
    ConfigurationError,
    PipelineCancelledError,
    StageTimeoutError,
    UpstreamError,
)
from speaker_split.domain.models import JobContext


def _response(words, **extra):
    payload = {
        "metadata": {"duration": 12.5},
        "results": {"channels": [{"alternatives": [{"transcript": "hi", "words": words}]}]},
    }
    payload["results"].update(extra)
    return payload


@pytest.fixture
def audio_file(tmp_path):
    path = tmp_path / "extracted_audio.wav"
    path.write_bytes(b"RIFF" + b"\x01" * 200_000)
    return path


def _adapter(handler):
    return DeepgramDiarizationAdapter(transport=httpx.MockTransport(handler))


def test_request_carries_flags_auth_and_audio(audio_file, ctx):
    seen = {}

    def handler(request):
        seen["params"] = dict(request.url.params)
        seen["auth"] = request.headers["authorization"]
        seen["content_type"] = request.headers["content-type"]
        seen["body"] = request.read()
        return httpx.Response(200, json=_response([]))

    _adapter(handler).diarize(str(audio_file), "secret", ctx)

    assert seen["params"] == {
        "model": "nova-2",
        "diarize": "true",
        "punctuate": "true",
        "utterances": "true",
        "detect_language": "true",
    }
    assert seen["auth"] == "Token secret"
    assert seen["content_type"] == "audio/wav"
    assert seen["body"] == audio_file.read_bytes()


def test_words_are_parsed_with_default_speaker(audio_file, ctx):
    words = [
        {"word": "hello", "punctuated_word": "Hello", "start": 0.1, "end": 0.4, "speaker": 1},
        {"word": "there", "start": 0.5, "end": 0.9},
    ]
    transcript = _adapter(lambda r: httpx.Response(200, json=_response(words))).diarize(
        str(audio_file), "k", ctx,
    )
    assert [(w.start, w.end, w.speaker, w.text) for w in transcript.words] == [
        (0.1, 0.4, 1, "Hello"),
        (0.5, 0.9, 0, "there"),
    ]
    assert transcript.duration == 12.5
    assert transcript.raw["metadata"]["duration"] == 12.5


def test_empty_word_list_is_not_an_error(audio_file, ctx):
    transcript = _adapter(lambda r: httpx.Response(200, json=_response([]))).diarize(
        str(audio_file), "k", ctx,
    )
    assert transcript.words == []


@pytest.mark.parametrize("status", [400, 401, 500, 503])
def test_non_2xx_is_upstream_error(audio_file, ctx, status):
    adapter = _adapter(lambda r: httpx.Response(status, json={"err_msg": "nope"}))
    with pytest.raises(UpstreamError) as exc:
        adapter.diarize(str(audio_file), "k", ctx)
    assert exc.value.status_code == status


def test_missing_channels_is_upstream_error(audio_file, ctx):
    adapter = _adapter(lambda r: httpx.Response(200, json={"results": {"channels": []}}))
    with pytest.raises(UpstreamError):
        adapter.diarize(str(audio_file), "k", ctx)


def test_non_json_body_is_upstream_error(audio_file, ctx):
    adapter = _adapter(lambda r: httpx.Response(200, text="<html>gateway</html>"))
    with pytest.raises(UpstreamError):
        adapter.diarize(str(audio_file), "k", ctx)


def test_transport_failure_is_upstream_error(audio_file, ctx):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(UpstreamError):
        _adapter(handler).diarize(str(audio_file), "k", ctx)


def test_timeout_is_stage_timeout(audio_file):
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(StageTimeoutError):
        _adapter(handler).diarize(str(audio_file), "k", JobContext.create("t", timeout=5))


def test_missing_api_key_is_configuration_error(audio_file, ctx):
    adapter = _adapter(lambda r: httpx.Response(200, json=_response([])))
    with pytest.raises(ConfigurationError):
        adapter.diarize(str(audio_file), "", ctx)


def test_utterances_fallback_when_words_empty():
    data = _response([], utterances=[
        {"start": 0.0, "end": 2.0, "speaker": 0, "transcript": "first"},
        {"start": 3.0, "end": 5.0, "speaker": 2, "transcript": "second"},
    ])
    transcript = parse_response(data)
    assert [(w.start, w.speaker, w.text) for w in transcript.words] == [(0.0, 0, "first"), (3.0, 2, "second")]


def test_words_without_timestamps_are_skipped():
    data = _response([{"word": "a", "start": None, "end": 1}, {"word": "b", "start": 1, "end": 2}])
    data.pop("metadata")
    transcript = parse_response(data)
    assert [w.text for w in transcript.words] == ["b"]
    assert transcript.duration == 2


def test_parse_rejects_non_object():
    with pytest.raises(UpstreamError):
        parse_response(json.loads("[1, 2]"))


@pytest.mark.parametrize("data", [
    {"results": [{"channels": []}]},
    {"results": {"channels": ["x"]}},
    {"results": {"channels": {"alternatives": []}}},
    {"results": {"channels": [{"alternatives": ["y"]}]}},
    {"results": {"channels": [{"alternatives": [{"words": "hello"}]}]}},
])
def test_malformed_structure_is_upstream_error(data):
    with pytest.raises(UpstreamError):
        parse_response(data)


def test_non_numeric_speaker_label_is_upstream_error():
    with pytest.raises(UpstreamError) as exc:
        parse_response(_response([{"word": "hi", "start": 0, "end": 1, "speaker": "A"}]))
    assert "'A'" in str(exc.value)


def test_non_object_metadata_falls_back_to_last_word_end():
    data = _response([{"word": "hi", "start": 0, "end": 1.5}])
    data["metadata"] = "n/a"
    assert parse_response(data).duration == 1.5


def test_upload_stops_between_chunks_on_cancel(audio_file, ctx):
    chunks = DeepgramDiarizationAdapter()._stream_file(str(audio_file), ctx)
    assert len(next(chunks)) == 64 * 1024
    ctx.cancel()
    with pytest.raises(PipelineCancelledError):
        next(chunks)


@pytest.fixture
def stalled_server():
    """A handler that holds the response until the test releases it."""
    release = threading.Event()

    def handler(request):
        release.wait(10)
        return httpx.Response(200, json=_response([]))

    yield handler
    release.set()


def test_cancel_interrupts_response_wait(audio_file, stalled_server):
    ctx = JobContext.create("t")
    timer = threading.Timer(0.3, ctx.cancel)
    timer.start()
    started = time.monotonic()
    try:
        with pytest.raises(PipelineCancelledError):
            _adapter(stalled_server).diarize(str(audio_file), "k", ctx)
    finally:
        timer.cancel()
    assert time.monotonic() - started < 2


def test_deadline_interrupts_response_wait(audio_file, stalled_server):
    started = time.monotonic()
    with pytest.raises(StageTimeoutError):
        _adapter(stalled_server).diarize(str(audio_file), "k", JobContext.create("t", timeout=0.3))
    assert time.monotonic() - started < 2


def test_already_cancelled_run_sends_nothing(audio_file):
    calls = []
    ctx = JobContext.create("t")
    ctx.cancel()
    with pytest.raises(PipelineCancelledError):
        _adapter(lambda r: calls.append(r) or httpx.Response(200, json=_response([]))).diarize(
            str(audio_file), "k", ctx,
        )
    assert calls == []
