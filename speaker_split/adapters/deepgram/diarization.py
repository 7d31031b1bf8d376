"""DeepgramDiarizationAdapter — word-level diarization via Deepgram's pre-recorded API."""

import math
import logging
from concurrent import futures
from typing import Any, Iterator, Optional

import httpx

from speaker_split.domain.errors import ConfigurationError, PipelineCancelledError, StageTimeoutError, UpstreamError
from speaker_split.domain.models import DiarizationTranscript, JobContext, TranscriptWord
from speaker_split.ports.diarization import DiarizationPort

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.deepgram.com/v1/listen"
DEFAULT_MODEL = "nova-2"
UPLOAD_CHUNK_BYTES = 64 * 1024
# Read timeout when the run has no deadline. Long files take a while to process.
DEFAULT_TIMEOUT = 600.0
# How often a pending request is checked for cancellation (seconds).
POLL_INTERVAL = 0.2


def _as_float(value: Any) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _speaker_index(value: Any) -> int:
    if value is None:
        return 0
    try:
        index = int(value)
    except (TypeError, ValueError) as e:
        raise UpstreamError(f"Invalid speaker label in diarization response: {value!r}") from e
    if index < 0:
        raise UpstreamError(f"Invalid speaker label in diarization response: {value!r}")
    return index


def _to_word(item: dict) -> Optional[TranscriptWord]:
    start = _as_float(item.get("start"))
    end = _as_float(item.get("end"))
    if start is None or end is None:
        return None
    return TranscriptWord(
        start=start,
        end=end,
        speaker=_speaker_index(item.get("speaker")),
        text=item.get("punctuated_word") or item.get("word") or item.get("transcript"),
    )


def _first_object(container: Any, name: str) -> dict:
    if not isinstance(container, list) or not container:
        raise UpstreamError(f"No transcription {name} found in diarization response")
    if not isinstance(container[0], dict):
        raise UpstreamError(f"Malformed {name} entry in diarization response")
    return container[0]


def parse_response(data: Any) -> DiarizationTranscript:
    """Map a Deepgram JSON response to a DiarizationTranscript.

    Raises UpstreamError when results.channels[0].alternatives[0] is absent
    or the structure around it is not what Deepgram documents.
    Falls back to results.utterances when the word list is empty.
    """
    if not isinstance(data, dict):
        raise UpstreamError("Diarization response is not a JSON object")

    results = data.get("results") or {}
    if not isinstance(results, dict):
        raise UpstreamError("Malformed results in diarization response")
    channel = _first_object(results.get("channels"), "channels")
    alternative = _first_object(channel.get("alternatives"), "alternatives")

    items = alternative.get("words") or []
    if not isinstance(items, list):
        raise UpstreamError("Malformed word list in diarization response")
    source = "words"
    utterances = results.get("utterances")
    if not items and isinstance(utterances, list) and utterances:
        logger.warning("'words' missing in response; falling back to 'utterances'")
        items = utterances
        source = "utterances"

    words = []
    skipped = 0
    for item in items:
        word = _to_word(item) if isinstance(item, dict) else None
        if word is None:
            skipped += 1
            continue
        words.append(word)
    if skipped:
        logger.warning(f"Skipped {skipped} {source} entries without numeric start/end")

    metadata = data.get("metadata")
    duration = _as_float(metadata.get("duration")) if isinstance(metadata, dict) else None
    if duration is None:
        duration = max((w.end for w in words), default=0.0)

    speakers = {w.speaker for w in words}
    logger.info(f"Total {source} detected: {len(words)}, unique speakers: {len(speakers)}")
    return DiarizationTranscript(words=words, duration=duration, raw=data)


class DeepgramDiarizationAdapter(DiarizationPort):
    def __init__(
        self,
        api_url: str = DEFAULT_API_URL,
        model: str = DEFAULT_MODEL,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self._api_url = api_url
        self._model = model
        self._transport = transport

    def provider_name(self) -> str:
        return f"deepgram/{self._model}"

    def _params(self) -> dict:
        return {
            "model": self._model,
            "diarize": "true",
            "punctuate": "true",
            "utterances": "true",
            "detect_language": "true",
        }

    def _stream_file(self, audio_path: str, ctx: JobContext) -> Iterator[bytes]:
        with open(audio_path, "rb") as f:
            while True:
                if ctx.cancelled:
                    raise PipelineCancelledError("diarization upload cancelled")
                chunk = f.read(UPLOAD_CHUNK_BYTES)
                if not chunk:
                    break
                yield chunk

    def _await_response(self, future: futures.Future, ctx: JobContext) -> httpx.Response:
        """Wait for the request in poll slices so cancel and the deadline interrupt it."""
        while True:
            remaining = ctx.remaining()
            wait = POLL_INTERVAL if remaining is None else min(POLL_INTERVAL, remaining)
            done, _ = futures.wait([future], timeout=wait)
            if done:
                return future.result()
            if ctx.cancelled:
                raise PipelineCancelledError("diarization request cancelled")
            if remaining is not None and ctx.remaining() <= 0:
                raise StageTimeoutError("diarization request exceeded the pipeline deadline")

    def diarize(self, audio_path: str, api_key: str, ctx: JobContext) -> DiarizationTranscript:
        if not api_key:
            raise ConfigurationError("Diarization API key not configured. Set DEEPGRAM_API_KEY.")
        ctx.check("diarize")

        remaining = ctx.remaining()
        timeout = httpx.Timeout(remaining if remaining is not None else DEFAULT_TIMEOUT, connect=30.0)
        headers = {
            "Authorization": f"Token {api_key}",
            "Content-Type": "audio/wav",
        }

        logger.info(f"Uploading audio to {self.provider_name()} for diarization")
        client = httpx.Client(timeout=timeout, transport=self._transport)
        pool = futures.ThreadPoolExecutor(max_workers=1, thread_name_prefix="diarize")
        try:
            future = pool.submit(
                client.post,
                self._api_url,
                params=self._params(),
                headers=headers,
                content=self._stream_file(audio_path, ctx),
            )
            resp = self._await_response(future, ctx)
        except httpx.TimeoutException as e:
            raise StageTimeoutError(f"Diarization request timed out: {type(e).__name__}") from e
        except httpx.HTTPError as e:
            raise UpstreamError(f"Diarization request failed: {type(e).__name__}: {e}") from e
        finally:
            # An abandoned request keeps its worker until the closed client fails it.
            pool.shutdown(wait=False)
            client.close()

        if not resp.is_success:
            logger.error(f"Diarization API returned {resp.status_code}: {resp.text[:500]}")
            raise UpstreamError(
                f"Diarization API returned HTTP {resp.status_code}",
                status_code=resp.status_code,
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise UpstreamError("Diarization API returned a non-JSON body", status_code=resp.status_code) from e

        transcript = parse_response(data)
        logger.info("Diarization completed")
        return transcript
