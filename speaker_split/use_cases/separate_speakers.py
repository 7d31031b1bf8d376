"""SeparateSpeakersUseCase — orchestrates the speaker separation pipeline.

Accepts all ports via dependency injection:

    extract audio -> diarize -> group words by speaker -> merge segments
    -> render one clip per speaker (bounded pool) -> assemble -> cleanup

Everything before rendering is fatal on failure. Rendering failures are
isolated per speaker and reported through RenderResult.
"""

import os
import json
import shutil
import logging
import threading
import uuid
import warnings
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Any, Optional

from speaker_split.domain.errors import (
    CleanupWarning,
    ConfigurationError,
    InvalidInputError,
    NoSpeakersError,
    RenderError,
)
from speaker_split.domain.models import (
    CutTask,
    DiarizationTranscript,
    JobContext,
    PipelineOptions,
    PipelineResult,
    RenderResult,
    SourceMedia,
    SpeakerSegment,
    speaker_sort_key,
)
from speaker_split.ports.audio import AudioExtractionPort
from speaker_split.ports.diarization import DiarizationPort
from speaker_split.ports.progress import ProgressPort
from speaker_split.ports.rendering import ClipRendererPort
from speaker_split.segmentation import extract_speaker_segments, merge_speaker_segments

logger = logging.getLogger(__name__)

EXTRACTED_AUDIO_NAME = "extracted_audio.wav"
DEBUG_RESPONSE_NAME = "diarization_response.json"
DEFAULT_MAX_WORKERS = 4

# Returned in place of a piece when the speaker already has a failed cut.
_SKIPPED = object()


@dataclass
class SeparateSpeakersRequest:
    """All parameters for one pipeline run."""
    source: SourceMedia
    api_key: str
    options: PipelineOptions
    cancel_event: Optional[threading.Event] = None


def cleanup_temp_dir(path: str) -> bool:
    """Remove a run's temp directory. Missing directories are not an error.

    Returns False when removal failed; the failure is logged and emitted as a
    CleanupWarning, never raised.
    """
    try:
        shutil.rmtree(path)
        logger.info(f"Cleaned up temporary files: {path}")
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Failed to clean up temp files in {path}: {e}")
        warnings.warn(f"temp cleanup failed: {e.strerror or e}", CleanupWarning, stacklevel=2)
        return False
    return True


def _as_render_error(speaker_id: str, exc: Exception) -> RenderError:
    if isinstance(exc, RenderError):
        return exc
    return RenderError(speaker_id, f"{type(exc).__name__}: {exc}")


class SeparateSpeakersUseCase:
    def __init__(
        self,
        audio: AudioExtractionPort,
        diarization: DiarizationPort,
        renderer: ClipRendererPort,
        progress: ProgressPort,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ):
        self._audio = audio
        self._diarization = diarization
        self._renderer = renderer
        self._progress = progress
        self._max_workers = max(1, max_workers)

    def execute(self, req: SeparateSpeakersRequest) -> PipelineResult:
        """Run the full pipeline. Raises PipelineError subclasses on fatal failure."""
        opts = req.options
        ctx = JobContext.create(uuid.uuid4().hex[:12], opts.timeout, req.cancel_event)

        try:
            result = self._run(req, ctx)
        except Exception as e:
            logger.error(f"[{ctx.job_id}] Pipeline failed: {type(e).__name__}: {e}")
            self._progress.report(ctx.job_id, "failed", detail=type(e).__name__)
            cleanup_temp_dir(opts.temp_dir)
            raise

        if opts.cleanup or ctx.cancelled:
            self._progress.report(ctx.job_id, "cleanup")
            if not cleanup_temp_dir(opts.temp_dir):
                result.warnings.append("temporary files could not be fully removed")

        self._progress.report(
            ctx.job_id, "done",
            detail=f"{len(result.clips)}/{result.speaker_count} speakers rendered",
        )
        return result

    def _run(self, req: SeparateSpeakersRequest, ctx: JobContext) -> PipelineResult:
        opts = req.options
        result_warnings: list[str] = []

        # 1. Init
        self._prepare(req)

        # 2. Extract audio
        self._progress.report(ctx.job_id, "extracting")
        audio = self._audio.extract(
            req.source.path, os.path.join(opts.temp_dir, EXTRACTED_AUDIO_NAME), ctx,
        )

        # 3. Diarize
        self._progress.report(ctx.job_id, "diarizing", detail=self._diarization.provider_name())
        transcript = self._diarization.diarize(audio.path, req.api_key, ctx)

        # 4. Group words by speaker
        self._progress.report(ctx.job_id, "segmenting", detail=f"{len(transcript.words)} words")
        speakers = extract_speaker_segments(transcript.words)
        logger.info(f"[{ctx.job_id}] Found {len(speakers)} speaker(s)")
        if not speakers:
            raise NoSpeakersError("No speakers detected in the audio. Nothing to split.")
        if len(speakers) == 1:
            logger.warning(f"[{ctx.job_id}] Only 1 speaker detected")
            result_warnings.append("only one speaker detected")

        if opts.save_debug_response:
            self._save_debug_response(transcript, opts.output_dir)

        # 5. Merge
        merged = merge_speaker_segments(speakers, opts.merge_gap)

        # 6. Render
        ctx.check("render")
        results = self._render_all(audio.path, merged, opts, ctx)
        if ctx.cancelled:
            logger.warning(f"[{ctx.job_id}] Cancelled during rendering")
            result_warnings.append("run cancelled during rendering")

        # 7. Assemble
        clips = []
        for r in results:
            if r.ok:
                clips.append(r.clip)
            else:
                logger.error(f"[{ctx.job_id}] Rendering failed for {r.speaker_id}: {r.error}")
                result_warnings.append(f"{r.speaker_id} could not be rendered")
        if not clips:
            logger.error(f"[{ctx.job_id}] {len(speakers)} speaker(s) detected but no clips rendered")
            result_warnings.append("no speaker clips rendered")

        return PipelineResult(
            speaker_count=len(speakers),
            speaker_ids=sorted(speakers, key=speaker_sort_key),
            total_duration=transcript.duration,
            clips=clips,
            warnings=result_warnings,
        )

    def _prepare(self, req: SeparateSpeakersRequest) -> None:
        if not req.api_key:
            raise ConfigurationError("Diarization API key not configured. Set DEEPGRAM_API_KEY.")
        if not os.path.isfile(req.source.path):
            raise InvalidInputError(f"Source media not found: {os.path.basename(req.source.path)}")
        try:
            os.makedirs(req.options.temp_dir, exist_ok=True)
            os.makedirs(req.options.output_dir, exist_ok=True)
        except OSError as e:
            raise ConfigurationError(f"Cannot create working directories: {e.strerror or e}") from e
        if req.source.mime_type:
            logger.info(f"Source media: {os.path.basename(req.source.path)} ({req.source.mime_type})")

    def _save_debug_response(self, transcript: DiarizationTranscript, output_dir: str) -> None:
        path = os.path.join(output_dir, DEBUG_RESPONSE_NAME)
        try:
            body = json.dumps(transcript.raw, ensure_ascii=False, indent=2)
            with open(path, "w", encoding="utf-8") as f:
                f.write(body)
            logger.info(f"Diarization response saved to {path}")
        except (OSError, TypeError, ValueError) as e:
            logger.warning(f"Could not save diarization response to {path}: {e}")

    def _cut_unless_failed(self, audio_path: str, task: CutTask, temp_dir: str, ctx: JobContext, failed: set):
        if task.speaker_id in failed:
            return _SKIPPED
        try:
            return self._renderer.cut(audio_path, task, temp_dir, ctx)
        except Exception:
            failed.add(task.speaker_id)
            raise

    def _render_all(
        self,
        audio_path: str,
        merged: dict[str, list[SpeakerSegment]],
        opts: PipelineOptions,
        ctx: JobContext,
    ) -> list[RenderResult]:
        """Render every speaker through one bounded pool.

        All cuts for all speakers form a single task list ordered by
        (speaker, segment index). Pieces are re-joined in that order before
        concatenation, whatever order the workers finish in.
        """
        failures: dict[str, RenderError] = {}
        tasks: list[CutTask] = []
        for speaker_id in sorted(merged, key=speaker_sort_key):
            try:
                tasks.extend(self._renderer.plan(speaker_id, merged[speaker_id]))
            except RenderError as e:
                failures[speaker_id] = e

        pieces: dict[str, dict[int, Any]] = defaultdict(dict)
        clips = {}
        self._progress.report(ctx.job_id, "rendering", detail=f"{len(tasks)} cuts, {len(merged)} speakers")

        with ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="render") as pool:
            failed = set(failures)
            cut_futures = {
                pool.submit(self._cut_unless_failed, audio_path, task, opts.temp_dir, ctx, failed): task
                for task in tasks
            }
            for done, future in enumerate(as_completed(cut_futures), start=1):
                task = cut_futures[future]
                try:
                    piece = future.result()
                    if piece is not _SKIPPED:
                        pieces[task.speaker_id][task.index] = piece
                except Exception as e:
                    if task.speaker_id not in failures:
                        logger.error(f"[{ctx.job_id}] Cut {task.index} failed for {task.speaker_id}: {e}")
                        failures[task.speaker_id] = _as_render_error(task.speaker_id, e)
                if done % 25 == 0 or done == len(tasks):
                    self._progress.report(ctx.job_id, "rendering", progress=done / len(tasks))

            concat_futures = {}
            for speaker_id in sorted(pieces, key=speaker_sort_key):
                if speaker_id in failures:
                    continue
                by_index = pieces[speaker_id]
                ordered = [by_index[i] for i in sorted(by_index)]
                future = pool.submit(
                    self._renderer.concat, speaker_id, ordered, opts.temp_dir, opts.output_dir, ctx,
                )
                concat_futures[future] = speaker_id

            for future in as_completed(concat_futures):
                speaker_id = concat_futures[future]
                try:
                    clips[speaker_id] = future.result()
                except Exception as e:
                    logger.error(f"[{ctx.job_id}] Concat failed for {speaker_id}: {e}")
                    failures[speaker_id] = _as_render_error(speaker_id, e)

        results = [RenderResult(speaker_id=s, clip=c) for s, c in clips.items()]
        results += [RenderResult(speaker_id=s, error=e) for s, e in failures.items()]
        return sorted(results, key=lambda r: speaker_sort_key(r.speaker_id))
