import os
import time
import logging
from typing import Dict, Optional, Any, Tuple
from pathlib import Path

from dotenv import load_dotenv

from speaker_split.adapters.deepgram.diarization import DEFAULT_API_URL, DEFAULT_MODEL
from speaker_split.domain.models import DEFAULT_MERGE_GAP, PipelineOptions
from speaker_split.ports.rendering import DEFAULT_MIN_SEGMENT

logger = logging.getLogger(__name__)

load_dotenv()

DEFAULT_OUTPUT_ROOT = "uploads/speakers"
DEFAULT_TEMP_ROOT = "uploads/temp"


def _default_workers() -> int:
    return min(4, os.cpu_count() or 1)


class Config:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(Config, cls).__new__(cls)
            cls._instance._initialize()
        return cls._instance

    @classmethod
    def reload(cls) -> "Config":
        """Drop the cached instance and re-read the environment."""
        cls._instance = None
        return cls()

    def _initialize(self):
        self.debug = os.environ.get("DEBUG", "0") == "1"
        self.api_key = os.environ.get("DEEPGRAM_API_KEY", "").strip()
        self.api_url = os.environ.get("DIARIZATION_API_URL", DEFAULT_API_URL)
        self.model = os.environ.get("DIARIZATION_MODEL", DEFAULT_MODEL)
        self.ffmpeg_path = os.environ.get("FFMPEG_PATH") or None
        self.merge_gap = float(os.environ.get("MERGE_GAP_SECONDS", DEFAULT_MERGE_GAP))
        self.min_segment = float(os.environ.get("MIN_SEGMENT_SECONDS", DEFAULT_MIN_SEGMENT))
        self.max_render_workers = int(os.environ.get("MAX_RENDER_WORKERS", _default_workers()))
        # 0 disables the per-run deadline
        self.timeout = float(os.environ.get("PIPELINE_TIMEOUT", "0")) or None
        self.output_root = os.environ.get("OUTPUT_ROOT", DEFAULT_OUTPUT_ROOT)
        self.temp_root = os.environ.get("TEMP_ROOT", DEFAULT_TEMP_ROOT)
        self.renderer = os.environ.get("RENDERER", "ffmpeg").lower()

        if self.merge_gap < 0:
            raise ValueError(f"MERGE_GAP_SECONDS must be >= 0, got {self.merge_gap}")
        if self.max_render_workers < 1:
            raise ValueError(f"MAX_RENDER_WORKERS must be >= 1, got {self.max_render_workers}")

    def get_api_key(self) -> Optional[str]:
        return self.api_key or None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "debug": self.debug,
            "api_url": self.api_url,
            "model": self.model,
            "has_api_key": bool(self.api_key),
            "ffmpeg_path": self.ffmpeg_path,
            "merge_gap": self.merge_gap,
            "min_segment": self.min_segment,
            "max_render_workers": self.max_render_workers,
            "timeout": self.timeout,
            "output_root": self.output_root,
            "temp_root": self.temp_root,
            "renderer": self.renderer,
        }


def get_config() -> Config:
    return Config()


def job_directories(cfg: Config, caller_id: str = "anonymous", timestamp_ms: Optional[int] = None) -> Tuple[str, str]:
    """Per-run (output_dir, temp_dir), namespaced by caller and a millisecond timestamp."""
    stamp = str(timestamp_ms if timestamp_ms is not None else int(time.time() * 1000))
    caller = Path(caller_id).name or "anonymous"
    return (
        str(Path(cfg.output_root) / caller / stamp),
        str(Path(cfg.temp_root) / caller / stamp),
    )


def build_options(
    cfg: Config,
    caller_id: str = "anonymous",
    save_debug_response: bool = False,
    cleanup: bool = True,
    timeout: Optional[float] = None,
) -> PipelineOptions:
    output_dir, temp_dir = job_directories(cfg, caller_id)
    return PipelineOptions(
        output_dir=output_dir,
        temp_dir=temp_dir,
        save_debug_response=save_debug_response,
        cleanup=cleanup,
        timeout=timeout if timeout is not None else cfg.timeout,
        merge_gap=cfg.merge_gap,
    )


def create_audio_adapter(cfg: Config):
    """Create the audio extraction adapter (always FFmpeg). Fails fast without ffmpeg."""
    from speaker_split.adapters.ffmpeg.audio import FFmpegAudioAdapter
    return FFmpegAudioAdapter(cfg.ffmpeg_path)


def create_diarization_adapter(cfg: Config):
    from speaker_split.adapters.deepgram.diarization import DeepgramDiarizationAdapter
    return DeepgramDiarizationAdapter(api_url=cfg.api_url, model=cfg.model)


def create_renderer(cfg: Config):
    """Create the clip renderer based on RENDERER env var.

    Uses lazy imports so the unused backend is never loaded.
    """
    if cfg.renderer == "ffmpeg":
        from speaker_split.adapters.ffmpeg.render import FFmpegClipRenderer
        renderer = FFmpegClipRenderer(cfg.ffmpeg_path, min_segment=cfg.min_segment)
    elif cfg.renderer == "pcm":
        from speaker_split.adapters.memory.render import PCMClipRenderer
        renderer = PCMClipRenderer(min_segment=cfg.min_segment)
    else:
        raise ValueError(f"Unknown RENDERER: {cfg.renderer!r}. Valid options: ffmpeg, pcm")

    logger.info(f"Renderer: {type(renderer).__name__}")
    return renderer


def create_use_case(cfg: Config):
    from speaker_split.adapters.local.log_progress import LogProgressAdapter
    from speaker_split.use_cases.separate_speakers import SeparateSpeakersUseCase

    return SeparateSpeakersUseCase(
        audio=create_audio_adapter(cfg),
        diarization=create_diarization_adapter(cfg),
        renderer=create_renderer(cfg),
        progress=LogProgressAdapter(),
        max_workers=cfg.max_render_workers,
    )
