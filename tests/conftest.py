from __future__ import annotations

import subprocess
import time
from typing import Callable, Optional

import numpy as np
import pytest
import soundfile

from speaker_split.adapters.ffmpeg import process as ffmpeg_process
from speaker_split.domain.models import (
    SAMPLE_RATE,
    DiarizationTranscript,
    JobContext,
    NormalizedAudio,
    TranscriptWord,
)
from speaker_split.ports.audio import AudioExtractionPort
from speaker_split.ports.diarization import DiarizationPort
from speaker_split.ports.progress import ProgressPort

HANG = object()


def write_tone(path, seconds: float, sample_rate: int = SAMPLE_RATE) -> str:
    t = np.arange(int(seconds * sample_rate)) / sample_rate
    tone = (0.3 * np.sin(2 * np.pi * 220 * t) * 32767).astype(np.int16)
    soundfile.write(str(path), tone, sample_rate, subtype="PCM_16")
    return str(path)


class FakeProcess:
    """Stands in for subprocess.Popen; the handler decides each call's outcome."""

    def __init__(self, cmd, handler):
        self.cmd = cmd
        self.pid = 4242
        self.returncode: Optional[int] = None
        self.killed = False
        self._handler = handler

    def communicate(self, timeout=None):
        if self.killed:
            self.returncode = -9
            return "", ""
        outcome = self._handler(self.cmd)
        if outcome is HANG:
            time.sleep(timeout or 0)
            raise subprocess.TimeoutExpired(self.cmd, timeout)
        self.returncode, stderr = outcome
        return "", stderr

    def poll(self):
        return self.returncode

    def kill(self):
        self.killed = True


class FakeFFmpeg:
    def __init__(self, handler: Callable):
        self.handler = handler
        self.processes: list[FakeProcess] = []

    def __call__(self, cmd, **kwargs):
        proc = FakeProcess(cmd, self.handler)
        self.processes.append(proc)
        return proc

    @property
    def commands(self):
        return [p.cmd for p in self.processes]


@pytest.fixture
def fake_ffmpeg(monkeypatch, tmp_path):
    """Patch Popen in the ffmpeg runner and point FFMPEG_PATH at a dummy binary."""
    binary = tmp_path / "bin" / "ffmpeg"
    binary.parent.mkdir()
    binary.write_text("#!/bin/sh\n")
    monkeypatch.setenv("FFMPEG_PATH", str(binary))

    def install(handler: Callable) -> FakeFFmpeg:
        fake = FakeFFmpeg(handler)
        monkeypatch.setattr(ffmpeg_process.subprocess, "Popen", fake)
        return fake

    return install


@pytest.fixture
def ctx():
    return JobContext.create("testjob")


class ToneAudioAdapter(AudioExtractionPort):
    """Writes a fixed-length tone instead of calling ffmpeg."""

    def __init__(self, seconds: float = 8.0, error: Optional[Exception] = None):
        self.seconds = seconds
        self.error = error
        self.calls = 0

    def extract(self, source_path, output_path, ctx):
        self.calls += 1
        if self.error:
            raise self.error
        write_tone(output_path, self.seconds)
        return NormalizedAudio(path=output_path)


class StaticDiarization(DiarizationPort):
    def __init__(self, words=None, duration: float = 0.0, raw=None, error: Optional[Exception] = None):
        self.words = words or []
        self.duration = duration
        self.raw = raw if raw is not None else {"results": {}}
        self.error = error

    def provider_name(self) -> str:
        return "static"

    def diarize(self, audio_path, api_key, ctx):
        if self.error:
            raise self.error
        return DiarizationTranscript(words=list(self.words), duration=self.duration, raw=self.raw)


class RecordingProgress(ProgressPort):
    def __init__(self):
        self.stages: list[str] = []

    def report(self, job_id, stage, progress=0.0, detail=None):
        self.stages.append(stage)


def words(*triples) -> list[TranscriptWord]:
    return [TranscriptWord(start=s, end=e, speaker=spk) for s, e, spk in triples]
