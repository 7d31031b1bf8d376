"""Speaker separation pipeline: one clean audio clip per diarized speaker."""

__version__ = "0.1.0"
