"""ProgressPort — where the orchestrator announces stage transitions of a run."""

from abc import ABC, abstractmethod
from typing import Optional

# Order in which a successful run passes through the stages.
PIPELINE_STAGES = ("extracting", "diarizing", "segmenting", "rendering", "cleanup", "done")
TERMINAL_STAGES = frozenset({"done", "failed"})


class ProgressPort(ABC):
    @abstractmethod
    def report(
        self,
        job_id: str,
        stage: str,
        progress: float = 0.0,
        detail: Optional[str] = None,
    ) -> None:
        """Report a stage transition for one run.

        "rendering" may be reported repeatedly with a growing progress
        fraction. Every run ends with exactly one terminal stage.
        """
