"""Jobs layer: 백그라운드 생성 작업."""

from .job import GenerationJob, GenerationListener
from .orchestrator import JobOrchestrator, OutputDestination

__all__ = [
    "GenerationJob",
    "GenerationListener",
    "JobOrchestrator",
    "OutputDestination",
]
