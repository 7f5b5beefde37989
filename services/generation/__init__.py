"""
Generation

Caller-facing dispatch, job status resolution and client-side watching.
"""

from .service import GenerationService
from .status import JobResolutionPoller, normalize_operation_status, normalize_task_status
from .watcher import JobWatcher

__all__ = [
    "GenerationService",
    "JobResolutionPoller",
    "JobWatcher",
    "normalize_operation_status",
    "normalize_task_status",
]
