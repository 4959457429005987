"""Pipeline job implementations."""

from .base import BaseJob, GPUJob, JobContext, JobResult, JobStatus
from .scan_to_print import ScanToPrintJob

__all__ = [
    # Base classes
    "BaseJob",
    "GPUJob",
    "JobContext",
    "JobResult",
    "JobStatus",
    # Job implementations
    "ScanToPrintJob",
]
