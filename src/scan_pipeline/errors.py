"""Exception hierarchy for fatal pipeline conditions.

Every fatal condition maps onto one category so operators can tell a
configuration problem from a bad photoset from a toolchain defect. All of
them terminate the job with exit status 1.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCategory(str, Enum):
    """Category of a fatal pipeline error."""

    CONFIGURATION = "configuration"
    INPUT = "input"
    DATA = "data"
    STAGE_OUTPUT = "stage_output"
    STAGE_EXECUTION = "stage_execution"
    INTERNAL = "internal"


class PipelineError(Exception):
    """Base class for all fatal pipeline errors."""

    category: ErrorCategory = ErrorCategory.INTERNAL
    exit_code: int = 1

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(PipelineError):
    """Toolchain installation not found or job parameters invalid."""

    category = ErrorCategory.CONFIGURATION


class InputError(PipelineError):
    """The downloaded object cannot be turned into a folder of images."""

    category = ErrorCategory.INPUT


class DataQualityError(PipelineError):
    """The toolchain ran correctly but the photos cannot be reconstructed."""

    category = ErrorCategory.DATA

    guidance = (
        "This is NOT a software error. It is a PHOTO error: retake the photos "
        "with more overlap, texture and sharper focus."
    )


class StageOutputError(PipelineError):
    """A stage exited successfully but its declared output is missing."""

    category = ErrorCategory.STAGE_OUTPUT


class StageExecutionError(PipelineError):
    """An external executable could not be launched or exited non-zero."""

    category = ErrorCategory.STAGE_EXECUTION
