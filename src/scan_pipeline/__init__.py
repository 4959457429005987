"""Scan-to-print pipeline: photos or video of an object -> printable mesh.

A single-shot batch job that runs inside a container:

    object storage (zip / video)
        -> stage images (flat folder, 2 fps for video)
        -> AliceVision: CameraInit, FeatureExtraction, ImageMatching,
           FeatureMatching, IncrementalSfM, PrepareDenseScene, DepthMap,
           DepthMapFilter, Meshing
        -> Blender cleanup (decimation)
        -> object storage (<basename>_printable.obj)

Every stage is an external executable; this package sequences them,
checks what they produce, and fails fast with a categorised error.
"""

from .config import PipelineConfig, load_config
from .errors import (
    ConfigurationError,
    DataQualityError,
    InputError,
    PipelineError,
    StageExecutionError,
    StageOutputError,
)
from .models import InputKind, JobParameters, ToolchainEnvironment, WorkPaths
from .orchestrator import SequenceResult, StageResult, StageSequencer
from .stages import PhotogrammetryStage, StageName, build_stages
from .toolchain import resolve_toolchain
from .jobs import (
    BaseJob,
    GPUJob,
    JobResult,
    JobStatus,
    ScanToPrintJob,
)


__version__ = "1.0.0"

__all__ = [
    # Version
    "__version__",
    # Configuration
    "PipelineConfig",
    "load_config",
    # Errors
    "PipelineError",
    "ConfigurationError",
    "InputError",
    "DataQualityError",
    "StageOutputError",
    "StageExecutionError",
    # Models
    "InputKind",
    "JobParameters",
    "ToolchainEnvironment",
    "WorkPaths",
    # Stages
    "PhotogrammetryStage",
    "StageName",
    "build_stages",
    "StageSequencer",
    "StageResult",
    "SequenceResult",
    "resolve_toolchain",
    # Jobs
    "BaseJob",
    "GPUJob",
    "JobResult",
    "JobStatus",
    "ScanToPrintJob",
]
