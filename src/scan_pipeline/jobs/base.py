"""Base classes for pipeline jobs."""
from __future__ import annotations

import logging
import os
import time
from abc import abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..config import PipelineConfig
from ..errors import DataQualityError, ErrorCategory, PipelineError
from ..models import JobParameters, ToolchainEnvironment, WorkPaths
from ..utils.gcs import GCSClient
from ..utils.gpu import detect_accelerator, get_available_gpu
from ..utils.io import save_json
from ..utils.logging import ProgressTracker, get_logger, setup_logging


class JobStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class JobResult:
    """Outcome of one run; ``exit_code`` is what the container exits with."""
    status: JobStatus
    outputs: Dict[str, str] = field(default_factory=dict)
    metrics: Dict[str, Any] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)
    error_category: Optional[str] = None
    duration_seconds: float = 0.0

    @property
    def exit_code(self) -> int:
        return 0 if self.status == JobStatus.COMPLETED else 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "outputs": self.outputs,
            "metrics": self.metrics,
            "errors": self.errors,
            "error_category": self.error_category,
            "duration_seconds": self.duration_seconds,
        }


def running_in_cloud() -> bool:
    """True inside Cloud Run services and jobs."""
    return bool(os.environ.get("K_SERVICE") or os.environ.get("CLOUD_RUN_JOB"))


@dataclass
class JobContext:
    """Everything a running job needs: parameters, paths, clients, tracker."""
    config: PipelineConfig
    parameters: JobParameters
    paths: WorkPaths
    gcs: GCSClient
    tracker: ProgressTracker
    logger: logging.Logger
    toolchain: Optional[ToolchainEnvironment] = None
    gpu_available: bool = False
    workspace_ready: bool = False

    @classmethod
    def create(
        cls,
        config: PipelineConfig,
        job_name: str,
        gcs: Optional[GCSClient] = None,
        cloud_logging: Optional[bool] = None,
        log_level: int = logging.INFO,
    ) -> "JobContext":
        parameters = config.job_parameters
        logger = setup_logging(
            level=log_level,
            job_name=job_name,
            source_uri=parameters.source_uri,
            cloud_logging=running_in_cloud() if cloud_logging is None else cloud_logging,
        )
        tracker = ProgressTracker(
            job_name=job_name,
            source_uri=parameters.source_uri,
            logger=logger,
        )
        return cls(
            config=config,
            parameters=parameters,
            paths=config.paths,
            gcs=gcs or GCSClient(),
            tracker=tracker,
            logger=logger,
        )

    def prepare_workspace(self) -> WorkPaths:
        """Wipe and recreate the run directories; the report is written only after this."""
        self.paths.reset()
        self.workspace_ready = True
        return self.paths


@dataclass
class BaseJob:
    """Base class for pipeline jobs.

    ``run`` owns the job lifecycle; subclasses provide ``_execute``.
    """

    name: str

    def run(
        self,
        config: PipelineConfig,
        gcs: Optional[GCSClient] = None,
        cloud_logging: Optional[bool] = None,
        log_level: int = logging.INFO,
    ) -> JobResult:
        """Run the job end to end and classify any failure.

        Pipeline failures never escape: they come back as a FAILED result
        carrying the error category. A JSON report is written once this
        run has prepared its work directory.
        """
        start_time = time.time()
        result = JobResult(status=JobStatus.RUNNING)
        ctx: Optional[JobContext] = None

        try:
            ctx = JobContext.create(
                config=config,
                job_name=self.name,
                gcs=gcs,
                cloud_logging=cloud_logging,
                log_level=log_level,
            )

            ctx.logger.info(f"Starting job: {self.name}")
            ctx.logger.info(f"Source: {ctx.parameters.source_uri}")
            ctx.logger.info(f"Destination bucket: {ctx.parameters.destination_bucket}")

            self._validate_prerequisites(ctx)

            result = self._execute(ctx)
            result.status = JobStatus.COMPLETED
            ctx.logger.info(f"Job completed successfully: {self.name}")

        except PipelineError as e:
            result.status = JobStatus.FAILED
            result.errors.append(e.message)
            result.error_category = e.category.value
            self._log_failure(ctx, e)

        except Exception as e:
            result.status = JobStatus.FAILED
            result.errors.append(str(e))
            result.error_category = ErrorCategory.INTERNAL.value
            (ctx.logger if ctx else get_logger(self.name)).error(
                f"Job failed: {e}", exc_info=True
            )

        finally:
            result.duration_seconds = time.time() - start_time
            if ctx is not None:
                self._write_report(ctx, result)

        return result

    def _log_failure(self, ctx: Optional[JobContext], error: PipelineError) -> None:
        logger = ctx.logger if ctx else get_logger(self.name)
        logger.error(f"FATAL ERROR [{error.category.value}]: {error.message}")
        if isinstance(error, DataQualityError):
            logger.error(DataQualityError.guidance)
        for key, value in error.details.items():
            if key == "listing":
                logger.error(f"DEBUG: directory listing:\n{value}")
            elif value not in (None, "", [], {}):
                logger.error(f"  {key}: {value}")

    def _write_report(self, ctx: JobContext, result: JobResult) -> None:
        if not ctx.workspace_ready:
            return
        report = ctx.tracker.report()
        report["result"] = result.to_dict()
        result.metrics.setdefault("report_path", str(ctx.paths.report))
        save_json(report, ctx.paths.report)

    @abstractmethod
    def _execute(self, ctx: JobContext) -> JobResult:
        """Job body. Raise a PipelineError subclass to fail with a category."""
        raise NotImplementedError

    def _validate_prerequisites(self, ctx: JobContext) -> None:
        """Checks that must pass before any work is done."""


@dataclass
class GPUJob(BaseJob):
    """Base class for jobs that use an accelerator when one is present.

    The probe runs once per job; its answer is stored on the context and
    never re-evaluated. A missing GPU is a degraded mode, not an error.
    """

    def _validate_prerequisites(self, ctx: JobContext) -> None:
        """Probe for a GPU and record the capability flag."""
        super()._validate_prerequisites(ctx)

        ctx.gpu_available = detect_accelerator()
        ctx.tracker.log_metric("gpu_available", ctx.gpu_available)

        if ctx.gpu_available:
            gpu = get_available_gpu()
            detail = f": {gpu.name} ({gpu.memory_total_gb:.1f}GB)" if gpu else ""
            ctx.logger.info(f"Hardware: NVIDIA GPU detected{detail}. Enabling GPU acceleration.")
        else:
            ctx.logger.warning("Hardware: No GPU detected. Running in CPU mode (slower).")
