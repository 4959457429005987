"""Sequential, fail-fast execution of the photogrammetry stages."""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional

from .errors import PipelineError, StageExecutionError
from .models import ToolchainEnvironment
from .stages import CommandRunner, PhotogrammetryStage, run_command
from .utils.io import ensure_local_dir
from .utils.logging import get_logger


@dataclass
class StageResult:
    """Result of a single photogrammetry stage."""
    stage: PhotogrammetryStage
    start_time: float
    end_time: float
    returncode: Optional[int] = None
    metrics: Dict[str, Any] = field(default_factory=dict)
    outputs: Dict[str, bool] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def duration_seconds(self) -> float:
        return self.end_time - self.start_time

    @property
    def success(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "number": self.stage.number,
            "stage": self.stage.name.value,
            "success": self.success,
            "returncode": self.returncode,
            "duration_seconds": self.duration_seconds,
            "metrics": self.metrics,
            "outputs": self.outputs,
            "error": self.error,
        }


@dataclass
class SequenceResult:
    """Result of running the stage sequence."""
    stages: List[StageResult] = field(default_factory=list)
    total_duration_seconds: float = 0.0
    success: bool = False
    error_message: Optional[str] = None

    @property
    def completed_stages(self) -> List[str]:
        return [sr.stage.name.value for sr in self.stages if sr.success]

    def metric(self, name: str, default: Any = None) -> Any:
        for sr in self.stages:
            if name in sr.metrics:
                return sr.metrics[name]
        return default

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "total_duration_seconds": self.total_duration_seconds,
            "error_message": self.error_message,
            "stages": [sr.to_dict() for sr in self.stages],
        }


class StageSequencer:
    """Run stages strictly in order, stopping at the first failure.

    Each stage runs as a blocking child process in ``cwd`` with ``env``.
    A non-zero exit or a failed output check raises immediately; no later
    stage is started. ``result`` reflects progress up to that point, and
    ``on_stage_done`` is called after each stage that succeeds.
    """

    def __init__(
        self,
        stages: List[PhotogrammetryStage],
        env: Mapping[str, str],
        cwd: Path,
        runner: CommandRunner = run_command,
        toolchain: Optional[ToolchainEnvironment] = None,
        on_stage_done: Optional[Callable[[StageResult], None]] = None,
    ):
        self.stages = stages
        self.env = env
        self.cwd = cwd
        self.runner = runner
        self.toolchain = toolchain
        self.on_stage_done = on_stage_done
        self.result = SequenceResult()
        self.logger = get_logger("orchestrator")

    def run(self) -> SequenceResult:
        start_time = time.time()
        try:
            for stage in self.stages:
                self._run_stage(stage)
            self.result.success = True
        except PipelineError as e:
            self.result.error_message = e.message
            raise
        finally:
            self.result.total_duration_seconds = time.time() - start_time
        return self.result

    def _run_stage(self, stage: PhotogrammetryStage) -> StageResult:
        self.logger.info(f"{stage.label}...")
        for directory in stage.prepare_dirs:
            ensure_local_dir(directory)

        stage_result = StageResult(stage=stage, start_time=time.time(), end_time=time.time())
        self.result.stages.append(stage_result)

        try:
            completed = self.runner(stage.command(self.toolchain), self.env, self.cwd)
            stage_result.returncode = completed.returncode
            if completed.returncode != 0:
                raise StageExecutionError(
                    f"Step {stage.number}/{len(self.stages)} {stage.name.value} "
                    f"exited with status {completed.returncode}",
                    details={
                        "stage": stage.name.value,
                        "returncode": completed.returncode,
                        "stderr_tail": _tail(completed.stderr),
                    },
                )

            for validator in stage.validators:
                stage_result.metrics.update(validator() or {})
            stage_result.outputs = self._check_outputs(stage)
        except PipelineError as e:
            stage_result.error = e.message
            raise
        finally:
            stage_result.end_time = time.time()

        self.logger.info(
            f"{stage.label} completed in {stage_result.duration_seconds:.1f}s"
        )
        if self.on_stage_done is not None:
            self.on_stage_done(stage_result)
        return stage_result

    def _check_outputs(self, stage: PhotogrammetryStage) -> Dict[str, bool]:
        """Which declared outputs exist. Only validators can fail a stage."""
        present = {str(path): path.exists() for path in stage.outputs}
        for path, exists in present.items():
            if not exists:
                self.logger.warning(f"{stage.label} did not produce {path}")
        return present


def _tail(text: str, lines: int = 20) -> str:
    if not text:
        return ""
    return "\n".join(text.rstrip().splitlines()[-lines:])
