"""The nine AliceVision stages and how each one is invoked."""
from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol

from .config import PipelineConfig
from .errors import StageExecutionError
from .models import ToolchainEnvironment, WorkPaths
from .utils.logging import get_logger
from .validators import require_exists, require_non_empty, require_solved_cameras


logger = get_logger("stages")


class StageName(Enum):
    """Photogrammetry stages, in execution order."""
    CAMERA_INIT = "CameraInit"
    FEATURE_EXTRACTION = "FeatureExtraction"
    IMAGE_MATCHING = "ImageMatching"
    FEATURE_MATCHING = "FeatureMatching"
    INCREMENTAL_SFM = "IncrementalSfM"
    PREPARE_DENSE_SCENE = "PrepareDenseScene"
    DEPTH_MAP_ESTIMATION = "DepthMap"
    DEPTH_MAP_FILTERING = "DepthMapFilter"
    MESHING = "Meshing"


EXECUTABLES: Dict[StageName, str] = {
    StageName.CAMERA_INIT: "aliceVision_cameraInit",
    StageName.FEATURE_EXTRACTION: "aliceVision_featureExtraction",
    StageName.IMAGE_MATCHING: "aliceVision_imageMatching",
    StageName.FEATURE_MATCHING: "aliceVision_featureMatching",
    StageName.INCREMENTAL_SFM: "aliceVision_incrementalSfM",
    StageName.PREPARE_DENSE_SCENE: "aliceVision_prepareDenseScene",
    StageName.DEPTH_MAP_ESTIMATION: "aliceVision_depthMapEstimation",
    StageName.DEPTH_MAP_FILTERING: "aliceVision_depthMapFiltering",
    StageName.MESHING: "aliceVision_meshing",
}

STAGE_ORDER: List[StageName] = list(StageName)

# Post-stage check; may return metrics to record for the stage
Validator = Callable[[], Optional[Dict[str, Any]]]


@dataclass
class PhotogrammetryStage:
    """One external-tool invocation in the fixed sequence."""

    number: int
    name: StageName
    arguments: List[str]
    outputs: List[Path] = field(default_factory=list)
    prepare_dirs: List[Path] = field(default_factory=list)
    validators: List[Validator] = field(default_factory=list)

    @property
    def executable(self) -> str:
        return EXECUTABLES[self.name]

    @property
    def label(self) -> str:
        return f"[Step {self.number}/{len(STAGE_ORDER)}] {self.name.value}"

    def command(self, toolchain: Optional[ToolchainEnvironment] = None) -> List[str]:
        program = toolchain.executable(self.executable) if toolchain else self.executable
        return [program, *self.arguments]


@dataclass
class CommandResult:
    """Exit status and captured output of one child process."""
    returncode: int
    stdout: str = ""
    stderr: str = ""


class CommandRunner(Protocol):
    def __call__(
        self,
        command: List[str],
        env: Mapping[str, str],
        cwd: Path,
    ) -> CommandResult: ...


def run_command(command: List[str], env: Mapping[str, str], cwd: Path) -> CommandResult:
    """Run a child process to completion, blocking without a timeout.

    Raises:
        StageExecutionError: If the executable cannot be launched.
    """
    logger.debug(f"Running: {' '.join(command)}")
    try:
        completed = subprocess.run(
            command,
            env=dict(env),
            cwd=str(cwd),
            capture_output=True,
            text=True,
        )
    except (FileNotFoundError, PermissionError) as e:
        raise StageExecutionError(
            f"Could not launch {command[0]}: {e}",
            details={"command": command},
        )

    if completed.stdout:
        logger.debug(completed.stdout.rstrip())
    if completed.stderr:
        # AliceVision reports progress on stderr
        level = logging.DEBUG if completed.returncode == 0 else logging.WARNING
        logger.log(level, completed.stderr.rstrip())
    return CommandResult(completed.returncode, completed.stdout, completed.stderr)


def _verbose(config: PipelineConfig) -> List[str]:
    return ["--verboseLevel", config.verbose_level]


def build_stages(
    paths: WorkPaths,
    toolchain: ToolchainEnvironment,
    config: PipelineConfig,
    gpu_available: bool,
    image_count: Optional[int] = None,
) -> List[PhotogrammetryStage]:
    """Build the nine stages with their argument templates and output checks.

    Args:
        paths: Working-directory layout for this run.
        toolchain: Located AliceVision installation.
        config: Job configuration.
        gpu_available: Accelerator probe result; feature extraction is
            forced onto the CPU when False.
        image_count: Number of staged images, for the solved-camera report.
    """
    work = str(paths.work_dir)
    camera_init = str(paths.camera_init)
    dense_dir = str(paths.dense_dir)
    dense_sfm = str(paths.dense_sfm)
    force_cpu = "0" if gpu_available else "1"

    def _matches_not_empty():
        require_non_empty(paths.image_matches, StageName.IMAGE_MATCHING.value)
        return {"image_matches_bytes": paths.image_matches.stat().st_size}

    def _cameras_solved():
        solved = require_solved_cameras(
            paths.sfm,
            StageName.INCREMENTAL_SFM.value,
            minimum=config.min_solved_cameras,
            image_count=image_count,
        )
        return {"solved_cameras": solved}

    def _dense_scene_exists():
        require_exists(paths.dense_sfm, "Step 6", listing_dir=paths.dense_dir)
        logger.info(f"  > Found dense SfM file: {paths.dense_sfm}")
        return None

    def _mesh_exists():
        require_exists(paths.raw_mesh, StageName.MESHING.value)
        return {"mesh_bytes": paths.raw_mesh.stat().st_size}

    return [
        PhotogrammetryStage(
            number=1,
            name=StageName.CAMERA_INIT,
            arguments=[
                "--imageFolder", str(paths.input_images),
                "--defaultFieldOfView", str(config.default_field_of_view),
                "--allowSingleView", "1",
                "--sensorDatabase", str(toolchain.sensor_db),
                *_verbose(config),
                "--output", camera_init,
            ],
            outputs=[paths.camera_init],
        ),
        PhotogrammetryStage(
            number=2,
            name=StageName.FEATURE_EXTRACTION,
            arguments=[
                "--input", camera_init,
                "--output", work,
                "--describerTypes", config.describer_types,
                "--forceCpuExtraction", force_cpu,
                *_verbose(config),
            ],
            outputs=[paths.work_dir],
        ),
        PhotogrammetryStage(
            number=3,
            name=StageName.IMAGE_MATCHING,
            arguments=[
                "--input", camera_init,
                "--featuresFolders", work,
                "--output", str(paths.image_matches),
                "--method", config.matching_method,
                *_verbose(config),
            ],
            outputs=[paths.image_matches],
            validators=[_matches_not_empty],
        ),
        PhotogrammetryStage(
            number=4,
            name=StageName.FEATURE_MATCHING,
            arguments=[
                "--input", camera_init,
                "--featuresFolders", work,
                "--imagePairsList", str(paths.image_matches),
                "--describerTypes", config.describer_types,
                *_verbose(config),
                "--output", work,
            ],
            outputs=[paths.work_dir],
        ),
        PhotogrammetryStage(
            number=5,
            name=StageName.INCREMENTAL_SFM,
            arguments=[
                "--input", camera_init,
                "--featuresFolders", work,
                "--matchesFolders", work,
                *_verbose(config),
                "--output", str(paths.sfm),
            ],
            outputs=[paths.sfm],
            validators=[_cameras_solved],
        ),
        PhotogrammetryStage(
            number=6,
            name=StageName.PREPARE_DENSE_SCENE,
            # Explicit output filename; the tool's default naming varies by release
            arguments=[
                "--input", str(paths.sfm),
                "--output", dense_sfm,
                *_verbose(config),
            ],
            outputs=[paths.dense_sfm],
            prepare_dirs=[paths.dense_dir],
            validators=[_dense_scene_exists],
        ),
        PhotogrammetryStage(
            number=7,
            name=StageName.DEPTH_MAP_ESTIMATION,
            arguments=[
                "--input", dense_sfm,
                "--imagesFolder", dense_dir,
                "--output", dense_dir,
                "--downscale", str(config.depth_map_downscale),
                *_verbose(config),
            ],
            outputs=[paths.dense_dir],
        ),
        PhotogrammetryStage(
            number=8,
            name=StageName.DEPTH_MAP_FILTERING,
            arguments=[
                "--input", dense_sfm,
                "--depthMapsFolder", dense_dir,
                "--output", dense_dir,
                *_verbose(config),
            ],
            outputs=[paths.dense_dir],
        ),
        PhotogrammetryStage(
            number=9,
            name=StageName.MESHING,
            arguments=[
                "--input", dense_sfm,
                "--depthMapsFolder", dense_dir,
                "--output", str(paths.raw_mesh),
                "--estimateSpaceFromSfM", "1",
                "--maxPoints", str(config.max_points),
                *_verbose(config),
            ],
            outputs=[paths.raw_mesh],
            validators=[_mesh_exists],
        ),
    ]
