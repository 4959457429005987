"""Core data models for the scan pipeline.

Working directory layout (one run, recreated from scratch every time):

    <work_root>/alicevision_work/
        cameraInit.sfm
        imageMatches.txt
        sfm.sfm
        dense/
            mvs.sfm
            *_depthMap.exr
        mesh.obj
        job_report.json
    <work_root>/input_raw/
        input_file
    <work_root>/input_images/
        *.jpg                   (flat, no sub-directories)
    <work_root>/final_output/
        printable_model.obj
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from .utils.gcs import GCSPath
from .utils.io import reset_dir


class InputKind(Enum):
    """How the downloaded object is turned into still images."""
    ARCHIVE = "archive"
    VIDEO = "video"


@dataclass(frozen=True)
class JobParameters:
    """Externally supplied job parameters; fixed for the whole run."""

    source_bucket: str
    source_key: str
    destination_bucket: str

    @property
    def source(self) -> GCSPath:
        return GCSPath.from_parts(self.source_bucket, self.source_key)

    @property
    def source_uri(self) -> str:
        return self.source.uri

    def to_dict(self) -> Dict[str, str]:
        return {
            "source_bucket": self.source_bucket,
            "source_key": self.source_key,
            "destination_bucket": self.destination_bucket,
        }


@dataclass(frozen=True)
class WorkPaths:
    """Conventional per-run paths shared by every stage."""

    work_dir: Path
    input_raw: Path
    input_images: Path
    final_output: Path

    @classmethod
    def under(cls, root: Path) -> "WorkPaths":
        root = Path(root)
        return cls(
            work_dir=root / "alicevision_work",
            input_raw=root / "input_raw",
            input_images=root / "input_images",
            final_output=root / "final_output",
        )

    @property
    def directories(self) -> List[Path]:
        return [self.work_dir, self.input_raw, self.input_images, self.final_output]

    def reset(self) -> "WorkPaths":
        """Wipe and recreate all run directories."""
        for directory in self.directories:
            reset_dir(directory)
        return self

    @property
    def input_file(self) -> Path:
        return self.input_raw / "input_file"

    @property
    def camera_init(self) -> Path:
        return self.work_dir / "cameraInit.sfm"

    @property
    def image_matches(self) -> Path:
        return self.work_dir / "imageMatches.txt"

    @property
    def sfm(self) -> Path:
        return self.work_dir / "sfm.sfm"

    @property
    def dense_dir(self) -> Path:
        return self.work_dir / "dense"

    @property
    def dense_sfm(self) -> Path:
        return self.dense_dir / "mvs.sfm"

    @property
    def raw_mesh(self) -> Path:
        return self.work_dir / "mesh.obj"

    @property
    def printable_mesh(self) -> Path:
        return self.final_output / "printable_model.obj"

    @property
    def report(self) -> Path:
        return self.work_dir / "job_report.json"


@dataclass(frozen=True)
class ToolchainEnvironment:
    """Located AliceVision installation.

    ``subprocess_env`` builds the environment handed to each child process;
    the orchestrating process's own environment is left untouched.
    """

    root: Path
    config_file: Path

    @property
    def bin_dir(self) -> Path:
        return self.root / "bin"

    @property
    def lib_dir(self) -> Path:
        return self.root / "lib"

    @property
    def sensor_db(self) -> Path:
        return self.root / "share" / "aliceVision" / "cameraSensors.db"

    def subprocess_env(self, base: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        env = dict(os.environ if base is None else base)
        env["ALICEVISION_ROOT"] = str(self.root)
        env["ALICEVISION_SENSOR_DB"] = str(self.sensor_db)
        env["OCIO"] = str(self.config_file)
        env["PATH"] = _prepend_path(str(self.bin_dir), env.get("PATH"))
        env["LD_LIBRARY_PATH"] = _prepend_path(str(self.lib_dir), env.get("LD_LIBRARY_PATH"))
        return env

    def executable(self, name: str) -> str:
        """Full path of a toolchain binary when installed, else the bare name."""
        candidate = self.bin_dir / name
        return str(candidate) if candidate.exists() else name

    def to_dict(self) -> Dict[str, str]:
        return {
            "root": str(self.root),
            "bin_dir": str(self.bin_dir),
            "lib_dir": str(self.lib_dir),
            "sensor_db": str(self.sensor_db),
            "config_file": str(self.config_file),
        }


def _prepend_path(entry: str, current: Optional[str]) -> str:
    if not current:
        return entry
    return f"{entry}{os.pathsep}{current}"
