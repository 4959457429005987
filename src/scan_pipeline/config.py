"""Job configuration.

Values are merged in this order, later sources winning:
built-in defaults, an optional YAML file, environment variables, and
explicit overrides (normally CLI flags).
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional

from .errors import ConfigurationError
from .models import JobParameters, WorkPaths


DEFAULT_CLEANUP_SCRIPT = Path(__file__).resolve().parent / "blender" / "cleanup_mesh.py"


@dataclass
class PipelineConfig:
    """Settings for one scan-to-print run."""

    # Job parameters (required)
    source_bucket: str = ""
    source_key: str = ""
    destination_bucket: str = ""

    # Environment
    toolchain_search_root: Path = field(default_factory=lambda: Path("/opt"))
    toolchain_marker: str = "config.ocio"
    work_root: Path = field(default_factory=lambda: Path("/tmp"))

    # Input staging
    frame_rate: float = 2.0
    jpeg_quality: int = 95

    # Photogrammetry stages
    default_field_of_view: int = 45
    describer_types: str = "sift"
    matching_method: str = "Exhaustive"
    min_solved_cameras: int = 3
    depth_map_downscale: int = 2
    max_points: int = 5_000_000
    verbose_level: str = "warning"

    # Mesh cleanup
    decimation_ratio: float = 0.005
    cleanup_script: Path = field(default_factory=lambda: DEFAULT_CLEANUP_SCRIPT)
    blender_executable: str = "blender"

    # Publishing
    output_suffix: str = "_printable.obj"
    output_content_type: str = "model/obj"

    @property
    def job_parameters(self) -> JobParameters:
        return JobParameters(
            source_bucket=self.source_bucket,
            source_key=self.source_key,
            destination_bucket=self.destination_bucket,
        )

    @property
    def paths(self) -> WorkPaths:
        return WorkPaths.under(self.work_root)

    def validate(self) -> "PipelineConfig":
        """Raise ConfigurationError when the configuration cannot run."""
        missing = [
            env
            for attr, env in (
                ("source_bucket", "INPUT_BUCKET"),
                ("source_key", "INPUT_KEY"),
                ("destination_bucket", "OUTPUT_BUCKET"),
            )
            if not getattr(self, attr)
        ]
        if missing:
            raise ConfigurationError(
                f"Missing required job parameters: {', '.join(missing)}",
                details={"missing": missing},
            )
        if self.frame_rate <= 0:
            raise ConfigurationError(f"frame_rate must be positive, got {self.frame_rate}")
        if not 0 < self.decimation_ratio <= 1:
            raise ConfigurationError(
                f"decimation_ratio must be in (0, 1], got {self.decimation_ratio}"
            )
        if self.min_solved_cameras < 1:
            raise ConfigurationError(
                f"min_solved_cameras must be at least 1, got {self.min_solved_cameras}"
            )
        if not 1 <= self.jpeg_quality <= 100:
            raise ConfigurationError(f"jpeg_quality must be in [1, 100], got {self.jpeg_quality}")
        return self

    def with_overrides(self, overrides: Mapping[str, Any]) -> "PipelineConfig":
        """Return a copy with the non-None ``overrides`` applied."""
        known = {f.name for f in fields(self)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {', '.join(unknown)}")
        coerced = {
            key: _coerce(key, value)
            for key, value in overrides.items()
            if value is not None
        }
        return replace(self, **coerced)

    def to_dict(self) -> Dict[str, Any]:
        return {
            f.name: str(getattr(self, f.name)) if isinstance(getattr(self, f.name), Path)
            else getattr(self, f.name)
            for f in fields(self)
        }


# Environment variable -> config attribute
ENV_VARS: Dict[str, str] = {
    "INPUT_BUCKET": "source_bucket",
    "INPUT_KEY": "source_key",
    "OUTPUT_BUCKET": "destination_bucket",
    "TOOLCHAIN_SEARCH_ROOT": "toolchain_search_root",
    "WORK_ROOT": "work_root",
    "FRAME_RATE": "frame_rate",
    "MIN_SOLVED_CAMERAS": "min_solved_cameras",
    "DECIMATION_RATIO": "decimation_ratio",
    "ALICEVISION_VERBOSE_LEVEL": "verbose_level",
    "CLEANUP_SCRIPT": "cleanup_script",
    "BLENDER_EXECUTABLE": "blender_executable",
}

_CONVERTERS: Dict[str, Callable[[Any], Any]] = {
    "toolchain_search_root": Path,
    "work_root": Path,
    "cleanup_script": Path,
    "frame_rate": float,
    "decimation_ratio": float,
    "jpeg_quality": int,
    "default_field_of_view": int,
    "min_solved_cameras": int,
    "depth_map_downscale": int,
    "max_points": int,
}


def _coerce(key: str, value: Any) -> Any:
    converter = _CONVERTERS.get(key)
    if converter is None:
        return value
    try:
        return converter(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid value for {key}: {value!r} ({e})")


def load_yaml_config(path: Path) -> Dict[str, Any]:
    """Load configuration values from a YAML mapping."""
    try:
        import yaml
    except ImportError:
        raise ImportError("pyyaml is required for YAML configuration files")

    if not path.exists():
        raise ConfigurationError(f"Configuration file not found: {path}")
    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration file must contain a mapping: {path}")
    return data


def config_from_environ(environ: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """Collect configuration values from environment variables."""
    environ = os.environ if environ is None else environ
    return {
        attr: environ[var]
        for var, attr in ENV_VARS.items()
        if environ.get(var)
    }


def load_config(
    config_file: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> PipelineConfig:
    """Build and validate a PipelineConfig from all sources."""
    config = PipelineConfig()
    if config_file is not None:
        config = config.with_overrides(load_yaml_config(Path(config_file)))
    config = config.with_overrides(config_from_environ(environ))
    if overrides:
        config = config.with_overrides(overrides)
    return config.validate()
