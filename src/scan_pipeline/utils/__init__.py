"""Utility modules for the scan pipeline."""
from __future__ import annotations

from .gcs import GCSClient, GCSPath
from .gpu import GPUInfo, detect_accelerator, get_available_gpu
from .logging import setup_logging, get_logger, PhaseMetrics, ProgressTracker
from .io import (
    ensure_local_dir,
    reset_dir,
    compute_checksum,
    count_files,
    describe_tree,
    save_json,
    load_json,
    save_image,
    FrameWriter,
)

__all__ = [
    # GCS
    "GCSClient",
    "GCSPath",
    # GPU
    "GPUInfo",
    "detect_accelerator",
    "get_available_gpu",
    # Logging
    "setup_logging",
    "get_logger",
    "PhaseMetrics",
    "ProgressTracker",
    # I/O
    "ensure_local_dir",
    "reset_dir",
    "compute_checksum",
    "count_files",
    "describe_tree",
    "save_json",
    "load_json",
    "save_image",
    "FrameWriter",
]
