"""Checks on stage artifacts.

Some stages exit 0 and still leave nothing usable behind; these checks
turn that into a fatal, correctly labelled error before the next stage.
"""
from __future__ import annotations

from pathlib import Path
from typing import Optional

from .errors import DataQualityError, StageOutputError
from .utils.io import describe_tree
from .utils.logging import get_logger


POSE_MARKER = '"poseId"'

logger = get_logger("validators")


def require_exists(path: Path, stage_name: str, listing_dir: Optional[Path] = None) -> Path:
    """Fail when a stage's declared output was not created.

    Raises:
        StageOutputError: With a listing of ``listing_dir`` (default: the
            output's parent directory) to show what was produced instead.
    """
    if path.is_file():
        return path

    listing_dir = listing_dir or path.parent
    listing = describe_tree(listing_dir)
    logger.error(f"{stage_name} failed: {path.name} was not created.\n{listing}")
    raise StageOutputError(
        f"{stage_name} failed: {path} was not created",
        details={"expected": str(path), "listing": listing},
    )


def require_non_empty(path: Path, stage_name: str) -> Path:
    """Fail when the image-pair list is missing or zero bytes.

    Raises:
        DataQualityError: The photos share no matchable features.
    """
    if path.is_file() and path.stat().st_size > 0:
        return path
    raise DataQualityError(
        "No image matches found! Photos are too difficult/blurry.",
        details={"stage": stage_name, "path": str(path)},
    )


def count_pose_markers(path: Path, marker: str = POSE_MARKER) -> int:
    """Count occurrences of ``marker`` in a reconstruction file."""
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        return f.read().count(marker)


def require_solved_cameras(
    path: Path,
    stage_name: str,
    minimum: int = 3,
    image_count: Optional[int] = None,
) -> int:
    """Fail when too few cameras were localized by structure-from-motion.

    Returns:
        The number of solved cameras.

    Raises:
        StageOutputError: If the reconstruction file does not exist.
        DataQualityError: If fewer than ``minimum`` cameras were solved.
    """
    require_exists(path, stage_name)
    solved = count_pose_markers(path)
    total = "?" if image_count is None else str(image_count)
    logger.info(f"Completed SfM reconstruction. Solved cameras: {solved} / {total}")

    if solved < minimum:
        raise DataQualityError(
            f"Photogrammetry failed: could only solve {solved} cameras "
            f"(at least {minimum} required). {DataQualityError.guidance}",
            details={
                "stage": stage_name,
                "solved_cameras": solved,
                "minimum": minimum,
                "image_count": image_count,
            },
        )
    return solved
