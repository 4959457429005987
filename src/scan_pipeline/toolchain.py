"""Locate the AliceVision installation at run time.

The install layout differs between Meshroom releases, so the toolchain
root is derived from wherever its OpenColorIO configuration file turns up
under the search root instead of trusting a fixed path.
"""
from __future__ import annotations

from pathlib import Path
from typing import Optional

from .errors import ConfigurationError
from .models import ToolchainEnvironment
from .utils.io import describe_tree
from .utils.logging import get_logger


MARKER_PARENTS = ("share", "aliceVision")

logger = get_logger("toolchain")


def find_toolchain_marker(search_root: Path, marker: str = "config.ocio") -> Optional[Path]:
    """Return the first ``<root>/share/aliceVision/<marker>`` under ``search_root``.

    Matches are ordered by path so repeated runs pick the same install.
    """
    search_root = Path(search_root)
    if not search_root.is_dir():
        return None

    for candidate in sorted(search_root.rglob(marker)):
        if not candidate.is_file():
            continue
        if tuple(candidate.parent.parts[-2:]) == MARKER_PARENTS:
            return candidate
    return None


def resolve_toolchain(
    search_root: Path,
    marker: str = "config.ocio",
    listing_limit: int = 200,
) -> ToolchainEnvironment:
    """Find the toolchain and describe the environment its binaries need.

    Raises:
        ConfigurationError: If no marker file exists under ``search_root``.
    """
    search_root = Path(search_root)
    logger.info(f"Hunting for AliceVision configuration under {search_root}...")

    marker_path = find_toolchain_marker(search_root, marker)
    if marker_path is None:
        listing = describe_tree(search_root, limit=listing_limit)
        logger.error(f"Could not find '{marker}' anywhere in {search_root}!\n{listing}")
        raise ConfigurationError(
            f"Could not find '{marker}' anywhere in {search_root}",
            details={"search_root": str(search_root), "listing": listing},
        )

    toolchain = ToolchainEnvironment(root=marker_path.parents[2], config_file=marker_path)
    logger.info(f"Toolchain root set to: {toolchain.root}")
    if not toolchain.sensor_db.exists():
        logger.warning(f"Sensor database not found at {toolchain.sensor_db}")
    return toolchain
