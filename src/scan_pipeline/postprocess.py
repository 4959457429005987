"""Mesh cleanup through a headless Blender run."""
from __future__ import annotations

import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import StageExecutionError
from .stages import CommandRunner, run_command
from .utils.logging import get_logger
from .validators import require_exists


logger = get_logger("postprocess")


@dataclass
class CleanupResult:
    """Outcome of the mesh cleanup step."""
    output_path: Path
    cleaned: bool
    reason: str = ""

    def to_dict(self):
        return {
            "output_path": str(self.output_path),
            "cleaned": self.cleaned,
            "reason": self.reason,
        }


def blender_command(
    blender: str,
    script: Path,
    input_mesh: Path,
    output_mesh: Path,
    ratio: float,
) -> List[str]:
    """Arguments after ``--`` are passed to the script untouched by Blender."""
    return [
        blender,
        "--background",
        "--python", str(script),
        "--",
        str(input_mesh),
        str(output_mesh),
        f"{ratio:g}",
    ]


def cleanup_mesh(
    input_mesh: Path,
    output_mesh: Path,
    script: Optional[Path],
    ratio: float = 0.005,
    blender: str = "blender",
    runner: CommandRunner = run_command,
    cwd: Optional[Path] = None,
) -> CleanupResult:
    """Decimate and clean the raw mesh, or pass it through unchanged.

    When the cleanup script or the Blender executable is unavailable the
    raw mesh is copied byte-for-byte to ``output_mesh`` and a warning is
    logged. Once Blender is invoked, failure is fatal.

    Raises:
        StageExecutionError: Blender exited non-zero.
        StageOutputError: Blender exited 0 without writing ``output_mesh``.
    """
    output_mesh.parent.mkdir(parents=True, exist_ok=True)

    reason = ""
    blender_path = shutil.which(blender)
    if script is None or not Path(script).is_file():
        reason = f"cleanup script not found ({script})"
    elif blender_path is None:
        reason = f"Blender executable not found ({blender})"

    if reason:
        logger.warning(f"WARNING: {reason}. Uploading raw mesh.")
        shutil.copyfile(input_mesh, output_mesh)
        return CleanupResult(output_path=output_mesh, cleaned=False, reason=reason)

    logger.info(f"Blender cleanup (decimation ratio {ratio:g})...")
    command = blender_command(blender_path, Path(script), input_mesh, output_mesh, ratio)
    completed = runner(command, dict(os.environ), cwd or output_mesh.parent)
    if completed.returncode != 0:
        raise StageExecutionError(
            f"Blender cleanup exited with status {completed.returncode}",
            details={"command": command, "stderr_tail": completed.stderr[-2000:]},
        )

    require_exists(output_mesh, "Blender cleanup")
    return CleanupResult(output_path=output_mesh, cleaned=True)


def mesh_stats(mesh_path: Path) -> Dict[str, Any]:
    """Geometry summary of an OBJ for the job report.

    Returns an empty dict when the file cannot be parsed; the mesh is
    still published.
    """
    try:
        import trimesh
    except ImportError:
        raise ImportError("trimesh is required for mesh statistics. Install with: pip install trimesh")

    try:
        mesh = trimesh.load(str(mesh_path), force="mesh", process=False)
    except (ValueError, IndexError, KeyError) as e:
        logger.warning(f"Could not read {mesh_path.name} for statistics: {e}")
        return {}

    return {
        "vertices": int(len(mesh.vertices)),
        "faces": int(len(mesh.faces)),
        "watertight": bool(mesh.is_watertight),
        "extents": [float(x) for x in mesh.extents] if len(mesh.vertices) else [],
    }
