"""Filesystem helpers: run directories, reports, frame files, listings."""
from __future__ import annotations

import hashlib
import json
import shutil
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import numpy as np


def ensure_local_dir(path: Path) -> Path:
    """Create ``path`` (and parents) if missing; returns it for chaining."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def reset_dir(path: Path) -> Path:
    """Delete a directory tree if present and recreate it empty."""
    if path.exists():
        shutil.rmtree(path)
    path.mkdir(parents=True)
    return path


def compute_checksum(path: Path, algorithm: str = "sha256") -> str:
    """Hex digest of a file, read in 1 MiB blocks."""
    digest = hashlib.new(algorithm)
    with open(path, "rb") as f:
        for block in iter(lambda: f.read(1 << 20), b""):
            digest.update(block)
    return digest.hexdigest()


def _to_json(obj: Any) -> Any:
    if isinstance(obj, (np.integer, np.floating, np.bool_)):
        return obj.item()
    if isinstance(obj, Path):
        return str(obj)
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def save_json(data: Union[Dict, List], path: Path, indent: int = 2) -> Path:
    ensure_local_dir(path.parent)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=indent or None, default=_to_json)
    return path


def load_json(path: Path) -> Union[Dict, List]:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def save_image(image: "np.ndarray", path: Path, quality: int = 95) -> Path:
    """Write an RGB (or grayscale) array with Pillow; format from the suffix.

    Float arrays are taken to be in [0, 1].
    """
    try:
        from PIL import Image
    except ImportError:
        raise ImportError("Pillow is required for image I/O. Install with: pip install Pillow")

    if np.issubdtype(image.dtype, np.floating):
        image = (np.clip(image, 0.0, 1.0) * 255).astype(np.uint8)
    elif image.dtype != np.uint8:
        image = image.astype(np.uint8)

    options: Dict[str, Any] = {}
    if path.suffix.lower() in (".jpg", ".jpeg"):
        options = {"quality": quality, "optimize": True}

    ensure_local_dir(path.parent)
    Image.fromarray(image).save(path, **options)
    return path


def list_files(directory: Path) -> List[Path]:
    """Regular files directly inside ``directory``, sorted by name."""
    return sorted(p for p in directory.iterdir() if p.is_file())


def count_files(directory: Path) -> int:
    """Count regular files directly inside a directory (no recursion)."""
    if not directory.is_dir():
        return 0
    return len(list_files(directory))


def describe_tree(root: Path, limit: int = 200) -> str:
    """Render a recursive listing of ``root`` for diagnostics.

    Directories are suffixed with ``/``. At most ``limit`` entries are
    rendered; the remainder is summarised on the last line.
    """
    if not root.exists():
        return f"{root} (does not exist)"

    entries = sorted(root.rglob("*"))
    lines = [f"{root}:"]
    for entry in entries[:limit]:
        rel = entry.relative_to(root)
        lines.append(f"  {rel}/" if entry.is_dir() else f"  {rel}")
    if len(entries) > limit:
        lines.append(f"  ... {len(entries) - limit} more entries")
    if not entries:
        lines.append("  (empty)")
    return "\n".join(lines)


class FrameWriter:
    """Write sequentially numbered frames: ``frame_0001.jpg``, ``frame_0002.jpg``, ...

    ``written`` counts the files produced so far.
    """

    def __init__(
        self,
        output_dir: Path,
        prefix: str = "frame",
        extension: str = "jpg",
        digits: int = 4,
        start: int = 1,
        quality: int = 95,
    ):
        self.output_dir = ensure_local_dir(output_dir)
        self.prefix = prefix
        self.extension = extension.lstrip(".")
        self.digits = digits
        self.quality = quality
        self.next_index = start
        self.written = 0

    def path_for(self, index: int) -> Path:
        return self.output_dir / f"{self.prefix}_{index:0{self.digits}d}.{self.extension}"

    def write(self, image: "np.ndarray", index: Optional[int] = None) -> Path:
        if index is None:
            index = self.next_index
            self.next_index += 1
        path = save_image(image, self.path_for(index), quality=self.quality)
        self.written += 1
        return path
