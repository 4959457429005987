"""Turn the downloaded object into a flat folder of still images."""
from __future__ import annotations

import shutil
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from .errors import InputError
from .models import InputKind
from .utils.io import FrameWriter, count_files, ensure_local_dir
from .utils.logging import get_logger


ARCHIVE_MIME_TYPES = ("application/zip",)
VIDEO_MIME_PREFIX = "video/"
SKIPPED_ARCHIVE_PREFIXES = ("__MACOSX/",)

logger = get_logger("staging")


@dataclass
class StagedInput:
    """What the stager produced."""
    kind: InputKind
    mime_type: str
    image_count: int
    images_dir: Path

    def to_dict(self):
        return {
            "kind": self.kind.value,
            "mime_type": self.mime_type,
            "image_count": self.image_count,
            "images_dir": str(self.images_dir),
        }


def detect_mime_type(path: Path) -> str:
    """Detect the MIME type of a file from its content using libmagic."""
    try:
        import magic
    except ImportError:
        raise ImportError(
            "python-magic (and the libmagic system library) is required. "
            "Install with: pip install python-magic"
        )
    return magic.from_file(str(path), mime=True)


def classify_input(mime_type: str) -> InputKind:
    """Map a MIME type onto a staging strategy.

    Raises:
        InputError: For anything that is neither a zip archive nor a video.
    """
    if mime_type in ARCHIVE_MIME_TYPES:
        return InputKind.ARCHIVE
    if mime_type.startswith(VIDEO_MIME_PREFIX):
        return InputKind.VIDEO
    raise InputError(
        f"Unsupported file type: {mime_type}",
        details={"mime_type": mime_type, "supported": ["application/zip", "video/*"]},
    )


def extract_archive(archive_path: Path, output_dir: Path) -> int:
    """Extract a zip archive and flatten it into ``output_dir``.

    Returns:
        Number of files in ``output_dir`` afterwards.
    """
    ensure_local_dir(output_dir)
    try:
        with zipfile.ZipFile(archive_path) as archive:
            members = [
                m for m in archive.infolist()
                if not m.is_dir() and not m.filename.startswith(SKIPPED_ARCHIVE_PREFIXES)
            ]
            for member in members:
                archive.extract(member, output_dir)
    except zipfile.BadZipFile as e:
        raise InputError(f"Could not read zip archive: {e}", details={"path": str(archive_path)})

    moved = flatten_directory(output_dir)
    if moved:
        logger.info(f"Flattened {moved} nested files into {output_dir}")
    return count_files(output_dir)


def flatten_directory(root: Path) -> int:
    """Move every nested file directly under ``root`` and drop sub-directories.

    A file whose name is already taken at the top level is renamed with its
    relative parent path joined by underscores (``a/b/x.jpg`` -> ``a_b_x.jpg``).

    Returns:
        Number of files moved.
    """
    nested: List[Path] = sorted(
        p for p in root.rglob("*") if p.is_file() and p.parent != root
    )
    moved = 0
    for path in nested:
        relative = path.relative_to(root)
        target = root / path.name
        if target.exists():
            target = root / "_".join(relative.parts)
        base = target
        suffix = 1
        while target.exists():
            target = root / f"{base.stem}_{suffix}{base.suffix}"
            suffix += 1
        shutil.move(str(path), str(target))
        moved += 1

    for directory in sorted((p for p in root.iterdir() if p.is_dir()), reverse=True):
        shutil.rmtree(directory)
    return moved


def extract_frames(
    video_path: Path,
    output_dir: Path,
    fps: float = 2.0,
    quality: int = 95,
) -> int:
    """Sample a video at ``fps`` frames per second into numbered JPEGs.

    Frames are taken on the video's timeline (t = 0, 1/fps, 2/fps, ...), so
    the output count is about duration x fps regardless of the source rate.
    Files are named ``frame_0001.jpg``, ``frame_0002.jpg``, ...

    Returns:
        Number of frames written.
    """
    try:
        import cv2
    except ImportError:
        raise ImportError("opencv-python is required for video processing")

    cap = cv2.VideoCapture(str(video_path))
    if not cap.isOpened():
        raise InputError(f"Failed to open video: {video_path}")

    try:
        source_fps = cap.get(cv2.CAP_PROP_FPS) or 30.0
        total_frames = int(cap.get(cv2.CAP_PROP_FRAME_COUNT))
        width = int(cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        height = int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        logger.info(
            f"Video: {width}x{height}, {source_fps:.1f}fps, {total_frames} frames; "
            f"sampling at {fps:g}fps"
        )

        writer = FrameWriter(output_dir, prefix="frame", extension="jpg", digits=4, quality=quality)
        interval = 1.0 / fps
        next_sample = 0.0
        frame_idx = 0
        # Half a source frame of tolerance absorbs float drift in timestamps
        tolerance = 0.5 / source_fps

        while True:
            ret, frame = cap.read()
            if not ret:
                break

            timestamp = frame_idx / source_fps
            # A source slower than the sampling rate repeats frames
            if timestamp + tolerance >= next_sample:
                rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
                while timestamp + tolerance >= next_sample:
                    writer.write(rgb)
                    next_sample += interval
            frame_idx += 1
    finally:
        cap.release()

    logger.info(f"Extracted {writer.written} frames from {video_path.name}")
    return writer.written


def stage_input(
    input_file: Path,
    images_dir: Path,
    frame_rate: float = 2.0,
    jpeg_quality: int = 95,
    mime_type: Optional[str] = None,
) -> StagedInput:
    """Classify ``input_file`` and materialize it as images in ``images_dir``.

    Raises:
        InputError: If the content type is unsupported or unreadable.
    """
    if mime_type is None:
        mime_type = detect_mime_type(input_file)
    logger.info(f"Detected file type: {mime_type}")

    kind = classify_input(mime_type)
    if kind is InputKind.ARCHIVE:
        extract_archive(input_file, images_dir)
    else:
        logger.info(f"Extracting frames from video ({frame_rate:g} fps)...")
        extract_frames(input_file, images_dir, fps=frame_rate, quality=jpeg_quality)

    image_count = count_files(images_dir)
    logger.info(f"Found {image_count} images to process.")
    return StagedInput(
        kind=kind,
        mime_type=mime_type,
        image_count=image_count,
        images_dir=images_dir,
    )
