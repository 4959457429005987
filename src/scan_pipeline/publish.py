"""Upload the finished mesh to object storage."""
from __future__ import annotations

from pathlib import Path, PurePosixPath

from .utils.gcs import GCSClient, GCSPath
from .utils.logging import get_logger


logger = get_logger("publish")


def derive_output_name(source_key: str, suffix: str = "_printable.obj") -> str:
    """Basename of ``source_key`` with its last extension replaced by ``suffix``.

    ``scans/2024/mug.zip`` -> ``mug_printable.obj``
    """
    return f"{PurePosixPath(source_key.rstrip('/')).stem}{suffix}"


def publish_mesh(
    gcs: GCSClient,
    local_path: Path,
    destination_bucket: str,
    source_key: str,
    suffix: str = "_printable.obj",
    content_type: str = "model/obj",
) -> str:
    """Upload ``local_path`` and return the destination URI.

    Upload errors are not caught; they fail the job.
    """
    destination = GCSPath.from_parts(destination_bucket, derive_output_name(source_key, suffix))
    logger.info(f"Uploading result to {destination.uri}...")
    gcs.upload(local_path, destination.uri, content_type=content_type)
    return destination.uri
