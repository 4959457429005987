"""Cloud Storage access for the job's one download and one upload."""
from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional


_URI = re.compile(r"gs://([^/]+)/(.+)")


@dataclass(frozen=True)
class GCSPath:
    """A bucket plus object key."""
    bucket: str
    blob: str

    @classmethod
    def from_uri(cls, uri: str) -> "GCSPath":
        """``gs://bucket/key`` -> GCSPath; anything else is a ValueError."""
        match = _URI.match(uri)
        if not match:
            raise ValueError(f"Invalid GCS URI: {uri}")
        return cls(bucket=match.group(1), blob=match.group(2))

    @classmethod
    def from_parts(cls, bucket: str, blob: str) -> "GCSPath":
        """Build from job parameters; the bucket may be given as ``gs://name/``."""
        bucket = bucket.strip()
        if bucket.startswith("gs://"):
            bucket = bucket[len("gs://"):]
        bucket = bucket.rstrip("/")
        blob = blob.lstrip("/")
        if not bucket or not blob:
            raise ValueError(f"Invalid GCS object: bucket={bucket!r} key={blob!r}")
        return cls(bucket=bucket, blob=blob)

    @property
    def uri(self) -> str:
        return f"gs://{self.bucket}/{self.blob}"


class GCSClient:
    """Thin wrapper over ``google.cloud.storage.Client``.

    The underlying client is created on first use, so constructing a
    GCSClient never needs credentials. Pass ``client`` to substitute any
    object with the same ``bucket(name).blob(key)`` shape.

    Errors from the storage library are not translated; they fail the job.
    """

    def __init__(self, project: Optional[str] = None, client: Any = None):
        self._project = project
        self._client = client
        self._buckets: Dict[str, Any] = {}

    @property
    def client(self):
        if self._client is None:
            try:
                from google.cloud import storage
            except ImportError:
                raise ImportError(
                    "google-cloud-storage is required. Install with: "
                    "pip install google-cloud-storage"
                )
            self._client = storage.Client(project=self._project)
        return self._client

    def _blob(self, uri: str):
        path = GCSPath.from_uri(uri)
        if path.bucket not in self._buckets:
            self._buckets[path.bucket] = self.client.bucket(path.bucket)
        return self._buckets[path.bucket].blob(path.blob)

    def download(self, uri: str, local_path: Path) -> Path:
        """Fetch ``uri`` to ``local_path``, creating its parent directory."""
        local_path.parent.mkdir(parents=True, exist_ok=True)
        self._blob(uri).download_to_filename(str(local_path))
        return local_path

    def upload(self, local_path: Path, uri: str, content_type: Optional[str] = None) -> str:
        """Store ``local_path`` at ``uri``; returns ``uri``."""
        self._blob(uri).upload_from_filename(str(local_path), content_type=content_type)
        return uri
