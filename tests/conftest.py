"""Shared fixtures: in-memory Cloud Storage and a scripted AliceVision."""
from __future__ import annotations

import json
import zipfile
from pathlib import Path
from typing import Dict, List, Mapping, Optional

import pytest

from scan_pipeline.config import PipelineConfig
from scan_pipeline.stages import CommandResult
from scan_pipeline.utils.gcs import GCSClient


# ---------------------------------------------------------------------------
# Cloud Storage
# ---------------------------------------------------------------------------

class FakeBlob:
    def __init__(self, store: Dict[str, bytes], bucket: str, name: str):
        self._store = store
        self.key = f"{bucket}/{name}"
        self.content_type = None
        self.uploaded_content_type = None

    def download_to_filename(self, filename: str) -> None:
        if self.key not in self._store:
            raise FileNotFoundError(f"No such object: {self.key}")
        Path(filename).write_bytes(self._store[self.key])

    def upload_from_filename(self, filename: str, content_type: Optional[str] = None) -> None:
        self._store[self.key] = Path(filename).read_bytes()
        self.uploaded_content_type = content_type


class FakeBucket:
    def __init__(self, store: Dict[str, bytes], name: str):
        self._store = store
        self.name = name

    def blob(self, name: str) -> FakeBlob:
        return FakeBlob(self._store, self.name, name)


class FakeStorageClient:
    def __init__(self):
        self.objects: Dict[str, bytes] = {}

    def bucket(self, name: str) -> FakeBucket:
        return FakeBucket(self.objects, name)


@pytest.fixture
def storage() -> FakeStorageClient:
    return FakeStorageClient()


@pytest.fixture
def gcs(storage) -> GCSClient:
    return GCSClient(client=storage)


# ---------------------------------------------------------------------------
# Toolchain install and configuration
# ---------------------------------------------------------------------------

@pytest.fixture
def toolchain_search_root(tmp_path) -> Path:
    """A fake /opt with an AliceVision install under meshroom/aliceVision."""
    opt = tmp_path / "opt"
    share = opt / "meshroom" / "aliceVision" / "share" / "aliceVision"
    share.mkdir(parents=True)
    (share / "config.ocio").write_text("ocio_profile_version: 2\n")
    (share / "cameraSensors.db").write_text("Canon;Canon EOS 5D;36;dpreview\n")
    (opt / "meshroom" / "aliceVision" / "bin").mkdir()
    (opt / "meshroom" / "aliceVision" / "lib").mkdir()
    return opt


@pytest.fixture
def config(tmp_path, toolchain_search_root) -> PipelineConfig:
    return PipelineConfig(
        source_bucket="scans",
        source_key="uploads/mug.zip",
        destination_bucket="prints",
        toolchain_search_root=toolchain_search_root,
        work_root=tmp_path / "work",
        cleanup_script=tmp_path / "missing_cleanup.py",
    )


def make_zip(path: Path, files: Mapping[str, bytes]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w") as archive:
        for name, data in files.items():
            archive.writestr(name, data)
    return path


def photoset(count: int = 5) -> Dict[str, bytes]:
    return {f"photos/IMG_{i:04d}.jpg": b"\xff\xd8\xff" + bytes([i]) * 64 for i in range(count)}


# ---------------------------------------------------------------------------
# Scripted AliceVision
# ---------------------------------------------------------------------------

def _argument(command: List[str], flag: str) -> Optional[str]:
    if flag in command:
        return command[command.index(flag) + 1]
    return None


class FakeAliceVision:
    """Command runner that imitates the stage outputs of the real binaries.

    Args:
        matches: Content written to the image-pair list.
        solved_cameras: Number of ``"poseId"`` entries written to sfm.sfm.
        fail_stage: Executable name that exits with status 1.
        skip_output: Executable name that exits 0 without writing output.
        mesh: Content of the raw mesh.
    """

    def __init__(
        self,
        matches: str = "0 1 2 3 4\n1 2 3 4\n",
        solved_cameras: int = 5,
        fail_stage: Optional[str] = None,
        skip_output: Optional[str] = None,
        mesh: str = "v 0 0 0\nv 1 0 0\nv 0 1 0\nf 1 2 3\n",
    ):
        self.matches = matches
        self.solved_cameras = solved_cameras
        self.fail_stage = fail_stage
        self.skip_output = skip_output
        self.mesh = mesh
        self.calls: List[List[str]] = []
        self.envs: List[Mapping[str, str]] = []

    @property
    def executables(self) -> List[str]:
        return [Path(c[0]).name for c in self.calls]

    def __call__(self, command: List[str], env: Mapping[str, str], cwd: Path) -> CommandResult:
        self.calls.append(list(command))
        self.envs.append(env)
        program = Path(command[0]).name

        if program == self.fail_stage:
            return CommandResult(returncode=1, stderr=f"{program}: simulated crash\n")
        if program == self.skip_output:
            return CommandResult(returncode=0)

        output = _argument(command, "--output")
        if program == "aliceVision_cameraInit":
            Path(output).write_text(json.dumps({"views": []}))
        elif program == "aliceVision_imageMatching":
            Path(output).write_text(self.matches)
        elif program == "aliceVision_incrementalSfM":
            poses = [{"poseId": str(i), "pose": {}} for i in range(self.solved_cameras)]
            Path(output).write_text(json.dumps({"poses": poses}, indent=2))
        elif program == "aliceVision_prepareDenseScene":
            Path(output).write_text(json.dumps({"views": []}))
        elif program == "aliceVision_meshing":
            Path(output).write_text(self.mesh)
        elif program == "blender":
            # blender --background --python <script> -- <in> <out> <ratio>
            Path(command[-2]).write_text("# decimated\n" + Path(command[-3]).read_text())
        return CommandResult(returncode=0)


@pytest.fixture
def fake_alicevision() -> FakeAliceVision:
    return FakeAliceVision()


@pytest.fixture
def no_gpu(monkeypatch):
    monkeypatch.setattr("scan_pipeline.jobs.base.detect_accelerator", lambda: False)


@pytest.fixture
def with_gpu(monkeypatch):
    monkeypatch.setattr("scan_pipeline.jobs.base.detect_accelerator", lambda: True)
    monkeypatch.setattr("scan_pipeline.jobs.base.get_available_gpu", lambda: None)
