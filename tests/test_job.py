"""End-to-end tests of the scan-to-print job with a scripted toolchain."""
import numpy as np
import pytest

from scan_pipeline import postprocess
from scan_pipeline.jobs import JobStatus, ScanToPrintJob
from scan_pipeline.utils.io import load_json

from conftest import FakeAliceVision, make_zip, photoset


def _upload_capture(storage, tmp_path, files, key="scans/uploads/mug.zip"):
    archive = make_zip(tmp_path / "upload" / "capture.zip", files)
    storage.objects[key] = archive.read_bytes()


@pytest.fixture
def zip_job():
    def _make(runner):
        return ScanToPrintJob(command_runner=runner, mime_type="application/zip")
    return _make


@pytest.mark.usefixtures("no_gpu")
class TestScanToPrintJob:

    def test_photoset_produces_printable_mesh(self, tmp_path, config, gcs, storage, fake_alicevision, zip_job):
        _upload_capture(storage, tmp_path, photoset(5))

        result = zip_job(fake_alicevision).run(config, gcs=gcs, cloud_logging=False)

        assert result.status == JobStatus.COMPLETED, result.errors
        assert result.exit_code == 0
        assert result.outputs == {"mesh": "gs://prints/mug_printable.obj"}
        assert storage.objects["prints/mug_printable.obj"] == fake_alicevision.mesh.encode()
        assert result.metrics["image_count"] == 5
        assert result.metrics["input_kind"] == "archive"
        assert result.metrics["solved_cameras"] == 5
        assert result.metrics["mesh_cleaned"] is False
        assert result.metrics["mesh_stats"]["faces"] == 1
        assert len(fake_alicevision.calls) == 9

    def test_images_are_staged_flat(self, tmp_path, config, gcs, storage, fake_alicevision, zip_job):
        _upload_capture(storage, tmp_path, photoset(4))

        zip_job(fake_alicevision).run(config, gcs=gcs, cloud_logging=False)

        images = config.paths.input_images
        assert sorted(p.name for p in images.iterdir()) == [f"IMG_{i:04d}.jpg" for i in range(4)]
        assert all(p.is_file() for p in images.iterdir())

    def test_blank_wall_fails_before_dense_stages(self, tmp_path, config, gcs, storage, zip_job):
        _upload_capture(storage, tmp_path, photoset(2))
        runner = FakeAliceVision(matches="")

        result = zip_job(runner).run(config, gcs=gcs, cloud_logging=False)

        assert result.status == JobStatus.FAILED
        assert result.exit_code == 1
        assert result.error_category == "data"
        assert "No image matches found" in result.errors[0]
        assert "aliceVision_featureMatching" not in runner.executables
        assert "aliceVision_prepareDenseScene" not in runner.executables
        assert "prints/mug_printable.obj" not in storage.objects

    def test_unsupported_input_runs_no_stage(self, tmp_path, config, gcs, storage):
        storage.objects["scans/uploads/mug.zip"] = b"plain text, not a capture"
        runner = FakeAliceVision()
        job = ScanToPrintJob(command_runner=runner, mime_type="text/plain")

        result = job.run(config, gcs=gcs, cloud_logging=False)

        assert result.error_category == "input"
        assert "Unsupported file type: text/plain" in result.errors[0]
        assert runner.calls == []

    def test_missing_toolchain_fails_before_download(self, tmp_path, config, gcs, storage, zip_job):
        _upload_capture(storage, tmp_path, photoset(5))
        config.toolchain_search_root = tmp_path / "empty_opt"
        (tmp_path / "empty_opt").mkdir()
        runner = FakeAliceVision()

        result = zip_job(runner).run(config, gcs=gcs, cloud_logging=False)

        assert result.error_category == "configuration"
        assert "config.ocio" in result.errors[0]
        assert runner.calls == []
        assert not config.paths.input_file.exists()

    def test_early_failure_leaves_previous_work_dir_untouched(self, tmp_path, config, gcs, zip_job):
        config.paths.work_dir.mkdir(parents=True)
        config.toolchain_search_root = tmp_path / "empty_opt"
        (tmp_path / "empty_opt").mkdir()

        result = zip_job(FakeAliceVision()).run(config, gcs=gcs, cloud_logging=False)

        assert result.error_category == "configuration"
        assert not config.paths.report.exists()
        assert "report_path" not in result.metrics

    def test_photogrammetry_progress_counts_stages(self, tmp_path, config, gcs, storage, zip_job):
        _upload_capture(storage, tmp_path, photoset(5))

        zip_job(FakeAliceVision(solved_cameras=2)).run(config, gcs=gcs, cloud_logging=False)

        report = load_json(config.paths.report)
        phase = next(p for p in report["phases"] if p["name"] == "photogrammetry")
        assert phase["items_total"] == 9
        assert phase["items_done"] == 4
        assert phase["metadata"]["stages"][0]["outputs"]

    def test_missing_source_object_is_internal_failure(self, config, gcs, zip_job):
        result = zip_job(FakeAliceVision()).run(config, gcs=gcs, cloud_logging=False)

        assert result.status == JobStatus.FAILED
        assert result.error_category == "internal"

    def test_stage_crash_is_reported(self, tmp_path, config, gcs, storage, zip_job):
        _upload_capture(storage, tmp_path, photoset(5))
        runner = FakeAliceVision(fail_stage="aliceVision_meshing")

        result = zip_job(runner).run(config, gcs=gcs, cloud_logging=False)

        assert result.error_category == "stage_execution"
        assert "prints/mug_printable.obj" not in storage.objects

    def test_writes_job_report(self, tmp_path, config, gcs, storage, fake_alicevision, zip_job):
        _upload_capture(storage, tmp_path, photoset(5))

        result = zip_job(fake_alicevision).run(config, gcs=gcs, cloud_logging=False)

        report = load_json(config.paths.report)
        assert result.metrics["report_path"] == str(config.paths.report)
        assert report["result"]["status"] == "completed"
        phases = [p["name"] for p in report["phases"]]
        assert phases == [
            "environment",
            "download_inputs",
            "stage_images",
            "photogrammetry",
            "mesh_cleanup",
            "upload_outputs",
        ]
        assert report["metrics"]["gpu_available"] is False

    def test_rerun_starts_from_clean_directories(self, tmp_path, config, gcs, storage, fake_alicevision, zip_job):
        _upload_capture(storage, tmp_path, photoset(5))
        stale = config.paths.input_images / "stale.jpg"
        stale.parent.mkdir(parents=True)
        stale.write_bytes(b"old run")

        result = zip_job(fake_alicevision).run(config, gcs=gcs, cloud_logging=False)

        assert result.metrics["image_count"] == 5
        assert not stale.exists()

    def test_cpu_mode_forces_cpu_extraction(self, tmp_path, config, gcs, storage, fake_alicevision, zip_job):
        _upload_capture(storage, tmp_path, photoset(5))

        zip_job(fake_alicevision).run(config, gcs=gcs, cloud_logging=False)

        extraction = fake_alicevision.calls[1]
        assert extraction[extraction.index("--forceCpuExtraction") + 1] == "1"

    def test_blender_cleanup_when_available(self, tmp_path, config, gcs, storage, fake_alicevision, zip_job, monkeypatch):
        _upload_capture(storage, tmp_path, photoset(5))
        script = tmp_path / "cleanup_mesh.py"
        script.write_text("# blender script\n")
        config.cleanup_script = script
        monkeypatch.setattr(postprocess.shutil, "which", lambda name: f"/usr/bin/{name}")

        result = zip_job(fake_alicevision).run(config, gcs=gcs, cloud_logging=False)

        assert result.metrics["mesh_cleaned"] is True
        assert fake_alicevision.executables[-1] == "blender"
        assert storage.objects["prints/mug_printable.obj"].startswith(b"# decimated")


def test_gpu_mode_allows_gpu_extraction(tmp_path, config, gcs, storage, fake_alicevision, with_gpu):
    _upload_capture(storage, tmp_path, photoset(5))

    result = ScanToPrintJob(command_runner=fake_alicevision, mime_type="application/zip").run(
        config, gcs=gcs, cloud_logging=False
    )

    assert result.metrics["gpu_available"] is True
    extraction = fake_alicevision.calls[1]
    assert extraction[extraction.index("--forceCpuExtraction") + 1] == "0"


def test_video_capture(tmp_path, config, gcs, storage, fake_alicevision, no_gpu):
    cv2 = pytest.importorskip("cv2")
    video = tmp_path / "upload" / "turntable.avi"
    video.parent.mkdir()
    writer = cv2.VideoWriter(str(video), cv2.VideoWriter_fourcc(*"MJPG"), 10.0, (64, 48))
    if not writer.isOpened():
        pytest.skip("OpenCV build cannot encode MJPG video")
    for i in range(30):
        writer.write(np.full((48, 64, 3), i * 8, dtype=np.uint8))
    writer.release()

    config.source_key = "videos/turntable.avi"
    storage.objects["scans/videos/turntable.avi"] = video.read_bytes()
    job = ScanToPrintJob(command_runner=fake_alicevision, mime_type="video/x-msvideo")

    result = job.run(config, gcs=gcs, cloud_logging=False)

    assert result.status == JobStatus.COMPLETED, result.errors
    assert result.outputs["mesh"] == "gs://prints/turntable_printable.obj"
    assert result.metrics["input_kind"] == "video"
    assert abs(result.metrics["image_count"] - 6) <= 1
    assert (config.paths.input_images / "frame_0001.jpg").is_file()
