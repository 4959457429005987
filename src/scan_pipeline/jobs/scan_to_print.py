"""Photos or video in object storage -> printable OBJ in object storage."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..orchestrator import SequenceResult, StageSequencer
from ..postprocess import cleanup_mesh, mesh_stats
from ..publish import publish_mesh
from ..staging import StagedInput, stage_input
from ..stages import CommandRunner, build_stages, run_command
from ..toolchain import resolve_toolchain
from ..utils.io import compute_checksum
from .base import GPUJob, JobContext, JobResult, JobStatus


@dataclass
class ScanToPrintJob(GPUJob):
    """Run the AliceVision photogrammetry chain over one uploaded capture.

    This job:
    1. Locates the AliceVision install and probes for a GPU
    2. Downloads the capture and stages it as a flat folder of images
    3. Runs the nine photogrammetry stages with output checks
    4. Cleans the mesh with Blender (or passes it through)
    5. Uploads ``<basename>_printable.obj`` to the destination bucket

    Inputs:
        - A zip archive of photos, or a video, at ``source_bucket/source_key``

    Outputs:
        - One OBJ mesh in ``destination_bucket``
    """

    name: str = "scan-to-print"
    command_runner: CommandRunner = run_command
    mime_type: Optional[str] = None

    def _validate_prerequisites(self, ctx: JobContext) -> None:
        """Locate the toolchain, then probe the hardware."""
        with ctx.tracker.phase("environment"):
            ctx.toolchain = resolve_toolchain(
                ctx.config.toolchain_search_root,
                marker=ctx.config.toolchain_marker,
            )
            ctx.tracker.log_metric("toolchain_root", str(ctx.toolchain.root))
        super()._validate_prerequisites(ctx)

    def _execute(self, ctx: JobContext) -> JobResult:
        result = JobResult(status=JobStatus.RUNNING)
        ctx.prepare_workspace()

        staged = self._download_and_stage(ctx)

        sequence = self._run_photogrammetry(ctx, staged)
        result.metrics["photogrammetry"] = sequence.to_dict()

        with ctx.tracker.phase("mesh_cleanup"):
            cleanup = cleanup_mesh(
                input_mesh=ctx.paths.raw_mesh,
                output_mesh=ctx.paths.printable_mesh,
                script=ctx.config.cleanup_script,
                ratio=ctx.config.decimation_ratio,
                blender=ctx.config.blender_executable,
                runner=self.command_runner,
                cwd=ctx.paths.work_dir,
            )
            ctx.tracker.log_metric("mesh_cleaned", cleanup.cleaned)
            ctx.tracker.log_metric("output_sha256", compute_checksum(cleanup.output_path))
            stats = mesh_stats(cleanup.output_path)
            if stats:
                ctx.logger.info(
                    f"Printable mesh: {stats['faces']} faces, {stats['vertices']} vertices, "
                    f"watertight={stats['watertight']}"
                )
            ctx.tracker.log_metric("mesh_stats", stats)

        with ctx.tracker.phase("upload_outputs"):
            uri = publish_mesh(
                ctx.gcs,
                cleanup.output_path,
                destination_bucket=ctx.parameters.destination_bucket,
                source_key=ctx.parameters.source_key,
                suffix=ctx.config.output_suffix,
                content_type=ctx.config.output_content_type,
            )
            ctx.tracker.log_metric("output_uri", uri)

        result.outputs = {"mesh": uri}
        result.metrics.update({
            "image_count": staged.image_count,
            "input_kind": staged.kind.value,
            "solved_cameras": sequence.metric("solved_cameras"),
            "mesh_cleaned": cleanup.cleaned,
            "mesh_stats": stats,
            "gpu_available": ctx.gpu_available,
        })
        return result

    def _download_and_stage(self, ctx: JobContext) -> StagedInput:
        with ctx.tracker.phase("download_inputs"):
            ctx.logger.info(f"Downloading {ctx.parameters.source_uri}...")
            ctx.gcs.download(ctx.parameters.source_uri, ctx.paths.input_file)

        with ctx.tracker.phase("stage_images"):
            staged = stage_input(
                ctx.paths.input_file,
                ctx.paths.input_images,
                frame_rate=ctx.config.frame_rate,
                jpeg_quality=ctx.config.jpeg_quality,
                mime_type=self.mime_type,
            )
            ctx.tracker.log_metric("input_kind", staged.kind.value)
            ctx.tracker.log_metric("image_count", staged.image_count)
        return staged

    def _run_photogrammetry(self, ctx: JobContext, staged: StagedInput) -> SequenceResult:
        stages = build_stages(
            paths=ctx.paths,
            toolchain=ctx.toolchain,
            config=ctx.config,
            gpu_available=ctx.gpu_available,
            image_count=staged.image_count,
        )
        sequencer = StageSequencer(
            stages=stages,
            env=ctx.toolchain.subprocess_env(),
            cwd=ctx.paths.work_dir,
            runner=self.command_runner,
            toolchain=ctx.toolchain,
            on_stage_done=lambda _: ctx.tracker.advance(),
        )
        with ctx.tracker.phase("photogrammetry", total_items=len(stages)) as phase:
            try:
                sequencer.run()
            finally:
                phase.metadata["stages"] = sequencer.result.to_dict()["stages"]
            ctx.tracker.log_metric("solved_cameras", sequencer.result.metric("solved_cameras"))
        return sequencer.result
