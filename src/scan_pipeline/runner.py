"""Job runner entry point for container execution.

Reads the job parameters from the environment (``INPUT_BUCKET``,
``INPUT_KEY``, ``OUTPUT_BUCKET``) and runs the scan-to-print job once.

Usage:
    # As a container entrypoint
    INPUT_BUCKET=scans INPUT_KEY=uploads/mug.zip OUTPUT_BUCKET=prints python -m scan_pipeline.runner

    # Locally, with a YAML configuration file and CLI overrides
    scan-pipeline --config job.yaml --input-key uploads/mug.mp4 --work-root /tmp/scan
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import load_config
from .errors import PipelineError
from .jobs.base import JobResult, JobStatus
from .jobs.scan_to_print import ScanToPrintJob
from .utils.logging import get_logger, setup_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Scan-to-print photogrammetry job",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Run with parameters from the environment
    python -m scan_pipeline.runner

    # Run with a configuration file
    python -m scan_pipeline.runner --config job.yaml

    # Override the job parameters on the command line
    python -m scan_pipeline.runner --input-bucket scans --input-key mug.zip --output-bucket prints
        """,
    )
    parser.add_argument("--config", type=str, help="YAML configuration file")
    parser.add_argument("--input-bucket", dest="source_bucket", type=str, help="Source bucket")
    parser.add_argument("--input-key", dest="source_key", type=str, help="Source object key")
    parser.add_argument(
        "--output-bucket", dest="destination_bucket", type=str, help="Destination bucket"
    )
    parser.add_argument("--work-root", dest="work_root", type=str, help="Local working root")
    parser.add_argument(
        "--toolchain-root",
        dest="toolchain_search_root",
        type=str,
        help="Directory searched for the AliceVision installation",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        default=None,
        help="Emit JSON logs for Cloud Logging (auto-detected on Cloud Run)",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging",
    )
    return parser


def _overrides(args: argparse.Namespace) -> Dict[str, Any]:
    keys = (
        "source_bucket",
        "source_key",
        "destination_bucket",
        "work_root",
        "toolchain_search_root",
    )
    return {key: getattr(args, key) for key in keys if getattr(args, key) is not None}


def print_summary(result: JobResult) -> None:
    print(f"\n{'='*60}")
    if result.status == JobStatus.COMPLETED:
        print("  Job Complete Success!")
    else:
        print(f"  Job Failed ({result.error_category})")
    print(f"  End time: {datetime.now().isoformat(timespec='seconds')}")
    print(f"  Duration: {result.duration_seconds:.1f}s")
    if result.errors:
        print(f"  Errors: {result.errors}")
    if result.outputs:
        print(f"  Outputs: {json.dumps(result.outputs, indent=2)}")
    print(f"{'='*60}")


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point; returns the process exit status."""
    args = build_parser().parse_args(argv)
    log_level = logging.DEBUG if args.verbose else logging.INFO

    print(f"{'='*60}")
    print("  3D Scan Processing Job")
    print(f"  Start time: {datetime.now().isoformat(timespec='seconds')}")
    print(f"{'='*60}")

    try:
        config = load_config(
            config_file=Path(args.config) if args.config else None,
            overrides=_overrides(args),
        )
    except PipelineError as e:
        setup_logging(level=log_level, job_name="runner", cloud_logging=bool(args.json_logs))
        get_logger("runner").error(f"FATAL ERROR [{e.category.value}]: {e.message}")
        return e.exit_code

    job = ScanToPrintJob()
    result = job.run(config, cloud_logging=args.json_logs, log_level=log_level)
    print_summary(result)
    return result.exit_code


if __name__ == "__main__":
    sys.exit(main())
