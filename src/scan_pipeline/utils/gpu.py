"""NVIDIA accelerator detection through ``nvidia-smi``."""
from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass
from typing import List, Optional


NVIDIA_SMI = "nvidia-smi"
GPU_QUERY = ["--query-gpu=index,name,memory.total,memory.free", "--format=csv,noheader,nounits"]


@dataclass
class GPUInfo:
    """One row of the nvidia-smi inventory."""
    index: int
    name: str
    memory_total_mb: int
    memory_free_mb: int

    @property
    def memory_total_gb(self) -> float:
        return self.memory_total_mb / 1024


def detect_accelerator(executable: str = NVIDIA_SMI) -> bool:
    """Return True when the NVIDIA management interface exists and answers.

    Both conditions must hold: the executable resolves on PATH and running
    it exits with status 0. Any failure to launch counts as "no GPU".
    """
    if shutil.which(executable) is None:
        return False
    try:
        result = subprocess.run(
            [executable],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            timeout=30,
        )
    except (subprocess.TimeoutExpired, OSError, subprocess.SubprocessError):
        return False
    return result.returncode == 0


def _parse_inventory(text: str) -> List[GPUInfo]:
    gpus = []
    for line in text.splitlines():
        fields = [f.strip() for f in line.split(",")]
        if len(fields) < 4:
            continue
        try:
            gpus.append(GPUInfo(int(fields[0]), fields[1], int(fields[2]), int(fields[3])))
        except ValueError:
            continue
    return gpus


def list_gpus() -> List[GPUInfo]:
    """Installed GPUs, or an empty list when the query fails."""
    try:
        result = subprocess.run(
            [NVIDIA_SMI, *GPU_QUERY],
            capture_output=True,
            text=True,
            timeout=10,
        )
    except (subprocess.TimeoutExpired, OSError, subprocess.SubprocessError):
        return []
    if result.returncode != 0:
        return []
    return _parse_inventory(result.stdout)


def get_available_gpu() -> Optional[GPUInfo]:
    """First GPU in the inventory, used for the hardware log line."""
    gpus = list_gpus()
    return gpus[0] if gpus else None
