"""
Machine specification snapshot written into every run directory.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Dict, List, Union
import os
import platform
import shutil

from .launcher import LaunchConfig, launch

SPECS_FILE = "specs.txt"

# Device query tools tried in order; output is stored verbatim
DEVICE_QUERIES: List[List[str]] = [
    ["rocm-smi", "--showproductname"],
    ["rocminfo"],
]


def host_specs() -> Dict[str, str]:
    """Host description that does not require any external tool."""
    uname = platform.uname()
    return {
        "hostname": uname.node,
        "system": f"{uname.system} {uname.release}",
        "machine": uname.machine,
        "processor": uname.processor or "unknown",
        "cpu_count": str(os.cpu_count() or "unknown"),
        "python": platform.python_version(),
        "date": datetime.now().isoformat(timespec="seconds"),
    }


def device_specs(timeout: float = 30.0) -> str:
    """Output of the first available device query tool ('' if none)."""
    for query in DEVICE_QUERIES:
        if shutil.which(query[0]) is None:
            continue
        result = launch(query, LaunchConfig(timeout=timeout))
        if result.ok:
            return result.stdout
    return ""


def write_specs(run_dir: Union[str, Path], query_device: bool = True) -> Path:
    """
    Write the machine snapshot into a run directory.

    Returns:
        Path to the snapshot file.
    """
    path = Path(run_dir) / SPECS_FILE
    path.parent.mkdir(parents=True, exist_ok=True)

    lines = [f"{key}: {value}" for key, value in host_specs().items()]
    device = device_specs() if query_device else ""
    if device:
        lines += ["", "device:", device.rstrip()]

    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path
