"""
Shared pytest fixtures for fftperf tests.

This module provides problem fixtures, sample stores, and small Python
scripts that stand in for the rider, tuner and merge tool executables.
The fake executables are controlled through FAKE_* environment variables
set with monkeypatch.
"""

import os
import stat
import sys
from pathlib import Path
from typing import Callable, Dict, List

import pytest

from fftperf.problem import Direction, FieldKind, Placement, Precision, Problem
from fftperf.samples import SampleStore


# ==============================================================================
# Fake Executables
# ==============================================================================

FAKE_RIDER = '''
import os, sys

args = sys.argv[1:]
token = args[args.index("--token") + 1] if "--token" in args else "unknown"
ntrial = int(args[args.index("-N") + 1])
nlibs = max(1, args.count("--lib"))

if os.environ.get("FAKE_CALL_LOG"):
    with open(os.environ["FAKE_CALL_LOG"], "a") as log:
        log.write(token + "\\n")

if token in os.environ.get("FAKE_SKIP", "").split(","):
    print("SKIPPED: problem does not fit on device")
    sys.exit(0)
if token in os.environ.get("FAKE_FAIL", "").split(","):
    print("device error", file=sys.stderr)
    sys.exit(3)

base = float(os.environ.get("FAKE_TIME", "1.0"))
solution = os.environ.get("FAKE_REF_SOLUTION", token)
match = os.environ.get("FAKE_REF_MATCH", "FULL")

override = os.environ.get("SOLUTION_OVERRIDE_FILE")
if override:
    with open(override) as f:
        fields = dict(line.split("=", 1) for line in f.read().split())
    base = float(fields.get("time", base))
    solution = fields.get("token", "")
    match = fields.get("match", "FULL")

for lib in range(nlibs):
    times = [base * (lib + 1) * (1 + 0.01 * (i % 3)) for i in range(ntrial)]
    print("Execution gpu time: " + " ".join(repr(t) for t in times) + " ms")

if os.environ.get("SOLUTION_MAP_FILE") or override:
    print("Solution token: " + solution)
    print("Match type: " + match)
'''

FAKE_TUNER = '''
import os, sys

args = sys.argv[1:]
token = args[args.index("--token") + 1]

if token in os.environ.get("FAKE_TUNE_FAIL", "").split(","):
    print("[Result] no valid candidate")
    sys.exit(1)
if token in os.environ.get("FAKE_TUNE_NO_FILE", "").split(","):
    print("[Result] nothing written")
    sys.exit(0)

solution = os.environ.get("FAKE_TUNED_SOLUTION", token)
with open(os.environ["TUNE_SOLUTION_FILE"], "w") as f:
    f.write("time=" + os.environ.get("FAKE_TUNED_TIME", "0.5") + "\\n")
    f.write("token=" + solution + "\\n")
    f.write("match=FULL\\n")
    f.write("min_wgs=" + os.environ["TUNE_MIN_WGS"] + "\\n")
    f.write("max_wgs=" + os.environ["TUNE_MAX_WGS"] + "\\n")
    f.write("exact=" + os.environ.get("TUNE_EXACT_PROB", "0") + "\\n")

print("tuning " + token)
print("Solution token: " + solution)
print("[Result] " + token + " wgs " + os.environ["TUNE_MIN_WGS"] + "-" + os.environ["TUNE_MAX_WGS"])
'''

FAKE_MERGE_TOOL = '''
import os, sys

args = sys.argv[1:]
base = args[args.index("--base") + 1] if "--base" in args else None
artifact, key = args[args.index("--new") + 1].rsplit(":", 1)
output = args[args.index("--output") + 1]

if key in os.environ.get("FAKE_MERGE_FAIL", "").split(","):
    print("cannot insert " + key, file=sys.stderr)
    sys.exit(1)

lines = []
if base:
    with open(base) as f:
        lines = f.read().split()
lines.append(key)
with open(output, "w") as f:
    f.write("\\n".join(lines) + "\\n")
'''


def _write_script(path: Path, body: str) -> Path:
    path.write_text(f"#!{sys.executable}\n{body}", encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def fake_rider(tmp_path) -> Path:
    """Rider stand-in printing FAKE_TIME-based timings."""
    return _write_script(tmp_path / "rider", FAKE_RIDER)


@pytest.fixture
def fake_tuner(tmp_path) -> Path:
    """Tuner stand-in writing a small key=value artifact."""
    return _write_script(tmp_path / "tuner", FAKE_TUNER)


@pytest.fixture
def fake_merge_tool(tmp_path) -> Path:
    """Merge tool stand-in appending the inserted key to the base map."""
    return _write_script(tmp_path / "merge_tool", FAKE_MERGE_TOOL)


@pytest.fixture(autouse=True)
def clean_fake_env(monkeypatch):
    """Keep the caller's environment from leaking into the fake executables."""
    for key in list(os.environ):
        if key.startswith(("FAKE_", "SOLUTION_", "TUNE_")):
            monkeypatch.delenv(key, raising=False)


# ==============================================================================
# Problem Fixtures
# ==============================================================================

@pytest.fixture
def problem_1d() -> Problem:
    """Single-batch 1D complex forward in-place single."""
    return Problem(lengths=(64,))


@pytest.fixture
def problem_2d() -> Problem:
    """Batched 2D real inverse out-of-place double."""
    return Problem(
        lengths=(128, 256),
        direction=Direction.INVERSE,
        field=FieldKind.REAL,
        placement=Placement.OUTOFPLACE,
        precision=Precision.DOUBLE,
        nbatch=4,
    )


@pytest.fixture
def pow2_problems() -> List[Problem]:
    """1D single-batch problems of lengths 8..256."""
    return [Problem(lengths=(2 ** k,)) for k in range(3, 9)]


# ==============================================================================
# Run Fixtures
# ==============================================================================

@pytest.fixture
def make_run(tmp_path) -> Callable[..., Path]:
    """
    Factory writing a run directory from {token: times}.

    Problems are grouped into datasets by their dataset name.
    """
    def _make(name: str, timings: Dict[str, List[float]]) -> Path:
        run_dir = tmp_path / name
        stores: Dict[str, SampleStore] = {}
        for token, times in timings.items():
            problem = Problem.from_token(token)
            store = stores.setdefault(
                problem.dataset_name,
                SampleStore(problem.dataset_name, {"title": problem.dataset_name}),
            )
            store.add(problem, times)
        for store in stores.values():
            store.save(run_dir)
        run_dir.mkdir(parents=True, exist_ok=True)
        return run_dir

    return _make
