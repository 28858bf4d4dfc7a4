"""
Tuning orchestration.

Drives the external tuner once per problem and records the candidate
solution files it produces. The tuning configuration is written to disk
before the first tuner call so that a tuning pass can be replayed from
the file alone; successful candidates are written as merge input so that
merging can happen later, possibly more than once.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union
import re

import yaml

from .launcher import LaunchConfig, launch, require_executable
from .problem import Problem

# Environment variables read by the tuner
TUNE_MIN_WGS_ENV = "TUNE_MIN_WGS"
TUNE_MAX_WGS_ENV = "TUNE_MAX_WGS"
TUNE_DUMP_CANDIDATES_ENV = "TUNE_DUMP_CANDIDATES"
TUNE_EXACT_PROB_ENV = "TUNE_EXACT_PROB"
TUNE_PRINT_REJECT_REASON_ENV = "TUNE_PRINT_REJECT_REASON"
TUNE_SOLUTION_FILE_ENV = "TUNE_SOLUTION_FILE"

TUNE_CONFIG_FILE = "tune_config.yaml"
MERGE_INPUT_FILE = "merge_input.yaml"
SOLUTIONS_DIR = "solutions"

DEFAULT_MIN_WGS = 64
DEFAULT_MAX_WGS_1D = 512
DEFAULT_MAX_WGS = 256

_SOLUTION_RE = re.compile(r"^\s*Solution token:\s*(?P<token>\S*)\s*$")


def default_wgs(problem: Problem) -> Tuple[int, int]:
    """Per-problem workgroup-size bounds used without a global override."""
    if problem.dimension == 1:
        return DEFAULT_MIN_WGS, DEFAULT_MAX_WGS_1D
    return DEFAULT_MIN_WGS, DEFAULT_MAX_WGS


@dataclass
class TuningMetadata:
    """
    Everything needed to (re)run a tuning pass.

    Attributes:
        problems: Problems to tune, in order.
        dump_candidates: Ask the tuner to keep every intermediate candidate.
        exact_match: Tune for the exact problem rather than a minimal token
            that also serves other problems.
        print_reject_reason: Ask the tuner to log why candidates were rejected.
        min_wgs: Global minimum workgroup size (None = per-problem default).
        max_wgs: Global maximum workgroup size (None = per-problem default).
    """
    problems: List[Problem] = field(default_factory=list)
    dump_candidates: bool = False
    exact_match: bool = False
    print_reject_reason: bool = False
    min_wgs: Optional[int] = None
    max_wgs: Optional[int] = None

    def validate(self) -> None:
        """Validate configuration values."""
        if not self.problems:
            raise ValueError("No problems to tune")
        for value in (self.min_wgs, self.max_wgs):
            if value is not None and value < 1:
                raise ValueError("Workgroup sizes must be positive")
        if self.min_wgs is not None and self.max_wgs is not None and self.min_wgs > self.max_wgs:
            raise ValueError("min_wgs must not exceed max_wgs")

    def wgs_bounds(self, problem: Problem) -> Tuple[int, int]:
        """Workgroup-size bounds for one problem; global overrides win."""
        lo, hi = default_wgs(problem)
        return (
            self.min_wgs if self.min_wgs is not None else lo,
            self.max_wgs if self.max_wgs is not None else hi,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for YAML serialization."""
        return {
            "tuning": {
                "dump_candidates": self.dump_candidates,
                "exact_match": self.exact_match,
                "print_reject_reason": self.print_reject_reason,
                "min_wgs": self.min_wgs,
                "max_wgs": self.max_wgs,
                "problems": [p.token for p in self.problems],
            }
        }

    def save(self, path: Path) -> None:
        """Save configuration to YAML file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)

    @classmethod
    def load(cls, path: Union[str, Path]) -> "TuningMetadata":
        """
        Load a saved tuning configuration.

        Raises:
            FileNotFoundError: If the file does not exist.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Tuning config file not found: {path}")

        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}

        tuning = data.get("tuning", data)
        metadata = cls(
            problems=[Problem.from_token(t) for t in tuning.get("problems", [])],
            dump_candidates=bool(tuning.get("dump_candidates", False)),
            exact_match=bool(tuning.get("exact_match", False)),
            print_reject_reason=bool(tuning.get("print_reject_reason", False)),
            min_wgs=tuning.get("min_wgs"),
            max_wgs=tuning.get("max_wgs"),
        )
        metadata.validate()
        return metadata


@dataclass(frozen=True)
class TuneEnvironment:
    """Tuner configuration for one problem, mapped to environment variables at launch."""
    min_wgs: int
    max_wgs: int
    solution_file: Path
    dump_candidates: bool = False
    exact_match: bool = False
    print_reject_reason: bool = False

    def to_launch_config(self, timeout: Optional[float] = None) -> LaunchConfig:
        env = {
            TUNE_MIN_WGS_ENV: str(self.min_wgs),
            TUNE_MAX_WGS_ENV: str(self.max_wgs),
            TUNE_SOLUTION_FILE_ENV: str(self.solution_file),
        }
        unset = []
        for key, flag in ((TUNE_DUMP_CANDIDATES_ENV, self.dump_candidates),
                          (TUNE_EXACT_PROB_ENV, self.exact_match),
                          (TUNE_PRINT_REJECT_REASON_ENV, self.print_reject_reason)):
            if flag:
                env[key] = "1"
            else:
                unset.append(key)
        return LaunchConfig(env=env, unset=tuple(unset), timeout=timeout)


@dataclass
class CandidateArtifact:
    """
    Result of tuning one problem.

    Attributes:
        token: Problem token.
        artifact_path: Candidate solution file ('' when tuning failed).
        success: Whether the tuner produced a usable artifact.
        solution_token: Solution-map key the candidate was tuned for.
        summary: Human-readable tuner summary.
    """
    token: str
    artifact_path: str = ""
    success: bool = False
    solution_token: str = ""
    summary: str = ""

    @property
    def problem(self) -> Problem:
        return Problem.from_token(self.token)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token": self.token,
            "artifact": self.artifact_path,
            "solution_token": self.solution_token,
            "summary": self.summary,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CandidateArtifact":
        artifact = str(data.get("artifact", ""))
        return cls(
            token=data["token"],
            artifact_path=artifact,
            success=bool(artifact),
            solution_token=str(data.get("solution_token", "") or ""),
            summary=str(data.get("summary", "") or ""),
        )


def save_merge_input(candidates: List[CandidateArtifact], path: Path) -> Path:
    """Write successful candidates as merge input."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    data = {"candidates": [c.to_dict() for c in candidates if c.success]}
    with open(path, 'w', encoding='utf-8') as f:
        yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
    return path


def load_merge_input(path: Union[str, Path]) -> List[CandidateArtifact]:
    """
    Read merge input written by a tuning pass.

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Merge input file not found: {path}")
    with open(path, 'r', encoding='utf-8') as f:
        data = yaml.safe_load(f) or {}
    return [CandidateArtifact.from_dict(entry) for entry in data.get("candidates", [])]


def parse_tuner_output(text: str) -> Tuple[str, str]:
    """
    Extract the tuned solution token and a summary from tuner output.

    The summary is made of the '[Result]' lines, or the last output line
    when there are none.

    Returns:
        (solution_token, summary)
    """
    solution_token = ""
    results = []
    lines = [line.rstrip() for line in text.splitlines() if line.strip()]
    for line in lines:
        m = _SOLUTION_RE.match(line)
        if m:
            solution_token = m.group("token")
        elif line.lstrip().startswith("[Result]"):
            results.append(line.strip())
    if results:
        summary = "\n".join(results)
    else:
        summary = lines[-1].strip() if lines else ""
    return solution_token, summary


@dataclass
class TuningResult:
    """Outcome of a tuning pass."""
    candidates: List[CandidateArtifact]
    config_file: Path
    merge_input: Path

    @property
    def succeeded(self) -> List[CandidateArtifact]:
        return [c for c in self.candidates if c.success]

    @property
    def failed(self) -> List[CandidateArtifact]:
        return [c for c in self.candidates if not c.success]

    def summary(self) -> str:
        return f"{len(self.succeeded)}/{len(self.candidates)} problems tuned, {len(self.failed)} failed"


class TuningOrchestrator:
    """
    Runs the tuner for every problem of a TuningMetadata.

    A failing problem is recorded and tuning continues with the next one.
    """

    def __init__(
        self,
        tuner: Union[str, Path],
        out_dir: Union[str, Path],
        timeout: Optional[float] = None,
        verbose: bool = True,
    ):
        """
        Initialize orchestrator.

        Args:
            tuner: Tuner executable.
            out_dir: Directory for the config snapshot, artifacts and merge input.
            timeout: Per-problem timeout in seconds.
            verbose: Print progress.
        """
        self.tuner = tuner
        self.out_dir = Path(out_dir)
        self.timeout = timeout
        self.verbose = verbose

    def artifact_path(self, problem: Problem) -> Path:
        return self.out_dir / SOLUTIONS_DIR / f"{problem.token}.dat"

    def environment(self, metadata: TuningMetadata, problem: Problem) -> TuneEnvironment:
        min_wgs, max_wgs = metadata.wgs_bounds(problem)
        return TuneEnvironment(
            min_wgs=min_wgs,
            max_wgs=max_wgs,
            solution_file=self.artifact_path(problem),
            dump_candidates=metadata.dump_candidates,
            exact_match=metadata.exact_match,
            print_reject_reason=metadata.print_reject_reason,
        )

    def tune_problem(self, metadata: TuningMetadata, problem: Problem) -> CandidateArtifact:
        """Tune one problem; failures are returned, not raised."""
        env = self.environment(metadata, problem)
        env.solution_file.parent.mkdir(parents=True, exist_ok=True)
        if env.solution_file.exists():
            env.solution_file.unlink()

        result = launch([str(self.tuner), "--token", problem.token],
                        env.to_launch_config(self.timeout))
        solution_token, summary = parse_tuner_output(result.stdout)

        if not result.ok:
            return CandidateArtifact(problem.token, summary=result.describe_failure())
        if not env.solution_file.exists() or env.solution_file.stat().st_size == 0:
            return CandidateArtifact(
                problem.token,
                summary=f"tuner produced no solution file ({env.solution_file})",
            )
        return CandidateArtifact(
            token=problem.token,
            artifact_path=str(env.solution_file),
            success=True,
            solution_token=solution_token,
            summary=summary,
        )

    def tune(self, metadata: TuningMetadata) -> TuningResult:
        """
        Tune every problem and write the merge input.

        Raises:
            FileNotFoundError: If the tuner executable does not exist.
            ValueError: If the metadata is invalid.
        """
        metadata.validate()
        self.tuner = require_executable(self.tuner, "tuner")

        self.out_dir.mkdir(parents=True, exist_ok=True)
        config_file = self.out_dir / TUNE_CONFIG_FILE
        metadata.save(config_file)

        if self.verbose:
            print(f"\n{'=' * 60}")
            print(f"Tuning {len(metadata.problems)} problems with {self.tuner}")
            print(f"Config: {config_file}")
            print(f"{'=' * 60}\n")

        candidates = []
        total = len(metadata.problems)
        for i, problem in enumerate(metadata.problems):
            if self.verbose:
                lo, hi = metadata.wgs_bounds(problem)
                print(f"[{i + 1}/{total}] {problem.token} (wgs {lo}-{hi})")

            candidate = self.tune_problem(metadata, problem)
            candidates.append(candidate)

            if self.verbose:
                status = "ok" if candidate.success else "FAILED"
                print(f"  {status}: {candidate.summary}")

        merge_input = save_merge_input(candidates, self.out_dir / MERGE_INPUT_FILE)
        result = TuningResult(candidates, config_file, merge_input)

        if self.verbose:
            print(f"\n{'=' * 60}")
            print(f"Tuning complete: {result.summary()}")
            print(f"Merge input: {merge_input}")
            print(f"{'=' * 60}\n")

        return result
