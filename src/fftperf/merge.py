"""
Solution-map merging.

For every tuned candidate the problem is measured twice through the rider:
once against the reference solution map and once with the candidate file
supplied as an override. The two timing vectors decide whether the
candidate replaces the reference entry:

    speedup       = median(reference) / median(candidate)
    confident     = median_test(reference, candidate) <= significance
    new_is_faster = speedup > 1.0 and confident

Accepted candidates are folded into the solution map one at a time by the
external merge tool; each insertion starts from the map written by the
previous successful insertion.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from functools import reduce
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union
import shutil

import yaml

from . import stats
from .launcher import LaunchConfig, launch, require_executable
from .rider import MeasurementError, Rider, RiderEnvironment, RiderOutput
from .tuning import CandidateArtifact

DEFAULT_SIGNIFICANCE = 0.05
MERGE_DIR = "merge"
MERGE_REPORT_FILE = "merge_report.yaml"


class IncompleteMergeRecordError(RuntimeError):
    """A merge record was finalized before both measurements were recorded."""


class RecordState(Enum):
    INCOMPLETE = "incomplete"
    COMPLETE = "complete"


@dataclass(frozen=True)
class Measurement:
    """
    One side of a merge comparison.

    Attributes:
        solution_token: Solution-map entry that serviced the problem.
        exact: True for a FULL (exact problem) match.
        times: Per-trial timings in ms.
    """
    solution_token: str
    exact: bool
    times: Tuple[float, ...]

    @classmethod
    def from_rider_output(cls, output: RiderOutput) -> "Measurement":
        return cls(
            solution_token=output.solution_token,
            exact=output.is_exact_match,
            times=tuple(output.times[0]),
        )

    @property
    def match_label(self) -> str:
        return "FULL" if self.exact else "MINIMAL"


@dataclass(frozen=True)
class MergeDecision:
    """
    Finalized comparison of a candidate against the reference.

    can_keep_slow_ref_sol marks an exact-match reference facing a faster
    but only generally matching candidate. It is reported for review and
    does not affect `selected`.
    """
    token: str
    artifact_path: str
    reference_solution: str
    reference_exact: bool
    candidate_solution: str
    candidate_exact: bool
    reference_median: float
    candidate_median: float
    speedup: float
    pval: float
    confident: bool
    new_is_faster: bool
    can_keep_slow_ref_sol: bool

    @property
    def selected(self) -> bool:
        """Whether the candidate goes into the insertion list."""
        return self.new_is_faster

    @property
    def key(self) -> str:
        """Solution-map key the candidate is inserted under."""
        return self.candidate_solution

    @property
    def label(self) -> str:
        if not self.selected:
            return "keep reference"
        if self.can_keep_slow_ref_sol:
            return "replace (reference was exact match)"
        return "replace"


@dataclass(frozen=True)
class MergeRecord:
    """
    Two-sided accumulator for one candidate.

    Built empty, then filled by the reference pass and the candidate pass.
    Only a complete record can be finalized.
    """
    candidate: CandidateArtifact
    reference: Optional[Measurement] = None
    tuned: Optional[Measurement] = None

    @property
    def state(self) -> RecordState:
        if self.reference is None or self.tuned is None:
            return RecordState.INCOMPLETE
        return RecordState.COMPLETE

    def with_reference(self, measurement: Measurement) -> "MergeRecord":
        return replace(self, reference=measurement)

    def with_candidate(self, measurement: Measurement) -> "MergeRecord":
        return replace(self, tuned=measurement)

    def finalize(self, significance: float = DEFAULT_SIGNIFICANCE) -> MergeDecision:
        """
        Compute speedup and significance and decide.

        Raises:
            IncompleteMergeRecordError: If either side is missing.
        """
        if self.state is not RecordState.COMPLETE:
            raise IncompleteMergeRecordError(
                f"Merge record for {self.candidate.token} is incomplete"
            )
        ref, cand = self.reference, self.tuned
        speedup = stats.speedup(ref.times, cand.times)
        pval = stats.median_test(ref.times, cand.times)
        confident = pval <= significance
        return MergeDecision(
            token=self.candidate.token,
            artifact_path=self.candidate.artifact_path,
            reference_solution=ref.solution_token,
            reference_exact=ref.exact,
            candidate_solution=cand.solution_token,
            candidate_exact=cand.exact,
            reference_median=stats.median(ref.times),
            candidate_median=stats.median(cand.times),
            speedup=speedup,
            pval=pval,
            confident=confident,
            new_is_faster=speedup > 1.0 and confident,
            can_keep_slow_ref_sol=ref.exact and not cand.exact,
        )


@dataclass
class Evaluation:
    """Decisions for evaluated candidates and reasons for skipped ones."""
    decisions: List[MergeDecision] = field(default_factory=list)
    skipped: Dict[str, str] = field(default_factory=dict)

    @property
    def accepted(self) -> List[MergeDecision]:
        """Insertion list, in evaluation order."""
        return [d for d in self.decisions if d.selected and d.candidate_solution]


@dataclass
class InsertionResult:
    """Outcome of one merge-tool call."""
    index: int
    token: str
    key: str
    base: Optional[Path]
    output: Path
    success: bool
    message: str = ""


@dataclass
class MergeOutcome:
    """
    Result of folding accepted candidates into the solution map.

    Attributes:
        final_map: Map written to the output path (None if nothing was inserted).
        insertions: Every insertion attempt in order.
    """
    final_map: Optional[Path]
    insertions: List[InsertionResult] = field(default_factory=list)

    @property
    def inserted(self) -> List[InsertionResult]:
        return [r for r in self.insertions if r.success]

    @property
    def failed(self) -> List[InsertionResult]:
        return [r for r in self.insertions if not r.success]

    def summary(self) -> str:
        return (
            f"{len(self.inserted)}/{len(self.insertions)} candidates inserted, "
            f"{len(self.failed)} failed"
        )


class SolutionMergeEngine:
    """
    Measures candidates against the reference map and merges the winners.
    """

    def __init__(
        self,
        rider: Rider,
        merge_tool: Union[str, Path],
        out_dir: Union[str, Path],
        significance: float = DEFAULT_SIGNIFICANCE,
        timeout: Optional[float] = None,
        verbose: bool = True,
    ):
        """
        Initialize merge engine.

        Args:
            rider: Rider used for both measurement passes.
            merge_tool: Executable inserting one candidate into a map.
            out_dir: Directory for intermediate maps and the report.
            significance: p-value at or below which a difference is trusted.
            timeout: Merge-tool timeout in seconds.
            verbose: Print progress.
        """
        self.rider = rider
        self.merge_tool = merge_tool
        self.out_dir = Path(out_dir)
        self.significance = significance
        self.timeout = timeout
        self.verbose = verbose

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def measure(
        self,
        candidate: CandidateArtifact,
        reference_map: Optional[Path],
    ) -> MergeRecord:
        """
        Run the reference pass, then the candidate pass.

        Raises:
            MeasurementError: If either pass fails.
        """
        problem = candidate.problem
        record = MergeRecord(candidate)

        ref_out = self.rider.measure(problem, RiderEnvironment(solution_map=reference_map))
        record = record.with_reference(Measurement.from_rider_output(ref_out))

        cand_env = RiderEnvironment(solution_map=reference_map,
                                    override=Path(candidate.artifact_path))
        cand_out = self.rider.measure(problem, cand_env)
        return record.with_candidate(Measurement.from_rider_output(cand_out))

    def evaluate(
        self,
        candidates: Sequence[CandidateArtifact],
        reference_map: Optional[Union[str, Path]] = None,
    ) -> Evaluation:
        """
        Measure and decide every candidate.

        Candidates are skipped when their artifact is missing, when a
        measurement fails, or when the candidate run reports no solution
        token.
        """
        require_executable(self.rider.executable, "rider")
        reference_map = _existing(reference_map)
        evaluation = Evaluation()

        if self.verbose:
            print(f"\n{'=' * 60}")
            print(f"Evaluating {len(candidates)} candidates")
            print(f"Reference map: {reference_map or '(none)'}")
            print(f"{'=' * 60}\n")

        for i, candidate in enumerate(candidates):
            if self.verbose:
                print(f"[{i + 1}/{len(candidates)}] {candidate.token}")

            reason = self._skip_reason(candidate)
            if reason is None:
                try:
                    record = self.measure(candidate, reference_map)
                except MeasurementError as e:
                    reason = f"measurement failed: {e}"
                else:
                    if not record.tuned.solution_token:
                        reason = "no solution token reported for candidate"

            if reason is not None:
                evaluation.skipped[candidate.token] = reason
                if self.verbose:
                    print(f"  Warning: {candidate.token} skipped - {reason}")
                continue

            decision = record.finalize(self.significance)
            evaluation.decisions.append(decision)
            if self.verbose:
                print(f"  speedup={decision.speedup:.3f} p={decision.pval:.2e} -> {decision.label}")

        return evaluation

    @staticmethod
    def _skip_reason(candidate: CandidateArtifact) -> Optional[str]:
        if not candidate.success or not candidate.artifact_path:
            return "tuning did not produce an artifact"
        if not Path(candidate.artifact_path).exists():
            return f"artifact missing: {candidate.artifact_path}"
        return None

    # ------------------------------------------------------------------
    # Merging
    # ------------------------------------------------------------------

    def merge_command(self, base: Optional[Path], decision: MergeDecision, output: Path) -> List[str]:
        cmd = [str(self.merge_tool)]
        if base is not None:
            cmd += ["--base", str(base)]
        cmd += ["--new", f"{decision.artifact_path}:{decision.key}", "--output", str(output)]
        return cmd

    def insert(
        self,
        index: int,
        base: Optional[Path],
        decision: MergeDecision,
    ) -> InsertionResult:
        """Insert one candidate on top of base, writing a new map version."""
        output = self.out_dir / MERGE_DIR / f"solution_map_{index}.dat"
        output.parent.mkdir(parents=True, exist_ok=True)
        if output.exists():
            output.unlink()

        result = launch(self.merge_command(base, decision, output), LaunchConfig(timeout=self.timeout))
        success = result.ok and output.exists()
        if not success and output.exists():
            # never leave a half-written map behind
            output.unlink()
        message = "" if success else (
            result.describe_failure() if not result.ok else "merge tool wrote no output"
        )
        return InsertionResult(index, decision.token, decision.key, base, output, success, message)

    def merge(
        self,
        decisions: Sequence[MergeDecision],
        reference_map: Optional[Union[str, Path]],
        output_map: Union[str, Path],
    ) -> MergeOutcome:
        """
        Fold accepted candidates into the solution map.

        Insertion i reads the map produced by the last successful insertion
        (the reference map for the first, or nothing if there is none). A
        failed insertion leaves the base unchanged.

        Raises:
            FileNotFoundError: If the merge tool executable does not exist.
        """
        accepted = [d for d in decisions if d.selected and d.candidate_solution]
        if accepted:
            self.merge_tool = require_executable(self.merge_tool, "merge tool")

        def step(state, item):
            base, results = state
            index, decision = item
            result = self.insert(index, base, decision)
            if self.verbose:
                status = "inserted" if result.success else f"FAILED ({result.message})"
                print(f"  [{index + 1}/{len(accepted)}] {decision.key}: {status}")
            return (result.output if result.success else base), results + [result]

        final_base, insertions = reduce(step, enumerate(accepted), (_existing(reference_map), []))

        final_map = None
        if any(r.success for r in insertions):
            output_map = Path(output_map)
            output_map.parent.mkdir(parents=True, exist_ok=True)
            if final_base.resolve() != output_map.resolve():
                shutil.copyfile(final_base, output_map)
            final_map = output_map

        outcome = MergeOutcome(final_map, insertions)
        if self.verbose:
            print(f"Merge complete: {outcome.summary()}")
            if final_map:
                print(f"Solution map: {final_map}")
        return outcome

    def run(
        self,
        candidates: Sequence[CandidateArtifact],
        reference_map: Optional[Union[str, Path]],
        output_map: Union[str, Path],
    ) -> Tuple[Evaluation, MergeOutcome]:
        """
        Evaluate candidates, merge the accepted ones and save the report.

        Raises:
            FileNotFoundError: If the rider or merge tool executable does
                not exist. Checked before any candidate is measured.
        """
        require_executable(self.rider.executable, "rider")
        self.merge_tool = require_executable(self.merge_tool, "merge tool")
        evaluation = self.evaluate(candidates, reference_map)
        outcome = self.merge(evaluation.decisions, reference_map, output_map)
        save_merge_report(evaluation, outcome, self.out_dir / MERGE_REPORT_FILE)
        return evaluation, outcome


def _existing(path: Optional[Union[str, Path]]) -> Optional[Path]:
    if path is None:
        return None
    path = Path(path)
    return path if path.exists() else None


def format_decisions(decisions: Sequence[MergeDecision]) -> str:
    """Table of merge decisions for human review."""
    lines = [
        "{:<48} {:<8} {:<8} {:>8} {:>10}  {}".format(
            "Token", "Ref", "New", "Speedup", "p-value", "Decision"
        ),
        "-" * 100,
    ]
    for d in decisions:
        lines.append("{:<48} {:<8} {:<8} {:>8.3f} {:>10.2e}  {}".format(
            d.token,
            "FULL" if d.reference_exact else "MINIMAL",
            "FULL" if d.candidate_exact else "MINIMAL",
            d.speedup,
            d.pval,
            d.label,
        ))
    return "\n".join(lines)


def save_merge_report(evaluation: Evaluation, outcome: MergeOutcome, path: Path) -> Path:
    """Write decisions, skipped candidates and insertion results as YAML."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    data: Dict[str, Any] = {
        "final_map": str(outcome.final_map) if outcome.final_map else None,
        "decisions": [dict(asdict(d), selected=d.selected) for d in evaluation.decisions],
        "skipped": dict(evaluation.skipped),
        "insertions": [
            {
                "token": r.token,
                "key": r.key,
                "base": str(r.base) if r.base else None,
                "output": str(r.output),
                "success": r.success,
                "message": r.message,
            }
            for r in outcome.insertions
        ],
    }
    with open(path, 'w', encoding='utf-8') as f:
        yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
    return path
