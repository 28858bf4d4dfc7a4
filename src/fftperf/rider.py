"""
Rider invocation and output parsing.

The rider is the external benchmark executable. For one problem it prints
a line of per-trial timings per loaded library:

    Execution gpu time: 0.0121 0.0119 0.0120 ms

When running against a solution map it also reports which entry
serviced the request:

    Solution token: complex_forward_len_64_single_ip_batch_1
    Match type: FULL

A problem that does not fit on the device is reported with a line
starting with 'SKIPPED:'.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Sequence, Union
import re

from .launcher import LaunchConfig, ProcessResult, launch
from .problem import Problem

# Environment variables read by the rider
SOLUTION_MAP_ENV = "SOLUTION_MAP_FILE"
SOLUTION_OVERRIDE_ENV = "SOLUTION_OVERRIDE_FILE"

_TIME_RE = re.compile(r"^\s*Execution gpu time:\s*(?P<values>.*?)\s*(ms)?\s*$")
_SOLUTION_RE = re.compile(r"^\s*Solution token:\s*(?P<token>\S*)\s*$")
_MATCH_RE = re.compile(r"^\s*Match type:\s*(?P<kind>\S+)\s*$")


class MeasurementError(RuntimeError):
    """A single rider invocation failed or produced unusable output."""


class MatchType(Enum):
    """How a solution-map entry matched the requested problem."""
    FULL = "FULL"        # exact problem
    MINIMAL = "MINIMAL"  # generalized entry that also serves other problems

    @property
    def is_exact(self) -> bool:
        return self is MatchType.FULL


@dataclass(frozen=True)
class RiderEnvironment:
    """
    Solution-map configuration for one rider call.

    Attributes:
        solution_map: Solution map the library reads (None = library default).
        override: Candidate solution file substituted for this call only.
    """
    solution_map: Optional[Path] = None
    override: Optional[Path] = None

    def to_launch_config(self, timeout: Optional[float] = None) -> LaunchConfig:
        env = {}
        unset = []
        for key, value in ((SOLUTION_MAP_ENV, self.solution_map),
                           (SOLUTION_OVERRIDE_ENV, self.override)):
            if value is None:
                unset.append(key)
            else:
                env[key] = str(value)
        return LaunchConfig(env=env, unset=tuple(unset), timeout=timeout)


@dataclass
class RiderOutput:
    """
    Parsed rider output.

    Attributes:
        times: One list of per-trial timings (ms) per library.
        solution_token: Solution-map entry that serviced the problem ('' if none).
        match_type: FULL or MINIMAL when reported.
    """
    times: List[List[float]] = field(default_factory=list)
    solution_token: str = ""
    match_type: Optional[MatchType] = None

    @property
    def is_exact_match(self) -> bool:
        return self.match_type is not None and self.match_type.is_exact


def parse_rider_output(text: str, nlibs: int = 1) -> RiderOutput:
    """
    Parse rider stdout.

    Args:
        text: Captured standard output.
        nlibs: Number of timing lines expected.

    Returns:
        RiderOutput.

    Raises:
        MeasurementError: On SKIPPED problems, missing or malformed timings.
    """
    result = RiderOutput()
    for line in text.splitlines():
        if line.startswith("SKIPPED:"):
            raise MeasurementError(line.strip())

        m = _TIME_RE.match(line)
        if m:
            try:
                values = [float(v) for v in m.group("values").split()]
            except ValueError:
                raise MeasurementError(f"Unparsable timing line: {line.strip()}")
            if not values:
                raise MeasurementError("Empty timing line")
            result.times.append(values)
            continue

        m = _SOLUTION_RE.match(line)
        if m:
            result.solution_token = m.group("token")
            continue

        m = _MATCH_RE.match(line)
        if m:
            try:
                result.match_type = MatchType(m.group("kind").upper())
            except ValueError:
                raise MeasurementError(f"Unknown match type: {m.group('kind')}")

    if len(result.times) != nlibs:
        raise MeasurementError(
            f"Expected {nlibs} timing line(s), found {len(result.times)}"
        )
    return result


class Rider:
    """
    Runs the rider for one problem at a time.

    With a non-empty library list the rider is driven in "dynamic" mode:
    each library is passed with --lib and one timing line per library is
    expected back, in the same order.
    """

    def __init__(
        self,
        executable: Union[str, Path],
        ntrial: int = 10,
        libraries: Sequence[Union[str, Path]] = (),
        device: int = 0,
        use_token: bool = True,
        timeout: Optional[float] = None,
    ):
        if ntrial < 1:
            raise ValueError("ntrial must be at least 1")
        self.executable = Path(executable)
        self.ntrial = ntrial
        self.libraries = [Path(lib) for lib in libraries]
        self.device = device
        self.use_token = use_token
        self.timeout = timeout

    @property
    def nlibs(self) -> int:
        return max(1, len(self.libraries))

    def command(self, problem: Problem) -> List[str]:
        """Command line measuring one problem."""
        cmd = [str(self.executable)]
        for lib in self.libraries:
            cmd += ["--lib", str(lib)]
        cmd += ["--device", str(self.device), "-N", str(self.ntrial)]
        if self.use_token:
            cmd += ["--token", problem.token]
        else:
            cmd += problem.rider_args()
        return cmd

    def run(self, problem: Problem, env: Optional[RiderEnvironment] = None) -> ProcessResult:
        env = env or RiderEnvironment()
        return launch(self.command(problem), env.to_launch_config(self.timeout))

    def measure(self, problem: Problem, env: Optional[RiderEnvironment] = None) -> RiderOutput:
        """
        Measure one problem.

        Raises:
            MeasurementError: If the call fails or its output is unusable.
        """
        result = self.run(problem, env)
        if not result.ok:
            raise MeasurementError(result.describe_failure())
        return parse_rider_output(result.stdout, self.nlibs)
