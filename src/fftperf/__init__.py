"""fftperf: FFT benchmark timing, statistics, regression detection and solution merging."""

from .problem import (
    Direction,
    FieldKind,
    Placement,
    Precision,
    Problem,
)
from .generators import (
    ProblemGenerator,
    RadixGenerator,
    SuiteGenerator,
    TokenListGenerator,
    FilteredGenerator,
    available_suites,
)
from .samples import (
    Sample,
    SampleStore,
    load_run,
)
from .rider import (
    MatchType,
    MeasurementError,
    Rider,
    RiderEnvironment,
    RiderOutput,
    parse_rider_output,
)
from .timer import Timer, TimerResult
from .stats import (
    confidence_interval,
    median,
    median_test,
    ratio_confidence_interval,
    speedup,
)
from .regression import (
    Regression,
    RegressionDetector,
    RegressionReport,
    is_regression,
)
from .tuning import (
    CandidateArtifact,
    TuningMetadata,
    TuningOrchestrator,
    TuningResult,
    load_merge_input,
)
from .merge import (
    IncompleteMergeRecordError,
    Measurement,
    MergeDecision,
    MergeOutcome,
    MergeRecord,
    RecordState,
    SolutionMergeEngine,
)
from .config import PerfConfig, load_perf_config

__version__ = "0.1.0"
