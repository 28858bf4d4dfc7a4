"""
fftperf command line.

Usage:
    fftperf run --rider ./rider --suite pow2_1d -o runs/base
    fftperf run --rider ./rider --lib a.so --lib b.so -o runs/a runs/b
    fftperf post runs/base runs/new --plot
    fftperf regress runs/base runs/new --percent 5
    fftperf tune --tuner ./tuner --suite benchmark -o tuning/
    fftperf merge --rider ./rider --merge-tool ./merge_tool \\
        --merge-input tuning/merge_input.yaml --reference-map map.dat --output-map new.dat
    fftperf suites
"""

from __future__ import annotations

import argparse
import sys
from functools import partial
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .config import PerfConfig, load_perf_config
from .generators import (
    FilteredGenerator,
    ProblemGenerator,
    RadixGenerator,
    SuiteGenerator,
    TokenListGenerator,
    available_suites,
)
from .launcher import require_executable
from .merge import SolutionMergeEngine, format_decisions
from .plots import plot_runs
from .postprocess import write_comparisons, write_summaries
from .problem import Direction, FieldKind, Placement, Precision
from .regression import RegressionDetector
from .rider import Rider, RiderEnvironment
from .timer import Timer, dataset_metadata
from .tuning import TuningMetadata, TuningOrchestrator, load_merge_input

# Exit status of `regress` when regressions were found
REGRESSION_EXIT = 2


def _enum_choices(enum_cls) -> List[str]:
    return [member.value for member in enum_cls]


def add_problem_args(parser: argparse.ArgumentParser) -> None:
    """Problem source and filter options shared by run and tune."""
    source = parser.add_argument_group('problems')
    source.add_argument('--suite', help='Named suite (see `fftperf suites`)')
    source.add_argument('--suite-file', type=Path,
                        help='Suite YAML file (default: built-in suites)')
    source.add_argument('--token', action='append', default=[],
                        help='Explicit problem token (repeatable)')
    source.add_argument('--radix', type=int, default=2,
                        help='Radix for generated lengths (default: 2)')
    source.add_argument('--dims', type=int, nargs='+', default=[1],
                        help='Dimensions to generate (default: 1)')
    source.add_argument('--xmin', type=int, default=2)
    source.add_argument('--xmax', type=int, default=1024)
    source.add_argument('--ymin', type=int, default=2)
    source.add_argument('--ymax', type=int, default=1024)
    source.add_argument('--zmin', type=int, default=2)
    source.add_argument('--zmax', type=int, default=1024)
    source.add_argument('--batch', type=int, nargs='+', default=[1],
                        help='Batch counts (default: 1)')

    filters = parser.add_argument_group('filters')
    filters.add_argument('--direction', choices=_enum_choices(Direction), nargs='+', default=[])
    filters.add_argument('--placement', choices=_enum_choices(Placement), nargs='+', default=[])
    filters.add_argument('--field', choices=_enum_choices(FieldKind), nargs='+', default=[])
    filters.add_argument('--precision', choices=_enum_choices(Precision), nargs='+', default=[])
    filters.add_argument('--dim', type=int, nargs='+', default=[],
                         help='Keep only these dimensions')


def build_generator(args: argparse.Namespace) -> ProblemGenerator:
    """
    Build the filtered problem generator selected on the command line.

    Precedence: explicit tokens, then a named suite, then radix enumeration.
    Filters narrow whichever source was chosen.
    """
    if args.token:
        base: ProblemGenerator = TokenListGenerator(args.token)
    elif args.suite:
        if args.suite_file:
            base = SuiteGenerator(args.suite_file, args.suite)
        else:
            base = SuiteGenerator.builtin(args.suite)
    else:
        # Radix enumeration covers every attribute; filters pick the subset
        base = RadixGenerator(
            radix=args.radix,
            dimensions=args.dims,
            xmin=args.xmin, xmax=args.xmax,
            ymin=args.ymin, ymax=args.ymax,
            zmin=args.zmin, zmax=args.zmax,
            batches=args.batch,
            directions=[Direction(v) for v in args.direction] or [Direction.FORWARD],
            fields=[FieldKind(v) for v in args.field] or [FieldKind.COMPLEX],
            placements=[Placement(v) for v in args.placement] or [Placement.INPLACE],
            precisions=[Precision(v) for v in args.precision] or [Precision.SINGLE],
        )

    return FilteredGenerator(
        base,
        directions=[Direction(v) for v in args.direction],
        placements=[Placement(v) for v in args.placement],
        fields=[FieldKind(v) for v in args.field],
        precisions=[Precision(v) for v in args.precision],
        dimensions=args.dim,
    )


def build_metadata_factory(generator: ProblemGenerator) -> Callable[..., Dict[str, str]]:
    """Dataset metadata for a generator; suites contribute their title and caption."""
    base = generator.generator if isinstance(generator, FilteredGenerator) else generator
    if isinstance(base, SuiteGenerator):
        return partial(dataset_metadata, suite_title=base.title, caption=base.caption)
    return dataset_metadata


def add_rider_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument('--rider', help='Rider executable')
    parser.add_argument('--lib', action='append', default=None,
                        help='Library to load (repeatable; one output dir per library)')
    parser.add_argument('--device', type=int, help='Device index')
    parser.add_argument('-N', '--ntrial', type=int, help='Trials per problem')
    parser.add_argument('--timeout', type=float, help='Per-call timeout in seconds')


def build_rider(config: PerfConfig) -> Rider:
    return Rider(
        executable=require_executable(config.rider, "rider"),
        ntrial=config.ntrial,
        libraries=config.libraries,
        device=config.device,
        use_token=config.use_token,
        timeout=config.timeout,
    )


def load_config(args: argparse.Namespace) -> PerfConfig:
    """Config file values with command-line overrides applied."""
    config = load_perf_config(args.config) if args.config else PerfConfig()
    overrides = {}
    for key in ('rider', 'tuner', 'merge_tool', 'device', 'ntrial', 'timeout',
                'percent', 'moods_threshold', 'alpha', 'nboot', 'seed', 'significance'):
        if hasattr(args, key):
            overrides[key] = getattr(args, key)
    if getattr(args, 'lib', None) is not None:
        overrides['libraries'] = args.lib
    return config.update(**overrides)


# ----------------------------------------------------------------------
# Commands
# ----------------------------------------------------------------------

def cmd_run(args: argparse.Namespace) -> int:
    config = load_config(args)
    rider = build_rider(config)
    env = RiderEnvironment(solution_map=args.solution_map)
    generator = build_generator(args)
    timer = Timer(rider, env=env, query_device=not args.no_device_query,
                  metadata_factory=build_metadata_factory(generator), verbose=args.verbose)
    result = timer.run(generator, args.output)
    print(result.summary())
    return 0


def cmd_post(args: argparse.Namespace) -> int:
    config = load_config(args)
    runs = [args.reference] + args.others
    written = []
    for run in runs:
        written += write_summaries(run, config.alpha, config.nboot, config.seed)
    written += write_comparisons(args.reference, args.others, args.out,
                                 config.alpha, config.nboot, config.seed)
    if args.plot:
        plot_dir = args.plot_dir or Path(args.reference) / "figures"
        written += plot_runs(args.reference, args.others, plot_dir, comparison_dir=args.out)

    if args.verbose:
        for path in written:
            print(f"  {path}")
    print(f"{len(written)} files written")
    return 0


def cmd_regress(args: argparse.Namespace) -> int:
    config = load_config(args)
    detector = RegressionDetector(config.percent, config.moods_threshold)
    report = detector.detect(args.reference, args.others)
    print(report.summary())
    if args.report:
        report.save(args.report)
        print(f"Report saved: {args.report}")
    return REGRESSION_EXIT if report.regressions else 0


def cmd_tune(args: argparse.Namespace) -> int:
    config = load_config(args)
    if args.replay:
        metadata = TuningMetadata.load(args.replay)
    else:
        metadata = TuningMetadata(
            problems=list(build_generator(args)),
            dump_candidates=args.dump_candidates,
            exact_match=args.exact,
            print_reject_reason=args.print_reject_reason,
            min_wgs=args.min_wgs,
            max_wgs=args.max_wgs,
        )
    orchestrator = TuningOrchestrator(config.tuner, args.output,
                                      timeout=config.timeout, verbose=args.verbose)
    result = orchestrator.tune(metadata)
    print(result.summary())
    return 0


def cmd_merge(args: argparse.Namespace) -> int:
    config = load_config(args)
    candidates = load_merge_input(args.merge_input)
    engine = SolutionMergeEngine(
        rider=build_rider(config),
        merge_tool=config.merge_tool or "",
        out_dir=args.output,
        significance=config.significance,
        timeout=config.timeout,
        verbose=args.verbose,
    )
    evaluation, outcome = engine.run(candidates, args.reference_map, args.output_map)
    if args.verbose and evaluation.decisions:
        print(format_decisions(evaluation.decisions))
    print(
        f"{len(evaluation.decisions)} evaluated, {len(evaluation.skipped)} skipped, "
        f"{len(evaluation.accepted)} accepted; {outcome.summary()}"
    )
    return 0


def cmd_suites(args: argparse.Namespace) -> int:
    for name in available_suites(args.suite_file):
        print(name)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='fftperf',
        description='FFT benchmark timing, statistics, regression detection and solution merging'
    )
    parser.add_argument('--config', '-c', type=Path, help='PerfConfig YAML file')
    parser.add_argument('-q', '--quiet', action='store_true', help='Quiet mode')
    sub = parser.add_subparsers(dest='command', required=True)

    p = sub.add_parser('run', help='Time problems with the rider')
    add_rider_args(p)
    add_problem_args(p)
    p.add_argument('-o', '--output', type=Path, nargs='+', required=True,
                   help='Output run directory (one per library)')
    p.add_argument('--solution-map', type=Path, help='Solution map for the library')
    p.add_argument('--no-device-query', action='store_true',
                   help='Skip device queries in specs.txt')
    p.set_defaults(func=cmd_run)

    p = sub.add_parser('post', help='Write summaries, comparisons and figures')
    p.add_argument('reference', type=Path, help='Reference run directory')
    p.add_argument('others', type=Path, nargs='*', help='Comparison run directories')
    p.add_argument('--out', type=Path, help='Directory for comparison files')
    p.add_argument('--plot', action='store_true', help='Render figures (matplotlib)')
    p.add_argument('--plot-dir', type=Path, help='Figure directory (default: <reference>/figures)')
    p.add_argument('--alpha', type=float, help='Confidence level')
    p.add_argument('--nboot', type=int, help='Bootstrap resamples')
    p.add_argument('--seed', type=int, help='Bootstrap seed')
    p.set_defaults(func=cmd_post)

    p = sub.add_parser('regress', help='Detect regressions against a reference run')
    p.add_argument('reference', type=Path)
    p.add_argument('others', type=Path, nargs='+')
    p.add_argument('--percent', type=float, help='Minimum slowdown in percent')
    p.add_argument('--moods-threshold', type=float, help='Maximum median test p-value')
    p.add_argument('--report', type=Path, help='Write YAML report')
    p.set_defaults(func=cmd_regress)

    p = sub.add_parser('tune', help='Run the tuner for every problem')
    p.add_argument('--tuner', help='Tuner executable')
    p.add_argument('--timeout', type=float, help='Per-problem timeout in seconds')
    add_problem_args(p)
    p.add_argument('-o', '--output', type=Path, required=True, help='Tuning output directory')
    p.add_argument('--replay', type=Path, help='Replay a saved tune_config.yaml')
    p.add_argument('--dump-candidates', action='store_true')
    p.add_argument('--exact', action='store_true', help='Tune for the exact problem')
    p.add_argument('--print-reject-reason', action='store_true')
    p.add_argument('--min-wgs', type=int, help='Global minimum workgroup size')
    p.add_argument('--max-wgs', type=int, help='Global maximum workgroup size')
    p.set_defaults(func=cmd_tune)

    p = sub.add_parser('merge', help='Evaluate tuned candidates and merge the winners')
    add_rider_args(p)
    p.add_argument('--merge-tool', help='Merge tool executable')
    p.add_argument('--merge-input', type=Path, required=True, help='merge_input.yaml from tune')
    p.add_argument('--reference-map', type=Path, help='Current solution map')
    p.add_argument('--output-map', type=Path, required=True, help='Merged solution map')
    p.add_argument('-o', '--output', type=Path, default=Path('output/merge'),
                   help='Work directory (default: output/merge)')
    p.add_argument('--significance', type=float, help='p-value for a trusted speedup')
    p.set_defaults(func=cmd_merge)

    p = sub.add_parser('suites', help='List problem suites')
    p.add_argument('--suite-file', type=Path)
    p.set_defaults(func=cmd_suites)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    args.verbose = not args.quiet
    try:
        return args.func(args)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
