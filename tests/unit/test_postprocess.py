"""
Tests for post-processing and figures.

Tests cover:
1. Summary rows with confidence bounds and GFLOP/s
2. Comparison rows on partially overlapping runs
3. Derived file naming and metadata headers
4. Rendering figures from derived files
"""

import pytest

from fftperf.plots import RunCharts, plot_runs
from fftperf.postprocess import (
    compare_stores,
    comparison_path,
    load_comparison,
    load_summary,
    summarize_store,
    write_comparisons,
    write_summaries,
)
from fftperf.problem import Problem
from fftperf.samples import SampleStore

T64 = "complex_forward_len_64_single_ip_batch_1"
T128 = "complex_forward_len_128_single_ip_batch_1"
T256 = "complex_forward_len_256_single_ip_batch_1"
DATASET = "1D_complex_forward_inplace_single"


def _times(center, n=10):
    return [center * (1 + 0.01 * (i % 4)) for i in range(n)]


class TestSummaries:
    """Test per-run summaries."""

    def test_rows_in_size_order(self):
        store = SampleStore(DATASET)
        for token, center in ((T256, 3.0), (T64, 1.0), (T128, 2.0)):
            store.add(Problem.from_token(token), _times(center))
        rows = summarize_store(store, seed=0)
        assert [r.size for r in rows] == [64, 128, 256]
        for row in rows:
            assert row.low <= row.median <= row.high

    def test_gflops(self):
        store = SampleStore(DATASET)
        store.add(Problem.from_token(T64), [1.0])
        row = summarize_store(store)[0]
        assert row.gflops == pytest.approx(Problem.from_token(T64).flops / 1e6)

    def test_write_summaries_copies_metadata(self, make_run):
        run = make_run("base", {T64: _times(1.0), T128: _times(2.0)})
        paths = write_summaries(run, nboot=100, seed=1)
        assert [p.name for p in paths] == [f"{DATASET}.mdat"]

        metadata, rows = load_summary(paths[0])
        assert metadata == {"title": DATASET}
        assert [r.token for r in rows] == [T64, T128]


class TestComparisons:
    """Test reference/comparison speedups."""

    def test_partial_coverage(self):
        """Only tokens in both runs are compared."""
        ref = SampleStore(DATASET)
        other = SampleStore(DATASET)
        ref.add(Problem.from_token(T64), _times(2.0))
        ref.add(Problem.from_token(T128), _times(2.0))
        other.add(Problem.from_token(T128), _times(1.0))
        other.add(Problem.from_token(T256), _times(1.0))

        rows = compare_stores(ref, other, seed=0)
        assert [r.token for r in rows] == [T128]
        assert rows[0].speedup == pytest.approx(2.0)
        assert rows[0].low <= rows[0].speedup <= rows[0].high
        assert rows[0].pval < 0.05

    def test_zero_median_comparison(self):
        """A zero-time comparison side yields an infinite speedup row."""
        ref = SampleStore(DATASET)
        other = SampleStore(DATASET)
        ref.add(Problem.from_token(T64), _times(1.0))
        other.add(Problem.from_token(T64), [0.0] * 10)

        rows = compare_stores(ref, other, seed=0)
        assert rows[0].speedup == float("inf")
        assert (rows[0].low, rows[0].high) == (float("inf"), float("inf"))

    def test_write_comparisons_default_location(self, make_run):
        ref = make_run("ref", {T64: _times(2.0)})
        new = make_run("new", {T64: _times(1.0)})
        paths = write_comparisons(ref, [new], nboot=100, seed=2)
        assert paths == [comparison_path(new, ref, new, DATASET)]
        assert paths[0].name == f"ref-new-{DATASET}.sdat"

        metadata, rows = load_comparison(paths[0])
        assert metadata["title"] == DATASET
        assert rows[0].speedup == pytest.approx(2.0)

    def test_missing_dataset_skipped(self, make_run, tmp_path):
        ref = make_run("ref", {T64: _times(2.0), "complex_forward_len_64_double_ip_batch_1": [1.0]})
        new = make_run("new", {T64: _times(1.0)})
        paths = write_comparisons(ref, [new], out_dir=tmp_path / "cmp", nboot=50)
        assert len(paths) == 1
        assert paths[0].parent == tmp_path / "cmp"

    def test_raw_files_untouched(self, make_run):
        ref = make_run("ref", {T64: _times(2.0)})
        dat = ref / f"{DATASET}.dat"
        before = dat.read_text()
        write_summaries(ref, nboot=50)
        write_comparisons(ref, [ref], nboot=50)
        assert dat.read_text() == before


class TestPlots:
    """Test figure rendering."""

    def test_plot_runs(self, make_run, tmp_path):
        ref = make_run("ref", {T64: _times(2.0), T128: _times(4.0)})
        new = make_run("new", {T64: _times(1.0), T128: _times(2.0)})
        for run in (ref, new):
            write_summaries(run, nboot=50, seed=0)
        write_comparisons(ref, [new], nboot=50, seed=0)

        written = plot_runs(ref, [new], tmp_path / "figures")
        names = sorted(p.name for p in written)
        assert names == [f"{DATASET}.png", f"ref-new-{DATASET}.png"]
        assert all(p.exists() and p.stat().st_size > 0 for p in written)

    def test_empty_comparison_still_saved(self, make_run, tmp_path):
        ref = make_run("ref", {T64: _times(2.0)})
        new = make_run("new", {T128: _times(1.0)})
        path = write_comparisons(ref, [new], nboot=50)[0]
        out = tmp_path / "empty.png"
        RunCharts.plot_speedup(path, save_path=out)
        assert out.exists()
