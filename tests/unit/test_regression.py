"""
Tests for regression detection.

Tests cover:
1. relative_difference and the is_regression conjunction
2. Store comparison and partial coverage
3. Run-level detection, de-duplication and ordering
4. Report summary and YAML output
"""

import pytest
import yaml

from fftperf.problem import Problem
from fftperf.regression import (
    RegressionDetector,
    RegressionReport,
    is_regression,
    relative_difference,
)
from fftperf.samples import SampleStore

T64 = "complex_forward_len_64_single_ip_batch_1"
T128 = "complex_forward_len_128_single_ip_batch_1"
T256 = "complex_forward_len_256_single_ip_batch_1"


def _spread(center, n=20):
    return [center * (1 + 0.001 * (i % 5)) for i in range(n)]


class TestIsRegression:
    """Test the regression decision rule."""

    def test_relative_difference(self):
        assert relative_difference(10.0, 12.0) == pytest.approx(20.0)
        assert relative_difference(10.0, 8.0) == pytest.approx(20.0)

    def test_relative_difference_zero_reference(self):
        assert relative_difference(0.0, 0.0) == 0.0
        assert relative_difference(0.0, 1.0) == float("inf")

    def test_slower_significant_and_large(self):
        """10 -> 12 with p=1e-4 is flagged at 5% / 0.001."""
        assert is_regression(10.0, 12.0, 1e-4, 5.0, 0.001) is True

    def test_not_significant(self):
        """10 -> 12 with p=0.01 is not flagged at 0.001."""
        assert is_regression(10.0, 12.0, 0.01, 5.0, 0.001) is False

    def test_below_percent_threshold(self):
        """10 -> 10.3 is a 3% change, under the 5% threshold."""
        assert is_regression(10.0, 10.3, 1e-6, 5.0, 0.001) is False

    def test_faster_is_never_regression(self):
        assert is_regression(12.0, 10.0, 1e-6, 5.0, 0.001) is False

    def test_thresholds_are_strict(self):
        assert is_regression(10.0, 12.0, 0.001, 5.0, 0.001) is False


class TestDetectorConstruction:
    """Test threshold validation."""

    def test_negative_percent(self):
        with pytest.raises(ValueError):
            RegressionDetector(percent=-1.0)

    def test_bad_threshold(self):
        with pytest.raises(ValueError):
            RegressionDetector(moods_threshold=0.0)


class TestCompareStores:
    """Test comparison of two datasets."""

    def _store(self, timings):
        store = SampleStore("1D_complex_forward_inplace_single")
        for token, times in timings.items():
            store.add(Problem.from_token(token), times)
        return store

    def test_flags_only_regressed_problem(self):
        ref = self._store({T64: _spread(10.0), T128: _spread(20.0)})
        new = self._store({T64: _spread(12.0), T128: _spread(20.0)})
        flagged = RegressionDetector().compare_stores(ref, new, run="new")
        assert [r.token for r in flagged] == [T64]
        assert flagged[0].percent == pytest.approx(20.0, rel=1e-2)
        assert flagged[0].run == "new"

    def test_missing_tokens_are_skipped(self):
        """Tokens absent from the comparison are excluded without error."""
        ref = self._store({T64: _spread(10.0), T128: _spread(20.0)})
        new = self._store({T128: _spread(30.0)})
        flagged = RegressionDetector().compare_stores(ref, new)
        assert [r.token for r in flagged] == [T128]

    def test_small_change_not_flagged(self):
        ref = self._store({T64: _spread(10.0)})
        new = self._store({T64: _spread(10.3)})
        assert RegressionDetector().compare_stores(ref, new) == []


class TestDetect:
    """Test run-level detection."""

    def test_detect_across_runs(self, make_run):
        ref = make_run("ref", {T64: _spread(10.0), T128: _spread(10.0), T256: _spread(10.0)})
        a = make_run("a", {T256: _spread(15.0), T64: _spread(13.0)})
        b = make_run("b", {T128: _spread(10.0)})

        report = RegressionDetector().detect(ref, [a, b])
        assert [r.token for r in report.regressions] == [T64, T256]
        assert report.sizes == [64, 256]
        assert report.compared == 3
        assert len(report) == 2

    def test_ordered_by_size(self, make_run):
        ref = make_run("ref", {T256: _spread(1.0), T64: _spread(1.0), T128: _spread(1.0)})
        new = make_run("new", {T256: _spread(2.0), T64: _spread(2.0), T128: _spread(2.0)})
        report = RegressionDetector().detect(ref, [new])
        assert [r.size for r in report.regressions] == [64, 128, 256]

    def test_same_run_twice_is_deduplicated(self, make_run):
        ref = make_run("ref", {T64: _spread(10.0)})
        new = make_run("new", {T64: _spread(20.0)})
        report = RegressionDetector().detect(ref, [new, new])
        assert len(report.regressions) == 1

    def test_missing_run(self, make_run, tmp_path):
        ref = make_run("ref", {T64: _spread(10.0)})
        with pytest.raises(FileNotFoundError):
            RegressionDetector().detect(ref, [tmp_path / "nope"])


class TestRegressionReport:
    """Test report output."""

    def test_empty_summary(self):
        report = RegressionReport(reference="ref", percent=5.0, moods_threshold=0.001, compared=4)
        assert "No regressions in 4 comparisons" in report.summary()

    def test_save_yaml(self, make_run, tmp_path):
        ref = make_run("ref", {T64: _spread(10.0)})
        new = make_run("new", {T64: _spread(20.0)})
        report = RegressionDetector().detect(ref, [new])
        path = tmp_path / "out" / "report.yaml"
        report.save(path)

        data = yaml.safe_load(path.read_text())
        assert data["sizes"] == [64]
        assert data["regressions"][0]["token"] == T64
        assert T64 in report.summary()
