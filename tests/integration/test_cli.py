"""
Integration tests for the fftperf command line.

Tests cover:
1. run -> post -> regress round trip
2. tune -> merge round trip
3. Configuration files and exit statuses
"""

import pytest

from fftperf.cli import REGRESSION_EXIT, build_generator, build_parser, main
from fftperf.config import PerfConfig
from fftperf.problem import Direction, Precision
from fftperf.samples import load_run


class TestBuildGenerator:
    """Test problem selection from arguments."""

    def _problems(self, *argv):
        args = build_parser().parse_args(["run", "-o", "x", *argv])
        return list(build_generator(args))

    def test_radix_default(self):
        problems = self._problems("--xmin", "8", "--xmax", "32")
        assert [p.size for p in problems] == [8, 16, 32]

    def test_radix_attributes_from_filters(self):
        problems = self._problems("--xmin", "8", "--xmax", "8",
                                  "--direction", "forward", "inverse",
                                  "--precision", "double")
        assert [p.direction for p in problems] == [Direction.FORWARD, Direction.INVERSE]
        assert all(p.precision is Precision.DOUBLE for p in problems)

    def test_suite_with_filter(self):
        problems = self._problems("--suite", "real_1d", "--direction", "inverse")
        assert problems
        assert all(p.direction is Direction.INVERSE for p in problems)

    def test_tokens(self):
        token = "complex_forward_len_64_single_ip_batch_1"
        assert [p.token for p in self._problems("--token", token)] == [token]


class TestRunPostRegress:
    """Test the benchmarking commands end to end."""

    def test_round_trip(self, fake_rider, tmp_path, monkeypatch, capsys):
        common = ["--rider", str(fake_rider), "-N", "8", "--xmin", "16", "--xmax", "64",
                  "--no-device-query"]

        monkeypatch.setenv("FAKE_TIME", "1.0")
        assert main(["-q", "run", *common, "-o", str(tmp_path / "base")]) == 0
        monkeypatch.setenv("FAKE_TIME", "1.5")
        assert main(["-q", "run", *common, "-o", str(tmp_path / "new")]) == 0
        assert len(load_run(tmp_path / "base")["1D_complex_forward_inplace_single"]) == 3

        assert main(["-q", "post", str(tmp_path / "base"), str(tmp_path / "new"),
                     "--nboot", "50", "--plot"]) == 0
        assert list((tmp_path / "base").glob("*.mdat"))
        assert list((tmp_path / "new").glob("base-new-*.sdat"))
        assert list((tmp_path / "base" / "figures").glob("*.png"))

        report = tmp_path / "report.yaml"
        status = main(["regress", str(tmp_path / "base"), str(tmp_path / "new"),
                       "--report", str(report)])
        assert status == REGRESSION_EXIT
        assert report.exists()
        assert "3 regressions" in capsys.readouterr().out

    def test_suite_metadata(self, fake_rider, tmp_path):
        """Datasets from a named suite carry its title and caption."""
        out = tmp_path / "suite"
        assert main(["-q", "run", "--rider", str(fake_rider), "-N", "2", "--suite", "pow2_1d",
                     "--no-device-query", "-o", str(out)]) == 0
        metadata = load_run(out)["1D_complex_forward_inplace_single"].metadata
        assert metadata["title"].startswith("1D power-of-two: ")
        assert metadata["caption"] == "Single-batch complex forward transforms, in-place."

    def test_no_regression(self, fake_rider, tmp_path):
        common = ["--rider", str(fake_rider), "--xmin", "16", "--xmax", "16", "--no-device-query"]
        main(["-q", "run", *common, "-o", str(tmp_path / "a")])
        main(["-q", "run", *common, "-o", str(tmp_path / "b")])
        assert main(["regress", str(tmp_path / "a"), str(tmp_path / "b")]) == 0


class TestTuneMerge:
    """Test tuning and merging commands."""

    def test_round_trip(self, fake_rider, fake_tuner, fake_merge_tool, tmp_path, monkeypatch):
        monkeypatch.setenv("FAKE_TIME", "2.0")
        monkeypatch.setenv("FAKE_TUNED_TIME", "1.0")
        config = tmp_path / "perf.yaml"
        PerfConfig(rider=str(fake_rider), tuner=str(fake_tuner),
                   merge_tool=str(fake_merge_tool), ntrial=10).save(config)
        ref_map = tmp_path / "map.dat"
        ref_map.write_text("base\n")

        assert main(["-q", "-c", str(config), "tune", "--suite", "benchmark",
                     "--dim", "1", "-o", str(tmp_path / "tune")]) == 0
        assert main(["-q", "-c", str(config), "merge",
                     "--merge-input", str(tmp_path / "tune" / "merge_input.yaml"),
                     "--reference-map", str(ref_map),
                     "--output-map", str(tmp_path / "new_map.dat"),
                     "-o", str(tmp_path / "merge")]) == 0

        merged = (tmp_path / "new_map.dat").read_text().split()
        assert merged[0] == "base"
        assert "complex_forward_len_4096_double_ip_batch_1" in merged

    def test_replay(self, fake_tuner, tmp_path):
        first = tmp_path / "first"
        assert main(["-q", "tune", "--tuner", str(fake_tuner), "--token",
                     "complex_forward_len_64_single_ip_batch_1", "-o", str(first)]) == 0
        assert main(["-q", "tune", "--tuner", str(fake_tuner),
                     "--replay", str(first / "tune_config.yaml"),
                     "-o", str(tmp_path / "second")]) == 0
        assert (tmp_path / "second" / "merge_input.yaml").exists()


class TestConfigurationFailures:
    """Configuration failures print a message and exit with status 1."""

    def test_missing_rider(self, tmp_path, capsys):
        assert main(["run", "--rider", str(tmp_path / "nope"), "-o", str(tmp_path / "r")]) == 1
        assert "Error:" in capsys.readouterr().out

    def test_unknown_suite(self, fake_rider, tmp_path):
        assert main(["run", "--rider", str(fake_rider), "--suite", "nope",
                     "-o", str(tmp_path / "r")]) == 1

    def test_missing_config(self, make_run, tmp_path):
        run = make_run("base", {"complex_forward_len_64_single_ip_batch_1": [1.0, 1.1]})
        assert main(["-c", str(tmp_path / "none.yaml"), "post", str(run)]) == 1

    def test_missing_run_directory(self, tmp_path):
        assert main(["regress", str(tmp_path / "a"), str(tmp_path / "b")]) == 1

    def test_merge_without_merge_tool(self, fake_rider, fake_tuner, tmp_path, monkeypatch, capsys):
        """The missing merge tool is reported before any candidate is measured."""
        assert main(["-q", "tune", "--tuner", str(fake_tuner), "--token",
                     "complex_forward_len_64_single_ip_batch_1", "-o", str(tmp_path / "tune")]) == 0
        calls = tmp_path / "calls.log"
        monkeypatch.setenv("FAKE_CALL_LOG", str(calls))

        status = main(["merge", "--rider", str(fake_rider),
                       "--merge-input", str(tmp_path / "tune" / "merge_input.yaml"),
                       "--output-map", str(tmp_path / "new_map.dat"),
                       "-o", str(tmp_path / "merge")])
        assert status == 1
        assert "merge tool" in capsys.readouterr().out
        assert not calls.exists()

    def test_bad_override(self, fake_rider, tmp_path):
        assert main(["run", "--rider", str(fake_rider), "-N", "0",
                     "-o", str(tmp_path / "r")]) == 1


def test_suites_lists_builtin(capsys):
    assert main(["suites"]) == 0
    out = capsys.readouterr().out.split()
    assert "pow2_1d" in out
    assert "benchmark" in out


def test_requires_command():
    with pytest.raises(SystemExit):
        main([])
