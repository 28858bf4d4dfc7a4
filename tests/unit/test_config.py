"""
Tests for configuration module.

Tests cover:
1. PerfConfig defaults and validation
2. Overrides from the command line
3. YAML config loading and saving
"""

import pytest

from fftperf.config import (
    PerfConfig,
    get_default_perf_config,
    load_perf_config,
    _parse_perf_config,
)


class TestPerfConfig:
    """Test PerfConfig dataclass."""

    def test_defaults(self):
        config = get_default_perf_config()
        assert config.ntrial == 10
        assert config.percent == 5.0
        assert config.moods_threshold == 0.001
        assert config.significance == 0.05
        assert config.libraries == []
        config.validate()

    @pytest.mark.parametrize("kwargs", [
        {"ntrial": 0},
        {"device": -1},
        {"timeout": 0},
        {"percent": -0.1},
        {"moods_threshold": 0},
        {"alpha": 1.0},
        {"nboot": 0},
        {"significance": 1.5},
    ])
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            PerfConfig(**kwargs).validate()

    def test_update_ignores_none(self):
        config = PerfConfig(ntrial=20).update(ntrial=None, percent=2.5)
        assert config.ntrial == 20
        assert config.percent == 2.5

    def test_update_unknown_key(self):
        with pytest.raises(ValueError):
            PerfConfig().update(colour="blue")

    def test_update_validates(self):
        with pytest.raises(ValueError):
            PerfConfig().update(ntrial=0)


class TestConfigLoading:
    """Test YAML config loading."""

    def test_save_and_load(self, tmp_path):
        config = PerfConfig(rider="/opt/rider", libraries=["a.so", "b.so"], ntrial=25, seed=3)
        path = tmp_path / "perf.yaml"
        config.save(path)
        assert load_perf_config(path) == config

    def test_flat_file(self, tmp_path):
        path = tmp_path / "perf.yaml"
        path.write_text("rider: ./rider\nntrial: 4\n", encoding="utf-8")
        config = load_perf_config(path)
        assert config.rider == "./rider"
        assert config.ntrial == 4

    def test_empty_file(self, tmp_path):
        path = tmp_path / "perf.yaml"
        path.write_text("", encoding="utf-8")
        assert load_perf_config(path) == PerfConfig()

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_perf_config(tmp_path / "missing.yaml")

    def test_unknown_key(self):
        with pytest.raises(ValueError, match="Unknown config keys"):
            _parse_perf_config({"ntrials": 5})

    def test_invalid_value(self):
        with pytest.raises(ValueError):
            _parse_perf_config({"ntrial": -5})
