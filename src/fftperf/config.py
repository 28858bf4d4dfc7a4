"""
Configuration loader for fftperf.

Loads YAML configuration files holding executable paths, measurement
settings and statistical thresholds. Command-line flags override file
values.
"""

from __future__ import annotations
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional, Union
from pathlib import Path
import yaml

from .merge import DEFAULT_SIGNIFICANCE
from .stats import DEFAULT_ALPHA, DEFAULT_NBOOT


@dataclass
class PerfConfig:
    """
    Benchmark, regression and merge settings.

    Executables may be absolute paths or names looked up on PATH.
    """
    # External executables
    rider: Optional[str] = None
    tuner: Optional[str] = None
    merge_tool: Optional[str] = None

    # Measurement
    libraries: List[str] = field(default_factory=list)  # empty = single default library
    device: int = 0
    ntrial: int = 10
    use_token: bool = True     # pass problems as --token instead of discrete flags
    timeout: Optional[float] = None

    # Regression detection
    percent: float = 5.0
    moods_threshold: float = 0.001

    # Bootstrap
    alpha: float = DEFAULT_ALPHA
    nboot: int = DEFAULT_NBOOT
    seed: Optional[int] = None

    # Merge decision
    significance: float = DEFAULT_SIGNIFICANCE

    def validate(self) -> None:
        """Validate configuration values."""
        if self.ntrial < 1:
            raise ValueError("ntrial must be at least 1")
        if self.device < 0:
            raise ValueError("device must be non-negative")
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be positive")
        if self.percent < 0:
            raise ValueError("percent must be non-negative")
        if not 0 < self.moods_threshold <= 1:
            raise ValueError("moods_threshold must be in (0, 1]")
        if not 0 < self.alpha < 1:
            raise ValueError("alpha must be in (0, 1)")
        if self.nboot < 1:
            raise ValueError("nboot must be at least 1")
        if not 0 < self.significance <= 1:
            raise ValueError("significance must be in (0, 1]")

    def update(self, **overrides: Any) -> "PerfConfig":
        """Apply non-None overrides (e.g. from the command line) in place."""
        known = {f.name for f in fields(self)}
        for key, value in overrides.items():
            if key not in known:
                raise ValueError(f"Unknown config key: {key}")
            if value is not None:
                setattr(self, key, value)
        self.validate()
        return self

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for YAML serialization."""
        return {
            "perf": {
                "rider": self.rider,
                "tuner": self.tuner,
                "merge_tool": self.merge_tool,
                "libraries": list(self.libraries),
                "device": self.device,
                "ntrial": self.ntrial,
                "use_token": self.use_token,
                "timeout": self.timeout,
                "percent": self.percent,
                "moods_threshold": self.moods_threshold,
                "alpha": self.alpha,
                "nboot": self.nboot,
                "seed": self.seed,
                "significance": self.significance,
            }
        }

    def save(self, path: Path) -> None:
        """Save configuration to YAML file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)


def load_perf_config(config_path: Union[str, Path]) -> PerfConfig:
    """
    Load fftperf configuration from YAML file.

    Args:
        config_path: Path to YAML configuration file.

    Returns:
        PerfConfig instance.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: On unknown keys or invalid values.
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Perf config file not found: {config_path}")

    with open(path, 'r', encoding='utf-8') as f:
        data = yaml.safe_load(f) or {}

    return _parse_perf_config(data.get("perf", data))


def _parse_perf_config(data: Dict[str, Any]) -> PerfConfig:
    """Parse perf section of a config dictionary."""
    config = PerfConfig()
    known = {f.name for f in fields(config)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown config keys: {', '.join(unknown)}")

    for key, value in data.items():
        if key == "libraries":
            value = [str(v) for v in (value or [])]
        setattr(config, key, value)

    config.validate()
    return config


def get_default_perf_config() -> PerfConfig:
    """Get default configuration."""
    return PerfConfig()
