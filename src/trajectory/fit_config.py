"""Settings for the spline trajectory fit."""

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

from ..utils.config import load_config


@dataclass
class SplineFitConfig:
    """Weights and solver settings used by the trajectory fit."""

    tblock: Optional[float] = None
    """Segment duration in seconds.  `None` uses the median sampling
    interval of the input samples."""

    linear_fill: bool = True
    """Fill missing nodes by linear interpolation (True) or by the
    higher-order policy of `SplineFit.fill_missing` (False)."""

    position_sigma: float = 0.05
    """Standard deviation of the observed positions (metres)."""

    velocity_sigma: float = 0.02
    """Standard deviation of the observed velocities (metres/second)."""

    acceleration_sigma: float = 0.1
    """Tolerated acceleration jump at a node (metres/second²)."""

    jerk_sigma: float = 0.1
    """Tolerated jerk jump at a clamped node, in units of
    `ClampConstraint` (metres/second³ up to a factor 6)."""

    fit_velocity: bool = True
    """Whether observed velocities enter the fit."""

    clamp_missing: bool = True
    """Attach a `ClampConstraint` to every interior missing node."""

    max_nfev: int = 100
    """Maximum number of residual evaluations of the solver."""

    ftol: float = 1e-10
    xtol: float = 1e-10
    gtol: float = 1e-10

    def __post_init__(self):
        if self.tblock is not None and not self.tblock > 0:
            raise ValueError("tblock must be positive")
        for name in ("position_sigma", "velocity_sigma", "acceleration_sigma", "jerk_sigma"):
            if not getattr(self, name) > 0:
                raise ValueError(f"{name} must be positive")
        if self.max_nfev < 1:
            raise ValueError("max_nfev must be at least 1")

    @classmethod
    def from_dict(cls, cfg: Dict[str, Any]) -> "SplineFitConfig":
        """Build a config from a dictionary, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = set(cfg) - known
        if unknown:
            raise ValueError(f"Unknown spline fit settings: {sorted(unknown)}")
        return cls(**cfg)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "SplineFitConfig":
        """Load settings from a YAML file.

        The settings may sit at the top level or under a ``spline_fit``
        key.  A missing file gives the defaults.
        """
        cfg = load_config(path)
        section = cfg["spline_fit"] if "spline_fit" in cfg else cfg
        return cls.from_dict(section or {})
