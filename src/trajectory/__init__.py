"""Smooth trajectory reconstruction.

This package fits a piecewise cubic spline to position/velocity samples
taken at uniform time intervals, some of them missing.  It contains the
segment evaluator, the spline itself with missing-node recovery, the
continuity residuals used by the least-squares fit, the fit problem
wrapped around `scipy.optimize.least_squares`, and a fitting stage for
processing pipelines.
"""

from .segment import end_point_cubic
from .spline_fit import SplineFit
from .constraints import AccelJumpConstraint, ClampConstraint
from .fit_config import SplineFitConfig
from .problem import FitReport, SplineFitProblem
from .fitter import TrajectoryFitter, grid_samples, load_samples

__all__ = [
    "end_point_cubic",
    "SplineFit",
    "AccelJumpConstraint",
    "ClampConstraint",
    "SplineFitConfig",
    "FitReport",
    "SplineFitProblem",
    "TrajectoryFitter",
    "grid_samples",
    "load_samples",
]
