"""Trajectory fitting stage.

This module ties the spline pieces together for a processing pipeline:
uniformly sampled positions (and optionally velocities) are placed on
the nodes of a `SplineFit`, epochs without a sample become missing
nodes, missing nodes are filled, and the node states are refined with
the least-squares fit of `SplineFitProblem`.  The fitted trajectory can
then be sampled at arbitrary times into a DataFrame and exported to
Parquet.

Usage:
    python -m src.trajectory.fitter --input samples.csv --output trajectory.parquet
"""

import argparse
import json
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from ..utils.logging import get_logger
from .fit_config import SplineFitConfig
from .problem import FitReport, SplineFitProblem
from .spline_fit import SplineFit

logger = get_logger(__name__)

POSITION_COLUMNS = ("x", "y", "z")
VELOCITY_COLUMNS = ("vx", "vy", "vz")


def grid_samples(
    times: Sequence[float],
    positions: Sequence,
    velocities: Optional[Sequence] = None,
    tblock: Optional[float] = None,
    tstart: Optional[float] = None
) -> SplineFit:
    """Place uniformly spaced samples on the nodes of a new spline.

    Each sample is assigned to the nearest node time.  Nodes without a
    sample are flagged as missing.  If several samples fall on the same
    node the one closest to the node time is kept.

    Parameters
    ----------
    times : sequence of float
        Sample times in seconds.
    positions : array-like
        Sample positions, shape (M, dim).
    velocities : array-like, optional
        Sample velocities, shape (M, dim).  Estimated by finite
        differences of the positions when omitted.
    tblock : float, optional
        Node spacing.  Defaults to the median sampling interval.
    tstart : float, optional
        Time of node 0.  Defaults to the first sample time.

    Returns
    -------
    SplineFit
        Spline with observed nodes populated and missing flags set.
    """
    times = np.asarray(times, dtype=float)
    positions = np.asarray(positions, dtype=float)
    if times.ndim != 1 or positions.ndim != 2 or len(positions) != len(times):
        raise ValueError("positions must have shape (len(times), dim)")
    if len(times) < 2:
        raise ValueError("at least two samples are required")
    order = np.argsort(times, kind="stable")
    times = times[order]
    positions = positions[order]
    if velocities is None:
        velocities = np.gradient(positions, times, axis=0)
    else:
        velocities = np.asarray(velocities, dtype=float)
        if velocities.shape != positions.shape:
            raise ValueError("velocities must have the same shape as positions")
        velocities = velocities[order]

    if tblock is None:
        tblock = float(np.median(np.diff(times)))
    if tstart is None:
        tstart = float(times[0])
    if not tblock > 0:
        raise ValueError("tblock must be positive")

    offsets = (times - tstart) / tblock
    nodes = np.rint(offsets).astype(int)
    if nodes.min() < 0:
        raise ValueError("samples before tstart")
    # per node, the sample nearest to the node time comes first
    by_node = np.lexsort((np.abs(offsets - nodes), nodes))
    nodes, kept = np.unique(nodes[by_node], return_index=True)
    kept = by_node[kept]
    if len(kept) < len(times):
        logger.warning("%d samples share a node with a closer sample and were dropped",
                       len(times) - len(kept))
    num = int(nodes.max())
    if num < 1:
        raise ValueError("samples span less than one segment")

    spline = SplineFit(num=num, tblock=tblock, tstart=tstart, dim=positions.shape[1])
    node_positions = np.zeros((num + 1, spline.dim))
    node_velocities = np.zeros((num + 1, spline.dim))
    missing = np.ones(num + 1, dtype=bool)
    node_positions[nodes] = positions[kept]
    node_velocities[nodes] = velocities[kept]
    missing[nodes] = False
    spline.set_nodes(node_positions, node_velocities, missing)
    logger.info("Gridded %d samples on %d nodes (tblock=%.6g s, %d missing)",
                len(kept), num + 1, tblock, int(missing.sum()))
    return spline


def load_samples(path: Union[str, Path]) -> pd.DataFrame:
    """Read a sample table from CSV or Parquet.

    The table needs a ``time`` column and the position columns
    ``x``, ``y``, ``z``; velocity columns ``vx``, ``vy``, ``vz`` are
    optional.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Sample file not found: {path}")
    if path.suffix == ".parquet":
        df = pd.read_parquet(path)
    else:
        df = pd.read_csv(path)
    required = ["time", *POSITION_COLUMNS]
    absent = [c for c in required if c not in df.columns]
    if absent:
        raise ValueError(f"{path} lacks columns {absent}")
    return df


@dataclass
class TrajectoryFitter:
    """Fit a smooth spline trajectory to gapped position samples."""

    config: SplineFitConfig = field(default_factory=SplineFitConfig)
    """Weights and solver settings."""

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "TrajectoryFitter":
        return cls(SplineFitConfig.from_yaml(path))

    def build_spline(self, samples: pd.DataFrame) -> SplineFit:
        """Grid a sample table onto spline nodes.

        Parameters
        ----------
        samples : pandas.DataFrame
            Table with ``time``, ``x``, ``y``, ``z`` and optionally
            ``vx``, ``vy``, ``vz`` columns.

        Returns
        -------
        SplineFit
            Spline holding the observed samples.
        """
        velocities = None
        if all(c in samples.columns for c in VELOCITY_COLUMNS):
            velocities = samples[list(VELOCITY_COLUMNS)].to_numpy(dtype=float)
        return grid_samples(
            samples["time"].to_numpy(dtype=float),
            samples[list(POSITION_COLUMNS)].to_numpy(dtype=float),
            velocities,
            tblock=self.config.tblock,
        )

    def fit(self, spline: SplineFit) -> FitReport:
        """Fill missing nodes and refine all node states in place."""
        spline.fill_missing(self.config.linear_fill)
        problem = SplineFitProblem(spline, self.config)
        return problem.solve()

    def run(self, samples: pd.DataFrame) -> Tuple[SplineFit, FitReport]:
        """Grid, fill and fit a sample table."""
        spline = self.build_spline(samples)
        report = self.fit(spline)
        return spline, report

    def sample(
        self,
        spline: SplineFit,
        times: Optional[Sequence[float]] = None,
        rate: Optional[float] = None
    ) -> pd.DataFrame:
        """Evaluate the trajectory into a table.

        Parameters
        ----------
        spline : SplineFit
            Fitted spline.
        times : sequence of float, optional
            Query times.  Takes precedence over ``rate``.
        rate : float, optional
            Sampling rate in Hz over the covered span.  Defaults to one
            sample per node.

        Returns
        -------
        pandas.DataFrame
            Columns ``time``, positions, velocities (``v`` prefix),
            accelerations (``a`` prefix) and ``extrapolated``.
        """
        t0, t1 = spline.span
        if times is None:
            if rate is None:
                times = spline.times
            else:
                if not rate > 0:
                    raise ValueError("rate must be positive")
                n = int(np.floor((t1 - t0) * rate + 1e-9)) + 1
                times = t0 + np.arange(n) / rate
        times = np.asarray(times, dtype=float).ravel()
        r, v, a = spline.state(times)
        names = _axis_names(spline.dim)
        data = {"time": times}
        for k, name in enumerate(names):
            data[name] = r[:, k]
        for k, name in enumerate(names):
            data[f"v{name}"] = v[:, k]
        for k, name in enumerate(names):
            data[f"a{name}"] = a[:, k]
        eps = 1e-9 * spline.tblock
        data["extrapolated"] = (times < t0 - eps) | (times > t1 + eps)
        return pd.DataFrame(data)

    @staticmethod
    def export_to_parquet(df: pd.DataFrame, path: Union[str, Path]) -> None:
        """Write a sampled trajectory to a Parquet file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        df.to_parquet(path, index=False)


def _axis_names(dim: int):
    if dim <= len(POSITION_COLUMNS):
        return list(POSITION_COLUMNS[:dim])
    return [f"p{k}" for k in range(dim)]


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Command-line entry point."""
    parser = argparse.ArgumentParser(
        description="Fit a smooth spline trajectory to gapped position samples"
    )
    parser.add_argument(
        "--input",
        type=str,
        required=True,
        help="CSV or Parquet file with time, x, y, z[, vx, vy, vz] columns"
    )
    parser.add_argument(
        "--output",
        type=str,
        required=True,
        help="Parquet file for the sampled trajectory"
    )
    parser.add_argument(
        "--config",
        type=str,
        default="configs/spline_fit.yaml",
        help="YAML settings file (default: configs/spline_fit.yaml)"
    )
    parser.add_argument(
        "--rate",
        type=float,
        default=None,
        help="Output sampling rate in Hz (default: one sample per node)"
    )

    args = parser.parse_args(argv)

    fitter = TrajectoryFitter.from_yaml(args.config)
    samples = load_samples(args.input)
    spline, report = fitter.run(samples)
    df = fitter.sample(spline, rate=args.rate)

    output = Path(args.output)
    fitter.export_to_parquet(df, output)
    report_path = output.with_suffix(".json")
    with open(report_path, 'w', encoding='utf-8') as f:
        json.dump(report.to_dict(), f, indent=2)
    logger.info("Wrote %d trajectory samples to %s", len(df), output)

    return 0 if report.success else 1


if __name__ == "__main__":
    sys.exit(main())
