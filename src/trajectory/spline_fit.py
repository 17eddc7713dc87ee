"""Piecewise cubic trajectory representation.

The trajectory is split into ``num`` segments of equal duration
``tblock`` starting at ``tstart``.  Each of the ``num + 1`` nodes holds
a position, a velocity and a flag telling whether the node was observed
or has to be synthesised.  Between two nodes the trajectory is the
cubic Hermite polynomial matching both end point states (see
:func:`~src.trajectory.segment.end_point_cubic`), so positions and
velocities are continuous everywhere; acceleration continuity is left
to the least-squares fit (see :mod:`src.trajectory.constraints`).

Node velocities are stored in physical units.  They are scaled by the
block length when handed to the segment evaluator, which works in
local time.
"""

from dataclasses import dataclass, field
from typing import Optional, Sequence, Tuple

import numpy as np

from ..utils.logging import get_logger
from .segment import end_point_cubic

logger = get_logger(__name__)


@dataclass
class SplineFit:
    """Uniformly partitioned cubic spline with per-node missing flags."""

    num: int = -1
    """Number of segments.  Zero or negative means unconfigured."""

    tblock: float = 1.0
    """Duration of one segment in seconds.  Must be positive."""

    tstart: float = 0.0
    """Time of node 0."""

    dim: int = 3
    """Dimension of the position and velocity vectors."""

    positions: np.ndarray = field(init=False, repr=False, compare=False)
    """Node positions, shape (num + 1, dim)."""

    velocities: np.ndarray = field(init=False, repr=False, compare=False)
    """Node velocities, shape (num + 1, dim)."""

    missing: np.ndarray = field(init=False, repr=False, compare=False)
    """True where the node was not observed, shape (num + 1,)."""

    def __post_init__(self):
        if not self.tblock > 0:
            raise ValueError("tblock must be positive")
        if self.dim < 1:
            raise ValueError("dim must be at least 1")
        n_nodes = max(self.num + 1, 0)
        self.positions = np.zeros((n_nodes, self.dim))
        self.velocities = np.zeros((n_nodes, self.dim))
        self.missing = np.zeros(n_nodes, dtype=bool)

    @property
    def configured(self) -> bool:
        return self.num > 0

    @property
    def span(self) -> Tuple[float, float]:
        """Start and end time covered by the segments."""
        return self.tstart, self.tstart + self.num * self.tblock

    @property
    def times(self) -> np.ndarray:
        """Times of all nodes."""
        return self.tstart + self.tblock * np.arange(len(self.missing))

    def set_nodes(
        self,
        positions: Sequence,
        velocities: Sequence,
        missing: Optional[Sequence[bool]] = None
    ) -> None:
        """Populate the node arrays.

        Parameters
        ----------
        positions, velocities : array-like
            Arrays of shape (num + 1, dim).
        missing : array-like of bool, optional
            Missing flag per node.  Defaults to all observed.
        """
        shape = (len(self.missing), self.dim)
        positions = np.array(positions, dtype=float)
        velocities = np.array(velocities, dtype=float)
        if positions.shape != shape or velocities.shape != shape:
            raise ValueError(f"positions and velocities must have shape {shape}")
        if missing is None:
            missing = np.zeros(shape[0], dtype=bool)
        missing = np.array(missing, dtype=bool)
        if missing.shape != (shape[0],):
            raise ValueError(f"missing must have shape ({shape[0]},)")
        self.positions = positions
        self.velocities = velocities
        self.missing = missing

    def observed_indices(self) -> np.ndarray:
        return np.flatnonzero(~self.missing)

    def missing_indices(self) -> np.ndarray:
        return np.flatnonzero(self.missing)

    def time_to_segment(self, t):
        """Convert absolute time to a segment index and local time.

        The index is clamped to [0, num - 1] while the local time is
        not, so times outside the covered span extrapolate the first or
        last segment.

        Parameters
        ----------
        t : float or array-like
            Query time(s).

        Returns
        -------
        (int, float) or (numpy.ndarray, numpy.ndarray)
            Segment index and local time in (nominally) [-0.5, 0.5].
        """
        if not self.configured:
            raise ValueError("spline has no segments")
        x = (np.asarray(t, dtype=float) - self.tstart) / self.tblock
        index = np.clip(np.floor(x), 0, self.num - 1).astype(int)
        local = x - (index + 0.5)
        if np.ndim(t) == 0:
            return int(index), float(local)
        return index, local

    def _evaluate(self, t, order: int):
        index, local = self.time_to_segment(t)
        scalar = np.ndim(t) == 0
        index = np.atleast_1d(index).ravel()
        local = np.atleast_1d(local).ravel()[:, None]
        rm = self.positions[index]
        vm = self.velocities[index] * self.tblock
        rp = self.positions[index + 1]
        vp = self.velocities[index + 1] * self.tblock
        out = end_point_cubic(rm, vm, rp, vp, local, order=order)
        if order == 0:
            out = (out,)
        # back from local time to seconds
        out = tuple(o / self.tblock ** k for k, o in enumerate(out))
        shape = () if scalar else np.shape(t)
        return tuple(o.reshape(shape + (self.dim,)) for o in out)

    def position(self, t) -> np.ndarray:
        """Position at time(s) ``t``."""
        return self._evaluate(t, 0)[0]

    def velocity(self, t) -> np.ndarray:
        """Velocity at time(s) ``t``."""
        return self._evaluate(t, 1)[1]

    def acceleration(self, t) -> np.ndarray:
        """Acceleration at time(s) ``t``."""
        return self._evaluate(t, 2)[2]

    def state(self, t) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Position, velocity and acceleration at time(s) ``t``.

        Parameters
        ----------
        t : float or array-like
            Query time(s).  A 1D array of M times gives arrays of shape
            (M, dim).

        Returns
        -------
        (numpy.ndarray, numpy.ndarray, numpy.ndarray)
            Position, velocity and acceleration.
        """
        return self._evaluate(t, 2)

    def fill_missing(self, linear_fit: bool = True) -> bool:
        """Synthesise positions and velocities of missing nodes.

        Only observed nodes are read, and ``missing`` is left as is, so
        a second call gives the same result.  With ``linear_fit`` an
        interior node is linearly interpolated between its nearest
        observed neighbours and a node in a leading or trailing gap is
        extrapolated at constant velocity.  Otherwise interior nodes
        follow the cubic through the neighbours' positions and
        velocities, and gaps at the ends are extrapolated at the
        constant acceleration seen between the two nearest observed
        nodes.

        Parameters
        ----------
        linear_fit : bool, optional
            Use the linear policy (default) or the higher-order one.

        Returns
        -------
        bool
            False if there is no observed node to fill from, in which
            case the missing nodes are left untouched.
        """
        observed = self.observed_indices()
        missing = self.missing_indices()
        if len(missing) == 0:
            return True
        if len(observed) == 0:
            logger.warning("No observed nodes, leaving %d missing nodes unfilled", len(missing))
            return False
        for i in missing:
            k = int(np.searchsorted(observed, i))
            if 0 < k < len(observed):
                r, v = self._interpolate(i, observed[k - 1], observed[k], linear_fit)
            elif k == 0:
                r, v = self._extrapolate(i, observed[:2], linear_fit)
            else:
                r, v = self._extrapolate(i, observed[-2:][::-1], linear_fit)
            self.positions[i] = r
            self.velocities[i] = v
        logger.debug("Filled %d of %d nodes (linear_fit=%s)", len(missing), len(self.missing), linear_fit)
        return True

    def _interpolate(self, i: int, left: int, right: int, linear_fit: bool):
        w = (i - left) / (right - left)
        rl, vl = self.positions[left], self.velocities[left]
        rr, vr = self.positions[right], self.velocities[right]
        if linear_fit:
            return (1.0 - w) * rl + w * rr, (1.0 - w) * vl + w * vr
        duration = (right - left) * self.tblock
        r, v = end_point_cubic(rl, vl * duration, rr, vr * duration, w - 0.5, order=1)
        return r, v / duration

    def _extrapolate(self, i: int, anchors: np.ndarray, linear_fit: bool):
        # anchors are ordered nearest first
        a = anchors[0]
        dt = (i - a) * self.tblock
        ra, va = self.positions[a], self.velocities[a]
        if linear_fit or len(anchors) < 2:
            return ra + va * dt, va.copy()
        b = anchors[1]
        acc = (va - self.velocities[b]) / ((a - b) * self.tblock)
        return ra + va * dt + 0.5 * acc * dt ** 2, va + acc * dt
