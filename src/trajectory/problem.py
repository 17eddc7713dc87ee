"""Least-squares problem for the spline control points.

`SplineFitProblem` turns a populated `SplineFit` into the residual
vector and Jacobian expected by a generic nonlinear least-squares
solver.  The free parameters are the positions and velocities of all
nodes that are not held fixed.  The residual vector is built from
these blocks, each divided by its standard deviation from the config:

* ``position`` -- distance to the observed position, observed nodes;
* ``velocity`` -- distance to the observed velocity, observed nodes
  (only with `SplineFitConfig.fit_velocity`);
* ``acceleration`` -- `AccelJumpConstraint` at every interior node;
* ``clamp`` -- `ClampConstraint` at every interior missing node (only
  with `SplineFitConfig.clamp_missing`).

Every block is a row-wise function of a few node states, so the
Jacobian is assembled as a sparse matrix: the same term functions that
give the residuals on numpy arrays are differentiated per row with
`torch.func.jacrev` and scattered into a `scipy.sparse.csr_matrix`.
`solve` hands both to `scipy.optimize.least_squares` and writes the
result back into the spline.
"""

from dataclasses import dataclass, asdict, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import numpy as np
import torch
from scipy.optimize import least_squares
from scipy.sparse import csr_matrix

from ..utils.logging import get_logger
from .constraints import AccelJumpConstraint, ClampConstraint
from .fit_config import SplineFitConfig
from .spline_fit import SplineFit

logger = get_logger(__name__)

POSITION = 0
VELOCITY = 1


@dataclass
class ResidualTerm:
    """One residual block, evaluated row by row over node tuples."""

    name: str
    """Block name used in reports."""

    func: Callable
    """Weighted residual of one row; takes the node states of `args`
    followed by the arrays of `data`."""

    args: List[Tuple[np.ndarray, int]]
    """Per argument, the node index of every row and whether the
    argument is the node's position or velocity."""

    data: List[np.ndarray] = field(default_factory=list)
    """Constant per-row arrays passed after the node states."""

    @property
    def rows(self) -> int:
        return len(self.args[0][0])


@dataclass
class FitReport:
    """Outcome of a spline fit."""

    success: bool
    """Whether the solver reported convergence."""

    message: str
    """Solver status message."""

    initial_cost: float
    """Half the sum of squared residuals before the fit."""

    final_cost: float
    """Half the sum of squared residuals after the fit."""

    nfev: int
    """Number of residual evaluations."""

    njev: int
    """Number of Jacobian evaluations."""

    block_rms: Dict[str, float] = field(default_factory=dict)
    """Root mean square of each weighted residual block after the fit."""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class SplineFitProblem:
    """Residuals and Jacobian of the spline fit over the free nodes."""

    def __init__(
        self,
        spline: SplineFit,
        config: Optional[SplineFitConfig] = None,
        fixed: Optional[Iterable[int]] = None
    ):
        """Set up the problem from the current state of ``spline``.

        The current positions and velocities of the observed nodes are
        taken as the measurements, so the spline must hold the ingested
        samples (missing nodes may already be filled).

        Parameters
        ----------
        spline : SplineFit
            Configured spline.  Its node arrays are updated by `solve`.
        config : SplineFitConfig, optional
            Weights and solver settings.
        fixed : iterable of int, optional
            Nodes whose position and velocity are held constant.
        """
        if not spline.configured:
            raise ValueError("spline has no segments")
        self.spline = spline
        self.config = config or SplineFitConfig()
        n_nodes = len(spline.missing)

        self.fixed = np.zeros(n_nodes, dtype=bool)
        if fixed is not None:
            self.fixed[np.asarray(list(fixed), dtype=int)] = True
        self.free = np.flatnonzero(~self.fixed)

        # parameter column of every node state component, -1 when fixed
        self.columns = np.full((n_nodes, 2, spline.dim), -1, dtype=int)
        self.columns[self.free] = np.arange(self.n_parameters).reshape(
            len(self.free), 2, spline.dim
        )

        self.observed = spline.observed_indices()
        if len(self.observed) == 0:
            raise ValueError("spline has no observed nodes to fit")
        self.observed_positions = spline.positions[self.observed].copy()
        self.observed_velocities = spline.velocities[self.observed].copy()
        if self.config.clamp_missing:
            missing = spline.missing_indices()
            self.clamped = missing[(missing > 0) & (missing < n_nodes - 1)]
        else:
            self.clamped = np.zeros(0, dtype=int)

        self.accel_jump = AccelJumpConstraint(spline.tblock, spline.dim)
        self.clamp = ClampConstraint(spline.tblock, spline.dim)
        self.terms = self._terms()
        logger.debug(
            "Problem with %d free nodes, %d observed, %d clamped",
            len(self.free), len(self.observed), len(self.clamped)
        )

    @property
    def n_parameters(self) -> int:
        return len(self.free) * 2 * self.spline.dim

    def initial_parameters(self) -> np.ndarray:
        """Parameter vector holding the current free node states."""
        state = np.stack([self.spline.positions, self.spline.velocities], axis=1)
        return state[self.free].ravel()

    def _state(self, x: np.ndarray) -> np.ndarray:
        state = np.stack([self.spline.positions, self.spline.velocities], axis=1)
        state[self.free] = np.asarray(x, dtype=float).reshape(len(self.free), 2, self.spline.dim)
        return state

    def _terms(self) -> List[ResidualTerm]:
        cfg = self.config
        tblock = self.spline.tblock
        obs = self.observed

        def position(r, r_obs):
            return (r - r_obs) / cfg.position_sigma

        def velocity(v, v_obs):
            return (v - v_obs) / cfg.velocity_sigma

        # constraint terms take velocities per block
        def acceleration(ra, va, vb, rc, vc):
            return self.accel_jump(
                ra, va * tblock, vb * tblock, rc, vc * tblock
            ) / cfg.acceleration_sigma

        def clamp(ra, va, rb, rc, vc):
            return self.clamp(
                ra, va * tblock, rb, rc, vc * tblock
            ) / cfg.jerk_sigma

        terms = [ResidualTerm("position", position, [(obs, POSITION)],
                              [self.observed_positions])]
        if cfg.fit_velocity:
            terms.append(ResidualTerm("velocity", velocity, [(obs, VELOCITY)],
                                      [self.observed_velocities]))
        n_nodes = len(self.spline.missing)
        if n_nodes > 2:
            a, b, c = np.arange(n_nodes - 2), np.arange(1, n_nodes - 1), np.arange(2, n_nodes)
            terms.append(ResidualTerm("acceleration", acceleration, [
                (a, POSITION), (a, VELOCITY), (b, VELOCITY), (c, POSITION), (c, VELOCITY)
            ]))
        if len(self.clamped):
            b = self.clamped
            terms.append(ResidualTerm("clamp", clamp, [
                (b - 1, POSITION), (b - 1, VELOCITY), (b, POSITION), (b + 1, POSITION),
                (b + 1, VELOCITY)
            ]))
        return terms

    def residual_blocks(self, x: np.ndarray) -> Dict[str, np.ndarray]:
        """Weighted residual blocks by name, each of shape (k, dim)."""
        state = self._state(x)
        return {
            term.name: term.func(*(state[idx, kind] for idx, kind in term.args), *term.data)
            for term in self.terms
        }

    def residuals(self, x: np.ndarray) -> np.ndarray:
        """Weighted residual vector for parameter vector ``x``."""
        blocks = self.residual_blocks(x)
        return np.concatenate([b.ravel() for b in blocks.values()])

    def jacobian(self, x: np.ndarray) -> csr_matrix:
        """Sparse Jacobian of `residuals` by automatic differentiation.

        Each term is differentiated row by row with respect to its node
        states; entries belonging to fixed nodes are dropped.

        Returns
        -------
        scipy.sparse.csr_matrix
            Matrix of shape (number of residuals, `n_parameters`).
        """
        state = self._state(x)
        dim = self.spline.dim
        rows, cols, vals = [], [], []
        offset = 0
        for term in self.terms:
            inputs = [torch.as_tensor(state[idx, kind]) for idx, kind in term.args]
            data = [torch.as_tensor(d, dtype=torch.float64) for d in term.data]
            argnums = tuple(range(len(inputs)))
            derivs = torch.func.vmap(torch.func.jacrev(term.func, argnums=argnums))(
                *inputs, *data
            )
            # derivs[p][i, a, b] = d residual[i, a] / d argument_p[i, b]
            row = offset + np.arange(term.rows * dim).reshape(term.rows, dim, 1)
            for (idx, kind), deriv in zip(term.args, derivs):
                col = self.columns[idx, kind][:, None, :]
                r, c = np.broadcast_arrays(row, col)
                v = deriv.detach().numpy()
                keep = (c >= 0) & (v != 0)
                rows.append(r[keep])
                cols.append(c[keep])
                vals.append(v[keep])
            offset += term.rows * dim
        return csr_matrix(
            (np.concatenate(vals), (np.concatenate(rows), np.concatenate(cols))),
            shape=(offset, self.n_parameters)
        )

    def write_back(self, x: np.ndarray) -> None:
        """Store parameter vector ``x`` in the spline's node arrays."""
        state = self._state(x)
        self.spline.positions[:] = state[:, 0]
        self.spline.velocities[:] = state[:, 1]

    def solve(self) -> FitReport:
        """Run the least-squares fit and update the spline in place.

        Returns
        -------
        FitReport
            Solver status and residual statistics.
        """
        cfg = self.config
        x0 = self.initial_parameters()
        initial_cost = 0.5 * float(np.sum(self.residuals(x0) ** 2))
        if self.n_parameters == 0:
            logger.warning("All nodes are fixed, nothing to fit")
            return FitReport(True, "no free parameters", initial_cost, initial_cost, 0, 0,
                             self._block_rms(x0))

        result = least_squares(
            self.residuals,
            x0,
            jac=self.jacobian,
            method="trf",
            tr_solver="lsmr",
            ftol=cfg.ftol,
            xtol=cfg.xtol,
            gtol=cfg.gtol,
            max_nfev=cfg.max_nfev,
        )
        self.write_back(result.x)
        report = FitReport(
            success=bool(result.success),
            message=str(result.message),
            initial_cost=initial_cost,
            final_cost=float(result.cost),
            nfev=int(result.nfev),
            njev=int(result.njev or 0),
            block_rms=self._block_rms(result.x),
        )
        log = logger.info if report.success else logger.warning
        log("Spline fit: cost %.6g -> %.6g after %d evaluations (%s)",
            report.initial_cost, report.final_cost, report.nfev, report.message)
        return report

    def _block_rms(self, x: np.ndarray) -> Dict[str, float]:
        return {
            name: float(np.sqrt(np.mean(block ** 2)))
            for name, block in self.residual_blocks(x).items()
        }
