"""Continuity residuals for the spline least-squares fit.

Two consecutive segments a-b and b-c share node b.  Positions and
velocities are continuous at b by construction, the terms here measure
the jump of the higher derivatives so that a least-squares solver can
drive them to zero:

* :class:`AccelJumpConstraint` -- jump of the acceleration at b.
* :class:`ClampConstraint` -- jump of the third derivative (jerk) at b.
  Usually attached to nodes that were not observed, so the two
  segments around them behave like a single cubic.

Velocities are passed per block, i.e. physical velocity times
``tblock``.  Both terms are pure functions of their inputs and only use
``+ - *``, so they can be evaluated with numpy arrays for the residual
and with torch tensors when the solver needs the Jacobian.
"""

import numpy as np


def _as_vector(x, dim: int, name: str):
    if not hasattr(x, "shape"):
        x = np.asarray(x, dtype=float)
    if x.shape[-1:] != (dim,):
        raise ValueError(f"{name} must be a vector of length {dim}")
    return x


class AccelJumpConstraint:
    """Residual for the acceleration jump at a shared node."""

    def __init__(self, tblock: float = 1.0, dim: int = 3):
        if not tblock > 0:
            raise ValueError("tblock must be positive")
        self.dim = dim
        self.scale = 2.0 / (tblock * tblock)

    def __call__(self, ra, va, vb, rc, vc):
        """Evaluate the residual.

        Parameters
        ----------
        ra, va : array-like
            Position and velocity at the left node.
        vb : array-like
            Velocity at the centre node.
        rc, vc : array-like
            Position and velocity at the right node.

        Returns
        -------
        array-like
            Residual vector of length ``dim``, same type as the inputs.
        """
        ra, va, vb, rc, vc = (
            _as_vector(x, self.dim, name)
            for x, name in zip((ra, va, vb, rc, vc), ("ra", "va", "vb", "rc", "vc"))
        )
        # The acceleration jump between a-b and b-c is
        #   8/tblock^2 * ((3*(rc-ra) - (vc+va)) / 4 - vb)
        return self.scale * (3.0 * (rc - ra) - (vc + va) - 4.0 * vb)


class ClampConstraint:
    """Residual for the jerk jump at a shared node."""

    def __init__(self, tblock: float = 1.0, dim: int = 3):
        if not tblock > 0:
            raise ValueError("tblock must be positive")
        self.dim = dim
        self.scale = 1.0 / (tblock * tblock * tblock)

    def __call__(self, ra, va, rb, rc, vc):
        """Evaluate the residual for position ``rb`` at the centre node."""
        ra, va, rb, rc, vc = (
            _as_vector(x, self.dim, name)
            for x, name in zip((ra, va, rb, rc, vc), ("ra", "va", "rb", "rc", "vc"))
        )
        # jump in the third derivative, up to a factor 6
        return self.scale * (4.0 * rb - 2.0 * (rc + ra) + (vc - va))
