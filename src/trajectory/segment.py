"""Cubic Hermite segment evaluation.

A trajectory segment is the unique cubic polynomial that matches a
position and a velocity at each of its two end points.  The segment is
parameterised by a local time which is -0.5 at the start node and
+0.5 at the end node, so the velocities passed in must be expressed
per unit of local time (i.e. physical velocity multiplied by the block
length).

The evaluation only uses addition, subtraction, multiplication and
division.  It therefore works unchanged on Python floats, numpy arrays
(with broadcasting) and torch tensors, which lets the same code run
inside residuals that are differentiated with autograd.
"""


def end_point_cubic(rm, vm, rp, vp, t, order: int = 0):
    """Evaluate a cubic segment given its end point states.

    Parameters
    ----------
    rm, vm : float, numpy.ndarray or torch.Tensor
        Position and velocity at local time -0.5.
    rp, vp : float, numpy.ndarray or torch.Tensor
        Position and velocity at local time +0.5.
    t : float, numpy.ndarray or torch.Tensor
        Local time at which to evaluate.  Values outside [-0.5, 0.5]
        extrapolate the same polynomial.
    order : int, optional
        0 returns the position only, 1 returns (position, velocity) and
        2 returns (position, velocity, acceleration).

    Returns
    -------
    position or tuple
        See ``order``.
    """
    if order not in (0, 1, 2):
        raise ValueError("order must be 0, 1 or 2")
    rs = rp + rm
    rd = rp - rm
    vs = vp + vm
    vd = vp - vm
    a0 = (4.0 * rs - vd) / 8.0
    a1 = (6.0 * rd - vs) / 4.0
    a2 = vd / 2.0
    a3 = -2.0 * rd + vs
    r = t * (t * (t * a3 + a2) + a1) + a0
    if order == 0:
        return r
    v = t * (t * 3.0 * a3 + 2.0 * a2) + a1
    if order == 1:
        return r, v
    a = t * 6.0 * a3 + 2.0 * a2
    return r, v, a
