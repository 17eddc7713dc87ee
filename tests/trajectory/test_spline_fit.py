"""Unit tests for the trajectory spline."""

import numpy as np
import pytest

from src.trajectory.spline_fit import SplineFit


def straight_line_spline():
    """Three nodes of uniform motion along x."""
    spline = SplineFit(num=2, tblock=1.0, tstart=0.0)
    spline.set_nodes(
        positions=[[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [2.0, 0.0, 0.0]],
        velocities=[[1.0, 0.0, 0.0]] * 3,
    )
    return spline


def quadratic_spline(num=6, tblock=1.0, missing=()):
    """One-dimensional spline sampled from p(t) = t^2."""
    spline = SplineFit(num=num, tblock=tblock, tstart=0.0, dim=1)
    t = spline.times
    flags = np.zeros(num + 1, dtype=bool)
    flags[list(missing)] = True
    positions = (t**2)[:, None]
    velocities = (2 * t)[:, None]
    positions[flags] = -99.0
    velocities[flags] = -99.0
    spline.set_nodes(positions, velocities, flags)
    return spline


class TestSplineFit:
    """Test suite for SplineFit class."""

    def test_default_is_unconfigured(self):
        """A default spline has no segments and cannot be queried."""
        spline = SplineFit()
        assert not spline.configured
        assert len(spline.positions) == 0
        assert len(spline.velocities) == 0
        assert len(spline.missing) == 0
        with pytest.raises(ValueError):
            spline.time_to_segment(0.0)

    def test_allocation(self):
        """Node arrays are sized together and missing defaults to False."""
        spline = SplineFit(num=5, tblock=0.2, tstart=3.0, dim=2)
        assert spline.positions.shape == (6, 2)
        assert spline.velocities.shape == (6, 2)
        assert spline.missing.shape == (6,)
        assert not spline.missing.any()
        assert spline.span == pytest.approx((3.0, 4.0))
        np.testing.assert_allclose(spline.times, [3.0, 3.2, 3.4, 3.6, 3.8, 4.0])

    def test_invalid_tblock(self):
        """Non-positive block length is rejected."""
        with pytest.raises(ValueError):
            SplineFit(num=3, tblock=0.0)
        with pytest.raises(ValueError):
            SplineFit(num=3, tblock=-1.0)

    def test_set_nodes_shape_mismatch(self):
        """Arrays of the wrong shape are rejected."""
        spline = SplineFit(num=2)
        with pytest.raises(ValueError):
            spline.set_nodes(np.zeros((2, 3)), np.zeros((3, 3)))
        with pytest.raises(ValueError):
            spline.set_nodes(np.zeros((3, 3)), np.zeros((3, 3)), missing=[True, False])

    def test_time_to_segment(self):
        """Index is clamped, local time is not."""
        spline = SplineFit(num=4, tblock=2.0, tstart=10.0)

        assert spline.time_to_segment(10.0) == (0, pytest.approx(-0.5))
        assert spline.time_to_segment(13.0) == (1, pytest.approx(0.0))
        assert spline.time_to_segment(18.0) == (3, pytest.approx(0.5))
        assert spline.time_to_segment(100.0) == (3, pytest.approx(41.5))
        assert spline.time_to_segment(0.0) == (0, pytest.approx(-5.5))

    def test_time_to_segment_monotonic(self):
        """Index is monotonic and always within [0, num - 1]."""
        spline = SplineFit(num=4, tblock=2.0, tstart=10.0)
        t = np.linspace(-1000.0, 1000.0, 20001)

        index, local = spline.time_to_segment(t)

        assert index.min() == 0
        assert index.max() == 3
        assert np.all(np.diff(index) >= 0)
        # segment index plus local time recovers the scaled time
        assert np.all(np.diff(index + local) > 0)

    def test_straight_line(self):
        """Uniform motion is reproduced everywhere, also when extrapolating."""
        spline = straight_line_spline()

        np.testing.assert_allclose(spline.position(0.5), [0.5, 0.0, 0.0], atol=1e-12)
        np.testing.assert_allclose(spline.position(1.0), [1.0, 0.0, 0.0], atol=1e-12)
        for t in (-3.0, 0.0, 0.5, 1.0, 1.7, 2.0, 5.0):
            r, v, a = spline.state(t)
            np.testing.assert_allclose(r, [t, 0.0, 0.0], atol=1e-12)
            np.testing.assert_allclose(v, [1.0, 0.0, 0.0], atol=1e-12)
            np.testing.assert_allclose(a, [0.0, 0.0, 0.0], atol=1e-12)

    def test_node_values(self):
        """The spline passes through the node states."""
        rng = np.random.default_rng(3)
        spline = SplineFit(num=5, tblock=0.4, tstart=-1.0)
        spline.set_nodes(rng.normal(size=(6, 3)), rng.normal(size=(6, 3)))

        r = spline.position(spline.times)
        v = spline.velocity(spline.times)

        np.testing.assert_allclose(r, spline.positions, atol=1e-12)
        np.testing.assert_allclose(v, spline.velocities, atol=1e-12)

    def test_velocity_units(self):
        """Velocities and accelerations are in physical units for any tblock."""
        spline = quadratic_spline(num=4, tblock=0.5)

        assert spline.position(0.3)[0] == pytest.approx(0.09)
        assert spline.velocity(0.3)[0] == pytest.approx(0.6)
        assert spline.acceleration(0.3)[0] == pytest.approx(2.0)
        assert spline.acceleration(1.9)[0] == pytest.approx(2.0)

    def test_vectorised_query(self):
        """Arrays of times give arrays of states."""
        spline = straight_line_spline()

        assert spline.position(0.3).shape == (3,)
        assert spline.position(np.array([0.1, 0.2, 1.5])).shape == (3, 3)
        r, v, a = spline.state([0.0, 1.0])
        assert r.shape == v.shape == a.shape == (2, 3)

    def test_acceleration_continuous_inside_segment(self):
        """Acceleration has no jump inside a segment."""
        rng = np.random.default_rng(4)
        spline = SplineFit(num=3, tblock=1.0)
        spline.set_nodes(rng.normal(size=(4, 3)), rng.normal(size=(4, 3)))

        t = np.linspace(1.01, 1.99, 99)
        a = spline.acceleration(t)

        # a single cubic: acceleration is affine in time
        np.testing.assert_allclose(np.diff(a, n=2, axis=0), 0.0, atol=1e-9)
        np.testing.assert_allclose(spline.acceleration(1.5), spline.acceleration(1.5 + 1e-9), atol=1e-6)

    def test_fill_missing_linear(self):
        """A missing node on a straight line is reconstructed exactly."""
        spline = SplineFit(num=4, tblock=1.0)
        t = spline.times[:, None]
        positions = np.hstack([2 * t + 1, -t, np.full_like(t, 3.0)])
        velocities = np.tile([2.0, -1.0, 0.0], (5, 1))
        positions[2] = 0.0
        velocities[2] = 0.0
        spline.set_nodes(positions, velocities, [False, False, True, False, False])

        assert spline.fill_missing(True)

        np.testing.assert_allclose(spline.positions[2], [5.0, -2.0, 3.0])
        np.testing.assert_allclose(spline.velocities[2], [2.0, -1.0, 0.0])
        assert spline.missing.tolist() == [False, False, True, False, False]

    def test_fill_missing_interior_policies(self):
        """Linear fill interpolates, the higher-order fill follows the cubic."""
        linear = quadratic_spline(missing=(3, 4))
        linear.fill_missing(True)
        assert linear.positions[3, 0] == pytest.approx(11.0)
        assert linear.velocities[3, 0] == pytest.approx(6.0)

        cubic = quadratic_spline(missing=(3, 4))
        cubic.fill_missing(False)
        assert cubic.positions[3, 0] == pytest.approx(9.0)
        assert cubic.velocities[3, 0] == pytest.approx(6.0)
        assert cubic.positions[4, 0] == pytest.approx(16.0)
        assert cubic.velocities[4, 0] == pytest.approx(8.0)

    def test_fill_missing_end_gaps(self):
        """Leading and trailing gaps are extrapolated."""
        linear = quadratic_spline(num=5, missing=(0, 1, 5))
        linear.fill_missing(True)
        assert linear.positions[0, 0] == pytest.approx(-4.0)
        assert linear.velocities[0, 0] == pytest.approx(4.0)
        assert linear.positions[5, 0] == pytest.approx(16.0 + 8.0)

        quadratic = quadratic_spline(num=5, missing=(0, 1, 5))
        quadratic.fill_missing(False)
        assert quadratic.positions[0, 0] == pytest.approx(0.0, abs=1e-12)
        assert quadratic.velocities[0, 0] == pytest.approx(0.0, abs=1e-12)
        assert quadratic.positions[1, 0] == pytest.approx(1.0)
        assert quadratic.velocities[1, 0] == pytest.approx(2.0)
        assert quadratic.positions[5, 0] == pytest.approx(25.0)
        assert quadratic.velocities[5, 0] == pytest.approx(10.0)

    def test_fill_missing_single_anchor(self):
        """With one observed node both policies extrapolate at constant velocity."""
        for linear_fit in (True, False):
            spline = SplineFit(num=2, tblock=0.5, dim=2)
            spline.set_nodes(
                [[0.0, 0.0], [1.0, 2.0], [0.0, 0.0]],
                [[0.0, 0.0], [2.0, -2.0], [0.0, 0.0]],
                [True, False, True],
            )
            spline.fill_missing(linear_fit)
            np.testing.assert_allclose(spline.positions[0], [0.0, 3.0])
            np.testing.assert_allclose(spline.positions[2], [2.0, 1.0])
            np.testing.assert_allclose(spline.velocities, [[2.0, -2.0]] * 3)

    def test_fill_missing_idempotent(self):
        """Filling twice gives identical node values."""
        rng = np.random.default_rng(5)
        for linear_fit in (True, False):
            spline = SplineFit(num=9, tblock=0.3)
            missing = np.zeros(10, dtype=bool)
            missing[[0, 3, 4, 7, 9]] = True
            spline.set_nodes(rng.normal(size=(10, 3)), rng.normal(size=(10, 3)), missing)

            spline.fill_missing(linear_fit)
            positions = spline.positions.copy()
            velocities = spline.velocities.copy()
            spline.fill_missing(linear_fit)

            np.testing.assert_array_equal(spline.positions, positions)
            np.testing.assert_array_equal(spline.velocities, velocities)
            np.testing.assert_array_equal(spline.missing, missing)

    def test_fill_missing_without_observations(self):
        """Without observed nodes nothing is filled."""
        spline = SplineFit(num=3)
        spline.set_nodes(np.zeros((4, 3)), np.zeros((4, 3)), [True] * 4)

        assert not spline.fill_missing(True)
        np.testing.assert_array_equal(spline.positions, np.zeros((4, 3)))

    def test_fill_missing_nothing_missing(self):
        """Nodes are untouched when nothing is missing."""
        spline = straight_line_spline()
        before = spline.positions.copy()
        assert spline.fill_missing(False)
        np.testing.assert_array_equal(spline.positions, before)
