"""Tests for the Muskingum-Cunge kernel."""
from __future__ import annotations

import itertools
import math
import unittest
from unittest import mock

from mcroute.channel import ChannelParams
from mcroute.errors import KernelError
from mcroute.routing import kernel
from mcroute.routing.kernel import (
    bankfull_depth,
    channel_geometry,
    manning_discharge,
    muskingum_coefficients,
    route_reach,
)
from mcroute.testing.synthetic_networks import DEFAULT_CHANNEL

LONG_CHANNEL = ChannelParams(
    length=1000.0,
    slope=0.001,
    manning_n=0.035,
    bottom_width=5.0,
    top_width=8.0,
    side_slope=0.8,
    manning_n_cc=0.07,
    top_width_cc=24.0,
)


class CoefficientTests(unittest.TestCase):
    def test_coefficients_sum_to_one(self) -> None:
        grid = itertools.product(
            (0.0, 0.05, 0.8, 3.0, 12.0),  # celerity
            (0.0, 0.5, 40.0, 2500.0),  # reference flow
            (60.0, 300.0, 3600.0),  # dt
            (10.0, 500.0, 8000.0),  # length
            (0.0, 0.25),  # x_min
        )
        for celerity, flow, dt, length, x_min in grid:
            coefficients = muskingum_coefficients(celerity, flow, 12.0, 0.002, length, dt, x_min)
            with self.subTest(celerity=celerity, flow=flow, dt=dt, length=length):
                self.assertAlmostEqual(coefficients.total, 1.0, delta=1e-9)
                self.assertGreaterEqual(coefficients.x, x_min)
                self.assertLessEqual(coefficients.x, 0.5)
                self.assertGreaterEqual(coefficients.km, dt)

    def test_zero_celerity_falls_back_to_storage_weighting(self) -> None:
        coefficients = muskingum_coefficients(0.0, 5.0, 10.0, 0.01, 100.0, 300.0)

        self.assertEqual(coefficients.km, 300.0)
        self.assertEqual(coefficients.x, 0.5)
        self.assertAlmostEqual(coefficients.c0, 0.0)
        self.assertAlmostEqual(coefficients.c1, 1.0)
        self.assertAlmostEqual(coefficients.c2, 0.0)

    def test_short_reach_uses_routing_step_as_storage_constant(self) -> None:
        coefficients = muskingum_coefficients(2.0, 10.0, 15.0, 0.01, 50.0, 300.0)

        self.assertEqual(coefficients.km, 300.0)
        self.assertAlmostEqual(coefficients.courant, 12.0)
        for value in (coefficients.c0, coefficients.c1, coefficients.c2):
            self.assertGreaterEqual(value, 0.0)

    def test_invalid_step_or_length(self) -> None:
        with self.assertRaises(KernelError):
            muskingum_coefficients(1.0, 1.0, 1.0, 0.01, 100.0, 0.0)
        with self.assertRaises(KernelError):
            muskingum_coefficients(1.0, 1.0, 1.0, 0.01, 0.0, 60.0)


class GeometryTests(unittest.TestCase):
    def test_trapezoid_below_bankfull(self) -> None:
        geometry = channel_geometry(1.0, DEFAULT_CHANNEL)

        self.assertFalse(geometry.overbank)
        self.assertAlmostEqual(geometry.area, 12.0)
        self.assertAlmostEqual(geometry.wetted_perimeter, 10.0 + 2.0 * math.sqrt(5.0))
        self.assertAlmostEqual(geometry.top_width, 14.0)

    def test_compound_channel_above_bankfull(self) -> None:
        self.assertAlmostEqual(bankfull_depth(DEFAULT_CHANNEL), 1.25)

        geometry = channel_geometry(2.0, DEFAULT_CHANNEL)

        self.assertTrue(geometry.overbank)
        self.assertAlmostEqual(geometry.area, 15.625)
        self.assertAlmostEqual(geometry.area_cc, 45.0 * 0.75)

    def test_discharge_grows_with_depth(self) -> None:
        flows = [
            manning_discharge(channel_geometry(depth, LONG_CHANNEL), LONG_CHANNEL)
            for depth in (0.1, 0.5, 1.0, 2.0, 4.0)
        ]

        self.assertEqual(flows, sorted(flows))
        self.assertGreater(flows[0], 0.0)


class RouteReachTests(unittest.TestCase):
    def test_dry_reach_is_a_pure_translation(self) -> None:
        result = route_reach(0.0, 0.0, 0.0, DEFAULT_CHANNEL, 300.0)

        self.assertTrue(result.degenerate)
        self.assertEqual(result.outflow, 0.0)
        self.assertEqual(result.depth, 0.0)

    def test_outflow_is_finite_and_non_negative(self) -> None:
        inputs = list(
            itertools.product(
                (0.0, 0.3, 7.5, 120.0),
                (0.0, 2.0, 60.0),
                (0.0, 5.0, 150.0),
            )
        )
        for channel in (DEFAULT_CHANNEL, LONG_CHANNEL):
            for inflow, inflow_prev, outflow_prev in inputs:
                result = route_reach(inflow, inflow_prev, outflow_prev, channel, 300.0)
                with self.subTest(flows=(inflow, inflow_prev, outflow_prev)):
                    self.assertTrue(math.isfinite(result.outflow))
                    self.assertGreaterEqual(result.outflow, 0.0)
                    self.assertGreaterEqual(result.depth, 0.0)
                    self.assertAlmostEqual(result.coefficients.total, 1.0, delta=1e-9)

    def test_identical_inputs_give_identical_results(self) -> None:
        first = route_reach(12.0, 8.0, 6.5, LONG_CHANNEL, 900.0, depth_prev=0.4)
        second = route_reach(12.0, 8.0, 6.5, LONG_CHANNEL, 900.0, depth_prev=0.4)

        self.assertEqual(first, second)

    def test_steady_inflow_reaches_steady_outflow(self) -> None:
        for channel in (DEFAULT_CHANNEL, LONG_CHANNEL):
            inflow_prev = outflow_prev = depth = 0.0
            for _ in range(400):
                result = route_reach(10.0, inflow_prev, outflow_prev, channel, 300.0, depth)
                inflow_prev, outflow_prev, depth = 10.0, result.outflow, result.depth
            with self.subTest(length=channel.length):
                self.assertAlmostEqual(outflow_prev, 10.0, delta=1e-3)

    def test_bracket_widening_after_iteration_limit(self) -> None:
        with mock.patch.object(kernel, "MAX_ITERATIONS", 0):
            result = route_reach(12.0, 8.0, 6.5, LONG_CHANNEL, 900.0, depth_prev=0.4)

        self.assertTrue(result.converged)
        self.assertGreaterEqual(result.iterations, 1)
        self.assertTrue(math.isfinite(result.outflow))
        self.assertGreaterEqual(result.outflow, 0.0)

    def test_exhausted_depth_iteration_keeps_last_estimate(self) -> None:
        with mock.patch.object(kernel, "MAX_ITERATIONS", 0), mock.patch.object(
            kernel, "MAX_RETRIES", 0
        ):
            with self.assertLogs("mcroute.routing.kernel", level="WARNING") as logs:
                result = route_reach(12.0, 8.0, 6.5, LONG_CHANNEL, 900.0, depth_prev=0.4)

        self.assertFalse(result.converged)
        self.assertEqual(result.iterations, 1)
        self.assertTrue(math.isfinite(result.outflow))
        self.assertGreaterEqual(result.outflow, 0.0)
        self.assertGreaterEqual(result.depth, 0.0)
        self.assertAlmostEqual(result.coefficients.total, 1.0, delta=1e-9)
        self.assertIn("did not converge", logs.output[0])

    def test_non_finite_input_raises(self) -> None:
        with self.assertRaises(KernelError):
            route_reach(math.nan, 0.0, 0.0, DEFAULT_CHANNEL, 300.0)
        with self.assertRaises(KernelError):
            route_reach(1.0, 0.0, 0.0, DEFAULT_CHANNEL, math.inf)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
