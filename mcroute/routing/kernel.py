"""Muskingum-Cunge kernel for a single reach and a single routing step.

The kernel is a pure function of its arguments. Wave celerity depends on the
flow depth, so the depth is solved with the secant method such that the
Muskingum-Cunge outflow matches the Manning normal-flow discharge; routing
coefficients are recomputed for every depth estimate.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Tuple

from ..channel import ChannelParams
from ..errors import KernelError

logger = logging.getLogger(__name__)

# Depth below which the secant iteration stops refining (m).
MIN_DEPTH = 0.01
# Total flow at or below which a reach is treated as dry (m3/s).
FLOW_FLOOR = 1e-9
RELATIVE_TOLERANCE = 0.01
MAX_ITERATIONS = 100
MAX_RETRIES = 4
# Lower bound on the weighting factor X for the final coefficient set.
X_MIN_FINAL = 0.25


@dataclass(frozen=True)
class MuskingumCoefficients:
    """Routing weights for current inflow, previous inflow and previous outflow."""

    c0: float
    c1: float
    c2: float
    km: float
    x: float
    courant: float
    reynolds: float

    @property
    def total(self) -> float:
        return self.c0 + self.c1 + self.c2

    def apply(self, inflow: float, inflow_prev: float, outflow_prev: float) -> float:
        return self.c0 * inflow + self.c1 * inflow_prev + self.c2 * outflow_prev


TRANSLATION = MuskingumCoefficients(
    c0=1.0, c1=0.0, c2=0.0, km=0.0, x=0.0, courant=0.0, reynolds=0.0
)


@dataclass(frozen=True)
class ChannelGeometry:
    area: float
    area_cc: float
    wetted_perimeter: float
    wetted_perimeter_cc: float
    hydraulic_radius: float
    top_width: float
    overbank: bool


@dataclass(frozen=True)
class KernelResult:
    outflow: float
    depth: float
    velocity: float
    coefficients: MuskingumCoefficients
    iterations: int = 0
    converged: bool = True
    degenerate: bool = False


def muskingum_coefficients(
    celerity: float,
    flow: float,
    top_width: float,
    slope: float,
    length: float,
    dt: float,
    x_min: float = 0.0,
) -> MuskingumCoefficients:
    """Compute Muskingum-Cunge coefficients for one set of hydraulic conditions.

    ``c0`` weights the current inflow, ``c1`` the previous inflow and ``c2``
    the previous outflow; the three always sum to one. A non-positive
    celerity degrades to ``km = dt`` and ``x = 0.5``.
    """

    if dt <= 0.0 or length <= 0.0:
        raise KernelError(f"Routing step and reach length must be positive (dt={dt}, dx={length})")

    if celerity > 0.0:
        km = max(dt, length / celerity)
        denominator = top_width * slope * celerity * length
        reynolds = flow / denominator if denominator > 0.0 else 0.0
        x = min(0.5, max(x_min, 0.5 * (1.0 - 0.5 * reynolds)))
        courant = celerity * dt / length
    else:
        km = dt
        x = 0.5
        reynolds = 0.0
        courant = 0.0

    d = km * (1.0 - x) + dt / 2.0
    return MuskingumCoefficients(
        c0=(dt / 2.0 - km * x) / d,
        c1=(km * x + dt / 2.0) / d,
        c2=(km * (1.0 - x) - dt / 2.0) / d,
        km=km,
        x=x,
        courant=courant,
        reynolds=reynolds,
    )


def _side_spread(params: ChannelParams) -> float:
    return 1.0 if params.side_slope == 0.0 else 1.0 / params.side_slope


def bankfull_depth(params: ChannelParams) -> float:
    z = _side_spread(params)
    bw, tw = params.bottom_width, params.top_width
    if bw > tw:
        return bw / 0.00001
    if bw == tw:
        return bw / (2.0 * z)
    return (tw - bw) / (2.0 * z)


def channel_geometry(depth: float, params: ChannelParams) -> ChannelGeometry:
    """Flow area, wetted perimeter and hydraulic radius at ``depth``.

    The main channel is trapezoidal; above bankfull depth the compound
    channel is treated as a rectangle of width ``compound_width``.
    """

    z = _side_spread(params)
    bw = params.bottom_width
    bfd = bankfull_depth(params)
    side = math.sqrt(1.0 + z * z)
    top_width = bw + 2.0 * z * depth

    if depth > bfd:
        area = (bw + bfd * z) * bfd
        area_cc = params.compound_width * (depth - bfd)
        wp = bw + 2.0 * bfd * side
        wp_cc = params.compound_width + 2.0 * (depth - bfd)
        radius = (area + area_cc) / (wp + wp_cc)
        return ChannelGeometry(area, area_cc, wp, wp_cc, radius, top_width, True)

    area = (bw + depth * z) * depth
    wp = bw + 2.0 * depth * side
    radius = area / wp if wp > 0.0 else 0.0
    return ChannelGeometry(area, 0.0, wp, 0.0, radius, top_width, False)


def wave_celerity(depth: float, geometry: ChannelGeometry, params: ChannelParams) -> float:
    """Kinematic wave celerity (m/s) from Manning's equation."""

    if depth <= 0.0:
        return 0.0

    z = _side_spread(params)
    bw = params.bottom_width
    sqrt_slope = math.sqrt(params.routing_slope)
    side = math.sqrt(1.0 + z * z)
    radius = geometry.hydraulic_radius

    if geometry.overbank:
        bfd = bankfull_depth(params)
        main = (sqrt_slope / params.manning_n) * (
            (5.0 / 3.0) * radius ** (2.0 / 3.0)
            - (2.0 / 3.0) * radius ** (5.0 / 3.0) * (2.0 * side / (bw + 2.0 * bfd * z))
        )
        compound = (sqrt_slope / params.compound_n) * (5.0 / 3.0) * (depth - bfd) ** (2.0 / 3.0)
        total_area = geometry.area + geometry.area_cc
        return max(0.0, (main * geometry.area + compound * geometry.area_cc) / total_area)

    celerity = (sqrt_slope / params.manning_n) * (
        (5.0 / 3.0) * radius ** (2.0 / 3.0)
        - (2.0 / 3.0) * radius ** (5.0 / 3.0) * (2.0 * side / (bw + 2.0 * depth * z))
    )
    return max(0.0, celerity)


def manning_discharge(geometry: ChannelGeometry, params: ChannelParams) -> float:
    """Normal-flow discharge with a wetted-perimeter weighted roughness."""

    perimeter = geometry.wetted_perimeter + geometry.wetted_perimeter_cc
    if perimeter <= 0.0:
        return 0.0
    roughness = (
        geometry.wetted_perimeter * params.manning_n
        + geometry.wetted_perimeter_cc * params.compound_n
    ) / perimeter
    return (
        (1.0 / roughness)
        * (geometry.area + geometry.area_cc)
        * geometry.hydraulic_radius ** (2.0 / 3.0)
        * math.sqrt(params.routing_slope)
    )


def _channel_velocity(depth: float, params: ChannelParams) -> float:
    z = _side_spread(params)
    bw = params.bottom_width
    top = bw + 2.0 * z * depth
    radius = (depth * (bw + top) / 2.0) / (
        bw + 2.0 * math.sqrt(((top - bw) / 2.0) ** 2 + depth ** 2)
    )
    return (1.0 / params.manning_n) * radius ** (2.0 / 3.0) * math.sqrt(params.routing_slope)


def _evaluate(
    depth: float,
    params: ChannelParams,
    dt: float,
    flows: Tuple[float, float, float],
    reference_flow: float,
    x_min: float,
) -> Tuple[MuskingumCoefficients, float, float]:
    """Return coefficients, routed flow and the Manning residual at ``depth``."""

    geometry = channel_geometry(depth, params)
    celerity = wave_celerity(depth, geometry, params)
    width = params.compound_width if geometry.overbank else geometry.top_width
    coefficients = muskingum_coefficients(
        celerity, reference_flow, width, params.routing_slope, params.length, dt, x_min
    )
    routed = coefficients.apply(*flows)
    return coefficients, routed, routed - manning_discharge(geometry, params)


def _check_inputs(values: Tuple[float, ...], params: ChannelParams, dt: float) -> None:
    if not all(math.isfinite(value) for value in values):
        raise KernelError(f"Non-finite kernel input: {values}")
    if not math.isfinite(dt) or dt <= 0.0:
        raise KernelError(f"Routing step must be positive, got {dt}")
    if params.manning_n <= 0.0 or params.bottom_width <= 0.0 or params.length <= 0.0:
        raise KernelError(
            "Invalid channel coefficients: "
            f"n={params.manning_n}, bw={params.bottom_width}, dx={params.length}"
        )


def route_reach(
    inflow: float,
    inflow_prev: float,
    outflow_prev: float,
    params: ChannelParams,
    dt: float,
    depth_prev: float = 0.0,
) -> KernelResult:
    """Route one reach over one step of ``dt`` seconds.

    Parameters
    ----------
    inflow:
        Total inflow for the current step (upstream outflows plus lateral).
    inflow_prev, outflow_prev:
        Inflow and outflow of the previous step.
    params:
        Channel description of the reach.
    dt:
        Routing step in seconds.
    depth_prev:
        Depth of the previous step; seeds the secant bracket.

    Raises
    ------
    KernelError
        When inputs or parameters are invalid or no finite outflow results.
    """

    _check_inputs((inflow, inflow_prev, outflow_prev, depth_prev), params, dt)
    flows = (inflow, inflow_prev, outflow_prev)

    if max(flows) <= FLOW_FLOOR:
        logger.debug("Dry reach, passing inflow %.3g through unchanged", inflow)
        return KernelResult(
            outflow=max(inflow, 0.0),
            depth=0.0,
            velocity=0.0,
            coefficients=TRANSLATION,
            degenerate=True,
        )

    depth = max(depth_prev, 0.0)
    upper = depth * 1.33 + MIN_DEPTH
    lower = depth * 0.67
    reference = sum(flows) / 3.0

    relative_error = 1.0
    absolute_error = MIN_DEPTH
    max_iterations = MAX_ITERATIONS
    retries = 0
    total_iterations = 0
    converged = True
    coefficients = TRANSLATION

    while True:
        iteration = 0
        while (
            relative_error > RELATIVE_TOLERANCE
            and absolute_error >= MIN_DEPTH
            and iteration <= max_iterations
        ):
            _, reference, residual_lower = _evaluate(
                lower, params, dt, flows, reference, 0.0
            )
            coefficients, reference, residual_upper = _evaluate(
                upper, params, dt, flows, reference, X_MIN_FINAL
            )

            if residual_lower != residual_upper:
                estimate = upper - residual_upper * (lower - upper) / (
                    residual_lower - residual_upper
                )
                if estimate < 0.0 or not math.isfinite(estimate):
                    estimate = upper
            else:
                estimate = upper

            if upper > 0.0:
                relative_error = abs((estimate - upper) / upper)
                absolute_error = abs(estimate - upper)
            else:
                relative_error = 0.0
                absolute_error = 0.9

            lower = max(0.0, upper)
            upper = max(0.0, estimate)
            iteration += 1
            if upper < MIN_DEPTH:
                break

        total_iterations += iteration
        if iteration < max_iterations:
            break
        retries += 1
        if retries <= MAX_RETRIES:
            upper *= 1.33
            lower *= 0.67
            max_iterations += 25
            continue

        converged = False
        logger.warning(
            "Muskingum-Cunge depth iteration did not converge after %d iterations "
            "(rel err %.3g, depth %.3g m, x %.3g, km %.3g s, flows %s)",
            total_iterations,
            relative_error,
            upper,
            coefficients.x,
            coefficients.km,
            flows,
        )
        break

    routed = coefficients.apply(*flows)
    if routed < 0.0:
        routed = max(
            coefficients.c1 * inflow_prev + coefficients.c0 * inflow,
            coefficients.c1 * inflow_prev + coefficients.c2 * outflow_prev,
        )
    outflow = max(routed, 0.0)
    velocity = _channel_velocity(upper, params)

    if not (math.isfinite(outflow) and math.isfinite(upper) and math.isfinite(velocity)):
        raise KernelError(
            f"Non-finite routing result (outflow={outflow}, depth={upper}, velocity={velocity})"
        )

    return KernelResult(
        outflow=outflow,
        depth=upper,
        velocity=velocity,
        coefficients=coefficients,
        iterations=total_iterations,
        converged=converged,
    )


__all__ = [
    "ChannelGeometry",
    "FLOW_FLOOR",
    "KernelResult",
    "MIN_DEPTH",
    "MuskingumCoefficients",
    "bankfull_depth",
    "channel_geometry",
    "manning_discharge",
    "muskingum_coefficients",
    "route_reach",
    "wave_celerity",
]
