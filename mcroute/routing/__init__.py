"""Muskingum-Cunge kernel and timestep processing."""

from .kernel import (
    KernelResult,
    MuskingumCoefficients,
    muskingum_coefficients,
    route_reach,
)
from .processor import SCHEDULERS, StepDiagnostics, TimestepProcessor, aggregate_inflow

__all__ = [
    "KernelResult",
    "MuskingumCoefficients",
    "SCHEDULERS",
    "StepDiagnostics",
    "TimestepProcessor",
    "aggregate_inflow",
    "muskingum_coefficients",
    "route_reach",
]
