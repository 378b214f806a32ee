"""Exception hierarchy raised by the routing engine and its adapters."""
from __future__ import annotations

from typing import TYPE_CHECKING, Optional, Sequence

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .state import NetworkState


class RoutingError(Exception):
    """Base class for every error raised by mcroute."""


class ConfigurationError(RoutingError):
    """Invalid network, parameters or run setup detected before routing."""


class CycleDetected(ConfigurationError):
    def __init__(self, reaches: Sequence[str]):
        self.reaches = tuple(sorted(reaches))
        super().__init__(
            "Cycle detected in network topology involving reaches: "
            + ", ".join(self.reaches)
        )


class DanglingReference(ConfigurationError):
    def __init__(self, reach_id: str, reference: str, relation: str = "downstream"):
        self.reach_id = reach_id
        self.reference = reference
        self.relation = relation
        super().__init__(
            f"Reach {reach_id} references unknown {relation} reach {reference}"
        )


class MissingParams(ConfigurationError):
    def __init__(self, reach_id: str):
        self.reach_id = reach_id
        super().__init__(f"No channel parameters defined for reach {reach_id}")


class InvalidChannelParams(ConfigurationError):
    def __init__(self, reach_id: Optional[str], field: str, value: float):
        self.reach_id = reach_id
        self.field = field
        self.value = value
        label = f"reach {reach_id}" if reach_id is not None else "channel"
        super().__init__(f"Invalid {field}={value!r} for {label}")


class MissingForcing(ConfigurationError):
    def __init__(self, reach_id: str, step: int):
        self.reach_id = reach_id
        self.step = step
        super().__init__(f"No lateral inflow for reach {reach_id} at step {step}")


class SourceError(RoutingError):
    """Raised by network, parameter or forcing adapters."""


class SourceUnavailable(SourceError):
    pass


class MalformedRecord(SourceError):
    pass


class KernelError(RoutingError):
    """The Muskingum-Cunge kernel could not produce a finite outflow."""


class RoutingFailure(RoutingError):
    """A reach failed during a timestep; the run cannot continue."""

    def __init__(
        self,
        reach_id: str,
        step: int,
        partial_state: "Optional[NetworkState]" = None,
        reason: str = "",
        substep: Optional[int] = None,
    ):
        self.reach_id = reach_id
        self.step = step
        self.partial_state = partial_state
        self.reason = reason
        # Routing sub-step count when the driver reports a forcing step.
        self.substep = substep
        message = f"Routing failed for reach {reach_id} at step {step}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class SimulationCancelled(RoutingError):
    def __init__(self, steps_completed: int):
        self.steps_completed = steps_completed
        super().__init__(f"Simulation cancelled after {steps_completed} steps")


__all__ = [
    "RoutingError",
    "ConfigurationError",
    "CycleDetected",
    "DanglingReference",
    "MissingParams",
    "InvalidChannelParams",
    "MissingForcing",
    "SourceError",
    "SourceUnavailable",
    "MalformedRecord",
    "KernelError",
    "RoutingFailure",
    "SimulationCancelled",
]
