"""Muskingum-Cunge channel routing over river networks."""

from .channel import ChannelParameterStore, ChannelParams
from .config import ColumnConfig, IOConfig, RoutingConfig, SimulationConfig
from .driver import SimulationDriver, SimulationResult, run_simulation
from .errors import (
    ConfigurationError,
    CycleDetected,
    DanglingReference,
    InvalidChannelParams,
    KernelError,
    MalformedRecord,
    MissingForcing,
    MissingParams,
    RoutingError,
    RoutingFailure,
    SimulationCancelled,
    SourceError,
    SourceUnavailable,
)
from .network import NetworkNode, NetworkTopology, ReachRecord, build_network_topology
from .routing import TimestepProcessor, muskingum_coefficients, route_reach
from .state import NetworkState, RoutingState

__all__ = [
    "ChannelParameterStore",
    "ChannelParams",
    "ColumnConfig",
    "IOConfig",
    "RoutingConfig",
    "SimulationConfig",
    "SimulationDriver",
    "SimulationResult",
    "run_simulation",
    "ConfigurationError",
    "CycleDetected",
    "DanglingReference",
    "InvalidChannelParams",
    "KernelError",
    "MalformedRecord",
    "MissingForcing",
    "MissingParams",
    "RoutingError",
    "RoutingFailure",
    "SimulationCancelled",
    "SourceError",
    "SourceUnavailable",
    "NetworkNode",
    "NetworkTopology",
    "ReachRecord",
    "build_network_topology",
    "TimestepProcessor",
    "muskingum_coefficients",
    "route_reach",
    "NetworkState",
    "RoutingState",
]
