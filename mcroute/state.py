"""Routing state carried between timesteps."""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Sequence


@dataclass(frozen=True)
class RoutingState:
    """Values a reach remembers from the previous routing step."""

    inflow: float = 0.0
    outflow: float = 0.0
    depth: float = 0.0
    velocity: float = 0.0

    @property
    def is_valid(self) -> bool:
        return all(
            math.isfinite(value)
            for value in (self.inflow, self.outflow, self.depth, self.velocity)
        )

    def to_dict(self) -> Dict[str, float]:
        return {
            "inflow": self.inflow,
            "outflow": self.outflow,
            "depth": self.depth,
            "velocity": self.velocity,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, float]) -> "RoutingState":
        return cls(
            inflow=float(data.get("inflow", 0.0)),
            outflow=float(data.get("outflow", 0.0)),
            depth=float(data.get("depth", 0.0)),
            velocity=float(data.get("velocity", 0.0)),
        )


FAILED_STATE = RoutingState(
    inflow=math.nan, outflow=math.nan, depth=math.nan, velocity=math.nan
)


@dataclass
class NetworkState:
    """Snapshot of every reach's :class:`RoutingState` at one step.

    ``lateral`` holds the external inflow that produced the snapshot. The
    timestep processor never mutates a snapshot it reads; it writes a new one.
    """

    step: int
    states: Dict[str, RoutingState]
    lateral: Dict[str, float] = field(default_factory=dict)
    time: Optional[datetime] = None

    @classmethod
    def initial(
        cls,
        reach_ids: Iterable[str],
        time: Optional[datetime] = None,
        initial_flow: Optional[Mapping[str, float]] = None,
    ) -> "NetworkState":
        """Zero state, optionally seeded with an initial flow per reach."""

        seed = initial_flow or {}
        states = {}
        for reach_id in reach_ids:
            flow = float(seed.get(reach_id, 0.0))
            states[reach_id] = RoutingState(inflow=flow, outflow=flow)
        return cls(step=0, states=states, time=time)

    def __getitem__(self, reach_id: str) -> RoutingState:
        return self.states[reach_id]

    def __contains__(self, reach_id: object) -> bool:
        return reach_id in self.states

    def __len__(self) -> int:
        return len(self.states)

    def outflows(self) -> Dict[str, float]:
        return {rid: state.outflow for rid, state in self.states.items()}

    def depths(self) -> Dict[str, float]:
        return {rid: state.depth for rid, state in self.states.items()}

    def velocities(self) -> Dict[str, float]:
        return {rid: state.velocity for rid, state in self.states.items()}

    def invalid_reaches(self) -> List[str]:
        return [rid for rid, state in self.states.items() if not state.is_valid]

    def to_dict(self) -> Dict[str, object]:
        return {
            "step": self.step,
            "time": self.time.isoformat() if self.time else None,
            "states": {rid: state.to_dict() for rid, state in self.states.items()},
            "lateral": dict(self.lateral),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> "NetworkState":
        time = data.get("time")
        return cls(
            step=int(data.get("step", 0)),
            states={
                rid: RoutingState.from_dict(values)
                for rid, values in dict(data.get("states", {})).items()
            },
            lateral={rid: float(v) for rid, v in dict(data.get("lateral", {})).items()},
            time=datetime.fromisoformat(time) if time else None,
        )


def average_states(
    snapshots: Sequence[NetworkState],
    step: int,
    time: Optional[datetime] = None,
) -> NetworkState:
    """Average equally long routing sub-steps into one snapshot.

    The mean outflow times the full step duration equals the sum of the
    sub-step outflows times the sub-step duration.
    """

    if not snapshots:
        raise ValueError("Cannot average an empty sequence of states")
    count = float(len(snapshots))
    averaged: Dict[str, RoutingState] = {}
    for reach_id in snapshots[0].states:
        members = [snap.states[reach_id] for snap in snapshots]
        averaged[reach_id] = RoutingState(
            inflow=math.fsum(s.inflow for s in members) / count,
            outflow=math.fsum(s.outflow for s in members) / count,
            depth=math.fsum(s.depth for s in members) / count,
            velocity=math.fsum(s.velocity for s in members) / count,
        )
    return NetworkState(
        step=step,
        states=averaged,
        lateral=dict(snapshots[-1].lateral),
        time=time,
    )


__all__ = ["FAILED_STATE", "NetworkState", "RoutingState", "average_states"]
