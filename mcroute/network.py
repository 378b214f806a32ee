"""River network topology and dependency ordering."""
from __future__ import annotations

import heapq
import logging
from dataclasses import dataclass, field
from typing import (
    Dict,
    Iterable,
    Iterator,
    List,
    Mapping,
    Optional,
    Tuple,
    Union,
)

from .errors import CycleDetected, DanglingReference, MalformedRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReachRecord:
    """Raw connectivity record as delivered by a network source."""

    id: str
    downstream: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> "ReachRecord":
        try:
            reach_id = data["id"]
        except KeyError as exc:
            raise MalformedRecord(f"Reach record without id: {dict(data)!r}") from exc
        downstream = data.get("downstream")
        return cls(
            id=str(reach_id),
            downstream=str(downstream) if downstream not in (None, "") else None,
        )


RecordLike = Union[ReachRecord, Tuple[str, Optional[str]], Mapping[str, object]]


@dataclass(frozen=True)
class NetworkNode:
    """A reach together with its position in the network."""

    id: str
    downstream: Optional[str]
    upstream: Tuple[str, ...] = ()
    rank: int = -1
    level: int = -1

    @property
    def is_headwater(self) -> bool:
        return not self.upstream

    @property
    def is_outlet(self) -> bool:
        return self.downstream is None


@dataclass(frozen=True)
class NetworkTopology:
    """Immutable reach graph with a precomputed upstream-first ordering.

    ``routing_order`` lists every reach after all of its upstream reaches and
    ``levels`` partitions that order into batches whose members have no
    dependency on each other.
    """

    nodes: Mapping[str, NetworkNode]
    routing_order: Tuple[str, ...]
    levels: Tuple[Tuple[str, ...], ...] = field(default=())

    def __len__(self) -> int:
        return len(self.routing_order)

    def __contains__(self, reach_id: object) -> bool:
        return reach_id in self.nodes

    def __iter__(self) -> Iterator[str]:
        return iter(self.routing_order)

    def __getitem__(self, reach_id: str) -> NetworkNode:
        return self.nodes[reach_id]

    @property
    def outlets(self) -> List[str]:
        return [rid for rid in self.routing_order if self.nodes[rid].is_outlet]

    @property
    def headwaters(self) -> List[str]:
        return [rid for rid in self.routing_order if self.nodes[rid].is_headwater]

    def rank(self, reach_id: str) -> int:
        return self.nodes[reach_id].rank

    def upstream_of(self, reach_id: str) -> Tuple[str, ...]:
        return self.nodes[reach_id].upstream

    def downstream_of(self, reach_id: str) -> Optional[str]:
        return self.nodes[reach_id].downstream

    def edges(self) -> Iterator[Tuple[str, str]]:
        """Yield ``(upstream, downstream)`` pairs."""

        for rid in self.routing_order:
            downstream = self.nodes[rid].downstream
            if downstream is not None:
                yield rid, downstream

    def contributing_reaches(self, reach_id: str) -> List[str]:
        """Return ``reach_id`` and every reach draining into it, in routing order."""

        stack = [reach_id]
        visited = set()
        while stack:
            current = stack.pop()
            if current in visited:
                continue
            visited.add(current)
            stack.extend(self.nodes[current].upstream)
        return [rid for rid in self.routing_order if rid in visited]

    @classmethod
    def from_nodes(cls, nodes: Iterable[NetworkNode]) -> "NetworkTopology":
        """Build a topology from nodes that already declare their upstream sets.

        The declared upstream lists must mirror the downstream pointers.
        """

        node_list = list(nodes)
        by_id = {node.id: node for node in node_list}
        for node in node_list:
            for upstream in node.upstream:
                owner = by_id.get(upstream)
                if owner is None or owner.downstream != node.id:
                    raise DanglingReference(node.id, upstream, relation="upstream")
        return build_network_topology(
            ReachRecord(node.id, node.downstream) for node in node_list
        )


def _coerce_record(item: RecordLike) -> ReachRecord:
    if isinstance(item, ReachRecord):
        return item
    if isinstance(item, Mapping):
        return ReachRecord.from_dict(item)
    try:
        reach_id, downstream = item
    except (TypeError, ValueError) as exc:
        raise MalformedRecord(f"Cannot interpret reach record {item!r}") from exc
    return ReachRecord(
        id=str(reach_id),
        downstream=str(downstream) if downstream not in (None, "") else None,
    )


def _find_cycle(remaining: Mapping[str, Optional[str]]) -> List[str]:
    """Follow downstream pointers among unresolved reaches until one repeats."""

    start = min(remaining)
    path: List[str] = []
    seen: Dict[str, int] = {}
    current: Optional[str] = start
    while current is not None and current not in seen:
        seen[current] = len(path)
        path.append(current)
        current = remaining.get(current)
    if current is None:
        return sorted(remaining)
    return path[seen[current]:]


def build_network_topology(
    records: Iterable[RecordLike],
    *,
    allow_external_outlets: bool = False,
) -> NetworkTopology:
    """Build a :class:`NetworkTopology` from ``(id, downstream)`` records.

    Parameters
    ----------
    records:
        Reach records in any order.
    allow_external_outlets:
        Treat a downstream identifier outside the record set as leaving the
        domain instead of raising :class:`DanglingReference`.

    Raises
    ------
    MalformedRecord
        For duplicate identifiers or records that cannot be parsed.
    DanglingReference
        When a downstream identifier is unknown.
    CycleDetected
        When the network is not acyclic.
    """

    downstream_of: Dict[str, Optional[str]] = {}
    for item in records:
        record = _coerce_record(item)
        if record.id in downstream_of:
            raise MalformedRecord(f"Duplicate reach identifier {record.id}")
        downstream_of[record.id] = record.downstream

    for reach_id in sorted(downstream_of):
        downstream = downstream_of[reach_id]
        if downstream is None or downstream in downstream_of:
            continue
        if not allow_external_outlets:
            raise DanglingReference(reach_id, downstream)
        logger.warning(
            "Reach %s flows to %s which is outside the domain; treating it as an outlet",
            reach_id,
            downstream,
        )
        downstream_of[reach_id] = None

    upstream_index: Dict[str, List[str]] = {rid: [] for rid in downstream_of}
    for reach_id, downstream in downstream_of.items():
        if downstream is not None:
            upstream_index[downstream].append(reach_id)

    in_degree = {rid: len(ups) for rid, ups in upstream_index.items()}
    frontier = [rid for rid, count in in_degree.items() if count == 0]
    heapq.heapify(frontier)

    order: List[str] = []
    levels: Dict[str, int] = {}
    while frontier:
        current = heapq.heappop(frontier)
        order.append(current)
        levels[current] = 1 + max(
            (levels[up] for up in upstream_index[current]), default=-1
        )
        downstream = downstream_of[current]
        if downstream is None:
            continue
        in_degree[downstream] -= 1
        if in_degree[downstream] == 0:
            heapq.heappush(frontier, downstream)

    if len(order) != len(downstream_of):
        remaining = {
            rid: downstream_of[rid] for rid in downstream_of if rid not in levels
        }
        raise CycleDetected(_find_cycle(remaining))

    nodes = {
        rid: NetworkNode(
            id=rid,
            downstream=downstream_of[rid],
            upstream=tuple(sorted(upstream_index[rid])),
            rank=rank,
            level=levels[rid],
        )
        for rank, rid in enumerate(order)
    }

    level_count = max(levels.values(), default=-1) + 1
    buckets: List[List[str]] = [[] for _ in range(level_count)]
    for rid in order:
        buckets[levels[rid]].append(rid)

    topology = NetworkTopology(
        nodes=nodes,
        routing_order=tuple(order),
        levels=tuple(tuple(bucket) for bucket in buckets),
    )
    logger.info(
        "Network topology built with %d reaches, %d outlets and %d levels",
        len(topology),
        len(topology.outlets),
        level_count,
    )
    return topology


__all__ = [
    "NetworkNode",
    "NetworkTopology",
    "ReachRecord",
    "build_network_topology",
]
