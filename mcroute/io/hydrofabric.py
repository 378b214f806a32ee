"""Read network connectivity and channel parameters from a hydrofabric."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from sqlalchemy import MetaData, Table, create_engine, inspect, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from ..channel import ChannelParameterStore, ChannelParams
from ..config import ColumnConfig
from ..errors import MalformedRecord, SourceUnavailable
from ..network import NetworkTopology, ReachRecord, build_network_topology

logger = logging.getLogger(__name__)


class NetworkSource:
    """Base class for providers of connectivity and channel parameters."""

    def reach_records(self) -> List[ReachRecord]:
        raise NotImplementedError

    def channel_params(self) -> Dict[str, ChannelParams]:
        raise NotImplementedError

    def build(
        self, allow_external_outlets: bool = True
    ) -> Tuple[NetworkTopology, ChannelParameterStore]:
        """Return the validated topology and the parameter store covering it."""

        topology = build_network_topology(
            self.reach_records(), allow_external_outlets=allow_external_outlets
        )
        store = ChannelParameterStore.for_topology(topology, self.channel_params())
        return topology, store


def collapse_links(
    links: Mapping[str, Optional[str]], reaches: Iterable[str]
) -> Dict[str, Optional[str]]:
    """Reduce ``id -> toid`` links to reach-to-reach links.

    Identifiers that are not reaches (nexus points) are followed until a
    reach is found. A chain that ends on an identifier missing from
    ``links`` keeps that identifier so the topology builder can decide
    whether it leaves the domain.
    """

    reach_set = set(reaches)
    collapsed: Dict[str, Optional[str]] = {}
    for reach_id in reach_set:
        target = links.get(reach_id)
        visited = {reach_id}
        while target is not None and target not in reach_set:
            if target in visited:
                raise MalformedRecord(f"Nexus loop below reach {reach_id} at {target}")
            visited.add(target)
            if target not in links:
                break
            target = links[target]
        collapsed[reach_id] = target
    return collapsed


class HydrofabricSource(NetworkSource):
    """SQLite or GeoPackage hydrofabric accessed through SQLAlchemy.

    Connectivity is read from the ``network`` table and channel geometry
    from the ``flowpath-attributes`` table; table and column names come from
    :class:`~mcroute.config.ColumnConfig`.
    """

    def __init__(self, path: Path, columns: Optional[ColumnConfig] = None) -> None:
        self.path = Path(path)
        if not self.path.is_file():
            raise SourceUnavailable(f"Hydrofabric {self.path} does not exist")
        self.columns = columns or ColumnConfig()
        self.engine: Engine = create_engine(f"sqlite:///{self.path}", future=True)
        self._links: Optional[Dict[str, Optional[str]]] = None
        self._rows: Optional[Dict[str, Dict[str, object]]] = None
        self._areas: Optional[Dict[str, float]] = None

    def _table(self, name: str, required: Iterable[str]) -> Table:
        try:
            available = inspect(self.engine).get_table_names()
        except SQLAlchemyError as exc:
            raise SourceUnavailable(f"Cannot open hydrofabric {self.path}: {exc}") from exc
        if name not in available:
            raise MalformedRecord(f"Hydrofabric {self.path} has no table {name!r}")
        table = Table(name, MetaData(), autoload_with=self.engine)
        missing = [column for column in required if column not in table.c]
        if missing:
            raise MalformedRecord(
                f"Table {name!r} lacks columns: " + ", ".join(sorted(missing))
            )
        return table

    def _load_network(self) -> None:
        cols = self.columns
        table = self._table(cols.network_table, (cols.key, cols.downstream))
        fields = [table.c[cols.key], table.c[cols.downstream]]
        has_area = bool(cols.area) and cols.area in table.c
        if has_area:
            fields.append(table.c[cols.area])

        links: Dict[str, Optional[str]] = {}
        areas: Dict[str, float] = {}
        with self.engine.connect() as conn:
            for row in conn.execute(select(*fields)):
                key = str(row[0])
                toid = str(row[1]) if row[1] not in (None, "") else None
                # Divides repeat an id; the first non-null downstream wins.
                if links.get(key) is None:
                    links[key] = toid
                if has_area and row[2] is not None and key not in areas:
                    areas[key] = float(row[2])
        self._links = links
        self._areas = areas

    def _load_flowpaths(self) -> None:
        cols = self.columns
        required = (
            cols.key,
            cols.length,
            cols.manning_n,
            cols.slope,
            cols.bottom_width,
            cols.top_width,
        )
        table = self._table(cols.flowpath_table, required)
        rows: Dict[str, Dict[str, object]] = {}
        with self.engine.connect() as conn:
            for row in conn.execute(select(table)).mappings():
                key = str(row[cols.key])
                if key in rows:
                    raise MalformedRecord(f"Duplicate flowpath record for {key}")
                rows[key] = dict(row)
        self._rows = rows

    def _flowpaths(self) -> Dict[str, Dict[str, object]]:
        if self._rows is None:
            self._load_flowpaths()
        return self._rows

    def areas(self) -> Dict[str, float]:
        """Catchment area in km2 per identifier, when the network table has it."""

        if self._areas is None:
            self._load_network()
        return dict(self._areas)

    def reach_records(self) -> List[ReachRecord]:
        if self._links is None:
            self._load_network()
        collapsed = collapse_links(self._links, self._flowpaths())
        logger.info(
            "Read %d reaches from %s (%d network links)",
            len(collapsed),
            self.path,
            len(self._links),
        )
        return [ReachRecord(rid, collapsed[rid]) for rid in sorted(collapsed)]

    def channel_params(self) -> Dict[str, ChannelParams]:
        areas = self.areas()
        params: Dict[str, ChannelParams] = {}
        for reach_id, row in self._flowpaths().items():
            if reach_id in areas and row.get(self.columns.area) is None:
                row = {**row, self.columns.area: areas[reach_id]}
            params[reach_id] = ChannelParams.from_record(row, self.columns)
        return params

    def dispose(self) -> None:
        self.engine.dispose()


__all__ = ["HydrofabricSource", "NetworkSource", "collapse_links"]
