"""Lateral inflow sources feeding the simulation driver."""
from __future__ import annotations

import csv
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set

from ..errors import MalformedRecord, MissingForcing, SourceUnavailable

logger = logging.getLogger(__name__)

# Default position of the runoff column in ngen catchment output files.
DEFAULT_COLUMN_INDEX = 2


class ForcingSource:
    """Base class for providers of per-step lateral inflow (m3/s)."""

    def lateral(self, step: int, time: Optional[datetime] = None) -> Mapping[str, float]:
        raise NotImplementedError

    def __len__(self) -> int:
        raise NotImplementedError


class InMemoryForcing(ForcingSource):
    """Lateral inflow held in memory, either as series or as constants."""

    def __init__(
        self,
        series: Optional[Mapping[str, Sequence[float]]] = None,
        constant: Optional[Mapping[str, float]] = None,
    ) -> None:
        self.series = {rid: list(values) for rid, values in (series or {}).items()}
        self.constant = dict(constant or {})
        overlap = set(self.series) & set(self.constant)
        if overlap:
            raise ValueError(
                "Reaches given both a series and a constant: " + ", ".join(sorted(overlap))
            )

    def __len__(self) -> int:
        if not self.series:
            return 0
        return min(len(values) for values in self.series.values())

    def lateral(self, step: int, time: Optional[datetime] = None) -> Dict[str, float]:
        values = dict(self.constant)
        for reach_id, series in self.series.items():
            try:
                values[reach_id] = float(series[step])
            except IndexError as exc:
                raise MissingForcing(reach_id, step) from exc
        return values


def _catchment_key(reach_id: str) -> str:
    return reach_id.rsplit("-", 1)[-1]


def load_lateral_series(
    path: Path,
    variable: Optional[str] = None,
    area_km2: Optional[float] = None,
) -> List[float]:
    """Read one catchment CSV into a list of lateral inflows in m3/s.

    The runoff column is chosen by header name when ``variable`` is given and
    found, otherwise the third column is used. When ``area_km2`` is known the
    values are converted from metres per hour over the catchment to m3/s.
    """

    path = Path(path)
    values: List[float] = []
    with path.open("r", newline="") as fp:
        reader = csv.reader(fp)
        header = next(reader, None)
        if header is None:
            return values
        header = [name.strip() for name in header]
        index = DEFAULT_COLUMN_INDEX
        if variable is not None and variable in header:
            index = header.index(variable)
        for line_number, row in enumerate(reader, start=2):
            if not row:
                continue
            try:
                raw = row[index].strip()
            except IndexError as exc:
                raise MalformedRecord(f"{path}:{line_number} has no column {index}") from exc
            try:
                value = float(raw)
            except ValueError as exc:
                raise MalformedRecord(f"{path}:{line_number} value {raw!r} is not numeric") from exc
            if area_km2 is not None:
                value = value * area_km2 * 1_000_000.0 / 3600.0
            values.append(value)
    return values


class CsvForcing(ForcingSource):
    """Per-catchment CSV files as written by ngen, loaded up front.

    ``pattern`` is formatted with ``id`` (the numeric suffix of the reach
    identifier, ``wb-12`` gives ``12``) and ``reach`` (the full identifier).
    A reach without a file receives zero lateral inflow. When ``areas`` is
    given, every reach with a file needs an area for the unit conversion.
    """

    def __init__(
        self,
        directory: Path,
        reach_ids: Iterable[str],
        areas: Optional[Mapping[str, Optional[float]]] = None,
        variable: Optional[str] = None,
        pattern: str = "cat-{id}.csv",
        max_workers: Optional[int] = None,
    ) -> None:
        self.directory = Path(directory)
        if not self.directory.is_dir():
            raise SourceUnavailable(f"Forcing directory {self.directory} does not exist")
        self.reach_ids = list(reach_ids)
        self.areas = dict(areas) if areas is not None else None
        self.variable = variable
        self.pattern = pattern
        self.series: Dict[str, List[float]] = {}
        self.missing: Set[str] = set()
        self._load(max_workers)

    def path_for(self, reach_id: str) -> Path:
        return self.directory / self.pattern.format(id=_catchment_key(reach_id), reach=reach_id)

    def _load_one(self, reach_id: str) -> Optional[List[float]]:
        path = self.path_for(reach_id)
        if not path.exists():
            return None
        area = None
        if self.areas is not None:
            area = self.areas.get(reach_id)
            if area is None:
                raise MalformedRecord(
                    f"Reach {reach_id} has no catchment area to convert {path} to m3/s"
                )
        return load_lateral_series(path, self.variable, area)

    def _load(self, max_workers: Optional[int]) -> None:
        # Files are independent of each other, unlike the routing itself.
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            loaded = list(executor.map(self._load_one, self.reach_ids))
        for reach_id, values in zip(self.reach_ids, loaded):
            if values is None:
                self.missing.add(reach_id)
                logger.warning(
                    "No lateral inflow file for reach %s (%s); using zero inflow",
                    reach_id,
                    self.path_for(reach_id),
                )
                continue
            self.series[reach_id] = values
        logger.info(
            "Loaded lateral inflow for %d reaches from %s", len(self.series), self.directory
        )
        lengths = {len(values) for values in self.series.values()}
        if len(lengths) > 1:
            logger.warning(
                "Catchment files hold between %d and %d steps; only %d can be routed",
                min(lengths),
                max(lengths),
                min(lengths),
            )

    def __len__(self) -> int:
        if not self.series:
            return 0
        return min(len(values) for values in self.series.values())

    def lateral(self, step: int, time: Optional[datetime] = None) -> Dict[str, float]:
        values: Dict[str, float] = {}
        for reach_id in self.reach_ids:
            if reach_id in self.missing:
                values[reach_id] = 0.0
                continue
            series = self.series[reach_id]
            if step >= len(series):
                raise MissingForcing(reach_id, step)
            values[reach_id] = series[step]
        return values


__all__ = [
    "CsvForcing",
    "ForcingSource",
    "InMemoryForcing",
    "load_lateral_series",
]
