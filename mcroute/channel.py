"""Static channel hydraulic parameters and their read-only store."""
from __future__ import annotations

import math
from dataclasses import dataclass, fields
from typing import Dict, Iterator, Mapping, Optional, TYPE_CHECKING

from .errors import InvalidChannelParams, MalformedRecord, MissingParams

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .config import ColumnConfig
    from .network import NetworkTopology

# Channels with a flat bed are routed with this slope.
MIN_SLOPE = 1e-5


@dataclass(frozen=True)
class ChannelParams:
    """Hydraulic description of a single reach.

    Lengths are in metres, ``slope`` in m/m. ``side_slope`` follows the
    hydrofabric ``ChSlp`` convention: the trapezoid spreads ``1 / side_slope``
    metres horizontally per metre of depth, a value of zero meaning 1:1.
    """

    length: float
    slope: float
    manning_n: float
    bottom_width: float
    top_width: float
    side_slope: float = 0.0
    manning_n_cc: Optional[float] = None
    top_width_cc: Optional[float] = None
    area_km2: Optional[float] = None

    @property
    def compound_n(self) -> float:
        return self.manning_n_cc if self.manning_n_cc is not None else self.manning_n

    @property
    def compound_width(self) -> float:
        if self.top_width_cc is not None:
            return self.top_width_cc
        return 3.0 * self.top_width

    @property
    def routing_slope(self) -> float:
        return self.slope if self.slope > 0.0 else MIN_SLOPE

    def validate(self, reach_id: Optional[str] = None) -> "ChannelParams":
        """Return ``self`` after checking physical plausibility."""

        for item in fields(self):
            value = getattr(self, item.name)
            if value is None:
                continue
            if not math.isfinite(value):
                raise InvalidChannelParams(reach_id, item.name, value)

        positive = ("length", "manning_n", "bottom_width")
        for name in positive:
            if getattr(self, name) <= 0.0:
                raise InvalidChannelParams(reach_id, name, getattr(self, name))
        for name in ("slope", "side_slope", "top_width"):
            if getattr(self, name) < 0.0:
                raise InvalidChannelParams(reach_id, name, getattr(self, name))
        if self.manning_n_cc is not None and self.manning_n_cc <= 0.0:
            raise InvalidChannelParams(reach_id, "manning_n_cc", self.manning_n_cc)
        if self.top_width_cc is not None and self.top_width_cc < 0.0:
            raise InvalidChannelParams(reach_id, "top_width_cc", self.top_width_cc)
        return self

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> "ChannelParams":
        return cls(
            length=float(data["length"]),
            slope=float(data["slope"]),
            manning_n=float(data["manning_n"]),
            bottom_width=float(data["bottom_width"]),
            top_width=float(data.get("top_width", data["bottom_width"])),
            side_slope=float(data.get("side_slope", 0.0)),
            manning_n_cc=_optional_float(data.get("manning_n_cc")),
            top_width_cc=_optional_float(data.get("top_width_cc")),
            area_km2=_optional_float(data.get("area_km2")),
        )

    @classmethod
    def from_record(
        cls, record: Mapping[str, object], columns: "ColumnConfig"
    ) -> "ChannelParams":
        """Build parameters from a hydrofabric row using ``columns`` names."""

        mapping = {
            "length": columns.length,
            "slope": columns.slope,
            "manning_n": columns.manning_n,
            "bottom_width": columns.bottom_width,
            "top_width": columns.top_width,
            "side_slope": columns.side_slope,
            "manning_n_cc": columns.manning_n_cc,
            "top_width_cc": columns.top_width_cc,
            "area_km2": columns.area,
        }
        data: Dict[str, object] = {}
        for attr, column in mapping.items():
            if column and column in record and record[column] is not None:
                data[attr] = record[column]
        try:
            return cls.from_dict(data)
        except KeyError as exc:
            raise MalformedRecord(
                f"Channel record {record.get(columns.key)!r} lacks column for {exc.args[0]}"
            ) from exc
        except (TypeError, ValueError) as exc:
            raise MalformedRecord(
                f"Channel record {record.get(columns.key)!r} has non-numeric values"
            ) from exc

    def to_dict(self) -> Dict[str, Optional[float]]:
        return {item.name: getattr(self, item.name) for item in fields(self)}


def _optional_float(value: object) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)


class ChannelParameterStore(Mapping[str, ChannelParams]):
    """Read-only mapping from reach identifier to :class:`ChannelParams`."""

    def __init__(self, params: Mapping[str, ChannelParams]):
        self._params: Dict[str, ChannelParams] = {
            reach_id: value.validate(reach_id) for reach_id, value in params.items()
        }

    def __getitem__(self, reach_id: str) -> ChannelParams:
        try:
            return self._params[reach_id]
        except KeyError as exc:
            raise MissingParams(reach_id) from exc

    def __contains__(self, reach_id: object) -> bool:
        return reach_id in self._params

    def get(self, reach_id: str, default: Optional[ChannelParams] = None) -> Optional[ChannelParams]:
        return self._params.get(reach_id, default)

    def __iter__(self) -> Iterator[str]:
        return iter(self._params)

    def __len__(self) -> int:
        return len(self._params)

    def __repr__(self) -> str:
        return f"ChannelParameterStore({len(self)} reaches)"

    @classmethod
    def for_topology(
        cls,
        topology: "NetworkTopology",
        params: Mapping[str, ChannelParams],
    ) -> "ChannelParameterStore":
        """Keep the parameters of ``topology``'s reaches, failing on gaps."""

        selected: Dict[str, ChannelParams] = {}
        for reach_id in topology.routing_order:
            if reach_id not in params:
                raise MissingParams(reach_id)
            selected[reach_id] = params[reach_id]
        return cls(selected)


__all__ = ["ChannelParams", "ChannelParameterStore", "MIN_SLOPE"]
