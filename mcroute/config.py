"""Configuration objects for routing runs."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, Mapping, Optional, Sequence

import yaml

from .errors import ConfigurationError

DEFAULT_START_TIME = datetime(2000, 1, 1)
OUTPUT_FORMATS = ("csv", "netcdf")


@dataclass
class ColumnConfig:
    """Column and table names used when reading a hydrofabric."""

    key: str = "id"
    downstream: str = "toid"
    length: str = "Length_m"
    manning_n: str = "n"
    manning_n_cc: str = "nCC"
    slope: str = "So"
    bottom_width: str = "BtmWdth"
    top_width: str = "TopWdth"
    top_width_cc: str = "TopWdthCC"
    side_slope: str = "ChSlp"
    area: str = "areasqkm"
    network_table: str = "network"
    flowpath_table: str = "flowpath-attributes"

    @classmethod
    def from_dict(cls, data: Mapping[str, str]) -> "ColumnConfig":
        known = cls.__dataclass_fields__
        unknown = set(data) - set(known)
        if unknown:
            raise ConfigurationError(
                "Unknown column mapping keys: " + ", ".join(sorted(unknown))
            )
        return cls(**{key: str(value) for key, value in data.items()})

    def to_dict(self) -> Dict[str, str]:
        return {name: getattr(self, name) for name in self.__dataclass_fields__}


@dataclass
class RoutingConfig:
    """Timestep and scheduling settings of the routing engine.

    ``forcing_timestep`` is the interval of the lateral inflow data. Each
    forcing step is split into ``substeps`` routing steps of
    ``routing_timestep`` seconds.
    """

    routing_timestep: float = 3600.0
    forcing_timestep: float = 3600.0
    scheduler: str = "serial"
    max_workers: Optional[int] = None

    def __post_init__(self) -> None:
        self.validate()

    @property
    def substeps(self) -> int:
        return int(round(self.forcing_timestep / self.routing_timestep))

    def validate(self) -> None:
        if self.routing_timestep <= 0 or self.forcing_timestep <= 0:
            raise ConfigurationError("Timesteps must be positive")
        ratio = self.forcing_timestep / self.routing_timestep
        if ratio < 1 or abs(ratio - round(ratio)) > 1e-9:
            raise ConfigurationError(
                f"Forcing timestep {self.forcing_timestep}s is not a whole multiple "
                f"of the routing timestep {self.routing_timestep}s"
            )
        if self.scheduler not in ("serial", "level"):
            raise ConfigurationError(f"Unknown scheduler {self.scheduler!r}")
        if self.max_workers is not None and self.max_workers < 1:
            raise ConfigurationError("max_workers must be at least 1")

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> "RoutingConfig":
        max_workers = data.get("max_workers")
        return cls(
            routing_timestep=float(data.get("routing_timestep", 3600.0)),
            forcing_timestep=float(data.get("forcing_timestep", 3600.0)),
            scheduler=str(data.get("scheduler", "serial")),
            max_workers=int(max_workers) if max_workers is not None else None,
        )

    def to_dict(self) -> Dict[str, object]:
        return {
            "routing_timestep": self.routing_timestep,
            "forcing_timestep": self.forcing_timestep,
            "scheduler": self.scheduler,
            "max_workers": self.max_workers,
        }


@dataclass
class IOConfig:
    """Locations of the hydrofabric, forcing files and results."""

    hydrofabric: Optional[Path] = None
    forcing_directory: Optional[Path] = None
    results_directory: Path = Path("results")
    output_formats: Sequence[str] = ("csv",)
    forcing_variable: Optional[str] = None
    forcing_pattern: str = "cat-{id}.csv"
    buffer_size: int = 64

    def __post_init__(self) -> None:
        unknown = [fmt for fmt in self.output_formats if fmt not in OUTPUT_FORMATS]
        if unknown:
            raise ConfigurationError("Unknown output formats: " + ", ".join(unknown))

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> "IOConfig":
        return cls(
            hydrofabric=Path(data["hydrofabric"]) if data.get("hydrofabric") else None,
            forcing_directory=Path(data["forcing_directory"]) if data.get("forcing_directory") else None,
            results_directory=Path(data.get("results_directory", "results")),
            output_formats=tuple(data.get("output_formats", ("csv",))),
            forcing_variable=data.get("forcing_variable"),
            forcing_pattern=str(data.get("forcing_pattern", "cat-{id}.csv")),
            buffer_size=int(data.get("buffer_size", 64)),
        )

    def to_dict(self) -> Dict[str, object]:
        return {
            "hydrofabric": str(self.hydrofabric) if self.hydrofabric else None,
            "forcing_directory": str(self.forcing_directory) if self.forcing_directory else None,
            "results_directory": str(self.results_directory),
            "output_formats": list(self.output_formats),
            "forcing_variable": self.forcing_variable,
            "forcing_pattern": self.forcing_pattern,
            "buffer_size": self.buffer_size,
        }


@dataclass
class SimulationConfig:
    """Aggregate configuration passed explicitly to the driver and CLI."""

    routing: RoutingConfig = field(default_factory=RoutingConfig)
    io: IOConfig = field(default_factory=IOConfig)
    columns: ColumnConfig = field(default_factory=ColumnConfig)
    start_time: datetime = DEFAULT_START_TIME
    n_steps: Optional[int] = None
    allow_external_outlets: bool = True

    @classmethod
    def from_yaml(cls, path: Path) -> "SimulationConfig":
        try:
            data = yaml.safe_load(Path(path).read_text())
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Cannot parse configuration {path}: {exc}") from exc
        return cls.from_dict(data or {})

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> "SimulationConfig":
        start = data.get("start_time")
        if isinstance(start, str):
            start = datetime.fromisoformat(start)
        n_steps = data.get("n_steps")
        return cls(
            routing=RoutingConfig.from_dict(data.get("routing", {})),
            io=IOConfig.from_dict(data.get("io", {})),
            columns=ColumnConfig.from_dict(data.get("columns", {})),
            start_time=start or DEFAULT_START_TIME,
            n_steps=int(n_steps) if n_steps is not None else None,
            allow_external_outlets=bool(data.get("allow_external_outlets", True)),
        )

    def to_dict(self) -> Dict[str, object]:
        return {
            "routing": self.routing.to_dict(),
            "io": self.io.to_dict(),
            "columns": self.columns.to_dict(),
            "start_time": self.start_time.isoformat(),
            "n_steps": self.n_steps,
            "allow_external_outlets": self.allow_external_outlets,
        }

    def to_yaml(self, path: Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(yaml.safe_dump(self.to_dict(), sort_keys=False))


__all__ = [
    "ColumnConfig",
    "DEFAULT_START_TIME",
    "IOConfig",
    "OUTPUT_FORMATS",
    "RoutingConfig",
    "SimulationConfig",
]
