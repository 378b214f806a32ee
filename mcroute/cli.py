"""Command line entry point routing an ngen output directory."""
from __future__ import annotations

import argparse
import dataclasses
import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence

from .config import OUTPUT_FORMATS, SimulationConfig
from .driver import SimulationDriver, SimulationResult
from .errors import ConfigurationError, RoutingError
from .io.forcing import CsvForcing
from .io.hydrofabric import HydrofabricSource
from .io.outputs import (
    BufferedSink,
    CsvResultsSink,
    MultiSink,
    NetCDFResultsSink,
    ResultsSink,
)
from .network import NetworkTopology
from .routing.processor import SCHEDULERS

logger = logging.getLogger(__name__)

CSV_RESULTS_NAME = "network_routing_results.csv"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mcroute",
        description="Muskingum-Cunge channel routing of ngen catchment outputs.",
    )
    parser.add_argument(
        "route_dir",
        type=Path,
        help="Run directory holding config/*.gpkg and outputs/ngen/cat-*.csv.",
    )
    parser.add_argument(
        "-i",
        "--internal-timestep-seconds",
        dest="internal_timestep",
        type=float,
        default=None,
        help="Routing timestep in seconds (default 3600).",
    )
    parser.add_argument("--config", type=Path, help="Optional YAML run configuration.")
    parser.add_argument("--scheduler", choices=SCHEDULERS, help="Reach scheduling strategy.")
    parser.add_argument("--workers", type=int, help="Worker threads for the level scheduler.")
    parser.add_argument(
        "--format",
        dest="formats",
        nargs="+",
        choices=OUTPUT_FORMATS,
        help="Result formats to write.",
    )
    parser.add_argument("--start-time", help="ISO timestamp of the first forcing step.")
    parser.add_argument("-n", "--steps", type=int, help="Number of forcing steps to route.")
    parser.add_argument("-o", "--output-dir", type=Path, help="Directory for result files.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    return parser


def resolve_config(args: argparse.Namespace) -> SimulationConfig:
    """Merge the optional YAML configuration with command line overrides."""

    config = SimulationConfig.from_yaml(args.config) if args.config else SimulationConfig()

    routing_changes = {}
    if args.internal_timestep is not None:
        routing_changes["routing_timestep"] = args.internal_timestep
    if args.scheduler is not None:
        routing_changes["scheduler"] = args.scheduler
    if args.workers is not None:
        routing_changes["max_workers"] = args.workers
    if routing_changes:
        config.routing = dataclasses.replace(config.routing, **routing_changes)

    io_changes = {}
    if args.formats:
        io_changes["output_formats"] = tuple(args.formats)
    if args.output_dir is not None:
        io_changes["results_directory"] = args.output_dir
    if io_changes:
        config.io = dataclasses.replace(config.io, **io_changes)

    if args.start_time:
        try:
            config.start_time = datetime.fromisoformat(args.start_time)
        except ValueError as exc:
            raise ConfigurationError(f"Invalid start time {args.start_time!r}") from exc
    if args.steps is not None:
        config.n_steps = args.steps
    return config


def locate_hydrofabric(route_dir: Path, config: SimulationConfig) -> Path:
    if config.io.hydrofabric is not None:
        return _under(route_dir, config.io.hydrofabric)
    candidates = sorted((route_dir / "config").glob("*.gpkg"))
    if not candidates:
        raise ConfigurationError(f"No .gpkg file found in {route_dir / 'config'}")
    if len(candidates) > 1:
        logger.warning("Several hydrofabrics found; using %s", candidates[0])
    return candidates[0]


def _under(route_dir: Path, path: Path) -> Path:
    path = Path(path)
    return path if path.is_absolute() else route_dir / path


def build_sink(
    config: SimulationConfig, route_dir: Path, topology: NetworkTopology
) -> ResultsSink:
    results_dir = _under(route_dir, config.io.results_directory)
    sinks: List[ResultsSink] = []
    for fmt in config.io.output_formats:
        if fmt == "csv":
            sinks.append(CsvResultsSink(results_dir / CSV_RESULTS_NAME))
        elif fmt == "netcdf":
            name = f"troute_output_{config.start_time.strftime('%Y%m%d%H%M')}.nc"
            sinks.append(NetCDFResultsSink(results_dir / name, topology, config.start_time))
    return BufferedSink(MultiSink(sinks), maxsize=config.io.buffer_size)


def run(route_dir: Path, config: SimulationConfig) -> SimulationResult:
    """Build the network, forcing and sinks for ``route_dir`` and route it."""

    source = HydrofabricSource(locate_hydrofabric(route_dir, config), config.columns)
    try:
        topology, store = source.build(config.allow_external_outlets)
        areas = source.areas()
    finally:
        source.dispose()
    logger.info(
        "Network has %d reaches, %d outlets and %d levels",
        len(topology),
        len(topology.outlets),
        len(topology.levels),
    )

    forcing_dir = (
        _under(route_dir, config.io.forcing_directory)
        if config.io.forcing_directory is not None
        else route_dir / "outputs" / "ngen"
    )
    forcing = CsvForcing(
        forcing_dir,
        topology.routing_order,
        areas={rid: areas.get(rid) for rid in topology.routing_order},
        variable=config.io.forcing_variable,
        pattern=config.io.forcing_pattern,
        max_workers=config.routing.max_workers,
    )

    with build_sink(config, route_dir, topology) as sink:
        driver = SimulationDriver(topology, store, config.routing, forcing, sink)
        return driver.run(config.start_time, config.n_steps)


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    try:
        config = resolve_config(args)
        result = run(args.route_dir, config)
    except RoutingError as exc:
        logger.error("Routing failed: %s", exc)
        return 1

    logger.info(
        "Routed %d steps from %s to %s",
        result.steps_completed,
        result.start_time.isoformat(sep=" "),
        result.end_time.isoformat(sep=" "),
    )
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    raise SystemExit(main())
