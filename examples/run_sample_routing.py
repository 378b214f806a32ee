"""Route the bundled synthetic basin and print the outlet hydrograph."""
from __future__ import annotations

import logging
import sys
import tempfile
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from mcroute.cli import run
from mcroute.config import IOConfig, RoutingConfig, SimulationConfig
from mcroute.driver import SimulationDriver
from mcroute.io.forcing import InMemoryForcing
from mcroute.io.outputs import MemorySink
from mcroute.testing.synthetic_networks import (
    confluence_network,
    uniform_store,
    write_synthetic_run_directory,
)


def route_confluence() -> None:
    """Push a triangular flood wave through two joining headwaters."""

    topology = confluence_network()
    hydrograph = [0.0, 5.0, 15.0, 30.0, 20.0, 10.0, 5.0, 2.0, 0.0, 0.0, 0.0, 0.0]
    forcing = InMemoryForcing(
        series={"U1": hydrograph, "U2": [value / 2 for value in hydrograph]},
        constant={"J": 0.0, "O": 0.0},
    )
    sink = MemorySink()
    config = RoutingConfig(routing_timestep=300.0, forcing_timestep=900.0, scheduler="level")
    SimulationDriver(topology, uniform_store(topology), config, forcing, sink).run(
        SimulationConfig().start_time
    )

    print("step  U1 inflow  outlet O")
    for state in sink.states:
        print(f"{state.step:>4}  {state.lateral['U1']:>9.2f}  {state['O'].outflow:>8.2f}")


def route_run_directory(directory: Path) -> None:
    """Route a synthetic ngen run directory through the file based adapters."""

    route_dir = write_synthetic_run_directory(directory, n_steps=12)
    config = SimulationConfig(
        routing=RoutingConfig(routing_timestep=600.0),
        io=IOConfig(output_formats=("csv", "netcdf")),
    )
    result = run(route_dir, config)
    print(f"Routed {result.steps_completed} steps; results in {route_dir / 'results'}")


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
    route_confluence()
    with tempfile.TemporaryDirectory() as tmp:
        route_run_directory(Path(tmp) / "synthetic_run")


if __name__ == "__main__":
    main()
