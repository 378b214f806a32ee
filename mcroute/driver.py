"""Advance a routing network through a forcing period."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Mapping, Optional

from .channel import ChannelParameterStore
from .config import DEFAULT_START_TIME, RoutingConfig
from .errors import ConfigurationError, MissingForcing, RoutingFailure, SimulationCancelled
from .io.forcing import ForcingSource
from .io.outputs import ResultsSink
from .network import NetworkTopology
from .routing.processor import TimestepProcessor
from .state import NetworkState, average_states

logger = logging.getLogger(__name__)


@dataclass
class SimulationResult:
    """Summary of a completed run."""

    steps_completed: int
    final_state: NetworkState
    start_time: datetime
    end_time: datetime
    kernel_warnings: int = 0

    def to_dict(self) -> Dict[str, object]:
        return {
            "steps_completed": self.steps_completed,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "kernel_warnings": self.kernel_warnings,
            "final_state": self.final_state.to_dict(),
        }


class SimulationDriver:
    """Run the timestep processor over ``n_steps`` forcing intervals.

    Every forcing interval is routed in ``config.substeps`` sub-steps of
    ``config.routing_timestep`` seconds with the lateral inflow held
    constant. The sink receives one snapshot per forcing interval holding
    the sub-step averages, so the emitted flow times the forcing interval
    equals the volume routed during it.
    """

    def __init__(
        self,
        topology: NetworkTopology,
        store: ChannelParameterStore,
        config: RoutingConfig,
        forcing: ForcingSource,
        sink: Optional[ResultsSink] = None,
    ) -> None:
        config.validate()
        self.topology = topology
        self.store = store
        self.config = config
        self.forcing = forcing
        self.sink = sink

    def _initial_state(
        self, initial_state: Optional[NetworkState], start_time: datetime
    ) -> NetworkState:
        if initial_state is None:
            return NetworkState.initial(self.topology.routing_order, time=start_time)
        missing = [rid for rid in self.topology.routing_order if rid not in initial_state]
        if missing:
            raise ConfigurationError(
                "Initial state lacks reaches: " + ", ".join(missing[:10])
            )
        invalid = initial_state.invalid_reaches()
        if invalid:
            raise ConfigurationError(
                "Initial state holds non-finite values for: " + ", ".join(sorted(invalid)[:10])
            )
        return initial_state

    def _lateral(self, index: int, time: datetime) -> Dict[str, float]:
        # Errors carry the 1-based forcing step used to number snapshots.
        try:
            values = self.forcing.lateral(index, time)
        except MissingForcing as exc:
            raise MissingForcing(exc.reach_id, index + 1) from exc
        lateral: Dict[str, float] = {}
        for reach_id in self.topology.routing_order:
            try:
                lateral[reach_id] = float(values[reach_id])
            except KeyError as exc:
                raise MissingForcing(reach_id, index + 1) from exc
        return lateral

    def _resolve_steps(self, n_steps: Optional[int]) -> int:
        if n_steps is None:
            n_steps = len(self.forcing)
            if n_steps == 0:
                raise ConfigurationError(
                    "Number of steps not given and the forcing source has no length"
                )
        if n_steps < 0:
            raise ConfigurationError(f"Number of steps must not be negative, got {n_steps}")
        return n_steps

    def run(
        self,
        start_time: datetime,
        n_steps: Optional[int] = None,
        initial_state: Optional[NetworkState] = None,
        cancel: Optional[threading.Event] = None,
    ) -> SimulationResult:
        """Route ``n_steps`` forcing intervals starting at ``start_time``.

        Errors carry the forcing step in the numbering the sink uses, so the
        first interval is step 1.

        Raises
        ------
        MissingForcing
            When the forcing source has no value for a reach at a step.
        RoutingFailure
            When the kernel fails; earlier snapshots remain in the sink.
            ``substep`` holds the routing sub-step count.
        SimulationCancelled
            When ``cancel`` is set before a step starts.
        """

        n_steps = self._resolve_steps(n_steps)
        state = self._initial_state(initial_state, start_time)
        interval = timedelta(seconds=self.config.forcing_timestep)
        sub_dt = timedelta(seconds=self.config.routing_timestep)
        substeps = self.config.substeps
        kernel_warnings = 0
        completed = 0

        logger.info(
            "Routing %d reaches for %d steps of %ss (%d sub-steps of %ss, %s scheduler)",
            len(self.topology),
            n_steps,
            self.config.forcing_timestep,
            substeps,
            self.config.routing_timestep,
            self.config.scheduler,
        )

        with TimestepProcessor(
            self.topology,
            self.store,
            self.config.routing_timestep,
            scheduler=self.config.scheduler,
            max_workers=self.config.max_workers,
        ) as processor:
            for index in range(n_steps):
                if cancel is not None and cancel.is_set():
                    logger.warning("Simulation cancelled after %d steps", completed)
                    raise SimulationCancelled(completed)

                step_start = start_time + index * interval
                lateral = self._lateral(index, step_start)
                sub_states: List[NetworkState] = []

                for sub in range(substeps):
                    try:
                        state = processor.process(
                            state, lateral, time=step_start + (sub + 1) * sub_dt
                        )
                    except RoutingFailure as exc:
                        logger.error(
                            "Routing failed during forcing step %d (reach %s, sub-step %d)",
                            index + 1,
                            exc.reach_id,
                            sub + 1,
                        )
                        raise RoutingFailure(
                            exc.reach_id,
                            index + 1,
                            exc.partial_state,
                            exc.reason,
                            substep=exc.step,
                        ) from exc
                    kernel_warnings += processor.last_diagnostics.unconverged
                    sub_states.append(state)

                snapshot = average_states(sub_states, step=index + 1, time=step_start + interval)
                if self.sink is not None:
                    self.sink.write(snapshot)
                completed += 1
                if completed % 100 == 0:
                    logger.info("Completed %d of %d steps", completed, n_steps)

        end_time = start_time + completed * interval
        if kernel_warnings:
            logger.warning("%d kernel evaluations did not converge", kernel_warnings)
        logger.info("Routing finished after %d steps", completed)
        return SimulationResult(
            steps_completed=completed,
            final_state=state,
            start_time=start_time,
            end_time=end_time,
            kernel_warnings=kernel_warnings,
        )


def run_simulation(
    topology: NetworkTopology,
    store: ChannelParameterStore,
    forcing: ForcingSource,
    config: Optional[RoutingConfig] = None,
    sink: Optional[ResultsSink] = None,
    start_time: Optional[datetime] = None,
    n_steps: Optional[int] = None,
    initial_flow: Optional[Mapping[str, float]] = None,
) -> SimulationResult:
    """Convenience wrapper building a :class:`SimulationDriver` and running it."""

    start = start_time or DEFAULT_START_TIME
    initial = None
    if initial_flow is not None:
        initial = NetworkState.initial(topology.routing_order, time=start, initial_flow=initial_flow)
    driver = SimulationDriver(topology, store, config or RoutingConfig(), forcing, sink)
    return driver.run(start, n_steps, initial_state=initial)


__all__ = ["SimulationDriver", "SimulationResult", "run_simulation"]
