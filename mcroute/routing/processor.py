"""Route every reach of the network through one timestep."""
from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from ..channel import ChannelParameterStore
from ..errors import (
    ConfigurationError,
    KernelError,
    MissingForcing,
    MissingParams,
    RoutingFailure,
)
from ..network import NetworkTopology
from ..state import FAILED_STATE, NetworkState, RoutingState
from .kernel import KernelResult, route_reach

logger = logging.getLogger(__name__)

SCHEDULERS = ("serial", "level")


@dataclass
class StepDiagnostics:
    """Counters describing the kernel calls of one timestep."""

    degenerate: int = 0
    unconverged: int = 0
    iterations: int = 0

    def record(self, result: KernelResult) -> None:
        self.iterations += result.iterations
        if result.degenerate:
            self.degenerate += 1
        if not result.converged:
            self.unconverged += 1


def aggregate_inflow(
    upstream: Iterable[str],
    outflows: Mapping[str, float],
    lateral: float,
) -> float:
    """Current-step inflow of a reach: upstream outflows plus its lateral inflow."""

    return math.fsum([outflows[rid] for rid in upstream] + [lateral])


class TimestepProcessor:
    """Apply the Muskingum-Cunge kernel to every reach in dependency order.

    ``scheduler="serial"`` walks the routing order. ``scheduler="level"``
    routes the reaches of one topological level concurrently on a thread
    pool and waits for the whole level before starting the next one. Both
    produce identical results.
    """

    def __init__(
        self,
        topology: NetworkTopology,
        store: ChannelParameterStore,
        dt: float,
        scheduler: str = "serial",
        max_workers: Optional[int] = None,
    ) -> None:
        if scheduler not in SCHEDULERS:
            raise ConfigurationError(
                f"Unknown scheduler {scheduler!r}; expected one of {', '.join(SCHEDULERS)}"
            )
        if not dt > 0.0:
            raise ConfigurationError(f"Routing timestep must be positive, got {dt}")
        missing = [rid for rid in topology.routing_order if rid not in store]
        if missing:
            raise MissingParams(missing[0])

        self.topology = topology
        self.store = store
        self.dt = float(dt)
        self.scheduler = scheduler
        self.max_workers = max_workers
        self.last_diagnostics = StepDiagnostics()
        self._executor: Optional[ThreadPoolExecutor] = None

    def _check_lateral(self, lateral: Mapping[str, float], step: int) -> Dict[str, float]:
        values: Dict[str, float] = {}
        for reach_id in self.topology.routing_order:
            try:
                values[reach_id] = float(lateral[reach_id])
            except KeyError as exc:
                raise MissingForcing(reach_id, step) from exc
        return values

    def _route_one(
        self,
        reach_id: str,
        previous: NetworkState,
        outflows: Mapping[str, float],
        lateral: Mapping[str, float],
    ) -> Tuple[float, KernelResult]:
        inflow = aggregate_inflow(
            self.topology.upstream_of(reach_id), outflows, lateral[reach_id]
        )
        prior = previous.states.get(reach_id, RoutingState())
        result = route_reach(
            inflow,
            prior.inflow,
            prior.outflow,
            self.store[reach_id],
            self.dt,
            depth_prev=prior.depth,
        )
        return inflow, result

    def _batches(self) -> List[Tuple[str, ...]]:
        if self.scheduler == "level":
            return list(self.topology.levels)
        return [(rid,) for rid in self.topology.routing_order]

    def _attempt(
        self,
        reach_id: str,
        previous: NetworkState,
        outflows: Mapping[str, float],
        lateral: Mapping[str, float],
    ) -> Tuple[str, Optional[Tuple[float, KernelResult]], Optional[KernelError]]:
        try:
            return reach_id, self._route_one(reach_id, previous, outflows, lateral), None
        except KernelError as exc:
            return reach_id, None, exc

    def _run_batch(
        self,
        batch: Tuple[str, ...],
        previous: NetworkState,
        outflows: Mapping[str, float],
        lateral: Mapping[str, float],
    ) -> List[Tuple[str, Optional[Tuple[float, KernelResult]], Optional[KernelError]]]:
        if self.scheduler == "serial" or len(batch) == 1:
            return [self._attempt(rid, previous, outflows, lateral) for rid in batch]
        executor = self._get_executor()
        futures = [
            executor.submit(self._attempt, rid, previous, outflows, lateral)
            for rid in batch
        ]
        # Level barrier: every reach of the batch finishes before the next level.
        return [future.result() for future in futures]

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.max_workers, thread_name_prefix="mcroute-level"
            )
        return self._executor

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def __enter__(self) -> "TimestepProcessor":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def process(
        self,
        state: NetworkState,
        lateral: Mapping[str, float],
        time: Optional[datetime] = None,
    ) -> NetworkState:
        """Return the state after routing one step from ``state``.

        ``state`` is read only; the returned snapshot carries ``step + 1``.

        Raises
        ------
        MissingForcing
            When ``lateral`` lacks a reach of the topology.
        RoutingFailure
            When the kernel fails on a reach. The failing reach holds NaN
            values in ``partial_state`` and downstream levels are not routed.
        """

        step = state.step + 1
        lateral_values = self._check_lateral(lateral, step)
        states: Dict[str, RoutingState] = {}
        outflows: Dict[str, float] = {}
        diagnostics = StepDiagnostics()

        for batch in self._batches():
            failure: Optional[Tuple[str, KernelError]] = None
            for reach_id, outcome, error in self._run_batch(
                batch, state, outflows, lateral_values
            ):
                if error is not None:
                    states[reach_id] = FAILED_STATE
                    outflows[reach_id] = math.nan
                    if failure is None:
                        failure = (reach_id, error)
                    continue
                inflow, result = outcome
                diagnostics.record(result)
                outflows[reach_id] = result.outflow
                states[reach_id] = RoutingState(
                    inflow=inflow,
                    outflow=result.outflow,
                    depth=result.depth,
                    velocity=result.velocity,
                )

            if failure is not None:
                reach_id, error = failure
                logger.error("Kernel failure on reach %s at step %d: %s", reach_id, step, error)
                partial = NetworkState(step=step, states=states, lateral=lateral_values, time=time)
                raise RoutingFailure(reach_id, step, partial, str(error)) from error

        self.last_diagnostics = diagnostics
        if diagnostics.unconverged:
            logger.debug(
                "Step %d: %d reaches did not converge, %d dry reaches",
                step,
                diagnostics.unconverged,
                diagnostics.degenerate,
            )
        return NetworkState(step=step, states=states, lateral=lateral_values, time=time)


__all__ = ["SCHEDULERS", "StepDiagnostics", "TimestepProcessor", "aggregate_inflow"]
