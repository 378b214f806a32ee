"""Tests for the timestep processor."""
from __future__ import annotations

import math
import unittest

from mcroute.channel import ChannelParameterStore
from mcroute.errors import ConfigurationError, MissingForcing, MissingParams, RoutingFailure
from mcroute.network import build_network_topology
from mcroute.routing import TimestepProcessor, aggregate_inflow
from mcroute.state import NetworkState
from mcroute.testing.synthetic_networks import (
    DEFAULT_CHANNEL,
    chain_network,
    confluence_network,
    uniform_store,
)


def _wide_network():
    records = []
    for branch in range(6):
        records.append((f"h{branch}a", f"h{branch}b"))
        records.append((f"h{branch}b", "trunk"))
    records.append(("trunk", None))
    return build_network_topology(records)


class AggregateInflowTests(unittest.TestCase):
    def test_confluence_sum(self) -> None:
        topology = confluence_network()
        outflows = {"U1": 5.0, "U2": 3.2}

        inflow = aggregate_inflow(topology.upstream_of("J"), outflows, 0.8)

        self.assertAlmostEqual(inflow, 9.0, places=12)

    def test_headwater_receives_only_lateral(self) -> None:
        self.assertEqual(aggregate_inflow((), {}, 2.5), 2.5)


class TimestepProcessorTests(unittest.TestCase):
    def test_confluence_inflow_recorded_in_state(self) -> None:
        topology = confluence_network()
        store = uniform_store(topology)
        lateral = {"U1": 5.0, "U2": 3.2, "J": 0.8, "O": 0.0}
        state = NetworkState.initial(topology.routing_order)

        with TimestepProcessor(topology, store, 300.0) as processor:
            for _ in range(3):
                state = processor.process(state, lateral)

        expected = state["U1"].outflow + state["U2"].outflow + 0.8
        self.assertAlmostEqual(state["J"].inflow, expected, places=12)
        self.assertEqual(state.step, 3)
        self.assertEqual(state.lateral, lateral)

    def test_input_state_is_not_modified(self) -> None:
        topology = chain_network()
        processor = TimestepProcessor(topology, uniform_store(topology), 300.0)
        initial = NetworkState.initial(topology.routing_order)

        following = processor.process(initial, {"A": 4.0, "B": 0.0, "C": 0.0})

        self.assertIsNot(following, initial)
        self.assertEqual(initial.step, 0)
        self.assertEqual(initial["A"].inflow, 0.0)
        self.assertEqual(following["A"].inflow, 4.0)

    def test_level_scheduler_matches_serial(self) -> None:
        topology = _wide_network()
        store = uniform_store(topology)
        lateral = {rid: 1.0 + 0.25 * index for index, rid in enumerate(topology.routing_order)}

        results = {}
        for scheduler in ("serial", "level"):
            state = NetworkState.initial(topology.routing_order)
            with TimestepProcessor(topology, store, 300.0, scheduler=scheduler, max_workers=4) as processor:
                for _ in range(8):
                    state = processor.process(state, lateral)
            results[scheduler] = state.states

        self.assertEqual(results["serial"], results["level"])

    def test_non_negative_outflows(self) -> None:
        topology = confluence_network()
        processor = TimestepProcessor(topology, uniform_store(topology), 300.0)
        state = NetworkState.initial(topology.routing_order)
        pulses = [0.0, 20.0, 60.0, 5.0, 0.0, 0.0, 0.0]

        for value in pulses:
            state = processor.process(state, {"U1": value, "U2": value / 2, "J": 0.0, "O": 0.0})
            for reach_id, outflow in state.outflows().items():
                self.assertGreaterEqual(outflow, 0.0, reach_id)
            self.assertEqual(state.invalid_reaches(), [])

    def test_missing_lateral_fails_before_routing(self) -> None:
        topology = chain_network()
        processor = TimestepProcessor(topology, uniform_store(topology), 300.0)

        with self.assertRaises(MissingForcing) as ctx:
            processor.process(NetworkState.initial(topology.routing_order), {"A": 1.0, "C": 0.0})

        self.assertEqual(ctx.exception.reach_id, "B")
        self.assertEqual(ctx.exception.step, 1)

    def test_kernel_failure_reports_reach_and_partial_state(self) -> None:
        topology = confluence_network()
        processor = TimestepProcessor(topology, uniform_store(topology), 300.0)
        lateral = {"U1": 1.0, "U2": math.nan, "J": 0.0, "O": 0.0}

        with self.assertRaises(RoutingFailure) as ctx:
            processor.process(NetworkState.initial(topology.routing_order), lateral)

        failure = ctx.exception
        self.assertEqual(failure.reach_id, "U2")
        self.assertEqual(failure.step, 1)
        self.assertTrue(math.isnan(failure.partial_state["U2"].outflow))
        self.assertTrue(failure.partial_state["U1"].is_valid)
        self.assertNotIn("O", failure.partial_state)

    def test_kernel_failure_under_level_scheduler(self) -> None:
        topology = confluence_network()
        lateral = {"U1": math.nan, "U2": 1.0, "J": 0.0, "O": 0.0}

        with TimestepProcessor(topology, uniform_store(topology), 300.0, scheduler="level") as processor:
            with self.assertRaises(RoutingFailure) as ctx:
                processor.process(NetworkState.initial(topology.routing_order), lateral)

        self.assertEqual(ctx.exception.reach_id, "U1")
        self.assertNotIn("J", ctx.exception.partial_state)

    def test_construction_errors(self) -> None:
        topology = chain_network()
        store = uniform_store(topology)

        with self.assertRaises(ConfigurationError):
            TimestepProcessor(topology, store, 300.0, scheduler="random")
        with self.assertRaises(ConfigurationError):
            TimestepProcessor(topology, store, 0.0)
        with self.assertRaises(MissingParams):
            TimestepProcessor(topology, ChannelParameterStore({"A": DEFAULT_CHANNEL}), 300.0)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
