"""Tests for channel parameters and the parameter store."""
from __future__ import annotations

import math
import unittest

from mcroute.channel import MIN_SLOPE, ChannelParameterStore, ChannelParams
from mcroute.config import ColumnConfig
from mcroute.errors import InvalidChannelParams, MalformedRecord, MissingParams
from mcroute.testing.synthetic_networks import DEFAULT_CHANNEL, chain_network


class ChannelParamsTests(unittest.TestCase):
    def test_flat_bed_uses_minimum_slope(self) -> None:
        flat = ChannelParams(length=100.0, slope=0.0, manning_n=0.04, bottom_width=4.0, top_width=6.0)

        self.assertEqual(flat.routing_slope, MIN_SLOPE)
        self.assertEqual(DEFAULT_CHANNEL.routing_slope, 0.01)

    def test_compound_defaults(self) -> None:
        self.assertEqual(DEFAULT_CHANNEL.compound_n, DEFAULT_CHANNEL.manning_n)
        self.assertEqual(DEFAULT_CHANNEL.compound_width, 45.0)

        explicit = ChannelParams(
            length=100.0,
            slope=0.001,
            manning_n=0.035,
            bottom_width=5.0,
            top_width=8.0,
            manning_n_cc=0.07,
            top_width_cc=30.0,
        )
        self.assertEqual(explicit.compound_n, 0.07)
        self.assertEqual(explicit.compound_width, 30.0)

    def test_validation_rejects_implausible_values(self) -> None:
        cases = [
            ("length", 0.0),
            ("manning_n", -0.01),
            ("bottom_width", 0.0),
            ("slope", -0.001),
            ("side_slope", -1.0),
            ("length", math.nan),
            ("top_width", math.inf),
        ]
        for field_name, value in cases:
            data = DEFAULT_CHANNEL.to_dict()
            data[field_name] = value
            with self.subTest(field=field_name, value=value):
                with self.assertRaises(InvalidChannelParams) as ctx:
                    ChannelParams.from_dict(data).validate("r1")
                self.assertEqual(ctx.exception.field, field_name)
                self.assertEqual(ctx.exception.reach_id, "r1")

    def test_dict_round_trip(self) -> None:
        self.assertEqual(ChannelParams.from_dict(DEFAULT_CHANNEL.to_dict()), DEFAULT_CHANNEL)

    def test_from_record_uses_column_names(self) -> None:
        record = {
            "id": "wb-4",
            "Length_m": "1200.5",
            "n": 0.04,
            "nCC": 0.08,
            "So": 0.002,
            "BtmWdth": 6.0,
            "TopWdth": 9.0,
            "TopWdthCC": None,
            "ChSlp": 0.5,
        }

        params = ChannelParams.from_record(record, ColumnConfig())

        self.assertEqual(params.length, 1200.5)
        self.assertEqual(params.manning_n_cc, 0.08)
        self.assertIsNone(params.top_width_cc)
        self.assertEqual(params.side_slope, 0.5)

    def test_from_record_reports_missing_and_bad_values(self) -> None:
        columns = ColumnConfig()
        with self.assertRaises(MalformedRecord):
            ChannelParams.from_record({"id": "wb-1", "Length_m": 10.0}, columns)
        with self.assertRaises(MalformedRecord):
            ChannelParams.from_record(
                {"id": "wb-1", "Length_m": "long", "n": 0.03, "So": 0.01, "BtmWdth": 2.0},
                columns,
            )


class ChannelParameterStoreTests(unittest.TestCase):
    def test_lookup_and_missing_reach(self) -> None:
        store = ChannelParameterStore({"A": DEFAULT_CHANNEL})

        self.assertIs(store["A"], DEFAULT_CHANNEL)
        self.assertIn("A", store)
        self.assertNotIn("B", store)
        self.assertIsNone(store.get("B"))
        self.assertEqual(len(store), 1)
        with self.assertRaises(MissingParams) as ctx:
            store["B"]
        self.assertEqual(ctx.exception.reach_id, "B")

    def test_invalid_entry_rejected_on_construction(self) -> None:
        bad = ChannelParams(length=-1.0, slope=0.01, manning_n=0.03, bottom_width=1.0, top_width=1.0)

        with self.assertRaises(InvalidChannelParams) as ctx:
            ChannelParameterStore({"A": DEFAULT_CHANNEL, "B": bad})
        self.assertEqual(ctx.exception.reach_id, "B")

    def test_for_topology_requires_every_reach(self) -> None:
        topology = chain_network()

        with self.assertRaises(MissingParams) as ctx:
            ChannelParameterStore.for_topology(topology, {"A": DEFAULT_CHANNEL, "C": DEFAULT_CHANNEL})
        self.assertEqual(ctx.exception.reach_id, "B")

        store = ChannelParameterStore.for_topology(
            topology, {rid: DEFAULT_CHANNEL for rid in ("A", "B", "C", "extra")}
        )
        self.assertEqual(sorted(store), ["A", "B", "C"])


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
