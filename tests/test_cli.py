"""Tests for the ``mcroute`` command line interface."""
from __future__ import annotations

import csv
import tempfile
import unittest
from pathlib import Path

import pytest

sqlalchemy = pytest.importorskip("sqlalchemy")

from mcroute.cli import build_parser, main, resolve_config
from mcroute.testing.synthetic_networks import write_synthetic_run_directory


class CommandLineTests(unittest.TestCase):
    def test_routes_synthetic_run_directory(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            route_dir = write_synthetic_run_directory(Path(tmp) / "run", n_steps=6)

            exit_code = main([str(route_dir), "-i", "900", "--format", "csv", "netcdf"])

            self.assertEqual(exit_code, 0)
            results = route_dir / "results"
            with (results / "network_routing_results.csv").open(newline="") as fp:
                rows = list(csv.DictReader(fp))
            self.assertTrue((results / "troute_output_200001010000.nc").exists())

        self.assertEqual(len(rows), 18)
        self.assertEqual({row["feature_id"] for row in rows}, {"wb-1", "wb-2", "wb-3"})
        self.assertEqual(sorted({int(row["step"]) for row in rows}), list(range(1, 7)))
        outlet = [float(row["flow"]) for row in rows if row["feature_id"] == "wb-3"]
        self.assertTrue(all(flow >= 0.0 for flow in outlet))
        self.assertGreater(max(outlet), 0.0)

    def test_yaml_configuration_and_overrides(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            route_dir = write_synthetic_run_directory(Path(tmp) / "run", n_steps=4)
            config_path = route_dir / "mcroute.yaml"
            config_path.write_text(
                "routing:\n"
                "  routing_timestep: 1200\n"
                "  scheduler: level\n"
                "io:\n"
                "  results_directory: routed\n"
                "n_steps: 3\n"
            )

            args = build_parser().parse_args(
                [str(route_dir), "--config", str(config_path), "--workers", "2"]
            )
            config = resolve_config(args)
            exit_code = main([str(route_dir), "--config", str(config_path)])

            with (route_dir / "routed" / "network_routing_results.csv").open(newline="") as fp:
                steps = {row["step"] for row in csv.DictReader(fp)}

        self.assertEqual(config.routing.scheduler, "level")
        self.assertEqual(config.routing.max_workers, 2)
        self.assertEqual(config.routing.substeps, 3)
        self.assertEqual(exit_code, 0)
        self.assertEqual(steps, {"1", "2", "3"})

    def test_missing_hydrofabric_exits_with_error(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            self.assertEqual(main([tmp]), 1)

    def test_catchment_without_area_exits_with_error(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            route_dir = write_synthetic_run_directory(Path(tmp) / "run", n_steps=3)
            engine = sqlalchemy.create_engine(
                f"sqlite:///{route_dir / 'config' / 'synthetic.gpkg'}"
            )
            with engine.begin() as conn:
                conn.execute(
                    sqlalchemy.text("UPDATE network SET areasqkm = NULL WHERE id = 'wb-2'")
                )
            engine.dispose()

            with self.assertLogs("mcroute.cli", level="ERROR") as logs:
                exit_code = main([str(route_dir)])

            self.assertFalse((route_dir / "results").exists())

        self.assertEqual(exit_code, 1)
        self.assertIn("wb-2", logs.output[-1])

    def test_invalid_timestep_exits_with_error(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            route_dir = write_synthetic_run_directory(Path(tmp) / "run", n_steps=2)
            self.assertEqual(main([str(route_dir), "-i", "7000"]), 1)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
