"""Results sinks receiving one network snapshot per forcing step."""
from __future__ import annotations

import csv
import logging
import queue
import threading
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence

import netCDF4
import numpy as np

from ..network import NetworkTopology
from ..state import NetworkState

logger = logging.getLogger(__name__)

FILL_VALUE = -9999.0


class ResultsSink:
    """Base class for consumers of routed network states."""

    def write(self, state: NetworkState) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass

    def __enter__(self) -> "ResultsSink":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class MemorySink(ResultsSink):
    """Keep every snapshot in a list; useful for tests and notebooks."""

    def __init__(self) -> None:
        self.states: List[NetworkState] = []

    def write(self, state: NetworkState) -> None:
        self.states.append(state)

    def series(self, reach_id: str, variable: str = "outflow") -> List[float]:
        return [getattr(state.states[reach_id], variable) for state in self.states]


class MultiSink(ResultsSink):
    """Fan a snapshot out to several sinks."""

    def __init__(self, sinks: Sequence[ResultsSink]) -> None:
        self.sinks = list(sinks)

    def write(self, state: NetworkState) -> None:
        for sink in self.sinks:
            sink.write(state)

    def close(self) -> None:
        for sink in self.sinks:
            sink.close()


class CsvResultsSink(ResultsSink):
    """Long-format CSV with one row per reach and step."""

    HEADER = ("step", "time", "feature_id", "flow", "velocity", "depth")

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._fp = self.path.open("w", newline="")
        self._writer = csv.writer(self._fp)
        self._writer.writerow(self.HEADER)

    def write(self, state: NetworkState) -> None:
        timestamp = state.time.isoformat(sep=" ") if state.time else ""
        for reach_id, values in state.states.items():
            self._writer.writerow(
                [state.step, timestamp, reach_id, values.outflow, values.velocity, values.depth]
            )

    def close(self) -> None:
        if not self._fp.closed:
            self._fp.flush()
            self._fp.close()
            logger.info("CSV results saved to %s", self.path)


def _feature_number(reach_id: str) -> int:
    try:
        return int(reach_id.rsplit("-", 1)[-1])
    except ValueError:
        return -1


class NetCDFResultsSink(ResultsSink):
    """Append snapshots to a NetCDF file with ``feature_id`` x ``time`` variables."""

    VARIABLES = {
        "flow": ("outflow", "Flow", "m3 s-1"),
        "velocity": ("velocity", "Velocity", "m/s"),
        "depth": ("depth", "Depth", "m"),
    }

    def __init__(
        self,
        path: Path,
        topology: NetworkTopology,
        reference_time: datetime,
    ) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.reach_ids = list(topology.routing_order)
        self.reference_time = reference_time
        self._dataset = netCDF4.Dataset(str(self.path), "w", format="NETCDF4")
        self._create_layout()

    def _create_layout(self) -> None:
        ds = self._dataset
        ds.createDimension("feature_id", len(self.reach_ids))
        ds.createDimension("time", None)

        time_var = ds.createVariable("time", "f8", ("time",), fill_value=FILL_VALUE)
        time_var.long_name = "valid output time"
        time_var.standard_name = "time"
        time_var.units = f"seconds since {self.reference_time.strftime('%Y-%m-%d %H:%M:%S')}"
        time_var.missing_value = FILL_VALUE

        feature_var = ds.createVariable("feature_id", "i8", ("feature_id",))
        feature_var.long_name = "Segment ID"
        feature_var[:] = np.array([_feature_number(rid) for rid in self.reach_ids], dtype="i8")

        reach_var = ds.createVariable("reach_id", str, ("feature_id",))
        reach_var.long_name = "Reach identifier"
        for index, reach_id in enumerate(self.reach_ids):
            reach_var[index] = reach_id

        for name, (_, long_name, units) in self.VARIABLES.items():
            var = ds.createVariable(
                name, "f4", ("feature_id", "time"), fill_value=np.float32(FILL_VALUE)
            )
            var.long_name = long_name
            var.units = units
            var.missing_value = np.float32(FILL_VALUE)

        ds.TITLE = "OUTPUT FROM MCROUTE"
        ds.file_reference_time = self.reference_time.strftime("%Y-%m-%d_%H:%M:%S")

    def write(self, state: NetworkState) -> None:
        ds = self._dataset
        index = len(ds.dimensions["time"])
        when = state.time or self.reference_time
        ds.variables["time"][index] = (when - self.reference_time).total_seconds()
        for name, (attribute, _, _) in self.VARIABLES.items():
            values = np.array(
                [getattr(state.states[rid], attribute) for rid in self.reach_ids],
                dtype="f4",
            )
            values[~np.isfinite(values)] = FILL_VALUE
            ds.variables[name][:, index] = values

    def close(self) -> None:
        if self._dataset.isopen():
            self._dataset.close()
            logger.info("NetCDF results saved to %s", self.path)


_STOP = object()


class BufferedSink(ResultsSink):
    """Hand snapshots to a writer thread through a bounded queue.

    Routing only blocks once ``maxsize`` snapshots are waiting. An error in
    the wrapped sink is raised from every later :meth:`write`, :meth:`flush`
    and :meth:`close`; snapshots queued behind the failed one are dropped.
    """

    def __init__(self, sink: ResultsSink, maxsize: int = 64) -> None:
        self.sink = sink
        self._queue: "queue.Queue[object]" = queue.Queue(maxsize=maxsize)
        self._error: Optional[BaseException] = None
        self._closed = False
        self._thread = threading.Thread(
            target=self._drain, name="mcroute-writer", daemon=True
        )
        self._thread.start()

    def _drain(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                if self._error is None:
                    self.sink.write(item)
            except Exception as exc:  # re-raised on the routing thread
                logger.error("Results writer failed: %s", exc)
                self._error = exc
            finally:
                self._queue.task_done()

    def _raise_pending(self) -> None:
        # The error stays set so nothing queued after a failed write lands in the sink.
        if self._error is not None:
            raise self._error

    def write(self, state: NetworkState) -> None:
        self._raise_pending()
        self._queue.put(state)

    def flush(self) -> None:
        self._queue.join()
        self._raise_pending()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put(_STOP)
        self._thread.join()
        self.sink.close()
        self._raise_pending()


__all__ = [
    "BufferedSink",
    "CsvResultsSink",
    "MemorySink",
    "MultiSink",
    "NetCDFResultsSink",
    "ResultsSink",
]
