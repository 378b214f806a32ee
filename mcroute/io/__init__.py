"""Adapters between the routing engine and files on disk."""

from .forcing import CsvForcing, ForcingSource, InMemoryForcing, load_lateral_series
from .hydrofabric import HydrofabricSource, NetworkSource, collapse_links
from .outputs import (
    BufferedSink,
    CsvResultsSink,
    MemorySink,
    MultiSink,
    NetCDFResultsSink,
    ResultsSink,
)

__all__ = [
    "BufferedSink",
    "CsvForcing",
    "CsvResultsSink",
    "ForcingSource",
    "HydrofabricSource",
    "InMemoryForcing",
    "MemorySink",
    "MultiSink",
    "NetCDFResultsSink",
    "NetworkSource",
    "ResultsSink",
    "collapse_links",
    "load_lateral_series",
]
