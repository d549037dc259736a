"""
data_engine: call fetching and in-memory cache layer.

Public API
----------
    from data_engine import AircallFetcher, CallsStore, FetchCoordinator
"""

from data_engine.coordinator import FetchCoordinator, FetchState
from data_engine.fetcher import AircallFetcher
from data_engine.store import CallsStore

__all__ = ["AircallFetcher", "CallsStore", "FetchCoordinator", "FetchState"]
