"""
Remote Store Package

The boundary between the sync core and the remote relational store,
plus an in-memory implementation for development and tests.
"""

from budgetsync.services.remote.interface import (
    ChangeCallback,
    ChangeChannel,
    RemoteStore,
)
from budgetsync.services.remote.memory import (
    InMemoryChangeChannel,
    InMemoryRemoteStore,
)

__all__ = [
    # Interfaces
    "ChangeCallback",
    "ChangeChannel",
    "RemoteStore",
    # In-memory implementation
    "InMemoryChangeChannel",
    "InMemoryRemoteStore",
]
