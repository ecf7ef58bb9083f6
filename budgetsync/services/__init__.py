"""Services package."""

from budgetsync.services.extraction import (
    ExtractionSource,
    GeminiExtractionService,
)
from budgetsync.services.remote import (
    ChangeCallback,
    ChangeChannel,
    InMemoryChangeChannel,
    InMemoryRemoteStore,
    RemoteStore,
)

__all__ = [
    # Extraction
    "ExtractionSource",
    "GeminiExtractionService",
    # Remote store
    "ChangeCallback",
    "ChangeChannel",
    "InMemoryChangeChannel",
    "InMemoryRemoteStore",
    "RemoteStore",
]
