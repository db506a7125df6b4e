"""Target stores the migrated data is written to."""

from .base import (
    TargetStore,
    TargetStoreError,
    RecordCreateError,
    CreateResult,
    ReadQuery,
)
from .rest_store import RestTargetStore
from .memory_store import InMemoryTargetStore

__all__ = [
    "TargetStore",
    "TargetStoreError",
    "RecordCreateError",
    "CreateResult",
    "ReadQuery",
    "RestTargetStore",
    "InMemoryTargetStore",
]
