"""Batch execution of migrations per entity type."""

from .executor import BatchExecutor
from .strategies import (
    ChildRecord,
    EntityStrategy,
    STRATEGIES,
    get_strategy,
)

__all__ = [
    "BatchExecutor",
    "ChildRecord",
    "EntityStrategy",
    "STRATEGIES",
    "get_strategy",
]
