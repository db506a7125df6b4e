"""Service layer for the migration engine."""

from .context import MigrationContext
from .mapping_store import MappingStore
from .mapper import Mapper, generate_account_code

__all__ = [
    "MigrationContext",
    "MappingStore",
    "Mapper",
    "generate_account_code",
]
