"""Base target store interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional
import logging

logger = logging.getLogger(__name__)


class TargetStoreError(Exception):
    """A target store query or transport failed."""
    pass


class RecordCreateError(Exception):
    """A target store create returned an error instead of an id."""

    def __init__(self, table: str, message: str):
        super().__init__(f"Failed to create {table} record: {message}")
        self.table = table
        self.message = message


@dataclass
class CreateResult:
    """Outcome of a create: an id, or an error (conflict marks a unique-key collision)."""
    id: Optional[str] = None
    error: Optional[str] = None
    conflict: bool = False

    @property
    def success(self) -> bool:
        return self.id is not None and not self.error and not self.conflict

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "error": self.error, "conflict": self.conflict}


@dataclass
class ReadQuery:
    """
    Structured read query.

    ``filter`` maps column -> value for equality; a list, tuple or set value
    means "any of". ``order_by`` is a column name, optionally suffixed with
    `` desc``.
    """
    filter: Dict[str, Any] = field(default_factory=dict)
    select: Optional[List[str]] = None
    first: Optional[int] = None
    order_by: Optional[str] = None


def is_any_of(value: Any) -> bool:
    """True for values that a ReadQuery filter treats as "any of"."""
    return isinstance(value, (list, tuple, set, frozenset))


class TargetStore(ABC):
    """
    Base class for target stores.

    A target store is the destination datastore, reachable only through
    create, filtered read and batched existence checks.
    """

    @abstractmethod
    async def create(self, table: str, record: Dict[str, Any]) -> CreateResult:
        """
        Create one record.

        Args:
            table: Target table name
            record: Column -> value mapping

        Returns:
            CreateResult with the new id, or an error
        """
        pass

    @abstractmethod
    async def read(self, table: str, query: Optional[ReadQuery] = None) -> List[Dict[str, Any]]:
        """
        Read rows matching a query.

        Raises:
            TargetStoreError: If the query cannot be executed
        """
        pass

    async def read_any_of(
        self,
        table: str,
        base_filter: Dict[str, Any],
        column: str,
        values: Iterable[Any],
        select: Optional[List[str]] = None,
        chunk_size: int = 100
    ) -> List[Dict[str, Any]]:
        """
        Read rows whose ``column`` is any of ``values``, in chunked queries.

        Args:
            table: Target table name
            base_filter: Equality filter applied to every chunk
            column: Column matched against the values
            values: Candidate values (duplicates and blanks are dropped)
            select: Columns to return
            chunk_size: Values per query

        Returns:
            Matching rows from all chunks
        """
        unique_values = list(dict.fromkeys(v for v in values if v is not None and v != ""))
        rows: List[Dict[str, Any]] = []
        for i in range(0, len(unique_values), chunk_size):
            chunk = unique_values[i:i + chunk_size]
            query_filter = dict(base_filter)
            query_filter[column] = chunk
            rows.extend(await self.read(table, ReadQuery(
                filter=query_filter,
                select=select,
                first=len(chunk),
            )))
        return rows

    async def batch_check_existing(
        self,
        table: str,
        field_name: str,
        values: Iterable[Any]
    ) -> Dict[Any, str]:
        """
        Find which of the given values already exist in a column.

        Args:
            table: Target table name
            field_name: Column holding the dedupe value
            values: Candidate values

        Returns:
            Mapping of existing value -> target id
        """
        unique_values = list(dict.fromkeys(v for v in values if v is not None and v != ""))
        if not unique_values:
            return {}

        rows = await self.read(table, ReadQuery(
            filter={field_name: unique_values},
            select=["Id", field_name],
        ))
        existing: Dict[Any, str] = {}
        for row in rows:
            value = row.get(field_name)
            if value is not None and value not in existing:
                existing[value] = str(row.get("Id"))
        return existing

    async def close(self) -> None:
        """Release any resources held by the store."""
        return None
