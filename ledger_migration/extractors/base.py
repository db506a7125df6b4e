"""Base source connector interface."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List
import logging

from ..models.entities import EntityType
from ..models.record import SourceRecord

logger = logging.getLogger(__name__)


class SourceConnectorError(Exception):
    """The source system could not be reached or refused a request."""
    pass


class SourceResponseError(SourceConnectorError):
    """The source system answered with something that could not be parsed."""
    pass


class SourceConnector(ABC):
    """
    Base class for source connectors.

    Connectors read one entity type at a time from the source system in
    explicit pages and convert raw payloads to SourceRecord objects. They
    never offer a "fetch everything" mode.
    """

    @abstractmethod
    async def count(self, entity_type: EntityType) -> int:
        """
        Count the source records of one entity type.

        Args:
            entity_type: Entity type to count

        Returns:
            Number of records available in the source
        """
        pass

    @abstractmethod
    async def fetch_page(
        self,
        entity_type: EntityType,
        offset: int,
        limit: int
    ) -> List[SourceRecord]:
        """
        Fetch one page of records.

        Args:
            entity_type: Entity type to fetch
            offset: Starting offset
            limit: Maximum records to return

        Returns:
            List of SourceRecord objects (empty when exhausted)

        Raises:
            SourceResponseError: If the response cannot be parsed
        """
        pass

    def create_record(self, entity_type: EntityType, data: Dict[str, Any]) -> SourceRecord:
        """
        Create a SourceRecord from a raw source payload.

        Args:
            entity_type: Entity type of the payload
            data: Raw record as returned by the source

        Returns:
            SourceRecord whose id is the stringified source ``Id``
        """
        record_id = data.get("Id", data.get("id", ""))
        return SourceRecord(
            id=str(record_id) if record_id is not None else "",
            entity_type=EntityType.parse(entity_type).value,
            data=data,
        )

    async def close(self) -> None:
        """Release any resources held by the connector."""
        return None
