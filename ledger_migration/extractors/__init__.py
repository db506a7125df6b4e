"""Source connectors that read records from the source system."""

from .base import SourceConnector, SourceConnectorError, SourceResponseError
from .mcp_connector import QboMcpConnector
from .file_connector import StaticConnector, FileConnector

__all__ = [
    "SourceConnector",
    "SourceConnectorError",
    "SourceResponseError",
    "QboMcpConnector",
    "StaticConnector",
    "FileConnector",
]
