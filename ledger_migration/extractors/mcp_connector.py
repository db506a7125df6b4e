"""QuickBooks Online source connector over an MCP HTTP server."""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .base import SourceConnector, SourceConnectorError, SourceResponseError
from ..models.entities import EntityType
from ..models.record import SourceRecord

logger = logging.getLogger(__name__)

SESSION_EXPIRED_CODE = -32001
PROTOCOL_VERSION = "2024-11-05"


class QboMcpConnector(SourceConnector):
    """
    Source connector that calls QBO tools on an MCP server.

    Supports:
    - JSON-RPC 2.0 initialize / tools/call over HTTP
    - SSE (``data:`` line) or plain JSON responses
    - Session re-initialisation on expiry
    - Retry logic on 429/5xx
    """

    # Entity type -> search tool and analysis key
    ENTITY_CONFIGS = {
        EntityType.CUSTOMER: {"search_tool": "qbo_search_customers", "count_key": "customers"},
        EntityType.VENDOR: {"search_tool": "qbo_search_vendors", "count_key": "vendors"},
        EntityType.ACCOUNT: {"search_tool": "qbo_search_accounts", "count_key": "accounts"},
        EntityType.ITEM: {"search_tool": "qbo_search_items", "count_key": "items"},
        EntityType.INVOICE: {"search_tool": "qbo_search_invoices", "count_key": "invoices"},
        EntityType.BILL: {"search_tool": "qbo_search_bills", "count_key": "bills"},
        EntityType.PAYMENT: {"search_tool": "qbo_search_payments", "count_key": "payments"},
        EntityType.BILL_PAYMENT: {"search_tool": "qbo_search_bill_payments", "count_key": "billPayments"},
        EntityType.JOURNAL_ENTRY: {"search_tool": "qbo_search_journal_entries", "count_key": "journalEntries"},
    }

    ANALYZE_TOOL = "qbo_analyze_for_migration"

    def __init__(
        self,
        url: str,
        token: Optional[str] = None,
        timeout: float = 120.0,
        headers: Optional[Dict[str, str]] = None,
        session: Optional[requests.Session] = None,
        max_retries: int = 3,
        backoff_factor: float = 2.0
    ):
        """
        Initialize the MCP connector.

        Args:
            url: MCP endpoint URL
            token: Bearer token forwarded on every call
            timeout: Per-request timeout in seconds
            headers: Extra headers sent with every request
            session: Custom requests session
            max_retries: Retries on 429/5xx responses
            backoff_factor: Retry backoff factor
        """
        self.url = url
        self.token = token
        self.timeout = timeout
        self.headers = headers or {}
        self._max_retries = max_retries
        self._backoff_factor = backoff_factor
        self._session = session or self._create_session()
        self._session_id: Optional[str] = None
        self._initialized = False
        self._request_id = 0
        self._analysis: Optional[Dict[str, Any]] = None

    def _create_session(self) -> requests.Session:
        """Create a requests session with retry logic."""
        session = requests.Session()

        retries = Retry(
            total=self._max_retries,
            backoff_factor=self._backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=None,
        )

        adapter = HTTPAdapter(max_retries=retries)
        session.mount("https://", adapter)
        session.mount("http://", adapter)

        return session

    def _build_headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json, text/event-stream",
        }
        headers.update(self.headers)
        if self._session_id:
            headers["Mcp-Session-Id"] = self._session_id
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _next_payload(self, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
        self._request_id += 1
        return {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params,
        }

    @staticmethod
    def parse_response_body(body: str) -> Dict[str, Any]:
        """
        Parse a JSON-RPC response body.

        The server may answer as an SSE stream (first ``data:`` line carries
        the message) or as plain JSON.
        """
        text = (body or "").strip()
        if not text:
            raise SourceResponseError("Empty response from MCP server")

        if text.startswith("{"):
            try:
                return json.loads(text)
            except ValueError as e:
                raise SourceResponseError(f"Invalid JSON from MCP server: {e}") from e

        for line in text.splitlines():
            if line.startswith("data:"):
                try:
                    return json.loads(line[len("data:"):].strip())
                except ValueError:
                    logger.debug(f"Skipping unparsable SSE line: {line[:100]}")

        raise SourceResponseError(f"Could not parse MCP response: {text[:100]}")

    def _post(self, payload: Dict[str, Any]) -> requests.Response:
        try:
            return self._session.post(
                self.url,
                json=payload,
                headers=self._build_headers(),
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise SourceConnectorError(f"MCP request failed: {e}") from e

    def _initialize(self) -> None:
        """Open an MCP session if one is not already open."""
        if self._initialized:
            return

        self._session_id = None
        response = self._post(self._next_payload("initialize", {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {},
            "clientInfo": {"name": "ledger-migration", "version": "0.1.0"},
        }))
        if response.status_code >= 400:
            raise SourceConnectorError(f"MCP initialize failed: HTTP {response.status_code}")

        message = self.parse_response_body(response.text)
        if "result" not in message:
            error = message.get("error", {})
            raise SourceConnectorError(f"MCP initialize failed: {error.get('message', message)}")

        self._session_id = response.headers.get("mcp-session-id")
        self._initialized = True
        logger.info(f"MCP session initialized: {self._session_id}")

    def _reset_session(self) -> None:
        self._initialized = False
        self._session_id = None

    def call_tool_sync(self, name: str, arguments: Dict[str, Any], _retry: bool = True) -> Dict[str, Any]:
        """
        Call one MCP tool and return its JSON-RPC ``result``.

        Args:
            name: Tool name
            arguments: Tool arguments

        Returns:
            The ``result`` object of the JSON-RPC response

        Raises:
            SourceConnectorError: On transport or tool errors
        """
        self._initialize()

        response = self._post(self._next_payload("tools/call", {"name": name, "arguments": arguments}))

        if response.status_code == 404 and _retry:
            logger.info("MCP session not found, reinitializing...")
            self._reset_session()
            return self.call_tool_sync(name, arguments, _retry=False)
        if response.status_code >= 400:
            raise SourceConnectorError(f"MCP tool {name} failed: HTTP {response.status_code}")

        message = self.parse_response_body(response.text)
        error = message.get("error")
        if error:
            if error.get("code") == SESSION_EXPIRED_CODE and _retry:
                logger.info("MCP session expired, reinitializing...")
                self._reset_session()
                return self.call_tool_sync(name, arguments, _retry=False)
            raise SourceConnectorError(f"MCP tool {name} failed: {error.get('message', error)}")

        result = message.get("result")
        return result if isinstance(result, dict) else {}

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
        """Async wrapper around call_tool_sync; the HTTP call runs in a worker thread."""
        return await asyncio.to_thread(self.call_tool_sync, name, arguments)

    @staticmethod
    def _content_text(result: Dict[str, Any]) -> Optional[str]:
        content = result.get("content") or []
        if content and isinstance(content[0], dict):
            return content[0].get("text")
        return None

    def _entity_config(self, entity_type: EntityType) -> Dict[str, str]:
        entity_type = EntityType.parse(entity_type)
        config = self.ENTITY_CONFIGS.get(entity_type)
        if not config:
            raise ValueError(f"Unknown entity type: {entity_type.value}")
        return config

    async def analyze(self, refresh: bool = False) -> Dict[str, Any]:
        """Run the migration analysis tool (cached for the connector's lifetime)."""
        if self._analysis is None or refresh:
            result = await self.call_tool(self.ANALYZE_TOOL, {})
            text = self._content_text(result) or "{}"
            try:
                self._analysis = json.loads(text)
            except ValueError as e:
                raise SourceResponseError(f"Could not parse migration analysis: {text[:100]}") from e
        return self._analysis

    async def count(self, entity_type: EntityType) -> int:
        config = self._entity_config(entity_type)
        analysis = await self.analyze()
        entities = analysis.get("entities") or {}
        try:
            return int(entities.get(config["count_key"]) or 0)
        except (TypeError, ValueError):
            return 0

    async def fetch_page(
        self,
        entity_type: EntityType,
        offset: int,
        limit: int
    ) -> List[SourceRecord]:
        config = self._entity_config(entity_type)
        result = await self.call_tool(config["search_tool"], {
            "limit": limit,
            "offset": offset,
            "fetchAll": False,
        })

        rows = self.extract_rows(result)
        return [self.create_record(entity_type, row) for row in rows if isinstance(row, dict)]

    @classmethod
    def extract_rows(cls, result: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Pull the raw record list out of a search tool result."""
        if isinstance(result.get("data"), list):
            return result["data"]

        text = cls._content_text(result) or "{}"
        try:
            parsed = json.loads(text)
        except ValueError as e:
            raise SourceResponseError(f"Could not parse batch data: {text[:100]}") from e

        if isinstance(parsed, list):
            return parsed
        if isinstance(parsed, dict):
            return parsed.get("data") or parsed.get("records") or []
        raise SourceResponseError(f"Unexpected batch payload: {text[:100]}")

    async def close(self) -> None:
        self._session.close()
