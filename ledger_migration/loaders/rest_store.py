"""REST target store for Data-API-style (OData query) endpoints."""

import asyncio
import threading
import time
import logging
from typing import Any, Dict, Iterable, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .base import (
    CreateResult,
    ReadQuery,
    TargetStore,
    TargetStoreError,
    is_any_of,
)

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION_MARKERS = ("unique", "duplicate key", "already exists")


def odata_literal(value: Any) -> str:
    """Render a Python value as an OData literal."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    escaped = str(value).replace("'", "''")
    return f"'{escaped}'"


def render_filter(filter_spec: Dict[str, Any]) -> Optional[str]:
    """
    Render a structured filter as an OData ``$filter`` expression.

    Equality clauses are joined with ``and``; an "any of" value renders as a
    parenthesised ``or`` group.
    """
    clauses = []
    for column, value in filter_spec.items():
        if is_any_of(value):
            options = [f"{column} eq {odata_literal(v)}" for v in value]
            if not options:
                # "any of nothing" matches nothing
                clauses.append("1 eq 0")
            elif len(options) == 1:
                clauses.append(options[0])
            else:
                clauses.append("(" + " or ".join(options) + ")")
        else:
            clauses.append(f"{column} eq {odata_literal(value)}")
    return " and ".join(clauses) if clauses else None


def render_query_params(query: Optional[ReadQuery]) -> Dict[str, str]:
    """Build the OData query-string parameters for a ReadQuery."""
    params: Dict[str, str] = {}
    if query is None:
        return params

    expression = render_filter(query.filter)
    if expression:
        params["$filter"] = expression
    if query.select:
        params["$select"] = ",".join(query.select)
    if query.first is not None:
        params["$first"] = str(query.first)
    if query.order_by:
        params["$orderby"] = query.order_by
    return params


class RestTargetStore(TargetStore):
    """
    Target store backed by a REST data API.

    Supports:
    - OData $filter / $select / $first / $orderby reads
    - Batched existence checks chunked per request
    - Conflict detection on unique keys
    - Rate limiting and retry logic
    """

    CHECK_CHUNK_SIZE = 50

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        api_role: Optional[str] = None,
        rate_limit: Optional[float] = None,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
        max_retries: int = 3,
        backoff_factor: float = 1.0
    ):
        """
        Initialize the REST store.

        Args:
            base_url: Base URL of the data API (tables are path segments)
            api_key: Bearer token for authentication
            api_role: Value for the X-MS-API-ROLE header
            rate_limit: Max requests per second
            timeout: Per-request timeout in seconds
            session: Custom requests session
            max_retries: Retries on 429/5xx responses
            backoff_factor: Retry backoff factor
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.api_role = api_role
        self.rate_limit = rate_limit
        self.timeout = timeout
        self._max_retries = max_retries
        self._backoff_factor = backoff_factor
        self._last_request_time = 0.0
        self._rate_lock = threading.Lock()
        self._session = session or self._create_session()

    def _create_session(self) -> requests.Session:
        """Create a requests session with authentication and retry logic."""
        session = requests.Session()

        retries = Retry(
            total=self._max_retries,
            backoff_factor=self._backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"],
        )
        adapter = HTTPAdapter(max_retries=retries)
        session.mount("https://", adapter)
        session.mount("http://", adapter)

        session.headers["Content-Type"] = "application/json"
        session.headers["Accept"] = "application/json"
        if self.api_key:
            session.headers["Authorization"] = f"Bearer {self.api_key}"
        if self.api_role:
            session.headers["X-MS-API-ROLE"] = self.api_role

        return session

    def _rate_limit_wait(self):
        """Wait to respect rate limits; worker threads take turns."""
        with self._rate_lock:
            if self.rate_limit and self.rate_limit > 0:
                elapsed = time.time() - self._last_request_time
                wait_time = (1.0 / self.rate_limit) - elapsed
                if wait_time > 0:
                    time.sleep(wait_time)
            self._last_request_time = time.time()

    def _table_url(self, table: str) -> str:
        return f"{self.base_url}/{table}"

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return response.text or f"HTTP {response.status_code}"

        error = data.get("error") if isinstance(data, dict) else None
        if isinstance(error, dict):
            return error.get("message") or str(error)
        if isinstance(data, dict):
            return data.get("message") or error or str(data)
        return str(data)

    @staticmethod
    def _extract_id(data: Any) -> Optional[str]:
        if isinstance(data, dict):
            values = data.get("value")
            if isinstance(values, list) and values:
                data = values[0]
            for key in ("Id", "id"):
                if data.get(key) is not None:
                    return str(data[key])
        return None

    def _create_sync(self, table: str, record: Dict[str, Any]) -> CreateResult:
        self._rate_limit_wait()
        try:
            response = self._session.post(self._table_url(table), json=record, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.error(f"Create on {table} failed: {e}")
            return CreateResult(error=str(e))

        if response.status_code == 409:
            return CreateResult(conflict=True, error=self._error_message(response))

        if response.status_code >= 400:
            message = self._error_message(response)
            if any(marker in message.lower() for marker in UNIQUE_VIOLATION_MARKERS):
                return CreateResult(conflict=True, error=message)
            return CreateResult(error=f"HTTP {response.status_code}: {message}")

        try:
            data = response.json() if response.text else {}
        except ValueError:
            data = {}

        target_id = self._extract_id(data)
        if target_id is None:
            return CreateResult(error=f"Create on {table} returned no Id")
        return CreateResult(id=target_id)

    def _read_sync(self, table: str, query: Optional[ReadQuery]) -> List[Dict[str, Any]]:
        self._rate_limit_wait()
        params = render_query_params(query)
        try:
            response = self._session.get(self._table_url(table), params=params, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.HTTPError as e:
            raise TargetStoreError(
                f"Read on {table} failed: HTTP {e.response.status_code}: {self._error_message(e.response)}"
            ) from e
        except (requests.exceptions.RequestException, ValueError) as e:
            raise TargetStoreError(f"Read on {table} failed: {e}") from e

        if isinstance(data, dict):
            values = data.get("value", [])
        else:
            values = data
        return values if isinstance(values, list) else []

    async def create(self, table: str, record: Dict[str, Any]) -> CreateResult:
        return await asyncio.to_thread(self._create_sync, table, record)

    async def read(self, table: str, query: Optional[ReadQuery] = None) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(self._read_sync, table, query)

    async def batch_check_existing(
        self,
        table: str,
        field_name: str,
        values: Iterable[Any]
    ) -> Dict[Any, str]:
        """Check existence in chunks so the $filter stays within URL limits."""
        unique_values = list(dict.fromkeys(v for v in values if v is not None and v != ""))
        existing: Dict[Any, str] = {}

        for i in range(0, len(unique_values), self.CHECK_CHUNK_SIZE):
            chunk = unique_values[i:i + self.CHECK_CHUNK_SIZE]
            existing.update(await super().batch_check_existing(table, field_name, chunk))

        return existing

    async def close(self) -> None:
        self._session.close()
