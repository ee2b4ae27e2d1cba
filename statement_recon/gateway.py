"""Ledger data-access gateway: the narrow list/create/update contract and its HTTP client."""
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from .config import config, LedgerConfig
from .exceptions import GatewayError
from .logging_config import get_logger

logger = get_logger("gateway")

MAX_FILTERS = 8


@dataclass
class CrudFilter:
    """A field/value/operator triple; operator defaults to equality."""
    field: str
    value: Any
    operator: Optional[str] = None


@dataclass
class ListOptions:
    sort_column: Optional[str] = None
    limit: Optional[int] = None
    offset: Optional[int] = None
    combine_type: Optional[str] = None
    auto_exclude_deleted: bool = False


def build_search_params(filters: List[CrudFilter], options: Optional[ListOptions] = None) -> Dict[str, Any]:
    """
    Flatten filters into search_fieldN / search_valueN / search_operatorN.

    Only the first eight filters are sent; list values are joined with commas
    (the form the `in` operator expects).
    """
    params: Dict[str, Any] = {}

    for n, flt in enumerate(filters[:MAX_FILTERS], start=1):
        value = flt.value
        if isinstance(value, (list, tuple, set)):
            value = ",".join(str(v) for v in value)
        params[f"search_field{n}"] = flt.field
        params[f"search_value{n}"] = str(value)
        if flt.operator:
            params[f"search_operator{n}"] = flt.operator

    if options:
        if options.combine_type:
            params["combine_type"] = options.combine_type
        if options.sort_column:
            params["sort_column"] = options.sort_column
        if options.limit is not None:
            params["limit"] = str(options.limit)
        if options.offset is not None:
            params["offset"] = str(options.offset)
        if options.auto_exclude_deleted:
            params["auto_exclude_deleted"] = True

    return params


def normalize_crud_list(data: Any) -> List[Dict[str, Any]]:
    """Normalize any list response shape into a list of rows."""
    if isinstance(data, list):
        return [row for row in data if isinstance(row, dict)]
    if isinstance(data, dict):
        for key in ("data", "value", "items"):
            if key in data:
                rows = data[key]
                return [row for row in rows if isinstance(row, dict)] if isinstance(rows, list) else []
    return []


def normalize_crud_one(data: Any) -> Dict[str, Any]:
    """Extract the single row from a create/update response."""
    if isinstance(data, list):
        return data[0] if data and isinstance(data[0], dict) else {}
    if isinstance(data, dict):
        for key in ("data", "value"):
            if key in data:
                return normalize_crud_one(data[key])
        return data
    return {}


class LedgerGateway(ABC):
    """Generic request/response data access used by the reconciler."""

    @abstractmethod
    def list(
        self,
        table: str,
        filters: Optional[List[CrudFilter]] = None,
        options: Optional[ListOptions] = None
    ) -> List[Dict[str, Any]]:
        """Return rows of `table` matching all filters."""

    @abstractmethod
    def create(self, table: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a row and return it (including its generated id)."""

    @abstractmethod
    def update(self, table: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Update the row identified by payload["id"] and return it."""


class HttpLedgerGateway(LedgerGateway):
    """Client for a JSON CRUD endpoint accepting {action, table, ...} requests."""

    def __init__(self, cfg: Optional[LedgerConfig] = None, session: Optional[requests.Session] = None):
        self.config = cfg or config.ledger
        self.session = session or requests.Session()

    def list(self, table, filters=None, options=None):
        body = {"action": "list", "table": table}
        body.update(build_search_params(filters or [], options))
        return normalize_crud_list(self._send_request(body))

    def create(self, table, payload):
        return normalize_crud_one(
            self._send_request({"action": "create", "table": table, "payload": payload})
        )

    def update(self, table, payload):
        if not payload.get("id"):
            raise GatewayError("update payload requires an id", table=table)
        return normalize_crud_one(
            self._send_request({"action": "update", "table": table, "payload": payload})
        )

    def _send_request(self, body: Dict[str, Any]) -> Any:
        """Send request to the CRUD endpoint."""
        if not self.config.is_configured():
            raise GatewayError("LEDGER_API_URL is not configured", table=body.get("table"))

        headers = {"Content-Type": "application/json"}
        if self.config.api_token:
            headers["Authorization"] = f"Bearer {self.config.api_token}"

        logger.debug(f"{body['action']} {body['table']}")

        try:
            response = self.session.post(
                self.config.api_url,
                data=json.dumps(body, default=str),
                headers=headers,
                timeout=self.config.timeout
            )
            response.raise_for_status()
        except requests.HTTPError as e:
            status_code = e.response.status_code if e.response is not None else None
            raise GatewayError(f"HTTP request failed: {e}", table=body.get("table"), status_code=status_code)
        except requests.RequestException as e:
            raise GatewayError(f"HTTP request failed: {e}", table=body.get("table"))

        try:
            result = response.json()
        except ValueError as e:
            raise GatewayError(f"Failed to parse JSON response: {e}", table=body.get("table"))

        if isinstance(result, dict) and result.get("error"):
            raise GatewayError(f"Operation failed: {result['error']}", table=body.get("table"))

        return result
