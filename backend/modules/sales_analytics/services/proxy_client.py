# backend/modules/sales_analytics/services/proxy_client.py

"""
Client for the tenant database proxy.

The proxy is a trusted, tenant-scoped RPC endpoint. It lists a tenant's
registered databases and runs plain SQL text against one of them:

    {"action": "list", "company_id": ...}
    {"action": "query", "database_id": ..., "query": ...}

Responses are ``{"success": bool, "data": ..., "error": str}``. Failures are
raised as typed errors carrying the proxy message unchanged; nothing is
retried here.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from core.config import settings
from ..exceptions import NotConfiguredError, NoActiveDatabaseError, QueryExecutionError
from .result_normalizer import to_flag

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TenantDatabaseRef:
    """A database registered for a tenant in the proxy"""

    id: str
    is_active: bool
    name: Optional[str] = None


class DatabaseProxyClient:
    """Async HTTP client for the database proxy"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url or settings.database_proxy_url
        self.api_key = api_key if api_key is not None else settings.database_proxy_api_key
        self.http_client = http_client or httpx.AsyncClient(
            timeout=timeout or settings.database_proxy_timeout_seconds
        )

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
            headers["apikey"] = self.api_key
        return headers

    async def _call(self, payload: Dict[str, Any]) -> Any:
        """POST an action and return the ``data`` member of a successful reply"""
        action = payload.get("action")
        try:
            response = await self.http_client.post(
                self.base_url, json=payload, headers=self._headers()
            )
            body = response.json()
        except httpx.HTTPError as e:
            logger.error(f"Database proxy '{action}' request failed: {e}")
            raise QueryExecutionError(
                f"Database proxy request failed: {e}", payload.get("database_id")
            ) from e
        except ValueError as e:
            logger.error(
                f"Database proxy '{action}' returned a non-JSON body "
                f"(status {response.status_code})"
            )
            raise QueryExecutionError(
                f"Invalid response from database proxy (status {response.status_code})",
                payload.get("database_id"),
            ) from e

        if not isinstance(body, dict) or not body.get("success"):
            error = body.get("error") if isinstance(body, dict) else None
            message = error or f"Database proxy '{action}' failed (status {response.status_code})"
            logger.error(f"Database proxy '{action}' failed: {message}")
            raise QueryExecutionError(message, payload.get("database_id"))

        return body.get("data")

    async def list_databases(self, tenant_id: str) -> List[TenantDatabaseRef]:
        data = await self._call({"action": "list", "company_id": tenant_id})
        if isinstance(data, dict):
            data = data.get("databases") or data.get("rows") or []

        databases = []
        for entry in data or []:
            if not isinstance(entry, dict) or entry.get("id") is None:
                continue
            databases.append(
                TenantDatabaseRef(
                    id=str(entry["id"]),
                    is_active=to_flag(entry.get("is_active")),
                    name=entry.get("name"),
                )
            )
        return databases

    async def resolve_active_database(self, tenant_id: str) -> TenantDatabaseRef:
        """First registration marked active for the tenant"""
        databases = await self.list_databases(tenant_id)
        if not databases:
            raise NotConfiguredError(tenant_id)

        for database in databases:
            if database.is_active:
                return database

        raise NoActiveDatabaseError(tenant_id, registered=len(databases))

    async def execute(
        self, database_id: str, sql: str, max_rows: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """
        Run SQL on a tenant database and return its rows.

        ``max_rows`` caps row-level results; extra rows are dropped.
        """
        data = await self._call(
            {"action": "query", "database_id": database_id, "query": sql}
        )
        rows = data.get("rows") if isinstance(data, dict) else data
        rows = list(rows or [])

        if max_rows is not None and len(rows) > max_rows:
            logger.warning(
                f"Query on database {database_id} returned {len(rows)} rows, "
                f"truncating to {max_rows}"
            )
            rows = rows[:max_rows]
        return rows

    async def close(self) -> None:
        await self.http_client.aclose()
