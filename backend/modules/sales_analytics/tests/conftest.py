# backend/modules/sales_analytics/tests/conftest.py

import json

import httpx
import pytest

from core.cache import CacheService
from modules.sales_analytics.constants import PROBED_TABLES
from modules.sales_analytics.services.proxy_client import DatabaseProxyClient
from modules.sales_analytics.services.sales_kpi_service import SalesKPIService
from modules.sales_analytics.utils.cache_manager import SalesAnalyticsCacheManager

PROXY_URL = "http://proxy.test/functions/v1/company-database"

NORMALIZED_TABLES = ("movimentacao", "movimentacao_item", "cliente", "filial", "produto")


class FakeTenantProxy:
    """
    In-process stand-in for the database proxy.

    Answers metadata probes from the configured table set and returns
    ``query_rows`` for every other query, the way Postgres rows come back
    through the proxy (numerics as strings).
    """

    def __init__(self, tables=(), goal_columns=None, databases=None):
        self.tables = set(tables)
        self.goal_columns = goal_columns or []
        self.databases = (
            databases if databases is not None else [{"id": "db-1", "is_active": True}]
        )
        self.probe_error = None
        self.query_error = None
        self.query_rows = []
        self.requests = []
        self.queries = []

    @staticmethod
    def ok(data):
        return httpx.Response(200, json={"success": True, "data": data})

    @staticmethod
    def fail(error, status_code=400):
        return httpx.Response(status_code, json={"success": False, "error": error})

    def handler(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        self.requests.append(payload)

        if payload["action"] == "list":
            return self.ok(self.databases)

        sql = payload["query"]
        self.queries.append(sql)

        if "information_schema.tables" in sql:
            if self.probe_error:
                return self.fail(self.probe_error)
            row = {f"{table}_exists": table in self.tables for table in PROBED_TABLES}
            return self.ok({"rows": [row]})

        if "information_schema.columns" in sql:
            if self.probe_error:
                return self.fail(self.probe_error)
            rows = [
                {"column_name": name, "data_type": data_type}
                for name, data_type in self.goal_columns
            ]
            return self.ok({"rows": rows})

        if self.query_error:
            return self.fail(self.query_error)
        return self.ok({"rows": self.query_rows})

    @property
    def data_queries(self):
        return [q for q in self.queries if "information_schema" not in q]

    @property
    def probe_count(self):
        return sum(1 for q in self.queries if "information_schema.tables" in q)


@pytest.fixture
def fake_proxy():
    return FakeTenantProxy(tables=NORMALIZED_TABLES)


@pytest.fixture
def proxy_client(fake_proxy):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(fake_proxy.handler))
    return DatabaseProxyClient(
        base_url=PROXY_URL, api_key="test-key", http_client=http_client
    )


@pytest.fixture
def analytics_cache():
    return SalesAnalyticsCacheManager(backend=CacheService(), default_ttl=60)


@pytest.fixture
def kpi_service(proxy_client, analytics_cache):
    return SalesKPIService(proxy_client=proxy_client, cache=analytics_cache)
