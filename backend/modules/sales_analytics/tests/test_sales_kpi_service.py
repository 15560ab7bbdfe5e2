"""
Tests for the sales KPI service.

The proxy is faked at the HTTP layer with canned rows shaped the way Postgres
serializes them through the proxy (numerics as strings, NULLs as None). These
cover plan selection, caching and row shaping; the SQL itself is executed in
test_sales_sql_postgres.py.
"""

import asyncio
from datetime import date

import pytest

from modules.sales_analytics.exceptions import (
    NoActiveDatabaseError,
    NotConfiguredError,
    QueryExecutionError,
)
from modules.sales_analytics.schemas.sales_schemas import DimensionFilter

GOAL_COLUMNS = [("cod_cliente", "text"), ("mes", "date"), ("valor", "numeric")]


def overview_row(month, revenue, active_clients, **extra):
    row = {
        "month": month,
        "revenue": revenue,
        "previous_month_revenue": None,
        "revenue_mom_growth": None,
        "previous_year_revenue": None,
        "revenue_yoy_growth": None,
        "volume": "0",
        "previous_month_volume": None,
        "volume_mom_growth": None,
        "previous_year_volume": None,
        "volume_yoy_growth": None,
        "active_clients": active_clients,
        "average_ticket": None,
        "leading_product_share": None,
        "goal_revenue": None,
        "goal_attainment": None,
    }
    row.update(extra)
    return row


class TestOverview:
    """Overview row shaping and plan selection"""

    @pytest.mark.asyncio
    async def test_single_month_of_sales(self, kpi_service, fake_proxy):
        """Three March rows of 100/200/300 for one client, no goal table"""
        fake_proxy.query_rows = [
            overview_row(
                "2024-02",
                "0",
                0,
                previous_month_revenue="0",
                previous_year_revenue="0",
            ),
            overview_row(
                "2024-03",
                "600.00",
                1,
                previous_month_revenue="0",
                previous_year_revenue="0",
                average_ticket="600.0000000000000000",
                leading_product_share="1.00000000000000000000",
            ),
        ]

        result = await kpi_service.get_overview("tenant-1", as_of=date(2024, 3, 31))

        march = result[-1]
        assert march.month == "2024-03"
        assert march.revenue == 600.0
        assert march.active_clients == 1
        assert march.average_ticket == 600.0
        assert march.revenue_mom_growth is None
        assert march.revenue_yoy_growth is None
        assert march.goal_revenue is None
        assert march.goal_attainment is None
        assert march.leading_product_share == 1.0

        february = result[0]
        assert february.active_clients == 0
        assert february.average_ticket is None

        sql = fake_proxy.data_queries[-1]
        assert "FROM public.movimentacao m" in sql
        assert "public.meta" not in sql
        assert "DATE '2022-04-01'" in sql

    @pytest.mark.asyncio
    async def test_month_over_month_growth(self, kpi_service, fake_proxy):
        """April adds 300 for the same client: MoM = 300/600 - 1"""
        fake_proxy.query_rows = [
            overview_row("2024-03", "600.00", 1, previous_month_revenue="0"),
            overview_row(
                "2024-04",
                "300.00",
                1,
                previous_month_revenue="600.00",
                revenue_mom_growth="-0.50000000000000000000",
                average_ticket="300.0000000000000000",
            ),
        ]

        result = await kpi_service.get_overview("tenant-1", as_of=date(2024, 4, 30))

        april = result[-1]
        assert april.revenue_mom_growth == pytest.approx(-0.5)
        assert april.previous_month_revenue == 600.0
        assert april.revenue_yoy_growth is None

    @pytest.mark.asyncio
    async def test_no_known_tables_uses_fallback(self, kpi_service, fake_proxy):
        fake_proxy.tables = set()
        fake_proxy.query_rows = [overview_row("2024-03", "10", 1)]

        result = await kpi_service.get_overview("tenant-1", as_of=date(2024, 3, 1))

        assert result[0].revenue == 10.0
        assert "FROM public.movimentos mv" in fake_proxy.data_queries[-1]

    @pytest.mark.asyncio
    async def test_probe_failure_uses_fallback(self, kpi_service, fake_proxy):
        fake_proxy.probe_error = "permission denied for schema information_schema"
        fake_proxy.query_rows = []

        result = await kpi_service.get_overview("tenant-1", as_of=date(2024, 3, 1))

        assert result == []
        assert "FROM public.movimentos mv" in fake_proxy.data_queries[-1]

    @pytest.mark.asyncio
    async def test_goal_attainment(self, kpi_service, fake_proxy):
        fake_proxy.tables.add("meta")
        fake_proxy.goal_columns = GOAL_COLUMNS
        fake_proxy.query_rows = [
            overview_row(
                "2024-03", "600", 1, goal_revenue="1200.00", goal_attainment="0.5000"
            ),
            overview_row("2024-04", "300", 1, goal_revenue="0", goal_attainment=None),
        ]

        result = await kpi_service.get_overview("tenant-1", as_of=date(2024, 4, 1))

        assert result[0].goal_attainment == pytest.approx(0.5)
        assert result[1].goal_revenue == 0.0
        assert result[1].goal_attainment is None
        assert "FROM public.meta mt" in fake_proxy.data_queries[-1]

    @pytest.mark.asyncio
    async def test_results_are_cached(self, kpi_service, fake_proxy):
        fake_proxy.query_rows = [overview_row("2024-03", "1", 1)]

        await kpi_service.get_overview("tenant-1", as_of=date(2024, 3, 1))
        await kpi_service.get_overview("tenant-1", as_of=date(2024, 3, 15))

        assert len(fake_proxy.data_queries) == 1

    @pytest.mark.asyncio
    async def test_concurrent_identical_requests_query_once(self, kpi_service, fake_proxy):
        fake_proxy.query_rows = [overview_row("2024-03", "1", 1)]
        filters = DimensionFilter(branch_ids=["2", "1"])

        results = await asyncio.gather(
            kpi_service.get_overview("tenant-1", filters, date(2024, 3, 1)),
            kpi_service.get_overview(
                "tenant-1", DimensionFilter(branch_ids=["1", "2"]), date(2024, 3, 1)
            ),
        )

        assert results[0] == results[1]
        assert len(fake_proxy.data_queries) == 1

    @pytest.mark.asyncio
    async def test_capabilities_probed_once_per_database(self, kpi_service, fake_proxy):
        await kpi_service.get_overview("tenant-1", as_of=date(2024, 3, 1))
        await kpi_service.get_monthly_revenue("tenant-1", as_of=date(2024, 3, 1))

        assert fake_proxy.probe_count == 1


class TestErrors:
    """Configuration and execution failures surface to the caller"""

    @pytest.mark.asyncio
    async def test_not_configured(self, kpi_service, fake_proxy):
        fake_proxy.databases = []

        with pytest.raises(NotConfiguredError):
            await kpi_service.get_overview("tenant-1", as_of=date(2024, 3, 1))

    @pytest.mark.asyncio
    async def test_no_active_database(self, kpi_service, fake_proxy):
        fake_proxy.databases = [{"id": "db-1", "is_active": False}]

        with pytest.raises(NoActiveDatabaseError):
            await kpi_service.get_overview("tenant-1", as_of=date(2024, 3, 1))

    @pytest.mark.asyncio
    async def test_execution_error_is_propagated(self, kpi_service, fake_proxy):
        fake_proxy.query_error = 'column "qtd_litros" does not exist'

        with pytest.raises(QueryExecutionError) as exc_info:
            await kpi_service.get_overview("tenant-1", as_of=date(2024, 3, 1))

        assert exc_info.value.message == 'column "qtd_litros" does not exist'


class TestMovements:
    """Row-level movements and derived options"""

    MOVEMENTS = [
        {
            "sale_date": "2024-03-10",
            "client_id": "1",
            "client_name": "Posto Alfa",
            "product_id": "10",
            "product_name": "Diesel S10",
            "branch_id": "100",
            "branch_name": "Matriz",
            "seller_name": "",
            "revenue": "1234,50",
            "units": "3",
            "volume": None,
            "uf": " sp ",
        },
        {
            "sale_date": "2024-03-09",
            "client_id": "2",
            "client_name": "Posto Beta",
            "product_id": "11",
            "product_name": "Gasolina",
            "branch_id": "100",
            "branch_name": "Matriz",
            "seller_name": "Ana",
            "revenue": "50",
            "units": "1",
            "volume": "40.5",
            "uf": "pr",
        },
        {
            "sale_date": "2024-03-08",
            "client_id": "2",
            "client_name": "Posto Beta",
            "product_id": "10",
            "product_name": "Diesel S10",
            "branch_id": "200",
            "branch_name": "Filial Sul",
            "seller_name": None,
            "revenue": None,
            "units": None,
            "volume": "0",
            "uf": None,
        },
    ]

    @pytest.mark.asyncio
    async def test_movements_are_normalized(self, kpi_service, fake_proxy):
        fake_proxy.query_rows = self.MOVEMENTS

        movements = await kpi_service.get_movements(
            "tenant-1", date(2024, 3, 1), date(2024, 3, 31)
        )

        first, second, third = movements
        assert first.revenue == pytest.approx(1234.5)
        assert first.volume_liters is None
        assert first.region_code == "SP"
        assert second.volume_liters == 40.5
        assert second.region_code == "PR"
        assert third.revenue == 0.0
        assert third.unit_count == 0.0
        assert third.seller_name == ""
        assert third.region_code is None

        sql = fake_proxy.data_queries[-1]
        assert sql.endswith("LIMIT 50000")

    @pytest.mark.asyncio
    async def test_filter_options(self, kpi_service, fake_proxy):
        fake_proxy.query_rows = self.MOVEMENTS

        options = await kpi_service.get_filter_options(
            "tenant-1", date(2024, 3, 1), date(2024, 3, 31)
        )

        assert [o.value for o in options.branches] == ["100", "200"]
        assert [o.value for o in options.products] == ["10", "11"]
        # Most frequent client first
        assert [o.value for o in options.clients] == ["2", "1"]
        assert options.clients[0].label == "Posto Beta"


class TestAggregates:
    """Monthly revenue, goals, rankings and geography"""

    @pytest.mark.asyncio
    async def test_monthly_revenue(self, kpi_service, fake_proxy):
        fake_proxy.query_rows = [
            {"month": "2024-02", "revenue": "100.5", "volume": None},
            {"month": "2024-03", "revenue": "200", "volume": "12"},
        ]

        result = await kpi_service.get_monthly_revenue("tenant-1", as_of=date(2024, 3, 1))

        assert [(r.month, r.revenue, r.volume) for r in result] == [
            ("2024-02", 100.5, None),
            ("2024-03", 200.0, 12.0),
        ]

    @pytest.mark.asyncio
    async def test_client_goals_unsupported_without_goal_table(self, kpi_service, fake_proxy):
        result = await kpi_service.get_client_goals(
            "tenant-1", date(2024, 3, 1), date(2024, 3, 31)
        )

        assert result.goals_supported is False
        assert result.goals == []
        assert fake_proxy.data_queries == []

    @pytest.mark.asyncio
    async def test_client_goals(self, kpi_service, fake_proxy):
        fake_proxy.tables.add("meta")
        fake_proxy.goal_columns = GOAL_COLUMNS
        fake_proxy.query_rows = [
            {"client_id": "1", "goal_revenue": "1500.00"},
            {"client_id": "2", "goal_revenue": None},
        ]

        result = await kpi_service.get_client_goals(
            "tenant-1", date(2024, 3, 1), date(2024, 3, 31)
        )

        assert result.goals_supported is True
        assert result.goals[0].goal_revenue == 1500.0
        assert result.goals[1].goal_revenue is None

    @pytest.mark.asyncio
    async def test_client_goals_supported_but_empty(self, kpi_service, fake_proxy):
        fake_proxy.tables.add("meta")
        fake_proxy.goal_columns = GOAL_COLUMNS
        fake_proxy.query_rows = []

        result = await kpi_service.get_client_goals(
            "tenant-1", date(2024, 3, 1), date(2024, 3, 31)
        )

        assert result.goals_supported is True
        assert result.goals == []

    @pytest.mark.asyncio
    async def test_top_products(self, kpi_service, fake_proxy):
        fake_proxy.query_rows = [{"name": "Diesel S10", "value": "900.10"}]

        result = await kpi_service.get_top_products(
            "tenant-1", date(2024, 3, 1), date(2024, 3, 31)
        )

        assert result[0].name == "Diesel S10"
        assert result[0].value == pytest.approx(900.1)
        assert "LIMIT 10" in fake_proxy.data_queries[-1]

    @pytest.mark.asyncio
    async def test_top_clients(self, kpi_service, fake_proxy):
        fake_proxy.query_rows = [{"name": "Posto Alfa", "value": 10}]

        result = await kpi_service.get_top_clients(
            "tenant-1", date(2024, 3, 1), date(2024, 3, 31)
        )

        assert result[0].name == "Posto Alfa"
        assert "GROUP BY b.client_id, b.client_name" in fake_proxy.data_queries[-1]

    @pytest.mark.asyncio
    async def test_revenue_by_state_and_region(self, kpi_service, fake_proxy):
        fake_proxy.query_rows = [{"state": "SP", "revenue": "10", "region": "Sudeste"}]

        states = await kpi_service.get_revenue_by_state("tenant-1", as_of=date(2024, 3, 1))
        regions = await kpi_service.get_revenue_by_region("tenant-1", as_of=date(2024, 3, 1))

        assert states[0].state == "SP"
        assert regions[0].region == "Sudeste"

    @pytest.mark.asyncio
    async def test_revenue_by_state_without_client_table(self, kpi_service, fake_proxy):
        fake_proxy.tables.discard("cliente")

        states = await kpi_service.get_revenue_by_state("tenant-1", as_of=date(2024, 3, 1))

        assert states == []
        assert fake_proxy.data_queries == []

    @pytest.mark.asyncio
    async def test_clients(self, kpi_service, fake_proxy):
        fake_proxy.query_rows = [{"id": 1, "name": "Posto Alfa"}, {"id": None, "name": "?"}]

        clients = await kpi_service.get_clients("tenant-1")

        assert [(c.value, c.label) for c in clients] == [("1", "Posto Alfa")]


class TestInvalidation:
    @pytest.mark.asyncio
    async def test_invalidate_tenant_forces_new_probe_and_query(self, kpi_service, fake_proxy):
        await kpi_service.get_overview("tenant-1", as_of=date(2024, 3, 1))

        await kpi_service.invalidate_tenant("tenant-1")
        await kpi_service.get_overview("tenant-1", as_of=date(2024, 3, 1))

        assert fake_proxy.probe_count == 2
        assert len(fake_proxy.data_queries) == 2
