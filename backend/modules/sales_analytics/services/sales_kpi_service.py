# backend/modules/sales_analytics/services/sales_kpi_service.py

"""
Sales KPI service.

Entry point for dashboard queries against a tenant's external database:
resolves the active database, picks the query plan from the (cached)
capabilities, runs the SQL through the proxy and shapes the rows into the
public result types. Results are cached per tenant, filter set and window.
"""

import logging
from collections import Counter
from datetime import date
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from core.config import settings
from ..schemas.sales_schemas import (
    DimensionFilter,
    SalesMovement,
    OverviewMonthlyData,
    ClientGoalData,
    ClientGoalsResponse,
    MonthlyRevenue,
    RankingItem,
    RevenueByState,
    RevenueByRegion,
    FilterOption,
    SalesFilterOptions,
)
from ..utils.cache_manager import SalesAnalyticsCacheManager, sales_analytics_cache
from ..utils.region_codes import normalize_state
from .capability_prober import CapabilityProber
from .filter_compiler import CompiledFilters
from .overview_query import build_overview_query
from .proxy_client import DatabaseProxyClient
from .query_plans import QueryPlan, select_plan
from .result_normalizer import to_int, to_month, to_number, to_number_or_none, to_text

logger = logging.getLogger(__name__)


class SalesKPIService:
    """Computes sales KPIs for tenants through the database proxy"""

    def __init__(
        self,
        proxy_client: Optional[DatabaseProxyClient] = None,
        prober: Optional[CapabilityProber] = None,
        cache: Optional[SalesAnalyticsCacheManager] = None,
        max_rows: Optional[int] = None,
        ranking_limit: Optional[int] = None,
        client_option_limit: Optional[int] = None,
    ):
        self.proxy = proxy_client or DatabaseProxyClient()
        self.prober = prober or CapabilityProber(
            self.proxy, ttl_seconds=settings.analytics_capability_cache_ttl_seconds
        )
        self.cache = cache or sales_analytics_cache
        self.max_rows = max_rows or settings.analytics_max_row_level_rows
        self.ranking_limit = ranking_limit or settings.analytics_ranking_limit
        self.client_option_limit = (
            client_option_limit or settings.analytics_filter_option_client_limit
        )

    async def _resolve_plan(self, tenant_id: str) -> Tuple[str, QueryPlan]:
        database = await self.proxy.resolve_active_database(tenant_id)
        capabilities = await self.prober.get_capabilities(database.id)
        plan = select_plan(capabilities)
        logger.debug(f"Tenant {tenant_id} database {database.id} uses the {plan.name} plan")
        return database.id, plan

    async def _cached(
        self,
        tenant_id: str,
        namespace: str,
        compute: Callable[[], Awaitable[Any]],
        force_refresh: bool = False,
        **params,
    ) -> Any:
        key = self.cache.generate_cache_key(tenant_id, namespace, **params)
        return await self.cache.get_or_compute(key, compute, force_refresh=force_refresh)

    @staticmethod
    def _window_params(filters: DimensionFilter, **window) -> Dict[str, Any]:
        return {"filters": filters.cache_key_params(), **window}

    # Overview

    async def get_overview(
        self,
        tenant_id: str,
        filters: Optional[DimensionFilter] = None,
        as_of: Optional[date] = None,
        force_refresh: bool = False,
    ) -> List[OverviewMonthlyData]:
        """Last 12 months of KPIs ending with the month of ``as_of``"""
        filters = filters or DimensionFilter()
        as_of = as_of or date.today()

        async def compute():
            database_id, plan = await self._resolve_plan(tenant_id)
            sql = build_overview_query(plan, as_of, CompiledFilters.from_filter(filters))
            rows = await self.proxy.execute(database_id, sql)
            return [self.shape_overview_row(row).model_dump() for row in rows]

        data = await self._cached(
            tenant_id,
            "overview",
            compute,
            force_refresh,
            **self._window_params(filters, as_of=as_of.replace(day=1).isoformat()),
        )
        return [OverviewMonthlyData.model_validate(item) for item in data]

    @staticmethod
    def shape_overview_row(row: Dict[str, Any]) -> OverviewMonthlyData:
        return OverviewMonthlyData(
            month=to_month(row.get("month")),
            revenue=to_number(row.get("revenue")),
            previous_month_revenue=to_number_or_none(row.get("previous_month_revenue")),
            revenue_mom_growth=to_number_or_none(row.get("revenue_mom_growth")),
            previous_year_revenue=to_number_or_none(row.get("previous_year_revenue")),
            revenue_yoy_growth=to_number_or_none(row.get("revenue_yoy_growth")),
            volume_liters=to_number(row.get("volume")),
            previous_month_volume=to_number_or_none(row.get("previous_month_volume")),
            volume_mom_growth=to_number_or_none(row.get("volume_mom_growth")),
            previous_year_volume=to_number_or_none(row.get("previous_year_volume")),
            volume_yoy_growth=to_number_or_none(row.get("volume_yoy_growth")),
            active_clients=to_int(row.get("active_clients")),
            average_ticket=to_number_or_none(row.get("average_ticket")),
            leading_product_share=to_number_or_none(row.get("leading_product_share")),
            goal_revenue=to_number_or_none(row.get("goal_revenue")),
            goal_attainment=to_number_or_none(row.get("goal_attainment")),
        )

    # Row-level movements

    async def get_movements(
        self,
        tenant_id: str,
        date_from: date,
        date_to: date,
        filters: Optional[DimensionFilter] = None,
        force_refresh: bool = False,
    ) -> List[SalesMovement]:
        filters = filters or DimensionFilter()

        async def compute():
            database_id, plan = await self._resolve_plan(tenant_id)
            sql = plan.movements_query(
                date_from, date_to, CompiledFilters.from_filter(filters), self.max_rows
            )
            rows = await self.proxy.execute(database_id, sql, max_rows=self.max_rows)
            return [self.shape_movement_row(row).model_dump() for row in rows]

        data = await self._cached(
            tenant_id,
            "movements",
            compute,
            force_refresh,
            **self._window_params(
                filters, date_from=date_from.isoformat(), date_to=date_to.isoformat()
            ),
        )
        return [SalesMovement.model_validate(item) for item in data]

    @staticmethod
    def shape_movement_row(row: Dict[str, Any]) -> SalesMovement:
        return SalesMovement(
            sale_date=to_text(row.get("sale_date")),
            client_id=to_text(row.get("client_id")),
            client_name=to_text(row.get("client_name")),
            product_id=to_text(row.get("product_id")),
            product_name=to_text(row.get("product_name")),
            branch_id=to_text(row.get("branch_id")),
            branch_name=to_text(row.get("branch_name")),
            seller_name=to_text(row.get("seller_name")),
            revenue=to_number(row.get("revenue")),
            unit_count=to_number(row.get("units")),
            volume_liters=to_number_or_none(row.get("volume")),
            region_code=normalize_state(row.get("uf")),
        )

    async def get_filter_options(
        self,
        tenant_id: str,
        date_from: date,
        date_to: date,
        filters: Optional[DimensionFilter] = None,
    ) -> SalesFilterOptions:
        """Branch, client and product options present in the movements"""
        movements = await self.get_movements(tenant_id, date_from, date_to, filters)

        branches: Dict[str, str] = {}
        products: Dict[str, str] = {}
        client_labels: Dict[str, str] = {}
        client_counts: Counter = Counter()
        for movement in movements:
            branches[movement.branch_id] = movement.branch_name
            products[movement.product_id] = movement.product_name
            client_labels[movement.client_id] = client_labels.get(
                movement.client_id, movement.client_name
            )
            client_counts[movement.client_id] += 1

        top_clients = sorted(
            client_labels, key=lambda client_id: -client_counts[client_id]
        )[: self.client_option_limit]

        return SalesFilterOptions(
            branches=[FilterOption(value=k, label=v) for k, v in branches.items()],
            clients=[FilterOption(value=k, label=client_labels[k]) for k in top_clients],
            products=[FilterOption(value=k, label=v) for k, v in products.items()],
        )

    # Aggregates

    async def get_monthly_revenue(
        self,
        tenant_id: str,
        filters: Optional[DimensionFilter] = None,
        as_of: Optional[date] = None,
        force_refresh: bool = False,
    ) -> List[MonthlyRevenue]:
        filters = filters or DimensionFilter()
        as_of = as_of or date.today()

        async def compute():
            database_id, plan = await self._resolve_plan(tenant_id)
            sql = plan.monthly_revenue_query(as_of, CompiledFilters.from_filter(filters))
            rows = await self.proxy.execute(database_id, sql)
            return [
                MonthlyRevenue(
                    month=to_month(row.get("month")),
                    revenue=to_number(row.get("revenue")),
                    volume=to_number_or_none(row.get("volume")),
                ).model_dump()
                for row in rows
            ]

        data = await self._cached(
            tenant_id,
            "monthly_revenue",
            compute,
            force_refresh,
            **self._window_params(filters, as_of=as_of.replace(day=1).isoformat()),
        )
        return [MonthlyRevenue.model_validate(item) for item in data]

    async def get_client_goals(
        self,
        tenant_id: str,
        date_from: date,
        date_to: date,
        filters: Optional[DimensionFilter] = None,
        force_refresh: bool = False,
    ) -> ClientGoalsResponse:
        """
        Goal revenue per client for the window.

        ``goals_supported`` is False when the tenant has no recognizable goal
        table, which callers can tell apart from a tenant with no goals set.
        """
        filters = filters or DimensionFilter()

        async def compute():
            database_id, plan = await self._resolve_plan(tenant_id)
            sql = plan.client_goals_query(
                date_from, date_to, CompiledFilters.from_filter(filters)
            )
            if sql is None:
                logger.info(f"Tenant {tenant_id} has no recognizable goal table")
                return ClientGoalsResponse(goals_supported=False).model_dump()

            rows = await self.proxy.execute(database_id, sql)
            goals = [
                ClientGoalData(
                    client_id=to_text(row.get("client_id")),
                    goal_revenue=to_number_or_none(row.get("goal_revenue")),
                )
                for row in rows
            ]
            return ClientGoalsResponse(goals_supported=True, goals=goals).model_dump()

        data = await self._cached(
            tenant_id,
            "client_goals",
            compute,
            force_refresh,
            **self._window_params(
                filters, date_from=date_from.isoformat(), date_to=date_to.isoformat()
            ),
        )
        return ClientGoalsResponse.model_validate(data)

    async def _get_ranking(
        self,
        tenant_id: str,
        dimension: str,
        date_from: date,
        date_to: date,
        filters: Optional[DimensionFilter],
        force_refresh: bool,
    ) -> List[RankingItem]:
        filters = filters or DimensionFilter()

        async def compute():
            database_id, plan = await self._resolve_plan(tenant_id)
            sql = plan.ranking_query(
                dimension,
                date_from,
                date_to,
                CompiledFilters.from_filter(filters),
                self.ranking_limit,
            )
            rows = await self.proxy.execute(database_id, sql)
            return [
                RankingItem(
                    name=to_text(row.get("name")), value=to_number(row.get("value"))
                ).model_dump()
                for row in rows
            ]

        data = await self._cached(
            tenant_id,
            f"top_{dimension}s",
            compute,
            force_refresh,
            **self._window_params(
                filters, date_from=date_from.isoformat(), date_to=date_to.isoformat()
            ),
        )
        return [RankingItem.model_validate(item) for item in data]

    async def get_top_products(
        self,
        tenant_id: str,
        date_from: date,
        date_to: date,
        filters: Optional[DimensionFilter] = None,
        force_refresh: bool = False,
    ) -> List[RankingItem]:
        return await self._get_ranking(
            tenant_id, "product", date_from, date_to, filters, force_refresh
        )

    async def get_top_clients(
        self,
        tenant_id: str,
        date_from: date,
        date_to: date,
        filters: Optional[DimensionFilter] = None,
        force_refresh: bool = False,
    ) -> List[RankingItem]:
        return await self._get_ranking(
            tenant_id, "client", date_from, date_to, filters, force_refresh
        )

    async def get_revenue_by_state(
        self,
        tenant_id: str,
        filters: Optional[DimensionFilter] = None,
        as_of: Optional[date] = None,
        force_refresh: bool = False,
    ) -> List[RevenueByState]:
        filters = filters or DimensionFilter()
        as_of = as_of or date.today()

        async def compute():
            database_id, plan = await self._resolve_plan(tenant_id)
            sql = plan.revenue_by_state_query(as_of, CompiledFilters.from_filter(filters))
            if sql is None:
                logger.info(f"Tenant {tenant_id} has no client table; no state breakdown")
                return []
            rows = await self.proxy.execute(database_id, sql)
            return [
                RevenueByState(
                    state=to_text(row.get("state")), revenue=to_number(row.get("revenue"))
                ).model_dump()
                for row in rows
            ]

        data = await self._cached(
            tenant_id,
            "revenue_by_state",
            compute,
            force_refresh,
            **self._window_params(filters, as_of=as_of.replace(day=1).isoformat()),
        )
        return [RevenueByState.model_validate(item) for item in data]

    async def get_revenue_by_region(
        self,
        tenant_id: str,
        filters: Optional[DimensionFilter] = None,
        as_of: Optional[date] = None,
        force_refresh: bool = False,
    ) -> List[RevenueByRegion]:
        filters = filters or DimensionFilter()
        as_of = as_of or date.today()

        async def compute():
            database_id, plan = await self._resolve_plan(tenant_id)
            sql = plan.revenue_by_region_query(as_of, CompiledFilters.from_filter(filters))
            if sql is None:
                logger.info(f"Tenant {tenant_id} has no client table; no region breakdown")
                return []
            rows = await self.proxy.execute(database_id, sql)
            return [
                RevenueByRegion(
                    region=to_text(row.get("region")), revenue=to_number(row.get("revenue"))
                ).model_dump()
                for row in rows
            ]

        data = await self._cached(
            tenant_id,
            "revenue_by_region",
            compute,
            force_refresh,
            **self._window_params(filters, as_of=as_of.replace(day=1).isoformat()),
        )
        return [RevenueByRegion.model_validate(item) for item in data]

    async def get_clients(self, tenant_id: str) -> List[FilterOption]:
        """All clients of the tenant, for pickers"""

        async def compute():
            database_id, plan = await self._resolve_plan(tenant_id)
            rows = await self.proxy.execute(
                database_id, plan.client_list_query(), max_rows=self.max_rows
            )
            return [
                FilterOption(
                    value=to_text(row.get("id")), label=to_text(row.get("name"))
                ).model_dump()
                for row in rows
                if row.get("id") is not None
            ]

        data = await self._cached(tenant_id, "clients", compute)
        return [FilterOption.model_validate(item) for item in data]

    async def invalidate_tenant(self, tenant_id: str) -> int:
        """Forget probed capabilities and cached results of a tenant"""
        for database in await self.proxy.list_databases(tenant_id):
            self.prober.invalidate(database.id)
        return await self.cache.invalidate_tenant(tenant_id)
