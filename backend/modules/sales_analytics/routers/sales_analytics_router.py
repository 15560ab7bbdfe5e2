# backend/modules/sales_analytics/routers/sales_analytics_router.py

from fastapi import APIRouter, Depends, Query
from typing import List
from functools import lru_cache
import logging

from core.exceptions import APIError, ConflictError, NotFoundError, UpstreamServiceError

from ..exceptions import (
    SalesAnalyticsError,
    NotConfiguredError,
    NoActiveDatabaseError,
    QueryExecutionError,
)
from ..services.sales_kpi_service import SalesKPIService
from ..schemas.sales_schemas import (
    DateWindowRequest,
    TrailingWindowRequest,
    SalesMovement,
    OverviewMonthlyData,
    ClientGoalsResponse,
    MonthlyRevenue,
    RankingItem,
    RevenueByState,
    RevenueByRegion,
    FilterOption,
    SalesFilterOptions,
)

router = APIRouter(
    prefix="/sales-analytics/tenants/{tenant_id}", tags=["Sales Analytics"]
)
logger = logging.getLogger(__name__)


@lru_cache()
def get_sales_kpi_service() -> SalesKPIService:
    return SalesKPIService()


def to_api_error(exc: SalesAnalyticsError) -> APIError:
    """Map engine errors onto HTTP errors"""
    if isinstance(exc, NotConfiguredError):
        return NotFoundError(detail=exc.message, error_code=exc.error_code)
    if isinstance(exc, NoActiveDatabaseError):
        return ConflictError(detail=exc.message, error_code=exc.error_code)
    if isinstance(exc, QueryExecutionError):
        return UpstreamServiceError(detail=exc.message, error_code=exc.error_code)
    return APIError(status_code=500, detail=exc.message, error_code=exc.error_code)


@router.post("/overview", response_model=List[OverviewMonthlyData])
async def get_overview(
    tenant_id: str,
    request: TrailingWindowRequest,
    force_refresh: bool = Query(False, description="Bypass cached results"),
    service: SalesKPIService = Depends(get_sales_kpi_service),
):
    """
    Month-by-month KPIs for the 12 months ending with ``as_of``.

    Includes MoM / YoY growth, average ticket, leading-product share and
    goal attainment when the tenant has a goal table.
    """
    try:
        return await service.get_overview(
            tenant_id, request.filters, request.as_of, force_refresh=force_refresh
        )
    except SalesAnalyticsError as e:
        logger.error(f"Error getting overview for tenant {tenant_id}: {e.message}")
        raise to_api_error(e)


@router.post("/movements", response_model=List[SalesMovement])
async def get_movements(
    tenant_id: str,
    request: DateWindowRequest,
    force_refresh: bool = Query(False, description="Bypass cached results"),
    service: SalesKPIService = Depends(get_sales_kpi_service),
):
    """Row-level sales movements, newest first"""
    try:
        return await service.get_movements(
            tenant_id,
            request.date_from,
            request.date_to,
            request.filters,
            force_refresh=force_refresh,
        )
    except SalesAnalyticsError as e:
        logger.error(f"Error getting movements for tenant {tenant_id}: {e.message}")
        raise to_api_error(e)


@router.post("/monthly-revenue", response_model=List[MonthlyRevenue])
async def get_monthly_revenue(
    tenant_id: str,
    request: TrailingWindowRequest,
    force_refresh: bool = Query(False, description="Bypass cached results"),
    service: SalesKPIService = Depends(get_sales_kpi_service),
):
    try:
        return await service.get_monthly_revenue(
            tenant_id, request.filters, request.as_of, force_refresh=force_refresh
        )
    except SalesAnalyticsError as e:
        logger.error(f"Error getting monthly revenue for tenant {tenant_id}: {e.message}")
        raise to_api_error(e)


@router.post("/client-goals", response_model=ClientGoalsResponse)
async def get_client_goals(
    tenant_id: str,
    request: DateWindowRequest,
    force_refresh: bool = Query(False, description="Bypass cached results"),
    service: SalesKPIService = Depends(get_sales_kpi_service),
):
    """
    Goal revenue per client.

    ``goals_supported`` is false when the tenant database has no goal table
    with recognizable columns.
    """
    try:
        return await service.get_client_goals(
            tenant_id,
            request.date_from,
            request.date_to,
            request.filters,
            force_refresh=force_refresh,
        )
    except SalesAnalyticsError as e:
        logger.error(f"Error getting client goals for tenant {tenant_id}: {e.message}")
        raise to_api_error(e)


@router.post("/top-products", response_model=List[RankingItem])
async def get_top_products(
    tenant_id: str,
    request: DateWindowRequest,
    service: SalesKPIService = Depends(get_sales_kpi_service),
):
    try:
        return await service.get_top_products(
            tenant_id, request.date_from, request.date_to, request.filters
        )
    except SalesAnalyticsError as e:
        logger.error(f"Error getting top products for tenant {tenant_id}: {e.message}")
        raise to_api_error(e)


@router.post("/top-clients", response_model=List[RankingItem])
async def get_top_clients(
    tenant_id: str,
    request: DateWindowRequest,
    service: SalesKPIService = Depends(get_sales_kpi_service),
):
    try:
        return await service.get_top_clients(
            tenant_id, request.date_from, request.date_to, request.filters
        )
    except SalesAnalyticsError as e:
        logger.error(f"Error getting top clients for tenant {tenant_id}: {e.message}")
        raise to_api_error(e)


@router.post("/revenue-by-state", response_model=List[RevenueByState])
async def get_revenue_by_state(
    tenant_id: str,
    request: TrailingWindowRequest,
    service: SalesKPIService = Depends(get_sales_kpi_service),
):
    """Revenue per state over the last 12 months; empty without a client table"""
    try:
        return await service.get_revenue_by_state(
            tenant_id, request.filters, request.as_of
        )
    except SalesAnalyticsError as e:
        logger.error(f"Error getting revenue by state for tenant {tenant_id}: {e.message}")
        raise to_api_error(e)


@router.post("/revenue-by-region", response_model=List[RevenueByRegion])
async def get_revenue_by_region(
    tenant_id: str,
    request: TrailingWindowRequest,
    service: SalesKPIService = Depends(get_sales_kpi_service),
):
    try:
        return await service.get_revenue_by_region(
            tenant_id, request.filters, request.as_of
        )
    except SalesAnalyticsError as e:
        logger.error(f"Error getting revenue by region for tenant {tenant_id}: {e.message}")
        raise to_api_error(e)


@router.get("/clients", response_model=List[FilterOption])
async def get_clients(
    tenant_id: str,
    service: SalesKPIService = Depends(get_sales_kpi_service),
):
    try:
        return await service.get_clients(tenant_id)
    except SalesAnalyticsError as e:
        logger.error(f"Error listing clients for tenant {tenant_id}: {e.message}")
        raise to_api_error(e)


@router.post("/filter-options", response_model=SalesFilterOptions)
async def get_filter_options(
    tenant_id: str,
    request: DateWindowRequest,
    service: SalesKPIService = Depends(get_sales_kpi_service),
):
    """Branch, client (most frequent first) and product options for the window"""
    try:
        return await service.get_filter_options(
            tenant_id, request.date_from, request.date_to, request.filters
        )
    except SalesAnalyticsError as e:
        logger.error(f"Error getting filter options for tenant {tenant_id}: {e.message}")
        raise to_api_error(e)


@router.delete("/capabilities")
async def invalidate_capabilities(
    tenant_id: str,
    service: SalesKPIService = Depends(get_sales_kpi_service),
):
    """Forget the probed schema and cached results of a tenant"""
    try:
        invalidated = await service.invalidate_tenant(tenant_id)
    except SalesAnalyticsError as e:
        logger.error(f"Error invalidating caches for tenant {tenant_id}: {e.message}")
        raise to_api_error(e)
    return {"tenant_id": tenant_id, "invalidated_results": invalidated}
