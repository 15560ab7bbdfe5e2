import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.config import settings
from core.cache import cache_service
from core.exceptions import register_exception_handlers

# ========== Sales Analytics ==========
from modules.sales_analytics.routers import sales_analytics_router
from modules.sales_analytics.routers.sales_analytics_router import get_sales_kpi_service

logging.basicConfig(
    level=settings.log_level,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Sales Analytics API",
    description="""
    Sales KPIs computed over tenant-hosted databases.

    ## Features

    * **Monthly Overview** - Revenue, volume, active clients, average ticket,
      leading-product share and goal attainment with MoM / YoY growth
    * **Movements** - Row-level sales movements and dashboard filter options
    * **Rankings** - Top products and top clients by revenue
    * **Geography** - Revenue by state and by macro-region
    """,
    version="1.0.0",
)

# Register exception handlers for consistent error responses
register_exception_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(sales_analytics_router)


@app.on_event("shutdown")
async def shutdown_event():
    """Close outbound connections"""
    await get_sales_kpi_service().proxy.close()
    if hasattr(cache_service, "close"):
        await cache_service.close()


@app.get("/")
def read_root():
    return {"message": "Sales analytics backend is running"}


@app.get("/health")
def health():
    return {"status": "ok", "environment": settings.environment}
