# backend/modules/sales_analytics/routers/__init__.py

from .sales_analytics_router import router as sales_analytics_router

__all__ = ["sales_analytics_router"]
