# backend/modules/sales_analytics/__init__.py

"""
Sales Analytics Module - KPIs over tenant-hosted databases

Computes month-by-month sales KPIs for tenants whose sales data lives in an
external PostgreSQL database reached through a database proxy. The schema
of each tenant database is probed to choose between the normalized layout
(movement header + line items) and the legacy flat movements table.

Key Features:
- Monthly overview with MoM / YoY growth, average ticket, leading-product
  share and goal attainment
- Row-level movements, rankings and revenue by state / region
- Per-client goals when a recognizable goal table exists
- Result cache with in-flight deduplication

Components:
- Services: capability probing, query plans, SQL building, proxy client
- Schemas: Pydantic models for API requests/responses
- Routers: FastAPI endpoints
"""

__version__ = "1.0.0"
