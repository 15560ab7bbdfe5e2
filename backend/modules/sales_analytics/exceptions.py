# backend/modules/sales_analytics/exceptions.py

"""
Custom exceptions for the sales analytics module.

Configuration and execution failures are fatal to a request; probe and
normalization problems never raise.
"""

from typing import Optional, Dict, Any


class SalesAnalyticsError(Exception):
    """Base exception for all sales analytics errors"""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class NotConfiguredError(SalesAnalyticsError):
    """Raised when a tenant has no external database registered"""

    def __init__(self, tenant_id: str):
        message = f"No database configured for tenant '{tenant_id}'"
        super().__init__(message, "NOT_CONFIGURED", {"tenant_id": tenant_id})


class NoActiveDatabaseError(SalesAnalyticsError):
    """Raised when none of the tenant's databases is marked active"""

    def __init__(self, tenant_id: str, registered: int = 0):
        message = f"No active database found for tenant '{tenant_id}'"
        details = {"tenant_id": tenant_id, "registered": registered}
        super().__init__(message, "NO_ACTIVE_DATABASE", details)


class QueryExecutionError(SalesAnalyticsError):
    """Raised when the proxy reports a failure; the message is kept verbatim"""

    def __init__(self, message: str, database_id: Optional[str] = None):
        super().__init__(
            message, "EXECUTION_FAILED", {"database_id": database_id}
        )
