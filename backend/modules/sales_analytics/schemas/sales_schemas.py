# backend/modules/sales_analytics/schemas/sales_schemas.py

from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional, List, Dict
from datetime import date


class DimensionFilter(BaseModel):
    """Identifier lists per dimension; empty or missing means unrestricted"""

    branch_ids: Optional[List[str]] = Field(None, description="Filter by branch ids")
    client_ids: Optional[List[str]] = Field(None, description="Filter by client ids")
    product_ids: Optional[List[str]] = Field(None, description="Filter by product ids")
    group_ids: Optional[List[str]] = Field(None, description="Filter by client groups")
    regional_ids: Optional[List[str]] = Field(
        None, description="Filter by the regional of the client group"
    )

    @field_validator(
        "branch_ids", "client_ids", "product_ids", "group_ids", "regional_ids",
        mode="before",
    )
    @classmethod
    def coerce_identifiers(cls, v):
        if v is None:
            return v
        if isinstance(v, (str, int)):
            v = [v]
        return [str(item) for item in v]

    def cache_key_params(self) -> Dict[str, List[str]]:
        """Order-insensitive representation used for cache keys"""
        return {
            name: sorted(values)
            for name, values in self.model_dump().items()
            if values
        }


class DateWindowRequest(BaseModel):
    """Date window plus dimension filters"""

    date_from: date = Field(..., description="Start date (inclusive)")
    date_to: date = Field(..., description="End date (inclusive)")
    filters: DimensionFilter = Field(default_factory=DimensionFilter)

    @model_validator(mode="after")
    def validate_date_range(self):
        if self.date_to < self.date_from:
            raise ValueError("date_to must be after date_from")
        return self


class TrailingWindowRequest(BaseModel):
    """Filters for queries anchored on a reference month"""

    as_of: Optional[date] = Field(
        None, description="Reference date; its month is the last month returned"
    )
    filters: DimensionFilter = Field(default_factory=DimensionFilter)


class SalesMovement(BaseModel):
    """One sold line item"""

    sale_date: str
    client_id: str
    client_name: str
    product_id: str
    product_name: str
    branch_id: str
    branch_name: str
    seller_name: str = ""
    revenue: float
    unit_count: float
    volume_liters: Optional[float] = None
    region_code: Optional[str] = None


class OverviewMonthlyData(BaseModel):
    """Month-by-month KPIs with MoM / YoY comparisons"""

    month: str = Field(description="Calendar month as YYYY-MM")
    revenue: float
    previous_month_revenue: Optional[float] = None
    revenue_mom_growth: Optional[float] = None
    previous_year_revenue: Optional[float] = None
    revenue_yoy_growth: Optional[float] = None
    volume_liters: float
    previous_month_volume: Optional[float] = None
    volume_mom_growth: Optional[float] = None
    previous_year_volume: Optional[float] = None
    volume_yoy_growth: Optional[float] = None
    active_clients: int
    average_ticket: Optional[float] = None
    leading_product_share: Optional[float] = Field(
        None, description="Revenue share of the top product, 0..1"
    )
    goal_revenue: Optional[float] = None
    goal_attainment: Optional[float] = None


class ClientGoalData(BaseModel):
    client_id: str
    goal_revenue: Optional[float] = None


class ClientGoalsResponse(BaseModel):
    """Goals per client; goals_supported is False when no goal table is recognized"""

    goals_supported: bool
    goals: List[ClientGoalData] = Field(default_factory=list)


class MonthlyRevenue(BaseModel):
    month: str
    revenue: float
    volume: Optional[float] = None


class RankingItem(BaseModel):
    name: str
    value: float


class RevenueByState(BaseModel):
    state: str
    revenue: float


class RevenueByRegion(BaseModel):
    region: str
    revenue: float


class FilterOption(BaseModel):
    value: str
    label: str


class SalesFilterOptions(BaseModel):
    """Picker options derived from row-level movements"""

    branches: List[FilterOption] = Field(default_factory=list)
    clients: List[FilterOption] = Field(default_factory=list)
    products: List[FilterOption] = Field(default_factory=list)
