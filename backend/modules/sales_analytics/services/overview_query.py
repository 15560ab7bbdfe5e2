# backend/modules/sales_analytics/services/overview_query.py

"""
Monthly overview statement.

Builds a single SELECT computing month-by-month KPIs as a pipeline of
aliased subqueries (the proxy rejects WITH clauses):

    base -> monthly totals -> per-product totals -> leading-product share
         -> goal totals -> KPI stage (lags over the month axis) -> final

Two years of source rows are read so every output month has a YoY
baseline; only the last 12 months are returned.
"""

import logging
from datetime import date
from typing import Optional

from ..constants import OVERVIEW_OUTPUT_MONTHS, OVERVIEW_SOURCE_MONTHS
from .filter_compiler import CompiledFilters
from .query_plans import QueryPlan, date_literal, month_end, shift_months

logger = logging.getLogger(__name__)


def guarded_ratio(numerator: str, denominator: str) -> str:
    """numerator / denominator, NULL when the denominator is NULL or zero"""
    return (
        f"CASE WHEN {denominator} IS NULL OR {denominator} = 0 THEN NULL"
        f" ELSE {numerator} / {denominator} END"
    )


def guarded_share(numerator: str, denominator: str) -> str:
    """Ratio clamped to [0, 1]; NULL when the denominator is NULL or zero"""
    return (
        f"CASE WHEN {denominator} IS NULL OR {denominator} = 0 THEN NULL"
        f" ELSE least(1, greatest(0, {numerator} / {denominator})) END"
    )


def guarded_growth(current: str, baseline: str) -> str:
    return (
        f"CASE WHEN {baseline} IS NULL OR {baseline} = 0 THEN NULL"
        f" ELSE {current} / {baseline} - 1 END"
    )


class OverviewQueryBuilder:
    """Assembles the staged monthly overview statement for a plan"""

    def __init__(self, plan: QueryPlan, as_of: date, filters: CompiledFilters):
        self.plan = plan
        self.last_month = shift_months(as_of, 0)
        self.first_source_month = shift_months(as_of, -(OVERVIEW_SOURCE_MONTHS - 1))
        self.first_output_month = shift_months(as_of, -(OVERVIEW_OUTPUT_MONTHS - 1))
        self.filters = filters

    def base_stage(self) -> str:
        return self.plan.base_query(
            self.first_source_month, month_end(self.last_month), self.filters
        )

    def monthly_totals_stage(self) -> str:
        return (
            "SELECT date_trunc('month', b.sale_date)::date AS month,"
            " sum(b.revenue) AS revenue,"
            " sum(b.volume) AS volume,"
            " count(DISTINCT b.client_id) AS active_clients"
            f" FROM ({self.base_stage()}) b"
            " GROUP BY 1"
        )

    def product_totals_stage(self) -> str:
        return (
            "SELECT date_trunc('month', b.sale_date)::date AS month,"
            " b.product_id, sum(b.revenue) AS revenue"
            f" FROM ({self.base_stage()}) b"
            " GROUP BY 1, 2"
        )

    def leading_product_stage(self) -> str:
        # greatest/least skip NULLs, so the clamp stays inside the guard
        share = guarded_share("max(pt.revenue)", "sum(pt.revenue)")
        return (
            f"SELECT pt.month, {share} AS leading_product_share"
            f" FROM ({self.product_totals_stage()}) pt"
            " GROUP BY pt.month"
        )

    def goal_totals_stage(self) -> Optional[str]:
        source = self.plan.goal_source_query(self.filters)
        if source is None:
            return None
        return (
            "SELECT g.month, sum(g.goal_value) AS goal_revenue"
            f" FROM ({source}) g"
            " WHERE g.month IS NOT NULL"
            " GROUP BY g.month"
        )

    def month_axis_stage(self) -> str:
        return (
            "SELECT generate_series("
            f"{date_literal(self.first_source_month)}, {date_literal(self.last_month)},"
            " interval '1 month')::date AS month"
        )

    def lagged_stage(self) -> str:
        """Dense month axis with 1- and 12-month baselines"""
        return (
            "SELECT t.month, t.revenue, t.volume, t.active_clients,"
            " lag(t.revenue, 1) OVER w AS previous_month_revenue,"
            " lag(t.revenue, 12) OVER w AS previous_year_revenue,"
            " lag(t.volume, 1) OVER w AS previous_month_volume,"
            " lag(t.volume, 12) OVER w AS previous_year_volume"
            " FROM ("
            "SELECT ms.month,"
            " coalesce(tm.revenue, 0) AS revenue,"
            " coalesce(tm.volume, 0) AS volume,"
            " coalesce(tm.active_clients, 0) AS active_clients"
            f" FROM ({self.month_axis_stage()}) ms"
            f" LEFT JOIN ({self.monthly_totals_stage()}) tm ON tm.month = ms.month"
            ") t"
            " WINDOW w AS (ORDER BY t.month)"
        )

    def kpi_stage(self) -> str:
        return (
            "SELECT l.*,"
            f" {guarded_growth('l.revenue', 'l.previous_month_revenue')} AS revenue_mom_growth,"
            f" {guarded_growth('l.revenue', 'l.previous_year_revenue')} AS revenue_yoy_growth,"
            f" {guarded_growth('l.volume', 'l.previous_month_volume')} AS volume_mom_growth,"
            f" {guarded_growth('l.volume', 'l.previous_year_volume')} AS volume_yoy_growth"
            f" FROM ({self.lagged_stage()}) l"
        )

    def build(self) -> str:
        goal_stage = self.goal_totals_stage()
        if goal_stage is not None:
            goal_column = "gt.goal_revenue"
            goal_join = f" LEFT JOIN ({goal_stage}) gt ON gt.month = k.month"
        else:
            goal_column = "NULL::numeric"
            goal_join = ""

        sql = (
            "SELECT to_char(k.month, 'YYYY-MM') AS month,"
            " k.revenue, k.previous_month_revenue, k.revenue_mom_growth,"
            " k.previous_year_revenue, k.revenue_yoy_growth,"
            " k.volume, k.previous_month_volume, k.volume_mom_growth,"
            " k.previous_year_volume, k.volume_yoy_growth,"
            " k.active_clients,"
            f" {guarded_ratio('k.revenue', 'k.active_clients')} AS average_ticket,"
            " lp.leading_product_share,"
            f" {goal_column} AS goal_revenue,"
            f" {guarded_ratio('k.revenue', goal_column)} AS goal_attainment"
            f" FROM ({self.kpi_stage()}) k"
            f" LEFT JOIN ({self.leading_product_stage()}) lp ON lp.month = k.month"
            + goal_join
            + f" WHERE k.month >= {date_literal(self.first_output_month)}"
            " ORDER BY k.month"
        )
        logger.debug(
            f"Built {self.plan.name} overview query "
            f"({self.first_output_month} to {self.last_month}, goals={goal_stage is not None})"
        )
        return sql


def build_overview_query(plan: QueryPlan, as_of: date, filters: CompiledFilters) -> str:
    return OverviewQueryBuilder(plan, as_of, filters).build()
