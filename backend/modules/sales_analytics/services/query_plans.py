# backend/modules/sales_analytics/services/query_plans.py

"""
Query plans for the two known tenant schema layouts.

A plan is selected once per request from the probed capabilities. Each plan
only knows how to produce its *base* rows: one row per sold line item with a
fixed set of columns. Every logical query is written once against that base,
so the layouts never leak into the aggregations.

Base columns:
    sale_date, client_id, client_name, product_id, product_name,
    branch_id, branch_name, seller_name, revenue, units, volume, uf
"""

import logging
from abc import ABC, abstractmethod
from datetime import date, timedelta
from typing import Dict, List, Optional

from ..constants import (
    MOVEMENT_HEADER_TABLE,
    MOVEMENT_ITEM_TABLE,
    CLIENT_TABLE,
    BRANCH_TABLE,
    PRODUCT_TABLE,
    GOAL_TABLE,
    GROUP_TABLE,
    GROUP_MAPPING_TABLE,
    FLAT_MOVEMENTS_TABLE,
    REGION_STATES,
    UNKNOWN_REGION,
    TRAILING_MONTHS,
)
from .capability_prober import CapabilitySet, GoalTableSchema
from .filter_compiler import CompiledFilters, and_clause, quote_identifier, quote_literal

logger = logging.getLogger(__name__)


def shift_months(value: date, months: int) -> date:
    """First day of the month ``months`` away from ``value``'s month"""
    index = value.year * 12 + (value.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


def month_end(value: date) -> date:
    return shift_months(value, 1) - timedelta(days=1)


def date_literal(value: date) -> str:
    return f"DATE '{value.isoformat()}'"


def trailing_window(as_of: date, months: int = TRAILING_MONTHS):
    """(first day, last day) of the ``months`` calendar months ending with as_of's month"""
    return shift_months(as_of, -(months - 1)), month_end(as_of)


def goal_month_expression(schema: GoalTableSchema, alias: str = "mt") -> str:
    """SQL expression truncating the goal month column to a month-start date"""
    column = f"{alias}.{quote_identifier(schema.month_column)}"
    if schema.month_is_temporal:
        return f"date_trunc('month', {column})::date"

    text = f"{column}::text"
    return (
        "CASE"
        f" WHEN {text} ~ '^\\d{{4}}-\\d{{2}}-\\d{{2}}$'"
        f" THEN date_trunc('month', {text}::date)::date"
        f" WHEN {text} ~ '^\\d{{4}}-\\d{{2}}$'"
        f" THEN to_date({text} || '-01', 'YYYY-MM-DD')"
        " ELSE NULL END"
    )


def region_case_expression(state_column: str) -> str:
    branches = []
    for region, states in REGION_STATES.items():
        listed = ", ".join(quote_literal(state) for state in states)
        branches.append(f"WHEN {state_column} IN ({listed}) THEN {quote_literal(region)}")
    return f"CASE {' '.join(branches)} ELSE {quote_literal(UNKNOWN_REGION)} END"


class QueryPlan(ABC):
    """SQL generation for one tenant schema layout"""

    name = "abstract"

    def __init__(self, capabilities: CapabilitySet):
        self.capabilities = capabilities

    @property
    @abstractmethod
    def client_key(self) -> str:
        """Expression holding the client id of a base row, before projection"""

    @property
    @abstractmethod
    def filter_columns(self) -> Dict[str, str]:
        """Columns the branch/client/product filters apply to"""

    @abstractmethod
    def _base_select(self, date_from: date, date_to: date) -> str:
        """SELECT ... FROM ... WHERE <date window> for the layout"""

    @property
    def has_state_column(self) -> bool:
        return self.capabilities.has_clients

    def group_predicates(self, filters: CompiledFilters) -> List[str]:
        """Semi-join on the client-to-group mapping for group/regional filters"""
        if not filters.has_groups:
            return []
        if not self.capabilities.supports_group_filters:
            logger.warning(
                "Group filters requested but group tables are missing; ignoring them"
            )
            return []

        conditions = [f"gr.cliente_id::text = {self.client_key}"]
        if filters.groups is not None:
            conditions.append(f"gr.grupo_id::text IN {filters.groups}")
        if filters.regionals is not None:
            conditions.append(f"g.regional_id::text IN {filters.regionals}")
        return [
            "EXISTS (SELECT 1"
            f" FROM public.{GROUP_MAPPING_TABLE} gr"
            f" JOIN public.{GROUP_TABLE} g ON g.id::text = gr.grupo_id::text"
            f" WHERE {' AND '.join(conditions)})"
        ]

    def base_query(self, date_from: date, date_to: date, filters: CompiledFilters) -> str:
        """Line-item rows inside the window with every filter applied"""
        predicates = filters.predicates(self.filter_columns) + self.group_predicates(filters)
        return self._base_select(date_from, date_to) + and_clause(predicates)

    # Logical queries

    def movements_query(
        self, date_from: date, date_to: date, filters: CompiledFilters, limit: int
    ) -> str:
        return (
            "SELECT to_char(b.sale_date, 'YYYY-MM-DD') AS sale_date,"
            " b.client_id, b.client_name, b.product_id, b.product_name,"
            " b.branch_id, b.branch_name, b.seller_name,"
            " b.revenue, b.units, b.volume, b.uf"
            f" FROM ({self.base_query(date_from, date_to, filters)}) b"
            " ORDER BY b.sale_date DESC"
            f" LIMIT {int(limit)}"
        )

    def monthly_revenue_query(self, as_of: date, filters: CompiledFilters) -> str:
        date_from, date_to = trailing_window(as_of)
        return (
            "SELECT to_char(date_trunc('month', b.sale_date), 'YYYY-MM') AS month,"
            " sum(b.revenue) AS revenue, sum(b.volume) AS volume"
            f" FROM ({self.base_query(date_from, date_to, filters)}) b"
            " GROUP BY 1 ORDER BY 1"
        )

    def ranking_query(
        self,
        dimension: str,
        date_from: date,
        date_to: date,
        filters: CompiledFilters,
        limit: int,
    ) -> str:
        """Top ``dimension`` ('product' or 'client') entries by revenue"""
        if dimension not in ("product", "client"):
            raise ValueError(f"Unknown ranking dimension: {dimension}")
        return (
            f"SELECT b.{dimension}_name AS name, sum(b.revenue) AS value"
            f" FROM ({self.base_query(date_from, date_to, filters)}) b"
            f" GROUP BY b.{dimension}_id, b.{dimension}_name"
            " ORDER BY value DESC"
            f" LIMIT {int(limit)}"
        )

    def revenue_by_state_query(self, as_of: date, filters: CompiledFilters) -> Optional[str]:
        if not self.has_state_column:
            return None
        date_from, date_to = trailing_window(as_of)
        return (
            "SELECT b.uf AS state, sum(b.revenue) AS revenue"
            f" FROM ({self.base_query(date_from, date_to, filters)}) b"
            " WHERE b.uf IS NOT NULL AND b.uf <> ''"
            " GROUP BY b.uf ORDER BY revenue DESC"
        )

    def revenue_by_region_query(self, as_of: date, filters: CompiledFilters) -> Optional[str]:
        if not self.has_state_column:
            return None
        date_from, date_to = trailing_window(as_of)
        return (
            "SELECT r.region, sum(r.revenue) AS revenue FROM ("
            f"SELECT {region_case_expression('b.uf')} AS region, b.revenue"
            f" FROM ({self.base_query(date_from, date_to, filters)}) b"
            ") r GROUP BY r.region ORDER BY revenue DESC"
        )

    def client_goals_query(
        self, date_from: date, date_to: date, filters: CompiledFilters
    ) -> Optional[str]:
        """Goal per client, summed over the months in which the client bought"""
        schema = self.capabilities.goal_schema
        if schema is None:
            return None

        goal_filter = ""
        if filters.branches is not None and schema.branch_column:
            goal_filter = (
                f" WHERE mt.{quote_identifier(schema.branch_column)}::text"
                f" IN {filters.branches}"
            )

        return (
            "SELECT cm.client_id, sum(g.goal_value) AS goal_revenue FROM ("
            "SELECT DISTINCT b.client_id,"
            " date_trunc('month', b.sale_date)::date AS month"
            f" FROM ({self.base_query(date_from, date_to, filters)}) b"
            ") cm LEFT JOIN ("
            f"SELECT mt.{quote_identifier(schema.client_column)}::text AS client_id,"
            f" {goal_month_expression(schema)} AS month,"
            f" mt.{quote_identifier(schema.value_column)} AS goal_value"
            f" FROM public.{GOAL_TABLE} mt"
            + goal_filter
            + ") g ON g.client_id = cm.client_id AND g.month = cm.month"
            " GROUP BY cm.client_id ORDER BY cm.client_id"
        )

    def goal_source_query(self, filters: CompiledFilters) -> Optional[str]:
        """
        Goal rows (month, goal_value) restricted by the filters the goal
        table can honour. Client filters suppress goals entirely since goals
        are not assigned at that grain; product filters never apply.
        """
        schema = self.capabilities.goal_schema
        if schema is None or filters.has_clients:
            return None

        predicates = []
        if filters.branches is not None and schema.branch_column:
            predicates.append(
                f"mt.{quote_identifier(schema.branch_column)}::text IN {filters.branches}"
            )
        if schema.group_column:
            group_column = f"mt.{quote_identifier(schema.group_column)}::text"
            if filters.groups is not None:
                predicates.append(f"{group_column} IN {filters.groups}")
            if filters.regionals is not None and self.capabilities.has_groups:
                predicates.append(
                    f"{group_column} IN (SELECT g.id::text FROM public.{GROUP_TABLE} g"
                    f" WHERE g.regional_id::text IN {filters.regionals})"
                )

        return (
            f"SELECT {goal_month_expression(schema)} AS month,"
            f" mt.{quote_identifier(schema.value_column)} AS goal_value"
            f" FROM public.{GOAL_TABLE} mt"
            " WHERE true" + and_clause(predicates)
        )

    @abstractmethod
    def client_list_query(self) -> str:
        """Distinct (id, name) pairs for client pickers"""

    def _client_table_list_query(self) -> str:
        return (
            "SELECT c.id::text AS id,"
            " coalesce(c.razao_social, c.nome, c.id::text) AS name"
            f" FROM public.{CLIENT_TABLE} c ORDER BY name"
        )


class NormalizedPlan(QueryPlan):
    """Movement header joined with line items, enriched by lookup tables when present"""

    name = "normalized"

    @property
    def client_key(self) -> str:
        return "m.cod_cliente::text"

    @property
    def filter_columns(self) -> Dict[str, str]:
        return {
            "branches": "m.cod_filial::text",
            "clients": "m.cod_cliente::text",
            "products": "mi.id_produto::text",
        }

    def _base_select(self, date_from: date, date_to: date) -> str:
        caps = self.capabilities
        joins = []

        if caps.has_clients:
            client_name = "coalesce(c.razao_social, c.nome, m.cod_cliente::text)"
            state = "upper(trim(c.endereco_uf))"
            joins.append(
                f" LEFT JOIN public.{CLIENT_TABLE} c ON c.id::text = m.cod_cliente::text"
            )
        else:
            client_name = "m.cod_cliente::text"
            state = "NULL::text"

        if caps.has_branches:
            branch_name = "coalesce(f.nome, m.cod_filial::text)"
            joins.append(
                f" LEFT JOIN public.{BRANCH_TABLE} f ON f.id::text = m.cod_filial::text"
            )
        else:
            branch_name = "m.cod_filial::text"

        if caps.has_products:
            product_name = "coalesce(p.nome, mi.id_produto::text)"
            joins.append(
                f" LEFT JOIN public.{PRODUCT_TABLE} p ON p.id::text = mi.id_produto::text"
            )
        else:
            product_name = "mi.id_produto::text"

        return (
            "SELECT m.dt_mov::date AS sale_date,"
            f" m.cod_cliente::text AS client_id, {client_name} AS client_name,"
            f" mi.id_produto::text AS product_id, {product_name} AS product_name,"
            f" m.cod_filial::text AS branch_id, {branch_name} AS branch_name,"
            " ''::text AS seller_name,"
            " coalesce(mi.vr_venda, 0) AS revenue,"
            " coalesce(mi.qt_itens_venda, 0) AS units,"
            " mi.qtd_litros AS volume,"
            f" {state} AS uf"
            f" FROM public.{MOVEMENT_HEADER_TABLE} m"
            f" JOIN public.{MOVEMENT_ITEM_TABLE} mi ON mi.id_movimentacao = m.id_movimentacao"
            + "".join(joins)
            + f" WHERE m.dt_mov::date >= {date_literal(date_from)}"
            f" AND m.dt_mov::date <= {date_literal(date_to)}"
        )

    def client_list_query(self) -> str:
        if self.capabilities.has_clients:
            return self._client_table_list_query()
        return (
            "SELECT DISTINCT m.cod_cliente::text AS id, m.cod_cliente::text AS name"
            f" FROM public.{MOVEMENT_HEADER_TABLE} m"
            " WHERE m.cod_cliente IS NOT NULL ORDER BY name"
        )


class FallbackPlan(QueryPlan):
    """Legacy flat movements table with denormalized names"""

    name = "fallback"

    @property
    def client_key(self) -> str:
        return "mv.cod_cliente::text"

    @property
    def filter_columns(self) -> Dict[str, str]:
        return {
            "branches": "mv.cod_filial::text",
            "clients": "mv.cod_cliente::text",
            "products": "mv.cod_produto::text",
        }

    def _base_select(self, date_from: date, date_to: date) -> str:
        if self.capabilities.has_clients:
            state = "upper(trim(c.endereco_uf))"
            join = f" LEFT JOIN public.{CLIENT_TABLE} c ON c.id::text = mv.cod_cliente::text"
        else:
            state = "NULL::text"
            join = ""

        return (
            "SELECT mv.dt_mov::date AS sale_date,"
            " mv.cod_cliente::text AS client_id,"
            " coalesce(mv.nome_cliente, mv.cod_cliente::text) AS client_name,"
            " mv.cod_produto::text AS product_id,"
            " coalesce(mv.nome_produto, mv.cod_produto::text) AS product_name,"
            " mv.cod_filial::text AS branch_id,"
            " coalesce(mv.nome_filial, mv.cod_filial::text) AS branch_name,"
            " coalesce(mv.nome_vendedor, '') AS seller_name,"
            " coalesce(mv.vr_venda, 0) AS revenue,"
            " coalesce(mv.qtd_itens_venda, 0) AS units,"
            " mv.qtd_litros AS volume,"
            f" {state} AS uf"
            f" FROM public.{FLAT_MOVEMENTS_TABLE} mv"
            + join
            + f" WHERE mv.dt_mov::date >= {date_literal(date_from)}"
            f" AND mv.dt_mov::date <= {date_literal(date_to)}"
        )

    def client_list_query(self) -> str:
        if self.capabilities.has_clients:
            return self._client_table_list_query()
        return (
            "SELECT DISTINCT mv.cod_cliente::text AS id,"
            " coalesce(mv.nome_cliente, mv.cod_cliente::text) AS name"
            f" FROM public.{FLAT_MOVEMENTS_TABLE} mv"
            " WHERE mv.cod_cliente IS NOT NULL ORDER BY name"
        )


def select_plan(capabilities: CapabilitySet) -> QueryPlan:
    """Normalized plan when header and line items both exist, fallback otherwise"""
    if capabilities.is_normalized:
        return NormalizedPlan(capabilities)
    return FallbackPlan(capabilities)
