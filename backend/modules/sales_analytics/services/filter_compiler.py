# backend/modules/sales_analytics/services/filter_compiler.py

"""
Compiles dimension filters into inlined SQL literal lists.

The proxy executes plain SQL text without bound parameters, so identifier
values are embedded as quoted literals with single quotes doubled.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional, Dict

from ..schemas.sales_schemas import DimensionFilter


def quote_literal(value) -> str:
    """Quote a value as a SQL string literal"""
    return "'" + str(value).replace("'", "''") + "'"


def quote_identifier(name: str) -> str:
    """Quote a column or table name discovered at runtime"""
    return '"' + str(name).replace('"', '""') + '"'


def compile_in_list(values: Optional[Iterable]) -> Optional[str]:
    """
    Compile identifiers into a parenthesized literal list for ``IN``.

    Returns None when there is nothing to restrict on; an empty list never
    produces an always-false predicate.
    """
    if not values:
        return None
    items = [quote_literal(value) for value in values]
    if not items:
        return None
    return "(" + ", ".join(items) + ")"


@dataclass(frozen=True)
class CompiledFilters:
    """Compiled IN-lists for each filter dimension"""

    branches: Optional[str] = None
    clients: Optional[str] = None
    products: Optional[str] = None
    groups: Optional[str] = None
    regionals: Optional[str] = None

    @classmethod
    def from_filter(cls, filters: Optional[DimensionFilter]) -> "CompiledFilters":
        if filters is None:
            return cls()
        return cls(
            branches=compile_in_list(filters.branch_ids),
            clients=compile_in_list(filters.client_ids),
            products=compile_in_list(filters.product_ids),
            groups=compile_in_list(filters.group_ids),
            regionals=compile_in_list(filters.regional_ids),
        )

    @property
    def has_clients(self) -> bool:
        return self.clients is not None

    @property
    def has_groups(self) -> bool:
        return self.groups is not None or self.regionals is not None

    def predicates(self, columns: Dict[str, str]) -> List[str]:
        """
        Render ``column IN (...)`` predicates for the dimensions present.

        ``columns`` maps dimension names (branches, clients, products, groups,
        regionals) to the SQL expression to filter on. Dimensions without a
        column mapping are skipped.
        """
        rendered = []
        for dimension in ("branches", "clients", "products", "groups", "regionals"):
            compiled = getattr(self, dimension)
            column = columns.get(dimension)
            if compiled is not None and column:
                rendered.append(f"{column} IN {compiled}")
        return rendered


def and_clause(predicates: List[str]) -> str:
    """Join predicates as ``AND ...`` suffixes for an existing WHERE clause"""
    return "".join(f" AND {predicate}" for predicate in predicates)
