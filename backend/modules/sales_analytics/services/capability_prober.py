# backend/modules/sales_analytics/services/capability_prober.py

"""
Schema capability discovery for tenant databases.

Tenant databases come in two layouts: the normalized one (movement header
plus line items, with optional client/branch/product/goal tables) and a
legacy flat ``movimentos`` table. The prober reports which tables exist and
whether the goal table has a recognizable set of columns.

Probing is advisory: any failure while probing reports the capability as
absent so callers fall back instead of failing the request.
"""

import logging
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple, Any

from ..constants import (
    MOVEMENT_HEADER_TABLE,
    MOVEMENT_ITEM_TABLE,
    CLIENT_TABLE,
    BRANCH_TABLE,
    PRODUCT_TABLE,
    GOAL_TABLE,
    GROUP_TABLE,
    GROUP_MAPPING_TABLE,
    PROBED_TABLES,
    GOAL_CLIENT_COLUMNS,
    GOAL_VALUE_COLUMNS,
    GOAL_MONTH_COLUMNS,
    GOAL_BRANCH_COLUMNS,
    GOAL_GROUP_COLUMNS,
    CAPABILITY_CACHE_TTL,
)
from ..exceptions import QueryExecutionError
from .filter_compiler import quote_literal
from .result_normalizer import to_flag

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GoalTableSchema:
    """Resolved column names of a recognized goal table"""

    client_column: str
    value_column: str
    month_column: str
    month_data_type: str = "text"
    branch_column: Optional[str] = None
    group_column: Optional[str] = None

    @property
    def month_is_temporal(self) -> bool:
        data_type = self.month_data_type.lower()
        return data_type == "date" or data_type.startswith("timestamp")


@dataclass(frozen=True)
class CapabilitySet:
    """Which tables of interest exist in a tenant database"""

    has_movement_header: bool = False
    has_movement_items: bool = False
    has_clients: bool = False
    has_branches: bool = False
    has_products: bool = False
    has_goal_table: bool = False
    has_groups: bool = False
    has_group_mapping: bool = False
    goal_schema: Optional[GoalTableSchema] = None

    @property
    def is_normalized(self) -> bool:
        return self.has_movement_header and self.has_movement_items

    @property
    def supports_goals(self) -> bool:
        return self.goal_schema is not None

    @property
    def supports_group_filters(self) -> bool:
        return self.has_groups and self.has_group_mapping


def _pick_column(available: Sequence[str], synonyms: Sequence[str]) -> Optional[str]:
    """First available column (in table order) whose name is an accepted synonym"""
    accepted = {name.lower() for name in synonyms}
    for column in available:
        if column.lower() in accepted:
            return column
    return None


def build_table_probe_query(tables: Sequence[str] = PROBED_TABLES) -> str:
    checks = [
        "EXISTS(SELECT 1 FROM information_schema.tables "
        f"WHERE table_schema = 'public' AND table_name = {quote_literal(table)}) "
        f"AS {table}_exists"
        for table in tables
    ]
    return "SELECT " + ", ".join(checks)


def build_goal_columns_query() -> str:
    return (
        "SELECT column_name, data_type FROM information_schema.columns "
        f"WHERE table_schema = 'public' AND table_name = {quote_literal(GOAL_TABLE)} "
        "ORDER BY ordinal_position"
    )


def recognize_goal_schema(columns: List[Dict[str, Any]]) -> Optional[GoalTableSchema]:
    """
    Match goal table columns against the accepted synonyms.

    Client, value and month columns are required; branch and group columns
    are optional. Returns None when a required column is missing.
    """
    names = [str(row.get("column_name")) for row in columns if row.get("column_name")]
    types = {
        str(row.get("column_name")): str(row.get("data_type") or "text")
        for row in columns
        if row.get("column_name")
    }

    client_column = _pick_column(names, GOAL_CLIENT_COLUMNS)
    value_column = _pick_column(names, GOAL_VALUE_COLUMNS)
    month_column = _pick_column(names, GOAL_MONTH_COLUMNS)

    if not (client_column and value_column and month_column):
        return None

    return GoalTableSchema(
        client_column=client_column,
        value_column=value_column,
        month_column=month_column,
        month_data_type=types.get(month_column, "text"),
        branch_column=_pick_column(names, GOAL_BRANCH_COLUMNS),
        group_column=_pick_column(names, GOAL_GROUP_COLUMNS),
    )


class CapabilityProber:
    """Probes tenant databases and caches the result per database id"""

    def __init__(self, executor, ttl_seconds: int = CAPABILITY_CACHE_TTL):
        self.executor = executor
        self.ttl_seconds = ttl_seconds
        self._cache: Dict[str, Tuple[float, CapabilitySet]] = {}

    async def get_capabilities(self, database_id: str) -> CapabilitySet:
        """Return cached capabilities, probing when missing or expired"""
        cached = self._cache.get(database_id)
        if cached is not None:
            expires_at, capabilities = cached
            if time.monotonic() < expires_at:
                return capabilities
            del self._cache[database_id]

        capabilities = await self.probe(database_id)
        self._cache[database_id] = (time.monotonic() + self.ttl_seconds, capabilities)
        return capabilities

    def invalidate(self, database_id: Optional[str] = None) -> None:
        """Drop cached capabilities for one database, or all of them"""
        if database_id is None:
            self._cache.clear()
        else:
            self._cache.pop(database_id, None)
        logger.info(f"Invalidated capability cache for {database_id or 'all databases'}")

    async def probe(self, database_id: str) -> CapabilitySet:
        tables = await self._probe_tables(database_id)

        goal_schema = None
        if tables.get(GOAL_TABLE):
            goal_schema = await self._probe_goal_schema(database_id)

        capabilities = CapabilitySet(
            has_movement_header=tables.get(MOVEMENT_HEADER_TABLE, False),
            has_movement_items=tables.get(MOVEMENT_ITEM_TABLE, False),
            has_clients=tables.get(CLIENT_TABLE, False),
            has_branches=tables.get(BRANCH_TABLE, False),
            has_products=tables.get(PRODUCT_TABLE, False),
            has_goal_table=tables.get(GOAL_TABLE, False),
            has_groups=tables.get(GROUP_TABLE, False),
            has_group_mapping=tables.get(GROUP_MAPPING_TABLE, False),
            goal_schema=goal_schema,
        )
        logger.debug(f"Probed capabilities for database {database_id}: {capabilities}")
        return capabilities

    async def _probe_tables(self, database_id: str) -> Dict[str, bool]:
        try:
            rows = await self.executor.execute(database_id, build_table_probe_query())
        except QueryExecutionError as e:
            logger.warning(
                f"Table probe failed for database {database_id}, "
                f"assuming legacy layout: {e.message}"
            )
            return {}

        if not rows or not isinstance(rows[0], dict):
            logger.warning(f"Table probe for database {database_id} returned no rows")
            return {}

        row = rows[0]
        return {table: to_flag(row.get(f"{table}_exists")) for table in PROBED_TABLES}

    async def _probe_goal_schema(self, database_id: str) -> Optional[GoalTableSchema]:
        try:
            columns = await self.executor.execute(database_id, build_goal_columns_query())
        except QueryExecutionError as e:
            logger.warning(
                f"Goal column probe failed for database {database_id}: {e.message}"
            )
            return None

        schema = recognize_goal_schema([row for row in columns if isinstance(row, dict)])
        if schema is None:
            logger.info(
                f"Goal table in database {database_id} has no recognizable columns"
            )
        return schema
