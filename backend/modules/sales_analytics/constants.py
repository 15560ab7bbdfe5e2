# backend/modules/sales_analytics/constants.py

"""
Constants for the sales analytics module.

Centralizes tenant schema names, column synonyms and query windows.
"""

# Tenant database tables (normalized layout)
MOVEMENT_HEADER_TABLE = "movimentacao"
MOVEMENT_ITEM_TABLE = "movimentacao_item"
CLIENT_TABLE = "cliente"
BRANCH_TABLE = "filial"
PRODUCT_TABLE = "produto"
GOAL_TABLE = "meta"
GROUP_TABLE = "grupo"
GROUP_MAPPING_TABLE = "grupo_relacionamento"

# Legacy denormalized layout
FLAT_MOVEMENTS_TABLE = "movimentos"

PROBED_TABLES = (
    MOVEMENT_HEADER_TABLE,
    MOVEMENT_ITEM_TABLE,
    CLIENT_TABLE,
    BRANCH_TABLE,
    PRODUCT_TABLE,
    GOAL_TABLE,
    GROUP_TABLE,
    GROUP_MAPPING_TABLE,
)

# Goal table column synonyms, in priority order
GOAL_CLIENT_COLUMNS = ("client_id", "cliente_id", "cod_cliente", "id_cliente")
GOAL_VALUE_COLUMNS = ("valor", "meta", "valor_meta")
GOAL_MONTH_COLUMNS = ("mes", "competencia", "dt_mes", "data_mes", "data")
GOAL_BRANCH_COLUMNS = ("cod_filial", "filial_id", "id_filial")
GOAL_GROUP_COLUMNS = ("grupo_id", "id_grupo", "cod_grupo")

# Time windows (months)
OVERVIEW_OUTPUT_MONTHS = 12
OVERVIEW_SOURCE_MONTHS = 24  # output months + 12 YoY baselines
TRAILING_MONTHS = 12

# Limits
MAX_ROW_LEVEL_ROWS = 50000
RANKING_LIMIT = 10
FILTER_OPTION_CLIENT_LIMIT = 100

# Cache
CACHE_PREFIX = "sales_analytics"
REPORT_CACHE_TTL = 3600  # 1 hour staleness window
CAPABILITY_CACHE_TTL = 3600

# Brazilian macro-regions by state code
REGION_STATES = {
    "Norte": ("AC", "AP", "AM", "PA", "RO", "RR", "TO"),
    "Nordeste": ("AL", "BA", "CE", "MA", "PB", "PE", "PI", "RN", "SE"),
    "Centro-Oeste": ("DF", "GO", "MT", "MS"),
    "Sudeste": ("ES", "MG", "RJ", "SP"),
    "Sul": ("PR", "RS", "SC"),
}
UNKNOWN_REGION = "Não identificado"
