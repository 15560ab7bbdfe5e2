# backend/modules/sales_analytics/utils/region_codes.py

"""State code helpers for Brazilian addresses."""

from typing import Optional


def normalize_state(state: Optional[str]) -> Optional[str]:
    """Upper-cased two-letter UF, None when blank"""
    if state is None:
        return None
    state = str(state).strip().upper()
    return state or None
