"""
Raw Galaxy filter expressions.

Example:
    build_raw_filter("AFFILIATES_REVNUM", 5339779, "GreaterOrEqual")
    -> [{AFFILIATES_REVNUM:[5339779,GreaterOrEqual]}]
"""

from __future__ import annotations

import math
from enum import Enum


class FilterOperator(str, Enum):
    GREATER = "Greater"
    GREATER_OR_EQUAL = "GreaterOrEqual"
    EQUAL = "Equal"


def build_raw_filter(field: str, value: int | float | str, operator: FilterOperator | str) -> str:
    """
    Render `[{FIELD:[VALUE,OPERATOR]}]`.

    Numbers are emitted unquoted, strings wrapped in double quotes.
    """

    op = FilterOperator(operator)
    if not field or any(char in field for char in "[]{}:,"):
        raise ValueError(f"Invalid filter field: {field!r}")
    if isinstance(value, bool):
        raise ValueError("Boolean filter values are not supported")
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            raise ValueError(f"Non-finite filter value: {value!r}")
        rendered = str(value)
    else:
        rendered = f'"{value}"'
    return f"[{{{field}:[{rendered},{op.value}]}}]"
