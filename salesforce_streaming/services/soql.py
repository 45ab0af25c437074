"""
SOQL Query Builder

Turns filter objects such as {"Name": {"$in": ["a", "b"]}} into SOQL
WHERE clauses so callers never concatenate user values into queries.
"""

from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from salesforce_streaming.utils.exceptions import ValidationException

COMPARISON_OPERATORS = {
    "$eq": "=",
    "$ne": "!=",
    "$gt": ">",
    "$gte": ">=",
    "$lt": "<",
    "$lte": "<=",
    "$like": "LIKE",
}

SET_OPERATORS = {
    "$in": "IN",
    "$nin": "NOT IN",
}


def quote(value: Any) -> str:
    """Render a Python value as a SOQL literal"""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%dT%H:%M:%SZ")
    if isinstance(value, date):
        return value.isoformat()
    escaped = str(value).replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def _condition(field: str, operator: str, value: Any) -> str:
    if operator in SET_OPERATORS:
        if isinstance(value, (str, bytes)) or not isinstance(value, Iterable):
            raise ValidationException(
                f"Operator {operator} needs a list of values",
                details={"field": field, "operator": operator},
            )
        values = list(value)
        if not values:
            raise ValidationException(
                f"Operator {operator} needs at least one value",
                details={"field": field, "operator": operator},
            )
        rendered = ", ".join(quote(v) for v in values)
        return f"{field} {SET_OPERATORS[operator]} ({rendered})"

    if operator in COMPARISON_OPERATORS:
        return f"{field} {COMPARISON_OPERATORS[operator]} {quote(value)}"

    raise ValidationException(
        f"Unsupported filter operator: {operator}",
        details={"field": field, "operator": operator},
    )


def build_where(conditions: Optional[Dict[str, Any]]) -> str:
    """
    Build a WHERE clause body (without the keyword) from a filter object.

    Each key is a field. A plain value means equality; a dict maps
    operators ($eq, $ne, $in, $nin, $like, $gt, $gte, $lt, $lte) to values.
    All conditions are joined with AND.
    """
    if not conditions:
        return ""

    clauses: List[str] = []
    for field, criteria in conditions.items():
        if isinstance(criteria, dict):
            for operator, value in criteria.items():
                clauses.append(_condition(field, operator, value))
        else:
            clauses.append(_condition(field, "$eq", criteria))

    return " AND ".join(clauses)


def build_query(
    sobject_type: str,
    fields: Sequence[str] = ("Id",),
    conditions: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
) -> str:
    """
    Build a SELECT statement.

    Example:
        >>> build_query("Account", ["Id"], {"Name": {"$in": ["A", "B"]}})
        "SELECT Id FROM Account WHERE Name IN ('A', 'B')"
    """
    if not fields:
        raise ValidationException("At least one field is required", details={"sobject_type": sobject_type})

    soql = f"SELECT {', '.join(fields)} FROM {sobject_type}"
    where = build_where(conditions)
    if where:
        soql += f" WHERE {where}"
    if limit is not None:
        soql += f" LIMIT {int(limit)}"
    return soql
