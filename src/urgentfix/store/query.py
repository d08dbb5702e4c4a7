"""
Structured filter matching for record store queries

Filters are plain dicts, the same shape the marketplace's API handlers
already speak:

    {"service_request": "req_1", "status": {"in": ["pending", "accepted"]}}
    {"and": [{"id": {"not_equals": "bid_1"}}, {"status": "pending"}]}
    {"materials": {"elem_match": {"item": "copper pipe"}}}

A bare value means equality. A missing field compares equal to None.
"""

from typing import Any

Where = dict[str, Any]

_MISSING = object()

OPERATORS = frozenset(
    {"equals", "not_equals", "in", "not_in", "exists", "elem_match"}
)


class InvalidQueryError(ValueError):
    """Raised for filters using unknown operators or malformed clauses"""


def get_path(doc: dict[str, Any], path: str) -> Any:
    """Resolve a dotted path ("price_breakdown.labor"); missing segments give None"""
    current: Any = doc
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _is_operator_clause(condition: Any) -> bool:
    return (
        isinstance(condition, dict)
        and bool(condition)
        and all(key in OPERATORS for key in condition)
    )


def _match_operator(value: Any, op: str, operand: Any) -> bool:
    present = value is not _MISSING
    actual = value if present else None

    if op == "equals":
        return actual == operand
    if op == "not_equals":
        return actual != operand
    if op == "in":
        if not isinstance(operand, (list, tuple, set, frozenset)):
            raise InvalidQueryError(f"'in' expects a list, got {type(operand).__name__}")
        return actual in operand
    if op == "not_in":
        if not isinstance(operand, (list, tuple, set, frozenset)):
            raise InvalidQueryError(f"'not_in' expects a list, got {type(operand).__name__}")
        return actual not in operand
    if op == "exists":
        return (present and actual is not None) == bool(operand)
    if op == "elem_match":
        if not isinstance(operand, dict):
            raise InvalidQueryError("'elem_match' expects a filter dict")
        if not isinstance(actual, list):
            return False
        return any(isinstance(item, dict) and matches(item, operand) for item in actual)
    raise InvalidQueryError(f"Unknown operator '{op}'")


def matches(doc: dict[str, Any], where: Where | None) -> bool:
    """
    Check whether a document satisfies a filter

    Args:
        doc: Stored document
        where: Filter (None or {} matches everything)

    Raises:
        InvalidQueryError: On unknown operators or malformed and/or clauses
    """
    if not where:
        return True

    for key, condition in where.items():
        if key in ("and", "or"):
            if not isinstance(condition, list):
                raise InvalidQueryError(f"'{key}' expects a list of filters")
            results = (matches(doc, clause) for clause in condition)
            if key == "and" and not all(results):
                return False
            if key == "or" and not any(results):
                return False
            continue

        value = get_path(doc, key)
        if _is_operator_clause(condition):
            for op, operand in condition.items():
                if not _match_operator(value, op, operand):
                    return False
        elif not _match_operator(value, "equals", condition):
            return False

    return True
