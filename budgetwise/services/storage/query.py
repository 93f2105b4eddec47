"""
Row filtering shared by the table stores that filter in Python.
"""

from typing import Any, Iterable, Optional

from budgetwise.services.storage.interface import Row


def matches_filters(row: Row, filters: Optional[dict[str, Any]]) -> bool:
    """True if every filter column equals the row's value."""
    if not filters:
        return True
    return all(row.get(column) == value for column, value in filters.items())


def apply_query(
    rows: Iterable[Row],
    filters: Optional[dict[str, Any]] = None,
    order_by: Optional[str] = None,
    descending: bool = False,
    limit: Optional[int] = None,
) -> list[Row]:
    """Filter, sort and limit rows the way the remote store would."""
    result = [row for row in rows if matches_filters(row, filters)]

    if order_by:
        # None sorts first; mixed types compare by their string form
        def sort_key(row: Row):
            value = row.get(order_by)
            return (value is not None, "" if value is None else str(value))

        result.sort(key=sort_key, reverse=descending)

    if limit is not None:
        result = result[:limit]
    return result
