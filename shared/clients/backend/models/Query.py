"""Backend-independent description of a table read/write target.

Services build a TableQuery with the chainable helpers and hand it to a
BackendClient, which renders it for its engine (PostgREST query params for
Supabase).
"""

from typing import Any

from pydantic import BaseModel


class QueryFilter(BaseModel):
    """
    A single column predicate.

    Attributes:
        column (str): Column name; ``<embedded>.<column>`` filters an embedded resource.
        operator (str): eq, neq, gt, gte, lt, lte, in, is, ilike.
        value (Any): Scalar, or a list for the ``in`` operator.
    """
    column: str
    operator: str = "eq"
    value: Any = None


class QueryOrder(BaseModel):
    """
    Ordering on a column; ``foreign_table`` orders by a column of an embedded resource.
    """
    column: str
    ascending: bool = True
    foreign_table: str | None = None


class TableQuery(BaseModel):
    """
    Represents a request against one table: projection, predicates, ordering and range.
    """
    table: str
    select: str = "*"
    filters: list[QueryFilter] = []
    order: list[QueryOrder] = []
    offset: int | None = None
    limit: int | None = None

    def eq(self, column: str, value: Any) -> "TableQuery":
        self.filters.append(QueryFilter(column=column, operator="eq", value=value))
        return self

    def in_(self, column: str, values: list) -> "TableQuery":
        self.filters.append(QueryFilter(column=column, operator="in", value=list(values)))
        return self

    def order_by(self, column: str, ascending: bool = True, foreign_table: str | None = None) -> "TableQuery":
        self.order.append(QueryOrder(column=column, ascending=ascending, foreign_table=foreign_table))
        return self

    def range(self, start: int, end: int) -> "TableQuery":
        """Inclusive row range: ``range(0, 49)`` selects the first 50 rows."""
        self.offset = start
        self.limit = end - start + 1
        return self

    def first(self, count: int = 1) -> "TableQuery":
        self.limit = count
        return self

    def get_filter_value(self, column: str, operator: str = "eq") -> Any:
        """Value of the first filter on ``column`` with ``operator``, or None."""
        for f in self.filters:
            if f.column == column and f.operator == operator:
                return f.value
        return None
