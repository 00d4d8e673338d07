"""
Filter Engine.

Turns a ListQuery's search term and filter variants into SQLAlchemy
predicates against one mapped model.
"""

from collections.abc import Callable, Iterable, Mapping
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import Select, String, and_, cast, false, func, inspect, or_
from sqlalchemy.sql.elements import ColumnElement

from catalog.core.exceptions import ValidationError
from catalog.core.list_query import Between, Contains, Equals, Filter, In, IsNull, ListQuery
from catalog.core.logging import get_logger

logger = get_logger(__name__)

FilterHandler = Callable[[Select, Filter], Select]


def _coerce(value: Any, python_type: type | None) -> Any:
    """Convert a string value to the column's Python type."""
    if python_type is None or not isinstance(value, str):
        return value
    if python_type is bool:
        lowered = value.strip().lower()
        if lowered in ("true", "1"):
            return True
        if lowered in ("false", "0"):
            return False
        raise ValueError(f"not a boolean: {value!r}")
    if python_type is datetime:
        return datetime.fromisoformat(value)
    if python_type is date:
        return date.fromisoformat(value[:10])
    if python_type in (int, float):
        return python_type(value)
    if python_type is Decimal:
        try:
            return Decimal(value)
        except InvalidOperation as e:
            raise ValueError(f"not a decimal: {value!r}") from e
    return value


def contains_predicate(column: Any, term: str) -> ColumnElement[bool]:
    """Case-insensitive substring match with LIKE wildcards escaped."""
    return func.lower(cast(column, String)).contains(term.lower(), autoescape=True)


class FilterEngine:
    """
    Applies search and typed filters to a select statement.

    Args:
        model: Mapped model class the statement selects from
        searchable: Column names the free-text search term is matched against
        custom: Per-key handlers that replace the standard handling for that key
        strict: Raise ValidationError on unknown filter columns instead of
            ignoring them
    """

    def __init__(
        self,
        model: type,
        searchable: Iterable[str] = (),
        custom: Mapping[str, FilterHandler] | None = None,
        strict: bool = False,
    ) -> None:
        self.model = model
        self.searchable = tuple(searchable)
        self.custom = dict(custom or {})
        self.strict = strict
        self._columns = {attr.key: attr for attr in inspect(model).column_attrs}

    def apply(self, stmt: Select, query: ListQuery) -> Select:
        """Apply the search term, then every filter."""
        stmt = self.apply_search(stmt, query.search_term)
        return self.apply_filters(stmt, query.filters)

    def apply_search(self, stmt: Select, term: str | None) -> Select:
        if not term or not self.searchable:
            return stmt
        predicates = [
            contains_predicate(self.column(name), term)
            for name in self.searchable
        ]
        return stmt.where(or_(*predicates))

    def apply_filters(self, stmt: Select, filters: Mapping[str, Filter]) -> Select:
        for key, filter_ in filters.items():
            handler = self.custom.get(key)
            if handler is not None:
                stmt = handler(stmt, filter_)
                continue

            predicate = self.predicate(filter_)
            if predicate is not None:
                stmt = stmt.where(predicate)
        return stmt

    def column(self, name: str) -> Any:
        """Instrumented attribute for a mapped column name."""
        if name not in self._columns:
            raise ValidationError(
                f"Unknown column '{name}' for {self.model.__name__}",
                details={"column": name},
            )
        return getattr(self.model, name)

    def has_column(self, name: str) -> bool:
        return name in self._columns

    def predicate(self, filter_: Filter) -> ColumnElement[bool] | None:
        """
        Build the predicate for one filter.

        Returns None when the filter contributes nothing: an open range,
        or an unknown column outside strict mode.
        """
        if not self.has_column(filter_.column):
            if self.strict:
                raise ValidationError(
                    f"Unknown filter '{filter_.column}' for {self.model.__name__}",
                    details={"filter": filter_.column},
                )
            logger.debug(
                "Ignoring unknown filter",
                extra={"model": self.model.__name__, "column": filter_.column},
            )
            return None

        name = filter_.column
        column = getattr(self.model, name)

        if isinstance(filter_, Contains):
            return contains_predicate(column, filter_.value)

        if isinstance(filter_, Between):
            clauses = []
            if filter_.lower is not None:
                clauses.append(column >= self._value(name, filter_.lower))
            if filter_.upper is not None:
                clauses.append(column <= self._value(name, filter_.upper))
            if not clauses:
                return None
            return and_(*clauses)

        if isinstance(filter_, In):
            if not filter_.values:
                return false()
            return column.in_([self._value(name, v) for v in filter_.values])

        if isinstance(filter_, IsNull):
            return column.is_(None) if filter_.is_null else column.is_not(None)

        if isinstance(filter_, Equals):
            return column == self._value(name, filter_.value)

        raise TypeError(f"Unsupported filter: {filter_!r}")

    def _value(self, name: str, value: Any) -> Any:
        column_type = self._columns[name].columns[0].type
        try:
            python_type = column_type.python_type
        except NotImplementedError:
            python_type = None
        try:
            return _coerce(value, python_type)
        except ValueError as e:
            raise ValidationError(
                f"Invalid value for '{name}': {value!r}",
                details={"column": name, "value": value},
            ) from e
