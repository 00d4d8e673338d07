"""
Show Query.

Immutable description of a single-record read: relationships to eager
load, relationship counts to attach and whether soft-deleted rows count.

Usage:
    query = ShowQuery(with_=("locals",), with_count=("locals",))
    query = ShowQuery.from_params(request.query_params.multi_items())
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

_TRUE_STRINGS = {"true", "1", "yes", "on"}


def _names(values: Iterable[Any]) -> tuple[str, ...]:
    """Flatten repeated and comma-separated names, dropping blanks and duplicates."""
    if isinstance(values, str):
        values = (values,)
    names: list[str] = []
    for value in values:
        for name in str(value).split(","):
            name = name.strip()
            if name and name not in names:
                names.append(name)
    return tuple(names)


@dataclass(frozen=True)
class ShowQuery:
    """Immutable single-record read request."""

    with_: tuple[str, ...] = ()
    with_count: tuple[str, ...] = ()
    with_trashed: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "with_", _names(self.with_))
        object.__setattr__(self, "with_count", _names(self.with_count))

    @property
    def has_relations(self) -> bool:
        return bool(self.with_)

    @property
    def has_counts(self) -> bool:
        return bool(self.with_count)

    @classmethod
    def from_params(cls, params: Mapping[str, Any] | Iterable[tuple[str, Any]]) -> "ShowQuery":
        """
        Build a query from request parameters.

        Recognised keys: with, with_count (repeated, `[]`-suffixed or
        comma-separated) and with_trashed (true/1/yes/on).
        """
        items = params.items() if isinstance(params, Mapping) else params

        with_: list[Any] = []
        with_count: list[Any] = []
        with_trashed = False
        for name, value in items:
            name = name.removesuffix("[]")
            if name == "with":
                with_.append(value)
            elif name == "with_count":
                with_count.append(value)
            elif name == "with_trashed":
                with_trashed = str(value).strip().lower() in _TRUE_STRINGS

        return cls(with_=tuple(with_), with_count=tuple(with_count), with_trashed=with_trashed)
