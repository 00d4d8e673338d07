"""
List Query.

Immutable description of a listing or export request: free-text search,
page, page size, sort and typed filters.

Filters arrive untyped (query strings, JSON bodies) and are parsed exactly
once, here, into a closed set of variants. The key suffix decides which:

    name_like=ban                      -> Contains("name", "ban")
    created_at_between={from, to}      -> Between("created_at", from, to)
    code_in=[A, B]                     -> In("code", ("A", "B"))
    deleted_at_is=null | notnull       -> IsNull("deleted_at", True | False)
    is_active=true                     -> Equals("is_active", "true")

Values stay raw; FilterEngine coerces them to the column type.

Usage:
    query = ListQuery(search_term="ban", per_page=25, filters=parse_filters(raw))
    query = ListQuery.from_params(request.query_params.multi_items())
"""

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any

from catalog.core.exceptions import ValidationError

SORT_DIRECTIONS = ("asc", "desc")
DEFAULT_PAGE = 1
DEFAULT_PER_PAGE = 15

_FILTER_PARAM = re.compile(r"^filters\[(?P<key>[^\]]+)\](?:\[(?P<sub>[^\]]*)\])?$")


# =============================================================================
# Filter Variants
# =============================================================================


@dataclass(frozen=True)
class Equals:
    column: str
    value: Any


@dataclass(frozen=True)
class Contains:
    """Case-insensitive substring match."""

    column: str
    value: str


@dataclass(frozen=True)
class Between:
    """Inclusive range; a None bound is open-ended."""

    column: str
    lower: Any = None
    upper: Any = None

    @property
    def is_open(self) -> bool:
        return self.lower is None and self.upper is None


@dataclass(frozen=True)
class In:
    """Membership. An empty tuple matches no rows at all."""

    column: str
    values: tuple[Any, ...]


@dataclass(frozen=True)
class IsNull:
    column: str
    is_null: bool = True


Filter = Equals | Contains | Between | In | IsNull


# =============================================================================
# Parsing
# =============================================================================


def _is_blank(value: Any) -> bool:
    return value is None or value == ""


def parse_filter(key: str, value: Any) -> Filter | None:
    """
    Parse one raw filter entry into its variant.

    Returns None when the entry carries nothing to filter on (blank
    value, range without a mapping, list given as a mapping, unknown `_is`
    keyword).
    """
    if isinstance(value, Filter):
        return value
    if _is_blank(value):
        return None

    if key.endswith("_like"):
        return Contains(key[: -len("_like")], str(value))

    if key.endswith("_between"):
        if not isinstance(value, Mapping):
            return None
        lower = value.get("from")
        upper = value.get("to")
        return Between(
            key[: -len("_between")],
            None if _is_blank(lower) else lower,
            None if _is_blank(upper) else upper,
        )

    if key.endswith("_in"):
        if isinstance(value, Mapping):
            return None
        if isinstance(value, (str, bytes)) or not isinstance(value, Iterable):
            values: tuple[Any, ...] = (value,)
        else:
            values = tuple(v for v in value if not _is_blank(v))
        return In(key[: -len("_in")], values)

    if key.endswith("_is"):
        keyword = str(value).lower()
        if keyword == "null":
            return IsNull(key[: -len("_is")], True)
        if keyword == "notnull":
            return IsNull(key[: -len("_is")], False)
        return None

    return Equals(key, value)


def parse_filters(raw: Mapping[str, Any] | None) -> dict[str, Filter]:
    """Parse a raw filter mapping, keeping the original keys."""
    parsed: dict[str, Filter] = {}
    for key, value in (raw or {}).items():
        filter_ = parse_filter(key, value)
        if filter_ is not None:
            parsed[key] = filter_
    return parsed


def normalize_direction(direction: str | None) -> str:
    """Lower-case `asc`/`desc`; anything else becomes `desc`."""
    lowered = (direction or "").strip().lower()
    return lowered if lowered in SORT_DIRECTIONS else "desc"


# =============================================================================
# ListQuery
# =============================================================================


@dataclass(frozen=True)
class ListQuery:
    """
    Immutable listing request.

    `filters` accepts raw values or already-parsed variants; either way it
    is stored as a read-only mapping of key to Filter.
    """

    search_term: str | None = None
    page: int = DEFAULT_PAGE
    per_page: int = DEFAULT_PER_PAGE
    sort_column: str | None = None
    sort_direction: str = "desc"
    filters: Mapping[str, Filter] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.page < 1:
            raise ValidationError("page must be >= 1", details={"page": self.page})
        if self.per_page < 1:
            raise ValidationError("per_page must be >= 1", details={"per_page": self.per_page})

        search_term = self.search_term.strip() if self.search_term else None
        object.__setattr__(self, "search_term", search_term or None)
        object.__setattr__(self, "sort_direction", normalize_direction(self.sort_direction))
        object.__setattr__(self, "filters", MappingProxyType(parse_filters(self.filters)))

    def with_page(self, page: int, per_page: int | None = None) -> "ListQuery":
        """Copy of this query pointing at another page."""
        return replace(
            self,
            page=page,
            per_page=per_page if per_page is not None else self.per_page,
            filters=dict(self.filters),
        )

    @classmethod
    def from_params(
        cls,
        params: Mapping[str, Any] | Iterable[tuple[str, Any]],
        default_per_page: int = DEFAULT_PER_PAGE,
        max_per_page: int | None = None,
    ) -> "ListQuery":
        """
        Build a query from flat request parameters.

        Recognised keys: q, page, per_page, sort, dir and bracketed
        filters (filters[key]=v, filters[key][]=v, filters[key][from]=v).
        Non-numeric page values fall back to the defaults; per_page is
        clamped to max_per_page when given.
        """
        items = params.items() if isinstance(params, Mapping) else params

        scalars: dict[str, Any] = {}
        raw_filters: dict[str, Any] = {}
        for name, value in items:
            match = _FILTER_PARAM.match(name)
            if match is None:
                scalars[name] = value
                continue

            key, sub = match.group("key"), match.group("sub")
            if sub is None:
                raw_filters[key] = value
            elif sub == "":
                raw_filters.setdefault(key, [])
                if isinstance(raw_filters[key], list):
                    raw_filters[key].append(value)
            else:
                raw_filters.setdefault(key, {})
                if isinstance(raw_filters[key], dict):
                    raw_filters[key][sub] = value

        page = _positive_int(scalars.get("page"), DEFAULT_PAGE)
        per_page = _positive_int(scalars.get("per_page"), default_per_page)
        if max_per_page is not None:
            per_page = min(per_page, max_per_page)

        return cls(
            search_term=scalars.get("q"),
            page=page,
            per_page=per_page,
            sort_column=scalars.get("sort") or None,
            sort_direction=scalars.get("dir") or "desc",
            filters=raw_filters,
        )


def _positive_int(value: Any, default: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number >= 1 else default
