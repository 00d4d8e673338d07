"""
Market and Local Repositories.

Locals can be filtered by their market's code (`market_code=...`) in
addition to their own columns.
"""

from sqlalchemy import Select, select

from catalog.core.exceptions import ValidationError
from catalog.core.filters import FilterHandler
from catalog.core.list_query import Equals, Filter, In
from catalog.models.market import Local, Market
from catalog.repositories.base import BaseRepository


class MarketRepository(BaseRepository[Market]):
    model = Market
    searchable = ("code", "name", "address")
    allowed_sorts = ("id", "code", "name", "created_at", "updated_at")
    active_column = "is_active"


class LocalRepository(BaseRepository[Local]):
    model = Local
    searchable = ("code", "name")
    allowed_sorts = ("id", "code", "name", "monthly_rent", "created_at", "updated_at")

    def filter_map(self) -> dict[str, FilterHandler]:
        return {
            "market_code": self._filter_by_market_code,
            "market_code_in": self._filter_by_market_code,
        }

    @staticmethod
    def _filter_by_market_code(stmt: Select, filter_: Filter) -> Select:
        market_ids = select(Market.id)
        if isinstance(filter_, Equals):
            market_ids = market_ids.where(Market.code == str(filter_.value))
        elif isinstance(filter_, In):
            market_ids = market_ids.where(Market.code.in_([str(v) for v in filter_.values]))
        else:
            raise ValidationError(
                "market_code supports equality and membership only",
                details={"filter": "market_code"},
            )
        return stmt.where(Local.market_id.in_(market_ids))
