"""
Market and Local Services.
"""

from typing import Any

from catalog.core.exceptions import ConflictError
from catalog.models.market import Local, Market
from catalog.repositories.market import LocalRepository
from catalog.services.base import BaseService, Columns


class MarketService(BaseService[Market]):
    resource_name = "market"

    def default_export_columns(self) -> Columns:
        return {
            "id": "ID",
            "code": "Code",
            "name": "Name",
            "address": "Address",
            "is_active": "Status",
        }

    async def deactivate_if_empty(self, market_id: int) -> Market:
        """
        Deactivate a market, refusing while it still has active locals.

        The check and the write run under a row lock on the market, so two
        concurrent requests cannot both pass the check.

        Raises:
            NotFoundError: If the market does not exist
            ConflictError: If the market still has active locals
        """
        async def check_and_deactivate(market: Market) -> Market:
            active_locals = await self._count_active_locals(market.id)
            if active_locals:
                raise ConflictError(
                    f"Market {market.code} still has {active_locals} active locals"
                )
            return await self.repo.set_active(market, False)

        market = await self.with_pessimistic_lock_by_id(market_id, check_and_deactivate)
        self._log_operation("Market deactivated", id=market_id)
        return market

    async def _count_active_locals(self, market_id: int) -> int:
        return await LocalRepository(self.repo.session).count(
            {"market_id": market_id, "active": True}
        )


class LocalService(BaseService[Local]):
    resource_name = "local"

    def default_export_columns(self) -> Columns:
        return {
            "id": "ID",
            "market_id": "Market",
            "code": "Code",
            "name": "Name",
            "monthly_rent": "Monthly rent",
            "active": "Status",
        }

    async def before_create(self, attrs: dict[str, Any]) -> dict[str, Any]:
        attrs.setdefault("monthly_rent", 0)
        return attrs
