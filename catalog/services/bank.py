"""
Bank Service.
"""

from typing import Any

from catalog.core.exceptions import ValidationError
from catalog.models.bank import Bank
from catalog.services.base import BaseService, Columns


class BankService(BaseService[Bank]):
    resource_name = "bank"

    def default_export_columns(self) -> Columns:
        return {
            "id": "ID",
            "code": "Code",
            "name": "Name",
            "is_active": "Status",
            "created_at": "Created",
        }

    async def before_create(self, attrs: dict[str, Any]) -> dict[str, Any]:
        return self._normalize_code(attrs)

    async def before_update(self, entity: Bank, attrs: dict[str, Any]) -> dict[str, Any]:
        return self._normalize_code(attrs)

    @staticmethod
    def _normalize_code(attrs: dict[str, Any]) -> dict[str, Any]:
        if "code" in attrs:
            code = str(attrs["code"] or "").strip().upper()
            if not code:
                raise ValidationError("Bank code is required", details={"code": "required"})
            attrs["code"] = code
        return attrs
