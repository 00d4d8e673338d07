"""
Bank Repository.
"""

from catalog.models.bank import Bank
from catalog.repositories.base import BaseRepository


class BankRepository(BaseRepository[Bank]):
    model = Bank
    searchable = ("code", "name")
    allowed_sorts = ("id", "code", "name", "is_active", "created_at", "updated_at")
    default_sort = ("name", "asc")
    active_column = "is_active"
