"""Catalog models. Importing this package registers every table on Base.metadata."""

from catalog.models.bank import Bank
from catalog.models.base import Base
from catalog.models.market import Local, Market

__all__ = ["Base", "Bank", "Local", "Market"]
