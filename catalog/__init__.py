"""Catalog resources over a shared repository/service core."""

__version__ = "0.1.0"
