"""
Export formats.

Usage:
    from catalog.exporters import get_exporter_registry

    exporter = get_exporter_registry().resolve("json")
"""

from functools import lru_cache

from catalog.exporters.base import Exporter, ExporterRegistry, Row
from catalog.exporters.csv_exporter import CsvExporter, XlsxExporter
from catalog.exporters.json_exporter import JsonExporter


def build_default_registry() -> ExporterRegistry:
    registry = ExporterRegistry()
    registry.register(CsvExporter())
    registry.register(JsonExporter())
    registry.register(XlsxExporter())
    return registry


@lru_cache
def get_exporter_registry() -> ExporterRegistry:
    """Get the cached registry of built-in exporters."""
    return build_default_registry()


__all__ = [
    "CsvExporter",
    "Exporter",
    "ExporterRegistry",
    "JsonExporter",
    "Row",
    "XlsxExporter",
    "build_default_registry",
    "get_exporter_registry",
]
