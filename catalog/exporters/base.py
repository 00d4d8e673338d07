"""
Exporter Contract and Registry.

An exporter turns a lazy sequence of flat rows into a streaming HTTP
response. Rows are pulled only while the response body is being sent.

Exporters are registered under `exporter.<format>` keys:

    registry = get_exporter_registry()
    exporter = registry.resolve("csv")
    response = exporter.stream(rows, {"id": "ID", "name": "Name"})
"""

from collections.abc import AsyncIterator, Mapping
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from fastapi.responses import StreamingResponse

from catalog.core.exceptions import ValidationError
from catalog.core.logging import get_logger

logger = get_logger(__name__)

Row = dict[str, Any]

REGISTRY_PREFIX = "exporter."


@runtime_checkable
class Exporter(Protocol):
    """Streams rows as one export format."""

    format: str
    media_type: str

    def stream(
        self,
        rows: AsyncIterator[Row],
        columns: Mapping[str, str],
    ) -> StreamingResponse:
        """
        Build a response whose body is produced lazily from `rows`.

        Args:
            rows: Column-projected rows, keyed like `columns`
            columns: Column key to header label, in output order
        """
        ...


def plain_value(value: Any) -> Any:
    """Reduce a cell to a JSON/CSV-friendly scalar."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    return value


class ExporterRegistry:
    """Exporters keyed by `exporter.<format>`."""

    def __init__(self) -> None:
        self._exporters: dict[str, Exporter] = {}

    def register(self, exporter: Exporter) -> None:
        key = f"{REGISTRY_PREFIX}{exporter.format}"
        self._exporters[key] = exporter
        logger.debug("Exporter registered", extra={"key": key})

    def has(self, format: str) -> bool:
        return f"{REGISTRY_PREFIX}{format.lower()}" in self._exporters

    def resolve(self, format: str) -> Exporter:
        """
        Get the exporter for a format.

        Raises:
            ValidationError: If no exporter is registered for the format
        """
        key = f"{REGISTRY_PREFIX}{(format or '').lower()}"
        exporter = self._exporters.get(key)
        if exporter is None:
            raise ValidationError(
                f"Unsupported export format: {format}",
                details={"format": format, "supported": self.formats()},
            )
        return exporter

    def formats(self) -> list[str]:
        return sorted(key[len(REGISTRY_PREFIX):] for key in self._exporters)
