"""
CSV Exporters.

CsvExporter writes plain UTF-8 CSV. XlsxExporter writes the same table as
Excel-compatible CSV: a UTF-8 byte order mark first, so spreadsheet
applications detect the encoding. Both are served as text/csv.
"""

import csv
import io
from collections.abc import AsyncIterator, Mapping
from typing import Any

from fastapi.responses import StreamingResponse

from catalog.exporters.base import Row, plain_value

ACTIVE_LABEL = "Active"
INACTIVE_LABEL = "Inactive"
UTF8_BOM = "\ufeff"


def csv_cell(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, bool):
        return ACTIVE_LABEL if value else INACTIVE_LABEL
    return plain_value(value)


class CsvExporter:
    format = "csv"
    media_type = "text/csv; charset=utf-8"
    byte_order_mark = ""

    def stream(
        self,
        rows: AsyncIterator[Row],
        columns: Mapping[str, str],
    ) -> StreamingResponse:
        return StreamingResponse(self.iter_lines(rows, columns), media_type=self.media_type)

    async def iter_lines(
        self,
        rows: AsyncIterator[Row],
        columns: Mapping[str, str],
    ) -> AsyncIterator[str]:
        """Yield the header and then one encoded line per row."""
        out = io.StringIO()
        writer = csv.writer(out)

        writer.writerow(list(columns.values()))
        yield self.byte_order_mark + out.getvalue()
        out.seek(0)
        out.truncate(0)

        async for row in rows:
            writer.writerow([csv_cell(row.get(key)) for key in columns])
            yield out.getvalue()
            out.seek(0)
            out.truncate(0)


class XlsxExporter(CsvExporter):
    format = "xlsx"
    byte_order_mark = UTF8_BOM
