"""
JSON Exporter.

Writes a JSON array of objects keyed by column label, one element per
chunk, so the array is never built in memory.
"""

import json
from collections.abc import AsyncIterator, Mapping

from fastapi.responses import StreamingResponse

from catalog.exporters.base import Row, plain_value


class JsonExporter:
    format = "json"
    media_type = "application/json"

    def stream(
        self,
        rows: AsyncIterator[Row],
        columns: Mapping[str, str],
    ) -> StreamingResponse:
        return StreamingResponse(self.iter_chunks(rows, columns), media_type=self.media_type)

    async def iter_chunks(
        self,
        rows: AsyncIterator[Row],
        columns: Mapping[str, str],
    ) -> AsyncIterator[str]:
        yield "["
        first = True
        async for row in rows:
            item = {label: plain_value(row.get(key)) for key, label in columns.items()}
            yield ("" if first else ",") + json.dumps(item, ensure_ascii=False, default=str)
            first = False
        yield "]"
