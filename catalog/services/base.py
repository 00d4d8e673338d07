"""
Base Service.

Generic service for catalog resources. Puts transaction boundaries around
repository mutations, maps entities to flat rows and streams exports
without holding more than one page of entities at a time.

Usage:
    from catalog.services.base import BaseService

    class BankService(BaseService[Bank]):
        resource_name = "bank"

        def default_export_columns(self) -> dict[str, str]:
            return {"id": "ID", "code": "Code", "name": "Name", "is_active": "Status"}

    service = BankService(BankRepository(session))
    result = await service.list(ListQuery(search_term="nation"))
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from datetime import datetime, timezone
from inspect import isawaitable
from typing import Any, Generic, TypeVar

from fastapi.responses import StreamingResponse

from catalog.core.exceptions import ConflictError, ValidationError
from catalog.core.list_query import ListQuery
from catalog.core.logging import get_logger
from catalog.core.pagination import Page
from catalog.core.show_query import ShowQuery
from catalog.exporters import ExporterRegistry, Row, get_exporter_registry
from catalog.models.base import Base
from catalog.repositories.base import BaseRepository

logger = get_logger(__name__)

ModelType = TypeVar("ModelType", bound=Base)
R = TypeVar("R")

DEFAULT_EXPORT_PAGE_SIZE = 1000
DEFAULT_EXPORT_COLUMNS = ("id", "created_at", "updated_at")

RowMapper = Callable[[Any], Row]
Columns = Sequence[str] | Mapping[str, str]


def _as_utc_second(value: datetime | str) -> datetime:
    """Normalize a timestamp to naive UTC, truncated to the second."""
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.replace(microsecond=0)


def normalize_columns(columns: Columns) -> dict[str, str]:
    """Column key to header label. A plain list uses the keys as labels."""
    if isinstance(columns, Mapping):
        return {str(key): str(label) for key, label in columns.items()}
    return {str(key): str(key) for key in columns}


class PagedRowIterator:
    """
    Lazy, bounded-memory row sequence for exports.

    Holds at most one page of entities. The next page is fetched from the
    repository only when the current one has been consumed, and iteration
    stops at the first short or empty page.
    """

    def __init__(
        self,
        repo: BaseRepository[Any],
        query: ListQuery,
        page_size: int,
        to_row: RowMapper,
        columns: Mapping[str, str],
    ) -> None:
        self._repo = repo
        self._query = query
        self._page_size = page_size
        self._to_row = to_row
        self._columns = columns
        self._page_number = 0
        self._buffer: list[Any] = []
        self._exhausted = False

    @property
    def buffered(self) -> int:
        """Entities currently held in memory."""
        return len(self._buffer)

    async def prefetch(self) -> None:
        """Load the first page now, so storage errors surface before streaming."""
        if self._page_number == 0:
            await self._fetch_next_page()

    async def _fetch_next_page(self) -> None:
        self._page_number += 1
        page: Page[Any] = await self._repo.paginate(
            self._query.with_page(self._page_number, self._page_size)
        )
        self._buffer = list(page.items)
        self._buffer.reverse()
        if len(page.items) < self._page_size or self._page_number >= page.last_page:
            self._exhausted = True

    def __aiter__(self) -> "PagedRowIterator":
        return self

    async def __anext__(self) -> Row:
        if not self._buffer:
            if self._exhausted:
                raise StopAsyncIteration
            await self._fetch_next_page()
            if not self._buffer:
                raise StopAsyncIteration

        entity = self._buffer.pop()
        row = self._to_row(entity)
        return {key: row.get(key) for key in self._columns}


class BaseService(Generic[ModelType]):
    """
    Base class for catalog services.

    Provides:
    - Listing with a resource-agnostic `meta` block
    - Transaction-wrapped create, update, upsert and set_active
    - Optimistic locking on update through `expected_updated_at`
    - Streaming export in any registered format

    Subclasses may override `resource_name`, `default_export_columns()`
    and the before/after create and update hooks.
    """

    resource_name: str | None = None

    def __init__(
        self,
        repo: BaseRepository[ModelType],
        *,
        row_mapper: RowMapper | None = None,
        exporters: ExporterRegistry | None = None,
        export_page_size: int | None = None,
    ) -> None:
        """
        Initialize the service over one repository.

        Args:
            repo: Repository of the resource
            row_mapper: Entity to row mapping; defaults to every persisted
                attribute plus loaded relationship counts
            exporters: Registry to resolve export formats from
            export_page_size: Rows fetched per internal export page
        """
        if export_page_size is not None and export_page_size < 1:
            raise ValidationError(
                "export_page_size must be >= 1",
                details={"export_page_size": export_page_size},
            )
        self.repo = repo
        self._row_mapper = row_mapper
        self._exporters = exporters if exporters is not None else get_exporter_registry()
        self.export_page_size = export_page_size or DEFAULT_EXPORT_PAGE_SIZE
        self._logger = get_logger(self.__class__.__module__)

    # =========================================================================
    # Hooks
    # =========================================================================

    def to_row(self, entity: ModelType) -> Row:
        if self._row_mapper is not None:
            return self._row_mapper(entity)
        return entity.to_dict()

    def to_item(self, entity: ModelType) -> Row:
        """Single-record representation: the row plus any loaded relations."""
        item = dict(self.to_row(entity))
        item.update(entity.relation_values())
        return item

    def show_meta(self, entity: ModelType, query: ShowQuery) -> dict[str, Any]:
        return {
            "loaded_relations": entity.loaded_relations(),
            "loaded_counts": sorted(entity.loaded_counts()),
        }

    def default_export_columns(self) -> Columns:
        return list(DEFAULT_EXPORT_COLUMNS)

    def get_resource_name(self) -> str:
        return self.resource_name or self.repo.model.__name__.lower()

    def default_export_filename(self, format: str) -> str:
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
        return f"{self.get_resource_name()}_export_{timestamp}.{format}"

    async def before_create(self, attrs: dict[str, Any]) -> dict[str, Any]:
        return attrs

    async def after_create(self, entity: ModelType) -> None:
        return None

    async def before_update(self, entity: ModelType, attrs: dict[str, Any]) -> dict[str, Any]:
        return attrs

    async def after_update(self, entity: ModelType) -> None:
        return None

    # =========================================================================
    # Listing and Lookups
    # =========================================================================

    async def list(
        self,
        query: ListQuery,
        with_: Sequence[str] = (),
        with_count: Sequence[str] = (),
    ) -> dict[str, Any]:
        page = await self.repo.paginate(query, with_=with_, with_count=with_count)
        return self._list_result(page)

    async def list_by_ids_desc(
        self,
        ids: Iterable[int],
        per_page: int,
        with_: Sequence[str] = (),
        with_count: Sequence[str] = (),
    ) -> dict[str, Any]:
        page = await self.repo.paginate_by_ids_desc(
            ids, per_page, with_=with_, with_count=with_count
        )
        return self._list_result(page)

    async def get_by_id(self, id: int, with_: Sequence[str] = ()) -> ModelType | None:
        return await self.repo.find_by_id(id, with_=with_)

    async def get_or_fail_by_id(self, id: int, with_: Sequence[str] = ()) -> ModelType:
        return await self.repo.find_or_fail_by_id(id, with_=with_)

    async def get_by_uuid(self, uuid: str, with_: Sequence[str] = ()) -> ModelType | None:
        return await self.repo.find_by_uuid(uuid, with_=with_)

    async def get_or_fail_by_uuid(self, uuid: str, with_: Sequence[str] = ()) -> ModelType:
        return await self.repo.find_or_fail_by_uuid(uuid, with_=with_)

    async def show_by_id(self, id: int, query: ShowQuery | None = None) -> dict[str, Any]:
        """
        Read one record for a detail view.

        Returns `{"item": ..., "meta": {"loaded_relations", "loaded_counts"}}`.

        Raises:
            NotFoundError: If record not found
        """
        query = query or ShowQuery()
        entity = await self.repo.show_by_id(id, query)
        return {"item": self.to_item(entity), "meta": self.show_meta(entity, query)}

    async def show_by_uuid(self, uuid: str, query: ShowQuery | None = None) -> dict[str, Any]:
        query = query or ShowQuery()
        entity = await self.repo.show_by_uuid(uuid, query)
        return {"item": self.to_item(entity), "meta": self.show_meta(entity, query)}

    # =========================================================================
    # Transactional Mutations
    # =========================================================================

    async def transaction(self, fn: Callable[[], Awaitable[R] | R]) -> R:
        """
        Run `fn` as one commit/rollback unit.

        Any exception rolls the unit back and propagates unchanged.
        """
        async with self.repo.atomic():
            result = fn()
            if isawaitable(result):
                result = await result
            return result

    async def create(self, attrs: Mapping[str, Any]) -> ModelType:
        async def run() -> tuple[ModelType, int]:
            data = await self.before_create(dict(attrs))
            entity = await self.repo.create(data)
            await self.after_create(entity)
            return entity, entity.id

        entity, entity_id = await self.transaction(run)
        self._log_operation("Record created", id=entity_id)
        return entity

    async def create_many(self, rows: Iterable[Mapping[str, Any]]) -> list[ModelType]:
        rows = [dict(row) for row in rows]

        async def run() -> list[ModelType]:
            return await self.repo.create_many(rows)

        entities = await self.transaction(run)
        self._log_operation("Records created", count=len(entities))
        return entities

    async def update(
        self,
        id_or_entity: int | ModelType,
        attrs: Mapping[str, Any],
        expected_updated_at: datetime | str | None = None,
    ) -> ModelType:
        """
        Update a record, optionally guarded by an optimistic lock.

        Raises:
            NotFoundError: If record not found
            ConflictError: If `expected_updated_at` no longer matches
        """
        async def run() -> tuple[ModelType, int]:
            entity = (
                id_or_entity
                if isinstance(id_or_entity, self.repo.model)
                else await self.repo.find_or_fail_by_id(id_or_entity)
            )
            if expected_updated_at is not None:
                self._check_not_modified(entity, expected_updated_at)

            data = await self.before_update(entity, dict(attrs))
            entity = await self.repo.update(entity, data)
            await self.after_update(entity)
            return entity, entity.id

        entity, entity_id = await self.transaction(run)
        self._log_operation("Record updated", id=entity_id)
        return entity

    async def upsert(
        self,
        rows: Sequence[Mapping[str, Any]],
        unique_by: Sequence[str],
        update_columns: Sequence[str] | None = None,
    ) -> int:
        async def run() -> int:
            return await self.repo.upsert(rows, unique_by, update_columns)

        affected = await self.transaction(run)
        self._log_operation("Records upserted", affected=affected)
        return affected

    async def set_active(self, id_or_entity: int | ModelType, active: bool) -> ModelType:
        async def run() -> tuple[ModelType, int]:
            entity = await self.repo.set_active(id_or_entity, active)
            return entity, entity.id

        entity, entity_id = await self.transaction(run)
        self._log_operation("Active flag set", id=entity_id, active=active)
        return entity

    # =========================================================================
    # Pass-through Mutations
    # =========================================================================

    async def delete(self, id_or_entity: int | ModelType) -> bool:
        return await self.repo.delete(id_or_entity)

    async def force_delete(self, id_or_entity: int | ModelType) -> bool:
        return await self.repo.force_delete(id_or_entity)

    async def restore(self, id_or_entity: int | ModelType) -> bool:
        return await self.repo.restore(id_or_entity)

    async def bulk_delete_by_ids(self, ids: Iterable[int]) -> int:
        return await self.repo.bulk_delete_by_ids(ids)

    async def bulk_delete_by_uuids(self, uuids: Iterable[str]) -> int:
        return await self.repo.bulk_delete_by_uuids(uuids)

    async def bulk_force_delete_by_ids(self, ids: Iterable[int]) -> int:
        return await self.repo.bulk_force_delete_by_ids(ids)

    async def bulk_force_delete_by_uuids(self, uuids: Iterable[str]) -> int:
        return await self.repo.bulk_force_delete_by_uuids(uuids)

    async def bulk_restore_by_ids(self, ids: Iterable[int]) -> int:
        return await self.repo.bulk_restore_by_ids(ids)

    async def bulk_restore_by_uuids(self, uuids: Iterable[str]) -> int:
        return await self.repo.bulk_restore_by_uuids(uuids)

    async def bulk_set_active_by_ids(self, ids: Iterable[int], active: bool) -> int:
        return await self.repo.bulk_set_active_by_ids(ids, active)

    async def bulk_set_active_by_uuids(self, uuids: Iterable[str], active: bool) -> int:
        return await self.repo.bulk_set_active_by_uuids(uuids, active)

    async def with_pessimistic_lock_by_id(self, id: int, fn: Callable[[ModelType], R]) -> R:
        return await self.repo.with_pessimistic_lock_by_id(id, fn)

    async def with_pessimistic_lock_by_uuid(self, uuid: str, fn: Callable[[ModelType], R]) -> R:
        return await self.repo.with_pessimistic_lock_by_uuid(uuid, fn)

    # =========================================================================
    # Export
    # =========================================================================

    def export_rows(
        self,
        query: ListQuery,
        columns: Columns | None = None,
    ) -> PagedRowIterator:
        """
        Lazy sequence of column-projected rows matching `query`.

        Pages through the repository `export_page_size` entities at a time,
        whatever `query.per_page` says.
        """
        return PagedRowIterator(
            self.repo,
            query,
            page_size=self.export_page_size,
            to_row=self.to_row,
            columns=normalize_columns(columns if columns is not None else self.default_export_columns()),
        )

    async def export(
        self,
        query: ListQuery,
        format: str,
        columns: Columns | None = None,
        filename: str | None = None,
    ) -> StreamingResponse:
        """
        Stream every row matching `query` as a downloadable file.

        Raises:
            ValidationError: If no exporter is registered for `format`
        """
        exporter = self._exporters.resolve(format)
        format = exporter.format

        resolved_columns = normalize_columns(
            columns if columns is not None else self.default_export_columns()
        )
        rows = self.export_rows(query, resolved_columns)
        await rows.prefetch()

        response = exporter.stream(rows, resolved_columns)
        filename = filename or self.default_export_filename(format)
        response.headers["Content-Disposition"] = f'attachment; filename="{filename}"'

        self._log_operation("Export started", format=format, filename=filename)
        return response

    # =========================================================================
    # Internals
    # =========================================================================

    def _list_result(self, page: Page[ModelType]) -> dict[str, Any]:
        return {
            "rows": [self.to_row(entity) for entity in page.items],
            "meta": page.meta(),
        }

    def _check_not_modified(self, entity: ModelType, expected: datetime | str) -> None:
        current = getattr(entity, "updated_at", None)
        try:
            expected_at = _as_utc_second(expected)
        except ValueError as e:
            raise ValidationError(
                "expected_updated_at is not a valid timestamp",
                details={"expected_updated_at": str(expected)},
            ) from e

        if current is None or _as_utc_second(current) != expected_at:
            raise ConflictError(
                "The record was modified by another user. Reload and try again."
            )

    def _log_operation(self, operation: str, **context: Any) -> None:
        self._logger.info(
            operation,
            extra={"service": self.__class__.__name__, "resource": self.get_resource_name(), **context},
        )
