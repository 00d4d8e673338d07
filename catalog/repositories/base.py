"""
Base Repository.

Generic CRUD engine shared by every catalog resource: filtered and sorted
pagination, lookups, single and bulk mutations, soft delete, dialect-native
upsert and row-level pessimistic locking.

Subclasses only declare the resource's shape:

    class BankRepository(BaseRepository[Bank]):
        model = Bank
        searchable = ("code", "name")
        allowed_sorts = ("id", "code", "name", "created_at")
        active_column = "is_active"
"""

from collections.abc import Callable, Iterable, Mapping, Sequence
from contextlib import AbstractAsyncContextManager
from inspect import isawaitable
from typing import Any, Generic, TypeVar
from uuid import uuid4

from sqlalchemy import Select, delete, func, inspect, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.sql.elements import ColumnElement, Label

from catalog.core.database import atomic
from catalog.core.exceptions import DatabaseError, NotFoundError, ValidationError
from catalog.core.filters import FilterEngine, FilterHandler
from catalog.core.list_query import ListQuery, parse_filters
from catalog.core.logging import get_logger
from catalog.core.pagination import Page, count_query, paginate_query
from catalog.core.show_query import ShowQuery
from catalog.models.base import Base, supports_soft_delete, utc_now

logger = get_logger(__name__)

ModelType = TypeVar("ModelType", bound=Base)
R = TypeVar("R")

_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class BaseRepository(Generic[ModelType]):
    """
    Base repository with common CRUD operations.

    Class attributes:
        model: Mapped model class
        searchable: Columns matched by the free-text search term
        allowed_sorts: Columns a caller may sort by
        default_sort: (column, direction) used when the requested sort is not allowed
        active_column: Boolean column toggled by set_active
        strict_filters: Reject unknown filter columns instead of ignoring them
    """

    model: type[ModelType]
    searchable: tuple[str, ...] = ()
    allowed_sorts: tuple[str, ...] = ("id", "created_at", "updated_at")
    default_sort: tuple[str, str] = ("id", "desc")
    active_column: str = "active"
    strict_filters: bool = False

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.filters = FilterEngine(
            self.model,
            searchable=self.searchable,
            custom=self.filter_map(),
            strict=self.strict_filters,
        )

    # =========================================================================
    # Hooks
    # =========================================================================

    def filter_map(self) -> dict[str, FilterHandler]:
        """Per-key filter handlers that replace the standard handling."""
        return {}

    def base_query(self) -> Select:
        """Starting select for every read. Override to add joins or scopes."""
        return select(self.model)

    @property
    def soft_deletes(self) -> bool:
        return supports_soft_delete(self.model)

    def atomic(self) -> AbstractAsyncContextManager[AsyncSession]:
        """One commit/rollback unit on this repository's session."""
        return atomic(self.session)

    # =========================================================================
    # Listing
    # =========================================================================

    async def paginate(
        self,
        query: ListQuery,
        with_: Sequence[str] = (),
        with_count: Sequence[str] = (),
    ) -> Page[ModelType]:
        """
        One page of live entities matching the query's search and filters.

        Sorting falls back to `default_sort` when the requested column is
        not allowed. The primary key breaks ties, descending.
        """
        stmt = self.filters.apply(self._query(), query)
        count_stmt = stmt

        stmt = self._with_relations(stmt, with_)
        stmt, count_columns = self._with_counts(stmt, with_count)
        stmt = self._apply_sort(stmt, query.sort_column, query.sort_direction, count_columns)

        page = await paginate_query(
            self.session,
            stmt,
            page=query.page,
            per_page=query.per_page,
            count_stmt=count_stmt,
        )
        page.items = self._unpack_rows(page.items, list(count_columns))
        return page

    async def paginate_by_ids_desc(
        self,
        ids: Iterable[int],
        per_page: int,
        with_: Sequence[str] = (),
        with_count: Sequence[str] = (),
        page: int = 1,
    ) -> Page[ModelType]:
        """Page through the given ids, newest primary key first."""
        ids = list(ids)
        if not ids:
            return Page.empty(per_page=per_page, current_page=page)

        stmt = self._query().where(self.model.id.in_(ids))
        count_stmt = stmt

        stmt = self._with_relations(stmt, with_)
        stmt, count_columns = self._with_counts(stmt, with_count)
        stmt = stmt.order_by(self.model.id.desc())

        result = await paginate_query(
            self.session, stmt, page=page, per_page=per_page, count_stmt=count_stmt
        )
        result.items = self._unpack_rows(result.items, list(count_columns))
        return result

    async def all(self, with_: Sequence[str] = ()) -> list[ModelType]:
        stmt = self._with_relations(self._query(), with_)
        stmt = self._apply_sort(stmt, None, None, {})
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count(self, filters: Mapping[str, Any] | None = None) -> int:
        """Count live rows matching the same filter predicates as paginate."""
        stmt = self.filters.apply_filters(self._query(), parse_filters(filters))
        return await count_query(self.session, stmt)

    async def exists_by_id(self, id: int) -> bool:
        return await self._exists(self.model.id == id)

    async def exists_by_uuid(self, uuid: str) -> bool:
        return await self._exists(self._uuid_column() == uuid)

    # =========================================================================
    # Lookups
    # =========================================================================

    async def find_by_id(
        self,
        id: int,
        with_: Sequence[str] = (),
        with_trashed: bool = False,
    ) -> ModelType | None:
        return await self._find(self.model.id == id, with_, with_trashed)

    async def find_by_uuid(
        self,
        uuid: str,
        with_: Sequence[str] = (),
        with_trashed: bool = False,
    ) -> ModelType | None:
        return await self._find(self._uuid_column() == uuid, with_, with_trashed)

    async def find_or_fail_by_id(
        self,
        id: int,
        with_: Sequence[str] = (),
        with_trashed: bool = False,
    ) -> ModelType:
        """
        Get a single record by primary key.

        Raises:
            NotFoundError: If record not found
        """
        instance = await self.find_by_id(id, with_, with_trashed)
        if instance is None:
            raise NotFoundError(f"{self.model.__name__} not found")
        return instance

    async def find_or_fail_by_uuid(
        self,
        uuid: str,
        with_: Sequence[str] = (),
        with_trashed: bool = False,
    ) -> ModelType:
        """
        Get a single record by UUID.

        Raises:
            NotFoundError: If record not found
        """
        instance = await self.find_by_uuid(uuid, with_, with_trashed)
        if instance is None:
            raise NotFoundError(f"{self.model.__name__} not found")
        return instance

    async def show_by_id(self, id: int, query: ShowQuery) -> ModelType:
        """
        Get a single record with the relations and counts a show view asked for.

        Raises:
            NotFoundError: If record not found
            ValidationError: If a relationship name is unknown
        """
        return await self._show(self.model.id == id, query)

    async def show_by_uuid(self, uuid: str, query: ShowQuery) -> ModelType:
        return await self._show(self._uuid_column() == uuid, query)

    # =========================================================================
    # Mutations
    # =========================================================================

    async def create(self, attrs: Mapping[str, Any]) -> ModelType:
        """Create a new record from its mapped column values."""
        instance = self.model(**self._column_values(attrs))
        self.session.add(instance)
        await self.session.flush()
        await self.session.refresh(instance)
        return instance

    async def create_many(self, rows: Iterable[Mapping[str, Any]]) -> list[ModelType]:
        instances = [self.model(**self._column_values(row)) for row in rows]
        if not instances:
            return []
        self.session.add_all(instances)
        await self.session.flush()
        for instance in instances:
            await self.session.refresh(instance)
        return instances

    async def update(
        self,
        id_or_entity: int | ModelType,
        attrs: Mapping[str, Any],
    ) -> ModelType:
        """
        Update an existing record. Keys that are not mapped columns are ignored.

        Raises:
            NotFoundError: If record not found
        """
        instance = await self._resolve(id_or_entity)

        for key, value in self._column_values(attrs).items():
            setattr(instance, key, value)

        await self.session.flush()
        await self.session.refresh(instance)
        return instance

    async def upsert(
        self,
        rows: Sequence[Mapping[str, Any]],
        unique_by: Sequence[str],
        update_columns: Sequence[str] | None = None,
    ) -> int:
        """
        Insert rows, updating `update_columns` on rows that clash on `unique_by`.

        `update_columns=None` updates every supplied column except the
        unique keys; an empty sequence leaves clashing rows untouched.

        Returns:
            Number of rows inserted or updated
        """
        if not rows:
            return 0

        dialect = self.session.get_bind().dialect.name
        insert = _DIALECT_INSERTS.get(dialect)
        if insert is None:
            raise DatabaseError(f"Upsert is not supported on {dialect}")

        values = [self._insert_values(row) for row in rows]
        keys = set(values[0])
        if any(set(row) != keys for row in values):
            raise ValidationError(
                "All upsert rows must supply the same columns",
                details={"columns": sorted(keys)},
            )

        stmt = insert(self.model).values(values)
        if update_columns is None:
            update_columns = [
                key for key in values[0]
                if key not in unique_by and key not in ("id", "uuid", "created_at")
            ]

        if update_columns:
            set_ = {column: stmt.excluded[column] for column in update_columns}
            if self._has_column("updated_at"):
                set_["updated_at"] = stmt.excluded["updated_at"]
            stmt = stmt.on_conflict_do_update(index_elements=list(unique_by), set_=set_)
        else:
            stmt = stmt.on_conflict_do_nothing(index_elements=list(unique_by))

        result = await self.session.execute(stmt)
        logger.debug(
            "Upserted rows",
            extra={"model": self.model.__name__, "rows": len(values), "affected": result.rowcount},
        )
        return result.rowcount

    async def delete(self, id_or_entity: int | ModelType) -> bool:
        """Soft delete when the model supports it, hard delete otherwise."""
        instance = await self._resolve(id_or_entity)
        if self.soft_deletes:
            instance.deleted_at = utc_now()
        else:
            await self.session.delete(instance)
        await self.session.flush()
        return True

    async def force_delete(self, id_or_entity: int | ModelType) -> bool:
        """Remove the row permanently, trashed or not."""
        instance = await self._resolve(id_or_entity, with_trashed=True)
        await self.session.delete(instance)
        await self.session.flush()
        return True

    async def restore(self, id_or_entity: int | ModelType) -> bool:
        """Clear the deletion mark. Always False for models without soft delete."""
        instance = await self._resolve(id_or_entity, with_trashed=True)
        if not self.soft_deletes:
            return False
        instance.deleted_at = None
        await self.session.flush()
        return True

    async def set_active(self, id_or_entity: int | ModelType, active: bool) -> ModelType:
        return await self.update(id_or_entity, {self.active_column: active})

    # =========================================================================
    # Bulk Mutations
    # =========================================================================

    async def bulk_delete_by_ids(self, ids: Iterable[int]) -> int:
        return await self._bulk_delete(self.model.id, ids)

    async def bulk_delete_by_uuids(self, uuids: Iterable[str]) -> int:
        return await self._bulk_delete(self._uuid_column(), uuids)

    async def bulk_force_delete_by_ids(self, ids: Iterable[int]) -> int:
        return await self._bulk_force_delete(self.model.id, ids)

    async def bulk_force_delete_by_uuids(self, uuids: Iterable[str]) -> int:
        return await self._bulk_force_delete(self._uuid_column(), uuids)

    async def bulk_restore_by_ids(self, ids: Iterable[int]) -> int:
        return await self._bulk_restore(self.model.id, ids)

    async def bulk_restore_by_uuids(self, uuids: Iterable[str]) -> int:
        return await self._bulk_restore(self._uuid_column(), uuids)

    async def bulk_set_active_by_ids(self, ids: Iterable[int], active: bool) -> int:
        return await self._bulk_set_active(self.model.id, ids, active)

    async def bulk_set_active_by_uuids(self, uuids: Iterable[str], active: bool) -> int:
        return await self._bulk_set_active(self._uuid_column(), uuids, active)

    # =========================================================================
    # Pessimistic Locking
    # =========================================================================

    async def with_pessimistic_lock_by_id(
        self,
        id: int,
        fn: Callable[[ModelType], R],
    ) -> R:
        """
        Lock the row with SELECT .. FOR UPDATE and call `fn` with it.

        Runs in its own transaction scope, or a savepoint when one is open.
        `fn` may be a plain function or a coroutine function.

        Raises:
            NotFoundError: If the row does not exist; `fn` is not called
        """
        return await self._with_lock(self.model.id == id, fn)

    async def with_pessimistic_lock_by_uuid(
        self,
        uuid: str,
        fn: Callable[[ModelType], R],
    ) -> R:
        return await self._with_lock(self._uuid_column() == uuid, fn)

    # =========================================================================
    # Internals
    # =========================================================================

    def _query(self, with_trashed: bool = False) -> Select:
        stmt = self.base_query()
        if self.soft_deletes and not with_trashed:
            stmt = stmt.where(self.model.deleted_at.is_(None))
        return stmt

    def _has_column(self, name: str) -> bool:
        return self.filters.has_column(name)

    def _uuid_column(self) -> Any:
        if not self._has_column("uuid"):
            raise TypeError(f"{self.model.__name__} has no uuid column")
        return self.model.uuid

    def _column_values(self, attrs: Mapping[str, Any]) -> dict[str, Any]:
        values = {key: value for key, value in attrs.items() if self._has_column(key)}
        ignored = set(attrs) - set(values)
        if ignored:
            logger.debug(
                "Ignoring unmapped attributes",
                extra={"model": self.model.__name__, "attributes": sorted(ignored)},
            )
        return values

    def _insert_values(self, row: Mapping[str, Any]) -> dict[str, Any]:
        """Column values for a Core insert, with the model's defaults filled in."""
        values = self._column_values(row)
        now = utc_now()
        for column in self.model.__table__.columns:
            if column.key in values or column.primary_key:
                continue
            if column.key in ("created_at", "updated_at"):
                values[column.key] = now
            elif column.key == "uuid":
                values[column.key] = str(uuid4())
            elif column.default is not None and column.default.is_scalar:
                values[column.key] = column.default.arg
        return values

    def _with_relations(self, stmt: Select, with_: Sequence[str]) -> Select:
        """Eager-load relationships; dotted names load nested relations."""
        for path in with_:
            mapper = inspect(self.model)
            loader = None
            for name in path.split("."):
                relationship = mapper.relationships.get(name)
                if relationship is None:
                    raise ValidationError(
                        f"Unknown relationship '{path}' for {self.model.__name__}",
                        details={"relationship": path},
                    )
                attribute = getattr(mapper.class_, name)
                loader = selectinload(attribute) if loader is None else loader.selectinload(attribute)
                mapper = relationship.mapper
            stmt = stmt.options(loader)
        return stmt

    def _with_counts(
        self,
        stmt: Select,
        with_count: Sequence[str],
    ) -> tuple[Select, dict[str, Label]]:
        """Attach a correlated count subquery per relationship."""
        labels: dict[str, Label] = {}
        relationships = inspect(self.model).relationships
        for name in with_count:
            relationship = relationships.get(name)
            if relationship is None:
                raise ValidationError(
                    f"Unknown relationship '{name}' for {self.model.__name__}",
                    details={"relationship": name},
                )

            target = relationship.mapper.class_
            source = relationship.secondary if relationship.secondary is not None else target
            subquery = (
                select(func.count())
                .select_from(source)
                .where(relationship.primaryjoin)
                .correlate(self.model)
            )
            if relationship.secondary is None and supports_soft_delete(target):
                subquery = subquery.where(target.deleted_at.is_(None))

            label = subquery.scalar_subquery().label(f"{name}_count")
            labels[label.name] = label
            stmt = stmt.add_columns(label)
        return stmt, labels

    def _apply_sort(
        self,
        stmt: Select,
        sort_column: str | None,
        sort_direction: str | None,
        count_columns: Mapping[str, Label],
    ) -> Select:
        column: ColumnElement[Any] | Label
        if sort_column in count_columns:
            column, direction = count_columns[sort_column], sort_direction
        elif sort_column in self.allowed_sorts and self._has_column(sort_column):
            column, direction = getattr(self.model, sort_column), sort_direction
        else:
            if sort_column:
                logger.debug(
                    "Falling back to default sort",
                    extra={"model": self.model.__name__, "requested": sort_column},
                )
            name, direction = self.default_sort
            column = getattr(self.model, name)

        stmt = stmt.order_by(column.asc() if direction == "asc" else column.desc())
        if column is not self.model.id:
            stmt = stmt.order_by(self.model.id.desc())
        return stmt

    @staticmethod
    def _unpack_rows(rows: list[Any], count_names: list[str]) -> list[Any]:
        """Entities from result rows, with any count columns attached."""
        entities = []
        for row in rows:
            entity = row[0]
            if count_names:
                entity.set_loaded_counts(
                    {name: int(row[index + 1] or 0) for index, name in enumerate(count_names)}
                )
            entities.append(entity)
        return entities

    async def _find(
        self,
        criterion: ColumnElement[bool],
        with_: Sequence[str],
        with_trashed: bool,
        with_count: Sequence[str] = (),
    ) -> ModelType | None:
        stmt = self._with_relations(self._query(with_trashed).where(criterion), with_)
        if not with_count:
            result = await self.session.execute(stmt)
            return result.scalar_one_or_none()

        stmt, count_columns = self._with_counts(stmt, with_count)
        rows = (await self.session.execute(stmt)).all()
        if not rows:
            return None
        return self._unpack_rows(rows[:1], list(count_columns))[0]

    async def _show(self, criterion: ColumnElement[bool], query: ShowQuery) -> ModelType:
        instance = await self._find(criterion, query.with_, query.with_trashed, query.with_count)
        if instance is None:
            raise NotFoundError(f"{self.model.__name__} not found")
        return instance

    async def _exists(self, criterion: ColumnElement[bool]) -> bool:
        stmt = select(self._query().where(criterion).exists())
        result = await self.session.execute(stmt)
        return bool(result.scalar())

    async def _resolve(
        self,
        id_or_entity: int | ModelType,
        with_trashed: bool = False,
    ) -> ModelType:
        if isinstance(id_or_entity, self.model):
            return id_or_entity
        return await self.find_or_fail_by_id(id_or_entity, with_trashed=with_trashed)

    def _timestamped(self, values: dict[str, Any]) -> dict[str, Any]:
        if self._has_column("updated_at"):
            values["updated_at"] = utc_now()
        return values

    async def _bulk_update(self, stmt: Any, keys: list[Any]) -> int:
        result = await self.session.execute(
            stmt.execution_options(synchronize_session="fetch")
        )
        logger.debug(
            "Bulk mutation applied",
            extra={"model": self.model.__name__, "requested": len(keys), "affected": result.rowcount},
        )
        return result.rowcount

    async def _bulk_delete(self, key_column: Any, keys: Iterable[Any]) -> int:
        keys = list(keys)
        if not keys:
            return 0
        if not self.soft_deletes:
            return await self._bulk_update(delete(self.model).where(key_column.in_(keys)), keys)
        stmt = (
            update(self.model)
            .where(key_column.in_(keys), self.model.deleted_at.is_(None))
            .values(**self._timestamped({"deleted_at": utc_now()}))
        )
        return await self._bulk_update(stmt, keys)

    async def _bulk_force_delete(self, key_column: Any, keys: Iterable[Any]) -> int:
        keys = list(keys)
        if not keys:
            return 0
        return await self._bulk_update(delete(self.model).where(key_column.in_(keys)), keys)

    async def _bulk_restore(self, key_column: Any, keys: Iterable[Any]) -> int:
        keys = list(keys)
        if not keys or not self.soft_deletes:
            return 0
        stmt = (
            update(self.model)
            .where(key_column.in_(keys), self.model.deleted_at.is_not(None))
            .values(**self._timestamped({"deleted_at": None}))
        )
        return await self._bulk_update(stmt, keys)

    async def _bulk_set_active(self, key_column: Any, keys: Iterable[Any], active: bool) -> int:
        keys = list(keys)
        if not keys:
            return 0
        stmt = update(self.model).where(key_column.in_(keys))
        if self.soft_deletes:
            stmt = stmt.where(self.model.deleted_at.is_(None))
        stmt = stmt.values(**self._timestamped({self.active_column: active}))
        return await self._bulk_update(stmt, keys)

    async def _with_lock(
        self,
        criterion: ColumnElement[bool],
        fn: Callable[[ModelType], Any],
    ) -> Any:
        async with self.atomic():
            stmt = (
                self._query()
                .where(criterion)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            result = await self.session.execute(stmt)
            instance = result.scalar_one_or_none()
            if instance is None:
                raise NotFoundError(f"{self.model.__name__} not found")

            outcome = fn(instance)
            if isawaitable(outcome):
                outcome = await outcome
            await self.session.flush()
            return outcome
