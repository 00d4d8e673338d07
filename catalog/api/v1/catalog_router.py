"""
Catalog Router Factory.

Builds the standard set of endpoints for one catalog resource:

    GET    ""                list (q, page, per_page, sort, dir, filters[...])
    GET    /export           download as csv, json or xlsx
    GET    /{item_id}        show (with, with_count, with_trashed)
    GET    /by-uuid/{uuid}   show by UUID
    POST   ""                create
    PATCH  /{item_id}        update (optionally guarded by expected_updated_at)
    DELETE /{item_id}        delete (soft when supported)
    DELETE /{item_id}/force  force delete
    POST   /{item_id}/restore
    PATCH  /{item_id}/active
    POST   /bulk             bulk delete, force_delete, restore or set_active

Usage:
    router = build_catalog_router(CatalogResource(
        repository=BankRepository,
        service=BankService,
        create_schema=BankCreate,
        update_schema=BankUpdate,
        response_schema=BankResponse,
    ))
"""

from dataclasses import dataclass
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.background import BackgroundTask

from catalog.core.config import get_app_config
from catalog.core.database import get_streaming_session
from catalog.core.dependencies import DbSession, ListQueryParams, RequestId, ShowQueryParams
from catalog.core.exceptions import ValidationError
from catalog.exporters import get_exporter_registry
from catalog.repositories.base import BaseRepository
from catalog.schemas.base import (
    ActiveUpdate,
    ApiResponse,
    BulkAction,
    BulkResult,
    DeleteResult,
    ListResult,
    ResponseMetadata,
    ShowResult,
)
from catalog.services.base import BaseService


@dataclass(frozen=True)
class CatalogResource:
    """Everything the router factory needs to know about one resource."""

    repository: type[BaseRepository[Any]]
    service: type[BaseService[Any]]
    create_schema: type[BaseModel]
    update_schema: type[BaseModel]
    response_schema: type[BaseModel]
    list_with_count: tuple[str, ...] = ()

    def build_service(self, session: AsyncSession) -> BaseService[Any]:
        return self.service(
            self.repository(session),
            exporters=get_exporter_registry(),
            export_page_size=get_app_config().application.export.page_size,
        )


def build_catalog_router(resource: CatalogResource) -> APIRouter:
    """Create the endpoint set for one catalog resource."""
    router = APIRouter()
    Item = resource.response_schema
    CreateSchema = resource.create_schema
    UpdateSchema = resource.update_schema

    def item_response(service: BaseService[Any], entity: Any, request_id: str) -> ApiResponse[Any]:
        return ApiResponse(
            data=Item.model_validate(service.to_row(entity)),
            metadata=ResponseMetadata(request_id=request_id),
        )

    @router.get(
        "",
        response_model=ApiResponse[ListResult[Item]],
        summary="List records (paginated)",
    )
    async def list_items(
        db: DbSession,
        request_id: RequestId,
        query: ListQueryParams,
    ) -> ApiResponse[ListResult[Item]]:
        """List records with search, filters, sort and pagination."""
        service = resource.build_service(db)
        result = await service.list(query, with_count=resource.list_with_count)
        return ApiResponse(
            data={"rows": [Item.model_validate(row) for row in result["rows"]], "meta": result["meta"]},
            metadata=ResponseMetadata(request_id=request_id),
        )

    @router.get(
        "/export",
        response_class=StreamingResponse,
        summary="Export records",
    )
    async def export_items(
        session: Annotated[AsyncSession, Depends(get_streaming_session)],
        query: ListQueryParams,
        format: str = Query(default="csv", description="csv, json or xlsx"),
    ) -> StreamingResponse:
        """Stream every record matching the list filters as a file."""
        allowed = get_app_config().application.export.formats
        if format.lower() not in allowed:
            await session.close()
            raise ValidationError(
                f"Unsupported export format: {format}",
                details={"format": format, "supported": allowed},
            )

        service = resource.build_service(session)
        try:
            response = await service.export(query, format)
        except Exception:
            await session.close()
            raise
        response.background = BackgroundTask(session.close)
        return response

    def show_response(result: dict[str, Any], request_id: str) -> ApiResponse[ShowResult[Item]]:
        return ApiResponse(
            data={"item": Item.model_validate(result["item"]), "meta": result["meta"]},
            metadata=ResponseMetadata(request_id=request_id),
        )

    @router.get(
        "/by-uuid/{item_uuid}",
        response_model=ApiResponse[ShowResult[Item]],
        summary="Get a record by UUID",
    )
    async def get_item_by_uuid(
        item_uuid: str,
        db: DbSession,
        request_id: RequestId,
        query: ShowQueryParams,
    ) -> ApiResponse[ShowResult[Item]]:
        service = resource.build_service(db)
        return show_response(await service.show_by_uuid(item_uuid, query), request_id)

    @router.get(
        "/{item_id}",
        response_model=ApiResponse[ShowResult[Item]],
        summary="Get a record",
        description="Accepts with, with_count and with_trashed.",
    )
    async def get_item(
        item_id: int,
        db: DbSession,
        request_id: RequestId,
        query: ShowQueryParams,
    ) -> ApiResponse[ShowResult[Item]]:
        service = resource.build_service(db)
        return show_response(await service.show_by_id(item_id, query), request_id)

    @router.post(
        "",
        response_model=ApiResponse[Item],
        status_code=201,
        summary="Create a record",
    )
    async def create_item(
        data: CreateSchema,
        db: DbSession,
        request_id: RequestId,
    ) -> ApiResponse[Item]:
        service = resource.build_service(db)
        entity = await service.create(data.model_dump())
        return item_response(service, entity, request_id)

    @router.patch(
        "/{item_id}",
        response_model=ApiResponse[Item],
        summary="Update a record",
        description="Only provided fields are updated.",
    )
    async def update_item(
        item_id: int,
        data: UpdateSchema,
        db: DbSession,
        request_id: RequestId,
    ) -> ApiResponse[Item]:
        attrs = data.model_dump(exclude_unset=True)
        expected_updated_at = attrs.pop("expected_updated_at", None)

        service = resource.build_service(db)
        entity = await service.update(item_id, attrs, expected_updated_at=expected_updated_at)
        return item_response(service, entity, request_id)

    @router.delete(
        "/{item_id}",
        response_model=ApiResponse[DeleteResult],
        summary="Delete a record",
        description="Soft delete when the resource supports it.",
    )
    async def delete_item(item_id: int, db: DbSession, request_id: RequestId) -> ApiResponse[DeleteResult]:
        service = resource.build_service(db)
        done = await service.delete(item_id)
        return ApiResponse(data=DeleteResult(id=item_id, done=done), metadata=ResponseMetadata(request_id=request_id))

    @router.delete(
        "/{item_id}/force",
        response_model=ApiResponse[DeleteResult],
        summary="Permanently delete a record",
    )
    async def force_delete_item(item_id: int, db: DbSession, request_id: RequestId) -> ApiResponse[DeleteResult]:
        service = resource.build_service(db)
        done = await service.force_delete(item_id)
        return ApiResponse(data=DeleteResult(id=item_id, done=done), metadata=ResponseMetadata(request_id=request_id))

    @router.post(
        "/{item_id}/restore",
        response_model=ApiResponse[DeleteResult],
        summary="Restore a deleted record",
    )
    async def restore_item(item_id: int, db: DbSession, request_id: RequestId) -> ApiResponse[DeleteResult]:
        service = resource.build_service(db)
        done = await service.restore(item_id)
        return ApiResponse(data=DeleteResult(id=item_id, done=done), metadata=ResponseMetadata(request_id=request_id))

    @router.patch(
        "/{item_id}/active",
        response_model=ApiResponse[Item],
        summary="Activate or deactivate a record",
    )
    async def set_item_active(
        item_id: int,
        data: ActiveUpdate,
        db: DbSession,
        request_id: RequestId,
    ) -> ApiResponse[Item]:
        service = resource.build_service(db)
        entity = await service.set_active(item_id, data.active)
        return item_response(service, entity, request_id)

    @router.post(
        "/bulk",
        response_model=ApiResponse[BulkResult],
        summary="Apply one mutation to many records",
    )
    async def bulk_items(data: BulkAction, db: DbSession, request_id: RequestId) -> ApiResponse[BulkResult]:
        service = resource.build_service(db)
        affected = await run_bulk_action(service, data)
        return ApiResponse(
            data=BulkResult(action=data.action, affected=affected),
            metadata=ResponseMetadata(request_id=request_id),
        )

    return router


async def run_bulk_action(service: BaseService[Any], data: BulkAction) -> int:
    """Dispatch a bulk request to the matching service operation."""
    by_uuid = data.uuids is not None
    keys = data.uuids if by_uuid else data.ids
    suffix = "uuids" if by_uuid else "ids"

    if data.action == "set_active":
        operation = getattr(service, f"bulk_set_active_by_{suffix}")
        return await operation(keys, data.active)

    operation = getattr(service, f"bulk_{data.action}_by_{suffix}")
    return await operation(keys)
