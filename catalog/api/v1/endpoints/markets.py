"""
Markets API Endpoints.

The standard catalog endpoints plus a guarded deactivation.
"""

from catalog.api.v1.catalog_router import CatalogResource, build_catalog_router
from catalog.core.dependencies import DbSession, RequestId
from catalog.repositories.market import MarketRepository
from catalog.schemas.base import ApiResponse, ResponseMetadata
from catalog.schemas.catalogs import MarketCreate, MarketResponse, MarketUpdate
from catalog.services.market import MarketService

resource = CatalogResource(
    repository=MarketRepository,
    service=MarketService,
    create_schema=MarketCreate,
    update_schema=MarketUpdate,
    response_schema=MarketResponse,
    list_with_count=("locals",),
)

router = build_catalog_router(resource)


@router.post(
    "/{item_id}/deactivate",
    response_model=ApiResponse[MarketResponse],
    summary="Deactivate a market",
    description="Refused with 409 while the market still has active locals.",
)
async def deactivate_market(
    item_id: int,
    db: DbSession,
    request_id: RequestId,
) -> ApiResponse[MarketResponse]:
    service = resource.build_service(db)
    market = await service.deactivate_if_empty(item_id)
    return ApiResponse(
        data=MarketResponse.model_validate(service.to_row(market)),
        metadata=ResponseMetadata(request_id=request_id),
    )
