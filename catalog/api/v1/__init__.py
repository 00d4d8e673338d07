"""
API Version 1 Router.

Aggregates all v1 endpoint routers. RESOURCES maps each URL prefix to its
catalog resource, for callers outside HTTP such as the CLI exporter.
"""

from fastapi import APIRouter

from catalog.api.v1.catalog_router import CatalogResource
from catalog.api.v1.endpoints import banks, locals, markets

RESOURCES: dict[str, CatalogResource] = {
    "banks": banks.resource,
    "markets": markets.resource,
    "locals": locals.resource,
}

router = APIRouter()

router.include_router(banks.router, prefix="/banks", tags=["banks"])
router.include_router(markets.router, prefix="/markets", tags=["markets"])
router.include_router(locals.router, prefix="/locals", tags=["locals"])
