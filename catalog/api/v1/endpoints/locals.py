"""
Locals API Endpoints.
"""

from catalog.api.v1.catalog_router import CatalogResource, build_catalog_router
from catalog.repositories.market import LocalRepository
from catalog.schemas.catalogs import LocalCreate, LocalResponse, LocalUpdate
from catalog.services.market import LocalService

resource = CatalogResource(
    repository=LocalRepository,
    service=LocalService,
    create_schema=LocalCreate,
    update_schema=LocalUpdate,
    response_schema=LocalResponse,
)

router = build_catalog_router(resource)
