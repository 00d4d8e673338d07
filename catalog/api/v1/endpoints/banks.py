"""
Banks API Endpoints.
"""

from catalog.api.v1.catalog_router import CatalogResource, build_catalog_router
from catalog.repositories.bank import BankRepository
from catalog.schemas.catalogs import BankCreate, BankResponse, BankUpdate
from catalog.services.bank import BankService

resource = CatalogResource(
    repository=BankRepository,
    service=BankService,
    create_schema=BankCreate,
    update_schema=BankUpdate,
    response_schema=BankResponse,
)

router = build_catalog_router(resource)
