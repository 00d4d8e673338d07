"""
FastAPI Dependencies.

Shared dependencies for request handling.
"""

import uuid
from typing import Annotated

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from catalog.core.config import get_app_config
from catalog.core.database import get_db_session
from catalog.core.list_query import ListQuery
from catalog.core.show_query import ShowQuery

# Type alias for database session dependency
DbSession = Annotated[AsyncSession, Depends(get_db_session)]


async def get_request_id(x_request_id: str | None = Header(None)) -> str:
    """
    Extract or generate request ID from headers.

    Used for request tracing and correlation.
    """
    return x_request_id or str(uuid.uuid4())


RequestId = Annotated[str, Depends(get_request_id)]


async def get_list_query(request: Request) -> ListQuery:
    """
    Build a ListQuery from the query string.

    Supports q, page, per_page, sort, dir and bracketed filters, e.g.
    `?filters[is_active]=true&filters[code_in][]=A&filters[code_in][]=B`.
    """
    pagination = get_app_config().application.pagination
    return ListQuery.from_params(
        request.query_params.multi_items(),
        default_per_page=pagination.default_per_page,
        max_per_page=pagination.max_per_page,
    )


ListQueryParams = Annotated[ListQuery, Depends(get_list_query)]


async def get_show_query(request: Request) -> ShowQuery:
    """
    Build a ShowQuery from the query string.

    e.g. `?with=locals&with_count=locals&with_trashed=true`; names may also
    be repeated or comma-separated.
    """
    return ShowQuery.from_params(request.query_params.multi_items())


ShowQueryParams = Annotated[ShowQuery, Depends(get_show_query)]
