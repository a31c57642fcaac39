"""
Route generator - mounts CRUD routes for a registered model.

Annotations here are evaluated eagerly (no postponed annotations) because
FastAPI reads the generated schema classes off the handler signatures.
"""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Query, Request, Response
from pydantic import BaseModel

from miles.core.errors import NotFoundError
from miles.runtime.query_builder import (
    DEFAULT_PAGE_SIZE,
    parse_filter_string,
    parse_sort_string,
)
from miles.runtime.service_generator import CRUDService
from miles.specs import EntitySpec

RESERVED_PARAMS = {"page", "page_size", "sort", "include", "filter"}


def query_params_to_filters(params: Any) -> dict[str, Any]:
    """
    Collect ``field__op=value`` query parameters into a filters dict.

    Values stay strings; the repository coerces them to each column's type.
    """
    return {key: raw for key, raw in params.items() if key not in RESERVED_PARAMS}


def parse_include(include: str | None) -> list[str]:
    if not include:
        return []
    return [name.strip() for name in include.split(",") if name.strip()]


# =============================================================================
# CRUD Routes
# =============================================================================


def generate_crud_routes(
    entity: EntitySpec,
    service: CRUDService[Any],
    model: type[BaseModel],
    create_schema: type[BaseModel],
    update_schema: type[BaseModel],
    list_schema: type[BaseModel] | None = None,
    prefix: str | None = None,
    tags: list[str] | None = None,
    read_only: bool = False,
) -> APIRouter:
    """
    Generate REST routes for an entity.

    Routes:
        GET    /<resource>          list (page, page_size, sort, include, filter, field__op)
        GET    /<resource>/{id}     read (include)
        POST   /<resource>          create -> 201
        PUT    /<resource>/{id}     full replace
        PATCH  /<resource>/{id}     partial update
        DELETE /<resource>/{id}     delete -> 204

    Read-only entities get the two GET routes only.

    Args:
        entity: Entity specification
        service: CRUD service instance
        model: Read model
        create_schema: Body schema for POST and PUT
        update_schema: Body schema for PATCH
        list_schema: List envelope, used for OpenAPI docs
        prefix: URL prefix (default /<resource>)
        tags: OpenAPI tags (default [entity name])
        read_only: Mount only the GET routes
    """
    router = APIRouter()
    name = entity.name
    prefix = prefix or f"/{entity.resource}"
    tags = tags or [name]
    item_path = f"{prefix}/{{id}}"

    @router.get(
        prefix,
        tags=tags,
        summary=f"List {name}",
        responses={200: {"model": list_schema}} if list_schema else None,
    )
    async def list_items(
        request: Request,
        page: int = Query(1, description="Page number (1-indexed)"),
        page_size: int = Query(DEFAULT_PAGE_SIZE, description="Items per page (max 1000)"),
        sort: str | None = Query(None, description="e.g. 'done,-created_at'"),
        include: str | None = Query(None, description="Comma-separated relation names"),
        filter: str | None = Query(None, description="e.g. 'done=false,priority__gte=2'"),
    ) -> Any:
        filters = parse_filter_string(filter or "", typed=False)
        filters.update(query_params_to_filters(request.query_params))
        return await service.execute(
            operation="list",
            page=page,
            page_size=page_size,
            filters=filters or None,
            sort=parse_sort_string(sort or "") or None,
            include=parse_include(include) or None,
        )

    @router.get(
        item_path,
        tags=tags,
        summary=f"Get {name}",
        responses={200: {"model": model}},
    )
    async def get_item(
        id: UUID,
        include: str | None = Query(None, description="Comma-separated relation names"),
    ) -> Any:
        result = await service.execute(
            operation="read", id=id, include=parse_include(include) or None
        )
        if result is None:
            raise NotFoundError(name, id)
        return result

    if read_only:
        return router

    @router.post(
        prefix,
        tags=tags,
        summary=f"Create {name}",
        response_model=model,
        status_code=201,
    )
    async def create_item(data: create_schema) -> Any:  # type: ignore[valid-type]
        return await service.execute(operation="create", data=data)

    @router.put(item_path, tags=tags, summary=f"Replace {name}", response_model=model)
    async def replace_item(id: UUID, data: create_schema) -> Any:  # type: ignore[valid-type]
        result = await service.execute(operation="replace", id=id, data=data)
        if result is None:
            raise NotFoundError(name, id)
        return result

    @router.patch(item_path, tags=tags, summary=f"Update {name}", response_model=model)
    async def update_item(id: UUID, data: update_schema) -> Any:  # type: ignore[valid-type]
        result = await service.execute(operation="update", id=id, data=data)
        if result is None:
            raise NotFoundError(name, id)
        return result

    @router.delete(item_path, tags=tags, summary=f"Delete {name}", status_code=204)
    async def delete_item(id: UUID) -> Response:
        if not await service.execute(operation="delete", id=id):
            raise NotFoundError(name, id)
        return Response(status_code=204)

    return router
