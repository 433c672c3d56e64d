"""
Generated CRUD routes

create_router() builds the APIRouter for one resource:

    GET    /                  list with pagination, filtering, sorting, search
    GET    /filters/{field}   distinct values (only when filterBy is set)
    GET    /{document_id}     get one
    POST   /                  create
    PUT    /{document_id}     full update (replace)
    PATCH  /{document_id}     partial update
    DELETE /{document_id}     delete

Mutation bodies are JSON, or multipart/form-data when the resource has file
fields. Blocking store and blob calls run in the threadpool.
"""

import json
from typing import Any, Dict, Tuple

from bson import ObjectId
from fastapi import APIRouter, BackgroundTasks, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.encoders import jsonable_encoder
from starlette.datastructures import UploadFile

from attachments import BYTES_PER_MB, UploadedFile
from docs import list_parameters, request_body
from errors import AttachmentValidationError, RequestValidationError
from handlers import MutationResult, ResourceService
from schemas import DEFAULT_MAX_FILE_SIZE_MB

_FORM_TYPES = ("multipart/form-data", "application/x-www-form-urlencoded")


def encode(value: Any) -> Any:
    return jsonable_encoder(value, custom_encoder={ObjectId: str})


def _too_large(field_name: str, limit_mb: float) -> AttachmentValidationError:
    return AttachmentValidationError([f'File "{field_name}" exceeds the upload limit of {limit_mb:g}MB'])


async def read_payload(request: Request, max_file_mb: float = DEFAULT_MAX_FILE_SIZE_MB) -> Tuple[Dict[str, Any], Dict[str, UploadedFile]]:
    max_file_bytes = max_file_mb * BYTES_PER_MB
    content_type = request.headers.get("content-type", "").lower()

    if content_type.startswith(_FORM_TYPES):
        form = await request.form()
        body, files = {}, {}
        for key, value in form.multi_items():
            if isinstance(value, UploadFile):
                if key in files:
                    continue
                # parts are spooled to disk by the parser; refuse oversize ones before reading
                if value.size is not None and value.size > max_file_bytes:
                    raise _too_large(key, max_file_mb)
                content = await value.read()
                if len(content) > max_file_bytes:
                    raise _too_large(key, max_file_mb)
                files[key] = UploadedFile(
                    filename=value.filename or "",
                    content_type=value.content_type or "application/octet-stream",
                    content=content,
                )
            else:
                body[key] = value
        return body, files

    raw = await request.body()
    if not raw.strip():
        return {}, {}
    try:
        body = json.loads(raw)
    except ValueError:
        raise RequestValidationError("Invalid JSON in request body")
    if not isinstance(body, dict):
        raise RequestValidationError("Request body must be a JSON object")
    return body, {}


def _mutation_response(service: ResourceService, result: MutationResult, background_tasks: BackgroundTasks, **extra):
    if result.stale_urls:
        background_tasks.add_task(service.cleanup, result.stale_urls)
    return {"success": True, **extra, "data": encode(result.document)}


def create_router(service: ResourceService) -> APIRouter:
    resource = service.resource
    router = APIRouter(tags=[resource.name])

    if resource.filterable_fields:
        @router.get("/filters/{field}", summary=f"Distinct values of a {resource.name} filter field")
        def list_filter_values(field: str):
            values = service.distinct(field)
            return {
                "success": True,
                "resource": resource.name,
                "field": field,
                "count": len(values),
                "values": encode(values),
            }

    @router.get("", summary=f"List {resource.name}", openapi_extra=list_parameters(resource))
    def list_documents(request: Request):
        result = service.list(dict(request.query_params))
        return {
            "success": True,
            "data": encode(result.documents),
            "pagination": result.pagination.model_dump(),
        }

    @router.get("/{document_id}", summary=f"Get one {resource.name} by id")
    def get_document(document_id: str):
        return {"success": True, "data": encode(service.get(document_id))}

    @router.post("", status_code=201, summary=f"Create {resource.name}", openapi_extra=request_body(resource, for_create=True))
    async def create_document(request: Request, background_tasks: BackgroundTasks):
        body, files = await read_payload(request, resource.upload_limit_mb)
        result = await run_in_threadpool(service.create, body, files)
        return _mutation_response(service, result, background_tasks)

    @router.put("/{document_id}", summary=f"Replace {resource.name}", openapi_extra=request_body(resource, for_create=False))
    async def replace_document(document_id: str, request: Request, background_tasks: BackgroundTasks):
        body, files = await read_payload(request, resource.upload_limit_mb)
        result = await run_in_threadpool(service.replace, document_id, body, files)
        return _mutation_response(service, result, background_tasks)

    @router.patch("/{document_id}", summary=f"Update {resource.name}", openapi_extra=request_body(resource, for_create=False))
    async def patch_document(document_id: str, request: Request, background_tasks: BackgroundTasks):
        body, files = await read_payload(request, resource.upload_limit_mb)
        result = await run_in_threadpool(service.patch, document_id, body, files)
        return _mutation_response(service, result, background_tasks)

    @router.delete("/{document_id}", summary=f"Delete {resource.name}")
    def delete_document(document_id: str, background_tasks: BackgroundTasks):
        result = service.delete(document_id)
        return _mutation_response(
            service, result, background_tasks,
            message=f"{resource.name} deleted successfully",
        )

    return router
