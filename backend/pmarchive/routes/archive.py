from typing import Optional

import aiosqlite
from fastapi import APIRouter, Body, Depends, Query
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError

from ..auth import current_user_id
from ..database import get_db
from ..models.archive import ArchiveCreate, ArchiveOut, UnarchiveOut
from ..models.responses import ArchiveErrorDetail, ErrorDetail
from ..services.archive import ArchiveService

router = APIRouter(prefix="/api/archive", tags=["archive"])

_400 = {400: {"model": ArchiveErrorDetail, "description": "Business rule violation"}}
_401 = {401: {"model": ErrorDetail, "description": "Missing or unknown caller"}}


async def get_archive_service(db: aiosqlite.Connection = Depends(get_db)) -> ArchiveService:
    return ArchiveService(db)


@router.post("/archive", response_model=ArchiveOut, summary="Archive an entity",
             responses={**_400, **_401})
async def archive_entity(
    req: ArchiveCreate,
    user_id: str = Depends(current_user_id),
    service: ArchiveService = Depends(get_archive_service),
):
    """Archive a project, user or message for the calling user."""
    return await service.archive(req.entity_id, req.entity_type, user_id)


@router.post("/unarchive", response_model=UnarchiveOut, summary="Unarchive an entity",
             responses={**_400, **_401})
async def unarchive_entity(
    entity_id: Optional[str] = Query(None, alias="entityId"),
    entity_type: Optional[str] = Query(None, alias="entityType"),
    body: Optional[ArchiveCreate] = Body(None),
    user_id: str = Depends(current_user_id),
    service: ArchiveService = Depends(get_archive_service),
):
    """Remove the caller's own archive of an entity.

    Accepts ``entityId``/``entityType`` as query parameters (dashboard clients)
    or as a JSON body.
    """
    if entity_id is not None or entity_type is not None:
        try:
            req = ArchiveCreate(entity_id=entity_id, entity_type=entity_type)
        except ValidationError as exc:
            raise RequestValidationError(
                [{**err, "loc": ("query", *err["loc"])} for err in exc.errors()]
            ) from exc
    elif body is not None:
        req = body
    else:
        raise RequestValidationError([{
            "loc": ("query", "entityId"),
            "msg": "entityId and entityType are required",
            "type": "missing",
        }])
    success = await service.unarchive(req.entity_id, req.entity_type, user_id)
    return {"success": success}


@router.get("/my-archives", response_model=list[ArchiveOut], summary="List my archives",
            responses=_401)
async def my_archives(
    user_id: str = Depends(current_user_id),
    service: ArchiveService = Depends(get_archive_service),
):
    """Archive records owned by the caller, most recent first."""
    return await service.list_my_archives(user_id)
