"""
Admin Programs API Endpoints
============================

Program catalogue administration. A program is created or replaced as a
whole from a validated payload (marketing page and day outline); status
and metadata can also be patched.
"""

from fastapi import APIRouter, Depends, Query, status

from ancretoi.core.rate_limit import create_rate_limit_dependency
from ancretoi.dependencies import CurrentAdmin, DBSession, ListParams
from ancretoi.schemas.common import DataResponse, PaginatedResponse
from ancretoi.schemas.program import ProgramCreate, ProgramUpdate
from ancretoi.services.program_service import ProgramService
from ancretoi.services.toolbar import apply_query, program_haystack

router = APIRouter()

CREATE_LIMIT = create_rate_limit_dependency("create")


@router.get("", response_model=PaginatedResponse[dict])
async def list_programs(admin: CurrentAdmin, db: DBSession, query: ListParams):
    rows = await ProgramService(db).list_programs()
    page, meta = apply_query(rows, query, program_haystack)
    return PaginatedResponse[dict](data=page, pagination=meta)


@router.post(
    "",
    response_model=DataResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(CREATE_LIMIT)],
)
async def create_program(body: ProgramCreate, admin: CurrentAdmin, db: DBSession):
    """Create a program (or replace the one with the same slug)."""
    result = await ProgramService(db).upsert(body)
    return DataResponse(data=result, message="Formation créée ✅")


@router.get("/{slug}", response_model=DataResponse)
async def get_program(slug: str, admin: CurrentAdmin, db: DBSession):
    program = await ProgramService(db).get(slug)
    return DataResponse(data=program.to_api_dict())


@router.put("/{slug}", response_model=DataResponse)
async def replace_program(slug: str, body: ProgramCreate, admin: CurrentAdmin, db: DBSession):
    """Full replacement; the payload slug must match the URL."""
    result = await ProgramService(db).upsert(body, path_slug=slug)
    return DataResponse(data=result, message="Formation mise à jour ✅")


@router.patch("/{slug}", response_model=DataResponse)
async def update_program(slug: str, body: ProgramUpdate, admin: CurrentAdmin, db: DBSession):
    program = await ProgramService(db).update(slug, body)
    return DataResponse(data=program.to_api_dict(), message="Formation mise à jour.")


@router.delete("/{slug}", response_model=DataResponse)
async def delete_program(
    slug: str,
    admin: CurrentAdmin,
    db: DBSession,
    dry_run: bool = Query(default=False, alias="dryRun"),
):
    """
    Soft delete. ``?dryRun=true`` only reports the units, enrollments and
    day states attached to the program.
    """
    service = ProgramService(db)
    if dry_run:
        return DataResponse(data={"dryRun": True, **await service.delete_preview(slug)})
    return DataResponse(data=await service.soft_delete(slug))
