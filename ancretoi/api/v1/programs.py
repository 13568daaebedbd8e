"""
Programs API Endpoints
======================

Public program catalogue.
"""

from fastapi import APIRouter, Depends

from ancretoi.core.rate_limit import create_rate_limit_dependency
from ancretoi.dependencies import DBSession
from ancretoi.schemas.common import DataResponse
from ancretoi.services.program_service import ProgramService

router = APIRouter(dependencies=[Depends(create_rate_limit_dependency("read"))])


@router.get("", response_model=DataResponse)
async def list_programs(db: DBSession):
    """Published programs."""
    return DataResponse(data=await ProgramService(db).list_published())


@router.get("/{slug}", response_model=DataResponse)
async def get_program(slug: str, db: DBSession):
    """One published program."""
    return DataResponse(data=await ProgramService(db).get_published(slug))
