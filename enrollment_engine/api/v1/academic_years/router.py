from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from enrollment_engine.auth.dependencies import get_current_user
from enrollment_engine.auth.rbac import check_permission, ensure_school_access, resolve_school_id
from enrollment_engine.auth.schemas import CurrentUser
from enrollment_engine.core.exceptions import ServiceError
from enrollment_engine.db.session import get_db

from .schemas import AcademicYearCreate, AcademicYearResponse
from . import service

router = APIRouter(prefix="/api/v1/academic-years", tags=["academic-years"])


@router.post(
    "",
    response_model=AcademicYearResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("academic_years", "create"))],
)
async def create_academic_year(
    payload: AcademicYearCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> AcademicYearResponse:
    ensure_school_access(current_user, payload.school_id)
    try:
        return await service.create_academic_year(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "",
    response_model=List[AcademicYearResponse],
    dependencies=[Depends(check_permission("academic_years", "read"))],
)
async def list_academic_years(
    school_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[AcademicYearResponse]:
    """List academic years for the caller's school, newest first."""
    school_id = resolve_school_id(current_user, school_id)
    return await service.list_academic_years(db, school_id)


@router.get(
    "/current",
    response_model=Optional[AcademicYearResponse],
    dependencies=[Depends(check_permission("academic_years", "read"))],
)
async def get_current_academic_year(
    school_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> Optional[AcademicYearResponse]:
    school_id = resolve_school_id(current_user, school_id)
    return await service.get_current_academic_year(db, school_id)


@router.get(
    "/{academic_year_id}",
    response_model=AcademicYearResponse,
    dependencies=[Depends(check_permission("academic_years", "read"))],
)
async def get_academic_year(
    academic_year_id: UUID,
    school_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> AcademicYearResponse:
    school_id = resolve_school_id(current_user, school_id)
    try:
        return await service.get_academic_year(db, school_id, academic_year_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/{academic_year_id}/set-current",
    response_model=AcademicYearResponse,
    dependencies=[Depends(check_permission("academic_years", "update"))],
)
async def set_academic_year_current(
    academic_year_id: UUID,
    school_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> AcademicYearResponse:
    """Set this academic year as current. All others for the school become non-current."""
    school_id = resolve_school_id(current_user, school_id)
    try:
        return await service.set_academic_year_current(db, school_id, academic_year_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/{academic_year_id}/set-next",
    response_model=AcademicYearResponse,
    dependencies=[Depends(check_permission("academic_years", "update"))],
)
async def set_academic_year_next(
    academic_year_id: UUID,
    school_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> AcademicYearResponse:
    """Mark this academic year as the target of the next rollover."""
    school_id = resolve_school_id(current_user, school_id)
    try:
        return await service.set_academic_year_next(db, school_id, academic_year_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
