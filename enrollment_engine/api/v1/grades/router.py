from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from enrollment_engine.auth.dependencies import get_current_user
from enrollment_engine.auth.rbac import check_permission, ensure_school_access, resolve_school_id
from enrollment_engine.auth.schemas import CurrentUser
from enrollment_engine.core.exceptions import ServiceError
from enrollment_engine.db.session import get_db

from .schemas import GradeLevelCreate, GradeLevelResponse, GradeLevelUpdate, GradeProgressionItem
from . import service

router = APIRouter(prefix="/api/v1/grades", tags=["grades"])


@router.get(
    "/progression",
    response_model=List[GradeProgressionItem],
    dependencies=[Depends(check_permission("grades", "read"))],
)
async def get_grade_progression(
    school_id: UUID = Query(...),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[GradeProgressionItem]:
    """Grade progression chain; is_terminal marks grades students graduate from."""
    ensure_school_access(current_user, school_id)
    return await service.get_grade_progression(db, school_id)


@router.post(
    "",
    response_model=GradeLevelResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("grades", "create"))],
)
async def create_grade_level(
    payload: GradeLevelCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> GradeLevelResponse:
    ensure_school_access(current_user, payload.school_id)
    try:
        return await service.create_grade_level(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.patch(
    "/{grade_id}",
    response_model=GradeLevelResponse,
    dependencies=[Depends(check_permission("grades", "update"))],
)
async def update_grade_level(
    grade_id: UUID,
    payload: GradeLevelUpdate,
    school_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> GradeLevelResponse:
    """Update a grade, including its next grade. Rejects cycles and foreign/inactive successors."""
    school_id = resolve_school_id(current_user, school_id)
    try:
        return await service.update_grade_level(db, school_id, grade_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
