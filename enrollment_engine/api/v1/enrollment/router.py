from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from enrollment_engine.auth.dependencies import get_current_user
from enrollment_engine.auth.rbac import check_permission, ensure_school_access, resolve_school_id
from enrollment_engine.auth.schemas import CurrentUser
from enrollment_engine.core.exceptions import ServiceError
from enrollment_engine.db.session import get_db

from .schemas import (
    BulkSetRolloverStatusRequest,
    BulkUpdateResponse,
    CreateEnrollmentRequest,
    CurrentEnrollmentInfo,
    EnrollmentStatistics,
    SetStudentRolloverStatusRequest,
    StudentByStatus,
    StudentEnrollmentResponse,
    UpdateEnrollmentRequest,
    WithdrawEnrollmentRequest,
)
from . import service

router = APIRouter(prefix="/api/v1/enrollment", tags=["enrollment"])


@router.post(
    "",
    response_model=StudentEnrollmentResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("enrollment", "create"))],
)
async def create_enrollment(
    payload: CreateEnrollmentRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> StudentEnrollmentResponse:
    ensure_school_access(current_user, payload.school_id)
    try:
        return await service.create_enrollment(db, payload, created_by=current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.patch(
    "/bulk-rollover-status",
    response_model=BulkUpdateResponse,
    dependencies=[Depends(check_permission("enrollment", "update"))],
)
async def bulk_set_rollover_status(
    payload: BulkSetRolloverStatusRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> BulkUpdateResponse:
    """Set one rollover status on every open enrollment matching all filters."""
    ensure_school_access(current_user, payload.school_id)
    try:
        updated = await service.bulk_set_rollover_status(db, payload, updated_by=current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return BulkUpdateResponse(updated_count=updated)


@router.get(
    "/statistics",
    response_model=EnrollmentStatistics,
    dependencies=[Depends(check_permission("enrollment", "read"))],
)
async def get_enrollment_statistics(
    school_id: UUID = Query(...),
    academic_year_id: UUID = Query(...),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> EnrollmentStatistics:
    ensure_school_access(current_user, school_id)
    try:
        return await service.get_statistics(db, school_id, academic_year_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/by-status",
    response_model=List[StudentByStatus],
    dependencies=[Depends(check_permission("enrollment", "read"))],
)
async def get_students_by_status(
    school_id: UUID = Query(...),
    academic_year_id: UUID = Query(...),
    rollover_status: Optional[str] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[StudentByStatus]:
    ensure_school_access(current_user, school_id)
    try:
        return await service.get_students_by_status(db, school_id, academic_year_id, rollover_status)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/student/{student_id}/current",
    response_model=CurrentEnrollmentInfo,
    dependencies=[Depends(check_permission("enrollment", "read"))],
)
async def get_current_enrollment(
    student_id: UUID,
    school_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> CurrentEnrollmentInfo:
    school_id = resolve_school_id(current_user, school_id)
    try:
        return await service.get_current_enrollment(db, school_id, student_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/student/{student_id}/history",
    response_model=List[StudentEnrollmentResponse],
    dependencies=[Depends(check_permission("enrollment", "read"))],
)
async def get_enrollment_history(
    student_id: UUID,
    school_id: Optional[UUID] = Query(None),
    include_current: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[StudentEnrollmentResponse]:
    """Past enrollments, most recent first."""
    school_id = resolve_school_id(current_user, school_id)
    try:
        return await service.get_enrollment_history(db, school_id, student_id, include_current=include_current)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.patch(
    "/student/{student_id}/rollover-status",
    response_model=StudentEnrollmentResponse,
    dependencies=[Depends(check_permission("enrollment", "update"))],
)
async def set_student_rollover_status(
    student_id: UUID,
    payload: SetStudentRolloverStatusRequest,
    school_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> StudentEnrollmentResponse:
    school_id = resolve_school_id(current_user, school_id)
    try:
        return await service.set_student_rollover_status(
            db, school_id, student_id, payload, updated_by=current_user.id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.patch(
    "/{enrollment_id}",
    response_model=StudentEnrollmentResponse,
    dependencies=[Depends(check_permission("enrollment", "update"))],
)
async def update_enrollment(
    enrollment_id: UUID,
    payload: UpdateEnrollmentRequest,
    school_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> StudentEnrollmentResponse:
    school_id = resolve_school_id(current_user, school_id)
    try:
        return await service.update_enrollment(db, school_id, enrollment_id, payload, updated_by=current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/{enrollment_id}/withdraw",
    response_model=StudentEnrollmentResponse,
    dependencies=[Depends(check_permission("enrollment", "update"))],
)
async def withdraw_enrollment(
    enrollment_id: UUID,
    payload: WithdrawEnrollmentRequest,
    school_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> StudentEnrollmentResponse:
    """Close the open enrollment as a transfer-out or drop."""
    school_id = resolve_school_id(current_user, school_id)
    try:
        return await service.withdraw_enrollment(db, school_id, enrollment_id, payload, updated_by=current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
