from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from enrollment_engine.auth.dependencies import get_current_user
from enrollment_engine.auth.rbac import check_permission, ensure_school_access
from enrollment_engine.auth.schemas import CurrentUser
from enrollment_engine.core.exceptions import PrerequisiteFailure, ServiceError
from enrollment_engine.db.session import get_db

from .schemas import (
    RolloverExecuteRequest,
    RolloverPrerequisiteCheck,
    RolloverPreview,
    RolloverResult,
    RolloverRunResponse,
    RolloverYearsRequest,
)
from . import service

router = APIRouter(prefix="/api/v1/rollover", tags=["rollover"])


@router.post(
    "/preview",
    response_model=RolloverPreview,
    dependencies=[Depends(check_permission("rollover", "read"))],
)
async def preview_rollover(
    payload: RolloverYearsRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> RolloverPreview:
    """Dry run: forecast counts for the rollover. Never writes."""
    ensure_school_access(current_user, payload.school_id)
    try:
        return await service.preview_rollover(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/check",
    response_model=RolloverPrerequisiteCheck,
    response_model_exclude_none=True,
    dependencies=[Depends(check_permission("rollover", "read"))],
)
async def check_rollover_prerequisites(
    payload: RolloverYearsRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> RolloverPrerequisiteCheck:
    """Validate before execute. is_valid=false carries error_message; warnings never block."""
    ensure_school_access(current_user, payload.school_id)
    try:
        return await service.check_prerequisites(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/execute",
    response_model=RolloverResult,
    response_model_exclude_none=True,
    dependencies=[Depends(check_permission("rollover", "execute"))],
)
async def execute_rollover(
    payload: RolloverExecuteRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Run the rollover. 400 when prerequisites fail, 409 when already run or in progress,
    500 when the batch failed and was rolled back."""
    ensure_school_access(current_user, payload.school_id)
    try:
        return await service.execute_rollover(db, payload, executed_by=current_user.id)
    except ServiceError as e:
        body = RolloverResult(
            success=False,
            error=e.message,
            warnings=e.warnings if isinstance(e, PrerequisiteFailure) else [],
        )
        return JSONResponse(status_code=e.status_code, content=body.model_dump(mode="json", exclude_none=True))


@router.get(
    "/runs",
    response_model=List[RolloverRunResponse],
    dependencies=[Depends(check_permission("rollover", "read"))],
)
async def list_rollover_runs(
    school_id: UUID = Query(...),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[RolloverRunResponse]:
    """Past executions for the school, most recent first."""
    ensure_school_access(current_user, school_id)
    return await service.list_runs(db, school_id)
