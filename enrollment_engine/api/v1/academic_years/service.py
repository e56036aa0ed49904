from datetime import date
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from enrollment_engine.api.v1.rollover.locks import school_has_active_lock
from enrollment_engine.core.exceptions import ConflictError, NotFoundError, ValidationError
from enrollment_engine.core.models import AcademicYear

from .schemas import AcademicYearCreate, AcademicYearResponse


def _validate_dates(start_date: date, end_date: date) -> None:
    if end_date <= start_date:
        raise ValidationError("end_date must be after start_date")


async def _ensure_no_rollover_running(db: AsyncSession, school_id: UUID) -> None:
    if await school_has_active_lock(db, school_id):
        raise ConflictError("A rollover is in progress for this school; academic year pointers are locked")


async def _get(db: AsyncSession, school_id: UUID, academic_year_id: UUID) -> AcademicYear:
    result = await db.execute(
        select(AcademicYear).where(
            AcademicYear.id == academic_year_id,
            AcademicYear.school_id == school_id,
        )
    )
    ay = result.scalar_one_or_none()
    if not ay:
        raise NotFoundError("Academic year not found")
    return ay


async def create_academic_year(db: AsyncSession, payload: AcademicYearCreate) -> AcademicYearResponse:
    """Create academic year. set_as_current / set_as_next move the pointer in the same transaction."""
    _validate_dates(payload.start_date, payload.end_date)
    existing = await db.execute(
        select(AcademicYear).where(
            AcademicYear.school_id == payload.school_id,
            AcademicYear.name == payload.name.strip(),
        )
    )
    if existing.scalar_one_or_none():
        raise ConflictError(f"Academic year with name '{payload.name}' already exists for this school")
    if payload.set_as_current or payload.set_as_next:
        await _ensure_no_rollover_running(db, payload.school_id)
    if payload.set_as_current:
        await db.execute(
            update(AcademicYear).where(AcademicYear.school_id == payload.school_id).values(is_current=False)
        )
    if payload.set_as_next:
        await db.execute(
            update(AcademicYear).where(AcademicYear.school_id == payload.school_id).values(is_next=False)
        )
    ay = AcademicYear(
        school_id=payload.school_id,
        name=payload.name.strip(),
        start_date=payload.start_date,
        end_date=payload.end_date,
        is_current=payload.set_as_current,
        is_next=payload.set_as_next,
    )
    db.add(ay)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Another academic year is already marked as current/next or name conflict")
    await db.refresh(ay)
    return AcademicYearResponse.model_validate(ay)


async def list_academic_years(db: AsyncSession, school_id: UUID) -> List[AcademicYearResponse]:
    result = await db.execute(
        select(AcademicYear).where(AcademicYear.school_id == school_id).order_by(AcademicYear.start_date.desc())
    )
    return [AcademicYearResponse.model_validate(ay) for ay in result.scalars().all()]


async def get_academic_year(db: AsyncSession, school_id: UUID, academic_year_id: UUID) -> AcademicYearResponse:
    return AcademicYearResponse.model_validate(await _get(db, school_id, academic_year_id))


async def get_current_academic_year(db: AsyncSession, school_id: UUID) -> Optional[AcademicYearResponse]:
    result = await db.execute(
        select(AcademicYear).where(
            AcademicYear.school_id == school_id,
            AcademicYear.is_current.is_(True),
        )
    )
    ay = result.scalar_one_or_none()
    return AcademicYearResponse.model_validate(ay) if ay else None


async def set_academic_year_current(db: AsyncSession, school_id: UUID, academic_year_id: UUID) -> AcademicYearResponse:
    """Set this year as current. All others for the school become is_current=false (one transaction)."""
    ay = await _get(db, school_id, academic_year_id)
    await _ensure_no_rollover_running(db, school_id)
    await db.execute(
        update(AcademicYear).where(AcademicYear.school_id == school_id).values(is_current=False)
    )
    ay.is_current = True
    ay.is_next = False
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Another academic year was marked current concurrently")
    await db.refresh(ay)
    return AcademicYearResponse.model_validate(ay)


async def set_academic_year_next(db: AsyncSession, school_id: UUID, academic_year_id: UUID) -> AcademicYearResponse:
    """Mark this year as the rollover target. Must start after the current year, if any."""
    ay = await _get(db, school_id, academic_year_id)
    if ay.is_current:
        raise ValidationError("The current academic year cannot also be the next year")
    await _ensure_no_rollover_running(db, school_id)
    current = await get_current_academic_year(db, school_id)
    if current and ay.start_date <= current.start_date:
        raise ValidationError(f"Next academic year must start after '{current.name}'")
    await db.execute(
        update(AcademicYear).where(AcademicYear.school_id == school_id).values(is_next=False)
    )
    ay.is_next = True
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Another academic year was marked next concurrently")
    await db.refresh(ay)
    return AcademicYearResponse.model_validate(ay)
