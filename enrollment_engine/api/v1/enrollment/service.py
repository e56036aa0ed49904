"""
Enrollment records and rollover-status overrides.

Writes to an enrollment go through a conditional UPDATE on end_date IS NULL, so a row closed by a
concurrent rollover is never edited; bulk overrides additionally take the school-year lock.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from enrollment_engine.api.v1.rollover.locks import rollover_lock
from enrollment_engine.api.v1.rollover.transitions import ensure_open, parse_status
from enrollment_engine.core.enums import ENROLLMENT_CODE_TITLES, EnrollmentCode, RolloverStatus
from enrollment_engine.core.exceptions import ConflictError, NotFoundError, ValidationError
from enrollment_engine.core.models import (
    AcademicYear,
    EnrollmentCodeRecord,
    GradeLevel,
    Section,
    Student,
    StudentEnrollment,
)
from enrollment_engine.db.retry import retry_transient

from .schemas import (
    BulkSetRolloverStatusRequest,
    CreateEnrollmentRequest,
    CurrentEnrollmentInfo,
    EnrollmentCodeCount,
    EnrollmentStatistics,
    GradeCount,
    SetStudentRolloverStatusRequest,
    StudentByStatus,
    StudentEnrollmentResponse,
    UpdateEnrollmentRequest,
    WithdrawEnrollmentRequest,
)

logger = logging.getLogger(__name__)

WITHDRAW_STATUS = {
    EnrollmentCode.TRANSFER_OUT: RolloverStatus.transferred,
    EnrollmentCode.DROP: RolloverStatus.dropped,
}


def _with_relations(stmt):
    # rows may have been changed by Core UPDATEs on this session
    return stmt.options(
        selectinload(StudentEnrollment.academic_year),
        selectinload(StudentEnrollment.grade_level),
        selectinload(StudentEnrollment.section),
        selectinload(StudentEnrollment.enrollment_code),
    ).execution_options(populate_existing=True)


def _to_response(e: StudentEnrollment) -> StudentEnrollmentResponse:
    return StudentEnrollmentResponse(
        id=e.id,
        student_id=e.student_id,
        academic_year_id=e.academic_year_id,
        school_id=e.school_id,
        grade_level_id=e.grade_level_id,
        section_id=e.section_id,
        enrollment_code_id=e.enrollment_code_id,
        enrollment_code=e.enrollment_code.code if e.enrollment_code else None,
        start_date=e.start_date,
        end_date=e.end_date,
        next_grade_id=e.next_grade_id,
        rollover_status=e.rollover_status,
        rollover_notes=e.rollover_notes,
        academic_year_name=e.academic_year.name if e.academic_year else None,
        grade_name=e.grade_level.name if e.grade_level else None,
        section_name=e.section.name if e.section else None,
        created_at=e.created_at,
        updated_at=e.updated_at,
    )


async def _load(db: AsyncSession, school_id: UUID, enrollment_id: UUID) -> StudentEnrollment:
    result = await db.execute(
        _with_relations(select(StudentEnrollment)).where(
            StudentEnrollment.id == enrollment_id,
            StudentEnrollment.school_id == school_id,
        )
    )
    e = result.scalar_one_or_none()
    if not e:
        raise NotFoundError("Enrollment not found")
    return e


async def _ensure_year(db: AsyncSession, school_id: UUID, academic_year_id: UUID) -> AcademicYear:
    ay = await db.get(AcademicYear, academic_year_id)
    if not ay or ay.school_id != school_id:
        raise NotFoundError("Academic year not found")
    return ay


async def _ensure_grade(db: AsyncSession, school_id: UUID, grade_id: Optional[UUID], label: str) -> None:
    if grade_id is None:
        return
    grade = await db.get(GradeLevel, grade_id)
    if not grade or grade.school_id != school_id or not grade.is_active:
        raise ValidationError(f"Invalid {label}: not an active grade of this school")


async def _ensure_section(db: AsyncSession, school_id: UUID, section_id: Optional[UUID]) -> None:
    if section_id is None:
        return
    sec = await db.get(Section, section_id)
    if not sec or sec.school_id != school_id:
        raise ValidationError("Invalid section for this school")


@retry_transient
async def get_current_enrollment(db: AsyncSession, school_id: UUID, student_id: UUID) -> CurrentEnrollmentInfo:
    result = await db.execute(
        _with_relations(select(StudentEnrollment)).where(
            StudentEnrollment.student_id == student_id,
            StudentEnrollment.school_id == school_id,
            StudentEnrollment.end_date.is_(None),
        )
    )
    e = result.scalar_one_or_none()
    if not e:
        raise NotFoundError("No current enrollment found")
    return CurrentEnrollmentInfo(
        enrollment_id=e.id,
        academic_year_id=e.academic_year_id,
        year_name=e.academic_year.name,
        grade_level_id=e.grade_level_id,
        grade_name=e.grade_level.name if e.grade_level else None,
        section_id=e.section_id,
        section_name=e.section.name if e.section else None,
        enrollment_code=e.enrollment_code.code if e.enrollment_code else None,
        start_date=e.start_date,
        rollover_status=e.rollover_status,
    )


@retry_transient
async def get_enrollment_history(
    db: AsyncSession,
    school_id: UUID,
    student_id: UUID,
    include_current: bool = False,
) -> List[StudentEnrollmentResponse]:
    """Enrollment rows of a student, most recent first. The open row is left out unless include_current."""
    stmt = _with_relations(select(StudentEnrollment)).where(
        StudentEnrollment.student_id == student_id,
        StudentEnrollment.school_id == school_id,
    )
    if not include_current:
        stmt = stmt.where(StudentEnrollment.end_date.is_not(None))
    stmt = stmt.order_by(StudentEnrollment.start_date.desc())
    result = await db.execute(stmt)
    return [_to_response(e) for e in result.scalars().all()]


async def create_enrollment(
    db: AsyncSession,
    payload: CreateEnrollmentRequest,
    created_by: Optional[UUID] = None,
) -> StudentEnrollmentResponse:
    """Open a new enrollment. A student may hold only one open enrollment at a time."""
    ay = await _ensure_year(db, payload.school_id, payload.academic_year_id)
    student = await db.get(Student, payload.student_id)
    if not student or student.school_id != payload.school_id:
        raise NotFoundError("Student not found")
    if not (ay.start_date <= payload.start_date <= ay.end_date):
        raise ValidationError(f"start_date must fall within academic year '{ay.name}'")
    await _ensure_grade(db, payload.school_id, payload.grade_level_id, "grade_level_id")
    await _ensure_grade(db, payload.school_id, payload.next_grade_id, "next_grade_id")
    await _ensure_section(db, payload.school_id, payload.section_id)

    code = await db.execute(
        select(EnrollmentCodeRecord).where(
            EnrollmentCodeRecord.code == payload.enrollment_code.value,
            EnrollmentCodeRecord.is_active.is_(True),
        )
    )
    code_row = code.scalar_one_or_none()
    if not code_row:
        raise ValidationError("Invalid enrollment code")

    open_row = await db.execute(
        select(StudentEnrollment.id).where(
            StudentEnrollment.student_id == payload.student_id,
            StudentEnrollment.end_date.is_(None),
        )
    )
    if open_row.first() is not None:
        raise ConflictError("Student already has an open enrollment; close it before creating another")

    e = StudentEnrollment(
        student_id=payload.student_id,
        academic_year_id=payload.academic_year_id,
        school_id=payload.school_id,
        grade_level_id=payload.grade_level_id,
        section_id=payload.section_id,
        enrollment_code_id=code_row.id,
        start_date=payload.start_date,
        next_grade_id=payload.next_grade_id,
        rollover_status=RolloverStatus.pending.value,
        rollover_notes=payload.rollover_notes,
        created_by=created_by,
    )
    db.add(e)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Student already has an enrollment for this academic year or an open enrollment")
    return _to_response(await _load(db, payload.school_id, e.id))


async def _patch_open(db: AsyncSession, school_id: UUID, enrollment_id: UUID, values: Dict) -> None:
    """Conditional update: touches the row only while it is still open."""
    result = await db.execute(
        update(StudentEnrollment)
        .where(
            StudentEnrollment.id == enrollment_id,
            StudentEnrollment.school_id == school_id,
            StudentEnrollment.end_date.is_(None),
        )
        .values(**values, updated_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await db.rollback()
        raise ConflictError("Enrollment was closed concurrently; create a new enrollment instead")
    await db.commit()


async def update_enrollment(
    db: AsyncSession,
    school_id: UUID,
    enrollment_id: UUID,
    payload: UpdateEnrollmentRequest,
    updated_by: Optional[UUID] = None,
) -> StudentEnrollmentResponse:
    e = await _load(db, school_id, enrollment_id)
    ensure_open(e.end_date)
    fields = payload.model_fields_set
    values: Dict = {}
    if "grade_level_id" in fields:
        await _ensure_grade(db, school_id, payload.grade_level_id, "grade_level_id")
        values["grade_level_id"] = payload.grade_level_id
    if "next_grade_id" in fields:
        await _ensure_grade(db, school_id, payload.next_grade_id, "next_grade_id")
        values["next_grade_id"] = payload.next_grade_id
    if "section_id" in fields:
        await _ensure_section(db, school_id, payload.section_id)
        values["section_id"] = payload.section_id
    if "rollover_status" in fields:
        if payload.rollover_status is None:
            raise ValidationError("rollover_status cannot be null")
        values["rollover_status"] = parse_status(payload.rollover_status).value
    if "rollover_notes" in fields:
        values["rollover_notes"] = payload.rollover_notes
    if values:
        values["updated_by"] = updated_by
        await _patch_open(db, school_id, enrollment_id, values)
    return _to_response(await _load(db, school_id, enrollment_id))


async def set_student_rollover_status(
    db: AsyncSession,
    school_id: UUID,
    student_id: UUID,
    payload: SetStudentRolloverStatusRequest,
    updated_by: Optional[UUID] = None,
) -> StudentEnrollmentResponse:
    """Manual override of one student's outcome; it wins over the grade graph at execution."""
    result = await db.execute(
        select(StudentEnrollment).where(
            StudentEnrollment.student_id == student_id,
            StudentEnrollment.academic_year_id == payload.academic_year_id,
            StudentEnrollment.school_id == school_id,
        )
    )
    e = result.scalar_one_or_none()
    if not e:
        raise NotFoundError("No enrollment for this student in the academic year")
    ensure_open(e.end_date)
    await _ensure_grade(db, school_id, payload.next_grade_id, "next_grade_id")
    await _patch_open(
        db,
        school_id,
        e.id,
        {
            "rollover_status": parse_status(payload.rollover_status).value,
            "next_grade_id": payload.next_grade_id,
            "rollover_notes": payload.notes,
            "updated_by": updated_by,
        },
    )
    return _to_response(await _load(db, school_id, e.id))


async def bulk_set_rollover_status(
    db: AsyncSession,
    payload: BulkSetRolloverStatusRequest,
    updated_by: Optional[UUID] = None,
) -> int:
    """Apply one status to every open enrollment of the year matching all given filters."""
    await _ensure_year(db, payload.school_id, payload.academic_year_id)
    await _ensure_grade(db, payload.school_id, payload.next_grade_id, "next_grade_id")
    status_value = parse_status(payload.rollover_status).value

    conditions = [
        StudentEnrollment.school_id == payload.school_id,
        StudentEnrollment.academic_year_id == payload.academic_year_id,
        StudentEnrollment.end_date.is_(None),
    ]
    filters = payload.filters
    if filters.grade_level_id is not None:
        conditions.append(StudentEnrollment.grade_level_id == filters.grade_level_id)
    if filters.section_id is not None:
        conditions.append(StudentEnrollment.section_id == filters.section_id)
    if filters.student_ids:
        conditions.append(StudentEnrollment.student_id.in_(filters.student_ids))

    async with rollover_lock(db, payload.school_id, payload.academic_year_id, holder="bulk_status"):
        result = await db.execute(
            update(StudentEnrollment)
            .where(*conditions)
            .values(
                rollover_status=status_value,
                next_grade_id=payload.next_grade_id,
                updated_at=datetime.utcnow(),
                updated_by=updated_by,
            )
            .execution_options(synchronize_session=False)
        )
        updated = result.rowcount
        await db.commit()
    logger.info(
        "Bulk rollover status %s applied to %d enrollments",
        status_value,
        updated,
        extra={"school_id": payload.school_id, "academic_year_id": payload.academic_year_id},
    )
    return updated


async def withdraw_enrollment(
    db: AsyncSession,
    school_id: UUID,
    enrollment_id: UUID,
    payload: WithdrawEnrollmentRequest,
    updated_by: Optional[UUID] = None,
) -> StudentEnrollmentResponse:
    """Explicit transfer-out or drop: closes the open row, ending the student's chain."""
    e = await _load(db, school_id, enrollment_id)
    ensure_open(e.end_date)
    if payload.end_date < e.start_date:
        raise ValidationError("end_date cannot be before the enrollment start_date")
    values = {
        "end_date": payload.end_date,
        "rollover_status": WITHDRAW_STATUS[payload.enrollment_code].value,
        "updated_by": updated_by,
    }
    if payload.notes is not None:
        values["rollover_notes"] = payload.notes
    await _patch_open(db, school_id, enrollment_id, values)
    return _to_response(await _load(db, school_id, enrollment_id))


@retry_transient
async def get_statistics(db: AsyncSession, school_id: UUID, academic_year_id: UUID) -> EnrollmentStatistics:
    """Counts of open enrollments by grade, enrollment code and rollover status.

    One grouped query; every known code and status (and every active grade) appears even at zero.
    """
    await _ensure_year(db, school_id, academic_year_id)
    rows = (
        await db.execute(
            select(
                StudentEnrollment.grade_level_id,
                StudentEnrollment.enrollment_code_id,
                StudentEnrollment.rollover_status,
                func.count(),
            )
            .where(
                StudentEnrollment.school_id == school_id,
                StudentEnrollment.academic_year_id == academic_year_id,
                StudentEnrollment.end_date.is_(None),
            )
            .group_by(
                StudentEnrollment.grade_level_id,
                StudentEnrollment.enrollment_code_id,
                StudentEnrollment.rollover_status,
            )
        )
    ).all()

    grades = (
        await db.execute(
            select(GradeLevel).where(GradeLevel.school_id == school_id).order_by(GradeLevel.order_index)
        )
    ).scalars().all()
    codes = (await db.execute(select(EnrollmentCodeRecord))).scalars().all()
    code_by_id = {c.id: c for c in codes}
    titles = {c.code: c.title for c in codes}

    by_grade: Dict[Optional[UUID], List] = {g.id: [g.name, 0] for g in grades if g.is_active}
    grade_names = {g.id: g.name for g in grades}
    by_code: Dict[str, List] = {
        code.value: [titles.get(code.value, ENROLLMENT_CODE_TITLES[code]), 0] for code in EnrollmentCode
    }
    by_status = {s.value: 0 for s in RolloverStatus}
    total = 0

    for grade_id, code_id, status_value, count in rows:
        total += count
        if grade_id not in by_grade:
            by_grade[grade_id] = [grade_names.get(grade_id, "Unassigned"), 0]
        by_grade[grade_id][1] += count

        code_row = code_by_id.get(code_id)
        code_key = code_row.code if code_row else "UNKNOWN"
        if code_key not in by_code:
            by_code[code_key] = [code_row.title if code_row else "Unknown", 0]
        by_code[code_key][1] += count

        if status_value in by_status:
            by_status[status_value] += count
        else:
            logger.warning("Enrollment rows with unknown rollover status %r", status_value)

    return EnrollmentStatistics(
        school_id=school_id,
        academic_year_id=academic_year_id,
        total_students=total,
        by_grade=[GradeCount(grade_id=gid, grade_name=name, count=n) for gid, (name, n) in by_grade.items()],
        by_enrollment_code=[
            EnrollmentCodeCount(code=code, code_title=title, count=n) for code, (title, n) in by_code.items()
        ],
        by_rollover_status=by_status,
    )


@retry_transient
async def get_students_by_status(
    db: AsyncSession,
    school_id: UUID,
    academic_year_id: UUID,
    status: Optional[str] = None,
) -> List[StudentByStatus]:
    await _ensure_year(db, school_id, academic_year_id)
    stmt = (
        select(
            StudentEnrollment.student_id,
            Student.student_number,
            GradeLevel.name,
            Section.name,
            StudentEnrollment.rollover_status,
        )
        .join(Student, Student.id == StudentEnrollment.student_id)
        .outerjoin(GradeLevel, GradeLevel.id == StudentEnrollment.grade_level_id)
        .outerjoin(Section, Section.id == StudentEnrollment.section_id)
        .where(
            StudentEnrollment.school_id == school_id,
            StudentEnrollment.academic_year_id == academic_year_id,
            StudentEnrollment.end_date.is_(None),
        )
        .order_by(GradeLevel.order_index, Student.student_number)
    )
    if status is not None:
        stmt = stmt.where(StudentEnrollment.rollover_status == parse_status(status).value)
    result = await db.execute(stmt)
    return [
        StudentByStatus(
            student_id=student_id,
            student_number=number,
            grade_name=grade_name or "Unassigned",
            section_name=section_name or "Unassigned",
            rollover_status=status_value,
        )
        for student_id, number, grade_name, section_name, status_value in result.all()
    ]
