"""
Preview / check / execute for academic-year rollover.

preview_rollover and check_prerequisites only read. execute_rollover holds the school-year lock,
re-runs the checks, applies every step on one session and commits once; any failure rolls the
whole batch back and is reported as a single error.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from enrollment_engine.core.config import settings
from enrollment_engine.core.enums import RolloverRunStatus, RolloverStatus
from enrollment_engine.core.exceptions import (
    ConflictError,
    NotFoundError,
    PrerequisiteFailure,
    RolloverExecutionError,
    ServiceError,
)
from enrollment_engine.core.models import (
    AcademicYear,
    GradeLevel,
    MarkingPeriod,
    RolloverRun,
    StudentEnrollment,
    TeacherSubjectAssignment,
)
from enrollment_engine.db.retry import retry_transient

from . import executor
from .locks import rollover_lock
from .progression import GradeProgressionGraph, load_graph
from .schemas import (
    PreviewMarkingPeriods,
    PreviewStudents,
    PreviewTeachers,
    RolloverExecuteRequest,
    RolloverPrerequisiteCheck,
    RolloverPreview,
    RolloverResult,
    RolloverRunResponse,
    RolloverYearsRequest,
)
from .transitions import parse_status, resolve_outcome

logger = logging.getLogger(__name__)

MAX_REPORTED_ENROLLMENT_ERRORS = 5


@dataclass
class RolloverContext:
    current_year: AcademicYear
    next_year: AcademicYear
    graph: GradeProgressionGraph


async def _get_year(db: AsyncSession, school_id: UUID, academic_year_id: UUID) -> Optional[AcademicYear]:
    result = await db.execute(
        select(AcademicYear).where(
            AcademicYear.id == academic_year_id,
            AcademicYear.school_id == school_id,
        )
    )
    return result.scalar_one_or_none()


def _open_in_year(school_id: UUID, academic_year_id: UUID) -> list:
    return [
        StudentEnrollment.school_id == school_id,
        StudentEnrollment.academic_year_id == academic_year_id,
        StudentEnrollment.end_date.is_(None),
    ]


async def _count(db: AsyncSession, model, *conditions) -> int:
    result = await db.execute(select(func.count()).select_from(model).where(*conditions))
    return result.scalar_one()


@retry_transient
async def preview_rollover(db: AsyncSession, payload: RolloverYearsRequest) -> RolloverPreview:
    """Forecast of a rollover. Read-only: nothing is created or modified."""
    current = await _get_year(db, payload.school_id, payload.current_year_id)
    nxt = await _get_year(db, payload.school_id, payload.next_year_id)
    if not current or not nxt:
        raise NotFoundError("Academic year not found for this school")

    open_filter = _open_in_year(payload.school_id, current.id)
    by_status = {s.value: 0 for s in RolloverStatus}
    rows = await db.execute(
        select(StudentEnrollment.rollover_status, func.count())
        .where(*open_filter)
        .group_by(StudentEnrollment.rollover_status)
    )
    total = 0
    for status_value, count in rows.all():
        total += count
        if status_value in by_status:
            by_status[status_value] += count
        else:
            logger.warning("Enrollment rows with unknown rollover status %r", status_value)

    graduating = (
        await db.execute(
            select(func.count())
            .select_from(StudentEnrollment)
            .join(GradeLevel, GradeLevel.id == StudentEnrollment.grade_level_id)
            .where(*open_filter, GradeLevel.next_grade_id.is_(None))
        )
    ).scalar_one()

    mp_current = await _count(
        db,
        MarkingPeriod,
        MarkingPeriod.school_id == payload.school_id,
        MarkingPeriod.academic_year_id == current.id,
        MarkingPeriod.is_active.is_(True),
    )
    mp_next = await _count(
        db,
        MarkingPeriod,
        MarkingPeriod.school_id == payload.school_id,
        MarkingPeriod.academic_year_id == nxt.id,
    )
    assignments = await _count(
        db,
        TeacherSubjectAssignment,
        TeacherSubjectAssignment.school_id == payload.school_id,
        TeacherSubjectAssignment.academic_year_id == current.id,
    )
    return RolloverPreview(
        current_year=current.name,
        next_year=nxt.name,
        students=PreviewStudents(total_active=total, by_status=by_status, graduating=graduating),
        marking_periods=PreviewMarkingPeriods(current_year_total=mp_current, next_year_existing=mp_next),
        teachers=PreviewTeachers(current_assignments=assignments),
    )


def _invalid(message: str, warnings: List[str]) -> Tuple[RolloverPrerequisiteCheck, None]:
    return RolloverPrerequisiteCheck(is_valid=False, error_message=message, warnings=warnings), None


async def _evaluate(
    db: AsyncSession, school_id: UUID, current_year_id: UUID, next_year_id: UUID
) -> Tuple[RolloverPrerequisiteCheck, Optional[RolloverContext]]:
    """Run the prerequisite rules in order, stopping at the first hard failure."""
    warnings: List[str] = []

    current = await _get_year(db, school_id, current_year_id)
    if current is None:
        return _invalid("Current academic year not found for this school", warnings)
    nxt = await _get_year(db, school_id, next_year_id)
    if nxt is None:
        return _invalid("Next academic year not found for this school", warnings)

    if nxt.start_date <= current.start_date:
        return _invalid(
            f"Next academic year '{nxt.name}' must start after current academic year '{current.name}'",
            warnings,
        )
    if not current.is_current:
        return _invalid(f"'{current.name}' is not the school's current academic year", warnings)

    graph = await load_graph(db, school_id)
    problems = graph.problems()
    if problems:
        return _invalid("Grade progression is misconfigured: " + "; ".join(problems), warnings)

    result = await db.execute(
        select(
            StudentEnrollment.student_id,
            StudentEnrollment.grade_level_id,
            StudentEnrollment.rollover_status,
            StudentEnrollment.next_grade_id,
        ).where(*_open_in_year(school_id, current.id))
    )
    enrollments = result.all()

    errors: List[str] = []
    for student_id, grade_level_id, status_value, next_grade_id in enrollments:
        try:
            resolve_outcome(parse_status(status_value), grade_level_id, next_grade_id, graph)
        except ServiceError as exc:
            errors.append(f"student {student_id}: {exc.message}")
    if errors:
        shown = "; ".join(errors[:MAX_REPORTED_ENROLLMENT_ERRORS])
        more = len(errors) - MAX_REPORTED_ENROLLMENT_ERRORS
        suffix = f" (and {more} more)" if more > 0 else ""
        return _invalid(f"{len(errors)} enrollment(s) cannot be rolled over: {shown}{suffix}", warnings)

    grades_in_use = {g for _, g, _, _ in enrollments if g is not None}
    for node in graph.unflagged_terminals(grades_in_use):
        warnings.append(
            f"Grade '{node.name}' has no next grade and is not marked as a graduation grade; "
            "its students will be graduated"
        )

    total = len(enrollments)
    if total == 0:
        warnings.append(f"No active enrollments in '{current.name}'")
    else:
        population = select(StudentEnrollment.student_id).where(*_open_in_year(school_id, current.id))
        existing = await _count(
            db,
            StudentEnrollment,
            StudentEnrollment.academic_year_id == nxt.id,
            StudentEnrollment.student_id.in_(population),
        )
        if existing > settings.rollover_existing_enrollment_threshold * total:
            warnings.append(
                f"{existing} of {total} students already have an enrollment in '{nxt.name}'; "
                "rollover may have already run partially"
            )

    if not nxt.is_next:
        warnings.append(f"'{nxt.name}' is not marked as the next academic year")

    return (
        RolloverPrerequisiteCheck(is_valid=True, warnings=warnings),
        RolloverContext(current_year=current, next_year=nxt, graph=graph),
    )


@retry_transient
async def check_prerequisites(db: AsyncSession, payload: RolloverYearsRequest) -> RolloverPrerequisiteCheck:
    """Validation gate before execution. Warnings never make the result invalid."""
    check, _ = await _evaluate(db, payload.school_id, payload.current_year_id, payload.next_year_id)
    return check


async def _already_completed(db: AsyncSession, payload: RolloverYearsRequest) -> bool:
    result = await db.execute(
        select(RolloverRun.id).where(
            RolloverRun.school_id == payload.school_id,
            RolloverRun.current_year_id == payload.current_year_id,
            RolloverRun.next_year_id == payload.next_year_id,
            RolloverRun.status == RolloverRunStatus.COMPLETED.value,
        )
    )
    return result.first() is not None


async def _apply(
    db: AsyncSession,
    payload: RolloverExecuteRequest,
    ctx: RolloverContext,
    executed_by: Optional[UUID],
) -> RolloverResult:
    opts = payload.options
    current, nxt = ctx.current_year, ctx.next_year
    result = RolloverResult(success=True)

    if opts.sections:
        result.sections = await executor.copy_sections(db, payload.school_id, current.id, nxt.id)
    section_map = await executor.load_section_map(db, payload.school_id, current.id, nxt.id)

    if opts.students:
        result.students = await executor.roll_students(
            db, payload.school_id, current, nxt, ctx.graph, section_map, executed_by
        )
    if opts.marking_periods:
        result.marking_periods = await executor.copy_marking_periods(db, payload.school_id, current, nxt)
    if opts.teachers:
        result.teachers = await executor.copy_teacher_assignments(
            db, payload.school_id, current.id, nxt.id, section_map
        )
    if opts.advance_academic_year:
        await executor.advance_year_pointers(db, current, nxt)
    return result


async def _record_failure(
    db: AsyncSession,
    payload: RolloverExecuteRequest,
    started_at: datetime,
    message: str,
    executed_by: Optional[UUID],
) -> None:
    db.add(
        RolloverRun(
            school_id=payload.school_id,
            current_year_id=payload.current_year_id,
            next_year_id=payload.next_year_id,
            status=RolloverRunStatus.FAILED.value,
            options=payload.options.model_dump(),
            error=message,
            started_at=started_at,
            executed_by=executed_by,
        )
    )
    try:
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("Could not record failed rollover run")


async def execute_rollover(
    db: AsyncSession,
    payload: RolloverExecuteRequest,
    executed_by: Optional[UUID] = None,
) -> RolloverResult:
    """All-or-nothing rollover for (school, current year, next year).

    Raises ConflictError when the triple already completed or another writer holds the lock,
    PrerequisiteFailure when the checks fail, RolloverExecutionError after a rollback.
    """
    started = time.perf_counter()
    started_at = datetime.utcnow()
    log_ctx = {
        "school_id": payload.school_id,
        "current_year_id": payload.current_year_id,
        "next_year_id": payload.next_year_id,
    }

    async with rollover_lock(db, payload.school_id, payload.current_year_id, holder="execute"):
        if await _already_completed(db, payload):
            raise ConflictError("Rollover has already been executed for these academic years")

        check, ctx = await _evaluate(db, payload.school_id, payload.current_year_id, payload.next_year_id)
        if not check.is_valid:
            logger.warning("Rollover prerequisites failed: %s", check.error_message, extra=log_ctx)
            raise PrerequisiteFailure(check.error_message, check.warnings)

        logger.info("Rollover started", extra=log_ctx)
        try:
            result = await asyncio.wait_for(
                _apply(db, payload, ctx, executed_by),
                timeout=settings.rollover_timeout_seconds,
            )
            result.duration_ms = int((time.perf_counter() - started) * 1000)
            result.warnings = check.warnings
            run = RolloverRun(
                school_id=payload.school_id,
                current_year_id=payload.current_year_id,
                next_year_id=payload.next_year_id,
                status=RolloverRunStatus.COMPLETED.value,
                options=payload.options.model_dump(),
                result=result.model_dump(mode="json", exclude={"run_id", "warnings"}),
                started_at=started_at,
                executed_by=executed_by,
            )
            db.add(run)
            await db.flush()
            result.run_id = run.id
            await db.commit()
        except Exception as exc:
            await db.rollback()
            if isinstance(exc, ServiceError):
                message = exc.message
            elif isinstance(exc, asyncio.TimeoutError):
                message = "Rollover timed out; no changes were applied"
            else:
                message = "Rollover failed; no changes were applied"
            logger.exception("Rollover rolled back: %s", message, extra=log_ctx)
            await _record_failure(db, payload, started_at, message, executed_by)
            if isinstance(exc, RolloverExecutionError):
                raise
            raise RolloverExecutionError(message) from exc

    logger.info(
        "Rollover committed in %d ms (%s students)",
        result.duration_ms,
        result.students.total if result.students else 0,
        extra=log_ctx,
    )
    return result


async def list_runs(db: AsyncSession, school_id: UUID) -> List[RolloverRunResponse]:
    result = await db.execute(
        select(RolloverRun).where(RolloverRun.school_id == school_id).order_by(RolloverRun.started_at.desc())
    )
    return [RolloverRunResponse.model_validate(r) for r in result.scalars().all()]
