"""
Batch mutation steps of a rollover. Every function here only stages changes on the session and
flushes; the caller owns the single commit (or rollback) for the whole batch.
"""

import logging
import uuid
from datetime import date, timedelta
from typing import Dict, List, Optional, Set, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from enrollment_engine.core.config import settings
from enrollment_engine.core.enums import EnrollmentCode, MarkingPeriodType, RolloverStatus
from enrollment_engine.core.exceptions import RolloverExecutionError, ServiceError
from enrollment_engine.core.models import (
    AcademicYear,
    EnrollmentCodeRecord,
    MarkingPeriod,
    Section,
    StudentEnrollment,
    TeacherSubjectAssignment,
)

from .progression import GradeProgressionGraph
from .schemas import (
    MarkingPeriodRolloverCounts,
    SectionRolloverCounts,
    StudentRolloverCounts,
    TeacherRolloverCounts,
)
from .transitions import parse_status, resolve_outcome

logger = logging.getLogger(__name__)

MP_COUNT_FIELD = {
    MarkingPeriodType.FY: "full_year",
    MarkingPeriodType.SEM: "semesters",
    MarkingPeriodType.QTR: "quarters",
    MarkingPeriodType.PRO: "progress",
}


def _chunks(items: List, size: int):
    for i in range(0, len(items), size):
        yield items[i:i + size]


def _shift(value: Optional[date], delta: timedelta) -> Optional[date]:
    return value + delta if value is not None else None


async def enrollment_code_ids(db: AsyncSession) -> Dict[EnrollmentCode, UUID]:
    result = await db.execute(select(EnrollmentCodeRecord.code, EnrollmentCodeRecord.id))
    out: Dict[EnrollmentCode, UUID] = {}
    for code, code_id in result.all():
        try:
            out[EnrollmentCode(code)] = code_id
        except ValueError:
            logger.warning("Ignoring unknown enrollment code row %r", code)
    return out


class SectionMap:
    """Maps current-year sections to their next-year copies by (grade, name)."""

    def __init__(self, year_scoped: Set[UUID], mapping: Dict[UUID, UUID]) -> None:
        self.year_scoped = year_scoped
        self.mapping = mapping

    def target(self, section_id: Optional[UUID]) -> Tuple[bool, Optional[UUID]]:
        """(usable, next-year section id). Sections that span years map to themselves."""
        if section_id is None:
            return True, None
        if section_id not in self.year_scoped:
            return True, section_id
        mapped = self.mapping.get(section_id)
        return mapped is not None, mapped


async def load_section_map(db: AsyncSession, school_id: UUID, current_year_id: UUID, next_year_id: UUID) -> SectionMap:
    current = (
        await db.execute(
            select(Section).where(Section.school_id == school_id, Section.academic_year_id == current_year_id)
        )
    ).scalars().all()
    nxt = (
        await db.execute(
            select(Section).where(Section.school_id == school_id, Section.academic_year_id == next_year_id)
        )
    ).scalars().all()
    by_key = {(s.grade_level_id, s.name): s.id for s in nxt}
    mapping = {}
    for s in current:
        target = by_key.get((s.grade_level_id, s.name))
        if target is not None:
            mapping[s.id] = target
    return SectionMap({s.id for s in current}, mapping)


async def copy_sections(
    db: AsyncSession, school_id: UUID, current_year_id: UUID, next_year_id: UUID
) -> SectionRolloverCounts:
    """Copy active year-scoped sections forward; names already present in the next year are kept."""
    counts = SectionRolloverCounts()
    current = (
        await db.execute(
            select(Section).where(
                Section.school_id == school_id,
                Section.academic_year_id == current_year_id,
                Section.is_active.is_(True),
            )
        )
    ).scalars().all()
    existing = {
        (s.grade_level_id, s.name)
        for s in (
            await db.execute(
                select(Section).where(Section.school_id == school_id, Section.academic_year_id == next_year_id)
            )
        ).scalars().all()
    }
    for s in current:
        if (s.grade_level_id, s.name) in existing:
            continue
        db.add(
            Section(
                school_id=school_id,
                grade_level_id=s.grade_level_id,
                academic_year_id=next_year_id,
                name=s.name,
                capacity=s.capacity,
                is_active=True,
            )
        )
        existing.add((s.grade_level_id, s.name))
        counts.created += 1
    await db.flush()
    return counts


async def roll_students(
    db: AsyncSession,
    school_id: UUID,
    current_year: AcademicYear,
    next_year: AcademicYear,
    graph: GradeProgressionGraph,
    section_map: SectionMap,
    executed_by: Optional[UUID] = None,
) -> StudentRolloverCounts:
    """Close every open current-year enrollment and open next-year rows for continuing students."""
    counts = StudentRolloverCounts()
    code_ids = await enrollment_code_ids(db)
    result = await db.execute(
        select(StudentEnrollment)
        .where(
            StudentEnrollment.school_id == school_id,
            StudentEnrollment.academic_year_id == current_year.id,
            StudentEnrollment.end_date.is_(None),
        )
        .order_by(StudentEnrollment.student_id)
    )
    enrollments = list(result.scalars().all())

    for chunk in _chunks(enrollments, settings.rollover_batch_size):
        student_ids = [e.student_id for e in chunk]
        already = set(
            (
                await db.execute(
                    select(StudentEnrollment.student_id).where(
                        StudentEnrollment.academic_year_id == next_year.id,
                        StudentEnrollment.student_id.in_(student_ids),
                    )
                )
            ).scalars().all()
        )
        new_rows: List[StudentEnrollment] = []
        for e in chunk:
            try:
                outcome = resolve_outcome(parse_status(e.rollover_status), e.grade_level_id, e.next_grade_id, graph)
            except ServiceError as exc:
                raise RolloverExecutionError(f"Student {e.student_id}: {exc.message}", str(e.student_id)) from exc

            e.end_date = current_year.end_date
            e.rollover_status = outcome.status.value
            e.next_grade_id = outcome.next_grade_id
            e.updated_by = executed_by
            setattr(counts, outcome.status.value, getattr(counts, outcome.status.value) + 1)
            counts.total += 1

            if not outcome.creates_next_year_row:
                continue
            if e.student_id in already:
                counts.already_enrolled += 1
                continue
            section_id = None
            if outcome.status == RolloverStatus.retained and outcome.next_grade_id == e.grade_level_id:
                _, section_id = section_map.target(e.section_id)
            new_rows.append(
                StudentEnrollment(
                    student_id=e.student_id,
                    academic_year_id=next_year.id,
                    school_id=school_id,
                    grade_level_id=outcome.next_grade_id,
                    section_id=section_id,
                    enrollment_code_id=code_ids.get(outcome.enrollment_code),
                    start_date=next_year.start_date,
                    rollover_status=RolloverStatus.pending.value,
                    created_by=executed_by,
                )
            )
        # closed rows must hit the datastore before the new open rows (one open row per student)
        await db.flush()
        db.add_all(new_rows)
        await db.flush()
        logger.debug("Rolled %d enrollments (%d new rows)", len(chunk), len(new_rows))
    return counts


async def copy_marking_periods(
    db: AsyncSession, school_id: UUID, current_year: AcademicYear, next_year: AcademicYear
) -> MarkingPeriodRolloverCounts:
    """Copy the FY/SEM/QTR/PRO tree parent-first, shifting dates by the gap between year starts.
    A period whose (type, short name) already exists in the next year is reused as the parent."""
    counts = MarkingPeriodRolloverCounts()
    delta = next_year.start_date - current_year.start_date
    source = (
        await db.execute(
            select(MarkingPeriod)
            .where(
                MarkingPeriod.school_id == school_id,
                MarkingPeriod.academic_year_id == current_year.id,
                MarkingPeriod.is_active.is_(True),
            )
            .order_by(MarkingPeriod.sort_order)
        )
    ).scalars().all()
    existing = {
        (mp.mp_type, mp.short_name): mp.id
        for mp in (
            await db.execute(select(MarkingPeriod).where(MarkingPeriod.academic_year_id == next_year.id))
        ).scalars().all()
    }
    id_map: Dict[UUID, UUID] = {}
    for mp_type in MarkingPeriodType:
        for mp in (m for m in source if m.mp_type == mp_type.value):
            key = (mp.mp_type, mp.short_name)
            if key in existing:
                id_map[mp.id] = existing[key]
                continue
            new_id = uuid.uuid4()
            db.add(
                MarkingPeriod(
                    id=new_id,
                    school_id=school_id,
                    academic_year_id=next_year.id,
                    mp_type=mp.mp_type,
                    parent_id=id_map.get(mp.parent_id) if mp.parent_id else None,
                    title=mp.title,
                    short_name=mp.short_name,
                    sort_order=mp.sort_order,
                    does_grades=mp.does_grades,
                    does_comments=mp.does_comments,
                    start_date=_shift(mp.start_date, delta),
                    end_date=_shift(mp.end_date, delta),
                    is_active=True,
                )
            )
            id_map[mp.id] = new_id
            existing[key] = new_id
            field = MP_COUNT_FIELD[mp_type]
            setattr(counts, field, getattr(counts, field) + 1)
            counts.total += 1
        # parents must exist before children reference them
        await db.flush()
    return counts


async def copy_teacher_assignments(
    db: AsyncSession,
    school_id: UUID,
    current_year_id: UUID,
    next_year_id: UUID,
    section_map: SectionMap,
) -> TeacherRolloverCounts:
    """Copy assignments whose section exists next year; duplicates of next-year rows are skipped."""
    counts = TeacherRolloverCounts()
    source = (
        await db.execute(
            select(TeacherSubjectAssignment).where(
                TeacherSubjectAssignment.school_id == school_id,
                TeacherSubjectAssignment.academic_year_id == current_year_id,
            )
        )
    ).scalars().all()
    existing = {
        (a.teacher_id, a.section_id, a.subject_id)
        for a in (
            await db.execute(
                select(TeacherSubjectAssignment).where(TeacherSubjectAssignment.academic_year_id == next_year_id)
            )
        ).scalars().all()
    }
    skipped = 0
    for a in source:
        usable, section_id = section_map.target(a.section_id)
        if not usable:
            skipped += 1
            continue
        key = (a.teacher_id, section_id, a.subject_id)
        if key in existing:
            continue
        db.add(
            TeacherSubjectAssignment(
                school_id=school_id,
                academic_year_id=next_year_id,
                teacher_id=a.teacher_id,
                grade_level_id=a.grade_level_id,
                section_id=section_id,
                subject_id=a.subject_id,
                is_primary=a.is_primary,
            )
        )
        existing.add(key)
        counts.assignments += 1
    if skipped:
        logger.info("Skipped %d teacher assignments whose section has no next-year copy", skipped)
    await db.flush()
    return counts


async def advance_year_pointers(db: AsyncSession, current_year: AcademicYear, next_year: AcademicYear) -> None:
    """Move is_current to the next year. Clear before set so the partial unique indexes hold."""
    current_year.is_current = False
    next_year.is_next = False
    await db.flush()
    next_year.is_current = True
    await db.flush()

