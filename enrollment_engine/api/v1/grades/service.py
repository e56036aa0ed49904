from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from enrollment_engine.api.v1.rollover.progression import load_graph
from enrollment_engine.core.exceptions import ConflictError, GradeGraphError, NotFoundError
from enrollment_engine.core.models import GradeLevel
from enrollment_engine.db.retry import retry_transient

from .schemas import GradeLevelCreate, GradeLevelResponse, GradeLevelUpdate, GradeProgressionItem


async def _get_grade(db: AsyncSession, school_id: UUID, grade_id: UUID) -> Optional[GradeLevel]:
    result = await db.execute(
        select(GradeLevel).where(GradeLevel.id == grade_id, GradeLevel.school_id == school_id)
    )
    return result.scalar_one_or_none()


async def _check_successor(db: AsyncSession, school_id: UUID, grade_id: UUID, next_grade_id: Optional[UUID]) -> None:
    """Reject a successor that is foreign, inactive, or would close a cycle."""
    graph = await load_graph(db, school_id)
    if next_grade_id is not None:
        target = graph.nodes.get(next_grade_id)
        if target is None or target.school_id != school_id:
            raise GradeGraphError("Next grade not found in this school")
        if not target.is_active:
            raise GradeGraphError(f"Next grade '{target.name}' is inactive")
    problems = graph.would_create_problem(grade_id, next_grade_id)
    if problems:
        raise GradeGraphError("; ".join(problems))


async def create_grade_level(db: AsyncSession, payload: GradeLevelCreate) -> GradeLevelResponse:
    if payload.next_grade_id is not None:
        target = await _get_grade(db, payload.school_id, payload.next_grade_id)
        if target is None:
            raise GradeGraphError("Next grade not found in this school")
        if not target.is_active:
            raise GradeGraphError(f"Next grade '{target.name}' is inactive")
    obj = GradeLevel(
        school_id=payload.school_id,
        name=payload.name.strip(),
        order_index=payload.order_index,
        next_grade_id=payload.next_grade_id,
        is_graduation_grade=payload.is_graduation_grade,
        is_active=True,
    )
    db.add(obj)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(f"Grade level '{payload.name}' already exists for this school")
    await db.refresh(obj)
    return GradeLevelResponse.model_validate(obj)


async def update_grade_level(
    db: AsyncSession,
    school_id: UUID,
    grade_id: UUID,
    payload: GradeLevelUpdate,
) -> GradeLevelResponse:
    obj = await _get_grade(db, school_id, grade_id)
    if not obj:
        raise NotFoundError("Grade level not found")
    fields = payload.model_fields_set

    next_grade_id = payload.next_grade_id if "next_grade_id" in fields else obj.next_grade_id
    is_graduation = (
        payload.is_graduation_grade
        if payload.is_graduation_grade is not None
        else obj.is_graduation_grade
    )
    if is_graduation and next_grade_id is not None:
        raise GradeGraphError("A graduation grade cannot have a next grade")
    if "next_grade_id" in fields:
        await _check_successor(db, school_id, grade_id, next_grade_id)
        obj.next_grade_id = next_grade_id

    if payload.is_active is False:
        referrers = await db.execute(
            select(GradeLevel.name).where(
                GradeLevel.next_grade_id == grade_id,
                GradeLevel.is_active.is_(True),
                GradeLevel.id != grade_id,
            )
        )
        names = list(referrers.scalars().all())
        if names:
            raise GradeGraphError(
                f"Cannot deactivate: grade(s) {', '.join(sorted(names))} progress into this grade"
            )
        obj.is_active = False
    elif payload.is_active:
        if not obj.is_active and "next_grade_id" not in fields:
            await _check_successor(db, school_id, grade_id, next_grade_id)
        obj.is_active = True

    if payload.name is not None:
        obj.name = payload.name.strip()
    if payload.order_index is not None:
        obj.order_index = payload.order_index
    obj.is_graduation_grade = is_graduation
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(f"Grade level '{payload.name}' already exists for this school")
    await db.refresh(obj)
    return GradeLevelResponse.model_validate(obj)


@retry_transient
async def get_grade_progression(db: AsyncSession, school_id: UUID) -> List[GradeProgressionItem]:
    """Active grades ordered by order_index, each with its successor name and terminal flag."""
    graph = await load_graph(db, school_id)
    items = []
    for node in graph.active_nodes():
        successor = graph.nodes.get(node.next_grade_id) if node.next_grade_id else None
        items.append(
            GradeProgressionItem(
                id=node.id,
                name=node.name,
                order_index=node.order_index,
                next_grade_id=node.next_grade_id,
                next_grade_name=successor.name if successor else None,
                is_terminal=node.next_grade_id is None,
                is_graduation_grade=node.is_graduation_grade,
            )
        )
    return items
