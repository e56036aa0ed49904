"""
Datastore-level mutual exclusion for writers of a school's enrollments.

A lock is a row in rollover_locks; the unique (school_id, academic_year_id) constraint makes the
insert itself the test-and-set. The row is committed before the guarded work starts so other
processes see it, and deleted when the work ends. Rows older than the configured TTL are treated
as left behind by a crashed process and replaced.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from enrollment_engine.core.config import settings
from enrollment_engine.core.exceptions import ConflictError
from enrollment_engine.core.models import RolloverLock

logger = logging.getLogger(__name__)


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _is_stale(lock: RolloverLock) -> bool:
    age = datetime.utcnow() - _naive_utc(lock.acquired_at)
    return age > timedelta(seconds=settings.rollover_lock_ttl_seconds)


async def _try_insert(db: AsyncSession, school_id: UUID, academic_year_id: UUID, holder: str) -> bool:
    db.add(RolloverLock(school_id=school_id, academic_year_id=academic_year_id, holder=holder))
    try:
        await db.commit()
        return True
    except IntegrityError:
        await db.rollback()
        return False


async def acquire_lock(db: AsyncSession, school_id: UUID, academic_year_id: UUID, holder: str) -> None:
    if await _try_insert(db, school_id, academic_year_id, holder):
        logger.info(
            "Acquired %s lock",
            holder,
            extra={"school_id": school_id, "academic_year_id": academic_year_id},
        )
        return
    result = await db.execute(
        select(RolloverLock).where(
            RolloverLock.school_id == school_id,
            RolloverLock.academic_year_id == academic_year_id,
        )
    )
    existing = result.scalar_one_or_none()
    if existing is not None and _is_stale(existing):
        logger.warning(
            "Replacing stale %s lock acquired at %s",
            existing.holder,
            existing.acquired_at,
            extra={"school_id": school_id, "academic_year_id": academic_year_id},
        )
        await db.execute(delete(RolloverLock).where(RolloverLock.id == existing.id))
        await db.commit()
        if await _try_insert(db, school_id, academic_year_id, holder):
            return
    elif existing is None and await _try_insert(db, school_id, academic_year_id, holder):
        # released between our failed insert and the lookup
        return
    logger.info(
        "Lock contention for %s",
        holder,
        extra={"school_id": school_id, "academic_year_id": academic_year_id},
    )
    raise ConflictError("Another rollover operation is in progress for this academic year; retry later")


async def release_lock(db: AsyncSession, school_id: UUID, academic_year_id: UUID) -> None:
    await db.execute(
        delete(RolloverLock).where(
            RolloverLock.school_id == school_id,
            RolloverLock.academic_year_id == academic_year_id,
        )
    )
    await db.commit()


@asynccontextmanager
async def rollover_lock(
    db: AsyncSession, school_id: UUID, academic_year_id: UUID, holder: str
) -> AsyncIterator[None]:
    await acquire_lock(db, school_id, academic_year_id, holder)
    try:
        yield
    finally:
        await db.rollback()
        await release_lock(db, school_id, academic_year_id)


async def school_has_active_lock(db: AsyncSession, school_id: UUID) -> bool:
    result = await db.execute(select(RolloverLock).where(RolloverLock.school_id == school_id))
    return any(not _is_stale(lock) for lock in result.scalars().all())
