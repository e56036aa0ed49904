"""
Seed script to populate the enrollment_codes lookup table.

This script:
1. Creates any missing tables (safe on an existing database)
2. Inserts or refreshes one row per EnrollmentCode
"""
import asyncio
from typing import Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

# Import all models so Base.metadata knows every table
from enrollment_engine.core import models  # noqa: F401
from enrollment_engine.core.enums import ENROLLMENT_CODE_TITLES, EnrollmentCode
from enrollment_engine.core.models import EnrollmentCodeRecord
from enrollment_engine.db.session import AsyncSessionLocal, Base, engine


async def seed_enrollment_codes(db: AsyncSession) -> Tuple[int, int]:
    """Insert or update every enrollment code. Returns (created, updated)."""
    created = 0
    updated = 0
    for sort_order, code in enumerate(EnrollmentCode, start=1):
        result = await db.execute(select(EnrollmentCodeRecord).where(EnrollmentCodeRecord.code == code.value))
        existing = result.scalar_one_or_none()
        if existing:
            existing.title = ENROLLMENT_CODE_TITLES[code]
            existing.sort_order = sort_order
            existing.is_active = True
            updated += 1
        else:
            db.add(
                EnrollmentCodeRecord(
                    code=code.value,
                    title=ENROLLMENT_CODE_TITLES[code],
                    sort_order=sort_order,
                    is_active=True,
                )
            )
            created += 1
    await db.commit()
    return created, updated


async def main() -> None:
    """Main entry point for the seed script."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with AsyncSessionLocal() as db:
        try:
            created, updated = await seed_enrollment_codes(db)
        except Exception as e:
            print(f"Error seeding enrollment codes: {e}")
            await db.rollback()
            raise
    print("=" * 60)
    print("Enrollment Code Seeding Summary")
    print("=" * 60)
    print(f"Codes created: {created}")
    print(f"Codes updated: {updated}")
    print("=" * 60)


if __name__ == "__main__":
    asyncio.run(main())
