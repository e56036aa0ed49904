import os

# Settings are read at import time; tests run against in-memory SQLite.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

import uuid
from dataclasses import dataclass
from datetime import date
from typing import AsyncGenerator, Dict, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from enrollment_engine.auth.dependencies import get_current_user
from enrollment_engine.auth.schemas import CurrentUser
from enrollment_engine.core import models  # noqa: F401
from enrollment_engine.core.models import (
    AcademicYear,
    EnrollmentCodeRecord,
    GradeLevel,
    Section,
    Student,
    StudentEnrollment,
)
from enrollment_engine.db.seed_enrollment_codes import seed_enrollment_codes
from enrollment_engine.db.session import Base, get_db
from enrollment_engine.main import app


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture()
async def engine():
    """One in-memory database per test; StaticPool keeps every session on the same connection."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
async def db_session(engine) -> AsyncGenerator[AsyncSession, None]:
    """Provide a database session for a test and override FastAPI dependency."""
    async_session = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:
        await seed_enrollment_codes(session)

        async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
            yield session

        app.dependency_overrides[get_db] = override_get_db
        yield session

    app.dependency_overrides.pop(get_db, None)


@pytest.fixture()
def school_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture()
def current_user(school_id: uuid.UUID) -> CurrentUser:
    return CurrentUser(id=uuid.uuid4(), school_id=school_id, role="SUPER_ADMIN", permissions={})


@pytest.fixture()
async def client(db_session: AsyncSession, current_user: CurrentUser) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app, authenticated as a school admin."""

    async def override_current_user() -> CurrentUser:
        return current_user

    app.dependency_overrides[get_current_user] = override_current_user
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.pop(get_current_user, None)


@dataclass
class School:
    """Ids of a school with two consecutive years and grades Grade 5 -> Grade 6 plus terminal Grade 12.

    Plain values only: a rollback inside the app expires every ORM instance of the shared session.
    """

    id: uuid.UUID
    current_year_id: uuid.UUID
    next_year_id: uuid.UUID
    current_end: date
    next_start: date
    grade5_id: uuid.UUID
    grade6_id: uuid.UUID
    grade12_id: uuid.UUID


@dataclass
class Enrolled:
    enrollment_id: uuid.UUID
    student_id: uuid.UUID
    student_number: str


@pytest.fixture()
async def school(db_session: AsyncSession, school_id: uuid.UUID) -> School:
    current = AcademicYear(
        school_id=school_id,
        name="2025-2026",
        start_date=date(2025, 8, 1),
        end_date=date(2026, 6, 30),
        is_current=True,
    )
    nxt = AcademicYear(
        school_id=school_id,
        name="2026-2027",
        start_date=date(2026, 8, 1),
        end_date=date(2027, 6, 30),
        is_next=True,
    )
    grade12 = GradeLevel(school_id=school_id, name="Grade 12", order_index=12, is_graduation_grade=True)
    grade6 = GradeLevel(school_id=school_id, name="Grade 6", order_index=6)
    db_session.add_all([current, nxt, grade12, grade6])
    await db_session.flush()
    grade5 = GradeLevel(school_id=school_id, name="Grade 5", order_index=5, next_grade_id=grade6.id)
    db_session.add(grade5)
    await db_session.commit()
    return School(
        id=school_id,
        current_year_id=current.id,
        next_year_id=nxt.id,
        current_end=current.end_date,
        next_start=nxt.start_date,
        grade5_id=grade5.id,
        grade6_id=grade6.id,
        grade12_id=grade12.id,
    )


@pytest.fixture()
async def code_ids(db_session: AsyncSession) -> Dict[str, uuid.UUID]:
    result = await db_session.execute(select(EnrollmentCodeRecord.code, EnrollmentCodeRecord.id))
    return dict(result.all())


@pytest.fixture()
def enroll(db_session: AsyncSession, school: School, code_ids: Dict[str, uuid.UUID]):
    """Factory: create a student with an open current-year enrollment."""
    counter = {"n": 0}

    async def _enroll(
        grade_id: Optional[uuid.UUID] = None,
        section_id: Optional[uuid.UUID] = None,
        rollover_status: str = "pending",
        next_grade_id: Optional[uuid.UUID] = None,
    ) -> Enrolled:
        counter["n"] += 1
        number = f"S{counter['n']:04d}"
        student = Student(school_id=school.id, student_number=number, full_name=f"Student {counter['n']}")
        db_session.add(student)
        await db_session.flush()
        enrollment = StudentEnrollment(
            student_id=student.id,
            academic_year_id=school.current_year_id,
            school_id=school.id,
            grade_level_id=grade_id or school.grade5_id,
            section_id=section_id,
            enrollment_code_id=code_ids["ADMISSION"],
            start_date=date(2025, 8, 1),
            rollover_status=rollover_status,
            next_grade_id=next_grade_id,
        )
        db_session.add(enrollment)
        await db_session.commit()
        return Enrolled(enrollment_id=enrollment.id, student_id=student.id, student_number=number)

    return _enroll


@pytest.fixture()
def make_section(db_session: AsyncSession, school: School):
    """Factory: create a section and return its id. Year-scoped when academic_year_id is given."""

    async def _make(
        name: str,
        grade_id: Optional[uuid.UUID] = None,
        academic_year_id: Optional[uuid.UUID] = None,
    ) -> uuid.UUID:
        section = Section(
            school_id=school.id,
            grade_level_id=grade_id or school.grade5_id,
            academic_year_id=academic_year_id,
            name=name,
        )
        db_session.add(section)
        await db_session.commit()
        return section.id

    return _make
