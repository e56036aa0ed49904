import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, Date, DateTime, Index, String, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import UUID

from enrollment_engine.db.session import Base


class AcademicYear(Base):
    """
    Academic year per school. At most one per school is_current = true and at most one is_next = true;
    both pointers are enforced by partial unique indexes, so a second "current" row fails at write time.
    Never deleted once enrollments reference it.
    """

    __tablename__ = "academic_years"
    __table_args__ = (
        UniqueConstraint("school_id", "name", name="uq_academic_year_school_name"),
        Index(
            "uq_academic_year_current",
            "school_id",
            unique=True,
            postgresql_where=text("is_current"),
            sqlite_where=text("is_current = 1"),
        ),
        Index(
            "uq_academic_year_next",
            "school_id",
            unique=True,
            postgresql_where=text("is_next"),
            sqlite_where=text("is_next = 1"),
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    school_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    name = Column(String(50), nullable=False)  # e.g. "2025-2026"
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    is_current = Column(Boolean, nullable=False, default=False)
    is_next = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
