"""Marking periods per academic year: Full Year > Semester > Quarter > Progress Period."""
import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID

from enrollment_engine.db.session import Base


class MarkingPeriod(Base):
    __tablename__ = "marking_periods"
    __table_args__ = (
        UniqueConstraint("academic_year_id", "mp_type", "short_name", name="uq_marking_period_year_type_short"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    school_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    academic_year_id = Column(
        UUID(as_uuid=True),
        ForeignKey("academic_years.id", ondelete="CASCADE"),
        nullable=False,
    )
    mp_type = Column(String(5), nullable=False)  # FY | SEM | QTR | PRO
    parent_id = Column(UUID(as_uuid=True), ForeignKey("marking_periods.id", ondelete="CASCADE"), nullable=True)
    title = Column(String(100), nullable=False)
    short_name = Column(String(20), nullable=False)
    sort_order = Column(Integer, nullable=False, default=0)
    does_grades = Column(Boolean, nullable=False, default=True)
    does_comments = Column(Boolean, nullable=False, default=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
