import uuid
from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID

from enrollment_engine.db.session import Base


class RolloverRun(Base):
    """
    Audit record of one rollover execution. A COMPLETED row for (school, current year, next year)
    makes any later execution for the same triple a conflict.
    """

    __tablename__ = "rollover_runs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    school_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    current_year_id = Column(UUID(as_uuid=True), ForeignKey("academic_years.id"), nullable=False)
    next_year_id = Column(UUID(as_uuid=True), ForeignKey("academic_years.id"), nullable=False)
    status = Column(String(20), nullable=False)  # COMPLETED | FAILED
    options = Column(JSON, nullable=True)
    result = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=False)
    finished_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    executed_by = Column(UUID(as_uuid=True), nullable=True)


class RolloverLock(Base):
    """
    Marker row held while a rollover or bulk status change writes enrollments of a school's year.
    The unique constraint is the lock: a second writer fails to insert and gets a 409.
    """

    __tablename__ = "rollover_locks"
    __table_args__ = (
        UniqueConstraint("school_id", "academic_year_id", name="uq_rollover_lock_school_year"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    school_id = Column(UUID(as_uuid=True), nullable=False)
    academic_year_id = Column(UUID(as_uuid=True), nullable=False)
    holder = Column(String(50), nullable=False)  # "execute" | "bulk_status"
    acquired_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
