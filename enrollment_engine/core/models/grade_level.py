"""School-scoped grade levels. next_grade_id forms the grade progression graph."""
import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID

from enrollment_engine.db.session import Base


class GradeLevel(Base):
    """Grade level (Grade 1 .. Grade 12). No next_grade_id means graduation happens from this grade."""

    __tablename__ = "grade_levels"
    __table_args__ = (
        UniqueConstraint("school_id", "name", name="uq_grade_level_school_name"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    school_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    name = Column(String(50), nullable=False)
    order_index = Column(Integer, nullable=False, default=0)
    next_grade_id = Column(UUID(as_uuid=True), ForeignKey("grade_levels.id", ondelete="SET NULL"), nullable=True)
    # Explicitly marks the grade students graduate from; a successor-less grade without it is flagged for review.
    is_graduation_grade = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
