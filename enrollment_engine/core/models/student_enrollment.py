import uuid
from datetime import datetime

from sqlalchemy import Column, Date, DateTime, ForeignKey, Index, String, Text, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from enrollment_engine.db.session import Base


class StudentEnrollment(Base):
    """
    Student enrollment per academic year. One row per (student, academic_year).
    Across all years a student has at most one open row (end_date IS NULL).
    Rollover closes the open row and creates a NEW row for the next year; closed rows are never edited.
    """

    __tablename__ = "student_enrollment"
    __table_args__ = (
        UniqueConstraint("student_id", "academic_year_id", name="uq_enrollment_student_year"),
        Index(
            "uq_enrollment_student_open",
            "student_id",
            unique=True,
            postgresql_where=text("end_date IS NULL"),
            sqlite_where=text("end_date IS NULL"),
        ),
        Index("ix_enrollment_school_year", "school_id", "academic_year_id"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id = Column(UUID(as_uuid=True), ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
    academic_year_id = Column(
        UUID(as_uuid=True),
        ForeignKey("academic_years.id", ondelete="RESTRICT"),
        nullable=False,
    )
    school_id = Column(UUID(as_uuid=True), nullable=False)
    grade_level_id = Column(UUID(as_uuid=True), ForeignKey("grade_levels.id"), nullable=True)
    section_id = Column(UUID(as_uuid=True), ForeignKey("sections.id"), nullable=True)
    enrollment_code_id = Column(UUID(as_uuid=True), ForeignKey("enrollment_codes.id"), nullable=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)
    next_grade_id = Column(UUID(as_uuid=True), ForeignKey("grade_levels.id"), nullable=True)
    rollover_status = Column(String(20), nullable=False, default="pending")
    rollover_notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    created_by = Column(UUID(as_uuid=True), nullable=True)
    updated_by = Column(UUID(as_uuid=True), nullable=True)

    student = relationship("Student", foreign_keys=[student_id])
    academic_year = relationship("AcademicYear", foreign_keys=[academic_year_id])
    grade_level = relationship("GradeLevel", foreign_keys=[grade_level_id])
    next_grade = relationship("GradeLevel", foreign_keys=[next_grade_id])
    section = relationship("Section", foreign_keys=[section_id])
    enrollment_code = relationship("EnrollmentCodeRecord", foreign_keys=[enrollment_code_id])
