from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


class RolloverYearsRequest(BaseModel):
    """The (school, current year, next year) triple every rollover operation is keyed on."""

    current_year_id: UUID
    next_year_id: UUID
    school_id: UUID

    @model_validator(mode="after")
    def validate_distinct_years(self) -> "RolloverYearsRequest":
        if self.current_year_id == self.next_year_id:
            raise ValueError("current_year_id and next_year_id must differ")
        return self


class RolloverOptions(BaseModel):
    students: bool = Field(True, description="Close current enrollments and create next-year rows")
    marking_periods: bool = Field(True, description="Copy the marking-period structure into the next year")
    teachers: bool = Field(True, description="Copy teacher-section assignments into the next year")
    sections: bool = Field(False, description="Copy year-scoped sections into the next year")
    advance_academic_year: bool = Field(
        True,
        description="Make the next year current once the batch commits (same transaction)",
    )


class RolloverExecuteRequest(RolloverYearsRequest):
    options: RolloverOptions = Field(default_factory=RolloverOptions)


class PreviewStudents(BaseModel):
    total_active: int
    by_status: Dict[str, int]
    graduating: int


class PreviewMarkingPeriods(BaseModel):
    current_year_total: int
    next_year_existing: int


class PreviewTeachers(BaseModel):
    current_assignments: int


class RolloverPreview(BaseModel):
    current_year: str
    next_year: str
    students: PreviewStudents
    marking_periods: PreviewMarkingPeriods
    teachers: PreviewTeachers


class RolloverPrerequisiteCheck(BaseModel):
    is_valid: bool
    error_message: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)


class StudentRolloverCounts(BaseModel):
    promoted: int = 0
    retained: int = 0
    graduated: int = 0
    transferred: int = 0
    dropped: int = 0
    total: int = 0
    already_enrolled: int = Field(0, description="Next-year rows that already existed and were kept")


class MarkingPeriodRolloverCounts(BaseModel):
    full_year: int = 0
    semesters: int = 0
    quarters: int = 0
    progress: int = 0
    total: int = 0


class TeacherRolloverCounts(BaseModel):
    assignments: int = 0


class SectionRolloverCounts(BaseModel):
    created: int = 0


class RolloverResult(BaseModel):
    success: bool
    error: Optional[str] = None
    duration_ms: Optional[int] = None
    run_id: Optional[UUID] = None
    students: Optional[StudentRolloverCounts] = None
    marking_periods: Optional[MarkingPeriodRolloverCounts] = None
    teachers: Optional[TeacherRolloverCounts] = None
    sections: Optional[SectionRolloverCounts] = None
    warnings: List[str] = Field(default_factory=list)


class RolloverRunResponse(BaseModel):
    id: UUID
    school_id: UUID
    current_year_id: UUID
    next_year_id: UUID
    status: str
    options: Optional[Dict[str, Any]] = None
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    started_at: datetime
    finished_at: datetime
    executed_by: Optional[UUID] = None

    class Config:
        from_attributes = True
