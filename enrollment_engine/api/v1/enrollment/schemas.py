from datetime import date, datetime
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from enrollment_engine.core.enums import EnrollmentCode, RolloverStatus


class CreateEnrollmentRequest(BaseModel):
    student_id: UUID
    academic_year_id: UUID
    school_id: UUID
    grade_level_id: Optional[UUID] = None
    section_id: Optional[UUID] = None
    enrollment_code: EnrollmentCode
    start_date: date
    next_grade_id: Optional[UUID] = None
    rollover_notes: Optional[str] = None


class UpdateEnrollmentRequest(BaseModel):
    """Patch an open enrollment. Closed rows are history and cannot be edited."""

    grade_level_id: Optional[UUID] = None
    section_id: Optional[UUID] = None
    rollover_status: Optional[RolloverStatus] = None
    next_grade_id: Optional[UUID] = None
    rollover_notes: Optional[str] = None

    class Config:
        extra = "forbid"


class SetStudentRolloverStatusRequest(BaseModel):
    academic_year_id: UUID
    rollover_status: RolloverStatus
    next_grade_id: Optional[UUID] = None
    notes: Optional[str] = None


class BulkRolloverFilters(BaseModel):
    """AND-composed filters over the open enrollments of one year. No filters = whole cohort."""

    grade_level_id: Optional[UUID] = None
    section_id: Optional[UUID] = None
    student_ids: Optional[List[UUID]] = None

    class Config:
        extra = "forbid"


class BulkSetRolloverStatusRequest(BaseModel):
    academic_year_id: UUID
    school_id: UUID
    filters: BulkRolloverFilters = Field(default_factory=BulkRolloverFilters)
    rollover_status: RolloverStatus
    next_grade_id: Optional[UUID] = None


class BulkUpdateResponse(BaseModel):
    updated_count: int


class WithdrawEnrollmentRequest(BaseModel):
    """Explicit transfer-out or drop: closes the open enrollment with end_date."""

    enrollment_code: EnrollmentCode = Field(..., description="TRANSFER_OUT or DROP")
    end_date: date
    notes: Optional[str] = None

    @field_validator("enrollment_code")
    @classmethod
    def validate_withdraw_code(cls, v: EnrollmentCode) -> EnrollmentCode:
        if v not in (EnrollmentCode.TRANSFER_OUT, EnrollmentCode.DROP):
            raise ValueError("enrollment_code must be TRANSFER_OUT or DROP")
        return v


class StudentEnrollmentResponse(BaseModel):
    id: UUID
    student_id: UUID
    academic_year_id: UUID
    school_id: UUID
    grade_level_id: Optional[UUID] = None
    section_id: Optional[UUID] = None
    enrollment_code_id: Optional[UUID] = None
    enrollment_code: Optional[str] = None
    start_date: date
    end_date: Optional[date] = None
    next_grade_id: Optional[UUID] = None
    rollover_status: RolloverStatus
    rollover_notes: Optional[str] = None
    academic_year_name: Optional[str] = None
    grade_name: Optional[str] = None
    section_name: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class CurrentEnrollmentInfo(BaseModel):
    enrollment_id: UUID
    academic_year_id: UUID
    year_name: str
    grade_level_id: Optional[UUID] = None
    grade_name: Optional[str] = None
    section_id: Optional[UUID] = None
    section_name: Optional[str] = None
    enrollment_code: Optional[EnrollmentCode] = None
    start_date: date
    rollover_status: RolloverStatus


class GradeCount(BaseModel):
    grade_id: Optional[UUID] = None
    grade_name: str
    count: int


class EnrollmentCodeCount(BaseModel):
    code: str
    code_title: str
    count: int


class EnrollmentStatistics(BaseModel):
    school_id: UUID
    academic_year_id: UUID
    total_students: int
    by_grade: List[GradeCount]
    by_enrollment_code: List[EnrollmentCodeCount]
    by_rollover_status: Dict[str, int]


class StudentByStatus(BaseModel):
    student_id: UUID
    student_number: Optional[str] = None
    grade_name: str
    section_name: str
    rollover_status: RolloverStatus
