from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


class AcademicYearCreate(BaseModel):
    """Create academic year. name must be unique per school."""

    school_id: UUID
    name: str = Field(..., min_length=1, max_length=50, description="e.g. 2025-2026")
    start_date: date = Field(..., description="Academic year start date")
    end_date: date = Field(..., description="Academic year end date (must be after start_date)")
    set_as_current: bool = Field(False, description="Make this the school's current year")
    set_as_next: bool = Field(False, description="Make this the year the next rollover targets")

    @model_validator(mode="after")
    def validate_pointers(self) -> "AcademicYearCreate":
        if self.set_as_current and self.set_as_next:
            raise ValueError("A year cannot be both current and next")
        return self


class AcademicYearResponse(BaseModel):
    id: UUID
    school_id: UUID
    name: str
    start_date: date
    end_date: date
    is_current: bool
    is_next: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
