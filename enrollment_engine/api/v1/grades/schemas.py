from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


class GradeLevelCreate(BaseModel):
    school_id: UUID
    name: str = Field(..., min_length=1, max_length=50)
    order_index: int = Field(0, description="Position in the progression (lower first)")
    next_grade_id: Optional[UUID] = None
    is_graduation_grade: bool = Field(False, description="Students graduate from this grade; requires no next grade")

    @model_validator(mode="after")
    def validate_terminal_flag(self) -> "GradeLevelCreate":
        if self.is_graduation_grade and self.next_grade_id is not None:
            raise ValueError("A graduation grade cannot have a next grade")
        return self


class GradeLevelUpdate(BaseModel):
    """Fields left out are unchanged; next_grade_id: null removes the successor."""

    name: Optional[str] = Field(None, min_length=1, max_length=50)
    order_index: Optional[int] = None
    next_grade_id: Optional[UUID] = None
    is_graduation_grade: Optional[bool] = None
    is_active: Optional[bool] = None


class GradeLevelResponse(BaseModel):
    id: UUID
    school_id: UUID
    name: str
    order_index: int
    next_grade_id: Optional[UUID] = None
    is_graduation_grade: bool
    is_active: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class GradeProgressionItem(BaseModel):
    id: UUID
    name: str
    order_index: int
    next_grade_id: Optional[UUID] = None
    next_grade_name: Optional[str] = None
    is_terminal: bool
    is_graduation_grade: bool
