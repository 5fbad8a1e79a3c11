from datetime import datetime

from pydantic import BaseModel, Field


class ClassCreateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    course_name: str = Field(..., min_length=1)
    teacher_id: str


class EnrollRequest(BaseModel):
    student_ids: list[str]


class EnrollResponse(BaseModel):
    class_id: str
    enrolled: int


class ClassResponse(BaseModel):
    id: str
    name: str
    course_name: str
    teacher_id: str
    teacher_name: str | None = None
    student_count: int = 0
    created_at: datetime | None = None
