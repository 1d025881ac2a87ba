from datetime import date
from typing import Literal

from pydantic import BaseModel, Field


AttendanceStatusLiteral = Literal['present', 'absent', 'late', 'excused', 'none']


class TemplateCreateRequest(BaseModel):
    name: str
    day_of_week: int = Field(ge=0, le=6)
    start_time: str
    duration_minutes: int = Field(default=60, ge=1, le=600)
    teacher_id: int | None = None
    location: str = ''


class TemplateUpdateRequest(BaseModel):
    name: str | None = None
    day_of_week: int | None = Field(default=None, ge=0, le=6)
    start_time: str | None = None
    duration_minutes: int | None = Field(default=None, ge=1, le=600)
    teacher_id: int | None = None
    location: str | None = None


class CourseCreateRequest(BaseModel):
    name: str
    template_ids: list[int]
    start_date: date
    end_date: date
    max_students: int | None = Field(default=None, ge=1)
    description: str = ''


class CourseUpdateRequest(BaseModel):
    name: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    max_students: int | None = Field(default=None, ge=1)
    description: str | None = None


class CourseStatusRequest(BaseModel):
    status: Literal['active', 'cancelled', 'completed']


class CourseTemplatesRequest(BaseModel):
    template_ids: list[int]


class StudentCreateRequest(BaseModel):
    first_name: str
    last_name: str = ''
    phone: str = ''
    notes: str = ''


class EnrollRequest(BaseModel):
    course_id: int
    student_id: int
    effective_from: date
    notes: str = ''


class UnenrollRequest(BaseModel):
    course_id: int
    student_id: int
    effective_to: date


class CancelRequest(BaseModel):
    reason: str = ''


class InstanceResolveRequest(BaseModel):
    template_id: int
    date: date


class StandaloneInstanceRequest(BaseModel):
    name: str
    instance_date: date
    start_time: str
    duration_minutes: int = Field(default=60, ge=1, le=600)
    teacher_id: int | None = None
    location: str = ''
    student_ids: list[int] = Field(default_factory=list)
    notes: str = ''


class InstanceUpdateRequest(BaseModel):
    name: str | None = None
    start_time: str | None = None
    duration_minutes: int | None = Field(default=None, ge=1, le=600)
    teacher_id: int | None = None
    location: str | None = None
    notes: str | None = None
    student_ids: list[int] | None = None


class RescheduleRequest(BaseModel):
    new_date: date
    new_start_time: str


class InstanceStudentRequest(BaseModel):
    student_id: int


class BatchGenerateRequest(BaseModel):
    template_id: int
    start_date: date
    end_date: date


class AttendanceMarkRequest(BaseModel):
    instance_id: int
    student_id: int
    status: AttendanceStatusLiteral
    is_temp: bool = False
    notes: str = ''
    marked_by: int | None = None
    marked_by_type: Literal['teacher', 'admin'] = 'admin'


class AttendanceBulkItem(BaseModel):
    student_id: int
    status: str
    is_temp: bool = False
    notes: str = ''


class AttendanceBulkRequest(BaseModel):
    instance_id: int
    items: list[AttendanceBulkItem]
    marked_by: int | None = None
    marked_by_type: Literal['teacher', 'admin'] = 'admin'


class TempStudentCreateRequest(BaseModel):
    instance_id: int
    name: str
    phone: str = ''
    notes: str = ''
    created_by: int | None = None


class TempStudentUpdateRequest(BaseModel):
    name: str | None = None
    phone: str | None = None
    notes: str | None = None


class TempStudentConvertRequest(BaseModel):
    course_id: int | None = None
    effective_from: date | None = None
