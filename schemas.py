"""
Database Schemas for the Lesson Tracker (tutor scheduling and salaries)

Each top-level Pydantic model represents a MongoDB collection. The collection
name is the lowercase of the class name (e.g., User -> "user").

Tenancy model: every tutor owns exactly one "user" document. Lessons,
templates and monthly salary overrides are embedded arrays inside it, so a
tutor's whole calendar is read and written as one document. Field names are
stored in camelCase; the Python attributes are snake_case aliases.
"""

import re
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Zero-padded 24h clock; lessons are compared and sorted on this string.
TIME_PATTERN = re.compile(r"([01]\d|2[0-3]):[0-5]\d")


class Role(str, Enum):
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    EMPLOYEE = "EMPLOYEE"


class Parity(str, Enum):
    ODD = "odd"
    EVEN = "even"


class Record(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class LessonSkeleton(Record):
    """
    A lesson without a date, stored in a template bucket
    Embedded in: user.templates.odd / user.templates.even
    """
    id: Optional[str] = None
    time: str = Field(..., description="Start time, HH:MM")
    subject: str
    student_name: str = Field(..., alias="studentName", description="Comma-separated student names")
    notes: Optional[str] = None
    duration: int = Field(60, gt=0, description="Length in minutes")
    teacher_id: Optional[str] = Field(None, alias="teacherId")

    @field_validator("time")
    @classmethod
    def check_time(cls, value: str) -> str:
        if not TIME_PATTERN.fullmatch(value):
            raise ValueError("time must be HH:MM")
        return value

    @field_validator("subject", "student_name")
    @classmethod
    def check_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value


class Lesson(LessonSkeleton):
    """
    A dated lesson
    Embedded in: user.lessons
    """
    id: str
    date: str = Field(..., description="Calendar day, YYYY-MM-DD")
    is_group_lesson: Optional[bool] = Field(None, alias="isGroupLesson")
    group_id: Optional[str] = Field(None, alias="groupId")
    group_days: Optional[List[int]] = Field(None, alias="groupDays", description="1=Monday .. 7=Sunday")

    @field_validator("date")
    @classmethod
    def check_date(cls, value: str) -> str:
        if len(value) != 10:
            raise ValueError("date must be YYYY-MM-DD")
        try:
            datetime.strptime(value, "%Y-%m-%d")
        except ValueError:
            raise ValueError("date must be YYYY-MM-DD")
        return value

    @field_validator("group_days")
    @classmethod
    def check_group_days(cls, value: Optional[List[int]]) -> Optional[List[int]]:
        if value is not None and any(d < 1 or d > 7 for d in value):
            raise ValueError("group days must be between 1 and 7")
        return value


class Templates(Record):
    """Two template buckets, one per weekday parity class"""
    odd: List[LessonSkeleton] = Field(default_factory=list)
    even: List[LessonSkeleton] = Field(default_factory=list)

    def bucket(self, parity: Parity) -> List[LessonSkeleton]:
        return self.odd if Parity(parity) == Parity.ODD else self.even


class PricingTier(Record):
    min_students: int = Field(..., ge=0, alias="minStudents")
    max_students: Optional[int] = Field(None, ge=0, alias="maxStudents")
    price: float = Field(..., ge=0)


class SubjectPricing(Record):
    subject: str
    tiers: List[PricingTier]


class MonthlySalaryRecord(Record):
    """
    Manually entered salary for one tutor and month
    Embedded in: user.salaries
    """
    year: int = Field(..., ge=1970)
    month: int = Field(..., ge=1, le=12)
    salary: float = Field(..., ge=0)


class TeacherPricing(Record):
    """
    Per-tutor pricing overrides, consulted before the default table
    Collection: "teacherpricing"
    """
    teacher_id: str = Field(..., alias="teacherId")
    subjects: Dict[str, List[PricingTier]] = Field(default_factory=dict)


class User(Record):
    """
    Tutors and administrators
    Collection: "user"
    """
    email: str
    name: str
    role: Role = Role.EMPLOYEE
    password_hash: str = Field(..., alias="passwordHash")
    lessons: List[Lesson] = Field(default_factory=list)
    templates: Templates = Field(default_factory=Templates)
    salaries: List[MonthlySalaryRecord] = Field(default_factory=list)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()


# Note for the platform:
# 1) The database viewer can read these schemas from GET /schema
# 2) Lessons and templates live inside the user document, not in their own collections
# 3) teacherpricing is keyed by the user's ObjectId string
