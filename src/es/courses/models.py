"""Course record models for enrollment-sync.

A CourseRecord is the canonical output of classification: one per enrolled
student per program. Records serialize to the camelCase document shape stored
on a student document.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any


def _utcnow() -> datetime:
    """Return current UTC time (timezone-aware)."""
    return datetime.now(UTC)


class CourseType(str, Enum):
    """Program a course record belongs to."""

    ASSOCIATES_PROGRAM = "AssociatesProgram"
    PROPHETIC_GUIDANCE = "PropheticGuidance"
    GENERIC = "Generic"


IdentityKey = tuple[str, str, str, str]


def identity_key_of(course: dict[str, Any]) -> IdentityKey:
    """Identity key of a stored course dict.

    Matches CourseRecord.identity_key so stored and incoming courses compare
    on the same (courseType, courseName, section, plan) composite.
    """
    return (
        str(course.get("courseType") or ""),
        str(course.get("courseName") or "").strip(),
        str(course.get("section") or "").strip(),
        str(course.get("plan") or "").strip(),
    )


@dataclass
class StudentInfo:
    """Student fields denormalized onto each course record."""

    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""
    gender: str = ""
    age: str = ""
    student_type: str = ""
    password: str = ""

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def without_password(self) -> StudentInfo:
        return replace(self, password="")

    def to_dict(self, include_password: bool = False) -> dict[str, Any]:
        """Convert to the stored camelCase shape.

        The password is only included on request; persisted documents
        never carry one.
        """
        data: dict[str, Any] = {
            "firstName": self.first_name,
            "lastName": self.last_name,
            "email": self.email,
            "phone": self.phone,
            "gender": self.gender,
            "age": self.age,
            "studentType": self.student_type,
        }
        if include_password:
            data["password"] = self.password
        return data


@dataclass
class PlacementInfo:
    """Associates Program placement answers."""

    arabic_proficiency: str = ""
    reading_ability: str = ""
    writing_ability: str = ""
    listening_ability: str = ""
    studied_islamic_sciences: str = ""
    previous_topics: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "arabicProficiency": self.arabic_proficiency,
            "readingAbility": self.reading_ability,
            "writingAbility": self.writing_ability,
            "listeningAbility": self.listening_ability,
            "studiedIslamicSciences": self.studied_islamic_sciences,
            "previousTopics": self.previous_topics,
        }


@dataclass
class ProgramDetails:
    """Associates Program enrollment details."""

    plan: str
    level: str
    image_url: str = ""
    status: str = "enrolled"

    def to_dict(self) -> dict[str, Any]:
        return {
            "plan": self.plan,
            "level": self.level,
            "imageUrl": self.image_url,
            "status": self.status,
        }


@dataclass
class GuidanceDetails:
    """Prophetic Guidance enrollment details."""

    module: str
    plan: str
    image_url: str = ""
    status: str = "enrolled"

    def to_dict(self) -> dict[str, Any]:
        return {
            "module": self.module,
            "plan": self.plan,
            "imageUrl": self.image_url,
            "status": self.status,
        }


@dataclass
class CourseRecord:
    """One student's enrollment in one program.

    Identity is (course_type, course_name, section, plan); course_id and
    order fields are informational and do not take part in deduplication.
    """

    course_type: CourseType
    course_name: str
    student_info: StudentInfo
    section: str = ""
    plan: str = ""
    course_id: str = ""
    order_id: str = ""
    order_number: str = ""
    created_on: str | None = None
    customer_email: str | None = None
    program_details: ProgramDetails | None = None
    guidance_details: GuidanceDetails | None = None
    placement_info: PlacementInfo | None = None
    course_ref: str | None = None
    raw_order: dict[str, Any] | None = None
    last_updated: datetime = field(default_factory=_utcnow)

    @property
    def identity_key(self) -> IdentityKey:
        return (
            self.course_type.value,
            self.course_name.strip(),
            self.section.strip(),
            self.plan.strip(),
        )

    def resolve_email(self) -> str:
        """Email owning this record: student email, else the order customer email."""
        return (self.student_info.email or self.customer_email or "").strip()

    def to_dict(self, include_password: bool = False) -> dict[str, Any]:
        """Convert to the stored course shape."""
        data: dict[str, Any] = {
            "courseId": self.course_id,
            "orderId": self.order_id,
            "orderNumber": self.order_number,
            "createdOn": self.created_on,
            "courseName": self.course_name,
            "courseType": self.course_type.value,
            "section": self.section,
            "plan": self.plan,
            "customerEmail": self.customer_email,
            "studentInfo": self.student_info.to_dict(include_password=include_password),
            "metadata": {"lastUpdated": self.last_updated.isoformat()},
        }
        if self.program_details is not None:
            data["programDetails"] = self.program_details.to_dict()
        if self.guidance_details is not None:
            data["guidanceDetails"] = self.guidance_details.to_dict()
        if self.placement_info is not None:
            data["placementInfo"] = self.placement_info.to_dict()
        if self.course_ref:
            data["courseRef"] = self.course_ref
        if self.raw_order is not None:
            data["order"] = self.raw_order
        return data
