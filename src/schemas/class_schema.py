"""Class, membership and invite schema definitions.

Field names are snake_case in Python and camelCase in stored documents and
API payloads (``counts.students``, ``instructorId``, ``enrolledAt``).
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from schemas.user import User

Role = Literal["student", "instructor", "ta"]
MemberStatus = Literal["active", "dropped"]


class DocumentSchema(BaseModel):
    """Base for models stored as camelCase documents."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class ClassCounts(DocumentSchema):
    students: int = 0
    instructors: int = 0


class ClassSection(DocumentSchema):
    id: Optional[str] = None
    course_id: str
    content_version: int = Field(
        default=1,
        description="Snapshot of the course contentVersion when the class was created.",
    )
    instructor_id: str
    title: str
    status: Literal["active", "archived"] = "active"
    counts: ClassCounts = Field(
        default_factory=ClassCounts,
        description="Denormalized active member counts, written only by ClassManager.",
    )
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class ClassMember(DocumentSchema):
    uid: str
    role: Role
    status: MemberStatus = "active"
    enrolled_at: Optional[str] = Field(
        default=None,
        description="First enrollment time; preserved across role changes.",
    )


class UserClassIndex(DocumentSchema):
    """Per-user mirror of one membership, used for "my classes"."""

    class_id: str
    role: Role
    status: MemberStatus = "active"
    title: str = ""
    updated_at: Optional[str] = None


class PendingInvite(DocumentSchema):
    id: Optional[str] = None
    email: str = Field(description="Lowercased email, the canonical invite key.")
    role: Role = "student"
    status: Literal["pending", "accepted", "canceled"] = "pending"
    created_at: Optional[str] = None
    invited_by: str = ""


class MyClass(ClassSection):
    role: Role


class MemberWithUser(ClassMember):
    user: Optional[User] = None


# --- Requests / responses ---


class CreateClassRequest(DocumentSchema):
    course_id: str
    title: str


class InviteRequest(DocumentSchema):
    email: str
    role: Role = "student"


class InviteResponse(DocumentSchema):
    uid: Optional[str] = Field(
        default=None,
        description="Resolved member uid, or None when a pending invite was created.",
    )
    pending: bool


class ClaimInvitesResponse(DocumentSchema):
    class_ids: List[str]


class UpdateMemberRequest(DocumentSchema):
    role: Role
