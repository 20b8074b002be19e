"""User schema definitions.

Only the user document is modelled here; credentials and sessions belong to
the external identity service.
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class User(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    uid: Optional[str] = None
    email: Optional[str] = None
    email_lower: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    school_id: Optional[str] = None
    platform_role: Optional[Literal["user", "instructor", "admin"]] = None

    @property
    def display_name(self) -> str:
        name = " ".join(part for part in (self.first_name, self.last_name) if part)
        return name or self.email or self.uid or ""


class UpsertUserRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    school_id: Optional[str] = None


class AuthenticatedUser(BaseModel):
    """Identity carried by a verified bearer token."""

    uid: str
    email: Optional[str] = None


class UserProfileResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    user: User
    claimed_class_ids: List[str] = []
