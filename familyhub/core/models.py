"""
Pydantic models for request/responses to APIs and service results.
"""

from pydantic import BaseModel, Field

from .group import FamilyGroupData
from .user import UserData

SHORT_ID_PATTERN = r"^[A-Za-z0-9]{8}$"
IDENTITY_KEY_PATTERN = r"^\d{1,8}-[\dkK]$"


class ProfileHints(BaseModel):
    """
    Profile fields a caller may already know about a person. Any field left
    as None is resolved elsewhere (the patient registry, or defaults).
    """

    email: str | None = None
    first_name: str | None = None
    last_name_paternal: str | None = None
    last_name_maternal: str | None = None

    def is_empty(self) -> bool:
        return not any(
            (
                self.email,
                self.first_name,
                self.last_name_paternal,
                self.last_name_maternal,
            )
        )


class EnsureGroupResult(BaseModel):
    user: UserData
    group: FamilyGroupData
    created_user: bool
    created_group: bool
    message: str


class GroupCreationRequest(BaseModel):
    leader_id: str = Field(pattern=SHORT_ID_PATTERN)
    group_id: str | None = Field(default=None, pattern=SHORT_ID_PATTERN)
    token: str | None = None
    max_members: int = Field(default=8, ge=1, le=8)


class GroupCreationResponse(BaseModel):
    group: FamilyGroupData
    leader: UserData
    message: str


class GroupPatch(BaseModel):
    token: str | None = None
    max_members: int | None = Field(default=None, ge=1, le=8)
    leader_id: str | None = Field(default=None, pattern=SHORT_ID_PATTERN)


class AddMemberRequest(BaseModel):
    identity_key: str = Field(pattern=IDENTITY_KEY_PATTERN)
    email: str | None = None
    first_name: str | None = None
    last_name_paternal: str | None = None
    last_name_maternal: str | None = None

    def profile(self) -> ProfileHints:
        return ProfileHints(
            email=self.email,
            first_name=self.first_name,
            last_name_paternal=self.last_name_paternal,
            last_name_maternal=self.last_name_maternal,
        )


class LeaderCreationRequest(BaseModel):
    identity_key: str = Field(pattern=IDENTITY_KEY_PATTERN)
    email: str
    first_name: str
    last_name_paternal: str
    last_name_maternal: str | None = None
    password: str | None = Field(default=None, min_length=6)
    short_id: str | None = Field(default=None, pattern=SHORT_ID_PATTERN)


class LeaderPatch(BaseModel):
    email: str | None = None
    first_name: str | None = None
    last_name_paternal: str | None = None
    last_name_maternal: str | None = None
    password: str | None = Field(default=None, min_length=6)
    is_active: bool | None = None


class StatisticsResponse(BaseModel):
    total_family_groups: int
    total_leaders: int
    total_users: int
    active_users: int
    inactive_users: int


class MessageResponse(BaseModel):
    message: str
