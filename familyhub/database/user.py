"""
ORM for user information.
"""

from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import Column, DateTime
from sqlmodel import Field, SQLModel
from uuid_extensions import uuid7

from familyhub.core.user import UserData


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(SQLModel, table=True):
    user_id: UUID = Field(primary_key=True, default_factory=uuid7)

    # Caller-facing identifier; user_id never leaves the database layer.
    short_id: str = Field(unique=True, max_length=8)
    identity_key: str = Field(unique=True)
    email: str = Field(unique=True)

    user_name: str
    password_hash: str

    first_name: str = ""
    last_name_paternal: str = ""
    last_name_maternal: str | None = None

    is_active: bool = True
    is_leader: bool = False

    # Cleared by the database when the group is deleted.
    group_id: str | None = Field(
        default=None,
        foreign_key="family_group.short_id",
        ondelete="SET NULL",
        index=True,
    )

    created_at: datetime = Field(
        sa_column=Column(DateTime(timezone=True)), default_factory=utcnow
    )
    updated_at: datetime = Field(
        sa_column=Column(DateTime(timezone=True), onupdate=utcnow),
        default_factory=utcnow,
    )

    def to_core(self) -> UserData:
        return UserData(
            short_id=self.short_id,
            identity_key=self.identity_key,
            email=self.email,
            user_name=self.user_name,
            first_name=self.first_name,
            last_name_paternal=self.last_name_paternal,
            last_name_maternal=self.last_name_maternal,
            is_active=self.is_active,
            is_leader=self.is_leader,
            group_id=self.group_id,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )
