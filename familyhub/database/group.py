"""
Family group ORM
"""

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import CheckConstraint, Column, DateTime
from sqlmodel import Field, Relationship, SQLModel
from uuid_extensions import uuid7

from familyhub.core.group import FamilyGroupData

from .user import utcnow

if TYPE_CHECKING:
    from .user import User


class FamilyGroup(SQLModel, table=True):
    __tablename__ = "family_group"
    __table_args__ = (
        CheckConstraint(
            "max_members >= 1 AND max_members <= 8",
            name="ck_family_group_max_members",
        ),
    )

    group_id: UUID = Field(primary_key=True, default_factory=uuid7)

    short_id: str = Field(unique=True, max_length=8)

    # The leader's short_id. Not a database-level foreign key, as that would
    # form a cycle with user.group_id; the service layer keeps the two in step.
    leader_id: str = Field(unique=True, max_length=8)

    app_token: str = Field(unique=True)
    max_members: int = 8

    created_at: datetime = Field(
        sa_column=Column(DateTime(timezone=True)), default_factory=utcnow
    )
    updated_at: datetime = Field(
        sa_column=Column(DateTime(timezone=True), onupdate=utcnow),
        default_factory=utcnow,
    )

    # Membership is written through user.group_id only.
    members: list["User"] = Relationship(
        sa_relationship_kwargs=dict(
            lazy="selectin",
            viewonly=True,
        ),
    )

    def to_core(self, include_members: bool = True) -> FamilyGroupData:
        """
        Convert this FamilyGroup ORM object to a FamilyGroupData core object.
        The members collection must already be loaded when include_members
        is set.
        """
        return FamilyGroupData(
            short_id=self.short_id,
            leader_id=self.leader_id,
            app_token=self.app_token,
            max_members=self.max_members,
            created_at=self.created_at,
            updated_at=self.updated_at,
            members=[member.to_core() for member in self.members]
            if include_members
            else None,
            member_count=len(self.members) if include_members else None,
        )
