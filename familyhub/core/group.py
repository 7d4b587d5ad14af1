"""
Core family group data models.
"""

from datetime import datetime

from pydantic import BaseModel

from .user import UserData


class FamilyGroupData(BaseModel):
    short_id: str
    leader_id: str
    app_token: str
    max_members: int
    created_at: datetime | None = None
    updated_at: datetime | None = None
    members: list[UserData] | None = None
    member_count: int | None = None
