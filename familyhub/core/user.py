"""
A shared user object that is serialized.
"""

from datetime import datetime

from pydantic import BaseModel


class UserData(BaseModel):
    short_id: str
    identity_key: str
    email: str
    user_name: str
    first_name: str
    last_name_paternal: str
    last_name_maternal: str | None
    is_active: bool
    is_leader: bool
    group_id: str | None
    created_at: datetime | None = None
    updated_at: datetime | None = None
