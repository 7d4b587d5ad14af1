"""
Meta functionality for the database.
"""

from .group import FamilyGroup
from .user import User

ALL_TABLES = (
    FamilyGroup,
    User,
)
