"""
Allocation of collision-free short identifiers and application tokens.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog.typing import FilteringBoundLogger

from familyhub.config.settings import Settings
from familyhub.core import random
from familyhub.database.group import FamilyGroup
from familyhub.database.user import User

from .errors import AllocationExhausted


async def _allocate(
    column,
    settings: Settings,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> str:
    for attempt in range(settings.identifier_attempts):
        candidate = random.short_id(length=settings.identifier_length)
        existing = (
            await conn.execute(select(column).where(column == candidate).limit(1))
        ).scalar_one_or_none()

        if existing is None:
            return candidate

        await log.adebug("identifier.collision", attempt=attempt + 1)

    await log.awarning("identifier.exhausted", attempts=settings.identifier_attempts)
    raise AllocationExhausted(
        f"Could not allocate a unique value for {column} after "
        f"{settings.identifier_attempts} attempts"
    )


async def allocate_short_id(
    kind: type[User] | type[FamilyGroup],
    settings: Settings,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> str:
    """
    Allocate a short ID that is not currently used by any row of `kind`.

    Raises
    ------
    AllocationExhausted
        If no unique value was found in `settings.identifier_attempts` tries.
    """
    log = log.bind(kind=kind.__name__)
    return await _allocate(kind.short_id, settings=settings, conn=conn, log=log)


async def allocate_token(
    settings: Settings,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> str:
    """
    Allocate an application token that no family group uses yet.

    Raises
    ------
    AllocationExhausted
        If no unique value was found in `settings.identifier_attempts` tries.
    """
    log = log.bind(kind="app_token")
    return await _allocate(FamilyGroup.app_token, settings=settings, conn=conn, log=log)
