"""
Service layer for users, including the leader lifecycle: leaders are created,
updated and deleted here while they hold no group. Once a leader owns a group
they are managed through `familyhub.service.groups`.
"""

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog.typing import FilteringBoundLogger

from familyhub.config.settings import Settings
from familyhub.core.hashing import hash_password
from familyhub.core.models import LeaderPatch
from familyhub.core.random import throwaway_password
from familyhub.core.user import UserData
from familyhub.database.group import FamilyGroup
from familyhub.database.user import User

from .errors import Conflict, NotFound
from .identifiers import allocate_short_id


class UserNotFound(NotFound):
    pass


class UserExistsError(Conflict):
    pass


class LeaderHoldsGroup(Conflict):
    pass


def numeric_prefix(identity_key: str) -> str:
    """
    The part of an identity key before the check digit, e.g. `12345678` for
    `12345678-9`.
    """
    return identity_key.strip().split("-")[0]


def fallback_email(identity_key: str, settings: Settings) -> str:
    return f"patient_{numeric_prefix(identity_key)}@{settings.fallback_email_domain}"


async def read_by_short_id(short_id: str, conn: AsyncSession) -> User:
    query = select(User).where(User.short_id == short_id)
    res = (await conn.execute(query)).scalar_one_or_none()

    if res is None:
        raise UserNotFound(f"User with ID {short_id} not found in the database")

    return res


async def read_by_identity_key(identity_key: str, conn: AsyncSession) -> User:
    identity_key = identity_key.strip()

    query = select(User).where(User.identity_key == identity_key)
    res = (await conn.execute(query)).scalar_one_or_none()

    if res is None:
        raise UserNotFound(
            f"User with identity key {identity_key} not found in the database"
        )

    return res


async def email_in_use(
    email: str, conn: AsyncSession, exclude_short_id: str | None = None
) -> bool:
    query = select(User.user_id).where(User.email == email)

    if exclude_short_id is not None:
        query = query.where(User.short_id != exclude_short_id)

    return (await conn.execute(query.limit(1))).scalar_one_or_none() is not None


async def create(
    identity_key: str,
    email: str,
    user_name: str,
    first_name: str,
    last_name_paternal: str,
    last_name_maternal: str | None,
    is_leader: bool,
    settings: Settings,
    conn: AsyncSession,
    log: FilteringBoundLogger,
    group_id: str | None = None,
    password: str | None = None,
    short_id: str | None = None,
) -> User:
    """
    Create a user row. A throwaway password is generated and hashed when none
    is given, and a short ID is allocated when none is requested.

    Raises
    ------
    UserExistsError
        If the identity key, email or short ID is already registered.
    AllocationExhausted
        If no short ID could be allocated.
    """

    log = log.bind(identity_key=identity_key, is_leader=is_leader, group_id=group_id)

    if short_id is None:
        short_id = await allocate_short_id(User, settings=settings, conn=conn, log=log)

    user = User(
        short_id=short_id,
        identity_key=identity_key.strip(),
        email=email,
        user_name=user_name,
        password_hash=hash_password(
            password or throwaway_password(),
            hash_algorithm=settings.password_hash_algorithm,
            rounds=settings.password_hash_rounds,
        ),
        first_name=first_name,
        last_name_paternal=last_name_paternal,
        last_name_maternal=last_name_maternal,
        is_active=True,
        is_leader=is_leader,
        group_id=group_id,
    )

    conn.add(user)

    try:
        await conn.flush()
    except IntegrityError as e:
        await log.ainfo("user.create.exists", error=str(e.orig))
        raise UserExistsError(
            f"User with identity key {identity_key} or email {email} already exists"
        )

    await log.ainfo("user.created", short_id=user.short_id)

    return user


async def create_leader(
    identity_key: str,
    email: str,
    first_name: str,
    last_name_paternal: str,
    settings: Settings,
    conn: AsyncSession,
    log: FilteringBoundLogger,
    last_name_maternal: str | None = None,
    password: str | None = None,
    short_id: str | None = None,
) -> User:
    """
    Create a leader that does not (yet) hold a group.

    Raises
    ------
    UserExistsError
        If a user with this identity key, email or requested short ID exists.
    """

    identity_key = identity_key.strip()

    log = log.bind(identity_key=identity_key, email=email)

    conditions = [User.identity_key == identity_key, User.email == email]

    if short_id is not None:
        conditions.append(User.short_id == short_id)

    existing = (
        await conn.execute(select(User.user_id).where(or_(*conditions)).limit(1))
    ).scalar_one_or_none()

    if existing is not None:
        await log.ainfo("leader.create.exists")
        raise UserExistsError(
            f"User with identity key {identity_key} or email {email} already exists"
        )

    leader = await create(
        identity_key=identity_key,
        email=email,
        user_name=f"user_{numeric_prefix(identity_key)}",
        first_name=first_name,
        last_name_paternal=last_name_paternal,
        last_name_maternal=last_name_maternal,
        is_leader=True,
        password=password,
        short_id=short_id,
        settings=settings,
        conn=conn,
        log=log,
    )

    await log.ainfo("leader.created", short_id=leader.short_id)

    return leader


async def read_leader(
    short_id: str, conn: AsyncSession, log: FilteringBoundLogger
) -> User:
    """
    Read a user that is flagged as a leader.

    Raises
    ------
    UserNotFound
        If the user does not exist or is not a leader.
    """
    log = log.bind(short_id=short_id)

    user = await read_by_short_id(short_id=short_id, conn=conn)

    if not user.is_leader:
        await log.ainfo("leader.not_a_leader")
        raise UserNotFound(f"User {short_id} is not a leader")

    return user


async def _read_groupless_leader(
    short_id: str, conn: AsyncSession, log: FilteringBoundLogger
) -> User:
    result = await conn.execute(
        select(User)
        .where(User.short_id == short_id)
        .where(User.is_leader.is_(True))
        .where(User.group_id.is_(None))
    )

    leader = result.scalar_one_or_none()

    if leader is None:
        await log.ainfo("leader.not_found")
        raise UserNotFound(f"Leader {short_id} not found or already holds a group")

    return leader


async def get_leader_list(
    conn: AsyncSession, query: str | None = None
) -> list[UserData]:
    """
    Get a list of all leaders, optionally filtered by a case-insensitive search
    over identity key, email and name parts.
    """

    statement = select(User).where(User.is_leader.is_(True))

    if query:
        pattern = f"%{query.lower()}%"
        statement = statement.where(
            or_(
                func.lower(User.identity_key).like(pattern),
                func.lower(User.email).like(pattern),
                func.lower(User.first_name).like(pattern),
                func.lower(User.last_name_paternal).like(pattern),
                func.lower(User.last_name_maternal).like(pattern),
            )
        )

    res = (await conn.execute(statement.order_by(User.created_at))).scalars().all()
    return [u.to_core() for u in res]


async def update_leader(
    short_id: str,
    patch: LeaderPatch,
    settings: Settings,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> User:
    """
    Update the profile of a leader that holds no group.

    Raises
    ------
    UserNotFound
        If the leader does not exist, is not a leader, or holds a group.
    UserExistsError
        If the new email belongs to another user.
    """

    log = log.bind(short_id=short_id)

    leader = await _read_groupless_leader(short_id=short_id, conn=conn, log=log)

    if patch.email is not None and patch.email != leader.email:
        if await email_in_use(patch.email, conn=conn, exclude_short_id=short_id):
            await log.ainfo("leader.update.email_exists", email=patch.email)
            raise UserExistsError(f"User with email {patch.email} already exists")
        leader.email = patch.email

    for field in ("first_name", "last_name_paternal", "last_name_maternal", "is_active"):
        value = getattr(patch, field)
        if value is not None:
            setattr(leader, field, value)

    if patch.password is not None:
        leader.password_hash = hash_password(
            patch.password,
            hash_algorithm=settings.password_hash_algorithm,
            rounds=settings.password_hash_rounds,
        )

    conn.add(leader)

    try:
        await conn.flush()
    except IntegrityError as e:
        await log.ainfo("leader.update.conflict", error=str(e.orig))
        raise UserExistsError(f"Could not update leader {short_id}")

    await log.ainfo("leader.updated")

    return leader


async def delete_leader(short_id: str, conn: AsyncSession, log: FilteringBoundLogger):
    """
    Delete a leader that holds no group.

    Raises
    ------
    UserNotFound
        If the leader does not exist, is not a leader, or holds a group.
    """

    log = log.bind(short_id=short_id)

    leader = await _read_groupless_leader(short_id=short_id, conn=conn, log=log)

    # A stale group may still name this user as leader with no link back.
    stale = (
        await conn.execute(
            select(FamilyGroup.short_id).where(FamilyGroup.leader_id == short_id)
        )
    ).scalar_one_or_none()

    if stale is not None:
        await log.awarning("leader.delete.leads_group", group_id=stale)
        raise LeaderHoldsGroup(f"Leader {short_id} is still named by group {stale}")

    await conn.delete(leader)
    await conn.flush()

    await log.ainfo("leader.deleted")
