"""
Service layer for family groups: creation, auto-provisioning from an identity
key, membership and deletion.

Every function runs inside the caller's transaction (`async with
conn.begin()`), so an exception raised at any step rolls back all of the
writes made by that operation.
"""

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog.typing import FilteringBoundLogger

from familyhub.config.settings import Settings
from familyhub.core.models import (
    EnsureGroupResult,
    GroupPatch,
    ProfileHints,
    StatisticsResponse,
)
from familyhub.database.group import FamilyGroup
from familyhub.database.user import User

from . import user as user_service
from .errors import Conflict, Forbidden, NotFound
from .identifiers import allocate_short_id, allocate_token
from .registry import IdentityValidator, PatientLookup, RegistryUnavailable


class GroupNotFound(NotFound):
    pass


class GroupExistsError(Conflict):
    pass


class GroupFullError(Conflict):
    pass


class InvalidCapacity(Conflict):
    pass


class AlreadyInGroup(Conflict):
    pass


class NotAMember(Conflict):
    pass


class LeaderRemovalError(Conflict):
    pass


class NotGroupLeader(Forbidden):
    pass


async def read_by_id(
    group_id: str,
    conn: AsyncSession,
    log: FilteringBoundLogger,
    for_update: bool = False,
) -> FamilyGroup:
    """
    Read a group by its short ID.

    Parameters
    ----------
    group_id: str
        The short ID of the group to read.
    for_update: bool
        Lock the group row until the end of the transaction. Used by
        operations that check capacity before writing.

    Raises
    ------
    GroupNotFound
        If the group does not exist.
    """
    log = log.bind(group_id=group_id)

    query = select(FamilyGroup).where(FamilyGroup.short_id == group_id)

    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)

    group = (await conn.execute(query)).scalar_one_or_none()

    if group is None:
        await log.ainfo("group.not_found")
        raise GroupNotFound(f"Group with id {group_id} not found")

    await log.adebug("group.found")
    return group


async def read_by_token(
    token: str, conn: AsyncSession, log: FilteringBoundLogger
) -> FamilyGroup:
    """
    Read a group by its application token.

    Raises
    ------
    GroupNotFound
        If no group uses this token.
    """
    result = await conn.execute(select(FamilyGroup).where(FamilyGroup.app_token == token))
    group = result.scalar_one_or_none()

    if group is None:
        await log.ainfo("group.not_found_by_token")
        raise GroupNotFound("Group with this token not found")

    await log.adebug("group.found", group_id=group.short_id)
    return group


async def read_by_leader(leader_id: str, conn: AsyncSession) -> FamilyGroup | None:
    result = await conn.execute(
        select(FamilyGroup).where(FamilyGroup.leader_id == leader_id)
    )
    return result.scalar_one_or_none()


async def get_group_list(
    conn: AsyncSession, log: FilteringBoundLogger
) -> list[FamilyGroup]:
    """
    Get a list of all groups, members included.
    """
    result = await conn.execute(select(FamilyGroup).order_by(FamilyGroup.created_at))
    groups = result.scalars().all()
    await log.adebug("group.listed", number_of_groups=len(groups))
    return groups


async def count_members(group_id: str, conn: AsyncSession) -> int:
    result = await conn.execute(
        select(func.count()).select_from(User).where(User.group_id == group_id)
    )
    return result.scalar_one()


async def get_members(
    group_id: str, conn: AsyncSession, log: FilteringBoundLogger
) -> list[User]:
    """
    Get every user attached to a group, leader included.

    Raises
    ------
    GroupNotFound
        If the group does not exist.
    """
    group = await read_by_id(group_id=group_id, conn=conn, log=log)
    result = await conn.execute(
        select(User).where(User.group_id == group.short_id).order_by(User.created_at)
    )
    return result.scalars().all()


async def load_members(group: FamilyGroup, conn: AsyncSession) -> FamilyGroup:
    """
    Flush pending membership changes and reload `group.members`.
    """
    await conn.flush()
    await conn.refresh(group, attribute_names=["members"])
    return group


async def _check_requester(
    group: FamilyGroup,
    requesting_leader_id: str | None,
    log: FilteringBoundLogger,
):
    # No requester means a trusted caller.
    if requesting_leader_id is None:
        return

    if group.leader_id != requesting_leader_id:
        await log.awarning(
            "group.access_denied", requesting_leader_id=requesting_leader_id
        )
        raise NotGroupLeader(
            f"User {requesting_leader_id} is not the leader of group {group.short_id}"
        )


def _check_capacity(max_members: int, settings: Settings):
    if not 1 <= max_members <= settings.max_members_ceiling:
        raise InvalidCapacity(
            f"max_members must be between 1 and {settings.max_members_ceiling}"
        )


async def create_group(
    leader_short_id: str,
    settings: Settings,
    conn: AsyncSession,
    log: FilteringBoundLogger,
    requested_group_id: str | None = None,
    token: str | None = None,
    max_members: int | None = None,
    validator: IdentityValidator | None = None,
) -> tuple[FamilyGroup, User]:
    """
    Create a new group led by an existing user.

    Parameters
    ----------
    leader_short_id: str
        The user that will lead the group. They must not be in any group.
    requested_group_id: str | None
        A caller-chosen short ID for the group; allocated when omitted.
    token: str | None
        A caller-chosen application token; allocated when omitted.
    max_members: int | None
        Capacity of the group, between 1 and 8. Defaults to
        `settings.default_max_members`.
    validator: IdentityValidator | None
        Advisory check of the leader against the identity service. Its
        result is logged and never blocks creation.

    Returns
    -------
    tuple[FamilyGroup, User]
        The new group and its leader.

    Raises
    ------
    user_service.UserNotFound
        If the leader does not exist.
    AlreadyInGroup
        If the leader already belongs to a group.
    GroupExistsError
        If a group already lists this leader, or the requested ID or token is
        taken.
    """

    if max_members is None:
        max_members = settings.default_max_members

    _check_capacity(max_members, settings)

    log = log.bind(
        leader_id=leader_short_id,
        requested_group_id=requested_group_id,
        max_members=max_members,
    )

    try:
        leader = await user_service.read_by_short_id(short_id=leader_short_id, conn=conn)
    except user_service.UserNotFound as e:
        await log.ainfo("group.create.leader_not_found")
        raise e

    if leader.group_id is not None:
        await log.ainfo("group.create.leader_in_group", group_id=leader.group_id)
        raise AlreadyInGroup(
            f"User {leader_short_id} already belongs to group {leader.group_id}"
        )

    if await read_by_leader(leader_id=leader_short_id, conn=conn) is not None:
        await log.ainfo("group.create.leader_has_group")
        raise GroupExistsError(f"User {leader_short_id} already leads a group")

    if requested_group_id is not None:
        taken = (
            await conn.execute(
                select(FamilyGroup.group_id).where(
                    FamilyGroup.short_id == requested_group_id
                )
            )
        ).scalar_one_or_none()

        if taken is not None:
            await log.ainfo("group.create.id_taken")
            raise GroupExistsError(f"Group {requested_group_id} already exists")

        group_id = requested_group_id
    else:
        group_id = await allocate_short_id(
            FamilyGroup, settings=settings, conn=conn, log=log
        )

    if token is not None:
        taken = (
            await conn.execute(
                select(FamilyGroup.group_id).where(FamilyGroup.app_token == token)
            )
        ).scalar_one_or_none()

        if taken is not None:
            await log.ainfo("group.create.token_taken")
            raise GroupExistsError("A group with this token already exists")
    else:
        token = await allocate_token(settings=settings, conn=conn, log=log)

    if validator is not None:
        validation = await validator.validate(short_id=leader_short_id, log=log)
        if not validation.ok:
            await log.awarning(
                "group.create.leader_not_validated", detail=validation.detail
            )

    log = log.bind(group_id=group_id)

    group = FamilyGroup(
        short_id=group_id,
        leader_id=leader.short_id,
        app_token=token,
        max_members=max_members,
    )
    conn.add(group)

    try:
        # The group row must exist before the leader can reference it.
        await conn.flush()

        leader.group_id = group_id
        leader.is_leader = True
        conn.add(leader)

        await load_members(group, conn)
    except IntegrityError as e:
        await log.ainfo("group.create.exists", error=str(e.orig))
        raise GroupExistsError(f"Group {group_id} could not be created")

    await log.ainfo("group.created")

    return group, leader


async def _resolve_profile(
    identity_key: str,
    hints: ProfileHints,
    lookup: PatientLookup,
    mandatory: bool,
    log: FilteringBoundLogger,
) -> ProfileHints:
    """
    Merge caller hints over the registry record. Hints win where both are set.
    """

    try:
        record = await lookup.find_by_identity_key(identity_key=identity_key, log=log)
    except RegistryUnavailable as e:
        if mandatory and hints.is_empty():
            await log.awarning("ensure_group.registry_unavailable")
            raise e
        await log.awarning("ensure_group.registry_skipped")
        record = None

    if record is None or record.is_empty():
        if mandatory and hints.is_empty():
            await log.ainfo("ensure_group.identity_unresolvable")
            raise user_service.UserNotFound(
                f"Identity {identity_key} not found in the patient registry"
            )

        return hints

    return ProfileHints(
        email=hints.email or record.email,
        first_name=hints.first_name or record.name,
        last_name_paternal=hints.last_name_paternal or record.paternal_surname,
        last_name_maternal=hints.last_name_maternal or record.maternal_surname,
    )


async def _reconcile_profile(
    user: User,
    profile: ProfileHints,
    conn: AsyncSession,
    log: FilteringBoundLogger,
):
    changed = []

    for field in ("email", "first_name", "last_name_paternal", "last_name_maternal"):
        value = getattr(profile, field)

        if not value or value == getattr(user, field):
            continue

        if field == "email" and await user_service.email_in_use(
            value, conn=conn, exclude_short_id=user.short_id
        ):
            await log.awarning("ensure_group.email_taken", email=value)
            continue

        setattr(user, field, value)
        changed.append(field)

    if not user.is_leader:
        user.is_leader = True
        changed.append("is_leader")

    if changed:
        conn.add(user)
        await log.ainfo("ensure_group.user_reconciled", fields=changed)


async def ensure_group_for_identity(
    identity_key: str,
    settings: Settings,
    lookup: PatientLookup,
    conn: AsyncSession,
    log: FilteringBoundLogger,
    hints: ProfileHints | None = None,
) -> EnsureGroupResult:
    """
    Find or create the user for an identity key, and the group they lead.
    Calling this repeatedly for the same identity has no further effect.

    Parameters
    ----------
    identity_key: str
        A verified identity key (e.g. national ID).
    lookup: PatientLookup
        Patient registry used to fill in profile fields.
    hints: ProfileHints | None
        Profile fields already known by the caller. They take precedence
        over the registry.

    Raises
    ------
    user_service.UserNotFound
        If the user does not exist and neither the registry nor the hints
        describe them.
    RegistryUnavailable
        If the user does not exist, no hints were given and the registry
        could not be reached.
    GroupFullError
        If a group still names the user as leader but has no room to take
        them back.
    """

    identity_key = identity_key.strip()
    hints = hints or ProfileHints()

    log = log.bind(identity_key=identity_key)

    created_user = False
    created_group = False

    try:
        user = await user_service.read_by_identity_key(
            identity_key=identity_key, conn=conn
        )
    except user_service.UserNotFound:
        user = None

    if user is None:
        profile = await _resolve_profile(
            identity_key=identity_key,
            hints=hints,
            lookup=lookup,
            mandatory=True,
            log=log,
        )

        email = profile.email

        if not email or await user_service.email_in_use(email, conn=conn):
            email = user_service.fallback_email(identity_key, settings)

        user = await user_service.create(
            identity_key=identity_key,
            email=email,
            user_name=f"patient_{user_service.numeric_prefix(identity_key)}",
            first_name=profile.first_name or "",
            last_name_paternal=profile.last_name_paternal or "",
            last_name_maternal=profile.last_name_maternal,
            is_leader=True,
            settings=settings,
            conn=conn,
            log=log,
        )
        created_user = True
        await log.ainfo("ensure_group.user_created", short_id=user.short_id)
    else:
        profile = await _resolve_profile(
            identity_key=identity_key,
            hints=hints,
            lookup=lookup,
            mandatory=False,
            log=log,
        )
        await _reconcile_profile(user=user, profile=profile, conn=conn, log=log)

    log = log.bind(short_id=user.short_id)

    # A plain member of someone else's group is detached, never promoted into
    # leading a group they do not own.
    if user.group_id is not None:
        current = await read_by_leader(leader_id=user.short_id, conn=conn)

        if current is None or current.short_id != user.group_id:
            await log.ainfo("ensure_group.detached", previous_group_id=user.group_id)
            user.group_id = None
            conn.add(user)

    if user.group_id is not None:
        group = await read_by_id(group_id=user.group_id, conn=conn, log=log)
    else:
        group = await read_by_leader(leader_id=user.short_id, conn=conn)

        if group is not None:
            group = await read_by_id(
                group_id=group.short_id, conn=conn, log=log, for_update=True
            )
            number_of_members = await count_members(group.short_id, conn=conn)

            # leader_id is unique, so a full group cannot be replaced by a new one.
            if number_of_members >= group.max_members:
                await log.awarning(
                    "ensure_group.relink_full",
                    group_id=group.short_id,
                    number_of_members=number_of_members,
                )
                raise GroupFullError(
                    f"Group {group.short_id} is full and cannot take back its leader"
                )

            await log.awarning("ensure_group.relinked", group_id=group.short_id)
        else:
            group = FamilyGroup(
                short_id=await allocate_short_id(
                    FamilyGroup, settings=settings, conn=conn, log=log
                ),
                leader_id=user.short_id,
                app_token=await allocate_token(settings=settings, conn=conn, log=log),
                max_members=settings.default_max_members,
            )
            conn.add(group)
            created_group = True

    try:
        # Group first: user.group_id references it.
        await conn.flush()

        if user.group_id is None:
            user.group_id = group.short_id
            conn.add(user)

        await load_members(group, conn)
    except IntegrityError as e:
        await log.ainfo("ensure_group.conflict", error=str(e.orig))
        raise GroupExistsError(
            f"A concurrent request already provisioned identity {identity_key}"
        )

    if created_group:
        await log.ainfo("ensure_group.group_created", group_id=group.short_id)

    if created_user:
        message = "User and family group created"
    elif created_group:
        message = "Family group created"
    else:
        message = "Family group already existed"

    return EnsureGroupResult(
        user=user.to_core(),
        group=group.to_core(),
        created_user=created_user,
        created_group=created_group,
        message=message,
    )


async def add_member(
    group_id: str,
    identity_key: str,
    profile: ProfileHints,
    settings: Settings,
    conn: AsyncSession,
    log: FilteringBoundLogger,
    requesting_leader_id: str | None = None,
) -> User:
    """
    Add a person to a group, creating their user if they are not yet known.

    Parameters
    ----------
    group_id: str
        The short ID of the group.
    identity_key: str
        The identity key of the person to add.
    profile: ProfileHints
        Profile used when the user has to be created.
    requesting_leader_id: str | None
        When given, must be the group's leader.

    Raises
    ------
    GroupNotFound
        If the group does not exist.
    NotGroupLeader
        If the requester is not the group's leader.
    GroupFullError
        If the group already holds `max_members` users.
    AlreadyInGroup
        If the user already belongs to this or another group.
    user_service.UserExistsError
        If the new user's email is already registered.
    """

    identity_key = identity_key.strip()
    log = log.bind(group_id=group_id, identity_key=identity_key)

    group = await read_by_id(group_id=group_id, conn=conn, log=log, for_update=True)
    await _check_requester(group, requesting_leader_id, log)

    number_of_members = await count_members(group.short_id, conn=conn)

    if number_of_members >= group.max_members:
        await log.ainfo(
            "group.add_member.full",
            number_of_members=number_of_members,
            max_members=group.max_members,
        )
        raise GroupFullError(f"Group {group_id} is full")

    try:
        user = await user_service.read_by_identity_key(
            identity_key=identity_key, conn=conn
        )
    except user_service.UserNotFound:
        user = None

    if user is not None:
        if user.group_id == group.short_id:
            await log.ainfo("group.add_member.already_member")
            raise AlreadyInGroup(f"User {user.short_id} is already in this group")

        if user.group_id is not None:
            await log.ainfo("group.add_member.in_other_group")
            raise AlreadyInGroup(f"User {user.short_id} belongs to another group")

        user.group_id = group.short_id
        # A member cannot also be flagged as a leader of a group they do not lead.
        user.is_leader = False
        conn.add(user)
        await conn.flush()

        await log.ainfo("group.user_added", short_id=user.short_id)
        return user

    if profile.email:
        if await user_service.email_in_use(profile.email, conn=conn):
            await log.ainfo("group.add_member.email_exists")
            raise user_service.UserExistsError(
                f"User with email {profile.email} already exists"
            )
        email = profile.email
    else:
        email = user_service.fallback_email(identity_key, settings)

    user = await user_service.create(
        identity_key=identity_key,
        email=email,
        user_name=f"member_{user_service.numeric_prefix(identity_key)}",
        first_name=profile.first_name or "Member",
        last_name_paternal=profile.last_name_paternal or "Family",
        last_name_maternal=profile.last_name_maternal,
        is_leader=False,
        group_id=group.short_id,
        settings=settings,
        conn=conn,
        log=log,
    )

    await log.ainfo("group.member_created", short_id=user.short_id)

    return user


async def remove_member(
    group_id: str,
    member_short_id: str,
    requesting_leader_id: str,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> User:
    """
    Detach a member from a group. The user row is kept.

    Raises
    ------
    GroupNotFound
        If the group does not exist.
    NotGroupLeader
        If the requester is not the group's leader.
    user_service.UserNotFound
        If the member does not exist.
    LeaderRemovalError
        If the target is the leader; leaders leave by deleting the group or
        transferring leadership.
    NotAMember
        If the target is not in this group.
    """

    log = log.bind(group_id=group_id, member_id=member_short_id)

    group = await read_by_id(group_id=group_id, conn=conn, log=log, for_update=True)
    await _check_requester(group, requesting_leader_id, log)

    member = await user_service.read_by_short_id(short_id=member_short_id, conn=conn)

    if member.short_id == group.leader_id:
        await log.ainfo("group.remove_member.is_leader")
        raise LeaderRemovalError("The leader cannot be removed from their own group")

    if member.group_id != group.short_id:
        await log.ainfo("group.remove_member.not_member")
        raise NotAMember(f"User {member_short_id} is not a member of group {group_id}")

    member.group_id = None
    conn.add(member)
    await conn.flush()

    await log.ainfo("group.user_removed")

    return member


async def leave_group(
    member_short_id: str, conn: AsyncSession, log: FilteringBoundLogger
) -> User:
    """
    A member detaches themself from their group.

    Raises
    ------
    user_service.UserNotFound
        If the user does not exist.
    NotAMember
        If the user is not in a group.
    LeaderRemovalError
        If the user leads the group.
    """

    log = log.bind(member_id=member_short_id)

    member = await user_service.read_by_short_id(short_id=member_short_id, conn=conn)

    if member.group_id is None:
        await log.ainfo("group.leave.not_member")
        raise NotAMember(f"User {member_short_id} is not in a group")

    group = await read_by_id(group_id=member.group_id, conn=conn, log=log)

    if group.leader_id == member.short_id:
        await log.ainfo("group.leave.is_leader")
        raise LeaderRemovalError("A leader cannot leave their own group")

    member.group_id = None
    conn.add(member)
    await conn.flush()

    await log.ainfo("group.user_left", group_id=group.short_id)

    return member


async def update_group(
    group_id: str,
    patch: GroupPatch,
    settings: Settings,
    conn: AsyncSession,
    log: FilteringBoundLogger,
    requesting_leader_id: str | None = None,
) -> FamilyGroup:
    """
    Update a group's token, capacity or leader.

    A leadership transfer updates both users in the same transaction: the
    new leader joins the group with `is_leader` set, the previous leader stays
    on as a plain member.

    Raises
    ------
    GroupNotFound
        If the group does not exist.
    NotGroupLeader
        If the requester is not the current leader.
    user_service.UserNotFound
        If the new leader does not exist.
    AlreadyInGroup
        If the new leader already belongs to a group.
    GroupExistsError
        If the token is used by another group, or the new leader leads one.
    InvalidCapacity
        If the new capacity is out of range or below the current member count.
    GroupFullError
        If the transfer would bring the group above capacity.
    """

    log = log.bind(group_id=group_id)

    group = await read_by_id(group_id=group_id, conn=conn, log=log, for_update=True)
    await _check_requester(group, requesting_leader_id, log)

    number_of_members = await count_members(group.short_id, conn=conn)
    max_members = group.max_members

    if patch.max_members is not None:
        _check_capacity(patch.max_members, settings)

        if patch.max_members < number_of_members:
            await log.ainfo(
                "group.update.capacity_below_members",
                number_of_members=number_of_members,
            )
            raise InvalidCapacity(
                f"Group {group_id} already has {number_of_members} members"
            )

        max_members = patch.max_members

    if patch.token is not None and patch.token != group.app_token:
        taken = (
            await conn.execute(
                select(FamilyGroup.group_id).where(FamilyGroup.app_token == patch.token)
            )
        ).scalar_one_or_none()

        if taken is not None:
            await log.ainfo("group.update.token_taken")
            raise GroupExistsError("A group with this token already exists")

        group.app_token = patch.token

    if patch.leader_id is not None and patch.leader_id != group.leader_id:
        log = log.bind(new_leader_id=patch.leader_id, old_leader_id=group.leader_id)

        new_leader = await user_service.read_by_short_id(
            short_id=patch.leader_id, conn=conn
        )

        if new_leader.group_id is not None:
            await log.ainfo("group.update.new_leader_in_group")
            raise AlreadyInGroup(
                f"User {new_leader.short_id} already belongs to a group"
            )

        if await read_by_leader(leader_id=new_leader.short_id, conn=conn) is not None:
            await log.ainfo("group.update.new_leader_has_group")
            raise GroupExistsError(f"User {new_leader.short_id} already leads a group")

        if number_of_members + 1 > max_members:
            await log.ainfo("group.update.transfer_over_capacity")
            raise GroupFullError(f"Group {group_id} is full")

        try:
            old_leader = await user_service.read_by_short_id(
                short_id=group.leader_id, conn=conn
            )
        except user_service.UserNotFound:
            old_leader = None

        if old_leader is not None:
            old_leader.is_leader = False
            conn.add(old_leader)

        new_leader.group_id = group.short_id
        new_leader.is_leader = True
        conn.add(new_leader)

        group.leader_id = new_leader.short_id
        await log.ainfo("group.leader_transferred")

    group.max_members = max_members
    conn.add(group)

    try:
        await load_members(group, conn)
    except IntegrityError as e:
        await log.ainfo("group.update.conflict", error=str(e.orig))
        raise GroupExistsError(f"Group {group_id} could not be updated")

    await log.ainfo("group.updated")

    return group


async def delete_group(
    group_id: str,
    conn: AsyncSession,
    log: FilteringBoundLogger,
    requesting_leader_id: str | None = None,
) -> None:
    """
    Delete a group. The database clears `group_id` on every member (leader
    included) through the foreign key's ON DELETE SET NULL rule.

    Raises
    ------
    GroupNotFound
        If the group does not exist.
    NotGroupLeader
        If the requester is not the current leader.
    """

    log = log.bind(group_id=group_id)

    group = await read_by_id(group_id=group_id, conn=conn, log=log)
    await _check_requester(group, requesting_leader_id, log)

    await conn.execute(delete(FamilyGroup).where(FamilyGroup.short_id == group_id))

    await log.ainfo("group.deleted")


async def get_statistics(conn: AsyncSession) -> StatisticsResponse:
    async def count(statement) -> int:
        return (await conn.execute(statement)).scalar_one()

    total_users = await count(select(func.count()).select_from(User))
    active_users = await count(
        select(func.count()).select_from(User).where(User.is_active.is_(True))
    )

    return StatisticsResponse(
        total_family_groups=await count(select(func.count()).select_from(FamilyGroup)),
        total_leaders=await count(
            select(func.count()).select_from(User).where(User.is_leader.is_(True))
        ),
        total_users=total_users,
        active_users=active_users,
        inactive_users=total_users - active_users,
    )
