"""
Family group management.
"""

from fastapi import APIRouter, status
from sqlalchemy.ext.asyncio import AsyncSession
from structlog.typing import FilteringBoundLogger

from familyhub.api.authentication import FamilyUser
from familyhub.api.dependencies import (
    AuthenticatedUserDependency,
    DatabaseDependency,
    IdentityValidatorDependency,
    LoggerDependency,
    PatientLookupDependency,
    SettingsDependency,
)
from familyhub.core.group import FamilyGroupData
from familyhub.core.models import (
    AddMemberRequest,
    EnsureGroupResult,
    GroupCreationRequest,
    GroupCreationResponse,
    GroupPatch,
    MessageResponse,
    ProfileHints,
)
from familyhub.core.user import UserData
from familyhub.service import groups as groups_service
from familyhub.service import user as user_service

group_app = APIRouter(tags=["Family Groups"])


async def requester_short_id(
    user: FamilyUser, conn: AsyncSession, log: FilteringBoundLogger
) -> str:
    """
    The short ID of the calling user. A caller with no user row cannot lead
    anything, so this is reported as a permission failure.
    """
    try:
        requester = await user_service.read_by_identity_key(
            identity_key=user.identity_key, conn=conn
        )
    except user_service.UserNotFound:
        await log.awarning("group.requester_unknown")
        raise groups_service.NotGroupLeader(
            "The caller is not registered as a user"
        )

    return requester.short_id


@group_app.get(
    "",
    summary="List all groups",
    responses={200: {"description": "List of groups with their members."}},
)
async def list_groups(
    user: AuthenticatedUserDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
) -> list[FamilyGroupData]:
    log = log.bind(identity_key=user.identity_key)
    groups = await groups_service.get_group_list(conn=conn, log=log)
    return [g.to_core() for g in groups]


@group_app.post(
    "/mine",
    summary="Find or create the caller's family group",
    description=(
        "Ensure the caller has a user and leads a family group, creating both "
        "if needed. Profile fields in the body take precedence over the "
        "patient registry. Calling this repeatedly has no further effect."
    ),
    responses={
        200: {"description": "The caller's user and group."},
        404: {"description": "Identity unknown to the patient registry."},
        503: {"description": "Patient registry unavailable."},
    },
)
async def ensure_my_group(
    user: AuthenticatedUserDependency,
    settings: SettingsDependency,
    lookup: PatientLookupDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
    hints: ProfileHints | None = None,
) -> EnsureGroupResult:
    return await groups_service.ensure_group_for_identity(
        identity_key=user.identity_key,
        settings=settings,
        lookup=lookup,
        conn=conn,
        log=log,
        hints=hints,
    )


@group_app.post(
    "/leave",
    summary="Leave the caller's group",
    responses={
        200: {"description": "The caller, detached from their group."},
        409: {"description": "Caller is not in a group, or leads it."},
    },
)
async def leave_group(
    user: AuthenticatedUserDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
) -> UserData:
    member = await user_service.read_by_identity_key(
        identity_key=user.identity_key, conn=conn
    )
    member = await groups_service.leave_group(
        member_short_id=member.short_id, conn=conn, log=log
    )
    return member.to_core()


@group_app.get(
    "/token/{token}",
    summary="Get group by application token",
    responses={
        200: {"description": "Group details with members."},
        404: {"description": "Group not found."},
    },
)
async def get_group_by_token(
    token: str,
    user: AuthenticatedUserDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
) -> FamilyGroupData:
    group = await groups_service.read_by_token(token=token, conn=conn, log=log)
    return group.to_core()


@group_app.get(
    "/{group_id}",
    summary="Get group by ID",
    responses={
        200: {"description": "Group details with members."},
        404: {"description": "Group not found."},
    },
)
async def get_group_by_id(
    group_id: str,
    user: AuthenticatedUserDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
) -> FamilyGroupData:
    group = await groups_service.read_by_id(group_id=group_id, conn=conn, log=log)
    return group.to_core()


@group_app.get(
    "/{group_id}/members",
    summary="List the members of a group",
    responses={
        200: {"description": "Members, leader included."},
        404: {"description": "Group not found."},
    },
)
async def get_group_members(
    group_id: str,
    user: AuthenticatedUserDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
) -> list[UserData]:
    members = await groups_service.get_members(group_id=group_id, conn=conn, log=log)
    return [m.to_core() for m in members]


@group_app.post(
    "",
    summary="Create a new group",
    description=(
        "Create a group led by an existing user. The caller must be that user."
    ),
    status_code=status.HTTP_201_CREATED,
    responses={
        201: {"description": "Group created successfully."},
        403: {"description": "Caller is not the requested leader."},
        404: {"description": "Leader not found."},
        409: {"description": "Leader already in a group, or ID/token taken."},
    },
)
async def create_group(
    content: GroupCreationRequest,
    user: AuthenticatedUserDependency,
    settings: SettingsDependency,
    validator: IdentityValidatorDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
) -> GroupCreationResponse:
    requester = await requester_short_id(user=user, conn=conn, log=log)

    if requester != content.leader_id:
        await log.awarning("group.create.access_denied", requester=requester)
        raise groups_service.NotGroupLeader(
            "Groups can only be created by their own leader"
        )

    group, leader = await groups_service.create_group(
        leader_short_id=content.leader_id,
        requested_group_id=content.group_id,
        token=content.token,
        max_members=content.max_members,
        validator=validator,
        settings=settings,
        conn=conn,
        log=log,
    )

    return GroupCreationResponse(
        group=group.to_core(),
        leader=leader.to_core(),
        message="Family group created",
    )


@group_app.patch(
    "/{group_id}",
    summary="Update a group",
    responses={
        200: {"description": "The updated group."},
        403: {"description": "Caller is not the group's leader."},
        404: {"description": "Group or new leader not found."},
        409: {"description": "Token taken, invalid capacity or transfer refused."},
    },
)
async def update_group(
    group_id: str,
    content: GroupPatch,
    user: AuthenticatedUserDependency,
    settings: SettingsDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
) -> FamilyGroupData:
    group = await groups_service.update_group(
        group_id=group_id,
        patch=content,
        requesting_leader_id=await requester_short_id(user=user, conn=conn, log=log),
        settings=settings,
        conn=conn,
        log=log,
    )
    return group.to_core()


@group_app.delete(
    "/{group_id}",
    summary="Delete a group",
    description="Delete a group. Every member, leader included, is detached.",
    responses={
        200: {"description": "Group deleted."},
        403: {"description": "Caller is not the group's leader."},
        404: {"description": "Group not found."},
    },
)
async def delete_group(
    group_id: str,
    user: AuthenticatedUserDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
) -> MessageResponse:
    await groups_service.delete_group(
        group_id=group_id,
        requesting_leader_id=await requester_short_id(user=user, conn=conn, log=log),
        conn=conn,
        log=log,
    )
    return MessageResponse(message=f"Family group {group_id} deleted")


@group_app.post(
    "/{group_id}/members",
    summary="Add a member to a group",
    description=(
        "Add a person to the group by identity key. Their user is created if "
        "they are not yet known."
    ),
    status_code=status.HTTP_201_CREATED,
    responses={
        201: {"description": "The member that was added."},
        403: {"description": "Caller is not the group's leader."},
        404: {"description": "Group not found."},
        409: {"description": "Group full, or person already in a group."},
    },
)
async def add_member(
    group_id: str,
    content: AddMemberRequest,
    user: AuthenticatedUserDependency,
    settings: SettingsDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
) -> UserData:
    member = await groups_service.add_member(
        group_id=group_id,
        identity_key=content.identity_key,
        profile=content.profile(),
        requesting_leader_id=await requester_short_id(user=user, conn=conn, log=log),
        settings=settings,
        conn=conn,
        log=log,
    )
    return member.to_core()


@group_app.delete(
    "/{group_id}/members/{member_id}",
    summary="Remove a member from a group",
    responses={
        200: {"description": "The member, detached from the group."},
        403: {"description": "Caller is not the group's leader."},
        404: {"description": "Group or member not found."},
        409: {"description": "Target is the leader or not a member."},
    },
)
async def remove_member(
    group_id: str,
    member_id: str,
    user: AuthenticatedUserDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
) -> UserData:
    member = await groups_service.remove_member(
        group_id=group_id,
        member_short_id=member_id,
        requesting_leader_id=await requester_short_id(user=user, conn=conn, log=log),
        conn=conn,
        log=log,
    )
    return member.to_core()
