"""
Leader lifecycle. Leaders are managed here only while they hold no group.
"""

from fastapi import APIRouter, status

from familyhub.api.dependencies import (
    AuthenticatedUserDependency,
    DatabaseDependency,
    LoggerDependency,
    SettingsDependency,
)
from familyhub.core.models import LeaderCreationRequest, LeaderPatch, MessageResponse
from familyhub.core.user import UserData
from familyhub.service import user as user_service

leader_app = APIRouter(tags=["Leaders"])


@leader_app.post(
    "",
    summary="Create a leader",
    status_code=status.HTTP_201_CREATED,
    responses={
        201: {"description": "Leader created."},
        409: {"description": "Identity key, email or short ID already in use."},
    },
)
async def create_leader(
    content: LeaderCreationRequest,
    user: AuthenticatedUserDependency,
    settings: SettingsDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
) -> UserData:
    log = log.bind(requester=user.identity_key)

    leader = await user_service.create_leader(
        identity_key=content.identity_key,
        email=content.email,
        first_name=content.first_name,
        last_name_paternal=content.last_name_paternal,
        last_name_maternal=content.last_name_maternal,
        password=content.password,
        short_id=content.short_id,
        settings=settings,
        conn=conn,
        log=log,
    )

    return leader.to_core()


@leader_app.get(
    "",
    summary="List leaders",
    description="List leaders, optionally filtered by `q` over identity, email and names.",
)
async def list_leaders(
    user: AuthenticatedUserDependency,
    conn: DatabaseDependency,
    q: str | None = None,
) -> list[UserData]:
    return await user_service.get_leader_list(conn=conn, query=q)


@leader_app.get(
    "/{short_id}",
    summary="Get a leader",
    responses={404: {"description": "Leader not found."}},
)
async def get_leader(
    short_id: str,
    user: AuthenticatedUserDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
) -> UserData:
    leader = await user_service.read_leader(short_id=short_id, conn=conn, log=log)
    return leader.to_core()


@leader_app.patch(
    "/{short_id}",
    summary="Update a leader",
    responses={
        404: {"description": "Leader not found or holds a group."},
        409: {"description": "Email already in use."},
    },
)
async def update_leader(
    short_id: str,
    content: LeaderPatch,
    user: AuthenticatedUserDependency,
    settings: SettingsDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
) -> UserData:
    leader = await user_service.update_leader(
        short_id=short_id, patch=content, settings=settings, conn=conn, log=log
    )
    return leader.to_core()


@leader_app.delete(
    "/{short_id}",
    summary="Delete a leader",
    responses={
        404: {"description": "Leader not found or holds a group."},
        409: {"description": "A group still names this leader."},
    },
)
async def delete_leader(
    short_id: str,
    user: AuthenticatedUserDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
) -> MessageResponse:
    await user_service.delete_leader(short_id=short_id, conn=conn, log=log)
    return MessageResponse(message=f"Leader {short_id} deleted")
