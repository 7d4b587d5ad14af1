"""
Tests the leader lifecycle in the user service layer.
"""

import pytest

from familyhub.core.hashing import check_password
from familyhub.core.models import LeaderPatch
from familyhub.service import groups as groups_service
from familyhub.service import user as user_service
from familyhub.service.errors import Conflict, NotFound


@pytest.mark.asyncio(loop_scope="session")
async def test_create_leader(server_settings, session_manager, logger, new_identity):
    identity_key, email = new_identity()

    async with session_manager.session() as conn:
        async with conn.begin():
            leader = await user_service.create_leader(
                identity_key=identity_key,
                email=email,
                first_name="Marta",
                last_name_paternal="Vidal",
                last_name_maternal="Lagos",
                password="s3cret-pass",
                settings=server_settings,
                conn=conn,
                log=logger,
            )
            SHORT_ID = leader.short_id

    async with session_manager.session() as conn:
        async with conn.begin():
            leader = await user_service.read_leader(
                short_id=SHORT_ID, conn=conn, log=logger
            )

            assert leader.identity_key == identity_key
            assert leader.email == email
            assert leader.user_name == f"user_{identity_key.split('-')[0]}"
            assert leader.is_leader
            assert leader.is_active
            assert leader.group_id is None
            assert leader.first_name == "Marta"
            assert leader.last_name_paternal == "Vidal"
            assert leader.last_name_maternal == "Lagos"
            assert leader.password_hash != "s3cret-pass"
            assert check_password("s3cret-pass", leader.password_hash)

    # Same identity key, then same email, then same short ID
    other_identity, other_email = new_identity()

    for kwargs in (
        dict(identity_key=identity_key, email=other_email),
        dict(identity_key=other_identity, email=email),
        dict(identity_key=other_identity, email=other_email, short_id=SHORT_ID),
    ):
        with pytest.raises(user_service.UserExistsError):
            async with session_manager.session() as conn:
                async with conn.begin():
                    await user_service.create_leader(
                        first_name="Marta",
                        last_name_paternal="Vidal",
                        settings=server_settings,
                        conn=conn,
                        log=logger,
                        **kwargs,
                    )


@pytest.mark.asyncio(loop_scope="session")
async def test_create_leader_requested_short_id(
    server_settings, session_manager, logger, make_leader
):
    short_id = await make_leader(short_id="LeadR001")
    assert short_id == "LeadR001"

    async with session_manager.session() as conn:
        async with conn.begin():
            leader = await user_service.read_by_short_id(short_id=short_id, conn=conn)
            assert leader.is_leader


@pytest.mark.asyncio(loop_scope="session")
async def test_read_leader_not_a_leader(server_settings, session_manager, logger):
    with pytest.raises(NotFound):
        async with session_manager.session() as conn:
            async with conn.begin():
                await user_service.read_leader(short_id="NoSuch00", conn=conn, log=logger)


@pytest.mark.asyncio(loop_scope="session")
async def test_leader_list(server_settings, session_manager, logger, make_leader):
    short_id = await make_leader(first_name="Ximena", last_name_paternal="Quiroz")

    async with session_manager.session() as conn:
        async with conn.begin():
            everyone = await user_service.get_leader_list(conn=conn)
            found = await user_service.get_leader_list(conn=conn, query="XIMENA")
            missing = await user_service.get_leader_list(
                conn=conn, query="nobody-by-this-name"
            )

    assert short_id in {leader.short_id for leader in everyone}
    assert short_id in {leader.short_id for leader in found}
    assert all(leader.is_leader for leader in everyone)
    assert missing == []


@pytest.mark.asyncio(loop_scope="session")
async def test_update_leader(
    server_settings, session_manager, logger, make_leader, new_identity
):
    short_id = await make_leader()
    other = await make_leader()

    _, new_email = new_identity()

    async with session_manager.session() as conn:
        async with conn.begin():
            leader = await user_service.update_leader(
                short_id=short_id,
                patch=LeaderPatch(
                    email=new_email,
                    first_name="Renata",
                    password="another-pass",
                    is_active=False,
                ),
                settings=server_settings,
                conn=conn,
                log=logger,
            )

            assert leader.email == new_email
            assert leader.first_name == "Renata"
            assert not leader.is_active
            assert check_password("another-pass", leader.password_hash)

    # Email of another user
    async with session_manager.session() as conn:
        async with conn.begin():
            other_email = (
                await user_service.read_by_short_id(short_id=other, conn=conn)
            ).email

    with pytest.raises(user_service.UserExistsError):
        async with session_manager.session() as conn:
            async with conn.begin():
                await user_service.update_leader(
                    short_id=short_id,
                    patch=LeaderPatch(email=other_email, first_name="Changed"),
                    settings=server_settings,
                    conn=conn,
                    log=logger,
                )

    # Nothing from the failed update was written
    async with session_manager.session() as conn:
        async with conn.begin():
            leader = await user_service.read_by_short_id(short_id=short_id, conn=conn)
            assert leader.email == new_email
            assert leader.first_name == "Renata"


@pytest.mark.asyncio(loop_scope="session")
async def test_leader_with_group_is_not_managed_here(
    server_settings, session_manager, logger, make_leader
):
    short_id = await make_leader()

    async with session_manager.session() as conn:
        async with conn.begin():
            await groups_service.create_group(
                leader_short_id=short_id,
                settings=server_settings,
                conn=conn,
                log=logger,
            )

    with pytest.raises(user_service.UserNotFound):
        async with session_manager.session() as conn:
            async with conn.begin():
                await user_service.update_leader(
                    short_id=short_id,
                    patch=LeaderPatch(first_name="Nope"),
                    settings=server_settings,
                    conn=conn,
                    log=logger,
                )

    with pytest.raises(user_service.UserNotFound):
        async with session_manager.session() as conn:
            async with conn.begin():
                await user_service.delete_leader(short_id=short_id, conn=conn, log=logger)


@pytest.mark.asyncio(loop_scope="session")
async def test_delete_leader(server_settings, session_manager, logger, make_leader):
    short_id = await make_leader()

    async with session_manager.session() as conn:
        async with conn.begin():
            await user_service.delete_leader(short_id=short_id, conn=conn, log=logger)

    with pytest.raises(user_service.UserNotFound):
        async with session_manager.session() as conn:
            async with conn.begin():
                await user_service.read_by_short_id(short_id=short_id, conn=conn)

    with pytest.raises(NotFound):
        async with session_manager.session() as conn:
            async with conn.begin():
                await user_service.delete_leader(short_id=short_id, conn=conn, log=logger)


@pytest.mark.asyncio(loop_scope="session")
async def test_delete_leader_named_by_stale_group(
    server_settings, session_manager, logger, make_leader
):
    short_id = await make_leader()

    async with session_manager.session() as conn:
        async with conn.begin():
            group, leader = await groups_service.create_group(
                leader_short_id=short_id,
                settings=server_settings,
                conn=conn,
                log=logger,
            )
            # Break the back-link only, leaving the group naming this leader.
            leader.group_id = None
            conn.add(leader)

    with pytest.raises(Conflict):
        async with session_manager.session() as conn:
            async with conn.begin():
                await user_service.delete_leader(short_id=short_id, conn=conn, log=logger)
