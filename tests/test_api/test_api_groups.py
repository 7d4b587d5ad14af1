"""
Tests the HTTP routes for groups and leaders.
"""

import pytest


@pytest.mark.asyncio(loop_scope="session")
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.asyncio(loop_scope="session")
async def test_authentication_required(client, as_identity):
    response = await client.get("/groups")
    assert response.status_code == 401

    response = await client.get("/groups", headers=as_identity("not-an-id"))
    assert response.status_code == 401
    assert response.json()["kind"] == "unauthenticated"


@pytest.mark.asyncio(loop_scope="session")
async def test_group_flow(client, as_identity, new_identity):
    leader = as_identity("40000001-4")

    response = await client.post("/groups/mine", headers=leader)
    assert response.status_code == 200
    content = response.json()

    assert content["created_user"]
    assert content["created_group"]
    assert content["user"]["first_name"] == "Tomas"
    assert content["user"]["email"] == "tomas.araya@example.org"

    group_id = content["group"]["short_id"]
    token = content["group"]["app_token"]
    leader_id = content["user"]["short_id"]

    response = await client.post("/groups/mine", headers=leader)
    assert response.status_code == 200
    assert not response.json()["created_user"]
    assert not response.json()["created_group"]
    assert response.json()["group"]["short_id"] == group_id

    # Add a member
    member_identity, member_email = new_identity()

    response = await client.post(
        f"/groups/{group_id}/members",
        headers=leader,
        json={
            "identity_key": member_identity,
            "email": member_email,
            "first_name": "Sofia",
        },
    )
    assert response.status_code == 201
    member = response.json()
    assert member["group_id"] == group_id
    assert member["first_name"] == "Sofia"
    assert not member["is_leader"]

    response = await client.post(
        f"/groups/{group_id}/members",
        headers=leader,
        json={"identity_key": "not-an-identity"},
    )
    assert response.status_code == 422

    response = await client.post(
        "/groups/Missing0/members",
        headers=leader,
        json={"identity_key": new_identity()[0]},
    )
    assert response.status_code == 404
    assert response.json()["kind"] == "not_found"

    # Reads
    response = await client.get(f"/groups/{group_id}", headers=leader)
    assert response.status_code == 200
    assert response.json()["member_count"] == 2
    assert response.json()["leader_id"] == leader_id

    response = await client.get(f"/groups/token/{token}", headers=leader)
    assert response.json()["short_id"] == group_id

    response = await client.get(f"/groups/{group_id}/members", headers=leader)
    assert {m["short_id"] for m in response.json()} == {leader_id, member["short_id"]}

    response = await client.get("/groups", headers=leader)
    assert group_id in {g["short_id"] for g in response.json()}

    # Only the leader may manage the group
    response = await client.patch(
        f"/groups/{group_id}",
        headers=as_identity(member_identity),
        json={"max_members": 4},
    )
    assert response.status_code == 403
    assert response.json()["kind"] == "forbidden"

    response = await client.patch(
        f"/groups/{group_id}",
        headers=as_identity(new_identity()[0]),
        json={"max_members": 4},
    )
    assert response.status_code == 403

    response = await client.patch(
        f"/groups/{group_id}", headers=leader, json={"max_members": 4}
    )
    assert response.status_code == 200
    assert response.json()["max_members"] == 4

    response = await client.patch(
        f"/groups/{group_id}", headers=leader, json={"max_members": 1}
    )
    assert response.status_code == 409
    assert response.json()["kind"] == "conflict"

    # The leader cannot be removed
    response = await client.delete(
        f"/groups/{group_id}/members/{leader_id}", headers=leader
    )
    assert response.status_code == 409

    # The member leaves on their own
    response = await client.post("/groups/leave", headers=as_identity(member_identity))
    assert response.status_code == 200
    assert response.json()["group_id"] is None

    response = await client.delete(f"/groups/{group_id}", headers=leader)
    assert response.status_code == 200

    response = await client.get(f"/groups/{group_id}", headers=leader)
    assert response.status_code == 404
    assert response.json()["kind"] == "not_found"


@pytest.mark.asyncio(loop_scope="session")
async def test_ensure_unknown_identity(client, as_identity, new_identity):
    identity_key, email = new_identity()

    response = await client.post("/groups/mine", headers=as_identity(identity_key))
    assert response.status_code == 404

    response = await client.post(
        "/groups/mine",
        headers=as_identity(identity_key),
        json={"email": email, "first_name": "Diego"},
    )
    assert response.status_code == 200
    assert response.json()["created_user"]
    assert response.json()["user"]["email"] == email


@pytest.mark.asyncio(loop_scope="session")
async def test_leader_routes(client, as_identity, new_identity):
    identity_key, email = new_identity()
    caller = as_identity(identity_key)

    body = {
        "identity_key": identity_key,
        "email": email,
        "first_name": "Valentina",
        "last_name_paternal": "Zamorano",
    }

    response = await client.post("/leaders", headers=caller, json=body)
    assert response.status_code == 201
    short_id = response.json()["short_id"]
    assert response.json()["is_leader"]

    response = await client.post("/leaders", headers=caller, json=body)
    assert response.status_code == 409
    assert response.json()["kind"] == "conflict"

    response = await client.get("/leaders", headers=caller, params={"q": "zamorano"})
    assert short_id in {leader["short_id"] for leader in response.json()}

    response = await client.get(f"/leaders/{short_id}", headers=caller)
    assert response.status_code == 200

    response = await client.patch(
        f"/leaders/{short_id}", headers=caller, json={"first_name": "Vale"}
    )
    assert response.status_code == 200
    assert response.json()["first_name"] == "Vale"

    # Only the leader themself may open their group
    response = await client.post(
        "/groups",
        headers=as_identity(new_identity()[0]),
        json={"leader_id": short_id},
    )
    assert response.status_code == 403

    response = await client.post(
        "/groups", headers=caller, json={"leader_id": short_id, "max_members": 2}
    )
    assert response.status_code == 201
    assert response.json()["group"]["max_members"] == 2
    assert response.json()["leader"]["group_id"] == response.json()["group"]["short_id"]

    # A leader holding a group is managed through the group
    response = await client.delete(f"/leaders/{short_id}", headers=caller)
    assert response.status_code == 404

    other_identity, other_email = new_identity()
    response = await client.post(
        "/leaders",
        headers=caller,
        json={
            "identity_key": other_identity,
            "email": other_email,
            "first_name": "Borrar",
            "last_name_paternal": "Luego",
        },
    )
    other_id = response.json()["short_id"]

    response = await client.delete(f"/leaders/{other_id}", headers=caller)
    assert response.status_code == 200

    response = await client.get(f"/leaders/{other_id}", headers=caller)
    assert response.status_code == 404


@pytest.mark.asyncio(loop_scope="session")
async def test_statistics(client):
    response = await client.get("/stats")
    assert response.status_code == 200
    content = response.json()
    assert content["active_users"] + content["inactive_users"] == content["total_users"]
