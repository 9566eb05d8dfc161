"""User API tests."""

import pytest


@pytest.mark.asyncio
async def test_list_users(client, users):
    r = await client.get("/api/v1/users")
    assert r.status_code == 200
    assert [u["name"] for u in r.json()] == ["Alice", "Bob", "Carol"]


@pytest.mark.asyncio
async def test_list_users_by_ids(client, users):
    r = await client.get(
        "/api/v1/users", params=[("ids", users["carol"].id), ("ids", users["alice"].id)]
    )
    assert [u["name"] for u in r.json()] == ["Alice", "Carol"]


@pytest.mark.asyncio
async def test_get_user(client, users):
    r = await client.get(f"/api/v1/users/{users['bob'].id}")
    assert r.status_code == 200
    assert r.json()["email"] == "bob@example.com"


@pytest.mark.asyncio
async def test_get_missing_user(client, users):
    r = await client.get("/api/v1/users/999")
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_update_me(client, users):
    r = await client.patch("/api/v1/users/me", json={"name": "Alicia", "avatar": "a.png"})
    assert r.status_code == 200
    assert r.json()["name"] == "Alicia"
    assert r.json()["avatar"] == "a.png"

    r = await client.get(f"/api/v1/users/{users['alice'].id}")
    assert r.json()["name"] == "Alicia"


@pytest.mark.asyncio
async def test_user_conversations_and_messages(client, users):
    bob = users["bob"]
    conv = (await client.post("/api/v1/conversations", json={"participant_ids": [bob.id]})).json()
    await client.post(f"/api/v1/conversations/{conv['id']}/messages", json={"content": "hey"})

    r = await client.get(f"/api/v1/users/{bob.id}/conversations")
    assert [c["id"] for c in r.json()] == [conv["id"]]

    r = await client.get(f"/api/v1/users/{users['alice'].id}/messages")
    assert [m["content"] for m in r.json()] == ["hey"]

    r = await client.get(f"/api/v1/users/{bob.id}/messages")
    assert r.json() == []


@pytest.mark.asyncio
async def test_relations_of_missing_user(client, users):
    assert (await client.get("/api/v1/users/999/conversations")).status_code == 404
    assert (await client.get("/api/v1/users/999/messages")).status_code == 404
