"""Conversation API tests."""

import pytest

from parley.services.conversation_service import ConversationService


async def _create(client, participant_ids, name=None):
    r = await client.post(
        "/api/v1/conversations", json={"participant_ids": participant_ids, "name": name}
    )
    assert r.status_code == 201, r.text
    return r.json()


@pytest.mark.asyncio
async def test_create_always_includes_caller(client, users):
    conv = await _create(client, [users["bob"].id], name="lunch")
    assert conv["name"] == "lunch"
    assert sorted(p["id"] for p in conv["participants"]) == sorted(
        [users["alice"].id, users["bob"].id]
    )
    assert conv["last_message_at"] is None


@pytest.mark.asyncio
async def test_create_with_unknown_participant(client, users):
    r = await client.post("/api/v1/conversations", json={"participant_ids": [999]})
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_get_conversation_with_last_message(client, users):
    conv = await _create(client, [users["bob"].id])
    await client.post(f"/api/v1/conversations/{conv['id']}/messages", json={"content": "one"})
    sent = await client.post(
        f"/api/v1/conversations/{conv['id']}/messages", json={"content": "two"}
    )

    r = await client.get(f"/api/v1/conversations/{conv['id']}")
    assert r.status_code == 200
    assert r.json()["last_message_at"] is not None
    assert r.json()["last_message_at"][:19] == sent.json()["created_at"][:19]


@pytest.mark.asyncio
async def test_get_missing_conversation(client, users):
    r = await client.get("/api/v1/conversations/999")
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_list_all_and_mine(client, users, session_factory):
    alice, bob, carol = users["alice"], users["bob"], users["carol"]
    mine = await _create(client, [bob.id])

    # bob and carol, without alice
    async with session_factory() as session:
        theirs = await ConversationService(session).create_conversation(bob.id, [carol.id])

    everything = (await client.get("/api/v1/conversations")).json()
    assert [c["id"] for c in everything] == [mine["id"], theirs.id]

    r = await client.get("/api/v1/conversations/mine")
    assert [c["id"] for c in r.json()] == [mine["id"]]
    assert {p["id"] for p in r.json()[0]["participants"]} == {alice.id, bob.id}


@pytest.mark.asyncio
async def test_find_by_participants_requires_every_member_in_set(client, users):
    alice, bob, carol = users["alice"], users["bob"], users["carol"]
    pair = await _create(client, [bob.id])
    trio = await _create(client, [bob.id, carol.id])

    r = await client.get(
        "/api/v1/conversations/by-participants",
        params=[("ids", alice.id), ("ids", bob.id)],
    )
    assert [c["id"] for c in r.json()] == [pair["id"]]

    r = await client.get(
        "/api/v1/conversations/by-participants",
        params=[("ids", alice.id), ("ids", bob.id), ("ids", carol.id)],
    )
    assert [c["id"] for c in r.json()] == [pair["id"], trio["id"]]


@pytest.mark.asyncio
async def test_rename(client, users):
    conv = await _create(client, [users["bob"].id])
    r = await client.patch(f"/api/v1/conversations/{conv['id']}", json={"name": "renamed"})
    assert r.status_code == 200
    assert r.json()["name"] == "renamed"
    assert len(r.json()["participants"]) == 2

    r = await client.patch("/api/v1/conversations/999", json={"name": "x"})
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_delete_removes_messages(client, users):
    conv = await _create(client, [users["bob"].id])
    sent = await client.post(
        f"/api/v1/conversations/{conv['id']}/messages", json={"content": "bye"}
    )

    r = await client.delete(f"/api/v1/conversations/{conv['id']}")
    assert r.status_code == 204

    assert (await client.get(f"/api/v1/conversations/{conv['id']}")).status_code == 404
    assert (await client.get(f"/api/v1/messages/{sent.json()['id']}")).status_code == 404
    assert (await client.delete(f"/api/v1/conversations/{conv['id']}")).status_code == 404
