"""Presence API tests."""

import pytest


@pytest.mark.asyncio
async def test_nobody_online_initially(client):
    r = await client.get("/api/v1/presence")
    assert r.status_code == 200
    assert r.json() == {"online": []}


@pytest.mark.asyncio
async def test_online_then_offline(client, users, app):
    feed = app.state.feed
    inbox = feed.subscribe("onlineUsersUpdated")
    alice = users["alice"]

    r = await client.post("/api/v1/presence/online")
    assert [e["user_id"] for e in r.json()["online"]] == [alice.id]
    assert app.state.presence.is_user_online(alice.id)

    r = await client.post("/api/v1/presence/offline")
    assert r.json() == {"online": []}

    first = await anext(inbox)
    second = await anext(inbox)
    assert [e["userId"] for e in first["onlineUsersUpdated"]["online"]] == [alice.id]
    assert second == {"onlineUsersUpdated": {"online": []}}


@pytest.mark.asyncio
async def test_presence_requires_auth(anon_client):
    assert (await anon_client.post("/api/v1/presence/online")).status_code == 401
