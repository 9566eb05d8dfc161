"""Message API tests - CRUD, live delivery and broker partial failure."""

import pytest

from parley.broker.gateway import BrokerRejected, BrokerUnavailable


@pytest.fixture()
def feed(app):
    return app.state.feed


async def _conversation(client, users) -> dict:
    r = await client.post(
        "/api/v1/conversations",
        json={"participant_ids": [users["bob"].id, users["carol"].id]},
    )
    return r.json()


@pytest.mark.asyncio
async def test_send_message(client, users, gateway, feed):
    conv = await _conversation(client, users)
    bob_inbox = feed.subscribe(f"messageAdded_{users['bob'].id}")

    r = await client.post(
        f"/api/v1/conversations/{conv['id']}/messages", json={"content": "hi"}
    )
    assert r.status_code == 201
    msg = r.json()
    assert msg["content"] == "hi"
    assert msg["user_id"] == users["alice"].id
    assert msg["conversation_id"] == conv["id"]

    assert gateway.patterns() == ["message_created"]
    payload = await anext(bob_inbox)
    assert payload["messageAdded"]["id"] == msg["id"]
    assert payload["messageAdded"]["author"]["username"] == "Alice"


@pytest.mark.asyncio
async def test_send_to_missing_conversation(client, users):
    r = await client.post("/api/v1/conversations/999/messages", json={"content": "hi"})
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_send_empty_content_rejected(client, users):
    conv = await _conversation(client, users)
    r = await client.post(f"/api/v1/conversations/{conv['id']}/messages", json={"content": ""})
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_broker_failure_is_partial_502(client, users, gateway):
    conv = await _conversation(client, users)
    gateway.fail_with = BrokerRejected

    r = await client.post(
        f"/api/v1/conversations/{conv['id']}/messages", json={"content": "hi"}
    )
    assert r.status_code == 502
    body = r.json()
    assert body["persisted"] is True
    assert "detail" in body

    # The message was stored anyway
    stored = await client.get(f"/api/v1/messages/{body['message_id']}")
    assert stored.status_code == 200
    assert stored.json()["content"] == "hi"


@pytest.mark.asyncio
async def test_relay_retry_after_failure(client, users, gateway, feed):
    conv = await _conversation(client, users)
    gateway.fail_with = BrokerUnavailable
    r = await client.post(
        f"/api/v1/conversations/{conv['id']}/messages", json={"content": "hi"}
    )
    message_id = r.json()["message_id"]

    gateway.fail_with = None
    carol_inbox = feed.subscribe(f"messageAdded_{users['carol'].id}")
    r = await client.post(f"/api/v1/messages/{message_id}/relay")

    assert r.status_code == 200
    assert r.json() == {"message_id": message_id, "delivered": 1}
    assert gateway.patterns() == ["message_created"]
    assert (await anext(carol_inbox))["messageAdded"]["content"] == "hi"


@pytest.mark.asyncio
async def test_relay_missing_message(client, users):
    r = await client.post("/api/v1/messages/999/relay")
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_get_message_includes_author(client, users):
    conv = await _conversation(client, users)
    sent = (
        await client.post(f"/api/v1/conversations/{conv['id']}/messages", json={"content": "hi"})
    ).json()

    r = await client.get(f"/api/v1/messages/{sent['id']}")
    assert r.status_code == 200
    assert r.json()["author"]["name"] == "Alice"


@pytest.mark.asyncio
async def test_list_messages_by_conversation(client, users):
    first = await _conversation(client, users)
    second = await _conversation(client, users)
    for conv, text in [(first, "a"), (second, "b"), (first, "c")]:
        await client.post(f"/api/v1/conversations/{conv['id']}/messages", json={"content": text})

    r = await client.get("/api/v1/messages", params={"conversation_id": first["id"]})
    assert [m["content"] for m in r.json()] == ["a", "c"]

    r = await client.get("/api/v1/messages")
    assert len(r.json()) == 3


@pytest.mark.asyncio
async def test_update_message(client, users, gateway, feed):
    conv = await _conversation(client, users)
    sent = (
        await client.post(f"/api/v1/conversations/{conv['id']}/messages", json={"content": "hi"})
    ).json()
    inbox = feed.subscribe("messageUpdated_global")

    r = await client.patch(f"/api/v1/messages/{sent['id']}", json={"content": "edited"})
    assert r.status_code == 200
    assert r.json()["content"] == "edited"
    assert gateway.patterns() == ["message_created", "message_updated"]
    assert (await anext(inbox))["messageUpdated"]["content"] == "edited"


@pytest.mark.asyncio
async def test_delete_message(client, users, gateway, feed):
    conv = await _conversation(client, users)
    sent = (
        await client.post(f"/api/v1/conversations/{conv['id']}/messages", json={"content": "hi"})
    ).json()
    inbox = feed.subscribe("messageDeleted_global")

    r = await client.delete(f"/api/v1/messages/{sent['id']}")
    assert r.status_code == 200
    assert (await anext(inbox))["messageDeleted"]["messageId"] == sent["id"]
    assert (await client.get(f"/api/v1/messages/{sent['id']}")).status_code == 404


@pytest.mark.asyncio
async def test_update_and_delete_missing(client, users):
    assert (await client.patch("/api/v1/messages/999", json={"content": "x"})).status_code == 404
    assert (await client.delete("/api/v1/messages/999")).status_code == 404


async def _sent(client, users) -> dict:
    conv = await _conversation(client, users)
    r = await client.post(
        f"/api/v1/conversations/{conv['id']}/messages", json={"content": "hi"}
    )
    return r.json()


@pytest.mark.asyncio
async def test_partial_failure_returns_failed_event(client, users, gateway):
    sent = await _sent(client, users)
    gateway.fail_with = BrokerUnavailable

    r = await client.patch(f"/api/v1/messages/{sent['id']}", json={"content": "edited"})

    assert r.status_code == 502
    body = r.json()
    assert body["pattern"] == "message_updated"
    assert body["event"] == {
        "messageId": sent["id"],
        "content": "edited",
        "conversationId": sent["conversation_id"],
        "userId": sent["user_id"],
    }


@pytest.mark.asyncio
async def test_retry_failed_update_notification(client, users, gateway, feed):
    sent = await _sent(client, users)
    gateway.fail_with = BrokerUnavailable
    failed = (
        await client.patch(f"/api/v1/messages/{sent['id']}", json={"content": "edited"})
    ).json()

    gateway.fail_with = None
    inbox = feed.subscribe("messageUpdated_global")
    r = await client.post(
        "/api/v1/messages/relay",
        json={"pattern": failed["pattern"], "event": failed["event"]},
    )

    assert r.status_code == 200
    assert r.json() == {"message_id": sent["id"], "delivered": 1}
    assert gateway.patterns() == ["message_created", "message_updated"]
    assert (await anext(inbox))["messageUpdated"]["content"] == "edited"


@pytest.mark.asyncio
async def test_retry_failed_delete_notification(client, users, gateway, feed):
    sent = await _sent(client, users)
    gateway.fail_with = BrokerRejected
    failed = (await client.delete(f"/api/v1/messages/{sent['id']}")).json()
    assert failed["pattern"] == "message_deleted"
    assert (await client.get(f"/api/v1/messages/{sent['id']}")).status_code == 404

    gateway.fail_with = None
    inbox = feed.subscribe("messageDeleted_global")
    r = await client.post(
        "/api/v1/messages/relay",
        json={"pattern": failed["pattern"], "event": failed["event"]},
    )

    assert r.status_code == 200
    assert r.json() == {"message_id": sent["id"], "delivered": 1}
    assert gateway.patterns() == ["message_created", "message_deleted"]
    assert (await anext(inbox))["messageDeleted"]["messageId"] == sent["id"]


@pytest.mark.asyncio
async def test_retry_delete_of_existing_message_conflicts(client, users, gateway):
    sent = await _sent(client, users)
    r = await client.post(
        "/api/v1/messages/relay",
        json={
            "pattern": "message_deleted",
            "event": {
                "messageId": sent["id"],
                "conversationId": sent["conversation_id"],
                "userId": sent["user_id"],
            },
        },
    )
    assert r.status_code == 409
    assert gateway.patterns() == ["message_created"]


@pytest.mark.asyncio
async def test_retry_rejects_unknown_or_malformed_events(client, users):
    r = await client.post(
        "/api/v1/messages/relay", json={"pattern": "message_pinned", "event": {}}
    )
    assert r.status_code == 422

    r = await client.post(
        "/api/v1/messages/relay",
        json={"pattern": "message_updated", "event": {"messageId": 1}},
    )
    assert r.status_code == 422
