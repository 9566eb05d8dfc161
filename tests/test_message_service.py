"""Message service tests - persist first, then broker and direct delivery."""

import pytest
import pytest_asyncio

from parley.broker.gateway import BrokerRejected, BrokerUnavailable
from parley.db.models import Message
from parley.realtime.registry import LiveFeedRegistry
from parley.services.conversation_service import (
    ConversationNotFoundError,
    ConversationService,
)
from parley.services.message_service import MessageNotFoundError, MessageService
from parley.services.notifier import MessageNotifier


@pytest.fixture()
def feed():
    return LiveFeedRegistry()


@pytest_asyncio.fixture()
async def service_factory(session_factory, gateway, feed):
    """Each call opens a fresh session, like one request would."""
    sessions = []

    def make() -> MessageService:
        session = session_factory()
        sessions.append(session)
        return MessageService(session, MessageNotifier(gateway, feed))

    yield make
    for session in sessions:
        await session.close()


@pytest_asyncio.fixture()
async def conversation(session_factory, users):
    async with session_factory() as session:
        svc = ConversationService(session)
        return await svc.create_conversation(
            users["alice"].id, [users["bob"].id, users["carol"].id], name="trio"
        )


@pytest.mark.asyncio
async def test_send_publishes_to_broker_and_every_participant(
    service_factory, gateway, feed, users, conversation
):
    inboxes = {
        key: feed.subscribe(f"messageAdded_{user.id}") for key, user in users.items()
    }

    message = await service_factory().send_message(
        conversation.id, users["alice"].id, "hi"
    )

    [(pattern, event)] = gateway.published
    assert pattern == "message_created"
    assert event.id == message.id
    assert event.author.username == "Alice"
    assert event.conversation.participant_ids == {u.id for u in users.values()}

    for inbox in inboxes.values():
        payload = await anext(inbox)
        assert payload["messageAdded"]["content"] == "hi"
        assert payload["messageAdded"]["id"] == message.id


@pytest.mark.asyncio
async def test_broker_rejection_raises_but_message_is_stored(
    service_factory, session_factory, gateway, feed, users, conversation
):
    gateway.fail_with = BrokerRejected
    inbox = feed.subscribe(f"messageAdded_{users['bob'].id}")

    with pytest.raises(BrokerRejected) as exc:
        await service_factory().send_message(conversation.id, users["alice"].id, "hi")

    message_id = exc.value.message_id
    async with session_factory() as session:
        stored = await session.get(Message, message_id)
    assert stored is not None
    assert stored.content == "hi"

    # The direct path still ran
    assert (await anext(inbox))["messageAdded"]["id"] == message_id


@pytest.mark.asyncio
async def test_send_to_missing_conversation(service_factory, gateway, users):
    with pytest.raises(ConversationNotFoundError):
        await service_factory().send_message(999, users["alice"].id, "hi")
    assert gateway.published == []


@pytest.mark.asyncio
async def test_update_goes_to_global_topic(service_factory, gateway, feed, users, conversation):
    message = await service_factory().send_message(conversation.id, users["alice"].id, "hi")
    inbox = feed.subscribe("messageUpdated_global")

    updated = await service_factory().update_message(message.id, "edited")

    assert updated.content == "edited"
    assert gateway.patterns() == ["message_created", "message_updated"]
    assert await anext(inbox) == {
        "messageUpdated": {
            "messageId": message.id,
            "content": "edited",
            "conversationId": conversation.id,
            "userId": users["alice"].id,
        }
    }


@pytest.mark.asyncio
async def test_delete_goes_to_global_topic(
    service_factory, session_factory, gateway, feed, users, conversation
):
    message = await service_factory().send_message(conversation.id, users["alice"].id, "hi")
    inbox = feed.subscribe("messageDeleted_global")

    await service_factory().delete_message(message.id)

    assert (await anext(inbox))["messageDeleted"]["messageId"] == message.id
    async with session_factory() as session:
        assert await session.get(Message, message.id) is None


@pytest.mark.asyncio
async def test_update_and_delete_missing_message(service_factory):
    with pytest.raises(MessageNotFoundError):
        await service_factory().update_message(999, "x")
    with pytest.raises(MessageNotFoundError):
        await service_factory().delete_message(999)


@pytest.mark.asyncio
async def test_relay_message_resends_creation(service_factory, gateway, feed, users, conversation):
    message = await service_factory().send_message(conversation.id, users["alice"].id, "hi")
    inbox = feed.subscribe(f"messageAdded_{users['carol'].id}")

    delivered = await service_factory().relay_message(message.id)

    assert delivered == 1
    assert gateway.patterns() == ["message_created", "message_created"]
    assert (await anext(inbox))["messageAdded"]["id"] == message.id


@pytest.mark.asyncio
async def test_participant_lookup_failure_sends_empty_audience(
    service_factory, gateway, users, conversation, monkeypatch
):
    from sqlalchemy.exc import OperationalError

    async def broken(self, conversation_id):
        raise OperationalError("SELECT", {}, Exception("db gone"))

    monkeypatch.setattr(ConversationService, "participant_ids", broken)

    await service_factory().send_message(conversation.id, users["alice"].id, "hi")

    [(_, event)] = gateway.published
    assert event.conversation.participant_ids == set()


@pytest.mark.asyncio
async def test_unavailable_broker_still_delivers_direct(
    service_factory, gateway, feed, users, conversation
):
    gateway.fail_with = BrokerUnavailable
    inbox = feed.subscribe("messageDeleted_global")
    message = None
    with pytest.raises(BrokerUnavailable) as exc:
        message = await service_factory().send_message(conversation.id, users["alice"].id, "hi")
    assert message is None

    with pytest.raises(BrokerUnavailable):
        await service_factory().delete_message(exc.value.message_id)
    assert (await anext(inbox))["messageDeleted"]["messageId"] == exc.value.message_id
