"""Fan-out routing - which topics a domain event lands on.

Shared by the relay (broker path) and the notifier (direct path) so the
two deliveries of one event always hit the same topics with the same
payload.
"""

from typing import assert_never

from parley.events.models import DomainEvent, MessageCreated, MessageDeleted, MessageUpdated
from parley.realtime.topics import (
    MESSAGE_ADDED,
    MESSAGE_DELETED,
    MESSAGE_DELETED_GLOBAL,
    MESSAGE_UPDATED,
    MESSAGE_UPDATED_GLOBAL,
    message_added_topic,
)

Route = tuple[str, dict]


def routes_for(event: DomainEvent) -> list[Route]:
    """Return (topic, payload) pairs for one event.

    MessageCreated fans out to every participant. Update and delete
    events carry no audience, so they go to one global topic each.
    """
    if isinstance(event, MessageCreated):
        payload = {MESSAGE_ADDED: event.to_wire()}
        return [
            (message_added_topic(user_id), payload)
            for user_id in sorted(event.conversation.participant_ids)
        ]
    if isinstance(event, MessageUpdated):
        return [(MESSAGE_UPDATED_GLOBAL, {MESSAGE_UPDATED: event.to_wire()})]
    if isinstance(event, MessageDeleted):
        return [(MESSAGE_DELETED_GLOBAL, {MESSAGE_DELETED: event.to_wire()})]
    assert_never(event)
