"""Queue envelope codec.

A stream entry holds two string fields:
    pattern  -> "message_created" | "message_updated" | "message_deleted"
    payload  -> the event body as camelCase JSON

decode_envelope() is the inverse of encode_envelope(): every field of the
original event survives the trip.
"""

import json
from dataclasses import dataclass
from typing import Any, Optional

from pydantic import BaseModel, ValidationError

from parley.events.models import EVENT_TYPES, DomainEvent


class EnvelopeError(Exception):
    """Raised when a stream entry can't be decoded into a domain event."""


@dataclass(frozen=True)
class BrokerMessage:
    """A decoded envelope, plus the stream entry id it arrived with."""
    pattern: str
    payload: DomainEvent
    entry_id: Optional[str] = None


def encode_envelope(pattern: str, payload: Any) -> dict[str, str]:
    if isinstance(payload, BaseModel):
        body = payload.model_dump_json(by_alias=True)
    else:
        body = json.dumps(payload, default=str)
    return {"pattern": pattern, "payload": body}


def decode_envelope(
    fields: dict[str, str], entry_id: Optional[str] = None
) -> BrokerMessage:
    pattern = fields.get("pattern")
    body = fields.get("payload")
    if pattern is None or body is None:
        raise EnvelopeError(f"Entry {entry_id} is missing pattern or payload")

    model = EVENT_TYPES.get(pattern)
    if model is None:
        raise EnvelopeError(f"Unknown pattern {pattern!r} in entry {entry_id}")

    try:
        event = model.model_validate_json(body)
    except ValidationError as e:
        raise EnvelopeError(f"Invalid {pattern} payload in entry {entry_id}: {e}")
    return BrokerMessage(pattern=pattern, payload=event, entry_id=entry_id)
