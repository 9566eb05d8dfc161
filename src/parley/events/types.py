"""Broker pattern constants.

Learn: a pattern names the kind of domain event inside a queue envelope.
Producers and the relay both import these so a typo can't split the
stream into two kinds nobody handles.
"""

MESSAGE_CREATED = "message_created"
MESSAGE_UPDATED = "message_updated"
MESSAGE_DELETED = "message_deleted"

ALL_PATTERNS = (MESSAGE_CREATED, MESSAGE_UPDATED, MESSAGE_DELETED)
