"""Live feed topic names.

These exact strings are part of the client contract: subscription clients
build them from their own user id, so never rename them.
"""

MESSAGE_ADDED = "messageAdded"
MESSAGE_UPDATED = "messageUpdated"
MESSAGE_DELETED = "messageDeleted"
ONLINE_USERS_UPDATED = "onlineUsersUpdated"

MESSAGE_UPDATED_GLOBAL = f"{MESSAGE_UPDATED}_global"
MESSAGE_DELETED_GLOBAL = f"{MESSAGE_DELETED}_global"

SUBSCRIPTIONS = (MESSAGE_ADDED, MESSAGE_UPDATED, MESSAGE_DELETED, ONLINE_USERS_UPDATED)


def message_added_topic(user_id: int) -> str:
    return f"{MESSAGE_ADDED}_{user_id}"


def topic_for_subscription(subscription: str, user_id: int) -> str:
    """Map a client subscription name to the topic it listens on.

    Raises KeyError for unknown names.
    """
    topics = {
        MESSAGE_ADDED: message_added_topic(user_id),
        MESSAGE_UPDATED: MESSAGE_UPDATED_GLOBAL,
        MESSAGE_DELETED: MESSAGE_DELETED_GLOBAL,
        ONLINE_USERS_UPDATED: ONLINE_USERS_UPDATED,
    }
    return topics[subscription]
