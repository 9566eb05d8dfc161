"""Batch loaders - coalesce per-row relation lookups into one query.

Learn: rendering a list of conversations with their participants naively
runs one participants query per conversation (the N+1 problem). A
BatchLoader collects every load() issued during the same event-loop turn
and resolves them with a single call to its batch function.

Batch function contract: it receives the requested keys in order, possibly
with duplicates, and returns a list of the same length in the same order.
Misses are None (point lookups) or [] (relation lookups).

Loaders cache per key, so build a fresh set per request (get_loaders) and
never share one across sessions.
"""

import asyncio
from collections import defaultdict
from typing import Awaitable, Callable, Generic, Hashable, Optional, Sequence, TypeVar

from fastapi import Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from parley.db.engine import get_db
from parley.db.models import Conversation, Message, User, conversation_participants

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

BatchFn = Callable[[list[K]], Awaitable[Sequence[V]]]


class BatchLoader(Generic[K, V]):
    """Coalescing, caching key -> value loader."""

    def __init__(self, batch_fn: BatchFn):
        self._batch_fn = batch_fn
        self._cache: dict[K, asyncio.Future] = {}
        self._queue: list[tuple[K, asyncio.Future]] = []
        self._task: Optional[asyncio.Task] = None

    def load(self, key: K) -> "asyncio.Future[V]":
        """Schedule a key for the next batch. Await the returned future."""
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        loop = asyncio.get_running_loop()
        future = loop.create_future()
        self._cache[key] = future
        self._queue.append((key, future))
        if len(self._queue) == 1:
            # Runs after the current turn, so sibling load() calls join the batch
            self._task = loop.create_task(self._dispatch())
        return future

    async def load_many(self, keys: Sequence[K]) -> list[V]:
        return list(await asyncio.gather(*(self.load(k) for k in keys)))

    def clear(self, key: K) -> None:
        self._cache.pop(key, None)

    async def _dispatch(self) -> None:
        batch, self._queue = self._queue, []
        keys = [key for key, _ in batch]
        try:
            results = await self._batch_fn(keys)
            if len(results) != len(keys):
                raise ValueError(
                    f"Batch function returned {len(results)} results "
                    f"for {len(keys)} keys"
                )
        except Exception as exc:
            for key, future in batch:
                self._cache.pop(key, None)
                if not future.done():
                    future.set_exception(exc)
            return

        for (_, future), result in zip(batch, results):
            if not future.done():
                future.set_result(result)


# ─── Batch functions ─────────────────────────────────────


async def batch_users(db: AsyncSession, ids: list[int]) -> list[Optional[User]]:
    result = await db.execute(select(User).where(User.id.in_(set(ids))))
    by_id = {u.id: u for u in result.scalars().all()}
    return [by_id.get(i) for i in ids]


async def batch_conversations(
    db: AsyncSession, ids: list[int]
) -> list[Optional[Conversation]]:
    result = await db.execute(
        select(Conversation).where(Conversation.id.in_(set(ids)))
    )
    by_id = {c.id: c for c in result.scalars().all()}
    return [by_id.get(i) for i in ids]


async def batch_participants_by_conversation(
    db: AsyncSession, ids: list[int]
) -> list[list[User]]:
    result = await db.execute(
        select(conversation_participants.c.conversation_id, User)
        .join(User, User.id == conversation_participants.c.user_id)
        .where(conversation_participants.c.conversation_id.in_(set(ids)))
        .order_by(User.id)
    )
    grouped: dict[int, list[User]] = defaultdict(list)
    for conversation_id, user in result.all():
        grouped[conversation_id].append(user)
    return [list(grouped.get(i, [])) for i in ids]


async def batch_messages_by_conversation(
    db: AsyncSession, ids: list[int]
) -> list[list[Message]]:
    result = await db.execute(
        select(Message)
        .where(Message.conversation_id.in_(set(ids)))
        .order_by(Message.created_at, Message.id)
    )
    grouped: dict[int, list[Message]] = defaultdict(list)
    for message in result.scalars().all():
        grouped[message.conversation_id].append(message)
    return [list(grouped.get(i, [])) for i in ids]


async def batch_conversations_by_user(
    db: AsyncSession, ids: list[int]
) -> list[list[Conversation]]:
    result = await db.execute(
        select(conversation_participants.c.user_id, Conversation)
        .join(
            Conversation,
            Conversation.id == conversation_participants.c.conversation_id,
        )
        .where(conversation_participants.c.user_id.in_(set(ids)))
        .order_by(Conversation.id)
    )
    grouped: dict[int, list[Conversation]] = defaultdict(list)
    for user_id, conversation in result.all():
        grouped[user_id].append(conversation)
    return [list(grouped.get(i, [])) for i in ids]


async def batch_messages_by_user(
    db: AsyncSession, ids: list[int]
) -> list[list[Message]]:
    result = await db.execute(
        select(Message)
        .where(Message.user_id.in_(set(ids)))
        .order_by(Message.created_at, Message.id)
    )
    grouped: dict[int, list[Message]] = defaultdict(list)
    for message in result.scalars().all():
        grouped[message.user_id].append(message)
    return [list(grouped.get(i, [])) for i in ids]


class Loaders:
    """The per-request loader set.

    Learn: all six loaders share one AsyncSession, which does not allow
    concurrent queries. Await one loader's load_many() before starting
    another's.
    """

    def __init__(self, db: AsyncSession):
        self.users: BatchLoader[int, Optional[User]] = BatchLoader(
            lambda ids: batch_users(db, ids)
        )
        self.conversations: BatchLoader[int, Optional[Conversation]] = BatchLoader(
            lambda ids: batch_conversations(db, ids)
        )
        self.participants_by_conversation: BatchLoader[int, list[User]] = BatchLoader(
            lambda ids: batch_participants_by_conversation(db, ids)
        )
        self.messages_by_conversation: BatchLoader[int, list[Message]] = BatchLoader(
            lambda ids: batch_messages_by_conversation(db, ids)
        )
        self.conversations_by_user: BatchLoader[int, list[Conversation]] = BatchLoader(
            lambda ids: batch_conversations_by_user(db, ids)
        )
        self.messages_by_user: BatchLoader[int, list[Message]] = BatchLoader(
            lambda ids: batch_messages_by_user(db, ids)
        )


def get_loaders(db: AsyncSession = Depends(get_db)) -> Loaders:
    """FastAPI dependency - a fresh loader set per request."""
    return Loaders(db)
