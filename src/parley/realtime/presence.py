"""Presence tracker - who is online, broadcast as snapshots.

Learn: presence is a plain dict of user id -> last seen time, kept in this
process only. Every change publishes the whole online list to the
onlineUsersUpdated topic instead of a diff, so a client that subscribes
late needs just one message to catch up.

Users who vanish without calling set_offline (closed laptop, lost network)
are evicted by a background cleanup that runs every
`cleanup_interval` seconds and drops entries older than `max_age_minutes`.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import structlog

from parley.realtime.registry import LiveFeedRegistry
from parley.realtime.topics import ONLINE_USERS_UPDATED

logger = structlog.get_logger()

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PresenceEntry:
    user_id: int
    last_seen: datetime

    def to_wire(self) -> dict:
        return {"userId": self.user_id, "lastSeen": self.last_seen.isoformat()}


class PresenceTracker:
    def __init__(
        self,
        feed: LiveFeedRegistry,
        *,
        clock: Clock = _utcnow,
        cleanup_interval: float = 600.0,
        max_age_minutes: int = 30,
    ):
        self.feed = feed
        self.clock = clock
        self.cleanup_interval = cleanup_interval
        self.max_age_minutes = max_age_minutes
        self._entries: dict[int, PresenceEntry] = {}
        self._task: Optional[asyncio.Task] = None

    # ─── State changes ──────────────────────────────────

    def set_online(self, user_id: int) -> PresenceEntry:
        """Mark a user online, or refresh their last-seen time."""
        entry = PresenceEntry(user_id=user_id, last_seen=self.clock())
        self._entries[user_id] = entry
        self.publish_snapshot()
        return entry

    def set_offline(self, user_id: int) -> None:
        self._entries.pop(user_id, None)
        self.publish_snapshot()

    def cleanup_stale_connections(self, max_age_minutes: Optional[int] = None) -> int:
        """Evict entries not seen within the window. Returns how many went."""
        if max_age_minutes is None:
            max_age_minutes = self.max_age_minutes
        cutoff = self.clock() - timedelta(minutes=max_age_minutes)
        stale = [uid for uid, e in self._entries.items() if e.last_seen < cutoff]
        for user_id in stale:
            del self._entries[user_id]

        if stale:
            logger.info("presence.evicted", users=stale, max_age_minutes=max_age_minutes)
            self.publish_snapshot()
        return len(stale)

    def publish_snapshot(self) -> int:
        payload = {
            ONLINE_USERS_UPDATED: {
                "online": [entry.to_wire() for entry in self.get_online_users()]
            }
        }
        return self.feed.publish(ONLINE_USERS_UPDATED, payload)

    # ─── Queries ────────────────────────────────────────

    def get_online_users(self) -> list[PresenceEntry]:
        return [self._entries[uid] for uid in sorted(self._entries)]

    def is_user_online(self, user_id: int) -> bool:
        return user_id in self._entries

    # ─── Background cleanup ─────────────────────────────

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._cleanup_loop())
        logger.info(
            "presence.cleanup_started",
            interval=self.cleanup_interval,
            max_age_minutes=self.max_age_minutes,
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            try:
                self.cleanup_stale_connections()
            except Exception:
                logger.exception("presence.cleanup_failed")
