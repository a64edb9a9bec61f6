"""Per-user cache of tool-execution sessions."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Tuple

from ..constants import DEFAULT_SESSION_TTL_SECONDS
from ..contracts import utcnow
from .provider import ToolExecutionProvider, ToolSession

logger = logging.getLogger(__name__)


class SessionCache:
    """Caches one :class:`ToolSession` per user for ``ttl``.

    Expiry is checked on acquisition. The map is guarded by an
    ``asyncio.Lock``; sessions are built outside the lock, so two concurrent
    refreshes for one user both succeed and the last one written wins.
    """

    def __init__(
        self,
        provider: ToolExecutionProvider,
        ttl: timedelta = timedelta(seconds=DEFAULT_SESSION_TTL_SECONDS),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._provider = provider
        self._ttl = ttl
        self._clock = clock
        self._sessions: Dict[str, Tuple[ToolSession, datetime]] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def _fresh(self, acquired_at: datetime, now: datetime) -> bool:
        return now - acquired_at < self._ttl

    async def acquire(self, user_id: str) -> ToolSession:
        """Return a live session for ``user_id``, creating one if needed.

        Raises:
            ToolSessionUnavailable: Propagated from the provider.
        """
        now = self._clock()
        async with self._lock:
            cached = self._sessions.get(user_id)
        if cached is not None and self._fresh(cached[1], now):
            return cached[0]

        session = await self._provider.get_session(user_id)
        async with self._lock:
            self._sessions[user_id] = (session, self._clock())
        logger.debug(f"Tool session refreshed for user {user_id}")
        return session

    async def invalidate(self, user_id: str) -> None:
        async with self._lock:
            self._sessions.pop(user_id, None)

    async def cleanup(self) -> int:
        """Evict expired sessions and return how many were dropped."""
        now = self._clock()
        async with self._lock:
            expired = [
                user_id
                for user_id, (_, acquired_at) in self._sessions.items()
                if not self._fresh(acquired_at, now)
            ]
            for user_id in expired:
                del self._sessions[user_id]
        if expired:
            logger.info(f"Evicted {len(expired)} expired tool sessions")
        return len(expired)
