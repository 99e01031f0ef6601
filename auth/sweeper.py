"""
Periodic expiry sweep for stored refresh and reset tokens.

Lookups already ignore expired rows, so the sweep only reclaims space.
A failed cycle is logged and retried on the next tick; cancelling the task
between cycles is always safe.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.token_store import TokenStore

logger = logging.getLogger(__name__)


class TokenSweeper:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        interval_seconds: float = 3600,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._session_factory = session_factory
        self.interval_seconds = interval_seconds
        self._clock = clock
        self._task: Optional[asyncio.Task] = None

    async def sweep_once(self) -> int:
        """Run one sweep in its own session and commit it."""
        async with self._session_factory() as session:
            removed = await TokenStore(session).sweep_expired(self._clock())
            await session.commit()
        return removed

    async def _run(self) -> None:
        while True:
            try:
                await self.sweep_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Token sweep failed; retrying in %ss", self.interval_seconds)
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="token-sweeper")
            logger.info("Token sweeper started (every %ss)", self.interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Token sweeper stopped")
