"""Background task that runs the settlement sweep on a fixed interval."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from .services.settlement_service import SettlementResult, run_settlement_sweep

if TYPE_CHECKING:
    from psycopg import AsyncConnection
else:
    AsyncConnection = Any

logger = logging.getLogger(__name__)

ConnectionFactory = Callable[[], AbstractAsyncContextManager[AsyncConnection]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SettlementSweeper:
    """
    Owns the sweep schedule: optionally once at start, then every `interval`.

    Each run borrows its own connection from `connection_factory` (normally
    `pool.connection`), so sweeps never share a connection with request
    handlers. A failed run is logged and the loop keeps going.
    """

    def __init__(
        self,
        connection_factory: ConnectionFactory,
        *,
        interval: timedelta = timedelta(minutes=60),
        run_on_start: bool = True,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if interval <= timedelta(0):
            raise ValueError("interval must be positive")

        self._connection_factory = connection_factory
        self.interval = interval
        self.run_on_start = run_on_start
        self._clock = clock
        self._task: asyncio.Task[None] | None = None
        self._lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> list[SettlementResult]:
        """Run one sweep now. Overlapping calls on this sweeper are serialized."""
        async with self._lock:
            now = self._clock()
            async with self._connection_factory() as connection:
                return await run_settlement_sweep(connection, now)

    async def _run_safely(self) -> None:
        try:
            results = await self.run_once()
        except Exception:
            logger.exception("Settlement sweep failed; retrying on the next interval")
            return

        if results:
            logger.info("Processed %d expired goals", len(results))

    async def _loop(self) -> None:
        if self.run_on_start:
            await self._run_safely()

        while True:
            await asyncio.sleep(self.interval.total_seconds())
            await self._run_safely()

    def start(self) -> None:
        if self.running:
            return

        logger.info("Starting settlement sweeper (interval=%s)", self.interval)
        self._task = asyncio.create_task(self._loop(), name="settlement-sweeper")

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Settlement sweeper stopped")
