"""Polling loop that keeps the local view of a room's messages current.

There is no push channel: MessageSync fetches the latest page of messages,
hands it to a callback, waits ``poll_interval`` seconds, and repeats. The
next fetch is scheduled only after the previous one finishes, so a slow
server slows the loop down instead of piling up requests.

Timers go through a Scheduler so tests can substitute a manual clock.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from dicechat.config import Settings
from dicechat.errors import DiceChatError, SyncError
from dicechat.rooms import RoomClient
from dicechat.schemas import ChatMessage, MessagePage

logger = logging.getLogger(__name__)

MessagesCallback = Callable[[list[ChatMessage]], Any]


class TimerHandle(Protocol):
    def cancel(self) -> Any: ...


class Scheduler(Protocol):
    """Runs an async callback once after a delay."""

    def call_later(self, delay: float, callback: Callable[[], Awaitable[None]]) -> TimerHandle:
        """Schedule callback to run after delay seconds; return a cancellable handle."""
        ...


class AsyncioScheduler:
    """Scheduler backed by tasks on the running asyncio loop."""

    def __init__(self) -> None:
        # Strong references so pending tasks are not garbage collected.
        self._tasks: set[asyncio.Task[None]] = set()

    def call_later(
        self, delay: float, callback: Callable[[], Awaitable[None]]
    ) -> asyncio.Task[None]:
        async def _run() -> None:
            await asyncio.sleep(delay)
            await callback()

        task = asyncio.create_task(_run())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task


class MessageSync:
    """Periodic message fetcher for the joined room.

    Args:
        rooms: Room client used for each fetch.
        config: Settings providing interval, page size and offset.
        scheduler: Timer source; defaults to the asyncio loop.
    """

    def __init__(
        self,
        rooms: RoomClient,
        config: Settings,
        scheduler: Scheduler | None = None,
    ) -> None:
        self._rooms = rooms
        self._config = config
        self._scheduler = scheduler if scheduler is not None else AsyncioScheduler()
        self._is_polling = False
        self._pending: TimerHandle | None = None
        self._on_messages: MessagesCallback | None = None
        # Bumped on every start(), so a fetch still running from an earlier
        # start/stop cycle can tell that its results are stale.
        self._generation = 0

    @property
    def is_polling(self) -> bool:
        return self._is_polling

    async def fetch_messages(
        self, limit: int | None = None, offset: int | None = None
    ) -> MessagePage:
        """Fetch one page. A failed fetch is logged and returns an empty page."""
        try:
            return await self._fetch(limit, offset)
        except SyncError as exc:
            logger.warning("%s", exc)
            return MessagePage()

    async def _fetch(self, limit: int | None, offset: int | None) -> MessagePage:
        limit = self._config.message_limit if limit is None else limit
        offset = self._config.message_offset if offset is None else offset
        try:
            return await self._rooms.fetch_messages(limit, offset)
        except (DiceChatError, ValueError) as exc:
            raise SyncError(f"Message poll for room {self._rooms.room_id} failed: {exc}") from exc

    def start(self, on_messages: MessagesCallback) -> None:
        """Begin polling immediately. Does nothing if already polling."""
        if self._is_polling:
            return
        self._is_polling = True
        self._on_messages = on_messages
        self._generation += 1
        logger.debug("Polling room %s every %ss", self._rooms.room_id, self._config.poll_interval)
        self._schedule(0)

    def stop(self) -> None:
        """Stop polling and cancel the pending timer.

        A fetch already in progress is allowed to finish, but its result is
        discarded, so no callback runs after stop() returns.
        """
        self._is_polling = False
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

    async def refresh(self) -> None:
        """Fetch and deliver once, outside the timer. No-op unless polling."""
        if not self._is_polling:
            return
        generation = self._generation
        try:
            page = await self._fetch(None, None)
        except SyncError as exc:
            logger.warning("%s", exc)
            return
        if self._is_current(generation):
            await self._deliver(page.messages)

    def _schedule(self, delay: float) -> None:
        generation = self._generation
        self._pending = self._scheduler.call_later(delay, lambda: self._tick(generation))

    def _is_current(self, generation: int) -> bool:
        return self._is_polling and generation == self._generation

    async def _tick(self, generation: int) -> None:
        if not self._is_current(generation):
            return
        # This timer has fired; stop() must not cancel the running fetch.
        self._pending = None

        try:
            page: MessagePage | None = await self._fetch(None, None)
        except SyncError as exc:
            logger.warning("%s", exc)
            page = None
        except Exception:
            logger.exception("Unexpected error polling room %s", self._rooms.room_id)
            page = None

        if not self._is_current(generation):
            return
        if page is not None:
            await self._deliver(page.messages)
        if self._is_current(generation):
            self._schedule(self._config.poll_interval)

    async def _deliver(self, messages: list[ChatMessage]) -> None:
        if self._on_messages is None:
            return
        try:
            result = self._on_messages(messages)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Message callback failed for room %s", self._rooms.room_id)
