"""Shared test fixtures for the dicechat test suite.

The remote service is a FastAPI fake (tests/fake_server.py) reached through
httpx.ASGITransport, so every test exercises real HTTP requests and responses
without a network.

Polling never sleeps: ``scheduler`` is a ManualScheduler that records timers
and fires them only when a test calls ``run_next()``.

Fixtures
--------
config      Settings pointed at the fake service, read from no .env file.
service     A fresh FakeDiceService per test.
transport   ASGI transport wired to the service.
store       In-memory key-value store.
scheduler   ManualScheduler (simulated clock).
events      CallbackRecorder; ``events.callbacks`` is passed to the controller.
controller  SessionController built from all of the above.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import httpx
import pytest
from fake_server import FakeDiceService

from dicechat.config import Settings
from dicechat.session import SessionCallbacks, SessionController
from dicechat.storage import MemoryStore


@dataclass
class ManualTimer:
    delay: float
    callback: Callable[[], Awaitable[None]]
    cancelled: bool = False
    fired: bool = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Scheduler that only fires timers when the test says so."""

    def __init__(self) -> None:
        self.timers: list[ManualTimer] = []

    def call_later(self, delay: float, callback: Callable[[], Awaitable[None]]) -> ManualTimer:
        timer = ManualTimer(delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> list[ManualTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]

    async def run_next(self) -> ManualTimer:
        timer = self.pending[0]
        timer.fired = True
        await timer.callback()
        return timer


@dataclass
class CallbackRecorder:
    states: list[Any] = field(default_factory=list)
    auth_errors: list[Any] = field(default_factory=list)
    join_errors: list[Any] = field(default_factory=list)
    message_batches: list[list[Any]] = field(default_factory=list)
    dice_requests: list[Any] = field(default_factory=list)
    rolls: list[Any] = field(default_factory=list)

    @property
    def callbacks(self) -> SessionCallbacks:
        return SessionCallbacks(
            on_state_changed=self.states.append,
            on_auth_error=self.auth_errors.append,
            on_join_error=self.join_errors.append,
            on_messages_updated=self.message_batches.append,
            on_dice_request_recognized=self.dice_requests.append,
            on_roll_complete=self.rolls.append,
        )


@pytest.fixture
def config() -> Settings:
    return Settings(
        _env_file=None,
        api_endpoint="http://dice.test/",
        database_url="sqlite+aiosqlite:///:memory:",
    )


@pytest.fixture
def service() -> FakeDiceService:
    return FakeDiceService()


@pytest.fixture
def transport(service: FakeDiceService) -> httpx.ASGITransport:
    return httpx.ASGITransport(app=service.app)


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def events() -> CallbackRecorder:
    return CallbackRecorder()


@pytest.fixture
async def controller(config, store, events, scheduler, transport):
    session = SessionController(
        config,
        store=store,
        callbacks=events.callbacks,
        scheduler=scheduler,
        transport=transport,
    )
    yield session
    await session.aclose()
