"""Session lifecycle: login, join, chat, roll, disconnect, logout.

SessionController wires AuthSession, RoomClient and MessageSync together and
is the only object a host UI needs. State moves through:

    unauthenticated --login/register--> authenticated --join--> joined
    joined --disconnect--> authenticated
    any --logout--> unauthenticated

A rejected bearer token while joining (or a 401 from a joined session) is a
forced logout: the credential is dropped, polling stops, and the host is told
why through a callback instead of receiving an exception.

The host subscribes through SessionCallbacks. Callbacks may be plain
functions or coroutines; an exception raised by one is logged and does not
affect the session.
"""

from __future__ import annotations

import enum
import inspect
import logging
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass
from typing import Any

import httpx

from dicechat import protocol
from dicechat.api import ApiClient
from dicechat.auth import AuthSession, Credential
from dicechat.config import Settings, settings
from dicechat.dice import DiceSelection, parse
from dicechat.errors import AuthError, JoinError, RequestError
from dicechat.rooms import Identity, RoomClient
from dicechat.schemas import ChatMessage, DiceRequest, DiceRollRequest, DiceRollResult, UserRole
from dicechat.storage import KeyValueStore, MemoryStore, SqlStore
from dicechat.sync import MessageSync, Scheduler

logger = logging.getLogger(__name__)

FORCED_LOGOUT_REASON = "Authentication expired. Server may have been restarted. Logging out..."
SESSION_EXPIRED_REASON = "Session expired. Please login again."


class SessionState(str, enum.Enum):
    unauthenticated = "unauthenticated"
    authenticated = "authenticated"  # logged in, not in a room
    joined = "joined"


@dataclass
class SessionCallbacks:
    """Host hooks. Any of them may be left as None."""

    on_state_changed: Callable[[SessionState], Any] | None = None
    on_auth_error: Callable[[AuthError], Any] | None = None
    on_join_error: Callable[[JoinError], Any] | None = None
    on_messages_updated: Callable[[list[ChatMessage]], Any] | None = None
    on_dice_request_recognized: Callable[[DiceRequest], Any] | None = None
    on_roll_complete: Callable[[DiceRollResult], Any] | None = None


def _message_key(message: ChatMessage) -> Hashable:
    if message.id is not None:
        return message.id
    return (message.username, message.timestamp, message.content)


class SessionController:
    """Composition root for one dice-chat session.

    Args:
        config: Settings for every component. Defaults to the module-level
            settings read from the environment.
        store: Where the bearer token is persisted. Defaults to memory only;
            use :meth:`open` for the on-disk store.
        callbacks: Host hooks.
        scheduler: Timer source for message polling.
        transport: httpx transport override (tests use an ASGI transport).
    """

    def __init__(
        self,
        config: Settings | None = None,
        *,
        store: KeyValueStore | None = None,
        callbacks: SessionCallbacks | None = None,
        scheduler: Scheduler | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config if config is not None else settings
        self._callbacks = callbacks if callbacks is not None else SessionCallbacks()
        self._api = ApiClient(self._config, lambda: self.auth.token, transport=transport)
        self.auth = AuthSession(
            self._api, store if store is not None else MemoryStore(), self._config
        )
        self.rooms = RoomClient(self._api, self._config)
        self.sync = MessageSync(self.rooms, self._config, scheduler)
        self._state = SessionState.unauthenticated
        self._seen: set[Hashable] = set()
        self._primed = False
        self._owned_store: SqlStore | None = None

    @classmethod
    async def open(
        cls, config: Settings | None = None, **kwargs: Any
    ) -> SessionController:
        """Build a controller backed by the on-disk store and restore any saved login."""
        config = config if config is not None else settings
        store = await SqlStore.create(config.database_url)
        controller = cls(config, store=store, **kwargs)
        controller._owned_store = store
        await controller.startup()
        return controller

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def room_id(self) -> str:
        return self.rooms.room_id

    @property
    def identity(self) -> Identity | None:
        return self.rooms.identity

    @property
    def is_polling(self) -> bool:
        return self.sync.is_polling

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    async def startup(self) -> SessionState:
        """Resume a persisted login, if any."""
        if await self.auth.restore():
            await self._transition(SessionState.authenticated)
        return self._state

    async def login(self, username: str, password: str) -> Credential:
        return await self._authenticate(self.auth.login, username, password)

    async def register(self, username: str, password: str) -> Credential:
        return await self._authenticate(self.auth.register, username, password)

    async def _authenticate(
        self,
        method: Callable[[str, str], Awaitable[Credential]],
        username: str,
        password: str,
    ) -> Credential:
        if not username.strip() or not password.strip():
            error = AuthError("Please enter both username and password")
            await self._notify(self._callbacks.on_auth_error, error)
            raise error

        if self._state is SessionState.joined:
            await self.disconnect()
        try:
            credential = await method(username, password)
        except AuthError as exc:
            await self._notify(self._callbacks.on_auth_error, exc)
            raise
        await self.auth.persist()
        await self._transition(SessionState.authenticated)
        return credential

    async def logout(self) -> None:
        """Stop syncing, drop the credential everywhere, return to unauthenticated."""
        self._leave_room()
        await self.auth.logout()
        await self._transition(SessionState.unauthenticated)

    async def _force_logout(self, reason: str) -> None:
        logger.warning("Forced logout: %s", reason)
        await self.logout()

    # ------------------------------------------------------------------
    # Room membership
    # ------------------------------------------------------------------

    async def join(
        self, username: str, role: UserRole | str, room_id: str | None = None
    ) -> bool:
        """Join a room and start polling it.

        A DM who gives no room id gets a generated one (see ``room_id``).

        Returns:
            True when joined. False when the service rejected our token; the
            session has then been logged out and on_join_error was called with
            a JoinError whose ``invalid_token`` is set.

        Raises:
            AuthError: Not logged in. Nothing is sent.
            JoinError: The service is unreachable or refused the join.
            NetworkError: The join call itself could not be delivered.
            ValueError: Blank username or unsupported role.
        """
        if not self.auth.is_authenticated():
            raise AuthError("Log in before joining a room")
        if self._state is SessionState.joined:
            raise RuntimeError("Already joined; disconnect first")

        self.rooms.set_identity(username, role)
        self.rooms.resolve_room_id(room_id)

        try:
            if not await self.rooms.check_health():
                raise JoinError("Cannot connect to dice API server. Check your endpoint settings.")
            await self.rooms.join()
        except JoinError as exc:
            if exc.invalid_token:
                await self._force_logout(FORCED_LOGOUT_REASON)
                await self._notify(
                    self._callbacks.on_join_error,
                    JoinError(
                        FORCED_LOGOUT_REASON,
                        status_code=exc.status_code,
                        body=exc.body,
                        invalid_token=True,
                    ),
                )
                return False
            await self._notify(self._callbacks.on_join_error, exc)
            raise

        self._seen.clear()
        self._primed = False
        await self._transition(SessionState.joined)
        self.sync.start(self._handle_messages)
        return True

    async def disconnect(self) -> None:
        """Leave the room but stay logged in."""
        self._leave_room()
        if self._state is SessionState.joined:
            await self._transition(SessionState.authenticated)

    def _leave_room(self) -> None:
        self.sync.stop()
        self.rooms.leave()

    # ------------------------------------------------------------------
    # Chat and dice
    # ------------------------------------------------------------------

    async def send_message(self, text: str) -> ChatMessage | None:
        """Post a chat message. Blank text is ignored and returns None."""
        text = text.strip()
        if not text:
            return None
        self._require_joined()
        message = await self._guarded(self.rooms.send_message(text))
        await self.sync.refresh()
        return message

    async def request_roll(
        self, selection: DiceSelection, description: str | None = None
    ) -> ChatMessage:
        """DM only: post a roll request players can pick up.

        A missing or blank description is replaced with a default one.
        """
        identity = self._require_dm("request rolls")
        expression = self._require_expression(selection)
        if description is None or not description.strip():
            description = f"Roll {expression} for the game"
        logger.debug("%s requests %s", identity.username, expression)
        message = await self._guarded(self.rooms.send_dice_request(expression, description))
        await self.sync.refresh()
        return message

    async def roll(self, selection: DiceSelection) -> DiceRollResult:
        """DM only: roll on the server and post the result to the room."""
        identity = self._require_dm("roll in chat")
        expression = self._require_expression(selection)
        result = await self._guarded(
            self.rooms.roll_dice(
                DiceRollRequest(expression=expression, description=f"Dice roll by {identity.username}")
            )
        )
        await self._guarded(self.rooms.send_dice_result(result))
        await self.sync.refresh()
        await self._notify(self._callbacks.on_roll_complete, result)
        return result

    async def share_local_roll(
        self, outcome: int | str, selection: DiceSelection
    ) -> DiceRollResult | None:
        """Post a roll made on this client (e.g. by the 3D tray) to the room.

        Returns None without sending anything when not joined.
        """
        if self._state is not SessionState.joined:
            return None
        result = protocol.result_from_local_roll(outcome, selection)
        await self._guarded(self.rooms.send_dice_result(result))
        await self.sync.refresh()
        await self._notify(self._callbacks.on_roll_complete, result)
        return result

    def dice_request_for(self, message: ChatMessage) -> DiceRequest | None:
        """Return the roll request in message if we are a player it is meant for."""
        identity = self.rooms.identity
        if identity is None or identity.role is not UserRole.player:
            return None
        request = protocol.try_parse_request(message.content)
        if request is None or request.requester == identity.username:
            return None
        return request

    @staticmethod
    def selection_for(request: DiceRequest) -> DiceSelection:
        """Dice tray contents that answer a roll request."""
        return parse(request.expression)

    async def _handle_messages(self, messages: list[ChatMessage]) -> None:
        await self._notify(self._callbacks.on_messages_updated, messages)

        # The first page after joining is history: remember it, don't announce it.
        announce = self._primed
        self._primed = True
        previous = self._seen
        # Each page is the whole window, so only its keys need remembering.
        self._seen = set()
        for message in messages:
            key = _message_key(message)
            is_new = key not in previous and key not in self._seen
            self._seen.add(key)
            if not (announce and is_new):
                continue
            request = self.dice_request_for(message)
            if request is not None:
                await self._notify(self._callbacks.on_dice_request_recognized, request)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_joined(self) -> Identity:
        identity = self.rooms.identity
        if self._state is not SessionState.joined or identity is None:
            raise RuntimeError("Join a room first")
        return identity

    def _require_dm(self, action: str) -> Identity:
        identity = self._require_joined()
        if identity.role is not UserRole.dm:
            raise PermissionError(f"Only the DM can {action}")
        return identity

    @staticmethod
    def _require_expression(selection: DiceSelection) -> str:
        expression = selection.expression
        if not expression:
            raise ValueError("Please select dice first")
        return expression

    async def _guarded(self, call: Awaitable[Any]) -> Any:
        """Await a joined-session call, turning a 401 into a forced logout."""
        try:
            return await call
        except RequestError as exc:
            if exc.status_code == 401:
                await self._force_logout(SESSION_EXPIRED_REASON)
                await self._notify(self._callbacks.on_auth_error, AuthError(SESSION_EXPIRED_REASON))
            raise

    async def _transition(self, state: SessionState) -> None:
        if state is self._state:
            return
        logger.info("Session %s -> %s", self._state.value, state.value)
        self._state = state
        await self._notify(self._callbacks.on_state_changed, state)

    async def _notify(self, callback: Callable[..., Any] | None, *args: Any) -> None:
        if callback is None:
            return
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Session callback %s failed", getattr(callback, "__name__", callback))

    async def aclose(self) -> None:
        """Stop polling and release network and storage resources."""
        self._leave_room()
        await self._api.aclose()
        if self._owned_store is not None:
            await self._owned_store.dispose()
            self._owned_store = None
