"""Room identity, the join handshake, and room-scoped service calls."""

from __future__ import annotations

import logging
import random
import string
from dataclasses import dataclass
from urllib.parse import quote

import httpx

from dicechat import protocol
from dicechat.api import ApiClient
from dicechat.config import Settings
from dicechat.errors import INVALID_TOKEN_MARKER, JoinError, NetworkError, RequestError
from dicechat.schemas import ChatMessage, DiceRollRequest, DiceRollResult, MessagePage, UserRole

logger = logging.getLogger(__name__)

ROOM_ID_ALPHABET = string.ascii_uppercase + string.digits
ROOM_ID_LENGTH = 8


def generate_room_id() -> str:
    """Return a random 8-character room id such as "K3Q9ZD0A".

    Uniqueness is not checked here; the service rejects or merges collisions.
    """
    return "".join(random.choice(ROOM_ID_ALPHABET) for _ in range(ROOM_ID_LENGTH))


@dataclass(frozen=True)
class Identity:
    """Who we are in the room. Fixed from join until disconnect."""

    username: str
    role: UserRole

    def __post_init__(self) -> None:
        if not self.username.strip():
            raise ValueError("Username must not be blank")
        if self.role not in (UserRole.dm, UserRole.player):
            raise ValueError(f"Cannot join as {self.role.value!r}")


def _raise_for_status(response: httpx.Response, what: str) -> None:
    if not response.is_success:
        raise RequestError(
            f"{what}: {response.reason_phrase}",
            status_code=response.status_code,
            body=response.text,
        )


class RoomClient:
    """Joins one chat room and talks to it on behalf of one identity.

    Args:
        api: Transport used for every call; it attaches the bearer token.
        config: Settings providing the default room id.
    """

    def __init__(self, api: ApiClient, config: Settings) -> None:
        self._api = api
        self._config = config
        self._room_id = config.default_room_id
        self._identity: Identity | None = None
        self._joined = False

    @property
    def room_id(self) -> str:
        return self._room_id

    @property
    def identity(self) -> Identity | None:
        return self._identity

    @property
    def joined(self) -> bool:
        return self._joined

    def set_identity(self, username: str, role: UserRole | str) -> Identity:
        self._check_not_joined("identity")
        self._identity = Identity(username.strip(), UserRole(role))
        return self._identity

    def set_room_id(self, room_id: str | None) -> str:
        """Use room_id, or the default room when it is blank."""
        self._check_not_joined("room")
        self._room_id = (room_id or "").strip() or self._config.default_room_id
        return self._room_id

    def generate_room_id(self) -> str:
        return generate_room_id()

    def resolve_room_id(self, room_id: str | None) -> str:
        """Pick the room to join for the current identity.

        A DM who leaves the id blank gets a freshly generated room; anyone
        else with a blank id goes to the default room.
        """
        identity = self._require_identity()
        if identity.role is UserRole.dm and not (room_id or "").strip():
            return self.set_room_id(self.generate_room_id())
        return self.set_room_id(room_id)

    def leave(self) -> None:
        """Forget the joined flag so identity and room can change again."""
        self._joined = False

    def _check_not_joined(self, what: str) -> None:
        if self._joined:
            raise RuntimeError(f"Cannot change {what} while joined; disconnect first")

    def _require_identity(self) -> Identity:
        if self._identity is None:
            raise RuntimeError("Identity must be set before using the room")
        return self._identity

    @property
    def _room_path(self) -> str:
        return f"/api/chat/rooms/{quote(self._room_id, safe='')}"

    # ------------------------------------------------------------------
    # Join handshake
    # ------------------------------------------------------------------

    async def join(self) -> None:
        """Join the room, creating it first when we are the DM.

        Raises:
            JoinError: The join call failed. ``invalid_token`` is set when the
                service rejected our credential.
            AuthError: No credential is present; nothing was sent.
            NetworkError: The join call could not reach the service.
        """
        identity = self._require_identity()
        if identity.role is UserRole.dm:
            await self._create_room()

        response = await self._api.post(
            f"{self._room_path}/join",
            json={"username": identity.username, "user_role": identity.role.value},
        )
        if not response.is_success:
            body = response.text
            raise JoinError(
                f"Failed to join room: {response.reason_phrase} - {body or 'Unknown error'}",
                status_code=response.status_code,
                body=body,
                invalid_token=INVALID_TOKEN_MARKER in body,
            )

        self._joined = True
        logger.info("Joined room %s as %s (%s)", self._room_id, identity.username, identity.role.value)

    async def _create_room(self) -> None:
        """Create the room; "already exists" and most failures are not fatal.

        Only a rejected token stops the handshake. Anything else is logged and
        the join is attempted, since the room may exist anyway.
        """
        try:
            response = await self._api.post("/api/chat/rooms", json={"room_id": self._room_id})
        except NetworkError as exc:
            logger.warning("Could not create room %s, joining anyway: %s", self._room_id, exc)
            return

        if response.is_success or response.status_code == 409:
            return

        body = response.text
        if INVALID_TOKEN_MARKER in body:
            raise JoinError(
                "Authentication token is invalid. Please log out and log in again.",
                status_code=response.status_code,
                body=body,
                invalid_token=True,
            )
        logger.warning(
            "Room creation for %s failed (%d), joining anyway: %s",
            self._room_id,
            response.status_code,
            body,
        )

    # ------------------------------------------------------------------
    # Room-scoped calls
    # ------------------------------------------------------------------

    async def check_health(self) -> bool:
        """Return True when the dice service reports itself healthy."""
        try:
            response = await self._api.get("/api/dice/health", auth="optional")
        except NetworkError as exc:
            logger.warning("Health check failed: %s", exc)
            return False

        if not response.is_success:
            logger.warning("Health check returned %d", response.status_code)
            return False
        try:
            return response.json().get("status") == "healthy"
        except (ValueError, AttributeError):
            return False

    async def send_message(self, content: str) -> ChatMessage:
        identity = self._require_identity()
        response = await self._api.post(
            f"{self._room_path}/messages",
            json={
                "content": content,
                "username": identity.username,
                "user_role": identity.role.value,
            },
        )
        _raise_for_status(response, "Failed to send message")
        return ChatMessage.model_validate(response.json())

    async def fetch_messages(self, limit: int, offset: int = 0) -> MessagePage:
        response = await self._api.get(
            f"{self._room_path}/messages", params={"limit": limit, "offset": offset}
        )
        _raise_for_status(response, "Failed to get messages")
        return MessagePage.model_validate(response.json())

    async def roll_dice(self, request: DiceRollRequest) -> DiceRollResult:
        """Ask the service to roll; the service owns randomness and the breakdown."""
        response = await self._api.post("/api/dice/roll", json=request.model_dump(exclude_none=True))
        _raise_for_status(response, "Failed to roll dice")
        return DiceRollResult.model_validate(response.json())

    async def send_dice_request(self, expression: str, description: str) -> ChatMessage:
        identity = self._require_identity()
        return await self.send_message(
            protocol.build_request(identity.username, expression, description)
        )

    async def send_dice_result(self, result: DiceRollResult) -> ChatMessage:
        return await self.send_message(protocol.build_result(result))
