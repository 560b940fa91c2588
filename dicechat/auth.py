"""Bearer-token authentication against the dice-chat service.

AuthSession owns the token: it is the only place the credential is set or
cleared. Other components read it through ``AuthSession.token`` when they
build requests.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx
from pydantic import ValidationError

from dicechat.api import ApiClient
from dicechat.config import Settings
from dicechat.errors import AuthError
from dicechat.schemas import AuthResponse
from dicechat.storage import KeyValueStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Credential:
    """An opaque bearer token. An empty token means logged out."""

    token: str = ""

    def __bool__(self) -> bool:
        return bool(self.token)


def _error_message(response: httpx.Response, fallback: str) -> str:
    """Return the service's ``{"error": ...}`` text, or fallback if there is none."""
    try:
        body = response.json()
    except ValueError:
        return fallback
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return fallback


class AuthSession:
    def __init__(self, api: ApiClient, store: KeyValueStore, config: Settings) -> None:
        self._api = api
        self._store = store
        self._config = config
        self._credential = Credential()
        self.user: dict[str, Any] = {}

    @property
    def credential(self) -> Credential:
        return self._credential

    @property
    def token(self) -> str:
        return self._credential.token

    def is_authenticated(self) -> bool:
        return bool(self._credential)

    async def login(self, username: str, password: str) -> Credential:
        """Exchange username/password for a token.

        Raises:
            AuthError: The service rejected the credentials.
            NetworkError: The service could not be reached.
        """
        return await self._authenticate("/api/auth/login", username, password, "Login failed")

    async def register(self, username: str, password: str) -> Credential:
        """Create an account and sign in with it. Same contract as login."""
        return await self._authenticate(
            "/api/auth/register", username, password, "Registration failed"
        )

    async def _authenticate(
        self, path: str, username: str, password: str, failure: str
    ) -> Credential:
        response = await self._api.post(
            path, json={"username": username, "password": password}, auth="none"
        )
        if not response.is_success:
            message = _error_message(response, failure)
            logger.info("%s for %r: %s", failure, username, message)
            raise AuthError(message)

        try:
            result = AuthResponse.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise AuthError(f"{failure}: malformed response from server") from exc

        self._credential = Credential(result.token)
        self.user = result.user
        logger.info("Authenticated as %r", username)
        return self._credential

    async def persist(self) -> None:
        """Save the current token under the configured key."""
        if self._credential:
            await self._store.set(self._config.token_key, self._credential.token)

    async def restore(self) -> bool:
        """Load a previously persisted token. Returns True if one was found."""
        token = await self._store.get(self._config.token_key)
        if token:
            self._credential = Credential(token)
            return True
        return False

    async def logout(self) -> None:
        """Forget the token in memory and in the store. Safe to call repeatedly."""
        self._credential = Credential()
        self.user = {}
        await self._store.delete(self._config.token_key)
