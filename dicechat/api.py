"""HTTP access to the dice-chat service."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Literal

import httpx

from dicechat.config import Settings
from dicechat.errors import AuthError, NetworkError

logger = logging.getLogger(__name__)

# "required": refuse to send without a credential.
# "optional": attach the credential if there is one.
# "none":     never attach it (login, register).
AuthMode = Literal["required", "optional", "none"]


class ApiClient:
    """Async wrapper around httpx for the dice-chat REST API.

    The underlying client is created lazily, on first request, so building a
    session never opens a connection. The bearer token is read from
    ``token_source`` on every request rather than cached here.

    Args:
        config: Settings providing the endpoint and timeout.
        token_source: Returns the current bearer token, or "" when logged out.
        transport: Optional httpx transport; tests pass an ASGITransport.
    """

    def __init__(
        self,
        config: Settings,
        token_source: Callable[[], str],
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._token_source = token_source
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def base_url(self) -> str:
        return self._config.api_endpoint.rstrip("/")

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self._config.request_timeout,
                transport=self._transport,
                headers={"Content-Type": "application/json"},
            )
        return self._client

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
        auth: AuthMode = "required",
    ) -> httpx.Response:
        """Send one request and return the raw response, whatever its status.

        Raises:
            AuthError: ``auth="required"`` and there is no credential. Nothing
                is sent in that case.
            NetworkError: The request never got a response.
        """
        token = self._token_source()
        if auth == "required" and not token:
            raise AuthError(f"Not authenticated: refusing {method} {path}")

        headers: dict[str, str] = {}
        if token and auth != "none":
            headers["Authorization"] = f"Bearer {token}"

        try:
            response = await self._get_client().request(
                method, path, json=json, params=params, headers=headers
            )
        except httpx.RequestError as exc:
            raise NetworkError(f"{method} {path} failed: {exc}") from exc

        logger.debug("%s %s -> %d", method, path, response.status_code)
        return response

    async def get(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", path, **kwargs)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
