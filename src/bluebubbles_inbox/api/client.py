"""BlueBubbles REST API client, limited to what the conversation list needs."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from .models import ApiResponse, Chat, ServerInfo

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"
CHAT_INCLUDES = ("participants", "lastmessage")

M = TypeVar("M", bound=BaseModel)


class BlueBubblesError(Exception):
    """Base exception for BlueBubbles API errors."""

    def __init__(self, message: str, status: int = 0, error_type: str | None = None):
        super().__init__(message)
        self.status = status
        self.error_type = error_type


class ConnectionError(BlueBubblesError):
    """The server could not be reached or did not answer in time."""


class AuthenticationError(BlueBubblesError):
    """The server rejected the password."""


class BlueBubblesClient:
    """
    Async client for the read side of the BlueBubbles REST API.

    Use as an async context manager, or call `connect()` / `close()`.
    Every request carries the server password as a query parameter.
    """

    def __init__(self, server_url: str, password: str, timeout: float = 30.0):
        self.server_url = server_url.rstrip("/")
        self.password = password
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> BlueBubblesClient:
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def connect(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        """Open the HTTP session. ``transport`` replaces the network, e.g. in tests."""
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            base_url=f"{self.server_url}{API_PREFIX}",
            params={"password": self.password},
            timeout=httpx.Timeout(self.timeout, connect=10.0),
            follow_redirects=True,
            http2=True,
            transport=transport,
        )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise BlueBubblesError("Client not connected. Call connect() first.")
        return self._client

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        json_data: dict[str, Any] | None = None,
    ) -> ApiResponse:
        query = {k: v for k, v in (params or {}).items() if v is not None}
        logger.debug("%s %s", method, endpoint)

        try:
            response = await self.client.request(
                method, f"/{endpoint.lstrip('/')}", params=query, json=json_data
            )
        except httpx.TimeoutException as e:
            raise ConnectionError(f"Request timed out: {e}") from e
        except httpx.TransportError as e:
            raise ConnectionError(f"Failed to connect to server: {e}") from e

        if response.status_code == 401:
            raise AuthenticationError("Invalid password", status=401)
        if response.status_code >= 400:
            raise BlueBubblesError(
                f"HTTP {response.status_code}: {response.text[:200]}",
                status=response.status_code,
            )

        try:
            api_response = ApiResponse(**response.json())
        except (ValueError, TypeError, ValidationError) as e:
            raise BlueBubblesError(
                f"Unexpected response from {endpoint} (status={response.status_code}): "
                f"{response.text[:200]}"
            ) from e

        # Older servers report auth failures in the body with HTTP 200
        if api_response.status == 401:
            raise AuthenticationError("Invalid password", status=401)
        if not api_response.is_success:
            error = api_response.error or {}
            raise BlueBubblesError(
                error.get("error", api_response.message),
                status=api_response.status,
                error_type=error.get("type"),
            )
        return api_response

    # Server

    async def ping(self) -> bool:
        """Check that the server answers. Authentication failures still raise."""
        try:
            response = await self._request("GET", "ping")
        except ConnectionError:
            return False
        return response.is_success

    async def get_server_info(self) -> ServerInfo:
        response = await self._request("GET", "server/info")
        return _parse(ServerInfo, response.data)

    # Chats

    async def get_chats(
        self,
        limit: int = 25,
        offset: int = 0,
        with_participants: bool = True,
        with_last_message: bool = True,
        sort: str = "lastmessage",
    ) -> list[Chat]:
        """
        Query one page of chats, newest activity first.

        Args:
            limit: Maximum number of chats to return
            offset: Number of chats to skip
            with_participants: Include participant handles
            with_last_message: Include the last message of each chat
            sort: Server sort order
        """
        includes = [
            name
            for name, wanted in zip(CHAT_INCLUDES, (with_participants, with_last_message))
            if wanted
        ]
        body: dict[str, Any] = {"limit": limit, "offset": offset, "sort": sort}
        if includes:
            body["with"] = includes

        response = await self._request("POST", "chat/query", json_data=body)
        return [_parse(Chat, chat) for chat in response.data or []]

    async def iter_chat_pages(self, page_size: int) -> AsyncIterator[list[Chat]]:
        """Yield pages of chats until the server runs out."""
        offset = 0
        while True:
            chats = await self.get_chats(limit=page_size, offset=offset)
            if not chats:
                return
            yield chats
            if len(chats) < page_size:
                return
            offset += len(chats)

    async def get_chat(self, chat_guid: str) -> Chat:
        """Get one chat with its participants and last message."""
        response = await self._request(
            "GET", f"chat/{chat_guid}", params={"with": ",".join(CHAT_INCLUDES)}
        )
        return _parse(Chat, response.data)

    async def get_chat_count(self) -> int:
        response = await self._request("GET", "chat/count")
        data = response.data or {}
        return int(data.get("total", 0))


def _parse(model: type[M], data: Any) -> M:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise BlueBubblesError(
            f"Malformed {model.__name__} from server: {e.error_count()} errors"
        ) from e


async def check_connection(server_url: str, password: str) -> tuple[bool, str]:
    """
    Try the server credentials.

    Returns:
        Tuple of (success, message)
    """
    try:
        async with BlueBubblesClient(server_url, password) as client:
            if not await client.ping():
                return False, "Server ping failed"
            info = await client.get_server_info()
    except AuthenticationError:
        return False, "Invalid password"
    except BlueBubblesError as e:
        return False, str(e)
    return True, f"Connected to BlueBubbles {info.server_version}"
