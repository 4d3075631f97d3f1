"""BlueBubbles Socket.IO client for real-time updates."""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable

import socketio
from pydantic import ValidationError

from ..conversations.events import (
    ChatReadStatusChanged,
    MessageUpdated,
    NewMessage,
    PushEvent,
    TypingIndicator,
)
from .models import Message

logger = logging.getLogger(__name__)

MessageSink = Callable[[Message], "Awaitable[None] | None"]


class BlueBubblesSocket:
    """
    Socket.IO client that turns server events into push events.

    Messages carried by ``new-message`` and ``updated-message`` are handed
    to the message sink first (so the store has them), then the matching
    push event is emitted.
    """

    def __init__(self, server_url: str, password: str) -> None:
        self.server_url = server_url.rstrip("/")
        self.password = password
        self._sio: socketio.AsyncClient | None = None
        self._connected = False

        self._on_event: Callable[[PushEvent], None] | None = None
        self._on_message: MessageSink | None = None
        self._on_connected: Callable[[], None] | None = None
        self._on_disconnected: Callable[[], None] | None = None

    @property
    def is_connected(self) -> bool:
        return self._connected

    def on_event(self, callback: Callable[[PushEvent], None]) -> None:
        """Register callback for translated push events."""
        self._on_event = callback

    def on_message(self, callback: MessageSink) -> None:
        """Register callback that persists incoming messages. May be async."""
        self._on_message = callback

    def on_connected(self, callback: Callable[[], None]) -> None:
        """Register callback for connection established."""
        self._on_connected = callback

    def on_disconnected(self, callback: Callable[[], None]) -> None:
        """Register callback for disconnection."""
        self._on_disconnected = callback

    def _create_client(self) -> socketio.AsyncClient:
        """Create a new Socket.IO client with event handlers."""
        sio = socketio.AsyncClient(
            reconnection=True,
            reconnection_attempts=0,  # Infinite retries
            reconnection_delay=1,
            reconnection_delay_max=30,
            logger=False,
            engineio_logger=False,
        )

        @sio.event
        async def connect() -> None:
            self._connected = True
            logger.info("Socket.IO connected")
            if self._on_connected:
                self._on_connected()

        @sio.event
        async def disconnect() -> None:
            self._connected = False
            logger.info("Socket.IO disconnected")
            if self._on_disconnected:
                self._on_disconnected()

        @sio.event
        async def connect_error(data: Any) -> None:
            logger.warning("Socket.IO connection error: %s", data)

        @sio.on("new-message")
        async def on_new_message(data: dict[str, Any]) -> None:
            await self._handle_new_message(data)

        @sio.on("updated-message")
        async def on_updated_message(data: dict[str, Any]) -> None:
            await self._handle_updated_message(data)

        @sio.on("chat-read-status-changed")
        async def on_chat_read(data: dict[str, Any]) -> None:
            self._handle_chat_read(data)

        @sio.on("typing-indicator")
        async def on_typing_indicator(data: dict[str, Any]) -> None:
            self._handle_typing(data)

        @sio.on("*")
        async def catch_all(event: str, data: Any) -> None:
            logger.debug("Ignoring Socket.IO event %s", event)

        return sio

    async def connect(self) -> None:
        """Connect to the BlueBubbles server."""
        if self._sio is not None and self._connected:
            return

        # Servers differ in where they expect the password
        connection_attempts = [
            (f"{self.server_url}?guid={self.password}", {}),
            (f"{self.server_url}?password={self.password}", {}),
            (self.server_url, {"auth": {"guid": self.password}}),
            (self.server_url, {"auth": {"password": self.password}}),
        ]

        last_error: Exception | None = None
        for i, (url, kwargs) in enumerate(connection_attempts):
            try:
                self._sio = self._create_client()
                logger.debug("Socket.IO connection attempt %d", i + 1)
                await self._sio.connect(
                    url,
                    transports=["websocket", "polling"],
                    wait_timeout=10,
                    **kwargs,
                )
                return
            except socketio.exceptions.ConnectionError as e:
                last_error = e
                logger.debug("Socket.IO connection attempt %d failed: %s", i + 1, e)
                if self._sio:
                    await self._sio.disconnect()
                    self._sio = None

        raise ConnectionError(f"All Socket.IO connection attempts failed. Last error: {last_error}")

    async def disconnect(self) -> None:
        """Disconnect from the server."""
        if self._sio is not None:
            await self._sio.disconnect()
            self._sio = None
            self._connected = False

    def _emit(self, event: PushEvent) -> None:
        if self._on_event:
            self._on_event(event)

    async def _store_message(self, message: Message) -> None:
        if self._on_message is None:
            return
        result = self._on_message(message)
        if inspect.isawaitable(result):
            await result

    def _parse_message(self, data: dict[str, Any]) -> Message | None:
        # The payload is either the message itself or wrapped in "data"
        message_data = data.get("data", data)
        if not isinstance(message_data, dict):
            return None
        try:
            return Message(**message_data)
        except ValidationError:
            logger.warning("Unparseable message payload", exc_info=True)
            return None

    async def _handle_new_message(self, data: dict[str, Any]) -> None:
        """Handle new message event."""
        message = self._parse_message(data)
        if message is None or not message.chat_guid:
            return
        await self._store_message(message)
        self._emit(NewMessage(chat_guid=message.chat_guid))

    async def _handle_updated_message(self, data: dict[str, Any]) -> None:
        """Handle message updated event (delivered, read, edited, unsent)."""
        message = self._parse_message(data)
        if message is None or not message.chat_guid:
            return
        await self._store_message(message)
        self._emit(MessageUpdated(chat_guid=message.chat_guid))

    def _handle_chat_read(self, data: dict[str, Any]) -> None:
        chat_guid = data.get("chatGuid") or data.get("guid")
        if not chat_guid:
            return
        self._emit(ChatReadStatusChanged(chat_guid=chat_guid, is_read=bool(data.get("read", True))))

    def _handle_typing(self, data: dict[str, Any]) -> None:
        """Handle typing indicator event."""
        chat_guid = data.get("guid") or data.get("chatGuid")
        if not chat_guid:
            return
        self._emit(TypingIndicator(chat_guid=chat_guid, is_typing=bool(data.get("display", True))))

    async def wait(self) -> None:
        """Wait for the connection to close."""
        if self._sio:
            await self._sio.wait()
