"""Reacts to store invalidations and push events by refreshing the list."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from ..state.records import ConversationCategory
from ..state.store import SQLiteConversationStore
from ..utils.debounce import CallDebouncer
from ..utils.published import Published
from ..utils.scope import TaskScope
from .events import ChatReadStatusChanged, MessageUpdated, NewMessage, PushEvent, TypingIndicator
from .models import ConversationViewModel
from .pagination import PaginationController

logger = logging.getLogger(__name__)

DEBOUNCE_MS = 100


class RefreshCoalescer:
    """
    Runs at most one refresh at a time.

    A request that arrives while a refresh is running marks the list dirty,
    and exactly one more refresh runs after the current one finishes, no
    matter how many requests arrived in between.
    """

    def __init__(self, refresh: Callable[[], Awaitable[Any]], scope: TaskScope) -> None:
        self._refresh = refresh
        self._scope = scope
        self._running = False
        self._dirty = False
        self._task: asyncio.Task[None] | None = None
        self.completed_runs = 0

    @property
    def is_running(self) -> bool:
        return self._running

    def request(self) -> None:
        if self._scope.is_closed:
            logger.debug("Ignoring refresh request, scope closed")
            return
        if self._running:
            self._dirty = True
            return
        task = self._scope.launch(self._run(), name="conversation-refresh")
        self._running = True
        self._task = task
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task[None]) -> None:
        # A task cancelled before its first step never reaches _run's finally
        if task is self._task:
            self._running = False

    async def _run(self) -> None:
        try:
            while True:
                self._dirty = False
                try:
                    await self._refresh()
                except Exception:
                    logger.exception("Conversation refresh failed")
                self.completed_runs += 1
                if not self._dirty:
                    break
        finally:
            self._running = False

    async def wait_idle(self) -> None:
        """Wait for the current refresh (and its follow-up) to finish."""
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)


class ChangeObserver:
    """
    Subscribes to change sources and keeps the published list fresh.

    Store invalidations and typing changes go through one debounce window.
    New and updated messages refresh immediately. Read-status changes are
    applied to the published list in place and then written to the store,
    so later refreshes keep them. Once closed, or once its scope is
    closed, the observer drops everything it is handed.
    """

    def __init__(
        self,
        store: SQLiteConversationStore,
        pagination: PaginationController,
        typing: Published[frozenset[str]],
        scope: TaskScope,
        debounce_ms: int = DEBOUNCE_MS,
    ) -> None:
        self._store = store
        self._pagination = pagination
        self._typing = typing
        self._scope = scope
        self._closed = False
        self._loop: asyncio.AbstractEventLoop | None = None
        self._unsubscribe: Callable[[], None] | None = None
        self.coalescer = RefreshCoalescer(pagination.refresh_loaded_pages, scope)
        self._debouncer = CallDebouncer(self.coalescer.request, delay_ms=debounce_ms)

    @property
    def is_closed(self) -> bool:
        return self._closed or self._scope.is_closed

    def start(self) -> None:
        """Start listening. Must be called from the owning event loop."""
        if self._unsubscribe is not None or self.is_closed:
            return
        self._loop = asyncio.get_running_loop()
        self._unsubscribe = self._store.add_listener(self._on_invalidated)

    def close(self) -> None:
        self._closed = True
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._debouncer.cancel()

    def _on_invalidated(self, category: ConversationCategory, counter: int) -> None:
        # Called from whichever thread wrote to the store
        loop = self._loop
        if loop is None or loop.is_closed() or self.is_closed:
            return
        loop.call_soon_threadsafe(self._debounce)

    def _debounce(self) -> None:
        if not self.is_closed:
            self._debouncer.call()

    def post_event(self, event: PushEvent) -> None:
        """Hand an event over from any thread without blocking it."""
        loop = self._loop
        if loop is None or loop.is_closed() or self.is_closed:
            logger.debug("Dropping %s, observer not running", event)
            return
        loop.call_soon_threadsafe(self.dispatch, event)

    def dispatch(self, event: PushEvent) -> None:
        """Handle an event on the owning loop."""
        if self.is_closed:
            logger.debug("Dropping %s, observer closed", event)
            return
        if isinstance(event, (NewMessage, MessageUpdated)):
            self.coalescer.request()
        elif isinstance(event, ChatReadStatusChanged):
            self._apply_read_status(event)
        elif isinstance(event, TypingIndicator):
            self._apply_typing(event)
        else:
            logger.warning("Unhandled event %r", event)

    def _apply_read_status(self, event: ChatReadStatusChanged) -> None:
        def transform(conversation: ConversationViewModel) -> ConversationViewModel:
            if event.chat_guid not in conversation.member_guids:
                return conversation
            unread = 0 if event.is_read else max(conversation.unread_count, 1)
            return conversation.model_copy(update={"unread_count": unread})

        self._pagination.apply_local_update(transform)
        self._scope.launch(
            asyncio.to_thread(self._store.set_read_status, event.chat_guid, event.is_read),
            name="save-read-status",
        )

    def _apply_typing(self, event: TypingIndicator) -> None:
        current = self._typing.value
        if event.is_typing:
            updated = current | {event.chat_guid}
        else:
            updated = current - {event.chat_guid}
        if updated != current:
            self._typing.publish(updated)
            self._debouncer.call()
