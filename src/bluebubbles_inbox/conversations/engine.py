"""Facade tying the conversation list and sync progress together."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any

from ..state.store import SQLiteConversationStore
from ..sync.progress import SyncProgress, SyncProgressAggregator, SyncStage
from ..utils.config import Config
from ..utils.phone import DEFAULT_REGION
from ..utils.published import Published
from ..utils.scope import TaskScope
from .assembler import ConversationAssembler
from .batch import BatchFetcher
from .events import PushEvent
from .grouping import UnifiedGroupingIndex
from .models import ConversationViewModel
from .observer import DEBOUNCE_MS, ChangeObserver
from .pagination import INITIAL_LOAD_TARGET, PAGE_SIZE, ListState, LoadResult, PaginationController

logger = logging.getLogger(__name__)


class ConversationListEngine:
    """
    The conversation list as seen by a screen.

    Owns one task scope; every load, refresh and retry runs as a child
    task of it and `close()` cancels them all. Commands never raise: load
    failures show up in ``list_state`` and stage failures in
    ``sync_progress``.
    """

    def __init__(
        self,
        store: SQLiteConversationStore,
        config: Config | None = None,
        *,
        normalize: Callable[[str], str | None] | None = None,
        clock: Callable[[], int] | None = None,
        region: str | None = None,
        initial_load_target: int | None = None,
        page_size: int | None = None,
        debounce_ms: int | None = None,
    ) -> None:
        region = region or (config.default_region if config else DEFAULT_REGION)
        if initial_load_target is None:
            initial_load_target = config.initial_load_target if config else INITIAL_LOAD_TARGET
        if page_size is None:
            page_size = config.page_size if config else PAGE_SIZE
        if debounce_ms is None:
            debounce_ms = config.debounce_ms if config else DEBOUNCE_MS

        self.store = store
        self.scope = TaskScope("conversation-list")
        self._conversations: Published[tuple[ConversationViewModel, ...]] = Published(())
        self._typing: Published[frozenset[str]] = Published(frozenset())

        self.grouping = UnifiedGroupingIndex(store, normalize=normalize, region=region)
        assembler = (
            ConversationAssembler(region, clock) if clock else ConversationAssembler(region)
        )
        self.pagination = PaginationController(
            store,
            self.grouping,
            BatchFetcher(store),
            assembler,
            self._conversations,
            self._typing,
            initial_load_target=initial_load_target,
            page_size=page_size,
        )
        self.observer = ChangeObserver(
            store, self.pagination, self._typing, self.scope, debounce_ms=debounce_ms
        )
        self.sync = SyncProgressAggregator()

    # Published state

    @property
    def conversations(self) -> Published[tuple[ConversationViewModel, ...]]:
        return self._conversations

    @property
    def list_state(self) -> Published[ListState]:
        return self.pagination.state

    @property
    def sync_progress(self) -> Published[SyncProgress | None]:
        return self.sync.progress

    @property
    def typing_chats(self) -> Published[frozenset[str]]:
        return self._typing

    # Lifecycle

    def start(self) -> None:
        """Start observing the store. Call from the event loop that owns the engine."""
        self.observer.start()

    async def close(self) -> None:
        self.observer.close()
        await self.scope.close()
        logger.debug("Conversation list engine closed")

    # Commands

    async def load_initial(self) -> LoadResult:
        return await self._run(self.pagination.load_initial(), "load-initial")

    async def load_more(self) -> LoadResult:
        return await self._run(self.pagination.load_more(), "load-more")

    async def refresh(self, filter_text: str | None = None) -> LoadResult:
        """Reload everything that is loaded, optionally with a new filter."""
        return await self._run(self.pagination.refresh_loaded_pages(filter_text), "refresh")

    def post_event(self, event: PushEvent) -> None:
        """Hand over a push event. Safe to call from any thread."""
        self.observer.post_event(event)

    def register_stage(self, stage: SyncStage, run: Callable[[], Awaitable[Any]]) -> None:
        """Register how to (re)start a sync stage; used by `retry_failed_stage`."""

        def retry() -> None:
            if self.scope.is_closed:
                logger.debug("Not retrying %s, engine closed", stage.value)
                return
            self.scope.launch(_as_coroutine(run), name=f"retry-{stage.value}")

        self.sync.register_retry(stage, retry)

    def retry_failed_stage(self) -> SyncStage | None:
        return self.sync.retry_failed_stage()

    def dismiss_stage_error(self, stage: SyncStage) -> None:
        self.sync.dismiss_stage_error(stage)

    def toggle_progress_expanded(self) -> None:
        self.sync.toggle_expanded()

    async def _run(self, coro: Coroutine[Any, Any, LoadResult], name: str) -> LoadResult:
        if self.scope.is_closed:
            coro.close()
            logger.debug("Ignoring %s, engine closed", name)
            return LoadResult.ERROR
        task = self.scope.launch(coro, name=name)
        try:
            return await task
        except asyncio.CancelledError:
            # Only swallow the cancellation that came from closing the scope
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            return LoadResult.ERROR


async def _as_coroutine(run: Callable[[], Awaitable[Any]]) -> None:
    await run()
