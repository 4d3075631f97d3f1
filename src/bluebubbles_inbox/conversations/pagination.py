"""Paged loading of the three conversation categories."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from enum import Enum

from ..state.records import ConversationCategory
from ..state.store import SQLiteConversationStore
from ..utils.published import Published
from .assembler import ConversationAssembler
from .batch import BatchFetcher
from .grouping import UnifiedGroupingIndex
from .models import ConversationViewModel, merge_conversations, sort_conversations, unified_id

logger = logging.getLogger(__name__)

INITIAL_LOAD_TARGET = 100
PAGE_SIZE = 25

CATEGORIES = tuple(ConversationCategory)


class LoadState(str, Enum):
    IDLE = "idle"
    LOADING_INITIAL = "loading_initial"
    READY = "ready"
    LOADING_MORE = "loading_more"
    ERROR = "error"


class LoadResult(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    ALREADY_LOADING = "already_loading"


@dataclass(frozen=True)
class ListState:
    """Flags published alongside the conversation list."""

    load_state: LoadState = LoadState.IDLE
    has_more: bool = False
    last_error: str | None = None
    filter_text: str = ""

    @property
    def is_loading_initial(self) -> bool:
        return self.load_state is LoadState.LOADING_INITIAL

    @property
    def is_loading_more(self) -> bool:
        return self.load_state is LoadState.LOADING_MORE


@dataclass(frozen=True)
class _Page:
    conversations: list[ConversationViewModel]
    # Conversation ids of each category in store order, assembled or not
    order: Mapping[ConversationCategory, tuple[str, ...]]
    totals: Mapping[ConversationCategory, int] = field(default_factory=dict)

    @property
    def fetched(self) -> dict[ConversationCategory, int]:
        return {category: len(ids) for category, ids in self.order.items()}

    def resume_offset(self, category: ConversationCategory, visible: set[str]) -> int:
        """
        Store position up to which ``category`` is fully accounted for.

        Rows the assembler dropped count as consumed; the first row that
        assembled but was cut from ``visible`` ends the run.
        """
        assembled = {c.guid for c in self.conversations}
        offset = 0
        for conversation_id in self.order[category]:
            if conversation_id in assembled and conversation_id not in visible:
                break
            offset += 1
        return offset


class PaginationController:
    """
    Owns the load / load more / refresh state machine.

    ``IDLE -> LOADING_INITIAL -> READY <-> LOADING_MORE``; any failure moves
    to ``ERROR`` and keeps the last published list. The next successful
    load returns to ``READY``.
    """

    def __init__(
        self,
        store: SQLiteConversationStore,
        grouping: UnifiedGroupingIndex,
        fetcher: BatchFetcher,
        assembler: ConversationAssembler,
        conversations: Published[tuple[ConversationViewModel, ...]],
        typing: Published[frozenset[str]],
        initial_load_target: int = INITIAL_LOAD_TARGET,
        page_size: int = PAGE_SIZE,
    ) -> None:
        self._store = store
        self._grouping = grouping
        self._fetcher = fetcher
        self._assembler = assembler
        self._conversations = conversations
        self._typing = typing
        self._initial_load_target = initial_load_target
        self._page_size = page_size

        self.state: Published[ListState] = Published(ListState())
        self._lock = asyncio.Lock()
        self._offsets: dict[ConversationCategory, int] = {c: 0 for c in CATEGORIES}
        self._totals: dict[ConversationCategory, int] = {c: 0 for c in CATEGORIES}
        # Everything loaded, before the filter is applied
        self._loaded: tuple[ConversationViewModel, ...] = ()

    @property
    def offsets(self) -> dict[ConversationCategory, int]:
        return dict(self._offsets)

    async def load_initial(self) -> LoadResult:
        """Load the first page of every category."""
        if self._lock.locked():
            return LoadResult.ALREADY_LOADING
        async with self._lock:
            self._set_state(load_state=LoadState.LOADING_INITIAL)
            try:
                await self._load_window(self._initial_load_target)
            except Exception as e:
                logger.exception("Initial conversation load failed")
                self._fail(e)
                return LoadResult.ERROR
        return LoadResult.SUCCESS

    async def load_more(self) -> LoadResult:
        """Load the next page of every category and merge it into the list."""
        if self._lock.locked():
            return LoadResult.ALREADY_LOADING
        state = self.state.value
        if state.load_state in (LoadState.IDLE, LoadState.LOADING_INITIAL) or not state.has_more:
            return LoadResult.ALREADY_LOADING

        async with self._lock:
            self._set_state(load_state=LoadState.LOADING_MORE)
            try:
                page = await self._fetch(
                    {c: (self._page_size, self._offsets[c]) for c in CATEGORIES}
                )
            except Exception as e:
                logger.exception("Loading more conversations failed")
                self._fail(e)
                return LoadResult.ERROR

            for category, count in page.fetched.items():
                self._offsets[category] += count
            self._totals.update(page.totals)
            self._loaded = tuple(merge_conversations(self._loaded, page.conversations))
            self._publish()
        logger.debug("Loaded more conversations, offsets now %s", self._offsets)
        return LoadResult.SUCCESS

    async def refresh_loaded_pages(self, filter_text: str | None = None) -> LoadResult:
        """
        Re-fetch everything currently loaded.

        The whole window is reloaded rather than a delta, so the list
        recovers from any change signal that was missed. ``filter_text``
        replaces the current filter when given.
        """
        async with self._lock:
            if filter_text is not None:
                self._set_state(filter_text=filter_text)
            window = max(sum(self._offsets.values()), self._initial_load_target)
            try:
                await self._load_window(window)
            except Exception as e:
                logger.exception("Refreshing conversations failed")
                self._fail(e)
                return LoadResult.ERROR
        return LoadResult.SUCCESS

    def apply_local_update(
        self, transform: Callable[[ConversationViewModel], ConversationViewModel]
    ) -> None:
        """Apply an optimistic change to every loaded conversation and republish."""
        self._loaded = tuple(sort_conversations(transform(c) for c in self._loaded))
        self._publish_list()

    async def _load_window(self, target: int) -> None:
        """Fetch the top ``target`` entries of every category and keep the best ``target``."""
        page = await self._fetch({c: (target, 0) for c in CATEGORIES})
        visible = sort_conversations(page.conversations)[:target]

        visible_ids = {c.guid for c in visible}
        self._offsets = {c: page.resume_offset(c, visible_ids) for c in CATEGORIES}
        self._totals = dict(page.totals)
        self._loaded = tuple(visible)
        self._publish()

    async def _fetch(
        self, windows: Mapping[ConversationCategory, tuple[int, int]]
    ) -> _Page:
        """Fetch one (limit, offset) window per category and assemble it."""
        await asyncio.to_thread(self._grouping.adopt_pending)

        groups_limit, groups_offset = windows[ConversationCategory.UNIFIED_GROUPS]
        group_limit, group_offset = windows[ConversationCategory.GROUP_CHATS]
        direct_limit, direct_offset = windows[ConversationCategory.DIRECT_CHATS]

        groups, group_chats, direct_chats, totals = await asyncio.gather(
            asyncio.to_thread(self._store.get_groups_page, groups_limit, groups_offset),
            asyncio.to_thread(
                self._store.get_chats_page,
                ConversationCategory.GROUP_CHATS, group_limit, group_offset,
            ),
            asyncio.to_thread(
                self._store.get_chats_page,
                ConversationCategory.DIRECT_CHATS, direct_limit, direct_offset,
            ),
            asyncio.to_thread(self._count_all),
        )

        chats = [*group_chats, *direct_chats]
        data = await asyncio.to_thread(
            self._fetcher.fetch, [g.id for g in groups], [c.guid for c in chats]
        )
        conversations = self._assembler.assemble_page(groups, chats, data, self._typing.value)

        return _Page(
            conversations=conversations,
            order={
                ConversationCategory.UNIFIED_GROUPS: tuple(unified_id(g.id) for g in groups),
                ConversationCategory.GROUP_CHATS: tuple(c.guid for c in group_chats),
                ConversationCategory.DIRECT_CHATS: tuple(c.guid for c in direct_chats),
            },
            totals=totals,
        )

    def _count_all(self) -> dict[ConversationCategory, int]:
        return {c: self._store.count(c) for c in CATEGORIES}

    def _has_more(self) -> bool:
        return any(self._offsets[c] < self._totals.get(c, 0) for c in CATEGORIES)

    def _publish_list(self) -> None:
        filter_text = self.state.value.filter_text
        self._conversations.publish(tuple(c for c in self._loaded if c.matches(filter_text)))

    def _publish(self) -> None:
        self._publish_list()
        self._set_state(load_state=LoadState.READY, has_more=self._has_more(), last_error=None)

    def _fail(self, error: Exception) -> None:
        self._set_state(load_state=LoadState.ERROR, last_error=str(error) or type(error).__name__)

    def _set_state(self, **changes: object) -> None:
        self.state.publish(replace(self.state.value, **changes))  # type: ignore[arg-type]
