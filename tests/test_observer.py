"""Tests for change observation and refresh coalescing."""

from __future__ import annotations

import asyncio
import threading
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass

import pytest
import pytest_asyncio

from bluebubbles_inbox.conversations.assembler import ConversationAssembler
from bluebubbles_inbox.conversations.batch import BatchFetcher
from bluebubbles_inbox.conversations.events import (
    ChatReadStatusChanged,
    MessageUpdated,
    NewMessage,
    TypingIndicator,
)
from bluebubbles_inbox.conversations.grouping import UnifiedGroupingIndex
from bluebubbles_inbox.conversations.models import ConversationViewModel
from bluebubbles_inbox.conversations.observer import ChangeObserver, RefreshCoalescer
from bluebubbles_inbox.conversations.pagination import PaginationController
from bluebubbles_inbox.state.records import ChannelConversation
from bluebubbles_inbox.state.store import SQLiteConversationStore
from bluebubbles_inbox.utils.published import Published
from bluebubbles_inbox.utils.scope import TaskScope

ChatFactory = Callable[..., ChannelConversation]

DEBOUNCE_MS = 20
SETTLE = 0.1


@dataclass
class Harness:
    store: SQLiteConversationStore
    observer: ChangeObserver
    pagination: PaginationController
    conversations: Published[tuple[ConversationViewModel, ...]]
    typing: Published[frozenset[str]]

    async def settle(self) -> None:
        await asyncio.sleep(SETTLE)
        await self.observer.coalescer.wait_idle()

    def by_guid(self, guid: str) -> ConversationViewModel:
        return next(c for c in self.conversations.value if c.guid == guid)


@pytest_asyncio.fixture
async def harness(store: SQLiteConversationStore) -> AsyncIterator[Harness]:
    scope = TaskScope("test")
    conversations: Published[tuple[ConversationViewModel, ...]] = Published(())
    typing: Published[frozenset[str]] = Published(frozenset())
    pagination = PaginationController(
        store,
        UnifiedGroupingIndex(store),
        BatchFetcher(store),
        ConversationAssembler(),
        conversations,
        typing,
    )
    observer = ChangeObserver(store, pagination, typing, scope, debounce_ms=DEBOUNCE_MS)
    yield Harness(store, observer, pagination, conversations, typing)
    observer.close()
    await scope.close()


class TestRefreshCoalescer:
    """Test that refreshes never overlap and bursts collapse."""

    @pytest.mark.asyncio
    async def test_requests_during_refresh_cause_exactly_one_more_run(self) -> None:
        scope = TaskScope("test")
        gate = asyncio.Event()
        calls = 0
        running = 0
        max_running = 0

        async def refresh() -> None:
            nonlocal calls, running, max_running
            calls += 1
            running += 1
            max_running = max(max_running, running)
            if calls == 1:
                await gate.wait()
            running -= 1

        coalescer = RefreshCoalescer(refresh, scope)
        coalescer.request()
        await asyncio.sleep(0)
        assert coalescer.is_running

        for _ in range(5):
            coalescer.request()
        gate.set()
        await coalescer.wait_idle()

        assert calls == 2
        assert coalescer.completed_runs == 2
        assert max_running == 1
        assert not coalescer.is_running
        await scope.close()

    @pytest.mark.asyncio
    async def test_failed_refresh_does_not_wedge(self) -> None:
        scope = TaskScope("test")
        calls = 0

        async def refresh() -> None:
            nonlocal calls
            calls += 1
            raise RuntimeError("boom")

        coalescer = RefreshCoalescer(refresh, scope)
        coalescer.request()
        await coalescer.wait_idle()
        coalescer.request()
        await coalescer.wait_idle()

        assert calls == 2
        assert not coalescer.is_running
        await scope.close()

    @pytest.mark.asyncio
    async def test_request_after_scope_close_is_ignored(self) -> None:
        scope = TaskScope("test")
        calls = 0

        async def refresh() -> None:
            nonlocal calls
            calls += 1

        coalescer = RefreshCoalescer(refresh, scope)
        await scope.close()

        coalescer.request()
        await coalescer.wait_idle()

        assert calls == 0
        assert not coalescer.is_running

    @pytest.mark.asyncio
    async def test_refresh_cancelled_before_it_starts_does_not_wedge(self) -> None:
        scope = TaskScope("test")

        async def refresh() -> None:
            pass

        coalescer = RefreshCoalescer(refresh, scope)
        coalescer.request()
        await scope.close()

        assert not coalescer.is_running
        assert coalescer.completed_runs == 0


class TestChangeObserver:
    """Test reactions to store writes and push events."""

    @pytest.mark.asyncio
    async def test_store_writes_are_debounced_into_one_refresh(
        self, harness: Harness, make_chat: ChatFactory
    ) -> None:
        await harness.pagination.load_initial()
        harness.observer.start()

        for i in range(5):
            harness.store.save_chat(make_chat(f"iMessage;+;g{i}", last_message_date=i))
        await harness.settle()

        assert harness.observer.coalescer.completed_runs == 1
        assert len(harness.conversations.value) == 5

    @pytest.mark.asyncio
    async def test_writes_from_another_thread(
        self, harness: Harness, make_chat: ChatFactory
    ) -> None:
        await harness.pagination.load_initial()
        harness.observer.start()

        writer = threading.Thread(
            target=harness.store.save_chat, args=(make_chat("iMessage;+;from-thread"),)
        )
        writer.start()
        writer.join()
        await harness.settle()

        assert [c.guid for c in harness.conversations.value] == ["iMessage;+;from-thread"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("event_type", [NewMessage, MessageUpdated])
    async def test_message_events_refresh_immediately(
        self, harness: Harness, event_type: type[NewMessage] | type[MessageUpdated]
    ) -> None:
        await harness.pagination.load_initial()
        harness.observer.start()

        harness.observer.dispatch(event_type(chat_guid="iMessage;+;g1"))
        assert harness.observer.coalescer.is_running
        await harness.observer.coalescer.wait_idle()

        assert harness.observer.coalescer.completed_runs == 1

    @pytest.mark.asyncio
    async def test_read_status_is_applied_optimistically(
        self, harness: Harness, make_chat: ChatFactory
    ) -> None:
        harness.store.save_chat(make_chat("iMessage;+;g1", unread_count=3))
        await harness.pagination.load_initial()
        harness.observer.start()

        harness.observer.dispatch(ChatReadStatusChanged(chat_guid="iMessage;+;g1", is_read=True))

        assert harness.by_guid("iMessage;+;g1").unread_count == 0
        assert harness.observer.coalescer.completed_runs == 0
        await harness.settle()

    @pytest.mark.asyncio
    async def test_read_status_survives_refresh(
        self, harness: Harness, make_chat: ChatFactory
    ) -> None:
        harness.store.save_chat(make_chat("iMessage;+;g1", unread_count=3))
        await harness.pagination.load_initial()
        harness.observer.start()

        harness.observer.dispatch(ChatReadStatusChanged(chat_guid="iMessage;+;g1", is_read=True))
        await harness.settle()

        stored = harness.store.get_chat("iMessage;+;g1")
        assert stored is not None and stored.unread_count == 0
        assert harness.observer.coalescer.completed_runs == 1

        await harness.pagination.refresh_loaded_pages()
        assert harness.by_guid("iMessage;+;g1").unread_count == 0

    @pytest.mark.asyncio
    async def test_read_status_reaches_merged_members(
        self, harness: Harness, make_chat: ChatFactory
    ) -> None:
        harness.store.save_chats([
            make_chat("iMessage;-;+15551230001", unread_count=2),
            make_chat("SMS;-;+15551230001"),
        ])
        await harness.pagination.load_initial()
        harness.observer.start()
        [conversation] = harness.conversations.value

        harness.observer.dispatch(ChatReadStatusChanged(chat_guid="SMS;-;+15551230001", is_read=False))
        assert harness.by_guid(conversation.guid).unread_count == 2

        harness.observer.dispatch(ChatReadStatusChanged(chat_guid="SMS;-;+15551230001", is_read=True))
        assert harness.by_guid(conversation.guid).unread_count == 0
        await harness.settle()

    @pytest.mark.asyncio
    async def test_typing_indicator(self, harness: Harness, make_chat: ChatFactory) -> None:
        harness.store.save_chat(make_chat("iMessage;+;g1"))
        await harness.pagination.load_initial()
        harness.observer.start()

        harness.observer.post_event(TypingIndicator(chat_guid="iMessage;+;g1", is_typing=True))
        await harness.settle()

        assert harness.typing.value == frozenset({"iMessage;+;g1"})
        assert harness.by_guid("iMessage;+;g1").is_typing is True

        harness.observer.post_event(TypingIndicator(chat_guid="iMessage;+;g1", is_typing=False))
        await harness.settle()

        assert harness.typing.value == frozenset()
        assert harness.by_guid("iMessage;+;g1").is_typing is False

    @pytest.mark.asyncio
    async def test_events_before_start_are_dropped(self, harness: Harness) -> None:
        harness.observer.post_event(TypingIndicator(chat_guid="iMessage;+;g1", is_typing=True))
        await asyncio.sleep(0)

        assert harness.typing.value == frozenset()

    @pytest.mark.asyncio
    async def test_close_stops_listening(self, harness: Harness, make_chat: ChatFactory) -> None:
        await harness.pagination.load_initial()
        harness.observer.start()
        harness.observer.close()

        harness.store.save_chat(make_chat("iMessage;+;g1"))
        await harness.settle()

        assert harness.observer.coalescer.completed_runs == 0
        assert harness.conversations.value == ()

    @pytest.mark.asyncio
    async def test_events_after_close_are_dropped(self, harness: Harness) -> None:
        await harness.pagination.load_initial()
        harness.observer.start()
        harness.observer.close()

        harness.observer.dispatch(NewMessage(chat_guid="iMessage;+;g1"))
        harness.observer.post_event(TypingIndicator(chat_guid="iMessage;+;g1", is_typing=True))
        await harness.settle()

        assert not harness.observer.coalescer.is_running
        assert harness.observer.coalescer.completed_runs == 0
        assert harness.typing.value == frozenset()
