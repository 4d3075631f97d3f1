"""
Shared pytest fixtures for the conversation engine tests.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest

from bluebubbles_inbox.state.records import ChannelConversation, Message, Participant
from bluebubbles_inbox.state.store import SQLiteConversationStore


@pytest.fixture
def store(tmp_path: Path) -> Iterator[SQLiteConversationStore]:
    """A fresh store in a temporary directory."""
    store = SQLiteConversationStore(tmp_path / "test.db")
    yield store
    store.close()


@pytest.fixture
def make_chat() -> Callable[..., ChannelConversation]:
    """Build a channel conversation; the address is taken from the guid."""

    def factory(guid: str, **kwargs: Any) -> ChannelConversation:
        kwargs.setdefault("chat_identifier", guid.rsplit(";", 1)[-1])
        kwargs.setdefault("is_group", ";+;" in guid)
        return ChannelConversation(guid=guid, **kwargs)

    return factory


@pytest.fixture
def make_message() -> Callable[..., Message]:
    def factory(guid: str, chat_guid: str, date_created: int, **kwargs: Any) -> Message:
        return Message(guid=guid, chat_guid=chat_guid, date_created=date_created, **kwargs)

    return factory


@pytest.fixture
def make_participant() -> Callable[..., Participant]:
    def factory(id: int, address: str, **kwargs: Any) -> Participant:
        return Participant(id=id, address=address, **kwargs)

    return factory
