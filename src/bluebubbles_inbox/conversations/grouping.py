"""Unified grouping of channel conversations that belong to one contact."""

from __future__ import annotations

import functools
import logging
import threading
from collections.abc import Callable, Iterable

from ..errors import GroupingAmbiguity
from ..state.records import ChannelConversation, ChannelType
from ..state.store import SQLiteConversationStore
from ..utils.phone import DEFAULT_REGION, canonical_key

logger = logging.getLogger(__name__)

# Lower sorts first when choosing a primary among otherwise tied members
CHANNEL_PRIORITY = {
    ChannelType.IMESSAGE: 0,
    ChannelType.RCS: 1,
    ChannelType.SMS: 2,
    ChannelType.MMS: 3,
    ChannelType.UNKNOWN: 4,
}

ADOPT_BATCH_SIZE = 500


def primary_sort_key(conversation: ChannelConversation) -> tuple[int, int, int, str]:
    channel = conversation.channel
    return (
        0 if channel.is_rich else 1,
        -(conversation.last_message_date or 0),
        CHANNEL_PRIORITY[channel],
        conversation.guid,
    )


def select_primary(members: Iterable[ChannelConversation]) -> str:
    """
    Choose the primary channel of a group.

    Rich-messaging conversations win over carrier ones. Within the same
    protocol the most recent conversation wins, then channel priority,
    then the guid, so the result never depends on input order.
    """
    return min(members, key=primary_sort_key).guid


class UnifiedGroupingIndex:
    """Maps canonical contact keys to unified groups in the store."""

    def __init__(
        self,
        store: SQLiteConversationStore,
        normalize: Callable[[str], str | None] | None = None,
        region: str = DEFAULT_REGION,
    ) -> None:
        self._store = store
        self._normalize = normalize or functools.partial(canonical_key, region=region)
        self._lock = threading.Lock()

    def resolve(self, raw_address: str | None) -> str | None:
        """Get the canonical key for an address, or None if it is ambiguous."""
        if not raw_address:
            return None
        return self._normalize(raw_address)

    def _key_for(self, conversation: ChannelConversation) -> str:
        if conversation.is_group:
            raise GroupingAmbiguity(conversation.address, "group chats are never merged")
        key = self.resolve(conversation.address)
        if key is None:
            raise GroupingAmbiguity(conversation.address, "address does not identify one contact")
        return key

    def assign_group(self, conversation: ChannelConversation) -> int | None:
        """
        Put a conversation into the group for its contact.

        Joins the existing group with the same canonical key, or creates a
        singleton group. Returns None when the conversation stays standalone.
        Calling this again for an already grouped conversation returns its
        current group.
        """
        with self._lock:
            return self._assign(conversation)

    def assign_many(self, conversations: Iterable[ChannelConversation]) -> dict[str, int | None]:
        with self._lock:
            return {c.guid: self._assign(c) for c in conversations}

    def adopt_pending(self) -> int:
        """Run group assignment for every 1:1 chat that has not been seen yet."""
        adopted = 0
        with self._lock:
            while True:
                pending = self._store.get_unchecked_direct_chats(ADOPT_BATCH_SIZE)
                if not pending:
                    break
                for conversation in pending:
                    self._assign(conversation)
                adopted += len(pending)
        if adopted:
            logger.debug("Ran group assignment for %d new conversations", adopted)
        return adopted

    def _assign(self, conversation: ChannelConversation) -> int | None:
        existing = self._store.get_group_id_for_chat(conversation.guid)
        if existing is not None:
            self._store.mark_grouping_checked([conversation.guid])
            return existing

        try:
            key = self._key_for(conversation)
        except GroupingAmbiguity as e:
            logger.debug("Leaving %s standalone: %s", conversation.guid, e.reason)
            self._store.mark_grouping_checked([conversation.guid])
            return None

        group = self._store.find_group_by_key(key)
        if group is None:
            group_id = self._store.create_group(key, conversation.guid)
            logger.debug("Created group %d for %s", group_id, conversation.guid)
        else:
            group_id = group.id
            self._store.add_group_member(group_id, conversation.guid)
            self._reselect_primary(group_id, group.primary_chat_guid)
            logger.debug("Merged %s into group %d", conversation.guid, group_id)

        self._store.mark_grouping_checked([conversation.guid])
        return group_id

    def _reselect_primary(self, group_id: int, current: str) -> None:
        member_guids = self._store.get_group_members([group_id]).get(group_id, [])
        members = list(self._store.get_chats(member_guids).values())
        if not members:
            return
        candidates = [m for m in members if m.is_live] or members
        primary = select_primary(candidates)
        if primary != current:
            self._store.set_group_primary(group_id, primary)
