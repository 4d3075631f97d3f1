"""View models published to the UI layer."""

from __future__ import annotations

from collections.abc import Iterable

from pydantic import BaseModel, ConfigDict, computed_field

from .formatters import MessageStatus, MessageType

UNIFIED_ID_PREFIX = "unified:"


def unified_id(group_id: int) -> str:
    return f"{UNIFIED_ID_PREFIX}{group_id}"


class ConversationViewModel(BaseModel):
    """A display-ready row of the conversation list."""

    model_config = ConfigDict(frozen=True)

    guid: str
    display_name: str
    avatar_path: str | None = None
    preview_text: str = ""
    message_type: MessageType = MessageType.TEXT
    message_status: MessageStatus = MessageStatus.NONE
    last_message_timestamp: int = 0
    unread_count: int = 0
    is_pinned: bool = False
    is_muted: bool = False
    is_typing: bool = False
    is_snoozed: bool = False
    is_group: bool = False
    is_from_me: bool = False
    member_guids: tuple[str, ...] = ()
    primary_guid: str
    group_id: int | None = None
    address: str = ""
    contact_key: str | None = None
    has_inferred_name: bool = False
    inferred_name: str | None = None
    draft_text: str | None = None
    category: str | None = None
    sender_name: str | None = None
    document_type: str | None = None
    attachment_count: int = 0
    is_invisible_ink: bool = False
    link_domain: str | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_merged(self) -> bool:
        return len(self.member_guids) > 1

    @computed_field  # type: ignore[prop-decorator]
    @property
    def has_draft(self) -> bool:
        return bool(self.draft_text)

    def matches(self, filter_text: str) -> bool:
        """Case-insensitive substring match on name and address."""
        needle = filter_text.strip().lower()
        if not needle:
            return True
        return needle in self.display_name.lower() or needle in self.address.lower()


def sort_key(conversation: ConversationViewModel) -> tuple[bool, int, int, str]:
    """
    Pinned first, then newest first.

    Ties fall back to the same columns the store pages by: the numeric
    group id for unified groups, the chat guid otherwise.
    """
    if conversation.group_id is not None:
        tie = (conversation.group_id, "")
    else:
        tie = (0, conversation.guid)
    return (not conversation.is_pinned, -conversation.last_message_timestamp, *tie)


def sort_conversations(
    conversations: Iterable[ConversationViewModel],
) -> list[ConversationViewModel]:
    return sorted(conversations, key=sort_key)


def merge_conversations(
    current: Iterable[ConversationViewModel],
    incoming: Iterable[ConversationViewModel],
) -> list[ConversationViewModel]:
    """Merge two lists, letting ``incoming`` win on duplicate ids, and re-sort."""
    by_id = {c.guid: c for c in current}
    for conversation in incoming:
        by_id[conversation.guid] = conversation
    return sort_conversations(by_id.values())
