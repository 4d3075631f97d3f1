"""Tests for building conversation view models."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from bluebubbles_inbox.conversations.assembler import ConversationAssembler
from bluebubbles_inbox.conversations.batch import BatchFetcher, BatchResult
from bluebubbles_inbox.conversations.formatters import MessageStatus, MessageType
from bluebubbles_inbox.conversations.grouping import UnifiedGroupingIndex
from bluebubbles_inbox.conversations.models import ConversationViewModel
from bluebubbles_inbox.errors import AssemblyError
from bluebubbles_inbox.state.records import (
    Attachment,
    ChannelConversation,
    Message,
    Participant,
    UnifiedConversationGroup,
)
from bluebubbles_inbox.state.store import SQLiteConversationStore

ChatFactory = Callable[..., ChannelConversation]
MessageFactory = Callable[..., Message]

RICH = "iMessage;-;+15551230001"
SMS = "SMS;-;+15551230001"
GROUP = "iMessage;+;chat99"


def _assemble_chat(
    store: SQLiteConversationStore, guid: str, **kwargs: object
) -> ConversationViewModel | None:
    chat = store.get_chat(guid)
    assert chat is not None
    data = BatchFetcher(store).fetch(chat_guids=[guid])
    return ConversationAssembler(**kwargs).assemble_chat(chat, data)  # type: ignore[arg-type]


def _assemble_group(store: SQLiteConversationStore, group_id: int) -> ConversationViewModel | None:
    group = store.get_group(group_id)
    assert group is not None
    data = BatchFetcher(store).fetch(group_ids=[group_id])
    return ConversationAssembler().assemble_group(group, data)


class TestUnifiedGroups:
    """Test view models for merged conversations."""

    def _merge(
        self,
        store: SQLiteConversationStore,
        make_chat: ChatFactory,
        make_message: MessageFactory,
        **sms_kwargs: object,
    ) -> int:
        rich = make_chat(RICH, unread_count=1)
        sms = make_chat(SMS, unread_count=2, **sms_kwargs)
        store.save_chats([rich, sms])
        store.save_messages([
            make_message("rich-1", RICH, 100, text="from iMessage"),
            make_message("sms-1", SMS, 50, text="from SMS"),
        ])
        group_id = UnifiedGroupingIndex(store).assign_many([sms, rich])[RICH]
        assert group_id is not None
        return group_id

    def test_merged_conversation(
        self,
        store: SQLiteConversationStore,
        make_chat: ChatFactory,
        make_message: MessageFactory,
    ) -> None:
        """Rich channel is primary and the newest message across members is shown."""
        group_id = self._merge(store, make_chat, make_message)

        conversation = _assemble_group(store, group_id)

        assert conversation is not None
        assert conversation.guid == f"unified:{group_id}"
        assert conversation.group_id == group_id
        assert conversation.primary_guid == RICH
        assert conversation.member_guids[0] == RICH
        assert set(conversation.member_guids) == {RICH, SMS}
        assert conversation.is_merged is True
        assert conversation.last_message_timestamp == 100
        assert conversation.preview_text == "from iMessage"
        assert conversation.unread_count == 3
        assert conversation.contact_key == "+15551230001"
        assert conversation.display_name == "(555) 123-0001"

    def test_unread_override(
        self,
        store: SQLiteConversationStore,
        make_chat: ChatFactory,
        make_message: MessageFactory,
    ) -> None:
        group_id = self._merge(store, make_chat, make_message)
        group = store.get_group(group_id)
        assert group is not None
        store.update_group_overrides(
            group.model_copy(update={"unread_override": 0, "display_name": "Mum"})
        )

        conversation = _assemble_group(store, group_id)

        assert conversation is not None
        assert conversation.unread_count == 0
        assert conversation.display_name == "Mum"

    def test_archived_member_is_left_out(
        self,
        store: SQLiteConversationStore,
        make_chat: ChatFactory,
        make_message: MessageFactory,
    ) -> None:
        group_id = self._merge(store, make_chat, make_message, is_archived=True)

        conversation = _assemble_group(store, group_id)

        assert conversation is not None
        assert conversation.member_guids == (RICH,)
        assert conversation.unread_count == 1

    def test_no_live_members(
        self, store: SQLiteConversationStore, make_chat: ChatFactory
    ) -> None:
        store.save_chats([make_chat(RICH, is_archived=True), make_chat(SMS, date_deleted=1)])
        group_id = UnifiedGroupingIndex(store).assign_many(
            [make_chat(RICH), make_chat(SMS)]
        )[RICH]
        assert group_id is not None

        assert _assemble_group(store, group_id) is None

    def test_group_without_members_raises(self) -> None:
        group = UnifiedConversationGroup(id=7, canonical_key="+15551230001", primary_chat_guid=RICH)

        with pytest.raises(AssemblyError) as exc_info:
            ConversationAssembler().assemble_group(group, BatchResult())
        assert exc_info.value.conversation_id == "unified:7"

    def test_page_skips_broken_entries(
        self, store: SQLiteConversationStore, make_chat: ChatFactory
    ) -> None:
        chat = make_chat("SMS;-;+15551230009")
        store.save_chat(chat)
        broken = UnifiedConversationGroup(id=7, canonical_key="x", primary_chat_guid="missing")
        data = BatchFetcher(store).fetch(chat_guids=[chat.guid])

        page = ConversationAssembler().assemble_page([broken], [chat], data)

        assert [c.guid for c in page] == [chat.guid]


class TestDisplayName:
    """Test name precedence for standalone chats."""

    def test_chat_display_name_wins(
        self, store: SQLiteConversationStore, make_chat: ChatFactory
    ) -> None:
        store.save_chat(make_chat(RICH, display_name="  Ann  "))
        store.save_participants(RICH, [Participant(id=1, address="+15551230001", cached_display_name="Ann Lee")])

        conversation = _assemble_chat(store, RICH)
        assert conversation is not None
        assert conversation.display_name == "Ann"

    def test_contact_name(self, store: SQLiteConversationStore, make_chat: ChatFactory) -> None:
        store.save_chat(make_chat(RICH))
        store.save_participants(RICH, [Participant(id=1, address="+15551230001", cached_display_name="Ann Lee")])

        conversation = _assemble_chat(store, RICH)
        assert conversation is not None
        assert conversation.display_name == "Ann Lee"
        assert conversation.has_inferred_name is False

    def test_inferred_name(self, store: SQLiteConversationStore, make_chat: ChatFactory) -> None:
        store.save_chat(make_chat(RICH))
        store.save_participants(RICH, [Participant(id=1, address="+15551230001", inferred_name="Ann")])

        conversation = _assemble_chat(store, RICH)
        assert conversation is not None
        assert conversation.display_name == "Maybe: Ann"
        assert conversation.inferred_name == "Ann"
        assert conversation.has_inferred_name is True

    def test_formatted_address_fallback(
        self, store: SQLiteConversationStore, make_chat: ChatFactory
    ) -> None:
        store.save_chat(make_chat("SMS;-;+442079460958"))

        conversation = _assemble_chat(store, "SMS;-;+442079460958")
        assert conversation is not None
        assert conversation.display_name == "+44 20 7946 0958"

    def test_unnamed_group_title(self, store: SQLiteConversationStore, make_chat: ChatFactory) -> None:
        store.save_chat(make_chat(GROUP))
        store.save_participants(GROUP, [
            Participant(id=1, address="+15551230001", cached_display_name="Ann Lee"),
            Participant(id=2, address="+15551230002", cached_display_name="Bob Stone"),
            Participant(id=3, address="+15551230003", cached_display_name="Cy Young"),
            Participant(id=4, address="+15551230004"),
            Participant(id=5, address="me@example.com", is_self=True),
        ])

        conversation = _assemble_chat(store, GROUP)
        assert conversation is not None
        assert conversation.display_name == "Ann, Bob, Cy +1"
        assert conversation.is_group is True
        assert conversation.contact_key is None


class TestPreview:
    """Test preview text and flags from the latest message."""

    def test_own_message_prefix_and_status(
        self,
        store: SQLiteConversationStore,
        make_chat: ChatFactory,
        make_message: MessageFactory,
    ) -> None:
        store.save_chat(make_chat(RICH))
        store.save_messages([make_message("m1", RICH, 10, text="on my way", is_from_me=True, date_delivered=11)])

        conversation = _assemble_chat(store, RICH)
        assert conversation is not None
        assert conversation.preview_text == "You: on my way"
        assert conversation.message_status is MessageStatus.DELIVERED
        assert conversation.is_from_me is True

    def test_group_sender_prefix(
        self,
        store: SQLiteConversationStore,
        make_chat: ChatFactory,
        make_message: MessageFactory,
    ) -> None:
        store.save_chat(make_chat(GROUP, display_name="Trip"))
        store.save_participants(GROUP, [Participant(id=1, address="+15551230001", cached_display_name="Ann Lee")])
        store.save_messages([make_message("m1", GROUP, 10, text="hi all", handle_id=1)])

        conversation = _assemble_chat(store, GROUP)
        assert conversation is not None
        assert conversation.preview_text == "Ann: hi all"
        assert conversation.sender_name == "Ann"

    def test_reaction(
        self,
        store: SQLiteConversationStore,
        make_chat: ChatFactory,
        make_message: MessageFactory,
    ) -> None:
        store.save_chat(make_chat(RICH))
        store.save_messages([
            make_message("orig", RICH, 1, text="dinner?"),
            make_message("r1", RICH, 2, associated_message_guid="p:0/orig", associated_message_type=2001),
        ])

        conversation = _assemble_chat(store, RICH)
        assert conversation is not None
        assert conversation.message_type is MessageType.REACTION
        assert conversation.preview_text == 'Liked "dinner?"'

    def test_deleted_message(
        self,
        store: SQLiteConversationStore,
        make_chat: ChatFactory,
        make_message: MessageFactory,
    ) -> None:
        store.save_chat(make_chat(RICH))
        store.save_messages([make_message("m1", RICH, 1, text="oops", date_deleted=2)])

        conversation = _assemble_chat(store, RICH)
        assert conversation is not None
        assert conversation.preview_text == "Message deleted"

    def test_invisible_ink_hides_text(
        self,
        store: SQLiteConversationStore,
        make_chat: ChatFactory,
        make_message: MessageFactory,
    ) -> None:
        store.save_chat(make_chat(RICH))
        store.save_messages([make_message(
            "m1", RICH, 1, text="secret",
            expressive_send_style_id="com.apple.MobileSMS.expressivesend.invisibleink",
        )])

        conversation = _assemble_chat(store, RICH)
        assert conversation is not None
        assert conversation.is_invisible_ink is True
        assert conversation.preview_text == "Message sent with Invisible Ink"

    def test_photo_count(
        self,
        store: SQLiteConversationStore,
        make_chat: ChatFactory,
        make_message: MessageFactory,
    ) -> None:
        store.save_chat(make_chat(RICH))
        store.save_messages([make_message("m1", RICH, 1, has_attachments=True)])
        store.save_attachments([
            Attachment(guid="a1", message_guid="m1", mime_type="image/jpeg"),
            Attachment(guid="a2", message_guid="m1", mime_type="image/jpeg"),
        ])

        conversation = _assemble_chat(store, RICH)
        assert conversation is not None
        assert conversation.message_type is MessageType.IMAGE
        assert conversation.preview_text == "2 Photos"
        assert conversation.attachment_count == 2

    def test_document(
        self,
        store: SQLiteConversationStore,
        make_chat: ChatFactory,
        make_message: MessageFactory,
    ) -> None:
        store.save_chat(make_chat(RICH))
        store.save_messages([make_message("m1", RICH, 1, has_attachments=True)])
        store.save_attachments([
            Attachment(guid="a1", message_guid="m1", mime_type="application/pdf", transfer_name="plan.pdf")
        ])

        conversation = _assemble_chat(store, RICH)
        assert conversation is not None
        assert conversation.preview_text == "PDF"
        assert conversation.document_type == "PDF"

    def test_link_domain(
        self,
        store: SQLiteConversationStore,
        make_chat: ChatFactory,
        make_message: MessageFactory,
    ) -> None:
        store.save_chat(make_chat(RICH))
        store.save_messages([make_message("m1", RICH, 1, text="read https://www.example.com/a?b=c")])

        conversation = _assemble_chat(store, RICH)
        assert conversation is not None
        assert conversation.message_type is MessageType.LINK
        assert conversation.link_domain == "example.com"
        assert conversation.preview_text == "read https://www.example.com/a?b=c"


class TestFlags:
    """Test typing, snooze and draft flags."""

    def test_typing(self, store: SQLiteConversationStore, make_chat: ChatFactory) -> None:
        chat = make_chat(RICH)
        store.save_chat(chat)
        data = BatchFetcher(store).fetch(chat_guids=[RICH])

        conversation = ConversationAssembler().assemble_chat(chat, data, typing={RICH})
        assert conversation is not None
        assert conversation.is_typing is True

    def test_snooze_uses_clock(self, store: SQLiteConversationStore, make_chat: ChatFactory) -> None:
        store.save_chat(make_chat(RICH, snooze_until=1_000))

        snoozed = _assemble_chat(store, RICH, clock=lambda: 500)
        expired = _assemble_chat(store, RICH, clock=lambda: 2_000)
        assert snoozed is not None and snoozed.is_snoozed is True
        assert expired is not None and expired.is_snoozed is False

    def test_draft(self, store: SQLiteConversationStore, make_chat: ChatFactory) -> None:
        store.save_chat(make_chat(RICH, draft_text="half a thought"))

        conversation = _assemble_chat(store, RICH)
        assert conversation is not None
        assert conversation.has_draft is True
        assert conversation.draft_text == "half a thought"

    def test_archived_chat_is_skipped(
        self, store: SQLiteConversationStore, make_chat: ChatFactory
    ) -> None:
        store.save_chat(make_chat(RICH, is_archived=True))
        assert _assemble_chat(store, RICH) is None
