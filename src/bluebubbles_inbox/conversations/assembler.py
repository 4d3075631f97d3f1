"""Turns groups and chats plus batched data into conversation view models."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Collection, Iterable, Sequence
from typing import Any

from ..errors import AssemblyError
from ..state.records import (
    Attachment,
    ChannelConversation,
    Message,
    Participant,
    UnifiedConversationGroup,
)
from ..utils.links import first_url
from ..utils.phone import DEFAULT_REGION, canonical_key, format_address
from .batch import BatchResult
from .formatters import (
    PREVIEW_PHRASES,
    MessageType,
    classify_message,
    document_type_name,
    extract_first_name,
    format_attachment_count,
    format_with_sender_prefix,
    generic_attachment_name,
    group_event_text,
    is_invisible_ink,
    message_status,
    reaction_preview,
)
from .models import ConversationViewModel, unified_id

logger = logging.getLogger(__name__)

INFERRED_NAME_PREFIX = "Maybe: "
GROUP_TITLE_NAMES = 3


def _now_ms() -> int:
    return int(time.time() * 1000)


def best_participant(participants: Iterable[Participant]) -> Participant | None:
    """The other participant who messaged most recently."""
    others = [p for p in participants if not p.is_self]
    if not others:
        return None
    return min(others, key=lambda p: (-(p.last_message_date or 0), p.id))


def _latest_of(messages: Iterable[Message]) -> Message | None:
    return max(messages, key=lambda m: (m.date_created, m.guid), default=None)


class ConversationAssembler:
    """
    Builds one view model per unified group or standalone chat.

    Assembly only reads from the batch it is given, so a page can be
    assembled without touching the store again.
    """

    def __init__(
        self,
        region: str = DEFAULT_REGION,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._region = region
        self._clock = clock

    def assemble_page(
        self,
        groups: Sequence[UnifiedConversationGroup],
        chats: Sequence[ChannelConversation],
        data: BatchResult,
        typing: Collection[str] = frozenset(),
    ) -> list[ConversationViewModel]:
        """Assemble every entry of a page, skipping entries that fail."""
        results: list[ConversationViewModel] = []
        for group in groups:
            try:
                conversation = self.assemble_group(group, data, typing)
            except AssemblyError as e:
                logger.warning("Skipping conversation: %s", e)
                continue
            if conversation is not None:
                results.append(conversation)
        for chat in chats:
            try:
                conversation = self.assemble_chat(chat, data, typing)
            except AssemblyError as e:
                logger.warning("Skipping conversation: %s", e)
                continue
            if conversation is not None:
                results.append(conversation)
        return results

    def assemble_group(
        self,
        group: UnifiedConversationGroup,
        data: BatchResult,
        typing: Collection[str] = frozenset(),
    ) -> ConversationViewModel | None:
        """
        Assemble a unified group.

        Returns None when none of the members is live any more.
        """
        conversation_id = unified_id(group.id)
        member_guids = data.members.get(group.id)
        if not member_guids:
            raise AssemblyError(conversation_id, "group has no members")

        try:
            members = [data.chats[guid] for guid in member_guids if guid in data.chats]
            live = [m for m in members if m.is_live]
            if not live:
                return None

            primary = next((m for m in live if m.guid == group.primary_chat_guid), live[0])
            ordered = [primary] + [m for m in live if m is not primary]

            unread = group.unread_override
            if unread is None:
                unread = sum(m.unread_count for m in live)

            return self._build(
                conversation_id=conversation_id,
                primary=primary,
                members=ordered,
                data=data,
                typing=typing,
                group_id=group.id,
                name_override=group.display_name,
                avatar_override=group.avatar_path,
                unread_count=unread,
                is_pinned=group.is_pinned or any(m.is_pinned for m in live),
                is_muted=group.is_muted or all(m.is_muted for m in live),
                snooze_until=group.snooze_until or primary.snooze_until,
                category=group.category,
            )
        except AssemblyError:
            raise
        except Exception as e:
            raise AssemblyError(conversation_id, str(e)) from e

    def assemble_chat(
        self,
        chat: ChannelConversation,
        data: BatchResult,
        typing: Collection[str] = frozenset(),
    ) -> ConversationViewModel | None:
        """Assemble a chat that is not part of a unified group."""
        chat = data.chats.get(chat.guid, chat)
        if not chat.is_live:
            return None
        try:
            return self._build(
                conversation_id=chat.guid,
                primary=chat,
                members=[chat],
                data=data,
                typing=typing,
                group_id=None,
                name_override=None,
                avatar_override=None,
                unread_count=chat.unread_count,
                is_pinned=chat.is_pinned,
                is_muted=chat.is_muted,
                snooze_until=chat.snooze_until,
                category=None,
            )
        except Exception as e:
            raise AssemblyError(chat.guid, str(e)) from e

    def _build(
        self,
        *,
        conversation_id: str,
        primary: ChannelConversation,
        members: Sequence[ChannelConversation],
        data: BatchResult,
        typing: Collection[str],
        group_id: int | None,
        name_override: str | None,
        avatar_override: str | None,
        unread_count: int,
        is_pinned: bool,
        is_muted: bool,
        snooze_until: int | None,
        category: str | None,
    ) -> ConversationViewModel:
        participants = self._participants(members, data)
        latest = _latest_of(
            data.latest_messages[m.guid] for m in members if m.guid in data.latest_messages
        )
        timestamp = latest.date_created if latest else max(
            (m.last_message_date or 0 for m in members), default=0
        )

        display_name, inferred = self._display_name(primary, name_override, participants)
        best = best_participant(participants)
        draft = next((m.draft_text for m in members if m.draft_text), None)

        fields: dict[str, Any] = {}
        if latest is not None:
            fields = self._describe_message(latest, primary.is_group, participants, data)

        return ConversationViewModel(
            guid=conversation_id,
            display_name=display_name,
            avatar_path=(
                avatar_override
                or primary.avatar_path
                or (best.cached_avatar_path if best and not primary.is_group else None)
            ),
            last_message_timestamp=timestamp,
            unread_count=unread_count,
            is_pinned=is_pinned,
            is_muted=is_muted,
            is_typing=any(m.guid in typing for m in members),
            is_snoozed=snooze_until is not None and snooze_until > self._clock(),
            is_group=primary.is_group,
            member_guids=tuple(m.guid for m in members),
            primary_guid=primary.guid,
            group_id=group_id,
            address=primary.address,
            contact_key=(
                None if primary.is_group else canonical_key(primary.address, self._region)
            ),
            has_inferred_name=inferred is not None,
            inferred_name=inferred,
            draft_text=draft,
            category=category,
            **fields,
        )

    def _participants(
        self, members: Sequence[ChannelConversation], data: BatchResult
    ) -> list[Participant]:
        """Participants across all members, keeping each handle's latest activity."""
        by_id: dict[int, Participant] = {}
        for member in members:
            for participant in data.participants.get(member.guid, ()):
                seen = by_id.get(participant.id)
                if seen is None or (participant.last_message_date or 0) > (seen.last_message_date or 0):
                    by_id[participant.id] = participant
        return list(by_id.values())

    def _display_name(
        self,
        primary: ChannelConversation,
        name_override: str | None,
        participants: Sequence[Participant],
    ) -> tuple[str, str | None]:
        """Returns the name to show and the inferred name, if that is what was used."""
        for name in (name_override, primary.display_name):
            if name and name.strip():
                return name.strip(), None

        if primary.is_group:
            return self._group_title(participants), None

        best = best_participant(participants)
        if best is not None:
            if best.cached_display_name and best.cached_display_name.strip():
                return best.cached_display_name.strip(), None
            if best.inferred_name and best.inferred_name.strip():
                inferred = best.inferred_name.strip()
                return f"{INFERRED_NAME_PREFIX}{inferred}", inferred
        return format_address(primary.address, self._region), None

    def _group_title(self, participants: Sequence[Participant]) -> str:
        """Title an unnamed group chat after its members, e.g. ``Ann, Bob, Cy +2``."""
        names = [self._short_name(p) for p in participants if not p.is_self]
        if not names:
            return "Group Chat"
        title = ", ".join(names[:GROUP_TITLE_NAMES])
        if len(names) > GROUP_TITLE_NAMES:
            title += f" +{len(names) - GROUP_TITLE_NAMES}"
        return title

    def _short_name(self, participant: Participant) -> str:
        if participant.cached_display_name:
            return extract_first_name(participant.cached_display_name)
        return format_address(participant.address, self._region)

    def _describe_message(
        self,
        message: Message,
        is_group: bool,
        participants: Sequence[Participant],
        data: BatchResult,
    ) -> dict[str, Any]:
        attachments: Sequence[Attachment] = data.attachments.get(message.guid, ())
        message_type = classify_message(message, attachments)
        sender = next((p for p in participants if p.id == message.handle_id), None)
        sender_name = None
        if sender is not None and not message.is_from_me:
            sender_name = self._short_name(sender)

        invisible = is_invisible_ink(message)
        document_type = None
        if message_type is MessageType.DOCUMENT:
            document_type = document_type_name(attachments[0].mime_type, attachments[0].extension)
        link_domain = None
        text = (message.text or "").strip()

        if message_type is MessageType.DELETED:
            content = PREVIEW_PHRASES[MessageType.DELETED]
        elif invisible:
            if message_type in (MessageType.IMAGE, MessageType.VIDEO, MessageType.LIVE_PHOTO):
                content = "Image sent with Invisible Ink"
            else:
                content = "Message sent with Invisible Ink"
        elif message_type is MessageType.REACTION:
            target = data.reaction_targets.get(message.reaction_target_guid or "")
            content = reaction_preview(message, target)
        elif message_type is MessageType.GROUP_EVENT:
            actor = None
            if sender is not None:
                actor = sender.cached_display_name or format_address(sender.address, self._region)
            content = group_event_text(message, actor)
        elif text:
            content = text
        elif message_type is MessageType.DOCUMENT:
            content = document_type or PREVIEW_PHRASES[MessageType.DOCUMENT]
        elif message_type in (MessageType.IMAGE, MessageType.VIDEO):
            content = format_attachment_count(len(attachments), PREVIEW_PHRASES[message_type])
        elif message_type is MessageType.ATTACHMENT and attachments:
            content = generic_attachment_name(attachments[0].mime_type, attachments[0].extension)
        else:
            content = PREVIEW_PHRASES.get(message_type, "")

        if message_type is MessageType.LINK:
            detected = first_url(text)
            link_domain = detected.domain if detected else None

        return {
            "preview_text": format_with_sender_prefix(
                content, message.is_from_me, is_group, sender_name
            ),
            "message_type": message_type,
            "message_status": message_status(message),
            "is_from_me": message.is_from_me,
            "sender_name": sender_name,
            "document_type": document_type,
            "attachment_count": len(attachments),
            "is_invisible_ink": invisible,
            "link_domain": link_domain,
        }
