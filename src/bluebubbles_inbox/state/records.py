"""Records held in the local conversation store."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict

# BlueBubbles marks locally created, not yet acknowledged messages this way
PROVISIONAL_GUID_PREFIX = "temp-"


class ChannelType(str, Enum):
    """Transport a channel conversation belongs to."""

    IMESSAGE = "iMessage"
    RCS = "RCS"
    SMS = "SMS"
    MMS = "MMS"
    UNKNOWN = "unknown"

    @classmethod
    def from_guid(cls, guid: str) -> ChannelType:
        """Get the channel from a guid such as ``iMessage;-;+15551230000``."""
        prefix = guid.split(";", 1)[0].strip().lower()
        return _GUID_PREFIXES.get(prefix, cls.UNKNOWN)

    @property
    def is_rich(self) -> bool:
        return self is ChannelType.IMESSAGE


_GUID_PREFIXES = {
    "imessage": ChannelType.IMESSAGE,
    "rich": ChannelType.IMESSAGE,
    "rcs": ChannelType.RCS,
    "sms": ChannelType.SMS,
    "mms": ChannelType.MMS,
}


class ConversationCategory(str, Enum):
    """The three independently paged slices of the conversation list."""

    UNIFIED_GROUPS = "unified_groups"
    GROUP_CHATS = "group_chats"
    DIRECT_CHATS = "direct_chats"


class ChannelConversation(BaseModel):
    """One per-transport conversation thread."""

    model_config = ConfigDict(frozen=True)

    guid: str
    chat_identifier: str | None = None
    display_name: str | None = None
    is_group: bool = False
    last_message_date: int | None = None
    unread_count: int = 0
    is_pinned: bool = False
    is_muted: bool = False
    is_archived: bool = False
    date_deleted: int | None = None
    draft_text: str | None = None
    snooze_until: int | None = None
    avatar_path: str | None = None

    @property
    def channel(self) -> ChannelType:
        return ChannelType.from_guid(self.guid)

    @property
    def address(self) -> str:
        """The remote address (or group identifier) of this conversation."""
        if self.chat_identifier:
            return self.chat_identifier
        return self.guid.rsplit(";", 1)[-1]

    @property
    def is_live(self) -> bool:
        """Live conversations are neither archived nor soft-deleted."""
        return not self.is_archived and self.date_deleted is None


class Message(BaseModel):
    """The parts of a message the conversation list needs."""

    model_config = ConfigDict(frozen=True)

    guid: str
    chat_guid: str
    handle_id: int | None = None
    text: str | None = None
    date_created: int
    is_from_me: bool = False
    has_attachments: bool = False
    associated_message_guid: str | None = None
    associated_message_type: int | None = None
    item_type: int = 0
    group_action_type: int = 0
    group_title: str | None = None
    date_deleted: int | None = None
    date_delivered: int | None = None
    date_read: int | None = None
    error: int = 0
    balloon_bundle_id: str | None = None
    expressive_send_style_id: str | None = None

    @property
    def is_reaction(self) -> bool:
        """Check if this message is a reaction/tapback."""
        return self.associated_message_type is not None and self.associated_message_type >= 2000

    @property
    def is_group_event(self) -> bool:
        """Participant, name or photo changes in a group chat."""
        return self.item_type in (1, 2, 3)

    @property
    def is_deleted(self) -> bool:
        return self.date_deleted is not None

    @property
    def is_provisional(self) -> bool:
        return self.guid.startswith(PROVISIONAL_GUID_PREFIX)

    @property
    def reaction_target_guid(self) -> str | None:
        """Guid of the message a reaction points at, without the ``p:0/`` part prefix."""
        if not self.associated_message_guid:
            return None
        return self.associated_message_guid.rsplit("/", 1)[-1]


class Participant(BaseModel):
    """A handle taking part in a conversation."""

    model_config = ConfigDict(frozen=True)

    id: int
    address: str
    cached_display_name: str | None = None
    cached_avatar_path: str | None = None
    inferred_name: str | None = None
    is_self: bool = False
    last_message_date: int | None = None

    @property
    def has_inferred_name(self) -> bool:
        return bool(self.inferred_name) and not self.cached_display_name


class Attachment(BaseModel):
    """Metadata for a message attachment."""

    model_config = ConfigDict(frozen=True)

    guid: str
    message_guid: str
    mime_type: str | None = None
    uti: str | None = None
    transfer_name: str | None = None
    total_bytes: int = 0
    is_sticker: bool = False
    has_live_photo: bool = False

    @property
    def is_image(self) -> bool:
        """Check if attachment is an image."""
        if self.mime_type:
            return self.mime_type.startswith("image/")
        if self.uti:
            return "image" in self.uti.lower()
        return False

    @property
    def is_video(self) -> bool:
        """Check if attachment is a video."""
        if self.mime_type:
            return self.mime_type.startswith("video/")
        if self.uti:
            return "video" in self.uti.lower() or "movie" in self.uti.lower()
        return False

    @property
    def is_audio(self) -> bool:
        """Check if attachment is audio."""
        if self.mime_type:
            return self.mime_type.startswith("audio/")
        if self.uti:
            return "audio" in self.uti.lower()
        return False

    @property
    def extension(self) -> str | None:
        if self.transfer_name and "." in self.transfer_name:
            return self.transfer_name.rsplit(".", 1)[-1].lower()
        return None


class UnifiedConversationGroup(BaseModel):
    """
    A logical conversation merging channel conversations with one contact.

    Only explicit overrides are stored here. Everything else shown in the
    list (latest message, unread count, name) is derived from the members.
    """

    model_config = ConfigDict(frozen=True)

    id: int
    canonical_key: str
    primary_chat_guid: str
    display_name: str | None = None
    avatar_path: str | None = None
    unread_override: int | None = None
    is_pinned: bool = False
    is_muted: bool = False
    snooze_until: int | None = None
    category: str | None = None
