"""Pydantic models for BlueBubbles API responses."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..state import records

# Reaction names the server may send instead of numeric codes
REACTION_CODES = {
    "love": 2000,
    "like": 2001,
    "dislike": 2002,
    "laugh": 2003,
    "emphasize": 2004,
    "question": 2005,
    "-love": 3000,
    "-like": 3001,
    "-dislike": 3002,
    "-laugh": 3003,
    "-emphasize": 3004,
    "-question": 3005,
}


class Handle(BaseModel):
    """Represents a contact/phone number."""

    model_config = ConfigDict(populate_by_name=True)

    original_row_id: int = Field(alias="originalROWID")
    address: str
    country: str | None = None
    service: str = "iMessage"
    uncanonical_id: str | None = Field(default=None, alias="uncanonicalizedId")

    def to_record(self) -> records.Participant:
        return records.Participant(id=self.original_row_id, address=self.address)


class Attachment(BaseModel):
    """Represents a message attachment (image, file, etc.)."""

    model_config = ConfigDict(populate_by_name=True)

    original_row_id: int = Field(alias="originalROWID")
    guid: str
    uti: str | None = None
    mime_type: str | None = Field(default=None, alias="mimeType")
    transfer_name: str | None = Field(default=None, alias="transferName")
    total_bytes: int = Field(default=0, alias="totalBytes")
    is_sticker: bool = Field(default=False, alias="isSticker")
    has_live_photo: bool = Field(default=False, alias="hasLivePhoto")

    def to_record(self, message_guid: str) -> records.Attachment:
        return records.Attachment(
            guid=self.guid,
            message_guid=message_guid,
            mime_type=self.mime_type,
            uti=self.uti,
            transfer_name=self.transfer_name,
            total_bytes=self.total_bytes,
            is_sticker=self.is_sticker,
            has_live_photo=self.has_live_photo,
        )


class Message(BaseModel):
    """Represents an iMessage/SMS message."""

    model_config = ConfigDict(populate_by_name=True)

    original_row_id: int = Field(alias="originalROWID")
    guid: str
    text: str | None = None
    is_from_me: bool = Field(alias="isFromMe")
    date_created: int = Field(alias="dateCreated")
    date_read: int | None = Field(default=None, alias="dateRead")
    date_delivered: int | None = Field(default=None, alias="dateDelivered")
    date_retracted: int | None = Field(default=None, alias="dateRetracted")
    has_attachments: bool = Field(default=False, alias="hasAttachments")
    attachments: list[Attachment] = Field(default_factory=list)
    associated_message_guid: str | None = Field(default=None, alias="associatedMessageGuid")
    associated_message_type: int | None = Field(default=None, alias="associatedMessageType")
    expression_id: str | None = Field(default=None, alias="expressiveSendStyleId")
    balloon_bundle_id: str | None = Field(default=None, alias="balloonBundleId")
    item_type: int = Field(default=0, alias="itemType")
    group_action_type: int = Field(default=0, alias="groupActionType")
    group_title: str | None = Field(default=None, alias="groupTitle")
    handle: Handle | None = None
    handle_id: int = Field(default=0, alias="handleId")
    chat_guid: str | None = Field(default=None, alias="chats")
    error: int = 0

    @field_validator("chat_guid", mode="before")
    @classmethod
    def extract_chat_guid(cls, v: Any) -> str | None:
        """Extract chat GUID from chats array if present."""
        if isinstance(v, list):
            if len(v) == 0:
                return None
            if isinstance(v[0], dict):
                return v[0].get("guid")
            return str(v[0])
        if v is None or v == "":
            return None
        return v

    @field_validator("associated_message_type", mode="before")
    @classmethod
    def parse_associated_message_type(cls, v: Any) -> int | None:
        """Convert string reaction types to integers."""
        if v is None or isinstance(v, int):
            return v
        if isinstance(v, str):
            code = REACTION_CODES.get(v.lower().strip())
            if code is not None:
                return code
            try:
                return int(v)
            except ValueError:
                return None
        return None

    @property
    def is_reaction(self) -> bool:
        """Check if this message is a reaction/tapback."""
        return self.associated_message_type is not None and self.associated_message_type >= 2000

    def to_record(self, chat_guid: str | None = None) -> records.Message:
        """Convert to a store record. ``chat_guid`` wins over the payload's chat."""
        owner = chat_guid or self.chat_guid
        if owner is None:
            raise ValueError(f"Message {self.guid} has no chat")
        return records.Message(
            guid=self.guid,
            chat_guid=owner,
            handle_id=self.handle_id or None,
            text=self.text,
            date_created=self.date_created,
            is_from_me=self.is_from_me,
            has_attachments=self.has_attachments or bool(self.attachments),
            associated_message_guid=self.associated_message_guid,
            associated_message_type=self.associated_message_type,
            item_type=self.item_type,
            group_action_type=self.group_action_type,
            group_title=self.group_title,
            date_deleted=self.date_retracted,
            date_delivered=self.date_delivered,
            date_read=self.date_read,
            error=self.error,
            balloon_bundle_id=self.balloon_bundle_id,
            expressive_send_style_id=self.expression_id,
        )


class Chat(BaseModel):
    """Represents a conversation/chat."""

    model_config = ConfigDict(populate_by_name=True)

    original_row_id: int = Field(alias="originalROWID")
    guid: str
    chat_identifier: str = Field(alias="chatIdentifier")
    display_name: str | None = Field(default=None, alias="displayName")
    is_archived: bool = Field(default=False, alias="isArchived")
    is_filtered: bool = Field(default=False, alias="isFiltered")
    is_group: bool = Field(default=False, alias="isGroup")
    participants: list[Handle] = Field(default_factory=list)
    last_message: Message | None = Field(default=None, alias="lastMessage")

    @property
    def looks_like_group(self) -> bool:
        """Older servers omit ``isGroup``; fall back to the guid style and participant count."""
        return self.is_group or ";+;" in self.guid or len(self.participants) > 1

    def to_record(self) -> records.ChannelConversation:
        return records.ChannelConversation(
            guid=self.guid,
            chat_identifier=self.chat_identifier,
            display_name=self.display_name or None,
            is_group=self.looks_like_group,
            is_archived=self.is_archived,
            last_message_date=self.last_message.date_created if self.last_message else None,
        )


class ServerInfo(BaseModel):
    """BlueBubbles server information."""

    model_config = ConfigDict(populate_by_name=True)

    os_version: str = Field(alias="os_version")
    server_version: str = Field(alias="server_version")
    private_api: bool = Field(alias="private_api")
    proxy_service: str = Field(alias="proxy_service")
    helper_connected: bool = Field(alias="helper_connected")
    detected_icloud: str | None = Field(default=None, alias="detected_icloud")


class ApiResponse(BaseModel):
    """Standard BlueBubbles API response wrapper."""

    status: int
    message: str
    data: Any = None
    error: dict[str, str] | None = None

    @property
    def is_success(self) -> bool:
        """Check if the response indicates success."""
        return 200 <= self.status < 300
