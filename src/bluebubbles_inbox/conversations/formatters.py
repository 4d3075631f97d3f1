"""Message classification and preview text for the conversation list."""

from __future__ import annotations

import re
from collections.abc import Sequence
from enum import Enum

from ..state.records import Attachment, Message
from ..utils.links import first_url


class MessageType(str, Enum):
    """What the latest message of a conversation looks like."""
    TEXT = "text"
    LINK = "link"
    IMAGE = "image"
    LIVE_PHOTO = "live_photo"
    GIF = "gif"
    VIDEO = "video"
    AUDIO = "audio"
    VOICE_MESSAGE = "voice_message"
    STICKER = "sticker"
    CONTACT = "contact"
    LOCATION = "location"
    DOCUMENT = "document"
    ATTACHMENT = "attachment"
    APP_MESSAGE = "app_message"
    REACTION = "reaction"
    GROUP_EVENT = "group_event"
    DELETED = "deleted"


class MessageStatus(str, Enum):
    """Delivery state of an outgoing message."""
    NONE = "none"
    SENDING = "sending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"


PREVIEW_PHRASES = {
    MessageType.IMAGE: "Photo",
    MessageType.LIVE_PHOTO: "Live Photo",
    MessageType.GIF: "GIF",
    MessageType.VIDEO: "Video",
    MessageType.AUDIO: "Audio",
    MessageType.VOICE_MESSAGE: "Voice message",
    MessageType.STICKER: "Sticker",
    MessageType.CONTACT: "Contact",
    MessageType.DOCUMENT: "Document",
    MessageType.LOCATION: "Location",
    MessageType.APP_MESSAGE: "App message",
    MessageType.ATTACHMENT: "File",
    MessageType.LINK: "Link",
    MessageType.DELETED: "Message deleted",
    MessageType.REACTION: "Reacted to a message",
    MessageType.GROUP_EVENT: "Group updated",
}

# Indexed by associated_message_type - 2000
TAPBACK_VERBS = ("Loved", "Liked", "Disliked", "Laughed at", "Emphasized", "Questioned")

REACTION_TARGET_LENGTH = 30

_COORDINATES = re.compile(r"-?\d+\.\d+,\s*-?\d+\.\d+")
_MAP_HOSTS = ("maps.apple.com", "maps.google.com", "goo.gl/maps")
_VCARD_TYPES = ("text/vcard", "text/x-vcard")
_INVISIBLE_INK = "invisibleink"


def is_voice_message(attachment: Attachment) -> bool:
    """Check if audio attachment is a voice message (by UTI or filename pattern)."""
    uti = (attachment.uti or "").lower()
    name = (attachment.transfer_name or "").lower()
    # Voice memos are recorded as .caf
    return "voice" in uti or name.startswith("audio message") or name.endswith(".caf")


def is_gif(attachment: Attachment) -> bool:
    return (attachment.mime_type or "").lower() == "image/gif"


def is_vlocation(attachment: Attachment) -> bool:
    """Check if attachment is a shared location card."""
    uti = (attachment.uti or "").lower()
    mime_type = (attachment.mime_type or "").lower()
    name = (attachment.transfer_name or "").lower()
    return (
        uti == "public.vlocation"
        or mime_type == "text/x-vlocation"
        or name.endswith(".loc.vcf")
    )


def is_vcard(attachment: Attachment) -> bool:
    return (attachment.mime_type or "").lower() in _VCARD_TYPES


def is_document_type(mime_type: str | None) -> bool:
    """Check if mime type represents a document file."""
    if not mime_type:
        return False
    mime_type = mime_type.lower()
    return (
        mime_type.startswith("application/pdf")
        or "document" in mime_type
        or "spreadsheet" in mime_type
        or "presentation" in mime_type
        or mime_type.startswith("application/msword")
        or mime_type.startswith("application/vnd.ms-")
        or mime_type.startswith("application/vnd.openxmlformats")
    )


def contains_location(text: str) -> bool:
    """Check if text contains coordinates or a map link."""
    return any(host in text for host in _MAP_HOSTS) or bool(_COORDINATES.search(text))


def classify_attachment(attachment: Attachment) -> MessageType:
    if attachment.is_sticker:
        return MessageType.STICKER
    if is_vlocation(attachment):
        return MessageType.LOCATION
    if is_vcard(attachment):
        return MessageType.CONTACT
    if attachment.is_image and attachment.has_live_photo:
        return MessageType.LIVE_PHOTO
    if is_gif(attachment):
        return MessageType.GIF
    if attachment.is_image:
        return MessageType.IMAGE
    if attachment.is_video:
        return MessageType.VIDEO
    if attachment.is_audio and is_voice_message(attachment):
        return MessageType.VOICE_MESSAGE
    if attachment.is_audio:
        return MessageType.AUDIO
    if is_document_type(attachment.mime_type):
        return MessageType.DOCUMENT
    return MessageType.ATTACHMENT


def classify_message(message: Message, attachments: Sequence[Attachment] = ()) -> MessageType:
    """
    Classify a message for the conversation list.

    The checks run in a fixed priority order: deleted, reaction, group
    event, link, app message, attachment (by its first attachment),
    location in text, and finally plain text.
    """
    text = message.text or ""
    if message.is_deleted:
        return MessageType.DELETED
    if message.is_reaction:
        return MessageType.REACTION
    if message.is_group_event:
        return MessageType.GROUP_EVENT
    if first_url(text) is not None:
        return MessageType.LINK
    if message.balloon_bundle_id and message.balloon_bundle_id.strip():
        return MessageType.APP_MESSAGE
    if attachments:
        return classify_attachment(attachments[0])
    if message.has_attachments:
        return MessageType.ATTACHMENT
    if contains_location(text):
        return MessageType.LOCATION
    return MessageType.TEXT


def message_status(message: Message | None) -> MessageStatus:
    """Delivery status shown next to outgoing messages."""
    if message is None or not message.is_from_me:
        return MessageStatus.NONE
    if message.is_provisional:
        return MessageStatus.SENDING
    if message.date_read is not None:
        return MessageStatus.READ
    if message.date_delivered is not None:
        return MessageStatus.DELIVERED
    if message.error == 0:
        return MessageStatus.SENT
    return MessageStatus.NONE


def is_invisible_ink(message: Message) -> bool:
    return _INVISIBLE_INK in (message.expressive_send_style_id or "").lower()


def extract_first_name(full_name: str) -> str:
    """
    Get the first word of a name that contains letters.

    Leading emoji and punctuation are skipped, so ``"🎉 Ann Lee"`` gives ``"Ann"``.
    """
    words = full_name.strip().split()
    for word in words:
        cleaned = "".join(ch for ch in word if ch.isalnum())
        if cleaned and any(ch.isalpha() for ch in cleaned):
            return cleaned
    if words:
        return "".join(ch for ch in words[0] if ch.isalnum()) or full_name
    return full_name


def document_type_name(mime_type: str | None, extension: str | None) -> str:
    mime_type = (mime_type or "").lower()
    if "pdf" in mime_type:
        return "PDF"
    if "word" in mime_type or extension in ("doc", "docx"):
        return "Document"
    if "excel" in mime_type or "spreadsheet" in mime_type:
        return "Spreadsheet"
    if "powerpoint" in mime_type or "presentation" in mime_type:
        return "Presentation"
    return "File"


def generic_attachment_name(mime_type: str | None, extension: str | None) -> str:
    """Describe an attachment that matched no known category."""
    mime_type = (mime_type or "").lower()
    ext = (extension or "").lower()

    if "zip" in mime_type or ext == "zip":
        return "Zip file"
    if "rar" in mime_type or ext == "rar":
        return "RAR archive"
    if "7z" in mime_type or ext == "7z":
        return "7z archive"
    if "tar" in mime_type or "gzip" in mime_type or ext in ("tar", "gz"):
        return "Archive"
    if mime_type == "application/vnd.android.package-archive" or ext == "apk":
        return "Android app"
    if mime_type == "text/plain" or ext == "txt":
        return "Text file"
    if mime_type == "text/html" or ext in ("html", "htm"):
        return "HTML file"
    if mime_type == "text/csv" or ext == "csv":
        return "CSV file"
    if "json" in mime_type or ext == "json":
        return "JSON file"
    if "xml" in mime_type or ext == "xml":
        return "XML file"
    if "font" in mime_type or ext in ("ttf", "otf", "woff", "woff2"):
        return "Font file"
    if ext:
        return f"{ext.upper()} file"
    return "File"


def format_attachment_count(count: int, singular: str) -> str:
    """Pluralize an attachment label, e.g. "Photo" or "3 Photos"."""
    if count <= 1:
        return singular
    return f"{count} {singular}s"


def tapback_verb(associated_message_type: int | None) -> str:
    if associated_message_type is None:
        return "Reacted to"
    if associated_message_type >= 3000:
        return "Removed a reaction from"
    index = associated_message_type - 2000
    if 0 <= index < len(TAPBACK_VERBS):
        return TAPBACK_VERBS[index]
    return "Reacted to"


def reaction_preview(message: Message, target: Message | None) -> str:
    """E.g. ``Loved "see you at 8"``."""
    if target is not None and target.text:
        original = target.text
        if len(original) > REACTION_TARGET_LENGTH:
            original = original[:REACTION_TARGET_LENGTH] + "..."
        subject = f'"{original}"'
    elif target is not None and target.has_attachments:
        subject = "an attachment"
    else:
        subject = "a message"
    return f"{tapback_verb(message.associated_message_type)} {subject}"


def group_event_text(message: Message, actor_name: str | None) -> str:
    if message.item_type == 1:
        name = extract_first_name(actor_name) if actor_name else "Someone"
        if message.group_action_type == 0:
            return f"{name} joined the group"
        if message.group_action_type == 1:
            return f"{name} left the group"
        return "Group membership changed"
    if message.item_type == 2:
        if message.group_title:
            return f'Name changed to "{message.group_title}"'
        return "Group name changed"
    if message.item_type == 3:
        return "Group photo changed"
    return PREVIEW_PHRASES[MessageType.GROUP_EVENT]


def format_with_sender_prefix(
    content: str,
    is_from_me: bool,
    is_group: bool,
    sender_first_name: str | None,
) -> str:
    """Prefix with "You: " for our own messages, or the sender's first name in groups."""
    if is_from_me:
        return f"You: {content}"
    if is_group and sender_first_name:
        return f"{sender_first_name}: {content}"
    return content
