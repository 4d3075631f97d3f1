"""Push events the conversation list reacts to."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class NewMessage:
    chat_guid: str


@dataclass(frozen=True)
class MessageUpdated:
    """A message was delivered, read, edited or reacted to."""
    chat_guid: str


@dataclass(frozen=True)
class ChatReadStatusChanged:
    chat_guid: str
    is_read: bool


@dataclass(frozen=True)
class TypingIndicator:
    chat_guid: str
    is_typing: bool


PushEvent = NewMessage | MessageUpdated | ChatReadStatusChanged | TypingIndicator
