"""Exception types raised inside the conversation engine."""

from __future__ import annotations


class InboxError(Exception):
    """Base exception for engine errors."""


class StoreError(InboxError):
    """A query against the local store failed."""


class GroupingAmbiguity(InboxError):
    """An address could not be normalized to a single contact key."""

    def __init__(self, address: str | None, reason: str) -> None:
        super().__init__(f"Cannot group {address!r}: {reason}")
        self.address = address
        self.reason = reason


class StageError(InboxError):
    """A background sync stage failed."""

    def __init__(self, stage: str, message: str) -> None:
        super().__init__(message)
        self.stage = stage


class AssemblyError(InboxError):
    """A single conversation could not be turned into a view model."""

    def __init__(self, conversation_id: str, message: str) -> None:
        super().__init__(f"{conversation_id}: {message}")
        self.conversation_id = conversation_id
