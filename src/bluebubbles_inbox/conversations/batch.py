"""Batched lookups backing one page of the conversation list."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from ..state.records import Attachment, ChannelConversation, Message, Participant
from ..state.store import ConversationStore


@dataclass(frozen=True)
class BatchResult:
    """
    Everything needed to assemble a page.

    Ids with no data are absent from the maps. Absence means "nothing
    known yet" and is not an error.
    """

    members: Mapping[int, tuple[str, ...]] = field(default_factory=dict)
    chats: Mapping[str, ChannelConversation] = field(default_factory=dict)
    latest_messages: Mapping[str, Message] = field(default_factory=dict)
    participants: Mapping[str, tuple[Participant, ...]] = field(default_factory=dict)
    attachments: Mapping[str, tuple[Attachment, ...]] = field(default_factory=dict)
    reaction_targets: Mapping[str, Message] = field(default_factory=dict)


class BatchFetcher:
    """
    Loads supporting data for many conversations at once.

    The number of store calls is fixed regardless of how many ids are
    requested. The store splits very large id lists into chunks.
    """

    def __init__(self, store: ConversationStore) -> None:
        self._store = store

    def fetch(
        self,
        group_ids: Iterable[int] = (),
        chat_guids: Iterable[str] = (),
    ) -> BatchResult:
        group_ids = list(dict.fromkeys(group_ids))
        members = self._store.get_group_members(group_ids) if group_ids else {}

        member_guids = (guid for guids in members.values() for guid in guids)
        guids = list(dict.fromkeys([*chat_guids, *member_guids]))
        if not guids:
            return BatchResult(members={k: tuple(v) for k, v in members.items()})

        chats = self._store.get_chats(guids)
        latest = self._store.get_latest_messages(guids)
        participants = self._store.get_participants(guids)
        attachments = self._store.get_attachments([m.guid for m in latest.values()])

        target_guids = [
            m.reaction_target_guid for m in latest.values()
            if m.is_reaction and m.reaction_target_guid
        ]
        targets = self._store.get_messages(target_guids) if target_guids else {}

        return BatchResult(
            members={k: tuple(v) for k, v in members.items()},
            chats=chats,
            latest_messages=latest,
            participants={k: tuple(v) for k, v in participants.items()},
            attachments={k: tuple(v) for k, v in attachments.items()},
            reaction_targets=targets,
        )
