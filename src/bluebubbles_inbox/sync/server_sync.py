"""Primary sync stage: pull chats from the BlueBubbles server into the store."""

from __future__ import annotations

import asyncio
import logging
import time

from ..api.client import BlueBubblesClient, BlueBubblesError
from ..api.models import Chat, Message
from ..conversations.grouping import UnifiedGroupingIndex
from ..errors import StageError, StoreError
from ..state.store import SQLiteConversationStore
from .progress import StageState, SyncProgressAggregator, SyncStage

logger = logging.getLogger(__name__)

SYNC_BATCH_SIZE = 50
LAST_SYNC_KEY = "last_full_sync"


class ServerSyncStage:
    """
    Pages every chat from the server, with participants and last message.

    Chats are grouped as they arrive so the list can show unified
    conversations while the sync is still running. Progress is reported
    to the aggregator as the primary stage.
    """

    stage = SyncStage.PRIMARY

    def __init__(
        self,
        client: BlueBubblesClient,
        store: SQLiteConversationStore,
        grouping: UnifiedGroupingIndex,
        progress: SyncProgressAggregator,
        batch_size: int = SYNC_BATCH_SIZE,
    ) -> None:
        self._client = client
        self._store = store
        self._grouping = grouping
        self._progress = progress
        self._batch_size = batch_size
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def run(self) -> bool:
        """Run a full sync. Failures are reported as the stage's error, not raised."""
        if self._running:
            logger.debug("Server sync already running")
            return False
        self._running = True
        try:
            synced = await self._sync()
        except StageError as e:
            logger.error("Server sync failed: %s", e)
            self._progress.update_stage(self.stage, StageState.error(str(e)))
            return False
        finally:
            self._running = False

        self._progress.update_stage(self.stage, StageState.complete())
        logger.info("Server sync finished, %d chats", synced)
        return True

    async def _sync(self) -> int:
        self._progress.update_stage(self.stage, StageState.active(0.0))
        try:
            total = await self._client.get_chat_count()
            synced = 0
            async for chats in self._client.iter_chat_pages(self._batch_size):
                await asyncio.to_thread(self._save_chats, chats)
                synced += len(chats)
                fraction = min(synced / total, 1.0) if total else 0.0
                self._progress.update_stage(
                    self.stage, StageState.active(fraction, processed=synced, total=total)
                )
            await asyncio.to_thread(
                self._store.set_sync_state, LAST_SYNC_KEY, str(int(time.time() * 1000))
            )
        except (BlueBubblesError, StoreError) as e:
            raise StageError(self.stage.value, str(e)) from e
        return synced

    def _save_chats(self, chats: list[Chat]) -> None:
        conversations = [chat.to_record() for chat in chats]
        self._store.save_chats(conversations)
        for chat in chats:
            if chat.participants:
                self._store.save_participants(
                    chat.guid, [handle.to_record() for handle in chat.participants]
                )
            if chat.last_message is not None:
                self._save_message(chat.last_message, chat.guid)
        self._grouping.assign_many(conversations)

    def _save_message(self, message: Message, chat_guid: str | None = None) -> None:
        record = message.to_record(chat_guid)
        self._store.save_messages([record])
        if message.attachments:
            self._store.save_attachments(a.to_record(message.guid) for a in message.attachments)

    async def ingest_message(self, message: Message) -> None:
        """
        Store a message pushed by the server.

        Fetches the chat first when it is not known locally, so the
        message is never orphaned.
        """
        chat_guid = message.chat_guid
        if not chat_guid:
            return
        known = await asyncio.to_thread(self._store.get_chat, chat_guid)
        if known is None:
            try:
                chat = await self._client.get_chat(chat_guid)
            except BlueBubblesError:
                logger.warning("Could not fetch chat %s for incoming message", chat_guid)
                return
            await asyncio.to_thread(self._save_chats, [chat])
        await asyncio.to_thread(self._save_message, message, chat_guid)
