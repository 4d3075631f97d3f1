"""Entry point for BlueBubbles Inbox."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path

from . import __version__
from .api.client import BlueBubblesClient, check_connection
from .api.websocket import BlueBubblesSocket
from .conversations.engine import ConversationListEngine
from .conversations.models import ConversationViewModel
from .conversations.pagination import LoadResult
from .state.store import SQLiteConversationStore
from .sync.progress import SyncProgress
from .sync.server_sync import ServerSyncStage
from .utils.config import Config

logger = logging.getLogger(__name__)


def _format_row(conversation: ConversationViewModel) -> str:
    when = ""
    if conversation.last_message_timestamp:
        when = datetime.fromtimestamp(conversation.last_message_timestamp / 1000).strftime(
            "%Y-%m-%d %H:%M"
        )
    flags = "".join([
        "*" if conversation.is_pinned else " ",
        "+" if conversation.is_merged else " ",
        "…" if conversation.is_typing else " ",
    ])
    unread = f"({conversation.unread_count})" if conversation.unread_count else ""
    return f"{flags} {when:16}  {conversation.display_name[:30]:30} {unread:5} {conversation.preview_text}"


def _print_progress(progress: SyncProgress | None) -> None:
    if progress is None:
        return
    percent = int(progress.overall_progress * 100)
    print(f"\r{progress.current_label}: {percent:3d}%", end="", flush=True)


def _require_server(config: Config) -> tuple[str, str] | None:
    if not config.is_configured:
        print("Server not configured. Run: bluebubbles-inbox configure --url URL --password PW")
        return None
    return config.server_url or "", config.password or ""


async def _list(config: Config, args: argparse.Namespace) -> int:
    store = SQLiteConversationStore(config.db_path)
    engine = ConversationListEngine(store, config)
    engine.start()
    try:
        result = await engine.load_initial()
        for _ in range(args.more):
            if await engine.load_more() is not LoadResult.SUCCESS:
                break
        if args.filter:
            result = await engine.refresh(args.filter)
        state = engine.list_state.value
        if result is LoadResult.ERROR:
            print(f"Failed to load conversations: {state.last_error}")
            return 1
        for conversation in engine.conversations.value:
            print(_format_row(conversation))
        if state.has_more:
            print("… more conversations available (use --more)")
        return 0
    finally:
        await engine.close()
        store.close()


async def _sync(config: Config) -> int:
    server = _require_server(config)
    if server is None:
        return 1
    store = SQLiteConversationStore(config.db_path)
    engine = ConversationListEngine(store, config)
    unsubscribe = engine.sync_progress.subscribe(_print_progress)
    try:
        async with BlueBubblesClient(*server) as client:
            stage = ServerSyncStage(
                client, store, engine.grouping, engine.sync, batch_size=config.sync_batch_size
            )
            engine.register_stage(stage.stage, stage.run)
            ok = await stage.run()
        print()
        if not ok:
            progress = engine.sync_progress.value
            print(f"Sync failed: {progress.error_message if progress else 'unknown error'}")
            return 1
        return 0
    finally:
        unsubscribe()
        await engine.close()
        store.close()


async def _watch(config: Config) -> int:
    server = _require_server(config)
    if server is None:
        return 1
    store = SQLiteConversationStore(config.db_path)
    engine = ConversationListEngine(store, config)
    engine.start()

    def show(conversations: tuple[ConversationViewModel, ...]) -> None:
        print("\n".join(_format_row(c) for c in conversations[:20]))
        print("-" * 60)

    unsubscribe = engine.conversations.subscribe(show)
    socket = BlueBubblesSocket(*server)
    try:
        async with BlueBubblesClient(*server) as client:
            stage = ServerSyncStage(client, store, engine.grouping, engine.sync)
            socket.on_message(stage.ingest_message)
            socket.on_event(engine.post_event)
            await engine.load_initial()
            await socket.connect()
            await socket.wait()
    except ConnectionError as e:
        print(f"Could not connect: {e}")
        return 1
    finally:
        unsubscribe()
        await socket.disconnect()
        await engine.close()
        store.close()
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bluebubbles-inbox", description="Unified BlueBubbles conversation list"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--config-dir", type=Path, help="Use another configuration directory")
    sub = parser.add_subparsers(dest="command", required=True)

    configure = sub.add_parser("configure", help="Store server URL and password")
    configure.add_argument("--url", required=True)
    configure.add_argument("--password", required=True)

    sub.add_parser("check", help="Test the server connection")
    sub.add_parser("sync", help="Sync chats from the server")
    sub.add_parser("watch", help="Follow the conversation list live")

    list_cmd = sub.add_parser("list", help="Print the conversation list")
    list_cmd.add_argument("-f", "--filter", default="", help="Only show matching conversations")
    list_cmd.add_argument(
        "-m", "--more", type=int, default=0, help="Number of extra pages to load"
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the command line tool."""
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    config = Config(args.config_dir)

    if args.command == "configure":
        config.server_url = args.url
        config.password = args.password
        if not config.using_secure_storage:
            print("No keyring available, password stored in the config directory")
        return 0
    if args.command == "check":
        server = _require_server(config)
        if server is None:
            return 1
        ok, message = asyncio.run(check_connection(*server))
        print(message)
        return 0 if ok else 1
    if args.command == "sync":
        return asyncio.run(_sync(config))
    if args.command == "watch":
        return asyncio.run(_watch(config))
    return asyncio.run(_list(config, args))


if __name__ == "__main__":
    sys.exit(main())
