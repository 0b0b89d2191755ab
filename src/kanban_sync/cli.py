from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Optional

from loguru import logger
from rich.console import Console
from rich.live import Live

from .board.model import BOARD_COLUMNS
from .board.mutations import HttpMutationClient
from .board.session import BoardSession
from .board.source import PollingCollectionSource
from .config import ApiSettings, TransportSettings, api_settings, load_sync_config, transport_settings
from .logging_utils import configure_logging
from .render import render_board
from .sessions import SessionStore
from .transport.client import Transport


def _resolve_project_dir(project_dir: Optional[str]) -> Path:
    return Path(project_dir).expanduser().resolve() if project_dir else Path.cwd().resolve()


def _settings(args: argparse.Namespace) -> tuple[ApiSettings, TransportSettings]:
    config, err = load_sync_config(_resolve_project_dir(args.project_dir))
    if err:
        logger.warning("Ignoring unreadable config: {}", err)
    api = api_settings(config)
    if args.api_url:
        api = api.model_copy(update={"base_url": args.api_url})
    transport = transport_settings(config)
    if getattr(args, "ws_url", None):
        transport = transport.model_copy(update={"url": args.ws_url})
    return api, transport


async def _columns(args: argparse.Namespace) -> int:
    api, _ = _settings(args)
    source = PollingCollectionSource(api.base_url, timeout=api.timeout)
    try:
        async for snapshot in source.subscribe(args.project_id):
            payload = {status.value: [t.to_dict() for t in snapshot.get(status, [])] for status in BOARD_COLUMNS}
            sys.stdout.write(json.dumps(payload, indent=2) + "\n")
            return 0
    finally:
        await source.aclose()
    return 1


async def _watch(args: argparse.Namespace) -> int:
    api, transport_cfg = _settings(args)
    sessions = SessionStore()
    transport = Transport.from_settings(transport_cfg, page_origin=args.origin, dispatch=sessions.handle_event)
    source = PollingCollectionSource(api.base_url, interval=api.poll_interval, timeout=api.timeout)
    mutations = HttpMutationClient(api.base_url, args.project_id, timeout=api.timeout)
    board = BoardSession(args.project_id, source, mutations, transport=transport)

    changed = asyncio.Event()
    board.overlay.add_listener(changed.set)
    transport.add_listener(lambda _state: changed.set())
    sessions.add_listener(lambda _session: changed.set())

    console = Console()
    try:
        with Live(console=console, auto_refresh=False) as live:
            async with board:
                while True:
                    live.update(
                        render_board(
                            board.columns(),
                            transport.state,
                            board.graph,
                            pending_ids=frozenset(board.overlay.active_moves()),
                            sessions=sessions,
                        ),
                        refresh=True,
                    )
                    await changed.wait()
                    changed.clear()
    finally:
        await mutations.aclose()


def _cmd_columns(args: argparse.Namespace) -> int:
    return asyncio.run(_columns(args))


def _cmd_watch(args: argparse.Namespace) -> int:
    try:
        return asyncio.run(_watch(args))
    except KeyboardInterrupt:
        return 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Kanban board sync client')
    parser.add_argument('--project-dir', default=None, help='Directory holding .kanban_sync/config.yaml (default: cwd)')
    parser.add_argument('--log-level', default='WARNING')
    subparsers = parser.add_subparsers(dest='command', required=True)

    columns = subparsers.add_parser('columns', help='Print the current board columns as JSON')
    columns.add_argument('--project-id', required=True)
    columns.add_argument('--api-url', default=None)
    columns.set_defaults(func=_cmd_columns)

    watch = subparsers.add_parser('watch', help='Render the live board and connection state')
    watch.add_argument('--project-id', required=True)
    watch.add_argument('--api-url', default=None)
    watch.add_argument('--ws-url', default=None)
    watch.add_argument('--origin', default=None, help='Origin of the page the board is served from')
    watch.set_defaults(func=_cmd_watch)
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)
    handler = getattr(args, 'func', None)
    if handler is None:
        parser.print_help()
        return 1
    return int(handler(args) or 0)


if __name__ == '__main__':
    raise SystemExit(main())
