# File: rustowl_client/cli.py

"""Command line front end.

Runs the client pipeline against a `ConsoleHost`:

    rustowl-client bootstrap [--update]
    rustowl-client cursor FILE LINE CHARACTER [--wait SECONDS]
    rustowl-client analyze
    rustowl-client mode {show,cycle,toggle}

LINE and CHARACTER are 1-based. Set LOGLEVEL (e.g. DEBUG) for more output.
"""

import argparse
import asyncio
import logging
import os
import pathlib
import sys
from typing import List, Optional

from rustowl_client.config.loader import ConfigStore
from rustowl_client.config.settings import get_display_mode, get_language_id
from rustowl_client.editor.console import ConsoleHost
from rustowl_client.editor.host import TextDocument, TextEditor
from rustowl_client.extension import Extension
from rustowl_client.lsp.protocol import AnalysisStatus, Position
from rustowl_client.server.bootstrap import BootstrapError, bootstrap

logger = logging.getLogger(__name__)

POLL_INTERVAL = 1.0  # Seconds between cursor queries while the server is analyzing


def _setup_logging() -> None:
    log_level = os.getenv("LOGLEVEL", "WARNING").upper()
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="rustowl-client", description="Editor-side client for the RustOwl server.")
    parser.add_argument("--config", type=pathlib.Path, default=None, help="YAML configuration file to use.")
    parser.add_argument("--workspace", default=None, help="Workspace directory the server runs in (default: CWD).")
    sub = parser.add_subparsers(dest="command", required=True)

    boot = sub.add_parser("bootstrap", help="Locate or install the server and print its path.")
    boot.add_argument("--update", action="store_true", help="Force a reinstall attempt.")

    cursor = sub.add_parser("cursor", help="Show decorations at a position.")
    cursor.add_argument("file", help="Rust source file.")
    cursor.add_argument("line", type=int, help="1-based line.")
    cursor.add_argument("character", type=int, help="1-based column.")
    cursor.add_argument("--wait", type=float, default=0.0, help="Seconds to keep polling while the server is analyzing.")

    sub.add_parser("analyze", help="Ask the server to re-analyze the workspace.")

    mode = sub.add_parser("mode", help="Show or change the display mode.")
    mode.add_argument("action", choices=["show", "cycle", "toggle"])
    return parser


async def _run_bootstrap(store: ConfigStore, host: ConsoleHost, update: bool) -> int:
    location = await bootstrap(store, host=host, force_install=update)
    print(f"{location.path} ({location.origin.value})")
    return 0


async def _run_cursor(store: ConfigStore, host: ConsoleHost, workspace: str, args: argparse.Namespace) -> int:
    if args.line < 1 or args.character < 1:
        print("LINE and CHARACTER are 1-based.", file=sys.stderr)
        return 2
    uri = pathlib.Path(args.file).resolve().as_uri()
    host.active_editor = TextEditor(
        document=TextDocument(uri=uri, language_id=get_language_id(store)),
        selection=Position(args.line - 1, args.character - 1),
    )
    extension = Extension(host, store, workspace)
    if not await extension.activate():
        return 1
    try:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + max(0.0, args.wait)
        response = await extension.router.hover()
        while response is not None and response.status is AnalysisStatus.ANALYZING and loop.time() < deadline:
            await asyncio.sleep(POLL_INTERVAL)
            response = await extension.router.hover()
        if response is None:
            print("No response from the RustOwl server.", file=sys.stderr)
            return 1
        print(f"{host.status[0]} - {host.status[1]} ({len(response.decorations)} decorations)")
        return 0
    finally:
        await extension.deactivate()


async def _run_analyze(store: ConfigStore, host: ConsoleHost, workspace: str) -> int:
    extension = Extension(host, store, workspace)
    if not await extension.activate():
        return 1
    try:
        return 0 if await extension.router.analyze() else 1
    finally:
        await extension.deactivate()


async def _run(args: argparse.Namespace) -> int:
    store = ConfigStore.load(args.config)
    host = ConsoleHost()
    workspace = os.path.abspath(args.workspace or os.getcwd())

    if args.command == "bootstrap":
        return await _run_bootstrap(store, host, args.update)
    if args.command == "cursor":
        return await _run_cursor(store, host, workspace, args)
    if args.command == "analyze":
        return await _run_analyze(store, host, workspace)

    extension = Extension(host, store, workspace)
    if args.action == "cycle":
        await extension.router.cycle_display_mode()
    elif args.action == "toggle":
        await extension.router.toggle()
    print(get_display_mode(store).value)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    _setup_logging()
    args = build_parser().parse_args(argv)
    try:
        return asyncio.run(_run(args))
    except BootstrapError as e:
        print(f"Failed to start RustOwl\n{e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted by user.")
        return 130


if __name__ == "__main__":
    sys.exit(main())
