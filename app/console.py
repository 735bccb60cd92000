# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: command line launcher for MemCap. `serve` prints the welcome banner and runs the bridge,
`scan` pushes a saved page (or stdin) through the scanning agent, and `status` asks a running bridge
for its health. a corrupt memory store stops `serve` with a readable message and exit code 1.
"""

from __future__ import annotations  # lets us use string annotations before classes are defined

import argparse  # for parsing command line arguments
import json  # for pretty printing status and summaries
import sys  # for stdin, stderr and the exit code
from pathlib import Path  # for reading the page file
from typing import Any  # type hint for flexible dictionary values

from colorama import Fore, Style  # terminal colors (ANSI on Windows too)
from colorama import init as _colorama_init
from dotenv import load_dotenv

load_dotenv()  # load .env file if it exists, before the config is read

from agent.client import IngestionClient  # noqa: E402
from agent.scanner import MemoryScanner  # noqa: E402
from bridge.app import run_bridge  # noqa: E402
from bridge.config import Config, load_config  # noqa: E402
from bridge.log_format import setup_logging  # noqa: E402
from store.memory_store import StoreLoadError  # noqa: E402
from store.records import Source  # noqa: E402

_LEVEL_COLORS = {"info": Fore.CYAN, "success": Fore.GREEN, "error": Fore.RED}  # notification colors


def print_banner(cfg: Config) -> None:
    # print the welcome box with where the bridge listens and where memories are kept
    _colorama_init()  # enable ANSI color codes on Windows terminals
    cyan, dim, bold, reset = Fore.CYAN, Style.DIM, Style.BRIGHT, Style.RESET_ALL
    line = "─" * 60
    banner = f"""
{dim}┌{line}┐{reset}
{dim}│{reset}{cyan}{bold}{'M  e  m  C  a  p':^60}{reset}{dim}│{reset}
{dim}├{line}┤{reset}
  {cyan}bridge{reset}    http://{cfg.host}:{cfg.port}
  {cyan}memories{reset}  {cfg.memories_path}
{dim}├{line}┤{reset}
{dim}│{reset}  Tip: press {cyan}Ctrl+C{reset} to quit.{' ' * 32}{dim}│{reset}
{dim}└{line}┘{reset}
"""
    print(banner)


def _print_event(event: dict[str, Any]) -> None:
    color = _LEVEL_COLORS.get(event.get("level", ""), "")
    print(f"{color}[{event.get('level', 'info')}]{Style.RESET_ALL} {event.get('message', '')}")


def _cmd_serve(args: argparse.Namespace, cfg: Config) -> int:
    print_banner(cfg)
    try:
        run_bridge(cfg, host=args.host, port=args.port)
    except StoreLoadError as e:
        # never start on top of a file we could not read, it would be overwritten on the first write
        print(f"{Fore.RED}Cannot start: {e}{Style.RESET_ALL}", file=sys.stderr)
        print("Fix or move the memory store file, then start again.", file=sys.stderr)
        return 1
    return 0


def _cmd_scan(args: argparse.Namespace, cfg: Config) -> int:
    if args.file == "-":
        text = sys.stdin.read()
    else:
        try:
            text = Path(args.file).read_text(encoding="utf-8")
        except OSError as e:
            print(f"{Fore.RED}Cannot read {args.file}: {e}{Style.RESET_ALL}", file=sys.stderr)
            return 1

    client = None
    if not args.no_send:
        client = IngestionClient(args.server or cfg.server_url, timeout=cfg.request_timeout_sec)
    scanner = MemoryScanner(client=client, notify=_print_event, auto_send=not args.no_send)
    captured = scanner.scan(text, Source(url=args.url, title=args.title))

    summary = scanner.buffer_summary(preview_chars=cfg.preview_chars)
    summary["captured"] = captured
    print(json.dumps(summary, indent=2, ensure_ascii=False))
    return 0


def _cmd_status(args: argparse.Namespace, cfg: Config) -> int:
    client = IngestionClient(args.server or cfg.server_url, timeout=cfg.request_timeout_sec)
    status = MemoryScanner(client=client, auto_send=False).status()
    print(json.dumps(status, indent=2))
    return 0 if status.get("status") == "healthy" else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="memcap", description="MemCap memory capture bridge")
    sub = parser.add_subparsers(dest="command", required=True)

    p_serve = sub.add_parser("serve", help="run the HTTP bridge")
    p_serve.add_argument("--host", default=None, help="bind address (default from config)")
    p_serve.add_argument("--port", type=int, default=None, help="port (default from config)")

    p_scan = sub.add_parser("scan", help="capture memory blocks from a text file ('-' for stdin)")
    p_scan.add_argument("file", help="page text file, or '-' to read stdin")
    p_scan.add_argument("--url", default="unknown", help="source url recorded with the blocks")
    p_scan.add_argument("--title", default="unknown", help="source title recorded with the blocks")
    p_scan.add_argument("--server", default=None, help="bridge base url (default from config)")
    p_scan.add_argument("--no-send", action="store_true", help="capture only, do not contact the bridge")

    p_status = sub.add_parser("status", help="show bridge health")
    p_status.add_argument("--server", default=None, help="bridge base url (default from config)")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    cfg = load_config()
    setup_logging(cfg.log_level)

    handlers = {"serve": _cmd_serve, "scan": _cmd_scan, "status": _cmd_status}
    return handlers[args.command](args, cfg)


if __name__ == "__main__":
    sys.exit(main())
