import argparse
import asyncio
import os
import sys
from typing import List, Optional

from ..commands import Candidate, Commands, NewOptions
from ..config import Config, load_config
from ..hooks import EditorHooks
from ..log_utils import LogConfig, configure_logging, parse_level
from ..record import SessionRecord
from ..state import State
from ..store import RuntimeStore


def setup_logging(config: Config, store: RuntimeStore, verbose: bool = False) -> None:
    configure_logging(LogConfig(
        log_file=store.root / "ash.log",
        level=parse_level("DEBUG" if verbose else config.log_level),
        stderr=verbose or config.log_stderr,
    ))


def main(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(prog="ash", description="Assistant Shells CLI")
    parser.add_argument("--config", default=None, help="Path to config.yaml")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log to stderr at debug level")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # ash tools
    subparsers.add_parser("tools", help="List known tools")

    # ash list
    list_parser = subparsers.add_parser("list", help="List running sessions (tmux/dtach)")
    list_parser.add_argument("--name", default=None, help="Only sessions of this tool")

    # ash new <tool>
    new_parser = subparsers.add_parser("new", help="Start a tool in a detached tmux/dtach session")
    new_parser.add_argument("tool", nargs="?", default=None, help="Tool name (default from config)")
    new_parser.add_argument("--backend", choices=["tmux", "dtach"], default="tmux", help="Backend (default: tmux)")
    new_parser.add_argument("--cwd", default=None, help="Working directory")

    # ash send <tool|id> <msg>
    send_parser = subparsers.add_parser("send", help="Send a message to a running session")
    send_parser.add_argument("target", help="Session ID or tool name")
    send_parser.add_argument("msg", nargs="+", help="Message text ({placeholders} are rendered)")
    send_parser.add_argument("--submit", action="store_true", help="Press Enter after the message")

    # ash close <id>
    close_parser = subparsers.add_parser("close", help="Terminate a session")
    close_parser.add_argument("id", help="Session ID")

    # ash attach <id>
    attach_parser = subparsers.add_parser("attach", help="Attach this terminal to a session")
    attach_parser.add_argument("id", help="Session ID or tool name")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        code = asyncio.run(run_async(args))
    except KeyboardInterrupt:
        code = 130
    sys.exit(code or 0)


def _notify(level: str, msg: str) -> None:
    stream = sys.stderr if level in ("warn", "error") else sys.stdout
    print(msg, file=stream)


async def _find(cli: Commands, target: str) -> Optional[SessionRecord]:
    records = await cli.discover()
    for record in records:
        if record.id == target:
            return record
    # Tool name: the most recent session of that tool
    matching = [r for r in records if r.tool == target]
    matching.sort(key=lambda r: r.created_at, reverse=True)
    return matching[0] if matching else None


def _adopt(cli: Commands, record: SessionRecord) -> Optional[State]:
    tool = cli.tools.get_tool(record.tool)
    if tool is None:
        print(f"Unknown tool: {record.tool}", file=sys.stderr)
        return None
    return cli.resolve(Candidate("session", tool, record=record))


async def run_async(args) -> int:
    config = load_config(args.config)
    store = RuntimeStore()
    setup_logging(config, store, verbose=args.verbose)
    cli = Commands(config=config, store=store, hooks=EditorHooks(notify=_notify))

    if args.command == "tools":
        print(f"{'NAME':<12} {'INSTALLED':<10} {'COMMAND'}")
        for tool in cli.tools:
            installed = "yes" if tool.is_installed() else "no"
            print(f"{tool.name:<12} {installed:<10} {' '.join(tool.cmd)}")
        return 0

    if args.command == "list":
        records = await cli.discover({"name": args.name} if args.name else None)
        print(f"{'ID':<36} {'TOOL':<10} {'BACKEND':<8} {'PID':<8} {'CWD'}")
        for r in records:
            print(f"{r.id:<36} {r.tool:<10} {r.backend:<8} {r.pid or '-':<8} {r.cwd}")
        return 0

    if args.command == "new":
        state = cli.new(NewOptions(name=args.tool, backend=args.backend, cwd=args.cwd))
        if state is None:
            return 1
        if not await state.session.wait_spawned():
            return 1
        # Keep the process running after the CLI exits
        cli.registry.detach(state, terminate=False)
        await state.session.wait_closed()
        print(state.id)
        return 0

    if args.command == "send":
        record = await _find(cli, args.target)
        if record is None:
            print("Session not found", file=sys.stderr)
            return 1
        state = _adopt(cli, record)
        if state is None:
            return 1
        cli.send({"msg": " ".join(args.msg), "submit": args.submit, "filter": {"session": state.id}})
        # Delivery happens on the next loop tick
        await asyncio.sleep(0)
        await state.session.flush()
        cli.registry.detach(state, terminate=False)
        await state.session.wait_closed()
        return 0

    if args.command == "close":
        record = await _find(cli, args.id)
        if record is None or record.id != args.id:
            print("Session not found", file=sys.stderr)
            return 1
        state = _adopt(cli, record)
        if state is None:
            return 1
        print(f"Terminating {state.id}...")
        cli.registry.detach(state)
        await state.session.wait_closed()
        return 0

    if args.command == "attach":
        record = await _find(cli, args.id)
        if record is None:
            print("Session not found", file=sys.stderr)
            return 1
        state = _adopt(cli, record)
        if state is None:
            return 1
        cmd = state.session.attach_command()
        if not cmd:
            print(f"{record.backend} sessions cannot be attached from a terminal", file=sys.stderr)
            return 1
        # This replaces the CLI process with the multiplexer client
        os.execvp(cmd[0], cmd)

    return 1


if __name__ == "__main__":
    main()
