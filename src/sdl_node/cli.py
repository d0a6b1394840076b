"""CLI entry point for a ledger node.

Usage:
    sdl-node run --id 1 --port 40000 --peers 2=10.0.0.2:40000
    sdl-node run --config node_config.json --pattern uniform --interval 0.5 --limit 100
    sdl-node commit --consensus localhost:40002 616263
    sdl-node query --consensus localhost:40002 0x1A2B

Environment variables:
    SDL_PORT:       Override listening port
    SDL_TRACKER:    Override tracker address (host:port)
    SDL_CONSENSUS:  Override consensus RPC address (host:port)
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import secrets
import signal
import sys
from pathlib import Path
from typing import Any

from sdl_node.errors import NodeError
from sdl_node.mainchain.abci_client import ABCIClient, bytes_to_hex, hex_to_bytes
from sdl_node.models import OwnNode
from sdl_node.node import Application, NodeConfig
from sdl_node.patterns.base import UniformRandomPattern

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sdl-node",
        description="Run a scale-out ledger node or talk to its consensus chain",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--log-level", "-l",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: INFO)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Start a node and run until interrupted")
    run.add_argument("--config", "-c", help="Path to JSON config file")
    run.add_argument("--id", type=int, default=0, help="Node id on the tracker")
    run.add_argument("--port", "-p", type=int, help="Override listening port")
    run.add_argument("--tracker", help="Tracker address (host:port)")
    run.add_argument("--consensus", help="Consensus RPC address (host:port)")
    run.add_argument(
        "--peers",
        help="Comma-separated peers as id=host:port",
    )
    run.add_argument(
        "--pattern",
        choices=["none", "uniform"],
        default="none",
        help="Transaction pattern to run (default: none)",
    )
    run.add_argument("--interval", type=float, default=1.0, help="Seconds between transactions")
    run.add_argument("--limit", type=int, help="Stop the pattern after this many transactions")
    run.add_argument("--seed", type=int, help="Seed for the pattern's random choices")

    for name, helptext in (("commit", "Anchor a hex payload"), ("query", "Check a hex anchor hash")):
        cmd = sub.add_parser(name, help=helptext)
        cmd.add_argument("value", help="Hex string, with or without 0x")
        cmd.add_argument("--consensus", default="localhost:40002", help="Consensus RPC address")
        cmd.add_argument("--timeout", type=float, default=10.0, help="Request timeout in seconds")

    return parser


def load_config(config_path: str | None, overrides: dict[str, Any]) -> NodeConfig:
    """Load node configuration from JSON, then apply overrides."""
    raw: dict[str, Any] = {}
    if config_path:
        path = Path(config_path).resolve()
        if not path.exists():
            print(f"Error: config file not found: {path}", file=sys.stderr)
            sys.exit(1)
        with open(path) as f:
            raw = json.load(f)

    env = {
        "port": os.environ.get("SDL_PORT") or None,
        "tracker_address": os.environ.get("SDL_TRACKER") or None,
        "consensus_address": os.environ.get("SDL_CONSENSUS") or None,
    }
    for source in (env, overrides):
        for key, value in source.items():
            if value is not None:
                raw[key] = value

    return NodeConfig(
        host=raw.get("host", "0.0.0.0"),
        port=int(raw.get("port", 40000)),
        tracker_address=raw.get("tracker_address", "localhost:3000"),
        consensus_address=raw.get("consensus_address"),
        consensus_timeout=float(raw.get("consensus_timeout", 10.0)),
        drain_timeout=raw.get("drain_timeout"),
        hash_width=raw.get("hash_width"),
    )


def parse_peers(value: str | None) -> dict[int, str]:
    """Parse ``1=host:port,2=host:port`` into a node id → endpoint map."""
    peers: dict[int, str] = {}
    if not value:
        return peers
    for item in value.split(","):
        node_id, sep, endpoint = item.strip().partition("=")
        if not sep or not endpoint:
            raise ValueError(f"Invalid peer {item!r}, expected id=host:port")
        peers[int(node_id)] = endpoint
    return peers


async def run_node(app: Application, args: argparse.Namespace, peers: dict[int, str]) -> None:
    """Start the node, optionally transact, and shut down on a signal."""
    own_node = OwnNode(id=args.id, port=app.config.port)
    await app.init(app.config.port, None, secrets.token_bytes(32), own_node)
    for node_id, endpoint in peers.items():
        app.local_store.add_node(node_id, endpoint)

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def handle_signal() -> None:
        print("\nShutting down...")
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_signal)

    try:
        if args.pattern == "uniform":
            app.set_transaction_pattern(
                UniformRandomPattern(interval=args.interval, limit=args.limit, seed=args.seed)
            )
            app.start_transacting()
        await stop_event.wait()
        await app.finish_transaction_sending()
    finally:
        await app.kill()


async def commit_payload(consensus: str, value: str, timeout: float) -> int:
    client = ABCIClient(consensus, timeout=timeout)
    result = await client.commit(hex_to_bytes(value))
    if result.ok:
        print(bytes_to_hex(result.anchor_hash))
        return 0
    print(f"Commit failed ({result.status.value}): {result.detail}", file=sys.stderr)
    return 1


async def query_hash(consensus: str, value: str, timeout: float) -> int:
    client = ABCIClient(consensus, timeout=timeout)
    present = await client.query(hex_to_bytes(value))
    print("present" if present else "absent")
    return 0 if present else 1


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        if args.command == "commit":
            return asyncio.run(commit_payload(args.consensus, args.value, args.timeout))
        if args.command == "query":
            return asyncio.run(query_hash(args.consensus, args.value, args.timeout))

        overrides = {
            "port": args.port,
            "tracker_address": args.tracker,
            "consensus_address": args.consensus,
        }
        config = load_config(args.config, overrides)
        peers = parse_peers(args.peers)
        asyncio.run(run_node(Application(config), args, peers))
    except (ValueError, NodeError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
