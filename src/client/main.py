#!/usr/bin/env python3
"""
Chat Client Application

Console client for the chat system: discovers the chat server on a node,
asks for a nickname on stdin, then prints received messages to stdout
while sending every input line. With --ui a Textual terminal interface is
used instead.
"""

import argparse
import asyncio
import logging
import os
import sys

from .chat_client import ChatClient, NicknameRejected, format_message
from .line_source import StdinLineSource
from .service import DiscoveryPolicy, JoinError, ServerExited

# Configure logging to file to avoid interfering with the chat output
logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "WARNING").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[
        logging.FileHandler(
            os.environ.get("CHAT_CLIENT_LOG", "chat_client.log"),
            mode="a",
            delay=True,
        )
    ],
)

logger = logging.getLogger(__name__)


def build_node_url(server: str) -> str:
    """Turn host:port into a WebSocket URL."""
    if "://" not in server:
        return f"ws://{server}"
    return server


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command line arguments, defaulting to the environment."""
    max_attempts = os.environ.get("DISCOVERY_MAX_ATTEMPTS")
    parser = argparse.ArgumentParser(description="Chat client")
    parser.add_argument(
        "--server",
        default=os.environ.get("CHAT_SERVER", "localhost:8080"),
        help="Node address as host:port",
    )
    parser.add_argument(
        "--name",
        default=os.environ.get("CHAT_NAME", "chat"),
        help="Chat room name to discover",
    )
    parser.add_argument("--nickname", help="Nickname (asked for if omitted)")
    parser.add_argument("--local-host", help="Local address to bind to")
    parser.add_argument(
        "--local-port", type=int, default=0, help="Local port to bind to"
    )
    parser.add_argument(
        "--discovery-timeout",
        type=float,
        default=float(os.environ.get("DISCOVERY_TIMEOUT", "1.0")),
        help="Seconds allowed for each discovery attempt",
    )
    parser.add_argument(
        "--max-attempts",
        type=int,
        default=int(max_attempts) if max_attempts else None,
        help="Discovery attempts before giving up (default: unlimited)",
    )
    parser.add_argument(
        "--backoff",
        type=float,
        default=float(os.environ.get("DISCOVERY_BACKOFF", "0.5")),
        help="Initial delay between discovery attempts, doubled each time",
    )
    parser.add_argument(
        "--ui",
        action="store_true",
        help="Use the terminal user interface",
    )
    return parser.parse_args(argv)


def discovery_policy(args: argparse.Namespace) -> DiscoveryPolicy:
    return DiscoveryPolicy(
        attempt_timeout=args.discovery_timeout,
        max_attempts=args.max_attempts,
        backoff=args.backoff,
    )


def connect_kwargs(args: argparse.Namespace) -> dict:
    if args.local_host or args.local_port:
        return {"local_addr": (args.local_host or "0.0.0.0", args.local_port)}
    return {}


def render(message) -> None:
    print(format_message(message), flush=True)


async def run_console(args: argparse.Namespace) -> int:
    """
    Run an interactive console session.

    Returns:
        int: Process exit status
    """
    node_url = build_node_url(args.server)
    client = ChatClient(node_url, connect_kwargs=connect_kwargs(args))
    lines = StdinLineSource()

    print(f"Looking for '{args.name}' at {node_url}...", flush=True)
    try:
        handle = await client.discover_and_link(args.name, discovery_policy(args))
    except ConnectionError as e:
        print(f"Error: {e}", flush=True)
        await client.disconnect()
        return 1
    print(f"Found '{args.name}'", flush=True)

    nickname = args.nickname
    try:
        while True:
            if not nickname:
                print("Nickname: ", end="", flush=True)
                nickname = await lines.readline()
                if nickname is None:
                    return 0
                nickname = nickname.strip()
                continue

            print(f"Joining as {nickname}", flush=True)
            try:
                await client.chat(handle, nickname, lines, render)
                return 0
            except NicknameRejected:
                print("Please choose another nickname.", flush=True)
            except JoinError as e:
                print(f"Error: {e}", flush=True)
            nickname = None
    except asyncio.TimeoutError:
        print("Error: timed out joining the chat", flush=True)
        return 1
    except (ServerExited, ConnectionError) as e:
        print(f"Error: {e}", flush=True)
        return 1
    finally:
        await client.disconnect()


def main():
    """Main entry point for the chat client."""
    args = parse_args()
    logger.info("Starting chat client...")

    if args.ui:
        from .ui import ChatApp

        app = ChatApp(
            server=args.server,
            chat_name=args.name,
            nickname=args.nickname,
            policy=discovery_policy(args),
        )
        app.run()
        return

    try:
        sys.exit(asyncio.run(run_console(args)))
    except KeyboardInterrupt:
        print("\nExiting...")
        sys.exit(0)


if __name__ == "__main__":
    main()
