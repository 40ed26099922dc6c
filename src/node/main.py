#!/usr/bin/env python3
"""
Chat Node Server

Hosts a chat server process on a node and serves it to remote clients
over WebSocket.
"""

import argparse
import asyncio
import logging
import os
import sys

from .chat_server import ChatServer
from .name_registry import NameRegistry
from .websocket_server import (
    HEARTBEAT_INTERVAL,
    HEARTBEAT_TIMEOUT,
    WebSocketServer,
)

# Configure logging
logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


async def run_server(
    node_id: str,
    host: str,
    port: int,
    chat_name: str,
    heartbeat_interval: float = HEARTBEAT_INTERVAL,
    heartbeat_timeout: float = HEARTBEAT_TIMEOUT,
):
    """
    Run a node hosting one chat room.

    Args:
        node_id: Unique identifier for this node
        host: WebSocket host address to bind to
        port: WebSocket port to listen on
        chat_name: Name the chat server is registered under
        heartbeat_interval: Seconds between keepalive pings
        heartbeat_timeout: Seconds to wait for a pong
    """
    name_registry = NameRegistry(node_id)

    chat_server = ChatServer(chat_name)
    server_task = chat_server.start()
    name_registry.register(chat_name, chat_server)

    ws_server = WebSocketServer(
        name_registry,
        host,
        port,
        heartbeat_interval=heartbeat_interval,
        heartbeat_timeout=heartbeat_timeout,
    )
    await ws_server.start()

    logger.info(f"Node '{node_id}' is ready")
    logger.info(f"Chat '{chat_name}' served at ws://{host}:{ws_server.port}")

    try:
        # Runs until the chat server exits or the node is cancelled
        await server_task
    except asyncio.CancelledError:
        logger.info("Server shutdown requested")
    finally:
        await chat_server.stop()
        await ws_server.stop()
        logger.info("Node server stopped")


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command line arguments, defaulting to the environment."""
    parser = argparse.ArgumentParser(description="Run a chat node server")
    parser.add_argument(
        "--host",
        default=os.environ.get("CHAT_HOST", "0.0.0.0"),
        help="Address to bind to",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.environ.get("CHAT_PORT", "8080")),
        help="Port to listen on",
    )
    parser.add_argument(
        "--name",
        default=os.environ.get("CHAT_NAME", "chat"),
        help="Chat room name clients discover the server by",
    )
    parser.add_argument(
        "--node-id",
        default=os.environ.get("NODE_ID", "node1"),
        help="Identifier of this node",
    )
    parser.add_argument(
        "--heartbeat-interval",
        type=float,
        default=float(
            os.environ.get("HEARTBEAT_INTERVAL", str(HEARTBEAT_INTERVAL))
        ),
        help="Seconds between keepalive pings",
    )
    parser.add_argument(
        "--heartbeat-timeout",
        type=float,
        default=float(
            os.environ.get("HEARTBEAT_TIMEOUT", str(HEARTBEAT_TIMEOUT))
        ),
        help="Seconds to wait for a keepalive pong",
    )
    return parser.parse_args(argv)


def main():
    """Main entry point for the node server."""
    args = parse_args()
    logger.info("Starting chat node server...")

    try:
        asyncio.run(
            run_server(
                args.node_id,
                args.host,
                args.port,
                args.name,
                heartbeat_interval=args.heartbeat_interval,
                heartbeat_timeout=args.heartbeat_timeout,
            )
        )
    except KeyboardInterrupt:
        logger.info("Shutting down node server...")
        sys.exit(0)


if __name__ == "__main__":
    main()
