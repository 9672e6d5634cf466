"""
=============================================================================
TCPECHO CLI ENTRY POINT
=============================================================================

    # Run the server with defaults (0.0.0.0:8080, 100 clients)
    python -m tcpecho server

    # Custom port and capacity
    python -m tcpecho server --port 9000 --max-clients 10

    # Interactive client (type 'exit' to quit)
    python -m tcpecho client --host 127.0.0.1 --port 9000

    # Client that reconnects on its own
    python -m tcpecho client --auto-reconnect --reconnect-delay 2

=============================================================================
SHUTDOWN
=============================================================================

The server runs until a cancellation token (a threading.Event) is set.
SIGINT and SIGTERM handlers set the token; the original handlers are
restored once the server has stopped.

=============================================================================
"""

import argparse
import logging
import os
import signal
import sys
import threading
from typing import Optional, Sequence

from . import __version__
from .client import EchoClient
from .config import ClientConfig, ServerConfig, LOG_LEVELS, LOG_FORMATS
from .console import read_lines, run_console
from .server import EchoServer


logger = logging.getLogger(__name__)


def _setup_logging(log_level: str):
    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logging.getLogger("tcpecho").setLevel(level)


def _install_signal_handlers(cancel: threading.Event) -> dict:
    """
    Make SIGINT/SIGTERM set the cancellation token.

    Returns:
        The previous handlers, for _restore_signal_handlers().
    """
    def shutdown_handler(signum, frame):
        signal_name = signal.Signals(signum).name
        logger.info(f"Received {signal_name}, initiating shutdown...")
        cancel.set()

    original = {}
    for sig in (signal.SIGINT, signal.SIGTERM):
        original[sig] = signal.signal(sig, shutdown_handler)
    return original


def _restore_signal_handlers(original: dict):
    for sig, handler in original.items():
        signal.signal(sig, handler)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tcpecho",
        description="Bounded-concurrency TCP echo server and interactive client",
        epilog="Defaults come from ECHO_* environment variables when they are set.",
    )
    parser.add_argument("--version", "-v", action="version", version=f"tcpecho {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    # Environment overrides the built-in defaults; flags override both
    server_env = ServerConfig.from_env()
    client_env = ClientConfig.from_env()

    # ─────────────────────────────────────────────────────────────────────
    # SERVER
    # ─────────────────────────────────────────────────────────────────────

    srv = sub.add_parser("server", help="Run the echo server")
    srv.add_argument("--host", "-H", default=server_env.host, help="Address to bind (default: %(default)s)")
    srv.add_argument("--port", "-p", type=int, default=server_env.port, help="Port to listen on (default: %(default)s)")
    srv.add_argument(
        "--max-clients", type=int, default=server_env.max_clients,
        help="Maximum concurrent connections (default: %(default)s)",
    )
    srv.add_argument(
        "--recv-timeout", type=float, default=server_env.recv_timeout,
        help="Per-connection receive timeout in seconds (default: %(default)s)",
    )
    srv.add_argument("--log-level", "-l", choices=LOG_LEVELS, default=server_env.log_level.upper())
    srv.add_argument("--log-format", choices=LOG_FORMATS, default=server_env.log_format, help="Session log format")

    # ─────────────────────────────────────────────────────────────────────
    # CLIENT
    # ─────────────────────────────────────────────────────────────────────

    cli = sub.add_parser("client", help="Run the interactive echo client")
    cli.add_argument("--host", "-H", default=client_env.host, help="Server address (default: %(default)s)")
    cli.add_argument("--port", "-p", type=int, default=client_env.port, help="Server port (default: %(default)s)")
    cli.add_argument(
        "--timeout", type=float, default=client_env.timeout,
        help="Socket timeout in seconds (default: %(default)s)",
    )
    cli.add_argument(
        "--auto-reconnect", dest="auto_reconnect", action="store_true",
        help="Reconnect automatically when the connection drops",
    )
    cli.add_argument(
        "--no-auto-reconnect", dest="auto_reconnect", action="store_false",
        help="Do not reconnect (overrides ECHO_AUTO_RECONNECT)",
    )
    cli.set_defaults(auto_reconnect=client_env.auto_reconnect)
    cli.add_argument(
        "--reconnect-delay", type=float, default=client_env.reconnect_delay,
        help="Seconds between reconnect attempts (default: %(default)s)",
    )
    cli.add_argument(
        "--reconnect-attempts", type=int, default=client_env.max_reconnect_attempts,
        help="Attempts per reconnect (default: %(default)s)",
    )
    # The interactive client is quiet unless asked otherwise
    cli.add_argument("--log-level", "-l", choices=LOG_LEVELS, default=os.getenv("ECHO_LOG_LEVEL", "WARNING").upper())

    return parser


def run_server(args: argparse.Namespace) -> int:
    config = ServerConfig(
        host=args.host,
        port=args.port,
        max_clients=args.max_clients,
        recv_timeout=args.recv_timeout,
        log_level=args.log_level,
        log_format=args.log_format,
    )
    server = EchoServer(config)

    cancel = threading.Event()
    original = _install_signal_handlers(cancel)
    try:
        if not server.start():
            print(f"Error: could not start server on {config.host}:{config.port}", file=sys.stderr)
            return 1
        host, port = server.address
        print(f"Server running on {host}:{port}. Press Ctrl+C to stop.", flush=True)
        server.serve(cancel)
    finally:
        _restore_signal_handlers(original)
    return 0


def run_client(args: argparse.Namespace) -> int:
    config = ClientConfig(
        host=args.host,
        port=args.port,
        timeout=args.timeout,
        auto_reconnect=args.auto_reconnect,
        reconnect_delay=args.reconnect_delay,
        max_reconnect_attempts=args.reconnect_attempts,
        log_level=args.log_level,
    )
    client = EchoClient(config)

    if not client.connect_to_server():
        print("Failed to connect to server", file=sys.stderr)
        return 1

    print("Connected to server. Type messages to send (type 'exit' to quit):", flush=True)
    client.start_receiving()
    try:
        run_console(client, read_lines())
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        client.close()
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    try:
        # ECHO_* values are parsed while the defaults are built
        args = build_parser().parse_args(argv)
        _setup_logging(args.log_level)
        if args.command == "server":
            return run_server(args)
        return run_client(args)
    except ValueError as e:
        # Configuration rejected by from_env() or validate()
        print(f"Error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
