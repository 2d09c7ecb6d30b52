"""Ainura MCP server entry point.

Usage::

    python -m ainura [--port N] [--host H] [--stdio] [--log-level LEVEL]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from ainura import __version__
from ainura.config import ConfigError, ServerConfig


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="ainura-mcp",
        description="Multi-device MCP server for PageNodes and other Ainura runtimes",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "-p", "--port",
        default=None,
        help="HTTP/WebSocket port (default: 7778 or AINURA_MCP_PORT / PAGENODES_MCP_PORT)",
    )
    parser.add_argument("--host", default=None, help="Bind address (default: 0.0.0.0)")
    parser.add_argument(
        "--stdio",
        action="store_true",
        help="Enable stdio MCP transport (for spawned mode)",
    )
    parser.add_argument("--log-level", default=None, help="Logging level (default: INFO)")
    args = parser.parse_args(argv)

    try:
        config = ServerConfig.from_env()
        if args.port is not None:
            try:
                config.port = int(args.port)
            except ValueError:
                raise ConfigError(f"Invalid port: {args.port}") from None
        if args.host:
            config.host = args.host
        if args.log_level:
            config.log_level = args.log_level
        config.stdio = args.stdio
        config.validate()
    except ConfigError as exc:
        print(exc, file=sys.stderr)
        sys.exit(1)

    # stderr only: stdout carries JSON-RPC frames in stdio mode.
    logging.basicConfig(
        level=config.log_level.upper(),
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    from ainura.server import run_server

    try:
        asyncio.run(run_server(config))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
