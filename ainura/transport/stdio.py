"""Newline-delimited JSON-RPC over stdin/stdout.

Used when the server is spawned by an MCP client (``--stdio``). Each
line is one request; each response is written as one line. Requests are
served concurrently so a slow device call does not hold up the next
line. stdout carries protocol frames only; logs go to stderr.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Callable

from ainura.mcp.dispatcher import MCPDispatcher

logger = logging.getLogger(__name__)

# Max bytes in one request line (asyncio defaults to 64 KiB).
STDIN_LINE_LIMIT = 16 * 1024 * 1024


def _write_stdout(line: str) -> None:
    sys.stdout.write(line + "\n")
    sys.stdout.flush()


async def open_stdin_reader() -> asyncio.StreamReader:
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader(limit=STDIN_LINE_LIMIT)
    protocol = asyncio.StreamReaderProtocol(reader)
    await loop.connect_read_pipe(lambda: protocol, sys.stdin)
    return reader


async def serve_stdio(
    dispatcher: MCPDispatcher,
    reader: asyncio.StreamReader | None = None,
    write: Callable[[str], None] = _write_stdout,
) -> None:
    """Serve requests from *reader* until end-of-stream.

    In-flight requests are drained before returning.
    """
    if reader is None:
        reader = await open_stdin_reader()

    in_flight: set[asyncio.Task] = set()

    async def handle(line: str) -> None:
        try:
            request = json.loads(line)
        except json.JSONDecodeError as exc:
            logger.warning("Error parsing stdin message: %s", exc)
            return
        response = await dispatcher.handle_request(request)
        if response is not None:
            write(json.dumps(response, ensure_ascii=False))

    while True:
        try:
            raw = await reader.readline()
        except (ValueError, asyncio.LimitOverrunError) as exc:
            # readline has already discarded the oversized chunk.
            logger.warning("Skipping oversized stdin line: %s", exc)
            continue
        if not raw:
            break
        line = raw.decode("utf-8", errors="replace").strip()
        if not line:
            continue
        task = asyncio.get_running_loop().create_task(handle(line))
        in_flight.add(task)
        task.add_done_callback(in_flight.discard)

    logger.info("stdin closed, shutting down")
    if in_flight:
        await asyncio.gather(*in_flight, return_exceptions=True)
