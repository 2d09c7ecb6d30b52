"""Ainura MCP — HTTP, SSE and WebSocket server.

Exposes:
  GET  /sse, GET /                — SSE stream (Accept: text/event-stream) or health JSON
  POST /message?sessionId=…       — companion POST for an SSE session (202, reply via SSE)
  POST /mcp, POST /               — direct JSON-RPC (reply in the HTTP body)
  GET  /health                    — liveness + connected devices
  POST /func/{tool}               — call one tool REST-style
  GET  /generate_skill_definition — SKILL.md for curl-driven agents
  WS   /                          — device connections

Start with::

    python -m ainura
    # or
    ainura-mcp --port 7778 --stdio
"""

from __future__ import annotations

import asyncio
import json
import logging
import socket
from typing import Any

import uvicorn
from fastapi import APIRouter, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response, StreamingResponse

from ainura import __version__
from ainura.config import ServerConfig
from ainura.devices.registry import DeviceRegistry
from ainura.devices.websocket import device_ws_handler
from ainura.mcp.dispatcher import MCPDispatcher
from ainura.mcp.tools import TOOLS
from ainura.skill import render_skill_markdown
from ainura.transport.sse import SessionManager
from ainura.transport.stdio import serve_stdio

logger = logging.getLogger(__name__)

router = APIRouter()


# ──────────────────────────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────────────────────────

def _health(registry: DeviceRegistry) -> dict[str, Any]:
    return {
        "status": "ok",
        "devices": len(registry),
        "deviceList": [
            {**d.record.summary(), "status": d.record.status.value}
            for d in registry.snapshot()
        ],
    }


async def _read_json(request: Request, empty: Any = None) -> Any:
    """Decode the request body; raises ``ValueError`` on bad JSON."""
    body = await request.body()
    if not body.strip():
        if empty is not None:
            return empty
        raise ValueError("Empty request body")
    return json.loads(body)


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=400)


# ──────────────────────────────────────────────────────────────────
# Agent-facing endpoints
# ──────────────────────────────────────────────────────────────────

@router.get("/")
@router.get("/sse")
async def sse_or_health(request: Request):
    state = request.app.state
    if "text/event-stream" not in request.headers.get("accept", ""):
        return _health(state.registry)

    sessions: SessionManager = state.sessions
    session = sessions.open()
    endpoint = state.config.message_url(str(request.base_url), session.session_id)
    return StreamingResponse(
        sessions.stream(session, endpoint),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@router.post("/message")
async def sse_message(request: Request, sessionId: str | None = None):
    state = request.app.state
    session = state.sessions.get(sessionId)
    if session is None:
        return _bad_request("Invalid or expired session")

    try:
        payload = await _read_json(request)
    except ValueError as exc:
        return _bad_request(str(exc))

    response = await state.dispatcher.handle_request(payload)
    if response is not None and not session.send("message", response):
        logger.warning("SSE session %s... closed before its response was ready", sessionId[:8])
    return Response(status_code=202)


@router.post("/")
@router.post("/mcp")
async def direct_rpc(request: Request):
    try:
        payload = await _read_json(request)
    except ValueError as exc:
        return _bad_request(str(exc))

    response = await request.app.state.dispatcher.handle_request(payload)
    if response is None:
        return Response(status_code=202)
    return JSONResponse(response)


@router.get("/health")
async def health(request: Request):
    return _health(request.app.state.registry)


@router.post("/func/{tool_name}")
async def call_function(tool_name: str, request: Request):
    try:
        args = await _read_json(request, empty={})
    except ValueError as exc:
        return _bad_request(str(exc))

    result = await request.app.state.dispatcher.call_tool(tool_name, args)
    return JSONResponse(result, status_code=400 if result.get("isError") else 200)


@router.get("/generate_skill_definition")
async def skill_definition(request: Request):
    base = request.app.state.config.public_url or str(request.base_url)
    return PlainTextResponse(render_skill_markdown(TOOLS, base), media_type="text/markdown")


# ──────────────────────────────────────────────────────────────────
# App factory
# ──────────────────────────────────────────────────────────────────

def create_app(
    config: ServerConfig | None = None,
    registry: DeviceRegistry | None = None,
) -> FastAPI:
    """Build the app; every route shares one registry and dispatcher."""
    config = config or ServerConfig()
    registry = registry or DeviceRegistry()

    app = FastAPI(title="Ainura MCP", version=__version__)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )
    app.state.config = config
    app.state.registry = registry
    app.state.sessions = SessionManager()
    app.state.dispatcher = MCPDispatcher(registry, guide=config.load_guide(), port=config.port)

    app.include_router(router)
    app.add_api_websocket_route("/", device_ws_handler)
    return app


# ──────────────────────────────────────────────────────────────────
# Entry point
# ──────────────────────────────────────────────────────────────────

def bind_socket(host: str, port: int) -> socket.socket:
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    try:
        sock.bind((host, port))
    except OSError:
        sock.close()
        raise
    sock.set_inheritable(True)
    return sock


async def run_server(config: ServerConfig) -> None:
    """Serve HTTP/WS (and stdio when enabled) until stopped.

    A port that cannot be bound is fatal. When stdio is enabled, end of
    stdin stops the whole server.
    """
    app = create_app(config)
    try:
        sock = bind_socket(config.host, config.port)
    except OSError as exc:
        logger.error("Port %d already in use (%s)", config.port, exc)
        logger.error("Another server is running on this port.")
        raise SystemExit(1) from exc

    server = uvicorn.Server(uvicorn.Config(
        app,
        log_config=None,
        log_level=config.log_level.lower(),
        timeout_graceful_shutdown=1,
    ))

    logger.info("Ainura MCP Server v%s — multi-device PageNodes orchestration", __version__)
    logger.info("HTTP + WebSocket on port %d", config.port)
    logger.info("SSE endpoint: http://localhost:%d/sse", config.port)
    logger.info("WebSocket:    ws://localhost:%d/", config.port)
    logger.info(app.state.registry.status_line())

    serve_task = asyncio.create_task(server.serve(sockets=[sock]))
    if config.stdio:
        await serve_stdio(app.state.dispatcher)
        server.should_exit = True
    await serve_task
