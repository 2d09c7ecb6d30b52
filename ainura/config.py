"""Configuration for the Ainura MCP server."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_PORT = 7778
SERVER_NAME = "ainura-mcp"
PROTOCOL_VERSION = "2024-11-05"


class ConfigError(Exception):
    """Raised when the server configuration is invalid."""


def _env_port() -> str:
    return os.environ.get(
        "AINURA_MCP_PORT", os.environ.get("PAGENODES_MCP_PORT", str(DEFAULT_PORT))
    )


@dataclass
class ServerConfig:
    """Server configuration — environment first, CLI flags override."""

    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    stdio: bool = False
    public_url: str = ""
    guide_path: str = "PAGENODES.md"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> ServerConfig:
        raw_port = _env_port()
        try:
            port = int(raw_port)
        except ValueError:
            raise ConfigError(f"Invalid port: {raw_port}") from None
        config = cls(
            host=os.environ.get("AINURA_MCP_HOST", "0.0.0.0"),
            port=port,
            public_url=os.environ.get("AINURA_MCP_PUBLIC_URL", ""),
            guide_path=os.environ.get("AINURA_MCP_GUIDE", "PAGENODES.md"),
            log_level=os.environ.get("AINURA_MCP_LOG_LEVEL", "INFO"),
        )
        config.validate()
        return config

    def validate(self) -> None:
        if not 1 <= self.port <= 65535:
            raise ConfigError(f"Invalid port: {self.port}")

    def load_guide(self) -> str:
        """Return the integration guide markdown, or ``""`` when absent."""
        path = Path(self.guide_path)
        if not path.exists():
            logger.debug("Guide not found at %s", path)
            return ""
        return path.read_text(encoding="utf-8")

    def message_url(self, base_url: str, session_id: str) -> str:
        """Companion POST URL for an SSE session."""
        base = (self.public_url or base_url).rstrip("/")
        return f"{base}/message?sessionId={session_id}"
