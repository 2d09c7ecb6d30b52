"""Agent-facing transports: stdio and SSE sessions (HTTP routes live in :mod:`ainura.server`)."""
