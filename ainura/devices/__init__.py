"""Device side of the server.

  - Models: registration payloads and registry records
  - Registry: the authoritative store of connected devices
  - Aggregator: union of every device's node catalog
  - Peer: symmetric JSON-RPC over one device WebSocket
  - WebSocket: connection handler that registers/unregisters devices
"""
