from __future__ import annotations

import dataclasses


@dataclasses.dataclass(frozen=True)
class RelayConfig:
    """Addresses and timing for the relay server and its clients."""

    relay_address: str = "ws://localhost:3000/ws"
    """WebSocket URI that clients connect to."""

    reconnect_delay_ms: int = 2000
    """Fixed delay between a lost connection and the next connection attempt."""

    host: str = "0.0.0.0"
    """Host the server binds to."""

    port: int = 3000
    """Port the server binds to."""

    path: str = "/ws"
    """Path that accepts WebSocket upgrades."""
