from __future__ import annotations

import time

import rich
from rich import box, style
from rich.panel import Panel
from rich.table import Table

from . import infra
from ._config import RelayConfig


class RelayServer:
    """:class:`RelayServer` runs the chat relay. On instantiation, it launches a
    thread with a WebSocket server that rebroadcasts every message it receives to
    all connected clients, sender included.

    The same port also answers plain HTTP: `GET /` is a health check.

    Args:
        host: Host to bind server to.
        port: Port to bind server to. 0 picks a free port.
        path: Path that accepts WebSocket upgrades.
        verbose: Toggle for status prints.
    """

    def __init__(
        self,
        host: str = RelayConfig.host,
        port: int = RelayConfig.port,
        path: str = RelayConfig.path,
        verbose: bool = True,
    ):
        server = infra.WebsockServer(host=host, port=port, path=path, verbose=verbose)
        self._websock_server = server
        server.start()

        if not verbose:
            return

        # Port may have changed.
        port = server._port
        if host == "0.0.0.0":
            # 0.0.0.0 is not a real IP and people are often confused by it;
            # we'll just print localhost.
            http_url = f"http://localhost:{port}"
            ws_url = f"ws://localhost:{port}{path}"
        else:
            http_url = f"http://{host}:{port}"
            ws_url = f"ws://{host}:{port}{path}"
        table = Table(
            title=None,
            show_header=False,
            box=box.MINIMAL,
            title_style=style.Style(bold=True),
        )
        table.add_row("HTTP", http_url)
        table.add_row("Websocket", ws_url)
        rich.print(Panel(table, title="[bold]chatrelay[/bold]", expand=False))

    @classmethod
    def from_config(cls, config: RelayConfig, verbose: bool = True) -> RelayServer:
        return cls(host=config.host, port=config.port, path=config.path, verbose=verbose)

    @property
    def registry(self) -> infra.ConnectionRegistry:
        """Live-connection registry. Owned by this server."""
        return self._websock_server.registry

    def get_host(self) -> str:
        """Returns the host address of the relay server."""
        return self._websock_server._host

    def get_port(self) -> int:
        """Returns the port of the relay server. This could be different from the
        originally requested one.

        Returns:
            Port as integer.
        """
        return self._websock_server._port

    def get_connection_count(self) -> int:
        """Number of currently open connections."""
        return len(self._websock_server.registry)

    def stop(self) -> None:
        """Stop the relay server and close all connections."""
        self._websock_server.stop()

    def sleep_forever(self) -> None:
        """Equivalent to:
        ```
        while True:
            time.sleep(3600)
        ```
        """
        while True:
            time.sleep(3600)
