"""Command-line entry points: `chatrelay serve` and `chatrelay chat`."""

from __future__ import annotations

import datetime
import sys

import rich
import tyro
from rich.markup import escape

from ._client import ConnectionState
from ._config import RelayConfig
from ._server import RelayServer
from ._session import ChatSession
from .infra import ChatMessage


def serve(
    host: str = RelayConfig.host,
    port: int = RelayConfig.port,
    path: str = RelayConfig.path,
) -> None:
    """Run the relay server until interrupted.

    Args:
        host: Host to bind server to.
        port: Port to bind server to.
        path: Path that accepts WebSocket upgrades.
    """
    server = RelayServer.from_config(RelayConfig(host=host, port=port, path=path))
    try:
        server.sleep_forever()
    except KeyboardInterrupt:
        server.stop()


def format_time(time_ms: int) -> str:
    """Local `HH:MM` for an epoch-milliseconds timestamp."""
    return datetime.datetime.fromtimestamp(time_ms / 1000.0).strftime("%H:%M")


def chat(
    username: tyro.conf.Positional[str],
    relay_address: str = RelayConfig.relay_address,
    reconnect_delay_ms: int = RelayConfig.reconnect_delay_ms,
) -> None:
    """Join the chat from the terminal. Each line typed is sent as a message.

    Args:
        username: Name to send messages under.
        relay_address: WebSocket URI of the relay.
        reconnect_delay_ms: Delay between reconnection attempts.
    """
    config = RelayConfig(
        relay_address=relay_address, reconnect_delay_ms=reconnect_delay_ms
    )
    session = ChatSession(username, config=config, verbose=False)

    @session.on_message
    def _(message: ChatMessage) -> None:
        color = "blue" if session.is_own_message(message) else "green"
        rich.print(
            f"[dim]{format_time(message.time)}[/dim]"
            f" [bold {color}]{escape(message.user)}[/bold {color}]:"
            f" {escape(message.message)}"
        )

    @session.on_state_change
    def _(state: ConnectionState) -> None:
        if state == "connected":
            rich.print("[bold green]● Connected[/bold green]")
        elif state == "connecting":
            rich.print("[dim]Connecting...[/dim]")
        else:
            rich.print("[bold red]● Disconnected[/bold red]")

    with session:
        try:
            for line in sys.stdin:
                if not line.strip():
                    continue
                if not session.send_text(line):
                    rich.print("[dim]Not connected; message not sent.[/dim]")
        except KeyboardInterrupt:
            pass


def main() -> None:
    tyro.extras.subcommand_cli_from_dict({"serve": serve, "chat": chat})


if __name__ == "__main__":
    main()
