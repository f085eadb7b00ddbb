from __future__ import annotations

import threading
from typing import Any, Callable, List, Tuple

from ._client import ConnectionState, RelayClient
from ._config import RelayConfig
from .infra import ChatMessage


class ChatSession:
    """One user's participation in the chat, across any number of reconnects.

    Keeps an append-only log of received messages, in arrival order. Sent
    messages show up in the log once the relay echoes them back.

    Args:
        username: Name to send messages under. Leading and trailing whitespace
            is stripped; it can't be blank.
        config: Relay address and reconnect delay.
        verbose: Toggle for connection status prints.
    """

    def __init__(
        self,
        username: str,
        config: RelayConfig = RelayConfig(),
        verbose: bool = True,
    ) -> None:
        username = username.strip()
        if not username:
            raise ValueError("Username must not be blank.")

        self._username = username
        self._log: List[ChatMessage] = []
        self._log_lock = threading.Lock()
        self._client = RelayClient(
            config.relay_address,
            reconnect_delay_ms=config.reconnect_delay_ms,
            verbose=verbose,
        )

        @self._client.on_message
        def _(message: ChatMessage) -> None:
            with self._log_lock:
                self._log.append(message)

    def __enter__(self) -> ChatSession:
        self.start()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    @property
    def username(self) -> str:
        return self._username

    @property
    def messages(self) -> Tuple[ChatMessage, ...]:
        """Snapshot of the message log."""
        with self._log_lock:
            return tuple(self._log)

    @property
    def connection_state(self) -> ConnectionState:
        return self._client.get_state()

    def start(self) -> None:
        """Start connecting to the relay."""
        self._client.start()

    def close(self) -> None:
        """Disconnect and stop reconnecting."""
        self._client.close()

    def on_message(
        self, cb: Callable[[ChatMessage], None]
    ) -> Callable[[ChatMessage], None]:
        """Attach a callback to run for each received message, after it's been
        appended to the log."""
        return self._client.on_message(cb)

    def on_state_change(
        self, cb: Callable[[ConnectionState], None]
    ) -> Callable[[ConnectionState], None]:
        return self._client.on_state_change(cb)

    def send_text(self, text: str) -> bool:
        """Send `text` as this user, stamped with the current time.

        Returns:
            False if the text is blank or we aren't connected; nothing is sent.
        """
        text = text.strip()
        if not text:
            return False
        return self._client.send(ChatMessage.create(self._username, text))

    def is_own_message(self, message: ChatMessage) -> bool:
        return message.user == self._username
