from __future__ import annotations

import asyncio
import sys
import threading
from typing import Callable, List, Optional, Union

import rich
import websockets.exceptions
import websockets.uri
from rich.markup import escape
from typing_extensions import Literal
from websockets.asyncio.client import ClientConnection, connect

from ._callback_errors import error_print_wrapper, print_future_errors
from .infra import ChatMessage, MalformedMessageError

ConnectionState = Literal["disconnected", "connecting", "connected"]


class RelayClient:
    """Single logical connection to the relay, reconnecting on any failure.

    After :meth:`start`, the client tries to connect; whenever the connection
    fails or drops, it waits `reconnect_delay_ms` and tries again, forever, until
    :meth:`close` is called.

    Args:
        relay_address: WebSocket URI of the relay, eg `ws://localhost:3000/ws`.
        reconnect_delay_ms: Fixed delay between connection attempts.
        verbose: Toggle for connection status prints.
    """

    def __init__(
        self,
        relay_address: str,
        reconnect_delay_ms: int = 2000,
        verbose: bool = True,
    ) -> None:
        # Fail here instead of retrying a bad URI forever.
        websockets.uri.parse_uri(relay_address)

        self._relay_address = relay_address
        self._reconnect_delay_sec = reconnect_delay_ms / 1000.0
        self._verbose = verbose

        self._message_cb: List[Callable[[ChatMessage], None]] = []
        self._state_cb: List[Callable[[ConnectionState], None]] = []

        self._state: ConnectionState = "disconnected"
        self._lock = threading.Lock()
        self._closed = False

        self._thread: Optional[threading.Thread] = None
        self._event_loop: Optional[asyncio.AbstractEventLoop] = None
        self._close_event: Optional[asyncio.Event] = None
        self._connect_task: Optional[asyncio.Task[None]] = None
        self._websocket: Optional[ClientConnection] = None

    def on_message(
        self, cb: Callable[[ChatMessage], None]
    ) -> Callable[[ChatMessage], None]:
        """Attach a callback to run for each message received from the relay.

        Callbacks run on the client's background thread, in arrival order."""
        self._message_cb.append(cb)
        return cb

    def on_state_change(
        self, cb: Callable[[ConnectionState], None]
    ) -> Callable[[ConnectionState], None]:
        """Attach a callback to run when the connection state changes."""
        self._state_cb.append(cb)
        return cb

    def get_state(self) -> ConnectionState:
        return self._state

    def start(self) -> None:
        """Start connecting. Does nothing if already started or closed."""
        with self._lock:
            if self._thread is not None or self._closed:
                return

            ready_sem = threading.Semaphore(value=1)
            ready_sem.acquire()
            self._thread = threading.Thread(
                target=lambda: self._background_worker(ready_sem),
                daemon=True,
            )
            self._thread.start()

            # Wait for the thread to set up its event loop. Holding the lock
            # keeps `close()` from racing with this.
            ready_sem.acquire()

    def send(self, message: ChatMessage) -> bool:
        """Send a message to the relay.

        Silently ignored if the text is blank or we aren't connected. Raises
        :class:`MalformedMessageError` if the message can't be encoded.

        Returns:
            True if the message was handed to the transport.
        """
        if not message.message.strip():
            return False
        serialized = message.serialize()

        websocket = self._websocket
        event_loop = self._event_loop
        if self._state != "connected" or websocket is None or event_loop is None:
            return False

        try:
            future = asyncio.run_coroutine_threadsafe(
                websocket.send(serialized), event_loop
            )
        except RuntimeError:
            # Event loop already closed.
            return False
        future.add_done_callback(print_future_errors)
        return True

    def close(self) -> None:
        """Close the connection and stop reconnecting. Blocks until the background
        thread exits. Safe to call more than once."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            thread = self._thread

        if thread is not None:
            assert self._event_loop is not None

            @self._event_loop.call_soon_threadsafe
            def _() -> None:
                assert self._close_event is not None
                self._close_event.set()
                # Cancels a pending reconnect delay or handshake. An open
                # connection is closed on the way out of `connect()`.
                if self._connect_task is not None:
                    self._connect_task.cancel()

            thread.join()

        self._set_state("disconnected")

    def _background_worker(self, ready_sem: threading.Semaphore) -> None:
        event_loop = asyncio.new_event_loop()
        asyncio.set_event_loop(event_loop)
        self._event_loop = event_loop
        self._close_event = asyncio.Event()
        self._connect_task = event_loop.create_task(self._connect_loop())
        ready_sem.release()

        try:
            event_loop.run_until_complete(self._connect_task)
        except asyncio.CancelledError:
            # Expected when `close()` interrupts a delay or handshake.
            pass
        finally:
            event_loop.close()

    async def _connect_loop(self) -> None:
        """Connect, receive until the connection drops, wait, repeat."""
        close_event = self._close_event
        assert close_event is not None

        while not close_event.is_set():
            self._set_state("connecting")
            try:
                async with connect(self._relay_address, compression=None) as websocket:
                    self._websocket = websocket
                    self._set_state("connected")
                    async for raw in websocket:
                        self._handle_incoming(raw)
            except (
                OSError,
                asyncio.TimeoutError,
                websockets.exceptions.WebSocketException,
            ) as e:
                rich.print(
                    f"[bold](chatrelay)[/bold] Connection error: {escape(repr(e))}",
                    file=sys.stderr,
                )
            finally:
                self._websocket = None
                self._set_state("disconnected")

            # Throttle connection attempts.
            try:
                await asyncio.wait_for(
                    close_event.wait(), timeout=self._reconnect_delay_sec
                )
            except asyncio.TimeoutError:
                pass

    def _handle_incoming(self, raw: Union[str, bytes]) -> None:
        try:
            message = ChatMessage.deserialize(raw)
        except MalformedMessageError as e:
            rich.print(
                f"[bold](chatrelay)[/bold] Dropped malformed message: {escape(str(e))}",
                file=sys.stderr,
            )
            return

        for cb in self._message_cb:
            error_print_wrapper(cb)(message)

    def _set_state(self, state: ConnectionState) -> None:
        with self._lock:
            if state == self._state:
                return
            self._state = state

        if self._verbose:
            rich.print(f"[bold](chatrelay)[/bold] {state.capitalize()}")
        for cb in self._state_cb:
            error_print_wrapper(cb)(state)
