from __future__ import annotations

import asyncio
import http
import json
import sys
import threading
from asyncio.events import AbstractEventLoop
from typing import Optional, Set, Tuple, Union

import rich
import websockets.exceptions
from rich.markup import escape
from typing_extensions import Protocol
from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.http11 import Request, Response
from websockets.protocol import State

from ._messages import ChatMessage, MalformedMessageError


class RelayConnection(Protocol):
    """Anything the registry can broadcast to. `websockets` server connections
    satisfy this."""

    @property
    def state(self) -> State: ...

    async def send(self, message: str) -> None: ...


class ConnectionRegistry:
    """Membership set of open connections, with fan-out broadcast.

    Every well-formed inbound message is sent to every open member, including
    the sender. Membership is only changed by the open/close/error handlers.

    Args:
        verbose: Toggle for connection status prints. Errors are always printed.
    """

    def __init__(self, verbose: bool = True) -> None:
        self._verbose = verbose
        self._connections: Set[RelayConnection] = set()

        # Guards membership mutation and snapshots. Handlers run on the server's
        # event loop, but the set can be observed from other threads.
        self._lock = threading.Lock()

        # One broadcast at a time, so that every connection sees the same order.
        self._broadcast_lock = asyncio.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._connections)

    def __contains__(self, connection: object) -> bool:
        with self._lock:
            return connection in self._connections

    def snapshot(self) -> Tuple[RelayConnection, ...]:
        """Point-in-time copy of the membership set."""
        with self._lock:
            return tuple(self._connections)

    def on_open(self, connection: RelayConnection) -> None:
        """Add a newly opened connection."""
        with self._lock:
            self._connections.add(connection)
            total = len(self._connections)
        if self._verbose:
            rich.print(f"[bold](chatrelay)[/bold] Client connected ({total} total)")

    def on_close(self, connection: RelayConnection) -> None:
        """Remove a connection. Removing an absent connection is a no-op."""
        with self._lock:
            if connection not in self._connections:
                return
            self._connections.remove(connection)
            total = len(self._connections)
        if self._verbose:
            rich.print(f"[bold](chatrelay)[/bold] Client disconnected ({total} total)")

    def on_error(self, connection: RelayConnection, error: BaseException) -> None:
        """Log a transport error and drop the connection.

        Transports don't always follow an error with a close notification, so
        the error is treated as a removal trigger in its own right."""
        rich.print(
            f"[bold](chatrelay)[/bold] WebSocket error: {escape(repr(error))}",
            file=sys.stderr,
        )
        self.on_close(connection)

    async def on_message(
        self, connection: RelayConnection, raw: Union[str, bytes]
    ) -> int:
        """Parse and broadcast an inbound payload. Malformed payloads are logged and
        dropped; the sender is not penalized.

        Returns:
            Number of connections the message was delivered to.
        """
        try:
            message = ChatMessage.deserialize(raw)
        except MalformedMessageError as e:
            rich.print(
                f"[bold](chatrelay)[/bold] Error parsing message: {escape(str(e))}",
                file=sys.stderr,
            )
            return 0

        if self._verbose:
            rich.print(
                "[bold](chatrelay)[/bold] Message received:", escape(str(message))
            )
        return await self.broadcast(message)

    async def broadcast(self, message: ChatMessage) -> int:
        """Send a message to every open connection in a snapshot of the membership
        set. A failed write drops that recipient and delivery continues.

        Returns:
            Number of connections the message was delivered to.
        """
        serialized = message.serialize()
        delivered = 0
        async with self._broadcast_lock:
            for connection in self.snapshot():
                if connection.state is not State.OPEN:
                    continue
                try:
                    await connection.send(serialized)
                except Exception as e:
                    rich.print(
                        "[bold](chatrelay)[/bold] Failed to send to client:",
                        escape(repr(e)),
                        file=sys.stderr,
                    )
                    self.on_close(connection)
                else:
                    delivered += 1
        return delivered


class WebsockServer:
    """Websocket server abstraction. Runs an event loop on a background thread and
    feeds connection events into a :class:`ConnectionRegistry`.

    Args:
        host: Host to bind server to.
        port: Port to bind server to. If it's taken, the next port is tried.
            Use 0 to let the OS pick one.
        path: Path that accepts WebSocket upgrades.
        registry: Registry to feed. A new one is created if not passed in.
        verbose: Toggle for print messages.
    """

    def __init__(
        self,
        host: str,
        port: int,
        path: str = "/ws",
        registry: Optional[ConnectionRegistry] = None,
        verbose: bool = True,
    ):
        self._host = host
        self._port = port
        self._path = path
        self._verbose = verbose
        self.registry = (
            registry if registry is not None else ConnectionRegistry(verbose=verbose)
        )

        self._thread: Optional[threading.Thread] = None
        self._event_loop: Optional[AbstractEventLoop] = None
        self._server: Optional[Server] = None
        self._start_error: Optional[BaseException] = None
        self._stop_lock = threading.Lock()
        self._stopped = False

    def start(self) -> None:
        """Start the server. Blocks until the listening socket is bound."""
        assert self._thread is None, "Server was already started."

        ready_sem = threading.Semaphore(value=1)
        ready_sem.acquire()
        self._thread = threading.Thread(
            target=lambda: self._background_worker(ready_sem),
            daemon=True,
        )
        self._thread.start()

        # Wait for the thread to bind the socket (or give up).
        ready_sem.acquire()
        if self._start_error is not None:
            self._stopped = True
            raise self._start_error

    def stop(self) -> None:
        """Stop the server: close all connections and free the port."""
        with self._stop_lock:
            if self._stopped or self._thread is None:
                return
            self._stopped = True

        event_loop = self._event_loop
        assert event_loop is not None
        asyncio.run_coroutine_threadsafe(self._shutdown(), event_loop).result()
        event_loop.call_soon_threadsafe(event_loop.stop)
        self._thread.join()

    async def _shutdown(self) -> None:
        assert self._server is not None
        self._server.close()
        await self._server.wait_closed()

    async def _serve(self, connection: ServerConnection) -> None:
        """Server loop, run once per connection."""
        registry = self.registry
        registry.on_open(connection)
        try:
            async for raw in connection:
                await registry.on_message(connection, raw)
        except websockets.exceptions.ConnectionClosedError as e:
            # Closed without a (normal) close frame, eg a dropped socket.
            registry.on_error(connection, e)
        finally:
            registry.on_close(connection)

    def _process_request(
        self, connection: ServerConnection, request: Request
    ) -> Optional[Response]:
        """Plain HTTP handling on the shared port: health check on `/`, 404 for
        anything that isn't the WebSocket path."""
        path = request.path.partition("?")[0]
        if path == "/":
            response = connection.respond(
                http.HTTPStatus.OK,
                json.dumps({"status": "ok", "message": "Chat server running"}),
            )
            del response.headers["Content-Type"]
            response.headers["Content-Type"] = "application/json"
            return response
        if path != self._path:
            return connection.respond(http.HTTPStatus.NOT_FOUND, "404\n")

        # Let the upgrade through.
        return None

    def _background_worker(self, ready_sem: threading.Semaphore) -> None:
        host = self._host
        port = self._port

        event_loop = asyncio.new_event_loop()
        asyncio.set_event_loop(event_loop)
        self._event_loop = event_loop

        async def start_serving(port: int) -> Server:
            return await serve(
                self._serve,
                host,
                port,
                compression=None,
                process_request=self._process_request,
            )

        error: Optional[OSError] = None
        for _ in range(500):
            try:
                self._server = event_loop.run_until_complete(start_serving(port))
                break
            except OSError as e:  # Port not available.
                error = e
                if port == 0:
                    break
                port += 1
                continue

        if self._server is None:
            self._start_error = error
            event_loop.close()
            ready_sem.release()
            return

        # Port may have changed, or been picked by the OS.
        self._port = next(iter(self._server.sockets)).getsockname()[1]
        ready_sem.release()

        event_loop.run_forever()
        event_loop.close()
        if self._verbose:
            rich.print("[bold](chatrelay)[/bold] Server stopped")
