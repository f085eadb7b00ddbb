import threading
import time
from typing import List

import pytest
import websockets.exceptions
from utils import find_free_port, wait_until
from websockets.sync.server import ServerConnection, serve

import chatrelay
from chatrelay import ChatMessage, RelayClient


def test_invalid_address_fails_fast() -> None:
    with pytest.raises(websockets.exceptions.InvalidURI):
        RelayClient("http://localhost:3000/ws")


def test_send_is_ignored_while_disconnected() -> None:
    client = RelayClient("ws://127.0.0.1:1/ws", verbose=False)
    assert client.get_state() == "disconnected"
    assert not client.send(ChatMessage("alice", "hi", 1))


def test_close_is_idempotent() -> None:
    client = RelayClient("ws://127.0.0.1:1/ws", verbose=False)
    client.close()
    client.close()

    # A closed client can't be restarted.
    client.start()
    assert client.get_state() == "disconnected"


def test_retries_at_a_fixed_cadence() -> None:
    port = find_free_port()
    client = RelayClient(
        f"ws://127.0.0.1:{port}/ws", reconnect_delay_ms=200, verbose=False
    )
    attempts: List[float] = []

    @client.on_state_change
    def _(state: chatrelay.ConnectionState) -> None:
        if state == "connecting":
            attempts.append(time.time())

    client.start()
    try:
        assert wait_until(lambda: len(attempts) >= 4, timeout=5.0)
    finally:
        client.close()

    intervals = [b - a for a, b in zip(attempts[:-1], attempts[1:])]
    for interval in intervals:
        assert 0.18 <= interval < 1.0


def test_close_halts_pending_reconnect() -> None:
    port = find_free_port()
    client = RelayClient(
        f"ws://127.0.0.1:{port}/ws", reconnect_delay_ms=100, verbose=False
    )
    attempts: List[float] = []
    client.on_state_change(
        lambda state: attempts.append(time.time()) if state == "connecting" else None
    )
    client.start()
    assert wait_until(lambda: len(attempts) >= 2)
    client.close()

    count = len(attempts)
    time.sleep(0.4)
    assert len(attempts) == count
    assert client.get_state() == "disconnected"


def test_connects_once_relay_comes_up() -> None:
    port = find_free_port()
    client = RelayClient(
        f"ws://127.0.0.1:{port}/ws", reconnect_delay_ms=200, verbose=False
    )
    client.start()
    server = None
    try:
        # Nothing is listening yet.
        time.sleep(0.5)
        assert client.get_state() != "connected"

        server = chatrelay.RelayServer(host="127.0.0.1", port=port, verbose=False)
        assert server.get_port() == port

        # One retry cycle, plus some slack for the handshake.
        assert wait_until(lambda: client.get_state() == "connected", timeout=1.0)
        assert wait_until(lambda: server.get_connection_count() == 1)
    finally:
        client.close()
        if server is not None:
            server.stop()


def test_reconnects_after_relay_restart() -> None:
    server = chatrelay.RelayServer(host="127.0.0.1", port=0, verbose=False)
    port = server.get_port()
    client = RelayClient(
        f"ws://127.0.0.1:{port}/ws", reconnect_delay_ms=100, verbose=False
    )
    client.start()
    try:
        assert wait_until(lambda: client.get_state() == "connected")
        server.stop()
        assert wait_until(lambda: client.get_state() != "connected")

        server = chatrelay.RelayServer(host="127.0.0.1", port=port, verbose=False)
        assert wait_until(lambda: client.get_state() == "connected")
        assert wait_until(lambda: server.get_connection_count() == 1)
    finally:
        client.close()
        server.stop()

    assert wait_until(lambda: server.get_connection_count() == 0)


def test_messages_arrive_in_order() -> None:
    server = chatrelay.RelayServer(host="127.0.0.1", port=0, verbose=False)
    address = f"ws://127.0.0.1:{server.get_port()}/ws"
    sender = RelayClient(address, verbose=False)
    receiver = RelayClient(address, verbose=False)

    received: List[ChatMessage] = []
    done = threading.Event()

    @receiver.on_message
    def _(message: ChatMessage) -> None:
        received.append(message)
        if len(received) == 50:
            done.set()

    sender.start()
    receiver.start()
    try:
        assert wait_until(lambda: server.get_connection_count() == 2)
        assert wait_until(lambda: sender.get_state() == "connected")
        for i in range(50):
            assert sender.send(ChatMessage("alice", f"message {i}", i))
        assert done.wait(timeout=5.0)
    finally:
        sender.close()
        receiver.close()
        server.stop()

    assert [m.time for m in received] == list(range(50))


def test_blank_messages_are_not_sent() -> None:
    server = chatrelay.RelayServer(host="127.0.0.1", port=0, verbose=False)
    client = RelayClient(f"ws://127.0.0.1:{server.get_port()}/ws", verbose=False)
    client.start()
    try:
        assert wait_until(lambda: client.get_state() == "connected")
        assert not client.send(ChatMessage("alice", "   ", 1))
        assert not client.send(ChatMessage("alice", "", 1))
        assert client.send(ChatMessage("alice", "ok", 1))
    finally:
        client.close()
        server.stop()


def test_callback_errors_do_not_break_the_connection() -> None:
    server = chatrelay.RelayServer(host="127.0.0.1", port=0, verbose=False)
    client = RelayClient(f"ws://127.0.0.1:{server.get_port()}/ws", verbose=False)
    received: List[ChatMessage] = []

    @client.on_message
    def _(message: ChatMessage) -> None:
        raise RuntimeError("presentation layer bug")

    client.on_message(received.append)
    client.start()
    try:
        assert wait_until(lambda: client.get_state() == "connected")
        assert client.send(ChatMessage("alice", "one", 1))
        assert client.send(ChatMessage("alice", "two", 2))
        assert wait_until(lambda: len(received) == 2)
        assert client.get_state() == "connected"
    finally:
        client.close()
        server.stop()


def test_malformed_frames_from_the_relay_are_dropped() -> None:
    valid = ChatMessage("alice", "hello", 7)

    def handler(ws: ServerConnection) -> None:
        ws.send("not json")
        ws.send("[" * 100000)
        ws.send(r'{"user": "alice", "message": "\ud800", "time": 1}')
        ws.send(valid.serialize())
        try:
            for _ in ws:
                pass
        except websockets.exceptions.ConnectionClosed:
            pass

    with serve(handler, "127.0.0.1", 0) as relay:
        thread = threading.Thread(target=relay.serve_forever, daemon=True)
        thread.start()
        port = relay.socket.getsockname()[1]

        client = RelayClient(f"ws://127.0.0.1:{port}/ws", verbose=False)
        received: List[ChatMessage] = []
        client.on_message(received.append)
        client.start()
        try:
            assert wait_until(lambda: len(received) >= 1)
            time.sleep(0.2)
            assert received == [valid]
            assert client.get_state() == "connected"
        finally:
            client.close()
            relay.shutdown()
        thread.join(timeout=5.0)
