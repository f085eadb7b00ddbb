import socket
import time
from typing import Callable, List

from websockets.protocol import State


def find_free_port() -> int:
    """Ask the OS for a port that nothing is listening on."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


def wait_until(
    predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.01
) -> bool:
    """Poll until `predicate()` is true. Returns False on timeout."""
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class FakeConnection:
    """Stand-in for a server connection: records what's sent to it."""

    def __init__(self, fail: bool = False) -> None:
        self.state = State.OPEN
        self.sent: List[str] = []
        self.fail = fail

    async def send(self, message: str) -> None:
        if self.fail:
            raise ConnectionResetError("Connection reset by peer")
        self.sent.append(message)
