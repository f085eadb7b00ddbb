""":mod:`chatrelay.infra` provides the WebSocket relay infrastructure.

We implement abstractions for:
- Encoding and decoding chat messages as JSON text frames.
- Tracking the set of open connections and broadcasting to all of them.
- Launching a WebSocket+HTTP server on a shared port, on a background thread.

:class:`chatrelay.RelayServer` wraps these; they're mostly useful for embedding
the relay into another event loop or for testing.
"""

from ._infra import ConnectionRegistry as ConnectionRegistry
from ._infra import RelayConnection as RelayConnection
from ._infra import WebsockServer as WebsockServer
from ._messages import ChatMessage as ChatMessage
from ._messages import MalformedMessageError as MalformedMessageError
