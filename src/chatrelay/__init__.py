from . import infra as infra
from ._client import ConnectionState as ConnectionState
from ._client import RelayClient as RelayClient
from ._config import RelayConfig as RelayConfig
from ._server import RelayServer as RelayServer
from ._session import ChatSession as ChatSession
from .infra import ChatMessage as ChatMessage

__version__ = "0.1.0"
