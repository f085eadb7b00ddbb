"""Chat message type and its JSON text encoding. Every frame on the wire is
assumed to be a chat message; there is no type discriminator."""

from __future__ import annotations

import dataclasses
import functools
import json
import math
import time
from typing import Any, Dict, Optional, Type, Union

from typing_extensions import get_type_hints


class MalformedMessageError(ValueError):
    """Raised when a payload can't be parsed as a :class:`ChatMessage`."""


@functools.lru_cache(maxsize=None)
def get_type_hints_cached(cls: Type[Any]) -> Dict[str, Any]:
    return get_type_hints(cls)  # type: ignore


def _coerce_field(name: str, value: Any, annotation: Type[Any]) -> Any:
    """Check a decoded JSON value against a field annotation."""

    # `bool` is a subclass of `int`, but `true` is never a valid timestamp.
    if annotation is int:
        if isinstance(value, bool):
            raise MalformedMessageError(f"Field {name!r} must be an integer, got bool")
        if isinstance(value, int):
            return value
        # Javascript only has `number`, so integral floats are accepted.
        if isinstance(value, float) and math.isfinite(value) and value.is_integer():
            return int(value)
        raise MalformedMessageError(
            f"Field {name!r} must be an integer, got {type(value).__name__}"
        )
    if annotation is str:
        if not isinstance(value, str):
            raise MalformedMessageError(
                f"Field {name!r} must be a string, got {type(value).__name__}"
            )
        # JSON `\ud800` escapes decode to lone surrogates, which can't be sent
        # back out as a UTF-8 text frame.
        try:
            value.encode("utf-8")
        except UnicodeEncodeError as e:
            raise MalformedMessageError(
                f"Field {name!r} is not encodable as UTF-8"
            ) from e
        return value
    return value


@dataclasses.dataclass(frozen=True)
class ChatMessage:
    """A single chat message, as relayed between clients.

    Args:
        user: Display name of the sender.
        message: Message text.
        time: Send time, in milliseconds since the epoch.
    """

    user: str
    message: str
    time: int

    @classmethod
    def create(
        cls, user: str, message: str, time_ms: Optional[int] = None
    ) -> ChatMessage:
        """Create a message, stamped with the current time if `time_ms` is not set."""
        if time_ms is None:
            time_ms = int(time.time() * 1000)
        return cls(user=user, message=message, time=time_ms)

    def as_serializable_dict(self) -> Dict[str, Any]:
        hints = get_type_hints_cached(type(self))
        return {
            field.name: _coerce_field(
                field.name, getattr(self, field.name), hints[field.name]
            )
            for field in dataclasses.fields(self)
        }

    def serialize(self) -> str:
        """Convert a message into a JSON text frame."""
        return json.dumps(
            self.as_serializable_dict(), ensure_ascii=False, separators=(",", ":")
        )

    @classmethod
    def deserialize(cls, raw: Union[str, bytes]) -> ChatMessage:
        """Parse a text (or UTF-8 binary) frame into a message.

        Unknown fields are dropped. Raises :class:`MalformedMessageError` for
        anything that isn't a JSON object with `user`, `message` and `time`."""
        if isinstance(raw, (bytes, bytearray, memoryview)):
            try:
                raw = bytes(raw).decode("utf-8")
            except UnicodeDecodeError as e:
                raise MalformedMessageError("Payload is not valid UTF-8") from e

        try:
            mapping = json.loads(raw)
        except json.JSONDecodeError as e:
            raise MalformedMessageError(f"Payload is not valid JSON: {e}") from e
        except RecursionError as e:
            raise MalformedMessageError("Payload is nested too deeply") from e

        if not isinstance(mapping, dict):
            raise MalformedMessageError(
                f"Expected a JSON object, got {type(mapping).__name__}"
            )

        hints = get_type_hints_cached(cls)
        kwargs: Dict[str, Any] = {}
        for field in dataclasses.fields(cls):
            if field.name not in mapping:
                raise MalformedMessageError(f"Missing field {field.name!r}")
            kwargs[field.name] = _coerce_field(
                field.name, mapping[field.name], hints[field.name]
            )
        return cls(**kwargs)
