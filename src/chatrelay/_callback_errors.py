from __future__ import annotations

import sys
import traceback
from concurrent.futures import Future
from typing import Any, Callable, TypeVar

import rich

T = TypeVar("T")


def print_future_errors(future: Future[Any]) -> None:
    """Print errors from a Future scheduled onto an event loop from another thread,
    should be used with `add_done_callback`."""
    if future.cancelled():
        return

    exc = future.exception()
    if exc is not None:
        rich.print(
            "[bold](chatrelay)[/bold] Scheduled task failed with exception:",
            file=sys.stderr,
        )
        traceback.print_exception(type(exc), exc, exc.__traceback__)


def error_print_wrapper(inner: Callable[[T], Any]) -> Callable[[T], None]:
    """Wrap a callback to print error messages when they happen.

    Callbacks are run directly on the client's event loop; an exception raised
    by one of them shouldn't tear down the connection loop."""

    def wrapped(arg: T) -> None:
        try:
            inner(arg)
        except Exception as e:
            traceback.print_exception(type(e), e, e.__traceback__, limit=100)

    return wrapped
