"""Log handlers and the registry that fans lines out to them.

Handlers are called synchronously on the tailer's thread, in registration
order. They should be quick: a slow handler slows the whole session down.
A handler that raises is logged and skipped; the remaining handlers still
receive the line.

Example:
    class Collect:
        def __init__(self):
            self.lines = []

        def on_line(self, text, node):
            self.lines.append(text)

        def on_error_line(self, text, node):
            self.lines.append(f"ERR {text}")

    registry = LogHandlerRegistry(ConsoleEcho(), Collect())
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterator
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from loguru import logger

from skynode.constants import Stream

if TYPE_CHECKING:
    from skynode.types import LogLine

log = logger.bind(component="handlers")


@runtime_checkable
class LogHandler(Protocol):
    """Receives lines from a tail session, tagged with the node they came from."""

    def on_line(self, text: str, node: Any) -> None: ...

    def on_error_line(self, text: str, node: Any) -> None: ...


def _node_name(node: Any) -> str:
    return getattr(node, "name", None) or str(node)


class LogHandlerRegistry:
    """Ordered, copy-on-write set of handlers.

    Readers iterate over an immutable snapshot, so handlers may be
    registered or removed from any thread while a dispatch is running.
    A change takes effect from the next line on.
    """

    def __init__(self, *handlers: LogHandler) -> None:
        self._handlers: tuple[LogHandler, ...] = ()
        self._lock = threading.Lock()
        for handler in handlers:
            self.register(handler)

    def register(self, handler: LogHandler) -> LogHandler:
        """Add handler at the end. Registering it twice is a no-op."""
        with self._lock:
            if handler not in self._handlers:
                self._handlers = (*self._handlers, handler)
        return handler

    def unregister(self, handler: LogHandler) -> bool:
        """Remove handler. Returns False if it wasn't registered."""
        with self._lock:
            if handler not in self._handlers:
                return False
            self._handlers = tuple(h for h in self._handlers if h is not handler)
            return True

    def clear(self) -> None:
        with self._lock:
            self._handlers = ()

    def __iter__(self) -> Iterator[LogHandler]:
        return iter(self._handlers)

    def __len__(self) -> int:
        return len(self._handlers)

    def __contains__(self, handler: object) -> bool:
        return handler in self._handlers

    def dispatch(self, line: LogLine) -> int:
        """Deliver line to every handler.

        Returns:
            Number of handlers that raised.
        """
        failures = 0
        for handler in self._handlers:
            try:
                match line.stream:
                    case Stream.STDERR:
                        handler.on_error_line(line.text, line.node)
                    case _:
                        handler.on_line(line.text, line.node)
            except Exception:
                failures += 1
                log.exception(
                    "Log handler {handler} failed on {stream} line from {node}",
                    handler=type(handler).__name__,
                    stream=line.stream,
                    node=_node_name(line.node),
                )
        return failures


# =============================================================================
# Built-in handlers
# =============================================================================


class ConsoleEcho:
    """Echoes tailed lines through the skynode logger."""

    def __init__(self) -> None:
        self._log = logger.bind(component="console-echo")

    def on_line(self, text: str, node: Any) -> None:
        self._log.info("[## {node} ##] {text}", node=_node_name(node), text=text)

    def on_error_line(self, text: str, node: Any) -> None:
        self._log.info("[ERROR ## {node} ##] {text}", node=_node_name(node), text=text)


class CallbackHandler:
    """Adapts plain callables to the LogHandler protocol.

    Args:
        on_line: Called for stdout lines.
        on_error_line: Called for stderr lines. Defaults to on_line.
    """

    def __init__(
        self,
        on_line: Callable[[str, Any], object],
        on_error_line: Callable[[str, Any], object] | None = None,
    ) -> None:
        self._on_line = on_line
        self._on_error_line = on_error_line or on_line

    def on_line(self, text: str, node: Any) -> None:
        self._on_line(text, node)

    def on_error_line(self, text: str, node: Any) -> None:
        self._on_error_line(text, node)
