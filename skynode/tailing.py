"""Best-effort streaming of a remote log file to in-process handlers.

A StreamTailer owns one tail session: a daemon thread that reads two byte
sources (the command's stdout and stderr), cuts them into lines and hands
every line to a LogHandlerRegistry.

The read loop never blocks on a source. Each iteration checks the
cancellation event once, then reads from every source that is ready, one
chunk each, so neither stream can starve the other. When nothing was ready
the thread waits on the cancellation event for poll_interval instead of
spinning. Lines of one stream arrive in order; the two streams interleave
in no guaranteed order.

Example:
    tailer = StreamTailer(node, LogHandlerRegistry(ConsoleEcho()))
    tailer.follow("/var/log/cloud-init-output.log")
    ...
    tailer.stop(timeout=5)
    tailer.raise_for_fault()
"""

from __future__ import annotations

import contextlib
import shlex
import threading
from collections.abc import Iterator
from typing import TYPE_CHECKING, Any

from loguru import logger

from skynode.constants import (
    TAIL_COMMAND,
    TAIL_MAX_LINE_LENGTH,
    TAIL_POLL_INTERVAL,
    TAIL_READ_SIZE,
    Stream,
)
from skynode.exceptions import NodeNotRunningError
from skynode.handlers import LogHandlerRegistry
from skynode.types import LogLine

if TYPE_CHECKING:
    from loguru import Logger

    from skynode.remote import ByteSource, Closeable, CommandExecution


class _LineReader:
    """Splits one byte source into lines, keeping the unterminated tail.

    Only the new chunk is split; the unterminated tail is kept as a list of
    pieces. A tail reaching max_line bytes is delivered as a line of its own.
    """

    __slots__ = ("source", "stream", "encoding", "max_line", "eof", "_tail", "_tail_size")

    def __init__(self, source: ByteSource, stream: Stream, encoding: str, max_line: int) -> None:
        self.source = source
        self.stream = stream
        self.encoding = encoding
        self.max_line = max_line
        self.eof = False
        self._tail: list[bytes] = []
        self._tail_size = 0

    def pull(self, size: int) -> Iterator[str]:
        chunk = self.source.read(size)
        if not chunk:
            self.eof = True
            if self._tail:
                yield self._decode(self._take(b""))
            return

        first, *rest = chunk.split(b"\n")
        if rest:
            yield self._decode(self._take(first))
            *complete, last = rest
            for raw in complete:
                yield self._decode(raw)
            first = last

        if first:
            self._tail.append(first)
            self._tail_size += len(first)
        if self._tail_size >= self.max_line:
            yield self._decode(self._take(b""))

    def _take(self, end: bytes) -> bytes:
        self._tail.append(end)
        raw = b"".join(self._tail)
        self._tail.clear()
        self._tail_size = 0
        return raw

    def _decode(self, raw: bytes) -> str:
        return raw.removesuffix(b"\r").decode(self.encoding, errors="replace")


class StreamTailer:
    """One tail session bound to a node.

    Args:
        node: Node the lines come from. Passed to every handler call.
        registry: Handlers to deliver to. Shared registries are fine.
        poll_interval: Seconds to wait when neither stream had data.
        read_size: Maximum bytes read from a stream per iteration.
        max_line_length: Bytes after which an unterminated line is delivered as is.
        encoding: Text encoding of the remote file.
        log: Logger to report on. Defaults to one bound to the node.
    """

    def __init__(
        self,
        node: Any,
        registry: LogHandlerRegistry | None = None,
        *,
        poll_interval: float = TAIL_POLL_INTERVAL,
        read_size: int = TAIL_READ_SIZE,
        max_line_length: int = TAIL_MAX_LINE_LENGTH,
        encoding: str = "utf-8",
        log: Logger | None = None,
    ) -> None:
        self.node = node
        self.registry = registry if registry is not None else LogHandlerRegistry()
        self.poll_interval = poll_interval
        self.read_size = read_size
        self.max_line_length = max_line_length
        self.encoding = encoding
        self.lines_delivered = 0
        self._cancel = threading.Event()
        self._thread: threading.Thread | None = None
        self._fault: Exception | None = None
        self._log = log or logger.bind(component="tailer", node=getattr(node, "name", node))

    # -------------------------------------------------------------------------
    # Session control
    # -------------------------------------------------------------------------

    def start(
        self,
        primary: ByteSource,
        secondary: ByteSource,
        *,
        execution: CommandExecution | None = None,
    ) -> None:
        """Start reading primary (stdout) and secondary (stderr) in the background.

        Once started, the session owns both sources (and execution, if
        given) and closes them when it ends.

        Raises:
            RuntimeError: If this tailer was already started.
            NodeNotRunningError: If the node is not running.
        """
        self._check_startable()
        self._spawn(primary, secondary, (execution,) if execution is not None else ())

    def follow(self, remote_path: str) -> None:
        """Tail remote_path on the node (``sudo tail -f``) in the background.

        Raises:
            RuntimeError: If this tailer was already started.
            NodeNotRunningError: If the node is not running.
        """
        self._check_startable()
        self._log.info(
            "Following file {path} from node {node}",
            path=remote_path, node=getattr(self.node, "name", self.node),
        )
        executor = self.node.ssh()
        try:
            execution = executor.exec(f"{TAIL_COMMAND} {shlex.quote(remote_path)}")
        except Exception:
            executor.close()
            raise
        self._spawn(execution.stdout, execution.stderr, (execution, executor))

    def stop(self, timeout: float | None = None) -> bool:
        """Request cancellation; optionally wait up to timeout for the thread.

        Returns:
            True if the session thread is no longer running.
        """
        self._cancel.set()
        if timeout is not None:
            return self.join(timeout)
        return not self.is_alive

    def join(self, timeout: float | None = None) -> bool:
        if self._thread is not None:
            self._thread.join(timeout)
        return not self.is_alive

    @property
    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def started(self) -> bool:
        return self._thread is not None

    @property
    def fault(self) -> Exception | None:
        """The error that ended the session, if any."""
        return self._fault

    def raise_for_fault(self) -> None:
        if self._fault is not None:
            raise self._fault

    def __enter__(self) -> StreamTailer:
        return self

    def __exit__(self, *_: object) -> None:
        self.stop()
        self.join()

    # -------------------------------------------------------------------------
    # Background loop
    # -------------------------------------------------------------------------

    def _check_startable(self) -> None:
        if self._thread is not None:
            raise RuntimeError("Tail session already started")
        if not self.node.is_running():
            raise NodeNotRunningError(getattr(self.node, "name", str(self.node)))

    def _spawn(
        self,
        primary: ByteSource,
        secondary: ByteSource,
        resources: tuple[Closeable, ...],
    ) -> None:
        self._thread = threading.Thread(
            target=self._run,
            args=(primary, secondary, resources),
            name=f"skynode-tail-{getattr(self.node, 'name', 'node')}",
            daemon=True,
        )
        self._thread.start()

    def _run(
        self,
        primary: ByteSource,
        secondary: ByteSource,
        resources: tuple[Closeable, ...],
    ) -> None:
        try:
            with contextlib.ExitStack() as stack:
                for resource in reversed(resources):
                    stack.callback(resource.close)
                stack.callback(secondary.close)
                stack.callback(primary.close)
                self._pump(
                    _LineReader(primary, Stream.STDOUT, self.encoding, self.max_line_length),
                    _LineReader(secondary, Stream.STDERR, self.encoding, self.max_line_length),
                )
        except Exception as e:
            self._fault = e
            self._log.exception("Tail session failed: {error}", error=e)
        else:
            self._log.debug("Tail session ended after {n} lines", n=self.lines_delivered)

    def _pump(self, *readers: _LineReader) -> None:
        while not self._cancel.is_set():
            active = [r for r in readers if not r.eof]
            if not active:
                return

            progressed = False
            for reader in active:
                if not reader.source.ready():
                    continue
                progressed = True
                for text in reader.pull(self.read_size):
                    self.registry.dispatch(LogLine(text=text, stream=reader.stream, node=self.node))
                    self.lines_delivered += 1

            if not progressed:
                self._cancel.wait(self.poll_interval)
