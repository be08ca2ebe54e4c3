from __future__ import annotations

import threading
from collections import deque
from typing import Any

import pytest
from loguru import logger

from skynode.constants import InstanceState
from skynode.remote import CommandExecution
from skynode.types import InstanceDescription, InstanceHandle, InstanceTemplate

INSTANCE_ID = "i-0123456789abcdef0"


@pytest.fixture
def log_records():
    """Every record skynode logs while the test runs."""
    records: list[dict[str, Any]] = []
    logger.enable("skynode")
    hid = logger.add(lambda message: records.append(message.record), level="DEBUG")
    yield records
    logger.remove(hid)
    logger.disable("skynode")


def messages(records: list[dict[str, Any]], level: str | None = None) -> list[str]:
    return [r["message"] for r in records if level is None or r["level"].name == level]


# =============================================================================
# Providers
# =============================================================================


class FakeProvider:
    """In-memory CloudProvider with one instance.

    A start or stop request is observed by describe_instance() only after
    settle_after polls; stuck providers never reach the requested state.
    """

    human_readable_name = "Fake Cloud"

    def __init__(
        self,
        state: InstanceState = InstanceState.RUNNING,
        *,
        settle_after: int = 0,
        stuck: bool = False,
        public_address: str | None = "203.0.113.10",
        private_address: str | None = "10.0.0.5",
    ) -> None:
        self.state = state
        self.settle_after = settle_after
        self.stuck = stuck
        self.public_address = public_address
        self.private_address = private_address
        self.missing = False
        self.fail_with: Exception | None = None
        self.calls: list[tuple[Any, ...]] = []
        self.templates: list[InstanceTemplate] = []
        self._pending: InstanceState | None = None
        self._polls = 0

    def create_instance(self, template: InstanceTemplate) -> InstanceHandle:
        self.templates.append(template)
        self.calls.append(("create", template.region, template.name))
        return InstanceHandle(
            provider_instance_id=INSTANCE_ID,
            region=template.region,
            last_known_state=self.state,
            name=template.name,
            created_image_name=template.image or template.image_id or "fake-image",
            public_address=self.public_address,
            private_address=self.private_address,
        )

    def start_instance(self, region: str, instance_id: str) -> None:
        self.calls.append(("start", region, instance_id))
        self._request(InstanceState.RUNNING)

    def stop_instance(self, region: str, instance_id: str, force: bool) -> None:
        self.calls.append(("stop", region, instance_id, force))
        self._request(InstanceState.STOPPED)

    def _request(self, target: InstanceState) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self._pending = target
        self._polls = 0

    def describe_instance(self, region: str, instance_id: str) -> InstanceDescription | None:
        if self.missing:
            return None
        if self._pending is not None and not self.stuck:
            if self._polls >= self.settle_after:
                self.state, self._pending = self._pending, None
            self._polls += 1
        return InstanceDescription(
            instance_id=instance_id,
            state=self.state,
            raw_state=str(self.state),
            public_address=self.public_address,
            private_address=self.private_address,
        )


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def handle() -> InstanceHandle:
    return InstanceHandle(
        provider_instance_id=INSTANCE_ID,
        region="us-east-1",
        last_known_state=InstanceState.RUNNING,
        name="web-1",
        created_image_name="ubuntu-jammy",
        public_address="203.0.113.10",
    )


# =============================================================================
# Remote streams
# =============================================================================


class FakeSource:
    """Scripted ByteSource.

    Chunks are handed out one per read(). Once they run out the source
    reports EOF when finished, otherwise it stays open with nothing to read.
    """

    def __init__(self, *chunks: bytes, finished: bool = True) -> None:
        self._chunks = deque(chunks)
        self._lock = threading.Lock()
        self.finished = finished
        self.closed = False

    @property
    def pending(self) -> int:
        """Chunks not read yet."""
        with self._lock:
            return len(self._chunks)

    def feed(self, chunk: bytes) -> None:
        with self._lock:
            self._chunks.append(chunk)

    def finish(self) -> None:
        self.finished = True

    def ready(self) -> bool:
        with self._lock:
            return bool(self._chunks) or self.finished

    def read(self, size: int) -> bytes:
        with self._lock:
            if not self._chunks:
                return b""
            chunk = self._chunks.popleft()
            if len(chunk) > size:
                self._chunks.appendleft(chunk[size:])
                chunk = chunk[:size]
            return chunk

    def close(self) -> None:
        self.closed = True


class BrokenSource(FakeSource):
    def read(self, size: int) -> bytes:
        raise OSError("connection reset by peer")


class FakeExecutor:
    def __init__(self, stdout: FakeSource, stderr: FakeSource) -> None:
        self.stdout = stdout
        self.stderr = stderr
        self.commands: list[str] = []
        self.closed = False

    def exec(self, command: str) -> CommandExecution:
        self.commands.append(command)
        return CommandExecution(stdout=self.stdout, stderr=self.stderr)

    def close(self) -> None:
        self.closed = True


class FakeNode:
    """Just enough of a Node for a StreamTailer."""

    def __init__(self, name: str = "web-1", running: bool = True, executor: FakeExecutor | None = None):
        self.name = name
        self.running = running
        self.executor = executor

    def is_running(self) -> bool:
        return self.running

    def ssh(self) -> FakeExecutor:
        assert self.executor is not None
        return self.executor


class Collect:
    """LogHandler that records every line it sees."""

    def __init__(self) -> None:
        self.lines: list[str] = []
        self.error_lines: list[str] = []
        self.nodes: list[Any] = []

    def on_line(self, text: str, node: Any) -> None:
        self.lines.append(text)
        self.nodes.append(node)

    def on_error_line(self, text: str, node: Any) -> None:
        self.error_lines.append(text)
        self.nodes.append(node)


class Boom:
    """LogHandler that always raises."""

    def __init__(self) -> None:
        self.calls = 0

    def on_line(self, text: str, node: Any) -> None:
        self.calls += 1
        raise RuntimeError("handler exploded")

    def on_error_line(self, text: str, node: Any) -> None:
        self.calls += 1
        raise RuntimeError("handler exploded")


class Sequence:
    """LogHandler that records (stream, text) in delivery order."""

    def __init__(self, on_error=None) -> None:
        self.seen: list[tuple[str, str]] = []
        self._on_error = on_error

    def on_line(self, text: str, node: Any) -> None:
        self.seen.append(("stdout", text))

    def on_error_line(self, text: str, node: Any) -> None:
        self.seen.append(("stderr", text))
        if self._on_error is not None:
            self._on_error()
