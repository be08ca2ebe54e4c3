"""Remote command execution over SSH.

The log tailer only needs one thing from a node: run a command and hand back
its stdout and stderr as two byte sources that can be checked for readiness
without blocking. SSHExecutor provides that on top of paramiko channels.
"""

from __future__ import annotations

import contextlib
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, runtime_checkable

import paramiko
from loguru import logger
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_delay,
    wait_fixed,
)

from skynode.constants import (
    DEFAULT_SSH_PORT,
    SSH_CONNECT_RETRY_DELAY,
    SSH_CONNECT_TIMEOUT,
)

log = logger.bind(component="ssh")


# =============================================================================
# Protocols
# =============================================================================


class Closeable(Protocol):
    def close(self) -> None: ...


@runtime_checkable
class ByteSource(Protocol):
    """A non-blocking readable byte stream."""

    def ready(self) -> bool:
        """True when read() will not block: data is buffered or EOF was reached."""
        ...

    def read(self, size: int) -> bytes:
        """Read up to size available bytes. b"" means EOF."""
        ...

    def close(self) -> None: ...


@dataclass
class CommandExecution:
    """A running remote command.

    Attributes:
        stdout: Primary output of the command.
        stderr: Error output of the command.
        on_close: Releases whatever carries the command (e.g., an SSH channel).
    """

    stdout: ByteSource
    stderr: ByteSource
    on_close: Callable[[], None] | None = field(default=None, repr=False)

    def close(self) -> None:
        try:
            self.stdout.close()
            self.stderr.close()
        finally:
            if self.on_close is not None:
                self.on_close()

    def __enter__(self) -> CommandExecution:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


@runtime_checkable
class RemoteExecutor(Protocol):
    """Runs commands on a node."""

    def exec(self, command: str) -> CommandExecution: ...

    def close(self) -> None: ...


# =============================================================================
# Paramiko implementation
# =============================================================================


class _ChannelSource:
    """One side (stdout or stderr) of a paramiko channel as a ByteSource."""

    __slots__ = ("_channel", "_stderr")

    def __init__(self, channel: paramiko.Channel, *, stderr: bool = False) -> None:
        self._channel = channel
        self._stderr = stderr

    def ready(self) -> bool:
        channel = self._channel
        if self._stderr:
            return bool(channel.recv_stderr_ready() or channel.closed or channel.eof_received)
        return bool(channel.recv_ready() or channel.closed or channel.eof_received)

    def read(self, size: int) -> bytes:
        if self._stderr:
            return self._channel.recv_stderr(size)
        return self._channel.recv(size)

    def close(self) -> None:
        self._channel.close()


@dataclass(frozen=True, slots=True)
class SSHConfig:
    """SSH connection configuration."""

    host: str
    username: str
    port: int = DEFAULT_SSH_PORT
    key_path: Path | None = None
    connect_timeout: float = SSH_CONNECT_TIMEOUT
    retry_timeout: float = 300.0


class SSHExecutor:
    """RemoteExecutor over a single paramiko SSH connection.

    The connection is opened lazily on first use and retried while the
    node's SSH daemon comes up.

    Example:
        >>> ssh = SSHExecutor(SSHConfig(host="10.0.0.1", username="ubuntu"))
        >>> ssh.run("uptime")
        >>> with ssh.exec("tail -f /var/log/syslog") as execution:
        ...     ...
        >>> ssh.close()
    """

    def __init__(self, config: SSHConfig) -> None:
        self.config = config
        self._client: paramiko.SSHClient | None = None

    def _connect(self) -> paramiko.SSHClient:
        if self._client is not None:
            return self._client

        config = self.config

        @retry(
            stop=stop_after_delay(config.retry_timeout),
            wait=wait_fixed(SSH_CONNECT_RETRY_DELAY),
            retry=retry_if_exception_type((OSError, paramiko.SSHException)),
            reraise=True,
        )
        def do_connect() -> paramiko.SSHClient:
            log.debug(
                "Connecting to {host}:{port} ({user})",
                host=config.host, port=config.port, user=config.username,
            )
            client = paramiko.SSHClient()
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
            kwargs: dict = {
                "hostname": config.host,
                "username": config.username,
                "port": config.port,
                "timeout": config.connect_timeout,
            }
            if config.key_path:
                kwargs["key_filename"] = str(config.key_path)
            try:
                client.connect(**kwargs)
            except Exception:
                client.close()
                raise
            return client

        self._client = do_connect()
        log.debug("Connected to {host}", host=config.host)
        return self._client

    def exec(self, command: str) -> CommandExecution:
        """Start command and return its live output streams."""
        transport = self._connect().get_transport()
        if transport is None:
            raise RuntimeError("SSH transport not available")

        cmd_preview = command[:80] + "..." if len(command) > 80 else command
        log.debug("exec: {cmd}", cmd=cmd_preview)
        channel = transport.open_session()
        channel.exec_command(command)
        return CommandExecution(
            stdout=_ChannelSource(channel),
            stderr=_ChannelSource(channel, stderr=True),
            on_close=channel.close,
        )

    def run(self, command: str, timeout: float = 30) -> str:
        """Execute command, wait for it, and return stdout.

        Raises:
            RuntimeError: If the command exits non-zero.
        """
        _, stdout, stderr = self._connect().exec_command(command, timeout=timeout)
        code = stdout.channel.recv_exit_status()
        if code != 0:
            raise RuntimeError(f"Command failed ({code}): {stderr.read().decode()}")
        return stdout.read().decode()

    def close(self) -> None:
        if self._client is not None:
            with contextlib.suppress(Exception):
                self._client.close()
            self._client = None

    def __enter__(self) -> SSHExecutor:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()
