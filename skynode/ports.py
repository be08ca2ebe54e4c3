"""Wait for a freshly created node to accept TCP connections."""

from __future__ import annotations

import socket
from collections.abc import Iterable

from loguru import logger
from tenacity import (
    RetryError,
    retry,
    retry_if_exception_type,
    stop_after_delay,
    wait_fixed,
)

from skynode.constants import WAIT_FOR_PORTS_INTERVAL, WAIT_FOR_PORTS_TIMEOUT
from skynode.exceptions import NodeUnreachableError

log = logger.bind(component="ports")


class _PortNotReadyError(Exception):
    """Port not accepting connections yet - retry."""


def wait_for_port(
    host: str,
    port: int,
    timeout: float = WAIT_FOR_PORTS_TIMEOUT,
    interval: float = WAIT_FOR_PORTS_INTERVAL,
) -> None:
    """Block until host:port accepts a TCP connection.

    Raises:
        NodeUnreachableError: If it doesn't within timeout.
    """

    @retry(
        stop=stop_after_delay(timeout),
        wait=wait_fixed(interval),
        retry=retry_if_exception_type(_PortNotReadyError),
    )
    def _check() -> None:
        try:
            with socket.create_connection((host, port), timeout=1):
                return
        except OSError:
            raise _PortNotReadyError() from None

    try:
        _check()
    except RetryError as e:
        raise NodeUnreachableError(host, port, timeout) from e


def wait_for_ports(
    host: str,
    ports: Iterable[int],
    timeout: float = WAIT_FOR_PORTS_TIMEOUT,
    interval: float = WAIT_FOR_PORTS_INTERVAL,
) -> None:
    """Wait for every port in turn. The timeout applies to each port."""
    for port in ports:
        log.debug("Waiting for {host}:{port}", host=host, port=port)
        wait_for_port(host, port, timeout=timeout, interval=interval)
        log.debug("{host}:{port} is open", host=host, port=port)
