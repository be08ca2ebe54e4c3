from __future__ import annotations

import socket
import time

import pytest

from skynode.exceptions import NodeUnreachableError
from skynode.ports import wait_for_port, wait_for_ports

pytestmark = [pytest.mark.integration, pytest.mark.xdist_group("unit"), pytest.mark.timeout(15)]


@pytest.fixture
def listening_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as server:
        server.bind(("127.0.0.1", 0))
        server.listen()
        yield server.getsockname()[1]


@pytest.fixture
def closed_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        port = s.getsockname()[1]
    return port


class TestWaitForPort:
    def test_open_port_returns(self, listening_port):
        wait_for_port("127.0.0.1", listening_port, timeout=5, interval=0.05)

    def test_closed_port_times_out(self, closed_port):
        started = time.monotonic()
        with pytest.raises(NodeUnreachableError) as exc:
            wait_for_port("127.0.0.1", closed_port, timeout=0.3, interval=0.05)
        assert time.monotonic() - started < 5
        assert exc.value.port == closed_port
        assert exc.value.host == "127.0.0.1"

    def test_all_ports_checked(self, listening_port, closed_port):
        with pytest.raises(NodeUnreachableError) as exc:
            wait_for_ports("127.0.0.1", [listening_port, closed_port], timeout=0.3, interval=0.05)
        assert exc.value.port == closed_port
