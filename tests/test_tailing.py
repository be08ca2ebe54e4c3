from __future__ import annotations

import time

import pytest

from skynode.exceptions import NodeNotRunningError
from skynode.handlers import LogHandlerRegistry
from skynode.tailing import StreamTailer
from tests.conftest import Boom, BrokenSource, Collect, FakeExecutor, FakeNode, FakeSource, Sequence

pytestmark = [pytest.mark.unit, pytest.mark.xdist_group("unit"), pytest.mark.timeout(10)]


def tailer_for(node, *handlers, **options) -> StreamTailer:
    return StreamTailer(node, LogHandlerRegistry(*handlers), poll_interval=0.01, **options)


class TestLineDelivery:
    def test_stdout_lines_arrive_in_order(self):
        collect = Collect()
        tailer = tailer_for(FakeNode(), collect)
        tailer.start(FakeSource(b"first\nsec", b"ond\nthird\n"), FakeSource())

        assert tailer.join(timeout=5)
        assert collect.lines == ["first", "second", "third"]
        assert tailer.fault is None

    def test_stderr_goes_to_error_lines(self):
        collect = Collect()
        tailer = tailer_for(FakeNode(), collect)
        tailer.start(FakeSource(b"ok\n"), FakeSource(b"warn: disk\r\nfatal\n"))

        assert tailer.join(timeout=5)
        assert collect.lines == ["ok"]
        assert collect.error_lines == ["warn: disk", "fatal"]

    def test_unterminated_line_flushed_at_eof(self):
        collect = Collect()
        tailer = tailer_for(FakeNode(), collect)
        tailer.start(FakeSource(b"done\npartial"), FakeSource())

        assert tailer.join(timeout=5)
        assert collect.lines == ["done", "partial"]

    def test_small_reads_keep_lines_whole(self):
        collect = Collect()
        tailer = tailer_for(FakeNode(), collect, read_size=3)
        tailer.start(FakeSource(b"hello world\nbye\n"), FakeSource())

        assert tailer.join(timeout=5)
        assert collect.lines == ["hello world", "bye"]

    def test_handlers_receive_the_node(self):
        node = FakeNode("db-2")
        collect = Collect()
        tailer = tailer_for(node, collect)
        tailer.start(FakeSource(b"a\n"), FakeSource(b"b\n"))

        assert tailer.join(timeout=5)
        assert collect.nodes == [node, node]

    def test_invalid_utf8_is_replaced(self):
        collect = Collect()
        tailer = tailer_for(FakeNode(), collect)
        tailer.start(FakeSource(b"caf\xe9\n"), FakeSource())

        assert tailer.join(timeout=5)
        assert collect.lines == ["caf\ufffd"]

    def test_failing_handler_does_not_stop_others(self, log_records):
        boom, collect = Boom(), Collect()
        tailer = tailer_for(FakeNode(), boom, collect)
        payload = b"".join(f"line {i}\n".encode() for i in range(25))
        tailer.start(FakeSource(payload), FakeSource())

        assert tailer.join(timeout=5)
        assert len(collect.lines) == 25
        assert boom.calls == 25
        assert tailer.lines_delivered == 25
        assert tailer.fault is None
        assert sum(1 for r in log_records if r["exception"] is not None) == 25

    def test_lines_fed_while_running_are_delivered(self):
        collect = Collect()
        stdout = FakeSource(finished=False)
        tailer = tailer_for(FakeNode(), collect)
        tailer.start(stdout, FakeSource(finished=False))

        stdout.feed(b"booting\n")
        deadline = time.monotonic() + 5
        while not collect.lines and time.monotonic() < deadline:
            time.sleep(0.01)

        assert tailer.stop(timeout=5)
        assert collect.lines == ["booting"]

    def test_busy_stdout_does_not_starve_stderr(self):
        stdout = FakeSource(*[f"{i:02d}\n".encode() for i in range(20)])
        stderr = FakeSource(b"ex\n")
        stdout_left: list[int] = []
        sequence = Sequence(on_error=lambda: stdout_left.append(stdout.pending))
        tailer = tailer_for(FakeNode(), sequence, read_size=3)
        tailer.start(stdout, stderr)

        assert tailer.join(timeout=5)
        assert stdout_left and stdout_left[0] > 0
        assert sequence.seen.index(("stderr", "ex")) < 2
        assert [t for s, t in sequence.seen if s == "stdout"] == [f"{i:02d}" for i in range(20)]

    def test_interleaved_streams_keep_their_own_order(self):
        stdout = FakeSource(b"o1\no2", b"\no3\n", b"o4\n")
        stderr = FakeSource(b"e1\n", b"e2\ne3", b"\n")
        sequence = Sequence()
        tailer = tailer_for(FakeNode(), sequence)
        tailer.start(stdout, stderr)

        assert tailer.join(timeout=5)
        assert [t for s, t in sequence.seen if s == "stdout"] == ["o1", "o2", "o3", "o4"]
        assert [t for s, t in sequence.seen if s == "stderr"] == ["e1", "e2", "e3"]

    def test_crlf_split_across_reads(self):
        collect = Collect()
        tailer = tailer_for(FakeNode(), collect)
        tailer.start(FakeSource(b"one\r", b"\ntwo\r\n"), FakeSource())

        assert tailer.join(timeout=5)
        assert collect.lines == ["one", "two"]

    def test_overlong_line_is_delivered_in_pieces(self):
        collect = Collect()
        tailer = tailer_for(FakeNode(), collect, read_size=4, max_line_length=8)
        tailer.start(FakeSource(b"abcdefghijklmnop", b"q\n"), FakeSource())

        assert tailer.join(timeout=5)
        assert collect.lines == ["abcdefgh", "ijklmnop", "q"]


class TestSessionControl:
    def test_stop_ends_thread_and_closes_sources(self):
        stdout, stderr = FakeSource(finished=False), FakeSource(finished=False)
        tailer = tailer_for(FakeNode(), Collect())
        tailer.start(stdout, stderr)
        assert tailer.is_alive

        assert tailer.stop(timeout=5)
        assert not tailer.is_alive
        assert stdout.closed and stderr.closed

    def test_context_manager_stops(self):
        stdout = FakeSource(finished=False)
        with tailer_for(FakeNode(), Collect()) as tailer:
            tailer.start(stdout, FakeSource(finished=False))
        assert not tailer.is_alive
        assert stdout.closed

    def test_io_fault_is_captured(self, log_records):
        stdout, stderr = BrokenSource(b"x"), FakeSource(finished=False)
        tailer = tailer_for(FakeNode(), Collect())
        tailer.start(stdout, stderr)

        assert tailer.join(timeout=5)
        assert isinstance(tailer.fault, OSError)
        assert stdout.closed and stderr.closed
        with pytest.raises(OSError, match="connection reset"):
            tailer.raise_for_fault()
        assert any("Tail session failed" in r["message"] for r in log_records)

    def test_not_running_node_is_rejected(self):
        tailer = tailer_for(FakeNode(running=False), Collect())
        with pytest.raises(NodeNotRunningError, match="web-1 is not running"):
            tailer.start(FakeSource(), FakeSource())
        assert not tailer.started

    def test_start_twice_is_rejected(self):
        tailer = tailer_for(FakeNode(), Collect())
        tailer.start(FakeSource(), FakeSource())
        with pytest.raises(RuntimeError, match="already started"):
            tailer.start(FakeSource(), FakeSource())
        tailer.join(timeout=5)


class TestFollow:
    def test_follow_runs_sudo_tail_over_ssh(self):
        executor = FakeExecutor(FakeSource(b"hello\n"), FakeSource())
        collect = Collect()
        tailer = tailer_for(FakeNode(executor=executor), collect)

        tailer.follow("/var/log/my app.log")

        assert tailer.join(timeout=5)
        assert executor.commands == ["sudo tail -f '/var/log/my app.log'"]
        assert collect.lines == ["hello"]
        assert executor.closed
        assert executor.stdout.closed and executor.stderr.closed

    def test_follow_on_stopped_node_never_opens_ssh(self):
        executor = FakeExecutor(FakeSource(), FakeSource())
        tailer = tailer_for(FakeNode(running=False, executor=executor))
        with pytest.raises(NodeNotRunningError):
            tailer.follow("/var/log/syslog")
        assert executor.commands == []
