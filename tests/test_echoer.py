"""
Echo loop tests against an in-memory connection.
"""

import asyncio

import pytest

from tcp_echo.cancellation import Cancellation
from tcp_echo.config import Config
from tcp_echo.echoer import ALIVE_MESSAGE, Echoer
from tcp_echo.errors import ConnectionClosedError, WriteProgressError

from helpers import FakeConnection, run


def make_config(**kwargs) -> Config:
    kwargs.setdefault("read_timeout", 0.02)
    return Config(port=0, **kwargs)


def test_echoes_every_chunk_in_order():
    async def scenario():
        conn = FakeConnection()
        conn.feed(b"hello")
        conn.feed(b"world")
        conn.feed(b"\x00\xff binary \r\n")
        conn.feed_eof()
        await Echoer(conn, make_config()).run(Cancellation())
        return conn

    conn = run(scenario())
    assert bytes(conn.written) == b"helloworld\x00\xff binary \r\n"


def test_partial_writes_deliver_whole_chunk_before_next_read():
    async def scenario():
        conn = FakeConnection(max_write=3)
        conn.feed(b"0123456789")
        conn.feed(b"abcde")
        conn.feed_eof()
        await Echoer(conn, make_config()).run(Cancellation())
        return conn

    conn = run(scenario())
    assert bytes(conn.written) == b"0123456789abcde"
    assert conn.write_sizes == [3, 3, 3, 1, 3, 2]
    # both chunks are fully flushed before the next read happens
    assert conn.events == ["read", "write", "write", "write", "write",
                           "read", "write", "write", "read"]


@pytest.mark.parametrize("write_result", [0, -1])
def test_write_without_progress_is_fatal(write_result):
    async def scenario():
        conn = FakeConnection(write_result=write_result)
        conn.feed(b"payload")
        await Echoer(conn, make_config()).run(Cancellation())

    with pytest.raises(WriteProgressError):
        run(scenario())


def test_read_error_is_raised():
    async def scenario():
        conn = FakeConnection()
        conn.feed(b"first")
        conn.feed_error(ConnectionResetError("reset by peer"))
        await Echoer(conn, make_config()).run(Cancellation())

    with pytest.raises(ConnectionResetError):
        run(scenario())


def test_write_error_is_raised():
    async def scenario():
        conn = FakeConnection(write_error=BrokenPipeError("broken pipe"))
        conn.feed(b"data")
        await Echoer(conn, make_config()).run(Cancellation())

    with pytest.raises(BrokenPipeError):
        run(scenario())


def test_write_on_closed_connection_is_a_normal_close():
    async def scenario():
        conn = FakeConnection(write_error=ConnectionClosedError("closed"))
        conn.feed(b"data")
        await Echoer(conn, make_config()).run(Cancellation())
        return conn

    conn = run(scenario())
    assert conn.written == b""


def test_idle_connection_exits_on_cancellation():
    async def scenario():
        conn = FakeConnection()
        cancellation = Cancellation()
        task = asyncio.get_running_loop().create_task(Echoer(conn, make_config()).run(cancellation))
        await asyncio.sleep(0.1)
        assert not task.done()
        cancellation.cancel()
        # one read deadline is all it takes to notice
        await asyncio.wait_for(task, 1)

    run(scenario())


def test_already_cancelled_never_reads():
    async def scenario():
        conn = FakeConnection()
        conn.feed(b"never read")
        cancellation = Cancellation()
        cancellation.cancel()
        await Echoer(conn, make_config()).run(cancellation)
        return conn

    conn = run(scenario())
    assert conn.events == []
    assert conn.incoming.qsize() == 1


def test_echoer_does_not_close_the_connection():
    async def scenario():
        conn = FakeConnection()
        conn.feed_eof()
        await Echoer(conn, make_config()).run(Cancellation())
        return conn

    assert run(scenario()).close_calls == 0


def test_alive_announcement_on_idle_connection():
    async def scenario():
        conn = FakeConnection()
        cancellation = Cancellation()
        config = make_config(announce_alive=True, alive_interval=0.05)
        task = asyncio.get_running_loop().create_task(Echoer(conn, config).run(cancellation))
        await asyncio.sleep(0.3)
        cancellation.cancel()
        await asyncio.wait_for(task, 1)
        written = bytes(conn.written)
        # announcer is gone once run() has returned
        await asyncio.sleep(0.15)
        return written, bytes(conn.written)

    at_exit, later = run(scenario())
    assert ALIVE_MESSAGE in at_exit
    assert at_exit == later
    assert at_exit.replace(ALIVE_MESSAGE, b"") == b""


def test_alive_announcement_stops_when_peer_closes():
    async def scenario():
        conn = FakeConnection()
        config = make_config(announce_alive=True, alive_interval=0.05)
        parent = Cancellation()
        task = asyncio.get_running_loop().create_task(Echoer(conn, config).run(parent))
        await asyncio.sleep(0.12)
        conn.feed_eof()
        await asyncio.wait_for(task, 1)
        written = bytes(conn.written)
        await asyncio.sleep(0.15)
        return parent, written, bytes(conn.written)

    parent, at_exit, later = run(scenario())
    assert at_exit == later
    # handler scope ended, the process-wide signal did not
    assert not parent.cancelled


def test_alive_never_splits_an_echoed_chunk():
    async def scenario():
        conn = FakeConnection(max_write=1)
        config = make_config(announce_alive=True, alive_interval=0.01, read_timeout=0.01)
        cancellation = Cancellation()
        task = asyncio.get_running_loop().create_task(Echoer(conn, config).run(cancellation))
        payload = b"x" * 200
        conn.feed(payload)
        await asyncio.sleep(0.2)
        cancellation.cancel()
        await asyncio.wait_for(task, 1)
        return bytes(conn.written)

    written = run(scenario())
    assert b"x" * 200 in written


def test_alive_keeps_a_fixed_rate_with_slow_writes():
    async def scenario():
        # each write eats most of the interval, a wait-then-write loop would only manage 3 here
        conn = FakeConnection(write_delay=0.08)
        config = make_config(announce_alive=True, alive_interval=0.1)
        cancellation = Cancellation()
        task = asyncio.get_running_loop().create_task(Echoer(conn, config).run(cancellation))
        await asyncio.sleep(0.65)
        cancellation.cancel()
        await asyncio.wait_for(task, 1)
        return bytes(conn.written)

    written = run(scenario())
    assert written.count(ALIVE_MESSAGE) >= 4
