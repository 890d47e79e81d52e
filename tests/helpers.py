import asyncio

from tcp_echo.connection import Connection


class FakeConnection(Connection):
    """
    In-memory connection. Inbound data is fed with feed()/feed_eof()/feed_error(), everything
    the echoer writes ends up in `written`. `max_write` caps how much one write call accepts,
    `write_result` forces the value every write call reports, `write_delay` makes each write
    take that many seconds.
    """

    def __init__(self, max_write=None, write_result=None, write_error=None, write_delay=0):
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.written = bytearray()
        self.write_sizes: list[int] = []
        self.events: list[str] = []
        self.max_write = max_write
        self.write_result = write_result
        self.write_error = write_error
        self.write_delay = write_delay
        self.peername = ("127.0.0.1", 50000)
        self.close_calls = 0

    def feed(self, data: bytes) -> None:
        self.incoming.put_nowait(data)

    def feed_eof(self) -> None:
        self.incoming.put_nowait(b"")

    def feed_error(self, exc: BaseException) -> None:
        self.incoming.put_nowait(exc)

    async def read_into(self, buffer, timeout):
        item = await asyncio.wait_for(self.incoming.get(), timeout)
        if isinstance(item, BaseException):
            raise item
        buffer[:len(item)] = item
        self.events.append("read")
        return len(item)

    async def write(self, data):
        # give other tasks a chance to run, like a real transport would
        await asyncio.sleep(self.write_delay)
        if self.write_error is not None:
            raise self.write_error
        if self.write_result is not None:
            return self.write_result
        nbytes = len(data) if self.max_write is None else min(len(data), self.max_write)
        self.written += bytes(data[:nbytes])
        self.write_sizes.append(nbytes)
        self.events.append("write")
        return nbytes

    def close(self):
        self.close_calls += 1


def run(coro, timeout=10):
    """Drive a coroutine on a fresh event loop, failing instead of hanging forever."""
    async def bounded():
        return await asyncio.wait_for(coro, timeout)
    return asyncio.run(bounded())
