"""
The byte stream an Echoer works on.

The echo loop needs two things a StreamReader/StreamWriter pair does not give it:
- a read that gives up after a short deadline, so the loop can look at its cancellation scope again.
- a write that reports how many bytes actually went out, so partial writes can be resumed from a cursor.

SocketConnection provides both on top of a non-blocking socket and the event loop's sock_* helpers.
Anything else implementing the same methods (test doubles, mostly) can be handed to an Echoer.
"""

import asyncio
import socket

from .errors import ConnectionClosedError
from .util import get_remote_addr


class Connection:

    peername: tuple[str, int] | None = None

    async def read_into(self, buffer: memoryview, timeout: float) -> int:
        """
        Read at most len(buffer) bytes into buffer and return how many were read.
        Returns 0 on end-of-stream, raises asyncio.TimeoutError when nothing arrived within timeout.
        """
        raise NotImplementedError

    async def write(self, data: memoryview) -> int:
        """
        Send a prefix of data and return its length. May send less than len(data).
        Raises ConnectionClosedError once the connection has been closed locally.
        """
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError


class SocketConnection(Connection):

    def __init__(self, sock: socket.socket, loop: asyncio.AbstractEventLoop | None = None):
        self.loop = loop or asyncio.get_event_loop()
        sock.setblocking(False)
        self.sock = sock
        self.peername = get_remote_addr(sock)
        self._closed = False

    async def read_into(self, buffer: memoryview, timeout: float) -> int:
        # wait_for cancels the pending sock_recv_into on timeout. Nothing has been consumed from
        # the socket at that point, the recv only happens once the fd is readable.
        return await asyncio.wait_for(self.loop.sock_recv_into(self.sock, buffer), timeout)

    async def write(self, data: memoryview) -> int:
        while True:
            if self._closed:
                raise ConnectionClosedError("write on closed connection")
            try:
                return self.sock.send(data)
            except (BlockingIOError, InterruptedError):
                await self._wait_writable()

    async def _wait_writable(self) -> None:
        waiter = self.loop.create_future()

        def on_writable():
            if not waiter.done():
                waiter.set_result(None)

        fd = self.sock.fileno()
        self.loop.add_writer(fd, on_writable)
        try:
            await waiter
        finally:
            self.loop.remove_writer(fd)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            # peer already gone
            pass
        self.sock.close()
