"""
Per-connection echo loop.

An Echoer owns exactly one connection. It reads into a fixed buffer and writes the very same bytes
back, resuming from a cursor when the transport only takes part of them. Reads are bounded by a
short deadline: every time one expires the loop looks at its cancellation scope again, which is how
a shutdown reaches connections that are sitting idle.

With announce_alive on, a second task writes b"alive\\n" every alive_interval seconds. Both tasks go
through the same write lock, so an announcement can only land between two echoed chunks.
"""

import asyncio
import logging

from .cancellation import Cancellation
from .config import Config
from .connection import Connection
from .errors import ConnectionClosedError, WriteProgressError
from .log_config import ConnectionLoggerAdapter

logger = logging.getLogger(__name__)

ALIVE_MESSAGE = b"alive\n"


class Echoer:

    def __init__(self,
                 connection: Connection,
                 config: Config,
                 log: ConnectionLoggerAdapter | None = None):
        self.connection = connection
        self.config = config
        self.log = log or ConnectionLoggerAdapter(logger, {})
        self._write_lock = asyncio.Lock()

    async def run(self, cancellation: Cancellation) -> None:
        """
        Echo until the peer closes, an I/O error occurs or cancellation fires.
        Returns normally on close and cancellation, raises on errors. Closing the connection is
        left to the caller.
        """
        buffer = memoryview(bytearray(self.config.buffer_size))
        scope = cancellation.child()
        announcer: asyncio.Task[None] | None = None

        self.log.info("echoer running")
        try:
            if self.config.announce_alive:
                announcer = asyncio.get_running_loop().create_task(self._announce_alive(scope))

            while True:
                if scope.cancelled:
                    self.log.debug("exiting due to cancelled context")
                    return

                try:
                    nbytes = await self.connection.read_into(buffer, self.config.read_timeout)
                except asyncio.TimeoutError:
                    # deadline expired, go look at the scope again
                    self.log.trace("read timeout. continuing...")
                    continue
                except OSError as exc:
                    self.log.error("error while reading from connection: %s", exc)
                    raise

                if nbytes == 0:
                    self.log.info("connection closed")
                    return

                self.log.info("read %d bytes", nbytes)
                if not await self._write_all(buffer[:nbytes]):
                    self.log.info("connection closed")
                    return
        finally:
            scope.cancel()
            if announcer is not None:
                announcer.cancel()
                await asyncio.gather(announcer, return_exceptions=True)

    async def _write_all(self, data: memoryview) -> bool:
        """
        Write every byte of data, advancing a cursor over partial writes.
        Returns False if the connection turned out to be closed.
        """
        async with self._write_lock:
            cursor = 0
            while cursor < len(data):
                try:
                    nbytes = await self.connection.write(data[cursor:])
                except ConnectionClosedError:
                    return False
                except OSError as exc:
                    self.log.error("error while writing to connection: %s", exc)
                    raise

                if nbytes < 0:
                    self.log.error("wrote negative bytes. aborting.")
                    raise WriteProgressError("negative bytes indicated in write call")
                if nbytes == 0:
                    self.log.error("wrote zero bytes. aborting.")
                    raise WriteProgressError("zero bytes indicated in write call")

                self.log.debug("wrote %d bytes", nbytes)
                cursor += nbytes
        return True

    async def _announce_alive(self, scope: Cancellation) -> None:
        loop = asyncio.get_running_loop()
        interval = self.config.alive_interval
        next_tick = loop.time() + interval
        while True:
            try:
                await asyncio.wait_for(scope.wait(), max(0.0, next_tick - loop.time()))
            except asyncio.TimeoutError:
                pass
            else:
                self.log.debug("exiting due to cancelled context")
                return

            self.log.trace("writing alive")
            try:
                async with self._write_lock:
                    await self.connection.write(memoryview(ALIVE_MESSAGE))
            except (OSError, ConnectionClosedError) as exc:
                # the echo loop runs into the same fault on its own and reports it
                self.log.trace("ignoring alive write failure: %s", exc)

            # fixed rate, ticks missed during a slow write are dropped
            next_tick += interval
            now = loop.time()
            while next_tick <= now:
                next_tick += interval
