from typing import Generator
import asyncio
import signal
import socket
import sys
import logging
import contextlib
import threading
import click
from .cancellation import Cancellation
from .config import Config
from .connection import SocketConnection
from .echoer import Echoer
from .errors import EchoError
from .log_config import ConnectionLoggerAdapter
from .server_state import ServerState
from .util import format_addr


HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)
if sys.platform == "win32":
    HANDLED_SIGNALS += (signal.SIGBREAK,)


logger = logging.getLogger(__name__)


class Server:
    def __init__(self, config: Config):
        self.config = config
        self.server_state = ServerState()
        self.started = asyncio.Event()
        self.force_exit = False
        self.cancellation: Cancellation | None = None
        self.sock: socket.socket | None = None
        self.bound_port: int | None = None
        self._accept_task: asyncio.Task | None = None

    def run_forever(self) -> None:
        return asyncio.run(self.serve())

    async def serve(self) -> None:
        """
        Process-level entry: one cancellation signal for the whole process, triggered by SIGINT/SIGTERM.
        """
        self.cancellation = Cancellation()
        with self.capture_signals():
            await self.run(self.cancellation)

    async def run(self, cancellation: Cancellation) -> None:
        """
        Accept connections until cancellation fires, then wait for the handlers to wind down.
        Raises OSError if the listening socket cannot be bound.
        """
        self.cancellation = cancellation
        logger.info("Starting server...")
        self.startup()
        try:
            await self.main_loop(cancellation)
        finally:
            self.close_listener()
        await self.shutdown()
        logger.info("Server shutdown complete!")

    def startup(self) -> None:
        try:
            self.sock = self._bind()
        except OSError as exc:
            logger.error("error while establishing listener: %s", exc)
            raise
        self.bound_port = self.sock.getsockname()[1]
        self._log_startup_message(self.sock)
        self.started.set()

    def _bind(self) -> socket.socket:
        host = self.config.host
        if host is None:
            # every interface, IPv4 included when the platform can do dual-stack
            if socket.has_dualstack_ipv6():
                sock = socket.create_server(("", self.config.port),
                                            family=socket.AF_INET6,
                                            backlog=self.config.backlog,
                                            dualstack_ipv6=True)
            else:
                sock = socket.create_server(("", self.config.port), backlog=self.config.backlog)
        else:
            family = socket.AF_INET6 if ":" in host else socket.AF_INET
            sock = socket.create_server((host, self.config.port),
                                        family=family,
                                        backlog=self.config.backlog)
        sock.setblocking(False)
        return sock

    def _log_startup_message(self, listener: socket.socket):
        addr_format = "%s://%s:%d"
        host = self.config.host
        if host is None:
            host = "::" if listener.family == socket.AF_INET6 else "0.0.0.0"
        if ":" in host:
            # It's an IPv6 address.
            addr_format = "%s://[%s]:%d"

        port = self.config.port
        if port == 0:
            port = listener.getsockname()[1]

        message = f"Echo server listening on {addr_format} (Press CTRL+C to quit)"
        color_message = "Echo server listening on " + click.style(addr_format, bold=True) + " (Press CTRL+C to quit)"
        logger.info(
            message,
            "tcp",
            host,
            port,
            extra={"color_message": color_message},
        )

    async def main_loop(self, cancellation: Cancellation) -> None:
        """
        sock_accept does not know about our cancellation signal, so a watcher task waits on it
        and aborts the pending accept. The failed accept is then recognised as the shutdown path.
        """
        loop = asyncio.get_running_loop()
        watcher = loop.create_task(self._close_on_cancel(cancellation))
        try:
            while not cancellation.cancelled:
                conn_num = self.server_state.total_connections + 1
                logger.debug("waiting for connection conn_num=%d", conn_num)
                self._accept_task = loop.create_task(loop.sock_accept(self.sock))
                try:
                    conn, _ = await self._accept_task
                except (OSError, asyncio.CancelledError) as exc:
                    if cancellation.cancelled:
                        return
                    if isinstance(exc, asyncio.CancelledError):
                        raise
                    # transient, keep accepting
                    logger.error("error while accepting client connection conn_num=%d: %s", conn_num, exc)
                    continue
                finally:
                    self._accept_task = None

                self.server_state.total_connections = conn_num
                connection = SocketConnection(conn, loop)
                log = ConnectionLoggerAdapter(logger, {
                    "conn_num": conn_num,
                    "client_addr": format_addr(connection.peername),
                })
                log.info("accepted client connection")

                self.server_state.connections.add(connection)
                task = loop.create_task(self._handle(connection, log, cancellation))
                task.add_done_callback(self.server_state.tasks.discard)
                self.server_state.tasks.add(task)
        finally:
            watcher.cancel()
            await asyncio.gather(watcher, return_exceptions=True)

    async def _close_on_cancel(self, cancellation: Cancellation) -> None:
        await cancellation.wait()
        if self._accept_task is not None:
            self._accept_task.cancel()
        self.close_listener()

    async def _handle(self,
                      connection: SocketConnection,
                      log: ConnectionLoggerAdapter,
                      cancellation: Cancellation) -> None:
        echoer = Echoer(connection, self.config, log=log)
        try:
            await echoer.run(cancellation)
        except (OSError, EchoError) as exc:
            log.error("echoer exited with error: %s", exc)
        except Exception as exc:
            log.error("echoer exited with unexpected error", exc_info=exc)
        finally:
            connection.close()
            self.server_state.connections.discard(connection)

    def close_listener(self) -> None:
        if self.sock is not None and self.sock.fileno() != -1:
            self.sock.close()

    async def shutdown(self) -> None:
        logger.info("Shutting down server...")
        try:
            await asyncio.wait_for(
                self._wait_tasks_to_complete(),
                timeout=self.config.timeout_graceful_shutdown
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Graceful shutdown timed out. Forcing exit."
            )

        for t in list(self.server_state.tasks):
            if not t.done():
                t.cancel(msg="Task cancelled during shutdown")
        if self.server_state.tasks:
            await asyncio.gather(*self.server_state.tasks, return_exceptions=True)

        # handlers close their own connection, anything left here lost its task
        for connection in list(self.server_state.connections):
            connection.close()
        self.server_state.connections.clear()

    async def _wait_tasks_to_complete(self) -> None:
        """
        Handlers notice the cancellation on their next read deadline and close their own connection,
        so waiting for the task set to drain also waits for the connections to be closed.
        """
        if self.server_state.tasks and not self.force_exit:
            logger.info("Waiting for connections to close. (CTRL+C to force quit)")
            while self.server_state.tasks and not self.force_exit:
                await asyncio.sleep(0.1)

    # signal handling
    @contextlib.contextmanager
    def capture_signals(self) -> Generator[None, None, None]:
        """
        Signals can only be listened to from the main thread
        """
        if threading.current_thread() is not threading.main_thread():
            yield
            return
        loop = asyncio.get_running_loop()
        installed = []
        original_handlers = {}
        for sig in HANDLED_SIGNALS:
            try:
                loop.add_signal_handler(sig, self.handle_exit, sig, None)
                installed.append(sig)
            except NotImplementedError:
                # Windows event loops have no add_signal_handler
                original_handlers[sig] = signal.signal(
                    sig, lambda s, f: loop.call_soon_threadsafe(self.handle_exit, s, f)
                )
        try:
            yield
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)
            for sig, handler in original_handlers.items():
                signal.signal(sig, handler)

    def handle_exit(self, sig: int, frame) -> None:
        if self.cancellation is None:
            return
        if self.cancellation.cancelled and sig == signal.SIGINT:
            logger.warning("second interrupt received. forcing exit.")
            self.force_exit = True
        else:
            logger.info("interrupt received. exiting.")
            self.cancellation.cancel()
