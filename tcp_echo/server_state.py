from typing import TYPE_CHECKING
import asyncio
if TYPE_CHECKING:
    from .connection import SocketConnection

class ServerState:
    """
    Bookkeeping shared between the accept loop and the handler tasks it spawns.
    Only ever touched from the event loop thread, so no locking is needed.
    """
    def __init__(self):
        """
        Every accepted connection lives in `connections` until its handler has closed it. Shutdown
        closes whatever is still in here once the handler tasks are gone.
        """
        self.connections: set[SocketConnection] = set()
        """
        One task per connection running the echo loop. Tasks remove themselves when done, the
        server waits on whatever is left here during graceful shutdown.
        """
        self.tasks: set[asyncio.Task[None]] = set()
        self.total_connections = 0
