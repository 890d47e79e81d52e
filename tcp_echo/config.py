class Config:

    def __init__(
            self,
            port,
            host=None,
            announce_alive=False,
            backlog=100,
            timeout_graceful_shutdown=5.0,
            buffer_size=1024 * 1024,
            read_timeout=0.1,
            alive_interval=5.0
    ):
        self.port = port
        # None binds every interface
        self.host = host
        self.announce_alive = announce_alive
        self.backlog = backlog
        self.timeout_graceful_shutdown = timeout_graceful_shutdown
        self.buffer_size = buffer_size
        self.read_timeout = read_timeout
        self.alive_interval = alive_interval
