class EchoError(Exception):
    """Base class for echo failures that are not plain I/O errors."""


class WriteProgressError(EchoError):
    """
    A write call reported success but no forward progress (zero or negative bytes).
    The transport is expected to always send at least one byte on success.
    """


class ConnectionClosedError(EchoError):
    """Write attempted on a connection that has already been closed."""
