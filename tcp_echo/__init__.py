from .cancellation import Cancellation
from .config import Config
from .echoer import Echoer
from .server import Server

__version__ = "0.1.0"

__all__ = ["Cancellation", "Config", "Echoer", "Server"]
