import logging
import sys
from copy import copy

import click

TRACE_LOG_LEVEL = 5
logging.addLevelName(TRACE_LOG_LEVEL, "TRACE")

# -v count -> level. Anything above the last entry is clamped to it.
VERBOSITY_LEVELS = {
    0: logging.WARNING,
    1: logging.INFO,
    2: logging.DEBUG,
    3: TRACE_LOG_LEVEL,
}

LOGGER_NAME = "tcp_echo"

logger = logging.getLogger(__name__)


class ColourizedFormatter(logging.Formatter):
    """
    Prefixes every line with a (optionally coloured) level name. Records may carry a
    `color_message` extra, used instead of `msg` when colours are on.
    """

    level_name_colors = {
        TRACE_LOG_LEVEL: lambda level_name: click.style(str(level_name), fg="blue"),
        logging.DEBUG: lambda level_name: click.style(str(level_name), fg="cyan"),
        logging.INFO: lambda level_name: click.style(str(level_name), fg="green"),
        logging.WARNING: lambda level_name: click.style(str(level_name), fg="yellow"),
        logging.ERROR: lambda level_name: click.style(str(level_name), fg="red"),
        logging.CRITICAL: lambda level_name: click.style(str(level_name), fg="bright_red"),
    }

    def __init__(self, fmt=None, datefmt=None, style="%", use_colors: bool | None = None):
        if use_colors in (True, False):
            self.use_colors = use_colors
        else:
            self.use_colors = sys.stderr.isatty()
        super().__init__(fmt=fmt, datefmt=datefmt, style=style)

    def color_level_name(self, level_name: str, level_no: int) -> str:
        func = self.level_name_colors.get(level_no, str)
        return func(level_name)

    def formatMessage(self, record: logging.LogRecord) -> str:
        recordcopy = copy(record)
        levelname = recordcopy.levelname
        separator = " " * (8 - len(recordcopy.levelname))
        if self.use_colors:
            levelname = self.color_level_name(levelname, recordcopy.levelno)
            if "color_message" in recordcopy.__dict__:
                recordcopy.msg = recordcopy.__dict__["color_message"]
                recordcopy.__dict__["message"] = recordcopy.getMessage()
        recordcopy.__dict__["levelprefix"] = levelname + ":" + separator
        return super().formatMessage(recordcopy)


class ConnectionLoggerAdapter(logging.LoggerAdapter):
    """
    Appends the connection's fields (conn_num, client_addr) to every message so all lines
    coming out of one handler can be told apart from its neighbours.
    """

    def process(self, msg, kwargs):
        fields = " ".join("%s=%s" % (key, value) for key, value in self.extra.items())
        if fields:
            msg = "%s %s" % (msg, fields)
        return msg, kwargs

    def trace(self, msg, *args, **kwargs):
        self.log(TRACE_LOG_LEVEL, msg, *args, **kwargs)


def verbosity_to_level(verbosity: int) -> int:
    if verbosity < 0:
        return logging.WARNING
    return VERBOSITY_LEVELS.get(verbosity, TRACE_LOG_LEVEL)


def configure_logging(verbosity: int = 0, quiet: bool = False, stream=None) -> None:
    """
    Set up the package logger from the -v/-q flags. Quiet disables all output and wins over verbosity.
    """
    package_logger = logging.getLogger(LOGGER_NAME)
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)

    if stream is None:
        stream = sys.stderr
    use_colors = hasattr(stream, "isatty") and stream.isatty()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(ColourizedFormatter("%(asctime)s %(levelprefix)s %(message)s", use_colors=use_colors))
    package_logger.addHandler(handler)
    package_logger.propagate = False

    if quiet:
        package_logger.setLevel(logging.CRITICAL + 1)
        return

    package_logger.setLevel(verbosity_to_level(verbosity))
    if verbosity > max(VERBOSITY_LEVELS):
        logger.warning("got invalid verbosity count %d. using max (trace level)", verbosity)
