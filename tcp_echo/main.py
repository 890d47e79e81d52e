import logging
import sys

import click

from .config import Config
from .log_config import configure_logging
from .server import Server

logger = logging.getLogger(__name__)


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.argument("listen_port", metavar="LISTENPORT", type=click.IntRange(0, 65535))
@click.option(
    "-v",
    "verbosity",
    count=True,
    help="verbosity. can be used multiple times to further increase.",
)
@click.option(
    "-q",
    "--quiet",
    is_flag=True,
    default=False,
    help="quiet. do not print any log info. overrides verbosity flag.",
)
@click.option(
    "-a",
    "--announcealive",
    "announce_alive",
    is_flag=True,
    default=False,
    help='announce "alive" every 5 seconds.',
)
def main(listen_port: int, verbosity: int, quiet: bool, announce_alive: bool) -> None:
    """Echo every byte received on LISTENPORT back to its sender."""
    configure_logging(verbosity=verbosity, quiet=quiet)

    config = Config(port=listen_port, announce_alive=announce_alive)
    server = Server(config)
    try:
        server.run_forever()
    except OSError as exc:
        logger.error("server exited with error: %s", exc)
        sys.exit(1)


def run(args: list[str] | None = None) -> None:
    """
    Console entry point. Usage errors exit with 1 instead of click's default 2.
    """
    try:
        exit_code = main.main(args=args, prog_name="tcp-echo", standalone_mode=False)
    except click.ClickException as exc:
        exc.show()
        sys.exit(1)
    except click.Abort:
        sys.exit(1)
    sys.exit(exit_code or 0)


if __name__ == "__main__":
    run()
