import logging

import pytest

from tcp_echo.log_config import LOGGER_NAME


@pytest.fixture(autouse=True)
def reset_package_logger():
    """configure_logging() detaches the package logger from root, undo that between tests."""
    yield
    package_logger = logging.getLogger(LOGGER_NAME)
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
    package_logger.setLevel(logging.NOTSET)
    package_logger.propagate = True
