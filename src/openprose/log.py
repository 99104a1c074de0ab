"""Logging helper module."""

from logging import Logger, NullHandler, getLogger

_PACKAGE_LOGGER = "openprose"

# The toolchain is a library: records are only emitted when the host
# application configures handlers.
getLogger(_PACKAGE_LOGGER).addHandler(NullHandler())


def get_logger(name: str) -> Logger:
    """Proxy for logging.getLogger."""
    return getLogger(name)
