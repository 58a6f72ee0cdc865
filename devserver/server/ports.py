"""
Port probing.

Finds the lowest free TCP port at or above a requested one by opening and
immediately releasing a listening socket. The result is best effort: nothing
stops another process from taking the port before the real listener binds.
"""

import errno
import logging
import socket
from typing import Callable

logger = logging.getLogger(__name__)

MAX_PORT = 65535
DEFAULT_MAX_ATTEMPTS = 20

# Windows reports WSAEADDRINUSE instead of EADDRINUSE
ADDRESS_IN_USE = frozenset({errno.EADDRINUSE, getattr(errno, "WSAEADDRINUSE", errno.EADDRINUSE)})


class NoPortAvailable(RuntimeError):
    """Every candidate port was already in use."""

    def __init__(self, start_port: int, attempts: int):
        self.start_port = start_port
        self.attempts = attempts
        self.end_port = start_port + max(attempts, 1) - 1
        super().__init__(
            f"No available port found after {attempts} attempts, "
            f"tried {start_port} to {self.end_port}"
        )


def probe_port(port: int, host: str = "0.0.0.0") -> bool:
    """
    Check whether a port can be bound right now.

    Returns False only when the address is already in use. Any other bind
    error (permission denied, invalid address) is raised to the caller.
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.bind((host, port))
        sock.listen(1)
    except OSError as e:
        if e.errno in ADDRESS_IN_USE:
            return False
        raise
    finally:
        sock.close()
    return True


def find_available(
    start_port: int,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    host: str = "0.0.0.0",
    probe: Callable[[int, str], bool] = probe_port,
) -> int:
    """Return the first port in [start_port, start_port + max_attempts) that is free."""
    for attempt in range(max_attempts):
        port = start_port + attempt
        if port > MAX_PORT:
            raise NoPortAvailable(start_port, attempt)

        if probe(port, host):
            return port

        logger.info(f"Port {port} is in use, trying {port + 1}")

    raise NoPortAvailable(start_port, max_attempts)
