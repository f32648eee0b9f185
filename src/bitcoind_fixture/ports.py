"""Local TCP port reservation.

The OS picks a free port when a socket binds to port 0; the probe socket is
closed straight away so the daemon can bind the port itself. Between that
close and the daemon's bind any other process may take the port. That race
is accepted; the fixture relaunches with fresh ports when the daemon exits
early (see ``FixtureSettings.launch_attempts``).

Ports handed out are remembered for the life of the process so that two
fixtures in the same session never receive the same port, even when the OS
recycles one.
"""

from __future__ import annotations

import logging
import socket
import threading

from bitcoind_fixture.errors import LaunchIOError
from bitcoind_fixture.models import LOCAL_IP

logger = logging.getLogger(__name__)

_reserved_lock = threading.Lock()
_reserved_ports: set[int] = set()


def _probe_free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((str(LOCAL_IP), 0))
        return sock.getsockname()[1]


def reserve_port() -> int:
    """Return a local port that is currently unused.

    Returns:
        A TCP port on ``LOCAL_IP`` not handed out before in this process
        (unless it was given back with ``release_port``).

    Raises:
        LaunchIOError: If binding the probe socket fails.
    """
    with _reserved_lock:
        while True:
            try:
                port = _probe_free_port()
            except OSError as exc:
                msg = f"could not bind a probe socket on {LOCAL_IP}: {exc}"
                raise LaunchIOError(msg) from exc
            if port not in _reserved_ports:
                break
            logger.debug("OS repeated reserved port %d, probing again", port)
        _reserved_ports.add(port)

    logger.debug("Reserved port %d", port)
    return port


def release_port(port: int) -> None:
    """Give *port* back so later reservations may return it again."""
    with _reserved_lock:
        _reserved_ports.discard(port)
