"""
localserve/server/ports.py

Port allocation for new server instances.

resolve() hands back the *bound, listening* socket together with the port it
got. That socket becomes the instance's listener, so there is no window
between "port looks free" and "port is ours" for another process to win.

is_available() is a probe only. Its answer can be stale by the time the
caller acts on it.
"""

from __future__ import annotations

import errno
import logging
import os
import socket
from dataclasses import dataclass
from typing import Tuple

from localserve.errors import BindFailedError, PortInUseError

logger = logging.getLogger(__name__)

# errno.EADDRINUSE plus the Winsock spelling
_ADDR_IN_USE = {errno.EADDRINUSE, 10048}

DEFAULT_BACKLOG = 128


@dataclass
class Allocation:
    port: int
    sock: socket.socket


def _resolve_address(host: str, port: int) -> Tuple[int, Tuple]:
    infos = socket.getaddrinfo(host, port, type=socket.SOCK_STREAM, flags=socket.AI_PASSIVE)
    family, _, _, _, sockaddr = infos[0]
    return family, sockaddr


def _new_socket(family: int) -> socket.socket:
    sock = socket.socket(family, socket.SOCK_STREAM)
    if os.name == "nt":
        # On Windows SO_REUSEADDR would let a second socket steal the port
        if hasattr(socket, "SO_EXCLUSIVEADDRUSE"):
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_EXCLUSIVEADDRUSE, 1)
    else:
        # Allows rebinding right after a stopped server left TIME_WAIT
        # sockets behind. A port with a live listener still refuses us.
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    return sock


class PortAllocator:
    """Binds listener sockets and answers availability probes."""

    def __init__(self, backlog: int = DEFAULT_BACKLOG):
        self.backlog = backlog

    def resolve(self, requested_port: int, host: str) -> Allocation:
        """
        Bind a listener for `requested_port` on `host`.

        Port 0 lets the OS choose an ephemeral port; the returned Allocation
        carries the port that was actually assigned.

        Raises:
            PortInUseError: the OS reported the address as in use
            BindFailedError: any other failure (permissions, bad host, bad port)
        """
        details = {"host": host, "port": requested_port}

        if not 0 <= requested_port <= 65535:
            raise BindFailedError(f"Port {requested_port} is out of range (0-65535)", details)

        try:
            family, sockaddr = _resolve_address(host, requested_port)
        except (socket.gaierror, UnicodeError) as exc:
            raise BindFailedError(f"Cannot resolve host '{host}': {exc}", details) from exc

        sock = _new_socket(family)
        try:
            sock.bind(sockaddr)
            sock.listen(self.backlog)
        except OSError as exc:
            sock.close()
            if exc.errno in _ADDR_IN_USE or getattr(exc, "winerror", None) in _ADDR_IN_USE:
                raise PortInUseError(f"Port {requested_port} is already in use on {host}", details) from exc
            raise BindFailedError(f"Failed to bind to {host}:{requested_port}: {exc}", details) from exc

        port = sock.getsockname()[1]
        logger.debug("[PortAllocator] Bound %s:%d (requested %d)", host, port, requested_port)
        return Allocation(port=port, sock=sock)

    def is_available(self, port: int, host: str = "127.0.0.1") -> bool:
        """
        Advisory probe: try a transient bind and release it immediately.

        True only means the port was free at the instant of the probe.
        """
        if not 0 < port <= 65535:
            return False

        try:
            family, sockaddr = _resolve_address(host, port)
        except (socket.gaierror, UnicodeError):
            return False

        with _new_socket(family) as sock:
            try:
                sock.bind(sockaddr)
            except OSError:
                return False
        return True
