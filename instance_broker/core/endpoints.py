"""
Control Endpoints
=================

A control endpoint is the automation interface used to drive a running
application. The broker only needs two things from it: ``detach()`` drops the
broker's client-side hooks (connections, subscriptions) while leaving the
application alone, and ``shutdown()`` asks the application to exit.

Endpoints are resolved per process by an endpoint locator, a callable that
returns the endpoint or ``None`` when it is not reachable yet.
"""

from __future__ import annotations

import logging
import socket
from typing import Callable, Optional, Tuple

import psutil

from .errors import ProcessExitedError

logger = logging.getLogger(__name__)


class ControlEndpoint:
    """Interface implemented by control endpoints."""

    def detach(self) -> None:
        raise NotImplementedError

    def shutdown(self) -> None:
        raise NotImplementedError


EndpointLocator = Callable[[psutil.Process], Optional[ControlEndpoint]]


class SocketEndpoint(ControlEndpoint):
    """TCP control endpoint exposed by the application on a local port."""

    def __init__(
        self,
        pid: int,
        host: str,
        port: int,
        quit_command: Optional[bytes] = None,
        connect_timeout: float = 5.0,
    ):
        self.pid = pid
        self.host = host
        self.port = port
        self._quit_command = quit_command
        self._connect_timeout = connect_timeout
        self._sock: Optional[socket.socket] = None

    @property
    def address(self) -> Tuple[str, int]:
        return (self.host, self.port)

    def connect(self) -> socket.socket:
        """Open (or reuse) the client connection used by the automation layer."""
        if self._sock is None:
            self._sock = socket.create_connection(self.address, timeout=self._connect_timeout)
        return self._sock

    def detach(self) -> None:
        if self._sock is None:
            return
        try:
            self._sock.close()
        except OSError as e:
            logger.debug(f"[SocketEndpoint] Error closing connection to {self.address}: {e}")
        finally:
            self._sock = None

    def shutdown(self) -> None:
        try:
            if self._quit_command:
                self.connect().sendall(self._quit_command)
        except OSError as e:
            logger.debug(f"[SocketEndpoint] Quit request to {self.address} failed: {e}")
        finally:
            self.detach()

    def __repr__(self) -> str:
        return f"SocketEndpoint(pid={self.pid}, address={self.host}:{self.port})"


class ListeningPortEndpointLocator:
    """
    Resolves the endpoint as a TCP port the process is listening on.

    Returns ``None`` while the process has not opened a matching listener.
    Raises :class:`ProcessExitedError` if the process is gone, since waiting
    any longer cannot succeed.
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port_range: Optional[Tuple[int, int]] = None,
        quit_command: Optional[bytes] = None,
    ):
        self._host = host
        self._port_range = port_range
        self._quit_command = quit_command

    def _port_allowed(self, port: int) -> bool:
        if self._port_range is None:
            return True
        low, high = self._port_range
        return low <= port <= high

    def __call__(self, process: psutil.Process) -> Optional[ControlEndpoint]:
        try:
            connections = process.net_connections(kind="tcp")
        except psutil.NoSuchProcess as e:
            raise ProcessExitedError(f"Process {process.pid} exited before its endpoint appeared") from e
        except psutil.AccessDenied:
            logger.debug(f"[EndpointLocator] Access denied reading sockets of PID {process.pid}")
            return None

        for conn in connections:
            if conn.status != psutil.CONN_LISTEN or not conn.laddr:
                continue
            if not self._port_allowed(conn.laddr.port):
                continue
            logger.debug(
                f"[EndpointLocator] PID {process.pid} is listening on port {conn.laddr.port}",
                extra={"event_type": "ENDPOINT"},
            )
            return SocketEndpoint(
                pid=process.pid,
                host=self._host,
                port=conn.laddr.port,
                quit_command=self._quit_command,
            )
        return None
