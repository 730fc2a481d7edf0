"""
Loopback listeners scoped to the tracker's lifecycle.

Each listener binds its own socket before handing it to uvicorn, so a busy
port surfaces as PortInUse at start time instead of as a uvicorn exit.
"""

import asyncio
import contextlib
import errno
import logging
import socket
from typing import Optional

import uvicorn

from config.settings import settings
from shared.exceptions import PortInUse

logger = logging.getLogger(__name__)


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves process signals to its owner."""

    @contextlib.contextmanager
    def capture_signals(self):
        yield

    def install_signal_handlers(self):
        pass


def bind_socket(host: str, port: int) -> socket.socket:
    """
    Bind a listening TCP socket.

    Raises:
        PortInUse: the address is already taken or cannot be bound
    """
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
        sock.listen(128)
    except OSError as e:
        sock.close()
        detail = "address already in use" if e.errno == errno.EADDRINUSE else str(e)
        raise PortInUse(host, port, detail)
    sock.setblocking(False)
    return sock


class LocalServer:
    """Runs one ASGI app on a loopback address inside the current event loop."""

    def __init__(self, app, name: str, host: Optional[str] = None, port: Optional[int] = None):
        self.app = app
        self.name = name
        self.host = host or settings.service.host
        self.port = settings.service.push_port if port is None else port
        self._server: Optional[_EmbeddedServer] = None
        self._socket: Optional[socket.socket] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def bound_port(self) -> Optional[int]:
        if self._socket is None:
            return None
        return self._socket.getsockname()[1]

    async def start(self) -> int:
        """
        Bind and start serving. Returns the bound port (useful with port 0).

        Raises:
            PortInUse: the listener could not bind
        """
        if self.is_running:
            return self.bound_port

        self._socket = bind_socket(self.host, self.port)
        config = uvicorn.Config(
            self.app,
            log_level=settings.monitoring.log_level.lower(),
            access_log=settings.debug,
            timeout_graceful_shutdown=settings.service.graceful_shutdown_timeout,
        )
        self._server = _EmbeddedServer(config)
        self._task = asyncio.get_running_loop().create_task(
            self._server.serve(sockets=[self._socket]), name=f"{self.name}-server"
        )

        while not self._server.started:
            if self._task.done():
                error = self._task.exception()
                self._close_socket()
                raise PortInUse(self.host, self.port, str(error) if error else "server exited")
            await asyncio.sleep(0.01)

        logger.info(f"{self.name} listening on {self.host}:{self.bound_port}")
        return self.bound_port

    async def stop(self):
        """Ask the server to exit and wait for it. Safe to call repeatedly."""
        if self._server is not None:
            self._server.should_exit = True
        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info(f"{self.name} stopped")
        self._server = None
        self._close_socket()

    def _close_socket(self):
        if self._socket is not None:
            self._socket.close()
            self._socket = None
