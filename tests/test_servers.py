"""
Tests for loopback listener lifecycle.
"""

import socket
from unittest.mock import AsyncMock

import httpx
import pytest

from shared.exceptions import PortInUse
from services.repo_tracker.push_channel import create_push_app
from services.repo_tracker.servers import LocalServer, bind_socket


@pytest.fixture
def occupied_port():
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    sock.listen(1)
    yield sock.getsockname()[1]
    sock.close()


class TestBindSocket:
    """Test cases for bind_socket."""

    def test_ephemeral_port(self):
        sock = bind_socket("127.0.0.1", 0)
        try:
            assert sock.getsockname()[1] > 0
        finally:
            sock.close()

    def test_port_in_use(self, occupied_port):
        with pytest.raises(PortInUse) as exc_info:
            bind_socket("127.0.0.1", occupied_port)

        assert exc_info.value.port == occupied_port
        assert "already in use" in str(exc_info.value)


class TestLocalServer:
    """Test cases for LocalServer."""

    @pytest.mark.asyncio
    async def test_serves_until_stopped(self):
        server = LocalServer(create_push_app(AsyncMock()), "Push channel", host="127.0.0.1", port=0)

        port = await server.start()
        try:
            assert server.is_running
            async with httpx.AsyncClient() as client:
                response = await client.get(f"http://127.0.0.1:{port}/health")
            assert response.status_code == 200
            assert response.json()["service"] == "push_channel"
        finally:
            await server.stop()

        assert not server.is_running
        assert server.bound_port is None
        await server.stop()

    @pytest.mark.asyncio
    async def test_start_on_busy_port(self, occupied_port):
        server = LocalServer(create_push_app(AsyncMock()), "Push channel", host="127.0.0.1", port=occupied_port)

        with pytest.raises(PortInUse):
            await server.start()

        assert not server.is_running
