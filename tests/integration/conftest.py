"""Pytest fixtures for integration tests.

This module provides fixtures for end-to-end testing with a real server
running on a local port with local filesystem storage.
"""

from __future__ import annotations

import socket
import threading
import time
from collections.abc import Callable, Generator
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pytest
import uvicorn
from httpx import Client

from zerodrop.client.api import UserInfo, ZeroDropClient
from zerodrop.client.transfer import TransferClient
from zerodrop.core.config import ServerConfig
from zerodrop.server.app import create_app
from zerodrop.server.database import Database
from zerodrop.server.storage import LocalFSStorage


@dataclass
class TestServer:
    """Container for test server resources."""

    db: Database
    storage: LocalFSStorage
    url: str


@dataclass
class UserSession:
    """A registered user with API and transfer clients."""

    user: UserInfo
    token: str
    api: ZeroDropClient
    transfer: TransferClient
    folder: Path

    def create_file(self, name: str, content: bytes) -> Path:
        """Create a file in the user's folder."""
        path = self.folder / name
        path.write_bytes(content)
        return path


def free_port(host: str = "127.0.0.1") -> int:
    """Find a free TCP port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind((host, 0))
        return int(s.getsockname()[1])


class UvicornTestServer:
    """Uvicorn server running in a background thread for testing."""

    def __init__(self, app: Any, host: str = "127.0.0.1", port: int = 0) -> None:
        self.app = app
        self.host = host
        self.port = port
        self.server: uvicorn.Server | None = None
        self.thread: threading.Thread | None = None

    def start(self) -> int:
        """Start the server and return the port."""
        if not self.port:
            self.port = free_port(self.host)

        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_level="warning",
        )
        self.server = uvicorn.Server(config)

        self.thread = threading.Thread(target=self.server.run, daemon=True)
        self.thread.start()

        # Wait for server to be ready
        self._wait_for_ready()

        return self.port

    def _wait_for_ready(self, timeout: float = 5.0) -> None:
        """Wait for the server to be ready to accept connections."""
        start = time.time()
        while time.time() - start < timeout:
            try:
                with Client() as client:
                    response = client.get(f"http://{self.host}:{self.port}/health")
                    if response.status_code == 200:
                        return
            except Exception:  # noqa: BLE001
                pass
            time.sleep(0.1)
        raise RuntimeError("Server failed to start in time")

    def stop(self) -> None:
        """Stop the server and wait for its thread."""
        if self.server:
            self.server.should_exit = True
        if self.thread:
            self.thread.join(timeout=5.0)


@pytest.fixture
def test_server(tmp_path: Path) -> Generator[TestServer, None, None]:
    """Create and start a test server with a temp DB and local storage."""
    db = Database(tmp_path / "server" / "test.db")

    # Capability URLs must point back at this server
    port = free_port()
    url = f"http://127.0.0.1:{port}"
    storage = LocalFSStorage(tmp_path / "server" / "blobs", public_url=url)

    server = UvicornTestServer(create_app(db, storage), port=port)
    server.start()

    yield TestServer(db=db, storage=storage, url=url)

    server.stop()
    db.close()


@pytest.fixture
def anonymous(test_server: TestServer) -> Generator[TransferClient, None, None]:
    """Transfer client without any account."""
    api = ZeroDropClient(ServerConfig(server_url=test_server.url))
    yield TransferClient(api)
    api.close()


@pytest.fixture
def user_factory(tmp_path: Path, test_server: TestServer) -> Generator[Callable[[str], UserSession], None, None]:
    """Factory fixture registering users over HTTP."""
    sessions: list[UserSession] = []

    def _create_user(name: str) -> UserSession:
        with ZeroDropClient(ServerConfig(server_url=test_server.url)) as anonymous_api:
            token, user = anonymous_api.register_user(name, f"{name.lower()}@example.com")

        api = ZeroDropClient(ServerConfig(server_url=test_server.url, token=token))
        folder = tmp_path / "users" / name
        folder.mkdir(parents=True, exist_ok=True)
        session = UserSession(user=user, token=token, api=api, transfer=TransferClient(api), folder=folder)
        sessions.append(session)
        return session

    yield _create_user

    for session in sessions:
        session.api.close()


@pytest.fixture
def alice(user_factory: Callable[[str], UserSession]) -> UserSession:
    """First registered user."""
    return user_factory("Alice")


@pytest.fixture
def bob(user_factory: Callable[[str], UserSession]) -> UserSession:
    """Second registered user."""
    return user_factory("Bob")
