"""Test fixtures for integration tests.

Starts the backend on a free port with a temporary database and a fixed
clock, providing a TestServer object with helpers for authenticated requests.

Each test module gets its own server (and so a clean database).
"""

import socket
import threading
from collections.abc import Generator
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

import pytest
import requests

from memberdir.app import run_with_settings
from memberdir.settings import Settings

ADMIN_TOKEN = "test-admin-token"
CRON_SECRET = "test-cron-secret"
ADMIN_EMAIL = "pastor@example.org"
# Saturday, June 1, 2024
FIXED_NOW = datetime(2024, 6, 1, 9, 0)


def freeport(host: str = "") -> int:
    """Find a free TCP port on the given host."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind((host, 0))
        return s.getsockname()[1]


@dataclass
class TestServer:
    """Running test server with helper functions."""

    __test__ = False

    url: str
    outbox_dir: Path

    def admin_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {ADMIN_TOKEN}"}

    def cron_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {CRON_SECRET}"}

    def get(self, path: str, **kwargs: Any) -> requests.Response:
        kwargs.setdefault("headers", self.admin_headers())
        return requests.get(f"{self.url}{path}", timeout=10, **kwargs)

    def post(self, path: str, **kwargs: Any) -> requests.Response:
        kwargs.setdefault("headers", self.admin_headers())
        return requests.post(f"{self.url}{path}", timeout=10, **kwargs)

    def add_member(self, **fields: Any) -> dict:
        body = {"phone": "555-0100", **fields}
        response = self.post("/members/", json=body)
        assert response.status_code == 201, response.text
        return response.json()


def start_server(settings: Settings) -> None:
    ready_event = threading.Event()

    # Start backend in daemon thread (run_with_settings blocks)
    threading.Thread(
        target=run_with_settings,
        args=(settings,),
        kwargs={"ready_event": ready_event, "clock": lambda: FIXED_NOW},
        daemon=True,
    ).start()

    ready_event.wait(timeout=15)
    assert ready_event.is_set(), f"Backend server failed to start on port {settings.port}"


@pytest.fixture(scope="module")
def server(tmp_path_factory: pytest.TempPathFactory) -> Generator[TestServer]:
    """Start the backend with a fresh database for the test module."""
    tmppath = tmp_path_factory.mktemp("memberdir_test")
    port = freeport()
    outbox_dir = tmppath / "outbox"

    settings = Settings(
        db_file=tmppath / "db.sqlite",
        environment="test",
        frontend_origin="http://localhost:3000",
        debug_logs=True,
        port=port,
        admin_token=ADMIN_TOKEN,
        cron_secret=CRON_SECRET,
        admin_email=ADMIN_EMAIL,
        outbox_dir=outbox_dir,
    )
    start_server(settings)

    yield TestServer(url=f"http://localhost:{port}", outbox_dir=outbox_dir)


@pytest.fixture(scope="module")
def unconfigured_server(tmp_path_factory: pytest.TempPathFactory) -> TestServer:
    """Backend without any secrets or admin email configured."""
    tmppath = tmp_path_factory.mktemp("memberdir_unconfigured")
    port = freeport()
    settings = Settings(
        db_file=tmppath / "db.sqlite",
        environment="test",
        port=port,
        outbox_dir=tmppath / "outbox",
    )
    start_server(settings)
    return TestServer(url=f"http://localhost:{port}", outbox_dir=tmppath / "outbox")
