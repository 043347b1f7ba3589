"""Shared test fixtures and configuration for backend tests."""
from typing import List, Optional

import pytest
from fastapi.testclient import TestClient

from roomdrop.config import AppSettings
from roomdrop.main import create_app
from roomdrop.protocol.codec import Frame, decode_frame


class FakeWebSocket:
    """Stand-in for a server-side WebSocket used by RelayService unit tests."""

    def __init__(self, fail_sends: bool = False) -> None:
        self.sent: List[Frame] = []
        self.accepted = False
        self.close_code: Optional[int] = None
        self.fail_sends = fail_sends

    async def accept(self) -> None:
        self.accepted = True

    async def send_text(self, data: str) -> None:
        if self.fail_sends:
            raise RuntimeError("connection is gone")
        self.sent.append(data)

    async def send_bytes(self, data: bytes) -> None:
        if self.fail_sends:
            raise RuntimeError("connection is gone")
        self.sent.append(data)

    async def close(self, code: int = 1000) -> None:
        self.close_code = code

    def events(self) -> List[str]:
        return [decode_frame(frame).event for frame in self.sent]


@pytest.fixture
def fake_socket():
    """Factory for FakeWebSocket instances."""
    return FakeWebSocket


@pytest.fixture
def settings():
    """Default settings, independent of any roomdrop.settings.yaml on disk."""
    return AppSettings()


@pytest.fixture
def api_client(settings):
    """Provide a TestClient with the lifespan running (relay started)."""
    with TestClient(create_app(settings)) as client:
        yield client
