"""Shared fixtures for signaling tests."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from callrelay.core.config import Settings
from callrelay.services.calls import CallRegistry
from callrelay.services.presence import PresenceRegistry
from callrelay.services.signaling import SignalingEngine
from callrelay.services.tokens import TokenIssuer

APP_ID = "test-app"
APP_CERTIFICATE = "test-certificate-0123456789abcdef0123456789"


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 5, 9, 30, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class DummyConnection:
    def __init__(self, connection_id: str) -> None:
        self.connection_id = connection_id
        self.messages: list[dict] = []

    async def send(self, message: dict) -> None:
        self.messages.append(message)

    def of_type(self, event: str) -> list[dict]:
        return [message for message in self.messages if message["type"] == event]


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        rtc_app_id=APP_ID,
        rtc_app_certificate=APP_CERTIFICATE,
        cors_allow_origins=["http://localhost:3000"],
    )


@pytest.fixture
def issuer() -> TokenIssuer:
    return TokenIssuer(APP_ID, APP_CERTIFICATE)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def presence() -> PresenceRegistry:
    return PresenceRegistry(send_timeout=0.5)


@pytest.fixture
def calls() -> CallRegistry:
    return CallRegistry()


@pytest.fixture
def engine(presence, calls, issuer, clock) -> SignalingEngine:
    return SignalingEngine(
        presence,
        calls,
        issuer,
        clock=clock,
        ring_timeout=30,
        max_duration=600,
        retention=120,
    )


@pytest.fixture
def connect_user(engine):
    """Return a coroutine that attaches and registers a dummy connection."""

    async def _connect(user_id: str, connection_id: str | None = None) -> DummyConnection:
        connection = DummyConnection(connection_id or f"{user_id}-conn")
        await engine.connect(connection.connection_id, connection.send)
        await engine.register_presence(connection.connection_id, user_id)
        return connection

    return _connect
