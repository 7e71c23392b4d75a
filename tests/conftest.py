from __future__ import annotations

import sys
from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from config.settings import Settings  # noqa: E402
from integrations.push import PushConfig, PushNotifier  # noqa: E402


class FakeClock:
    """Settable stand-in for ``time.time``."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class PushRecorder:
    """Collects every notification the push transport sends."""

    def __init__(self, failing: set[str] | None = None) -> None:
        self.requests: list[httpx.Request] = []
        self.failing = failing or set()

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if str(request.url) in self.failing:
            return httpx.Response(410)
        return httpx.Response(200)

    def notifier(self, timeout: float = 1.0) -> PushNotifier:
        return PushNotifier(PushConfig(timeout=timeout), transport=httpx.MockTransport(self.handler))

    @property
    def urls(self) -> list[str]:
        return [str(request.url) for request in self.requests]


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{(tmp_path / 'signaling_test.db').as_posix()}",
        data_dir=tmp_path,
        auto_create_db_schema=True,
        media_provider="fake",
        media_api_key="test-api-key",
        session_secret="test-session-secret",
        user_secret="test-user-secret",
        assertion_verification_key="test-assertion-key",
        web_app_url="http://web.example/c/{token}",
        public_base_url="https://signaling.example",
    )


@pytest.fixture()
def push_recorder() -> PushRecorder:
    return PushRecorder()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def client(settings: Settings, push_recorder: PushRecorder):
    from main import create_app

    app = create_app(settings, notifier=push_recorder.notifier())
    with TestClient(app) as test_client:
        yield test_client
