from __future__ import annotations

import asyncio
import inspect
from typing import Any

import httpx
import pytest
from fastapi.testclient import TestClient

import img2video_proxy.serve.fastapi_app as app_mod
from img2video_proxy.common.schema import GenerationResult
from img2video_proxy.generation.errors import GenerationCancelled, RemoteTaskFailed, TaskTimeout
from img2video_proxy.generation.runway_client import CancelToken, RunwayClient
from img2video_proxy.serve.rate_limit import FixedWindowRateLimiter

IMAGE = "data:image/png;base64,iVBORw0KGgo="


class _FakeRunwayClient:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.calls: list[tuple[str, str]] = []

    def generate(self, image: str, prompt_text: str, cancel: Any = None) -> GenerationResult:
        self.calls.append((image, prompt_text))
        if self.error is not None:
            raise self.error
        return GenerationResult(
            id="task-1",
            status="SUCCEEDED",
            video_url=["https://cdn.example.com/out.mp4"],
            attempts=3,
            latency_ms=30000,
        )


class _SpyLimiter(FixedWindowRateLimiter):
    def __init__(self) -> None:
        super().__init__(interval=60.0, unique_token_per_interval=500)
        self.tokens: list[str] = []

    def check(self, limit: int, token: str) -> bool:
        self.tokens.append(token)
        return super().check(limit, token)


@pytest.fixture
def limiter(monkeypatch: pytest.MonkeyPatch) -> _SpyLimiter:
    spy = _SpyLimiter()
    monkeypatch.setattr(app_mod, "limiter", spy)
    return spy


@pytest.fixture
def fake() -> Any:
    fake = _FakeRunwayClient()
    app_mod.app.dependency_overrides[app_mod.get_runway_client] = lambda: fake
    yield fake
    app_mod.app.dependency_overrides.clear()


def _headers(**extra: str) -> dict[str, str]:
    headers = {"referer": f"{app_mod.SETTINGS.app_url}/create"}
    headers.update(extra)
    return headers


def test_health_ok() -> None:
    client = TestClient(app_mod.app)
    r = client.get("/health")
    assert r.status_code == 200
    data = r.json()
    assert data.get("status") == "ok"
    assert data.get("model") == app_mod.SETTINGS.generation.model


def test_health_runs_on_event_loop() -> None:
    assert inspect.iscoroutinefunction(app_mod.health)


def test_generate_success(limiter: _SpyLimiter, fake: _FakeRunwayClient) -> None:
    client = TestClient(app_mod.app)
    r = client.post("/api/generate", data={"image": IMAGE, "promptText": "waves"}, headers=_headers())
    assert r.status_code == 200
    assert r.json() == {
        "id": "task-1",
        "status": "SUCCEEDED",
        "output": {"video_url": ["https://cdn.example.com/out.mp4"]},
    }
    assert fake.calls == [(IMAGE, "waves")]


def test_generate_accepts_multipart(limiter: _SpyLimiter, fake: _FakeRunwayClient) -> None:
    client = TestClient(app_mod.app)
    r = client.post(
        "/api/generate",
        files={"image": (None, IMAGE.encode()), "promptText": (None, b"waves")},
        headers=_headers(),
    )
    assert r.status_code == 200
    assert fake.calls == [(IMAGE, "waves")]


@pytest.mark.parametrize(
    "form",
    [
        {"promptText": "waves"},
        {"image": IMAGE},
        {"image": "", "promptText": "waves"},
        {},
    ],
)
def test_missing_fields_is_400_without_upstream_call(
    form: dict[str, str], limiter: _SpyLimiter, fake: _FakeRunwayClient
) -> None:
    client = TestClient(app_mod.app)
    r = client.post("/api/generate", data=form, headers=_headers())
    assert r.status_code == 400
    assert r.json() == {"error": "Missing required fields"}
    assert fake.calls == []


@pytest.mark.parametrize(
    "referer",
    [
        None,
        "https://evil.example.com/",
        "http://localhost:3000.evil.com/create",
        "https://evil.example.com/?r=http://localhost:3000",
        "http://[::1/create",
    ],
)
def test_bad_referer_is_401_before_rate_limit(
    referer: str | None, limiter: _SpyLimiter, fake: _FakeRunwayClient
) -> None:
    client = TestClient(app_mod.app)
    headers = {"referer": referer} if referer else {}
    r = client.post("/api/generate", data={"image": IMAGE, "promptText": "waves"}, headers=headers)
    assert r.status_code == 401
    assert r.text == "Unauthorized"
    assert limiter.tokens == []
    assert fake.calls == []


def test_eleventh_request_is_429(limiter: _SpyLimiter, fake: _FakeRunwayClient) -> None:
    client = TestClient(app_mod.app)
    headers = _headers(**{"x-forwarded-for": "203.0.113.7"})
    for _ in range(10):
        r = client.post("/api/generate", data={"image": IMAGE, "promptText": "w"}, headers=headers)
        assert r.status_code == 200
    r = client.post("/api/generate", data={"image": IMAGE, "promptText": "w"}, headers=headers)
    assert r.status_code == 429
    assert r.text == "Too Many Requests"
    assert len(fake.calls) == 10

    other = _headers(**{"x-real-ip": "198.51.100.1"})
    r = client.post("/api/generate", data={"image": IMAGE, "promptText": "w"}, headers=other)
    assert r.status_code == 200
    assert limiter.tokens[-1] == "198.51.100.1"


def test_health_is_not_gated(limiter: _SpyLimiter) -> None:
    client = TestClient(app_mod.app)
    r = client.get("/health")
    assert r.status_code == 200
    assert limiter.tokens == []


@pytest.mark.parametrize(
    "error, message",
    [
        (RemoteTaskFailed({"status": "FAILED"}), "Task processing failed"),
        (TaskTimeout("task-1", 30, 300), "Task timed out"),
    ],
)
def test_generation_errors_are_500(
    error: Exception, message: str, limiter: _SpyLimiter, fake: _FakeRunwayClient
) -> None:
    fake.error = error
    client = TestClient(app_mod.app)
    r = client.post("/api/generate", data={"image": IMAGE, "promptText": "waves"}, headers=_headers())
    assert r.status_code == 500
    assert r.json()["error"].startswith(message)


def test_referer_matches_origin_only() -> None:
    assert app_mod.referer_matches("http://localhost:3000/create?x=1", "http://localhost:3000")
    assert app_mod.referer_matches("HTTP://LOCALHOST:3000/", "http://localhost:3000/")
    assert not app_mod.referer_matches("https://localhost:3000/", "http://localhost:3000")
    assert not app_mod.referer_matches("http://localhost:3001/", "http://localhost:3000")
    assert not app_mod.referer_matches("", "http://localhost:3000")


def test_malformed_image_url_is_500_json(limiter: _SpyLimiter) -> None:
    seen: list[httpx.Request] = []

    def upstream(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"id": "task-1"})

    runway = RunwayClient(
        api_url="https://api.runway.test",
        api_key="secret",
        poll_interval=0.0,
        http_client=httpx.Client(transport=httpx.MockTransport(upstream)),
    )
    app_mod.app.dependency_overrides[app_mod.get_runway_client] = lambda: runway
    try:
        client = TestClient(app_mod.app, raise_server_exceptions=False)
        r = client.post(
            "/api/generate",
            data={"image": "http://host:notaport/x.png", "promptText": "waves"},
            headers=_headers(),
        )
    finally:
        app_mod.app.dependency_overrides.clear()
    assert r.status_code == 500
    assert r.json() == {"error": "Invalid image format"}
    assert seen == []


def test_cancelled_generation_is_499(limiter: _SpyLimiter, fake: _FakeRunwayClient) -> None:
    fake.error = GenerationCancelled("task-1")
    client = TestClient(app_mod.app)
    r = client.post("/api/generate", data={"image": IMAGE, "promptText": "waves"}, headers=_headers())
    assert r.status_code == 499
    assert r.json() == {"error": "Generation cancelled"}


class _DisconnectingRequest:
    def __init__(self, after: int) -> None:
        self.after = after
        self.checks = 0

    async def is_disconnected(self) -> bool:
        self.checks += 1
        return self.checks >= self.after


def test_disconnect_trips_cancel_token(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(app_mod, "DISCONNECT_CHECK_INTERVAL", 0)
    request = _DisconnectingRequest(after=3)
    token = CancelToken()
    asyncio.run(app_mod._cancel_on_disconnect(request, token))  # type: ignore[arg-type]
    assert token.cancelled
    assert request.checks == 3
