"""FastAPI proxy in front of the Runway image-to-video API.

Endpoints:
- GET /health
- POST /api/generate  form fields: image, promptText

Everything under /api/ is gated by a referer check and a per-IP rate limit.
"""
from __future__ import annotations
import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterator
from urllib.parse import urlsplit

from fastapi import Depends, FastAPI, Form, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from img2video_proxy.common.config import Settings
from img2video_proxy.common.logging_setup import setup_logging
from img2video_proxy.generation.errors import GenerationCancelled, GenerationError
from img2video_proxy.generation.runway_client import CancelToken, RunwayClient
from img2video_proxy.serve.rate_limit import FixedWindowRateLimiter, RateLimitExceeded

LOGGER = logging.getLogger("img2video.serve.app")
setup_logging()

SETTINGS = Settings.from_env()
DISCONNECT_CHECK_INTERVAL = 1.0
CLIENT_CLOSED_REQUEST = 499

limiter = FixedWindowRateLimiter(
    interval=SETTINGS.rate_limit_window_seconds,
    unique_token_per_interval=SETTINGS.rate_limit_max_clients,
)

class VideoOutput(BaseModel):
    video_url: Any

class GenerateOut(BaseModel):
    id: str
    status: str
    output: VideoOutput

app = FastAPI(title="img2video proxy")

@app.on_event("startup")
def _warn_on_missing_key() -> None:
    """Warn early if the upstream API key is not configured."""
    if not SETTINGS.runway_api_key:
        LOGGER.warning("RUNWAY_API_KEY is not set; upstream calls will be rejected")

def get_runway_client() -> Iterator[RunwayClient]:
    client = RunwayClient.from_settings(SETTINGS)
    try:
        yield client
    finally:
        client.close()

def client_identifier(request: Request) -> str:
    return (
        request.headers.get("x-forwarded-for")
        or request.headers.get("x-real-ip")
        or "anonymous"
    )

def _origin(url: str) -> tuple[str, str]:
    parts = urlsplit(url)
    return parts.scheme.lower(), parts.netloc.lower()

def referer_matches(referer: str | None, app_url: str) -> bool:
    """True when `referer` has the same scheme and host:port as `app_url`."""
    if not referer:
        return False
    try:
        return _origin(referer) == _origin(app_url)
    except ValueError:
        return False

@app.middleware("http")
async def gate_api_requests(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Reject foreign referers (401) and clients over the rate limit (429)."""
    if request.url.path.startswith("/api/"):
        referer = request.headers.get("referer")
        if not referer_matches(referer, SETTINGS.app_url):
            LOGGER.warning("Rejected %s: referer %r", request.url.path, referer)
            return PlainTextResponse("Unauthorized", status_code=401)

        ip = client_identifier(request)
        try:
            limiter.check(SETTINGS.rate_limit_per_window, ip)
        except RateLimitExceeded:
            return PlainTextResponse("Too Many Requests", status_code=429)

    return await call_next(request)

@app.exception_handler(GenerationError)
async def _generation_error(request: Request, exc: GenerationError) -> JSONResponse:
    if isinstance(exc, GenerationCancelled):
        return JSONResponse({"error": exc.message}, status_code=CLIENT_CLOSED_REQUEST)
    LOGGER.error("API Error: %s", exc.message)
    return JSONResponse({"error": exc.message}, status_code=500)

@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok", "model": SETTINGS.generation.model}

async def _cancel_on_disconnect(request: Request, cancel: CancelToken) -> None:
    """Trip `cancel` once the client goes away."""
    while not cancel.cancelled:
        await asyncio.sleep(DISCONNECT_CHECK_INTERVAL)
        if await request.is_disconnected():
            LOGGER.info("Client disconnected; cancelling generation")
            cancel.cancel()

@app.post("/api/generate", response_model=GenerateOut)
async def generate(
    request: Request,
    image: str | None = Form(None),
    prompt_text: str | None = Form(None, alias="promptText"),
    client: RunwayClient = Depends(get_runway_client),
) -> Any:
    if not image or not prompt_text:
        return JSONResponse({"error": "Missing required fields"}, status_code=400)

    cancel = CancelToken()
    watcher = asyncio.create_task(_cancel_on_disconnect(request, cancel))
    try:
        result = await run_in_threadpool(client.generate, image, prompt_text, cancel)
    finally:
        watcher.cancel()

    LOGGER.info("Generation %s done in %sms (%d polls)", result.id, result.latency_ms, result.attempts)
    return GenerateOut(id=result.id, status=result.status, output=VideoOutput(video_url=result.video_url))
