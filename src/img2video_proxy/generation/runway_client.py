"""Runway image-to-video client: create a task, then poll it to a terminal state.

Flow:
- POST /v1/image_to_video   -> task id
- GET  /v1/tasks/{id}       every `poll_interval` seconds, at most `max_attempts` times

Nothing is retried. A transport error at any step aborts the generation.
"""
from __future__ import annotations
import logging
import threading
import time
from typing import Any

import httpx

from img2video_proxy.common.config import Settings
from img2video_proxy.common.images import fetch_as_data_uri, is_data_uri
from img2video_proxy.common.schema import GenerationParams, GenerationResult, TaskStatus
from img2video_proxy.generation.errors import (
    GenerationCancelled,
    MalformedSubmissionResponse,
    RemoteTaskFailed,
    StatusCheckFailed,
    SubmissionFailed,
    TaskTimeout,
)

LOGGER = logging.getLogger("img2video.generation.runway")


class CancelToken:
    """Cancellation flag shared between the poll loop and whoever owns the request."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to `timeout` seconds; return True if cancelled meanwhile."""
        return self._event.wait(timeout)


class RunwayClient:
    def __init__(
        self,
        api_url: str,
        api_key: str,
        api_version: str = "2024-11-06",
        params: GenerationParams | None = None,
        poll_interval: float = 10.0,
        max_attempts: int = 30,
        http_client: httpx.Client | None = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.api_version = api_version
        self.params = params or GenerationParams()
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self._http = http_client or httpx.Client(timeout=60.0)

    @classmethod
    def from_settings(cls, settings: Settings, http_client: httpx.Client | None = None) -> "RunwayClient":
        return cls(
            api_url=settings.runway_api_url,
            api_key=settings.runway_api_key,
            api_version=settings.runway_api_version,
            params=settings.generation,
            poll_interval=settings.poll_interval,
            max_attempts=settings.max_poll_attempts,
            http_client=http_client,
        )

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "RunwayClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        self.close()

    def _headers(self, json_body: bool = False) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "X-Runway-Version": self.api_version,
        }
        if json_body:
            headers["Content-Type"] = "application/json"
        return headers

    def build_payload(self, image: str, prompt_text: str) -> dict[str, Any]:
        return {
            "model": self.params.model,
            "promptImage": image,
            "promptText": prompt_text,
            "parameters": self.params.parameters(),
        }

    def submit(self, image: str, prompt_text: str) -> str:
        """
        Create a generation task.

        Args:
            image: Data URI of the source image.
            prompt_text: Free-form prompt, passed through untouched.

        Returns:
            The remote task id.
        """
        payload = self.build_payload(image, prompt_text)
        LOGGER.info(
            "Starting generation: model=%s prompt=%r image=%s...",
            payload["model"],
            prompt_text,
            image[:30],
        )
        try:
            r = self._http.post(
                f"{self.api_url}/v1/image_to_video",
                headers=self._headers(json_body=True),
                json=payload,
            )
        except httpx.HTTPError as e:
            LOGGER.error("Task submission failed: %s", e)
            raise SubmissionFailed(str(e)) from e

        if not r.is_success:
            LOGGER.error("Error response: status=%s body=%s", r.status_code, r.text)
            raise SubmissionFailed(r.text, status_code=r.status_code)

        try:
            task = r.json()
        except ValueError as e:
            LOGGER.error("Invalid task response: %s", r.text)
            raise MalformedSubmissionResponse(r.text) from e

        task_id = task.get("id") if isinstance(task, dict) else None
        if not task_id:
            LOGGER.error("Invalid task response: %s", task)
            raise MalformedSubmissionResponse(task)

        LOGGER.info("Task created: %s", task_id)
        return str(task_id)

    def fetch_status(self, task_id: str) -> dict[str, Any]:
        try:
            r = self._http.get(f"{self.api_url}/v1/tasks/{task_id}", headers=self._headers())
        except httpx.HTTPError as e:
            LOGGER.error("Status check failed: %s", e)
            raise StatusCheckFailed(str(e)) from e

        if not r.is_success:
            LOGGER.error("Status check failed: status=%s body=%s", r.status_code, r.text)
            raise StatusCheckFailed(r.text, status_code=r.status_code)
        try:
            data = r.json()
        except ValueError as e:
            LOGGER.error("Status check returned non-JSON body: %s", r.text)
            raise StatusCheckFailed(r.text, status_code=r.status_code) from e
        if not isinstance(data, dict):
            raise StatusCheckFailed(r.text, status_code=r.status_code)
        return data

    def wait_for_result(self, task_id: str, cancel: CancelToken | None = None) -> GenerationResult:
        """
        Poll a task until it succeeds, fails, runs out of attempts or is cancelled.

        Every attempt waits `poll_interval` first, then checks status once.
        """
        cancel = cancel or CancelToken()
        start = time.time()
        for attempt in range(1, self.max_attempts + 1):
            if cancel.cancelled or cancel.wait(self.poll_interval):
                LOGGER.info("Task %s cancelled before attempt %d", task_id, attempt)
                raise GenerationCancelled(task_id)

            LOGGER.info("Checking status of %s (attempt %d/%d)", task_id, attempt, self.max_attempts)
            result = self.fetch_status(task_id)
            status = result.get("status")
            LOGGER.debug("Task status result: %s", result)

            if status == TaskStatus.SUCCEEDED and result.get("output") is not None:
                latency_ms = int((time.time() - start) * 1000)
                LOGGER.info("Task %s succeeded after %d attempts", task_id, attempt)
                return GenerationResult(
                    id=str(result.get("id", task_id)),
                    status=TaskStatus.SUCCEEDED,
                    video_url=result["output"],
                    attempts=attempt,
                    latency_ms=latency_ms,
                )

            if status == TaskStatus.FAILED:
                LOGGER.error("Task failed: %s", result)
                raise RemoteTaskFailed(result)

        LOGGER.error("Task %s timed out after %d attempts", task_id, self.max_attempts)
        raise TaskTimeout(task_id, self.max_attempts, self.max_attempts * self.poll_interval)

    def generate(self, image: str, prompt_text: str, cancel: CancelToken | None = None) -> GenerationResult:
        """
        Turn an image and a prompt into a finished video reference.

        Args:
            image: Data URI, or a URL that will be fetched and re-encoded.
            prompt_text: Prompt text.
            cancel: Optional token; setting it aborts the poll loop.
        """
        if not is_data_uri(image):
            image = fetch_as_data_uri(image, self._http)
        if cancel is not None and cancel.cancelled:
            raise GenerationCancelled(None)
        task_id = self.submit(image, prompt_text)
        return self.wait_for_result(task_id, cancel)
