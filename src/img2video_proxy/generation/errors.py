"""Errors raised by the generation client. All are terminal for the request."""
from __future__ import annotations
import json
from typing import Any


class GenerationError(Exception):
    """Base class; `message` is what the HTTP layer returns to the caller."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidImageFormat(GenerationError):
    def __init__(self, message: str = "Invalid image format") -> None:
        super().__init__(message)


class SubmissionFailed(GenerationError):
    def __init__(self, body: str, status_code: int | None = None) -> None:
        super().__init__(f"API Error: {body}")
        self.body = body
        self.status_code = status_code


class MalformedSubmissionResponse(GenerationError):
    def __init__(self, payload: Any) -> None:
        super().__init__("No task ID in response")
        self.payload = payload


class StatusCheckFailed(GenerationError):
    def __init__(self, body: str, status_code: int | None = None) -> None:
        super().__init__("Failed to check task status")
        self.body = body
        self.status_code = status_code


class RemoteTaskFailed(GenerationError):
    def __init__(self, payload: Any) -> None:
        super().__init__(f"Task processing failed: {json.dumps(payload, default=str)}")
        self.payload = payload


class TaskTimeout(GenerationError):
    def __init__(self, task_id: str, attempts: int, waited_s: float) -> None:
        super().__init__(f"Task timed out after {attempts} attempts ({waited_s:.0f}s)")
        self.task_id = task_id
        self.attempts = attempts


class GenerationCancelled(GenerationError):
    def __init__(self, task_id: str | None) -> None:
        super().__init__("Generation cancelled")
        self.task_id = task_id
