"""Dataclasses for generation parameters, task statuses and results."""
from __future__ import annotations
from dataclasses import asdict, dataclass
from typing import Any

class TaskStatus:
    """Remote task statuses the poll loop reacts to."""
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"

@dataclass
class GenerationParams:
    """Fixed per-deployment generation parameters sent on task creation."""
    model: str = "gen3a_turbo"
    duration_seconds: int = 5
    output_format: str = "mp4"
    fps: int = 24
    motion_bucket_id: int = 127
    cond_aug: float = 0.02

    def parameters(self) -> dict[str, Any]:
        out = asdict(self)
        out.pop("model")
        return out

@dataclass
class GenerationResult:
    """Terminal outcome of a successful generation."""
    id: str
    status: str
    video_url: Any
    attempts: int
    latency_ms: int
