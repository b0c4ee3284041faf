"""Deployment configuration read from the environment and an optional YAML file."""
from __future__ import annotations
import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from img2video_proxy.common.schema import GenerationParams

LOGGER = logging.getLogger("img2video.config")

def load_cfg(path: str) -> dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}

def load_generation_params(path: str | None = None) -> GenerationParams:
    """
    Load generation parameters, overriding defaults with a YAML file if present.

    Args:
        path: YAML path. Defaults to GENERATION_CFG env or configs/generation.yaml.
    """
    path = path or os.getenv("GENERATION_CFG", "configs/generation.yaml")
    if not Path(path).exists():
        LOGGER.info("No generation config at %s; using defaults", path)
        return GenerationParams()

    cfg = load_cfg(path)
    known = {f.name for f in fields(GenerationParams)}
    unknown = sorted(set(cfg) - known)
    if unknown:
        LOGGER.warning("Ignoring unknown generation config keys: %s", ", ".join(unknown))
    return GenerationParams(**{k: v for k, v in cfg.items() if k in known})

@dataclass
class Settings:
    """Runtime settings for the proxy and the Runway client."""
    runway_api_url: str = "https://api.dev.runwayml.com"
    runway_api_key: str = ""
    runway_api_version: str = "2024-11-06"
    app_url: str = "http://localhost:3000"
    poll_interval: float = 10.0
    max_poll_attempts: int = 30
    rate_limit_per_window: int = 10
    rate_limit_window_seconds: float = 60.0
    rate_limit_max_clients: int = 500
    generation: GenerationParams = field(default_factory=GenerationParams)

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            runway_api_url=os.getenv("RUNWAY_API_URL", "https://api.dev.runwayml.com").rstrip("/"),
            runway_api_key=os.getenv("RUNWAY_API_KEY", ""),
            runway_api_version=os.getenv("RUNWAY_API_VERSION", "2024-11-06"),
            app_url=os.getenv("APP_URL", "http://localhost:3000"),
            poll_interval=float(os.getenv("POLL_INTERVAL", "10")),
            max_poll_attempts=int(os.getenv("MAX_POLL_ATTEMPTS", "30")),
            rate_limit_per_window=int(os.getenv("RATE_LIMIT_PER_WINDOW", "10")),
            rate_limit_window_seconds=float(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60")),
            rate_limit_max_clients=int(os.getenv("RATE_LIMIT_MAX_CLIENTS", "500")),
            generation=load_generation_params(),
        )
