"""Run one image-to-video generation from the command line."""
from __future__ import annotations
import argparse
import logging
import sys

from img2video_proxy.common.config import Settings
from img2video_proxy.common.images import encode_file, is_data_uri
from img2video_proxy.common.logging_setup import setup_logging
from img2video_proxy.generation.errors import GenerationError
from img2video_proxy.generation.runway_client import RunwayClient

LOGGER = logging.getLogger("img2video.cli")

def resolve_image(image: str) -> str:
    """Pass data URIs and URLs through; read anything else as a local file."""
    if is_data_uri(image) or image.startswith(("http://", "https://")):
        return image
    return encode_file(image)

def main(argv: list[str] | None = None) -> int:
    setup_logging()
    ap = argparse.ArgumentParser(description="Generate a video from an image via Runway")
    ap.add_argument("--image", required=True, help="Local image path, URL or data URI")
    ap.add_argument("--prompt", required=True, help="Prompt text")
    ap.add_argument("--poll-interval", type=float, default=None, help="Seconds between status checks")
    ap.add_argument("--max-attempts", type=int, default=None, help="Status checks before giving up")
    args = ap.parse_args(argv)

    settings = Settings.from_env()
    if args.poll_interval is not None:
        settings.poll_interval = args.poll_interval
    if args.max_attempts is not None:
        settings.max_poll_attempts = args.max_attempts

    try:
        image = resolve_image(args.image)
        with RunwayClient.from_settings(settings) as client:
            result = client.generate(image, args.prompt)
    except GenerationError as e:
        LOGGER.error("Generation failed: %s", e.message)
        return 1

    LOGGER.info("Task %s | %s polls | latency %sms", result.id, result.attempts, result.latency_ms)
    outputs = result.video_url if isinstance(result.video_url, list) else [result.video_url]
    for url in outputs:
        print(url)
    return 0

if __name__ == "__main__":
    sys.exit(main())
