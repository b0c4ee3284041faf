"""Helpers to turn images into embeddable data URIs."""
from __future__ import annotations
import base64
import logging
import mimetypes
from pathlib import Path

import httpx

from img2video_proxy.generation.errors import InvalidImageFormat

LOGGER = logging.getLogger("img2video.images")

DATA_URI_PREFIX = "data:image/"
MAX_IMAGE_BYTES = 20 * 1024 * 1024

def is_data_uri(image: str) -> bool:
    return image.startswith(DATA_URI_PREFIX)

def encode_bytes(data: bytes, mime_type: str) -> str:
    """Encode raw image bytes as a base64 data URI."""
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"

def fetch_as_data_uri(url: str, client: httpx.Client, max_bytes: int | None = None) -> str:
    """
    Download an image and re-encode it as a data URI.

    Args:
        url: Image location.
        client: HTTP client to use for the download.
        max_bytes: Size cap for the download. Defaults to MAX_IMAGE_BYTES.

    Raises:
        InvalidImageFormat: on a malformed URL, transport error, non-2xx status,
            non-image content or a body over the size cap.
    """
    max_bytes = max_bytes or MAX_IMAGE_BYTES
    try:
        with client.stream("GET", url) as r:
            r.raise_for_status()
            mime_type = r.headers.get("content-type", "").split(";")[0].strip()
            if not mime_type.startswith("image/"):
                LOGGER.error("Error converting image: unexpected content type %r", mime_type)
                raise InvalidImageFormat()

            data = bytearray()
            for chunk in r.iter_bytes():
                data.extend(chunk)
                if len(data) > max_bytes:
                    LOGGER.error("Error converting image: larger than %d bytes", max_bytes)
                    raise InvalidImageFormat()
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        LOGGER.error("Error converting image: %s", e)
        raise InvalidImageFormat() from e
    return encode_bytes(bytes(data), mime_type)

def encode_file(path: str) -> str:
    """
    Read a local image file into a data URI.

    Raises:
        InvalidImageFormat: if the file is missing or not an image type.
    """
    mime_type, _ = mimetypes.guess_type(path)
    if not mime_type or not mime_type.startswith("image/"):
        raise InvalidImageFormat(f"Invalid image format: {path}")
    try:
        data = Path(path).read_bytes()
    except OSError as e:
        raise InvalidImageFormat(f"Invalid image format: {e}") from e
    return encode_bytes(data, mime_type)
