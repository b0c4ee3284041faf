"""Launch the proxy under uvicorn."""
from __future__ import annotations
import os

import uvicorn

def main() -> None:
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))

    # Single worker: the rate limiter table lives in process memory.
    uvicorn.run(
        "img2video_proxy.serve.fastapi_app:app",
        host=host,
        port=port,
        workers=1,
        log_config=None,
    )

if __name__ == "__main__":
    main()
