"""
img2video proxy package.

Provides:
- Runway image-to-video client (submit + bounded status polling)
- FastAPI proxy endpoint gated by referer check and per-IP rate limiting
- Command-line runner for one-off generations
"""
