# middleware/rate_limit.py
"""
slowapi limiter shared by the import routes.

Previews are keyed by client IP. Wallet previews call several metered
upstream APIs, so the preview route carries its own tighter limit:

    @router.post("/preview")
    @limiter.limit(IMPORT_PREVIEW_RATE_LIMIT)
    async def preview(request: Request):
        ...
"""
import os

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address


def client_ip_key(request: Request) -> str:
    """First X-Forwarded-For hop behind a proxy, else the socket peer."""
    forwarded = request.headers.get("X-Forwarded-For", "")
    first = forwarded.split(",", 1)[0].strip()
    return first or get_remote_address(request)


DEFAULT_RATE_LIMIT = os.getenv("RATE_LIMIT_DEFAULT", "60/minute")
IMPORT_PREVIEW_RATE_LIMIT = os.getenv("RATE_LIMIT_IMPORT_PREVIEW", "20/minute")

# REDIS_URL shares counters across workers; memory:// is per process
limiter = Limiter(
    key_func=client_ip_key,
    default_limits=[DEFAULT_RATE_LIMIT],
    storage_uri=os.getenv("REDIS_URL", "memory://"),
    strategy="fixed-window",
)
